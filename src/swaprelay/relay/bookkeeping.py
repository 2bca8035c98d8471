"""Durable bookkeeping around irreversible on-ledger steps.

Three kinds of writes:

- ``checkpoint``: best-effort field update (tx hash right after broadcast).
  A failure is logged; the same data is written again with the next
  transition.
- ``commit``: a transition that must be durable before the next phase
  starts. Failures raise ``BookkeepingError`` so the caller can compensate.
- ``finalize``: the terminal write after on-ledger work completed. A failure
  falls back to a reconciliation record, and if that fails too the full
  snapshot is logged at CRITICAL and operators are alerted. It never raises.
"""

import json
import logging
from typing import Any, Optional

from swaprelay.errors import BookkeepingError
from swaprelay.ledger.models import IntentStatus
from swaprelay.ledger.store import IntentStore
from swaprelay.notifications.telegram import AlertSink

logger = logging.getLogger(__name__)


class Bookkeeper:
    def __init__(self, store: IntentStore, alerts: AlertSink):
        self.store = store
        self.alerts = alerts
        self._origins: dict[str, dict] = {}

    def track(self, intent_id: str, origin: dict) -> None:
        """Remember creation fields so a snapshot can rebuild a lost intent row."""
        self._origins[intent_id] = origin

    def release(self, intent_id: str) -> None:
        self._origins.pop(intent_id, None)

    async def checkpoint(self, intent_id: str, **fields: Any) -> None:
        try:
            await self.store.checkpoint(intent_id, **fields)
        except Exception as e:
            logger.error(f"Checkpoint {list(fields)} for intent {intent_id} failed: {e}")

    async def commit(
        self, intent_id: str, target: IntentStatus, detail: Optional[str] = None, **fields: Any
    ) -> None:
        try:
            await self.store.transition(intent_id, target, detail=detail, **fields)
        except Exception as e:
            logger.error(f"Commit {target.value} for intent {intent_id} failed: {e}")
            raise BookkeepingError(f"Could not record {target.value}: {e}") from e

    async def finalize(
        self,
        intent_id: str,
        target: IntentStatus,
        detail: Optional[str] = None,
        **fields: Any,
    ) -> IntentStatus:
        """Write the terminal status, returning the status actually recorded."""
        try:
            await self.store.transition(intent_id, target, detail=detail, **fields)
            return target
        except Exception as e:
            error = f"Failed to record {target.value}: {e}"
            logger.error(f"Intent {intent_id}: {error}")

        return await self.flag(intent_id, target, error, detail=detail, **fields)

    async def flag(
        self,
        intent_id: str,
        target: IntentStatus,
        error: str,
        detail: Optional[str] = None,
        **fields: Any,
    ) -> IntentStatus:
        """Persist a reconciliation snapshot and alert operators. Never raises."""
        snapshot = {"intent_id": intent_id, "target_status": target.value, "detail": detail, **fields}
        origin = self._origins.get(intent_id)
        if origin is not None:
            snapshot["intent"] = origin

        try:
            await self.store.record_for_reconciliation(intent_id, snapshot, error)
            logger.warning(f"Intent {intent_id} flagged for reconciliation")
        except Exception as e:
            logger.critical(
                f"RECONCILIATION RECORD LOST for intent {intent_id}: {e}; snapshot="
                f"{json.dumps(snapshot, default=str, sort_keys=True)}"
            )

        self.alerts.critical(
            "Intent requires reconciliation",
            {"intent_id": intent_id, "target_status": target.value, "error": error},
        )
        return IntentStatus.REQUIRES_RECONCILIATION
