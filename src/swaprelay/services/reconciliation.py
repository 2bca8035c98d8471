"""Reconciliation of intents whose final store write failed.

When on-ledger work succeeds but its record cannot be written, the relay
stores a snapshot in ``reconciliation_records``. This service replays those
snapshots onto the intents, oldest first, in small batches.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, Numeric

from swaprelay.ledger.database import get_db
from swaprelay.ledger.models import BaseUnits, IntentStatus, ReconciliationRecord, SwapIntent
from swaprelay.ledger.repository import IntentRepository
from swaprelay.ledger.store import SessionScope
from swaprelay.notifications.telegram import AlertSink

logger = logging.getLogger(__name__)

# Snapshot keys that are bookkeeping metadata, not intent columns
_SNAPSHOT_META = {"intent_id", "target_status", "detail", "intent"}
_PROTECTED_COLUMNS = {"id", "status", "created_at", "updated_at"}


def _coerce(column_name: str, value: Any) -> Any:
    """Convert a JSON snapshot value back to the column's Python type."""
    if value is None:
        return None
    column_type = SwapIntent.__table__.columns[column_name].type
    if isinstance(column_type, (BaseUnits, Integer)):
        return int(value)
    if isinstance(column_type, Numeric):
        return Decimal(str(value))
    if isinstance(column_type, DateTime) and isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


def snapshot_fields(data: dict) -> dict:
    """Intent columns carried by a snapshot, typed for assignment."""
    columns = SwapIntent.__table__.columns
    return {
        key: _coerce(key, value)
        for key, value in data.items()
        if key not in _SNAPSHOT_META and key not in _PROTECTED_COLUMNS and key in columns
    }


@dataclass
class ReconciliationReport:
    processed: int = 0
    reconciled: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "reconciled": self.reconciled,
            "failed": self.failed,
            "errors": self.errors,
        }


class Reconciler:
    """Replays reconciliation snapshots onto intents."""

    def __init__(self, session_scope: Optional[SessionScope] = None, alerts: Optional[AlertSink] = None):
        self._session_scope = session_scope or get_db
        self.alerts = alerts

    async def run_once(self, limit: int = 10, dry_run: bool = False) -> ReconciliationReport:
        """Process one batch of unreconciled records.

        Per-record errors are collected in the report and written to the
        record; they never abort the batch.
        """
        async with self._session_scope() as session:
            records = await IntentRepository(session).get_unreconciled_records(limit=limit)

        report = ReconciliationReport(processed=len(records))
        if not records:
            logger.info("No reconciliation records pending")
            return report

        logger.info(f"Reconciling {len(records)} record(s){' (dry run)' if dry_run else ''}")

        for record in records:
            try:
                if dry_run:
                    self._describe(record)
                else:
                    await self._apply(record)
                report.reconciled += 1
            except Exception as e:
                logger.error(f"Failed to reconcile record {record.id} (intent {record.intent_id}): {e}")
                report.failed += 1
                report.errors.append(
                    {"record_id": record.id, "intent_id": record.intent_id, "error": str(e)}
                )
                if not dry_run:
                    await self._mark_error(record.id, str(e))

        logger.info(
            f"Reconciliation done: {report.reconciled} reconciled, {report.failed} failed "
            f"of {report.processed}"
        )
        if report.failed and self.alerts is not None:
            self.alerts.warning(
                "Reconciliation errors",
                {"failed": report.failed, "processed": report.processed},
            )
        return report

    async def _apply(self, record: ReconciliationRecord) -> None:
        snapshot = json.loads(record.snapshot)
        target = snapshot.get("target_status")
        target = IntentStatus(target) if target else None

        async with self._session_scope() as session:
            repo = IntentRepository(session)

            # Re-read inside this transaction so a record is applied once
            fresh = await repo.get_reconciliation_record(record.id)
            if fresh is None or fresh.reconciled:
                logger.info(f"Record {record.id} already reconciled")
                return

            intent = await repo.get_intent(record.intent_id)
            if intent is None:
                origin = snapshot.get("intent")
                if not origin:
                    raise ValueError("Intent row missing and snapshot has no creation data")
                logger.warning(f"Recreating missing intent {record.intent_id} from snapshot")
                intent = await repo.create_intent(record.intent_id, **snapshot_fields(origin))

            await repo.apply_reconciliation(intent, target, **snapshot_fields(snapshot))
            await repo.mark_record_reconciled(record.id)

        logger.info(
            f"Reconciled intent {record.intent_id} from record {record.id}"
            f"{f' (target {target.value})' if target else ''}"
        )

    def _describe(self, record: ReconciliationRecord) -> None:
        snapshot = json.loads(record.snapshot)
        fields = snapshot_fields(snapshot)
        logger.info(
            f"[dry run] record {record.id}: intent {record.intent_id} -> "
            f"{snapshot.get('target_status')} with {sorted(fields)}"
        )

    async def _mark_error(self, record_id: int, error: str) -> None:
        try:
            async with self._session_scope() as session:
                await IntentRepository(session).mark_record_error(record_id, error)
        except Exception as e:
            logger.error(f"Could not record reconcile error on record {record_id}: {e}")

    async def find_stuck_intents(self, older_than: timedelta) -> list[SwapIntent]:
        """Non-terminal intents untouched for longer than ``older_than``."""
        async with self._session_scope() as session:
            stuck = await IntentRepository(session).list_stuck(older_than)

        if stuck:
            logger.warning(f"{len(stuck)} intent(s) stuck for more than {older_than}")
            if self.alerts is not None:
                self.alerts.warning(
                    "Stuck intents",
                    {
                        "count": len(stuck),
                        "oldest": stuck[0].id,
                        "status": IntentStatus(stuck[0].status).value,
                    },
                )
        return stuck
