"""Repository for intent ledger operations."""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from swaprelay.errors import IntentNotFoundError, InvalidTransitionError
from swaprelay.ledger.models import (
    IntentEvent,
    IntentStatus,
    ReconciliationRecord,
    SwapIntent,
    TERMINAL_STATUSES,
    can_transition,
)

logger = logging.getLogger(__name__)

# Timestamp column stamped when an intent enters each status
_STATUS_TIMESTAMPS = {
    IntentStatus.FUNDS_PULLED: "funds_pulled_at",
    IntentStatus.SWAP_EXECUTING: "swap_started_at",
    IntentStatus.COMPLETED: "completed_at",
    IntentStatus.REFUNDED: "refunded_at",
    IntentStatus.FAILED: "failed_at",
    IntentStatus.FAILED_NEEDS_MANUAL_REFUND: "failed_at",
    IntentStatus.REQUIRES_RECONCILIATION: "failed_at",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntentRepository:
    """Repository for swap intents, their history and reconciliation records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Intent operations
    async def create_intent(self, intent_id: str, **fields: Any) -> SwapIntent:
        """Insert a new intent in ``created`` status."""
        intent = SwapIntent(id=intent_id, status=IntentStatus.CREATED, **fields)
        self.session.add(intent)
        self.session.add(
            IntentEvent(intent_id=intent_id, from_status=None, to_status=IntentStatus.CREATED.value)
        )
        await self.session.flush()
        return intent

    async def get_intent(self, intent_id: str) -> Optional[SwapIntent]:
        stmt = select(SwapIntent).where(SwapIntent.id == intent_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def require_intent(self, intent_id: str) -> SwapIntent:
        intent = await self.get_intent(intent_id)
        if intent is None:
            raise IntentNotFoundError(f"Intent {intent_id} not found")
        return intent

    async def get_by_nonce(self, auth_nonce: str) -> Optional[SwapIntent]:
        stmt = select(SwapIntent).where(SwapIntent.auth_nonce == auth_nonce.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def transition(
        self,
        intent_id: str,
        target: IntentStatus,
        detail: Optional[str] = None,
        **updates: Any,
    ) -> SwapIntent:
        """Move an intent to ``target`` and record the transition.

        Re-applying the terminal status an intent already holds is a no-op,
        which makes terminal writes idempotent. Any other move out of a
        terminal status, or a move not in the allowed graph, raises
        ``InvalidTransitionError``.
        """
        intent = await self.require_intent(intent_id)
        current = IntentStatus(intent.status)
        target = IntentStatus(target)

        if current == target and current in TERMINAL_STATUSES:
            logger.debug(f"Intent {intent_id} already {target.value}, ignoring")
            return intent

        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Intent {intent_id}: {current.value} -> {target.value} is not allowed"
            )

        for key, value in updates.items():
            setattr(intent, key, value)

        intent.status = target
        stamp = _STATUS_TIMESTAMPS.get(target)
        if stamp is not None:
            setattr(intent, stamp, utcnow())

        self.session.add(
            IntentEvent(
                intent_id=intent_id,
                from_status=current.value,
                to_status=target.value,
                detail=detail,
            )
        )
        await self.session.flush()
        return intent

    async def update_fields(self, intent_id: str, **updates: Any) -> SwapIntent:
        """Checkpoint fields (tx hashes, amounts) without a status change."""
        intent = await self.require_intent(intent_id)
        for key, value in updates.items():
            setattr(intent, key, value)
        await self.session.flush()
        return intent

    async def apply_reconciliation(
        self, intent: SwapIntent, target: Optional[IntentStatus], **updates: Any
    ) -> SwapIntent:
        """Write reconciled fields onto ``intent``.

        A non-terminal intent is moved straight to the terminal ``target`` the
        snapshot recorded; a terminal one keeps its status.
        """
        for key, value in updates.items():
            setattr(intent, key, value)

        current = IntentStatus(intent.status)
        if target is not None and current not in TERMINAL_STATUSES and target in TERMINAL_STATUSES:
            intent.status = target
            stamp = _STATUS_TIMESTAMPS.get(target)
            if stamp is not None and getattr(intent, stamp) is None:
                setattr(intent, stamp, utcnow())
            self.session.add(
                IntentEvent(
                    intent_id=intent.id,
                    from_status=current.value,
                    to_status=target.value,
                    detail="reconciled",
                )
            )

        intent.reconciled_at = utcnow()
        await self.session.flush()
        return intent

    async def list_by_status(
        self,
        status: Optional[IntentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SwapIntent]:
        stmt = select(SwapIntent).order_by(SwapIntent.created_at.desc()).limit(limit).offset(offset)
        if status is not None:
            stmt = stmt.where(SwapIntent.status == IntentStatus(status))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_stuck(self, older_than: timedelta, limit: int = 100) -> list[SwapIntent]:
        """Non-terminal intents not updated within ``older_than``."""
        cutoff = utcnow() - older_than
        stmt = (
            select(SwapIntent)
            .where(SwapIntent.status.not_in([s.value for s in TERMINAL_STATUSES]))
            .where(SwapIntent.updated_at < cutoff)
            .order_by(SwapIntent.updated_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_events(self, intent_id: str) -> list[IntentEvent]:
        stmt = select(IntentEvent).where(IntentEvent.intent_id == intent_id).order_by(IntentEvent.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # Reconciliation records
    async def create_reconciliation_record(
        self,
        intent_id: str,
        snapshot: dict,
        error_message: Optional[str] = None,
    ) -> ReconciliationRecord:
        record = ReconciliationRecord(
            intent_id=intent_id,
            snapshot=json.dumps(snapshot, default=str, sort_keys=True),
            error_message=error_message,
            reconciled=False,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_unreconciled_records(self, limit: int = 10) -> list[ReconciliationRecord]:
        """Oldest unreconciled records first."""
        stmt = (
            select(ReconciliationRecord)
            .where(ReconciliationRecord.reconciled.is_(False))
            .order_by(ReconciliationRecord.created_at, ReconciliationRecord.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def has_unreconciled_records(self, intent_id: str) -> bool:
        stmt = (
            select(ReconciliationRecord.id)
            .where(ReconciliationRecord.intent_id == intent_id)
            .where(ReconciliationRecord.reconciled.is_(False))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_reconciliation_record(self, record_id: int) -> Optional[ReconciliationRecord]:
        stmt = select(ReconciliationRecord).where(ReconciliationRecord.id == record_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def mark_record_reconciled(self, record_id: int) -> ReconciliationRecord:
        record = await self.get_reconciliation_record(record_id)
        if record is None:
            raise ValueError(f"Reconciliation record {record_id} not found")
        if record.reconciled:
            return record

        record.reconciled = True
        record.reconciled_at = utcnow()
        record.reconcile_error = None
        await self.session.flush()
        return record

    async def mark_record_error(self, record_id: int, error: str) -> None:
        record = await self.get_reconciliation_record(record_id)
        if record is not None:
            record.reconcile_error = error
            await self.session.flush()
