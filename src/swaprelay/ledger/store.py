"""Durable intent store used by the relay engine.

Each call opens its own session and commits before returning, so every
checkpoint the engine writes is durable by the time the next phase starts.
"""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from swaprelay.ledger.database import get_db
from swaprelay.ledger.models import (
    IntentStatus,
    ReconciliationRecord,
    SwapIntent,
    can_transition,
)
from swaprelay.ledger.repository import IntentRepository

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class IntentStore:
    """Session-per-operation facade over ``IntentRepository``."""

    def __init__(self, session_scope: Optional[SessionScope] = None):
        self._session_scope = session_scope or get_db

    async def create(self, intent_id: str, **fields: Any) -> SwapIntent:
        async with self._session_scope() as session:
            return await IntentRepository(session).create_intent(intent_id, **fields)

    async def get(self, intent_id: str) -> Optional[SwapIntent]:
        async with self._session_scope() as session:
            return await IntentRepository(session).get_intent(intent_id)

    async def nonce_used(self, auth_nonce: str) -> bool:
        async with self._session_scope() as session:
            return await IntentRepository(session).get_by_nonce(auth_nonce) is not None

    async def transition(
        self,
        intent_id: str,
        target: IntentStatus,
        detail: Optional[str] = None,
        **updates: Any,
    ) -> SwapIntent:
        async with self._session_scope() as session:
            intent = await IntentRepository(session).transition(
                intent_id, target, detail=detail, **updates
            )
        logger.info(f"Intent {intent_id} -> {IntentStatus(target).value}")
        return intent

    async def checkpoint(self, intent_id: str, **updates: Any) -> SwapIntent:
        async with self._session_scope() as session:
            return await IntentRepository(session).update_fields(intent_id, **updates)

    async def list_by_status(
        self, status: Optional[IntentStatus] = None, limit: int = 50, offset: int = 0
    ) -> list[SwapIntent]:
        async with self._session_scope() as session:
            return await IntentRepository(session).list_by_status(status, limit=limit, offset=offset)

    async def list_stuck(self, older_than: timedelta) -> list[SwapIntent]:
        async with self._session_scope() as session:
            return await IntentRepository(session).list_stuck(older_than)

    async def has_pending_reconciliation(self, intent_id: str) -> bool:
        async with self._session_scope() as session:
            return await IntentRepository(session).has_unreconciled_records(intent_id)

    async def record_for_reconciliation(
        self,
        intent_id: str,
        snapshot: dict,
        error_message: Optional[str] = None,
    ) -> ReconciliationRecord:
        """Flag the intent and persist the snapshot in one transaction.

        The intent is only moved to ``requires_reconciliation`` where the
        lifecycle allows it; the snapshot is stored regardless.
        """
        async with self._session_scope() as session:
            repo = IntentRepository(session)
            intent = await repo.get_intent(intent_id)
            if intent is not None and can_transition(
                intent.status, IntentStatus.REQUIRES_RECONCILIATION
            ):
                await repo.transition(
                    intent_id,
                    IntentStatus.REQUIRES_RECONCILIATION,
                    detail=error_message,
                    error_message=error_message,
                )
            return await repo.create_reconciliation_record(intent_id, snapshot, error_message)
