"""Ledger module for swap intents and their lifecycle."""

from swaprelay.ledger.database import get_db, init_db
from swaprelay.ledger.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    IntentEvent,
    IntentStatus,
    ReconciliationRecord,
    SwapIntent,
)
from swaprelay.ledger.repository import IntentRepository
from swaprelay.ledger.store import IntentStore

__all__ = [
    # Models
    "SwapIntent",
    "IntentEvent",
    "ReconciliationRecord",
    # Enums / lifecycle
    "IntentStatus",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    # Database
    "get_db",
    "init_db",
    # Repository
    "IntentRepository",
    "IntentStore",
]
