"""Utility modules for swaprelay."""

from swaprelay.utils.locks import IntentLock, LockTimeoutError, get_intent_lock

__all__ = ["IntentLock", "LockTimeoutError", "get_intent_lock"]
