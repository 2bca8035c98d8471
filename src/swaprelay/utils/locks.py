"""Per-intent locking.

Serializes work on the same intent inside one process, so an operator
recovery or manual refund can never race the engine's own compensation.
"""

import asyncio
import logging
import weakref
from typing import Optional

logger = logging.getLogger(__name__)

# Global lock registry: intent_id -> asyncio.Lock, dropped once no holder or waiter remains
_intent_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
_registry_lock = asyncio.Lock()


async def get_intent_lock(intent_id: str) -> asyncio.Lock:
    """Get or create the lock for an intent."""
    async with _registry_lock:
        lock = _intent_locks.get(intent_id)
        if lock is None:
            lock = asyncio.Lock()
            _intent_locks[intent_id] = lock
        return lock


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""

    pass


class IntentLock:
    """Context manager for exclusive access to one intent.

    Example:
        async with IntentLock(intent_id, operation="refund"):
            intent = await store.get(intent_id)
            ...
    """

    def __init__(
        self,
        intent_id: str,
        timeout: Optional[float] = 30.0,
        operation: str = "intent_operation",
    ):
        self.intent_id = intent_id
        self.timeout = timeout
        self.operation = operation
        self._lock: Optional[asyncio.Lock] = None
        self._acquired = False

    async def __aenter__(self) -> "IntentLock":
        self._lock = await get_intent_lock(self.intent_id)

        try:
            if self.timeout:
                await asyncio.wait_for(self._lock.acquire(), timeout=self.timeout)
            else:
                await self._lock.acquire()
            self._acquired = True
            logger.debug(f"Lock acquired for intent {self.intent_id}: {self.operation}")
            return self

        except asyncio.TimeoutError:
            logger.warning(
                f"Lock timeout for intent {self.intent_id} after {self.timeout}s: {self.operation}"
            )
            raise LockTimeoutError(
                f"Could not acquire lock for intent {self.intent_id} within {self.timeout}s"
            )

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._acquired and self._lock:
            self._lock.release()
            self._acquired = False
            logger.debug(f"Lock released for intent {self.intent_id}: {self.operation}")
        return False


def clear_intent_locks() -> None:
    """Clear all intent locks (useful for testing)."""
    _intent_locks.clear()
