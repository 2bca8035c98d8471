"""Relayer native-balance monitoring.

The relayer account pays gas for every in-flight intent, so its balance is a
shared resource drained concurrently. It is watched rather than allocated:
operators are alerted when it crosses the warning level, and pre-flight stops
admitting new intents once it falls below the critical floor.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Optional

from swaprelay.chain.rpc import LedgerClient
from swaprelay.errors import RPCError
from swaprelay.notifications.telegram import AlertLevel, AlertSink

logger = logging.getLogger(__name__)

WEI_PER_NATIVE = Decimal(10) ** 18


class BalanceLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class BalanceSnapshot:
    address: str
    balance_wei: int
    level: BalanceLevel

    @property
    def balance(self) -> Decimal:
        return Decimal(self.balance_wei) / WEI_PER_NATIVE


ThresholdCallback = Callable[[BalanceSnapshot], Awaitable[None]]


def classify_balance(balance: Decimal, warning: Decimal, critical: Decimal) -> BalanceLevel:
    if balance < critical:
        return BalanceLevel.CRITICAL
    if balance < warning:
        return BalanceLevel.WARNING
    return BalanceLevel.OK


class RelayerBalanceMonitor:
    """Checks the relayer balance and reacts to level changes."""

    def __init__(
        self,
        client: LedgerClient,
        address: str,
        warning_threshold: Decimal,
        critical_threshold: Decimal,
        alerts: Optional[AlertSink] = None,
        native_symbol: str = "ETH",
    ):
        self.client = client
        self.address = address
        self.warning_threshold = Decimal(warning_threshold)
        self.critical_threshold = Decimal(critical_threshold)
        self.alerts = alerts
        self.native_symbol = native_symbol
        self.last_snapshot: Optional[BalanceSnapshot] = None
        self._callbacks: list[ThresholdCallback] = []

    def on_level_change(self, callback: ThresholdCallback) -> None:
        """Register a coroutine called whenever the balance level changes."""
        self._callbacks.append(callback)

    @property
    def level(self) -> BalanceLevel:
        if self.last_snapshot is None:
            return BalanceLevel.OK
        return self.last_snapshot.level

    async def check(self) -> BalanceSnapshot:
        """Read the balance, classify it and fire callbacks on a level change.

        Raises:
            RPCError: balance could not be read
        """
        balance_wei = await self.client.get_native_balance(self.address)
        balance = Decimal(balance_wei) / WEI_PER_NATIVE
        snapshot = BalanceSnapshot(
            address=self.address,
            balance_wei=balance_wei,
            level=classify_balance(balance, self.warning_threshold, self.critical_threshold),
        )

        previous = self.last_snapshot.level if self.last_snapshot else BalanceLevel.OK
        self.last_snapshot = snapshot

        if snapshot.level != previous:
            logger.warning(
                f"Relayer balance level {previous.value} -> {snapshot.level.value} "
                f"({balance} {self.native_symbol})"
            )
            self._notify(snapshot, previous)
            for callback in self._callbacks:
                try:
                    await callback(snapshot)
                except Exception as e:
                    logger.error(f"Balance threshold callback failed: {e}")

        return snapshot

    async def is_above_floor(self) -> bool:
        """Fresh check against the critical floor, used by pre-flight."""
        try:
            snapshot = await self.check()
        except RPCError as e:
            logger.error(f"Relayer balance check failed: {e}")
            return False
        return snapshot.level != BalanceLevel.CRITICAL

    def _notify(self, snapshot: BalanceSnapshot, previous: BalanceLevel) -> None:
        if self.alerts is None:
            return

        details = {
            "address": snapshot.address,
            "balance": f"{snapshot.balance} {self.native_symbol}",
            "warning_below": str(self.warning_threshold),
            "critical_below": str(self.critical_threshold),
        }
        if snapshot.level == BalanceLevel.CRITICAL:
            self.alerts.alert(AlertLevel.CRITICAL, "Relayer balance below critical floor", details)
        elif snapshot.level == BalanceLevel.WARNING:
            self.alerts.alert(AlertLevel.WARNING, "Relayer balance low", details)
        elif previous != BalanceLevel.OK:
            self.alerts.alert(AlertLevel.INFO, "Relayer balance recovered", details)
