"""Shared-resource monitoring."""

from swaprelay.monitoring.relayer_balance import BalanceLevel, RelayerBalanceMonitor

__all__ = ["BalanceLevel", "RelayerBalanceMonitor"]
