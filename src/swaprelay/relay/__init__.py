"""Gasless swap relay: saga over pre-flight, custody, exchange and disbursement."""

from swaprelay.relay.types import PreflightResult, RelayResult, SwapRequest
from swaprelay.relay.engine import (
    RelayEngine,
    build_relay_engine,
    get_relay_engine,
    reset_relay_engine,
)

__all__ = [
    "PreflightResult",
    "RelayResult",
    "SwapRequest",
    "RelayEngine",
    "build_relay_engine",
    "get_relay_engine",
    "reset_relay_engine",
]
