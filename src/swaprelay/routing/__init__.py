"""Liquidity venues for quote discovery and swap transactions.

Venues:
- 0x: EVM aggregator (allowance-holder flow)
- Dry run: simulated prices for local development
"""

from swaprelay.routing.base import LiquidityVenue, SwapTransaction, VenueQuote
from swaprelay.routing.dry_run import DryRunVenue
from swaprelay.routing.factory import create_venue
from swaprelay.routing.zerox import ZeroExVenue

__all__ = [
    "LiquidityVenue",
    "SwapTransaction",
    "VenueQuote",
    "DryRunVenue",
    "ZeroExVenue",
    "create_venue",
]
