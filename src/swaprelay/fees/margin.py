"""Congestion-aware fee margin.

The relay fee is the expected gas cost multiplied by a safety margin. The
margin tier is chosen from how fast the base fee grew over the last few
blocks: the faster it is rising, the more likely the realized cost will
exceed the estimate by the time our transactions land.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from swaprelay.chain.rpc import LedgerClient
from swaprelay.errors import RPCError

logger = logging.getLogger(__name__)


class MarginTier(str, Enum):
    NORMAL = "normal"
    BUSY = "busy"
    HIGH = "high"
    SEVERE = "severe"


@dataclass(frozen=True)
class Margin:
    tier: MarginTier
    multiplier: Decimal
    growth_rate: Optional[Decimal] = None


# Checked top-down; thresholds are strict lower bounds
MARGIN_TIERS: list[tuple[Decimal, MarginTier, Decimal]] = [
    (Decimal("0.50"), MarginTier.SEVERE, Decimal("2.5")),
    (Decimal("0.25"), MarginTier.HIGH, Decimal("2.0")),
    (Decimal("0.10"), MarginTier.BUSY, Decimal("1.75")),
]
NORMAL_MULTIPLIER = Decimal("1.5")


def select_margin_tier(growth_rate: Optional[Decimal]) -> Margin:
    """Map a base-fee growth rate (0.6 = +60%) to a margin tier.

    ``None`` (no usable samples) selects the normal tier.
    """
    if growth_rate is None:
        return Margin(MarginTier.NORMAL, NORMAL_MULTIPLIER, None)

    growth_rate = Decimal(growth_rate)
    for threshold, tier, multiplier in MARGIN_TIERS:
        if growth_rate > threshold:
            return Margin(tier, multiplier, growth_rate)
    return Margin(MarginTier.NORMAL, NORMAL_MULTIPLIER, growth_rate)


def growth_rate(base_fees: list[int]) -> Optional[Decimal]:
    """Relative change from the oldest to the newest sample."""
    if len(base_fees) < 2 or base_fees[0] <= 0:
        return None
    first = Decimal(base_fees[0])
    last = Decimal(base_fees[-1])
    return (last - first) / first


class MarginCalculator:
    """Samples recent base fees and selects the margin tier."""

    def __init__(self, client: LedgerClient, sample_blocks: int = 5):
        self.client = client
        self.sample_blocks = sample_blocks

    async def calculate(self) -> Margin:
        try:
            base_fees = await self.client.get_base_fee_history(self.sample_blocks)
        except RPCError as e:
            logger.warning(f"Fee history unavailable, using normal margin: {e}")
            return select_margin_tier(None)

        rate = growth_rate(base_fees)
        margin = select_margin_tier(rate)
        logger.debug(f"Base fee samples {base_fees} -> growth {rate}, tier {margin.tier.value}")
        return margin
