"""Fee split between relayer, platform and user.

All amounts are integer base units of the output asset. The platform fee
rounds down and the relay fee rounds up, so rounding never credits the user
more than the swap produced.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Optional

from swaprelay.fees.margin import Margin

NATIVE_DECIMALS = 18
BPS_DENOMINATOR = 10000


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output for ``amount`` at ``slippage_bps`` tolerance."""
    if not 0 <= slippage_bps < BPS_DENOMINATOR:
        raise ValueError(f"Slippage out of range: {slippage_bps} bps")
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def platform_fee(gross: int, fee_bps: int) -> int:
    """``floor(gross * bps / 10000)``."""
    return gross * fee_bps // BPS_DENOMINATOR


def gas_cost_usd(cost_wei: int, native_usd: Decimal, multiplier: Decimal) -> Decimal:
    """USD value of ``cost_wei`` native gas, scaled by the margin multiplier."""
    native = Decimal(cost_wei) / (Decimal(10) ** NATIVE_DECIMALS)
    return native * native_usd * multiplier


def usd_to_base_units(usd: Decimal, token_usd: Decimal, decimals: int) -> int:
    """Convert a USD amount to token base units, rounding up."""
    if token_usd <= 0:
        raise ValueError("Token price must be positive")
    units = usd / token_usd * (Decimal(10) ** decimals)
    return int(units.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class FeeQuote:
    """Relay and platform fees for one intent.

    Computed from estimates during pre-flight and recomputed from realized
    gas cost and realized output after the swap.
    """

    gross_amount: int
    cost_native_wei: int
    margin: Margin
    relay_fee_usd: Decimal
    relay_fee_amount: int
    platform_fee_amount: int
    is_estimate: bool = True

    @property
    def net_amount(self) -> int:
        return self.gross_amount - self.relay_fee_amount - self.platform_fee_amount


def compute_fees(
    gross_amount: int,
    cost_native_wei: int,
    native_usd: Decimal,
    output_usd: Decimal,
    output_decimals: int,
    margin: Margin,
    platform_fee_bps: int,
    is_estimate: bool = True,
    max_relay_fee_usd: Optional[Decimal] = None,
) -> FeeQuote:
    """Split ``gross_amount`` into relay fee, platform fee and net.

    ``max_relay_fee_usd`` caps the relay fee; the realized fee is capped at
    the ceiling the user accepted during pre-flight.
    """
    relay_fee_usd = gas_cost_usd(cost_native_wei, native_usd, margin.multiplier)
    if max_relay_fee_usd is not None and relay_fee_usd > max_relay_fee_usd:
        relay_fee_usd = max_relay_fee_usd
    return FeeQuote(
        gross_amount=gross_amount,
        cost_native_wei=cost_native_wei,
        margin=margin,
        relay_fee_usd=relay_fee_usd,
        relay_fee_amount=usd_to_base_units(relay_fee_usd, output_usd, output_decimals),
        platform_fee_amount=platform_fee(gross_amount, platform_fee_bps),
        is_estimate=is_estimate,
    )
