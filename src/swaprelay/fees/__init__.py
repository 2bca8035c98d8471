"""Fee computation: congestion margin, price feed and fee split."""

from swaprelay.fees.margin import Margin, MarginCalculator, MarginTier, select_margin_tier
from swaprelay.fees.oracle import CoinGeckoOracle, PriceOracle, StaticPriceOracle
from swaprelay.fees.splitter import FeeQuote, apply_slippage, compute_fees, platform_fee

__all__ = [
    "Margin",
    "MarginCalculator",
    "MarginTier",
    "select_margin_tier",
    "PriceOracle",
    "CoinGeckoOracle",
    "StaticPriceOracle",
    "FeeQuote",
    "apply_slippage",
    "compute_fees",
    "platform_fee",
]
