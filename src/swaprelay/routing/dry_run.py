"""Dry-run venue and prices for simulated quoting."""

from decimal import ROUND_DOWN, Decimal

from swaprelay.chains import TokenConfig
from swaprelay.errors import NoRouteError
from swaprelay.routing.base import LiquidityVenue, SwapTransaction, VenueQuote

# Simulated market prices in USD, for dry-run only
SIMULATED_PRICES: dict[str, Decimal] = {
    # Native
    "ETH": Decimal("3200.00"),
    "WETH": Decimal("3200.00"),
    # Stablecoins
    "USDC": Decimal("1.00"),
    "USDT": Decimal("1.00"),
    "DAI": Decimal("1.00"),
    "EURC": Decimal("1.08"),
}

SIMULATED_VENUE_FEE = Decimal("0.003")  # 0.3%
SIMULATED_SWAP_GAS = 180000
SIMULATED_ALLOWANCE_TARGET = "0x0000000000001fF3684f28c67538d4D072C22734"


class DryRunVenue(LiquidityVenue):
    """Simulated venue quoting from ``SIMULATED_PRICES``."""

    def __init__(self, prices: dict[str, Decimal] | None = None):
        self.prices = dict(prices or SIMULATED_PRICES)

    @property
    def name(self) -> str:
        return "dry_run"

    def _buy_amount(self, sell_token: TokenConfig, buy_token: TokenConfig, sell_amount: int) -> int:
        sell_price = self.prices.get(sell_token.symbol)
        buy_price = self.prices.get(buy_token.symbol)
        if not sell_price or not buy_price:
            raise NoRouteError(f"No simulated route for {sell_token.symbol} -> {buy_token.symbol}")

        sell_human = Decimal(sell_amount) / (Decimal(10) ** sell_token.decimals)
        buy_human = sell_human * sell_price / buy_price * (Decimal("1") - SIMULATED_VENUE_FEE)
        return int((buy_human * (Decimal(10) ** buy_token.decimals)).to_integral_value(ROUND_DOWN))

    def _quote(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        slippage_bps: int,
        firm: bool,
    ) -> VenueQuote:
        buy_amount = self._buy_amount(sell_token, buy_token, sell_amount)
        min_buy_amount = buy_amount * (10000 - slippage_bps) // 10000
        transaction = None
        if firm:
            transaction = SwapTransaction(
                to=SIMULATED_ALLOWANCE_TARGET, data="0x", value=0, gas=SIMULATED_SWAP_GAS
            )
        return VenueQuote(
            venue=self.name,
            sell_token=sell_token.symbol,
            buy_token=buy_token.symbol,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            min_buy_amount=min_buy_amount,
            allowance_target=SIMULATED_ALLOWANCE_TARGET,
            transaction=transaction,
            estimated_gas=SIMULATED_SWAP_GAS,
            is_simulated=True,
        )

    async def get_quote(self, sell_token, buy_token, sell_amount, taker, slippage_bps) -> VenueQuote:
        return self._quote(sell_token, buy_token, sell_amount, slippage_bps, firm=False)

    async def get_swap_transaction(self, sell_token, buy_token, sell_amount, taker, slippage_bps) -> VenueQuote:
        return self._quote(sell_token, buy_token, sell_amount, slippage_bps, firm=True)
