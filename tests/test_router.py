"""Tests for the routing module."""

from decimal import Decimal

import httpx
import pytest

from swaprelay.chains import get_token
from swaprelay.config import Settings
from swaprelay.errors import NoRouteError, QuoteUnavailableError
from swaprelay.routing.dry_run import SIMULATED_ALLOWANCE_TARGET, DryRunVenue
from swaprelay.routing.factory import create_venue
from swaprelay.routing.zerox import ZeroExVenue

USDC = get_token(1, "USDC")
USDT = get_token(1, "USDT")
WETH = get_token(1, "WETH")
TAKER = "0x" + "22" * 20

PRICE_RESPONSE = {
    "buyAmount": "99850000",
    "minBuyAmount": "99350750",
    "liquidityAvailable": True,
    "issues": {"allowance": {"spender": "0x" + "0a" * 20, "actual": "0"}},
    "gas": "210000",
}

QUOTE_RESPONSE = {
    **PRICE_RESPONSE,
    "transaction": {
        "to": "0x" + "0a" * 20,
        "data": "0xdeadbeef",
        "value": "0",
        "gas": "230000",
    },
}


def venue_with(handler) -> ZeroExVenue:
    return ZeroExVenue(api_key="test-key", transport=httpx.MockTransport(handler))


class TestDryRunVenue:
    """Tests for the simulated venue."""

    @pytest.mark.asyncio
    async def test_quote_applies_venue_fee(self):
        quote = await DryRunVenue().get_quote(USDC, USDT, 100_000_000, TAKER, 50)

        assert quote.buy_amount == 99_700_000
        assert quote.min_buy_amount == 99_201_500
        assert quote.is_simulated is True
        assert quote.is_firm is False

    @pytest.mark.asyncio
    async def test_decimals_conversion(self):
        """3200 USDC buys just under one WETH."""
        quote = await DryRunVenue().get_quote(USDC, WETH, 3_200_000_000, TAKER, 0)

        assert quote.buy_amount == 997 * 10**15

    @pytest.mark.asyncio
    async def test_firm_quote_has_transaction(self):
        quote = await DryRunVenue().get_swap_transaction(USDC, USDT, 1_000_000, TAKER, 50)

        assert quote.is_firm
        assert quote.transaction.to == SIMULATED_ALLOWANCE_TARGET
        assert quote.allowance_target == SIMULATED_ALLOWANCE_TARGET

    @pytest.mark.asyncio
    async def test_unknown_price(self):
        venue = DryRunVenue(prices={"USDC": Decimal("1")})

        with pytest.raises(NoRouteError):
            await venue.get_quote(USDC, USDT, 1_000_000, TAKER, 50)


class TestZeroExVenue:
    """Tests for the 0x allowance-holder integration."""

    @pytest.mark.asyncio
    async def test_price_request(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=PRICE_RESPONSE)

        quote = await venue_with(handler).get_quote(USDC, USDT, 100_000_000, TAKER, 50)

        assert quote.buy_amount == 99_850_000
        assert quote.min_buy_amount == 99_350_750
        assert quote.allowance_target == "0x" + "0a" * 20
        assert quote.estimated_gas == 210000
        assert quote.is_firm is False

        request = requests[0]
        assert request.url.path == "/swap/allowance-holder/price"
        assert request.headers["0x-api-key"] == "test-key"
        assert request.headers["0x-version"] == "v2"
        assert request.url.params["sellAmount"] == "100000000"
        assert request.url.params["taker"] == TAKER
        assert request.url.params["slippageBps"] == "50"
        assert "swapFeeBps" not in request.url.params

    @pytest.mark.asyncio
    async def test_firm_quote(self):
        venue = venue_with(lambda r: httpx.Response(200, json=QUOTE_RESPONSE))

        quote = await venue.get_swap_transaction(USDC, USDT, 100_000_000, TAKER, 50)

        assert quote.transaction.data == "0xdeadbeef"
        assert quote.transaction.gas == 230000

    @pytest.mark.asyncio
    async def test_firm_quote_without_transaction(self):
        venue = venue_with(lambda r: httpx.Response(200, json=PRICE_RESPONSE))

        with pytest.raises(QuoteUnavailableError):
            await venue.get_swap_transaction(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_not_found_is_no_route(self):
        venue = venue_with(lambda r: httpx.Response(404, json={"message": "not found"}))

        with pytest.raises(NoRouteError):
            await venue.get_quote(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_no_liquidity_is_no_route(self):
        venue = venue_with(lambda r: httpx.Response(200, json={"liquidityAvailable": False}))

        with pytest.raises(NoRouteError):
            await venue.get_quote(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_no_route_message(self):
        venue = venue_with(lambda r: httpx.Response(400, json={"message": "No Route matched"}))

        with pytest.raises(NoRouteError):
            await venue.get_quote(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_server_error(self):
        venue = venue_with(lambda r: httpx.Response(500, text="upstream down"))

        with pytest.raises(QuoteUnavailableError):
            await venue.get_quote(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_malformed_quote(self):
        venue = venue_with(lambda r: httpx.Response(200, json={"liquidityAvailable": True}))

        with pytest.raises(QuoteUnavailableError):
            await venue.get_quote(USDC, USDT, 100_000_000, TAKER, 50)

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out")

        with pytest.raises(QuoteUnavailableError):
            await venue_with(handler).get_quote(USDC, USDT, 100_000_000, TAKER, 50)


class TestVenueFactory:
    def test_dry_run(self):
        assert isinstance(create_venue(Settings(dry_run=True, zerox_api_key="key")), DryRunVenue)

    def test_missing_key_falls_back(self):
        assert isinstance(create_venue(Settings(dry_run=False, zerox_api_key="")), DryRunVenue)

    def test_live(self):
        venue = create_venue(Settings(dry_run=False, zerox_api_key="key", chain_id=8453))

        assert isinstance(venue, ZeroExVenue)
        assert venue.chain_id == 8453
