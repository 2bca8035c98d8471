"""0x Swap API (v2, allowance-holder) integration.

API docs: https://0x.org/docs/api#tag/Swap

The relayer is the taker: it holds the pulled funds, approves the
allowance-holder contract and submits the returned transaction itself.
"""

import logging
from typing import Optional

import httpx

from swaprelay.chains import TokenConfig
from swaprelay.errors import NoRouteError, QuoteUnavailableError
from swaprelay.routing.base import LiquidityVenue, SwapTransaction, VenueQuote

logger = logging.getLogger(__name__)

ZEROX_API = "https://api.0x.org"


class ZeroExVenue(LiquidityVenue):
    """0x aggregator venue."""

    def __init__(
        self,
        api_key: str,
        chain_id: int = 1,
        base_url: str = ZEROX_API,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.chain_id = chain_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "0x"

    def _get_headers(self) -> dict:
        return {
            "Accept": "application/json",
            "0x-api-key": self.api_key,
            "0x-version": "v2",
        }

    async def _request(self, path: str, params: dict) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._get_headers(), params=params)
        except httpx.HTTPError as e:
            logger.error(f"0x request failed: {e}")
            raise QuoteUnavailableError(f"0x unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 404:
            raise NoRouteError("No route found for this pair")

        if response.status_code != 200:
            message = data.get("message") or data.get("name") or response.text[:200]
            if "no route matched" in str(message).lower():
                raise NoRouteError("No route found for this pair")
            logger.error(f"0x API error {response.status_code}: {message}")
            raise QuoteUnavailableError(f"0x error {response.status_code}: {message}")

        if data.get("liquidityAvailable") is False:
            raise NoRouteError("Insufficient liquidity for this pair")

        return data

    def _params(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        taker: str,
        slippage_bps: int,
    ) -> dict:
        return {
            "chainId": str(self.chain_id),
            "sellToken": sell_token.address,
            "buyToken": buy_token.address,
            "sellAmount": str(sell_amount),
            "taker": taker,
            "slippageBps": str(slippage_bps),
        }

    def _parse(self, data: dict, sell_token: TokenConfig, buy_token: TokenConfig, sell_amount: int) -> VenueQuote:
        try:
            buy_amount = int(data["buyAmount"])
            min_buy_amount = int(data.get("minBuyAmount") or buy_amount)
        except (KeyError, TypeError, ValueError) as e:
            raise QuoteUnavailableError(f"Malformed 0x quote: {e}") from e

        issues = data.get("issues") or {}
        allowance = issues.get("allowance") or {}
        allowance_target = allowance.get("spender") or data.get("allowanceTarget")

        transaction = None
        tx_data = data.get("transaction")
        if tx_data:
            transaction = SwapTransaction(
                to=tx_data["to"],
                data=tx_data["data"],
                value=int(tx_data.get("value") or 0),
                gas=int(tx_data["gas"]) if tx_data.get("gas") else None,
            )
            allowance_target = allowance_target or tx_data["to"]

        gas = data.get("gas") or (tx_data or {}).get("gas")

        return VenueQuote(
            venue=self.name,
            sell_token=sell_token.symbol,
            buy_token=buy_token.symbol,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            min_buy_amount=min_buy_amount,
            allowance_target=allowance_target,
            transaction=transaction,
            estimated_gas=int(gas) if gas else None,
        )

    async def get_quote(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        taker: str,
        slippage_bps: int,
    ) -> VenueQuote:
        data = await self._request(
            "/swap/allowance-holder/price",
            self._params(sell_token, buy_token, sell_amount, taker, slippage_bps),
        )
        quote = self._parse(data, sell_token, buy_token, sell_amount)
        logger.info(
            f"0x price: {sell_amount} {sell_token.symbol} -> {quote.buy_amount} {buy_token.symbol} "
            f"(min {quote.min_buy_amount})"
        )
        return quote

    async def get_swap_transaction(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        taker: str,
        slippage_bps: int,
    ) -> VenueQuote:
        data = await self._request(
            "/swap/allowance-holder/quote",
            self._params(sell_token, buy_token, sell_amount, taker, slippage_bps),
        )
        quote = self._parse(data, sell_token, buy_token, sell_amount)
        if quote.transaction is None:
            raise QuoteUnavailableError("0x quote did not include a transaction")
        return quote
