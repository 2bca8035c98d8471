"""USD price feeds used to value gas cost against the output asset."""

import logging
import time
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

import httpx

from swaprelay.errors import PriceUnavailableError

logger = logging.getLogger(__name__)


class PriceOracle(ABC):
    """Read-only USD price source keyed by CoinGecko-style ids."""

    @abstractmethod
    async def get_usd_prices(self, ids: list[str]) -> dict[str, Decimal]:
        """Return a USD price for every requested id.

        Raises:
            PriceUnavailableError: any id could not be priced
        """
        pass

    async def get_usd_price(self, coin_id: str) -> Decimal:
        prices = await self.get_usd_prices([coin_id])
        return prices[coin_id]


class CoinGeckoOracle(PriceOracle):
    """CoinGecko ``/simple/price`` feed with a short in-memory cache."""

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 15.0,
        cache_ttl: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._transport = transport
        self._cache: dict[str, tuple[Decimal, float]] = {}

    def _build_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["X-CG-Demo-API-Key"] = self.api_key
        return headers

    def _cached(self, coin_id: str) -> Optional[Decimal]:
        entry = self._cache.get(coin_id)
        if entry and time.time() - entry[1] < self.cache_ttl:
            return entry[0]
        return None

    async def get_usd_prices(self, ids: list[str]) -> dict[str, Decimal]:
        prices: dict[str, Decimal] = {}
        missing = []
        for coin_id in ids:
            cached = self._cached(coin_id)
            if cached is not None:
                prices[coin_id] = cached
            else:
                missing.append(coin_id)

        if not missing:
            return prices

        params = {"ids": ",".join(missing), "vs_currencies": "usd"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self.base_url}/simple/price",
                    headers=self._build_headers(),
                    params=params,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"CoinGecko price request failed: {e}")
            raise PriceUnavailableError(f"Price feed unavailable: {e}") from e

        now = time.time()
        for coin_id in missing:
            usd = (data.get(coin_id) or {}).get("usd")
            if usd is None:
                raise PriceUnavailableError(f"No USD price for {coin_id}")
            price = Decimal(str(usd))
            if price <= 0:
                raise PriceUnavailableError(f"Non-positive USD price for {coin_id}")
            self._cache[coin_id] = (price, now)
            prices[coin_id] = price

        return prices


class StaticPriceOracle(PriceOracle):
    """Fixed prices, for dry-run and tests."""

    def __init__(self, prices: dict[str, Decimal]):
        self.prices = {k: Decimal(str(v)) for k, v in prices.items()}

    async def get_usd_prices(self, ids: list[str]) -> dict[str, Decimal]:
        result = {}
        for coin_id in ids:
            if coin_id not in self.prices:
                raise PriceUnavailableError(f"No USD price for {coin_id}")
            result[coin_id] = self.prices[coin_id]
        return result


DRY_RUN_PRICES = {
    "ethereum": Decimal("3200"),
    "weth": Decimal("3200"),
    "usd-coin": Decimal("1"),
    "tether": Decimal("1"),
    "dai": Decimal("1"),
    "euro-coin": Decimal("1.08"),
}


def create_oracle(settings) -> PriceOracle:
    """Real CoinGecko feed unless dry-run is enabled."""
    if settings.dry_run:
        return StaticPriceOracle(DRY_RUN_PRICES)
    return CoinGeckoOracle(
        api_key=settings.coingecko_api_key,
        base_url=settings.coingecko_api_url,
        timeout=settings.rpc_timeout_seconds,
    )
