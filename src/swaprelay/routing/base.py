"""Abstract liquidity venue interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from swaprelay.chains import TokenConfig

logger = logging.getLogger(__name__)


@dataclass
class SwapTransaction:
    """Executable call returned by a venue for a firm quote."""

    to: str
    data: str
    value: int = 0
    gas: Optional[int] = None


@dataclass
class VenueQuote:
    """A quote from a liquidity venue, amounts in integer base units."""

    venue: str
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int           # Expected output
    min_buy_amount: int       # Output guaranteed by the venue's slippage bound
    allowance_target: Optional[str] = None
    transaction: Optional[SwapTransaction] = None
    estimated_gas: Optional[int] = None
    is_simulated: bool = False

    @property
    def is_firm(self) -> bool:
        """Check if the quote carries an executable transaction."""
        return self.transaction is not None


class LiquidityVenue(ABC):
    """Abstract base class for liquidity venues."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Venue name identifier."""
        pass

    @abstractmethod
    async def get_quote(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        taker: str,
        slippage_bps: int,
    ) -> VenueQuote:
        """Get an indicative quote (no transaction).

        Raises:
            NoRouteError: the venue has no path for the pair/amount
            QuoteUnavailableError: the venue failed or returned garbage
        """
        pass

    @abstractmethod
    async def get_swap_transaction(
        self,
        sell_token: TokenConfig,
        buy_token: TokenConfig,
        sell_amount: int,
        taker: str,
        slippage_bps: int,
    ) -> VenueQuote:
        """Get a firm quote with an executable transaction for ``taker``."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        return None
