"""Factory for the configured liquidity venue.

Creates the real 0x venue when an API key is configured and dry-run is off,
otherwise falls back to the simulated venue.
"""

import logging

from swaprelay.config import Settings, get_settings
from swaprelay.routing.base import LiquidityVenue

logger = logging.getLogger(__name__)


def create_venue(settings: Settings | None = None) -> LiquidityVenue:
    settings = settings or get_settings()

    if settings.zerox_api_key and not settings.dry_run:
        from swaprelay.routing.zerox import ZeroExVenue

        return ZeroExVenue(
            api_key=settings.zerox_api_key,
            chain_id=settings.chain_id,
            base_url=settings.zerox_api_url,
            timeout=settings.quote_timeout_seconds,
        )

    if not settings.dry_run:
        logger.warning("ZEROX_API_KEY not set - using simulated venue")

    from swaprelay.routing.dry_run import DryRunVenue

    return DryRunVenue()
