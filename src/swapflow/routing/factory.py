"""Factory for creating venues and the quote aggregator."""

import logging
from typing import Optional

from swapflow.config import get_settings
from swapflow.routing.aggregator import VenueQuoteAggregator
from swapflow.routing.base import Venue

logger = logging.getLogger(__name__)


def create_lifi_venue(api_key: Optional[str] = None) -> Venue:
    """Create LI.FI bridge/aggregator venue.

    Args:
        api_key: LI.FI API key (uses LIFI_API_KEY setting if not provided)
    """
    from swapflow.routing.lifi import LiFiVenue

    settings = get_settings()
    return LiFiVenue(api_key=api_key or settings.lifi_api_key)


def create_pancakeswap_venue() -> Venue:
    """Create PancakeSwap V2 venue (BSC, Ethereum)."""
    from swapflow.routing.pancakeswap import PancakeSwapVenue
    return PancakeSwapVenue()


def create_uniswap_venue() -> Venue:
    """Create Uniswap V2 venue for every network it is deployed on."""
    from swapflow.routing.uniswap import UniswapV2Venue
    return UniswapV2Venue()


def create_jupiter_venue(api_key: Optional[str] = None) -> Venue:
    """Create Jupiter venue for Solana.

    Args:
        api_key: Optional Jupiter API key for higher rate limits
    """
    from swapflow.routing.jupiter import JupiterVenue

    settings = get_settings()
    return JupiterVenue(api_key=api_key or settings.jupiter_api_key)


def create_aggregator(
    include_bridge: bool = True,
    include_amm: bool = True,
    include_solana: bool = True,
) -> VenueQuoteAggregator:
    """Create a quote aggregator with the configured venues.

    Args:
        include_bridge: Include the LI.FI bridge/aggregator venue
        include_amm: Include the PancakeSwap and Uniswap V2 venues
        include_solana: Include the Jupiter venue

    Returns:
        Configured VenueQuoteAggregator
    """
    aggregator = VenueQuoteAggregator()

    if include_amm:
        for venue in (create_pancakeswap_venue(), create_uniswap_venue()):
            aggregator.add_venue(venue)
            logger.info(f"Added {venue.name} venue")

    if include_solana:
        venue = create_jupiter_venue()
        aggregator.add_venue(venue)
        logger.info(f"Added {venue.name} venue")

    if include_bridge:
        venue = create_lifi_venue()
        aggregator.add_venue(venue)
        logger.info(f"Added {venue.name} venue")

    return aggregator
