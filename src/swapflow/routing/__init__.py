"""Routing module for swap quote aggregation.

Venues:
- PancakeSwap: V2 AMM on BSC and Ethereum
- Uniswap V2: V2 AMM on Ethereum and other EVM networks
- Jupiter: Solana order routing
- LI.FI: bridge/aggregator, the only cross-network venue
"""

from swapflow.routing.aggregator import (
    QuoteDebouncer,
    QuoteResult,
    RouteKind,
    VenueQuoteAggregator,
    classify,
)
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.routing.factory import create_aggregator

__all__ = [
    "Quote",
    "QuoteDebouncer",
    "QuoteResult",
    "RouteKind",
    "SwapRequest",
    "Venue",
    "VenueKind",
    "VenueQuoteAggregator",
    "classify",
    "create_aggregator",
]
