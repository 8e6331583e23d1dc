"""Venue quote aggregation.

Classifies a request by how far it travels (same network, across networks of
one settlement family, across families), picks the venues that can serve it
in priority order and returns the first usable quote.

Every fetch is tagged with a generation number. Editing the request bumps
the generation, and results of older generations are dropped silently so a
slow response can never overwrite a newer one.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from swapflow.errors import NoRoute, SwapError
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind

logger = logging.getLogger(__name__)

# Same-network AMM priority by network (venue names, first tried first)
AMM_PRIORITY: dict[str, list[str]] = {
    "bsc": ["PancakeSwap", "Uniswap V2"],
    "ethereum": ["Uniswap V2", "PancakeSwap"],
    "polygon": ["Uniswap V2"],
    "arbitrum": ["Uniswap V2"],
    "optimism": ["Uniswap V2"],
    "base": ["Uniswap V2"],
    "avalanche": ["Uniswap V2"],
    "solana": ["Jupiter"],
}


class RouteKind(str, Enum):
    SAME_NETWORK = "same_network"
    CROSS_NETWORK = "cross_network"
    CROSS_FAMILY = "cross_family"


def classify(request: SwapRequest) -> RouteKind:
    """Classify a request by the networks it touches."""
    if request.from_network.key == request.to_network.key:
        return RouteKind.SAME_NETWORK
    if request.from_network.family == request.to_network.family:
        return RouteKind.CROSS_NETWORK
    return RouteKind.CROSS_FAMILY


@dataclass(frozen=True)
class QuoteResult:
    """Outcome of one generation-tagged fetch."""

    generation: int
    request: SwapRequest
    quote: Optional[Quote] = None
    error: Optional[SwapError] = None


class VenueQuoteAggregator:
    """Finds a quote for a request across the registered venues."""

    def __init__(self, venues: Optional[list[Venue]] = None):
        self.venues: list[Venue] = venues or []
        self._generation = 0

    def add_venue(self, venue: Venue) -> None:
        """Add a venue."""
        self.venues.append(venue)

    def get_venue(self, name: str) -> Optional[Venue]:
        """Find venue by name."""
        for venue in self.venues:
            if venue.name == name:
                return venue
        return None

    def venues_for(self, request: SwapRequest) -> list[Venue]:
        """Venues to try for a request, in priority order."""
        kind = classify(request)
        bridges = [v for v in self.venues if v.kind == VenueKind.BRIDGE and v.supports(request)]

        if kind != RouteKind.SAME_NETWORK:
            return bridges

        ordered = []
        for name in AMM_PRIORITY.get(request.from_network.key, []):
            venue = self.get_venue(name)
            if venue is not None and venue.supports(request):
                ordered.append(venue)

        # Networks without a local venue fall back to the bridge/aggregator
        return ordered or bridges

    async def get_quote(self, request: SwapRequest) -> Quote:
        """Get the first usable quote, trying venues in priority order.

        Each venue is asked once. A venue failure moves on to the next one.

        Raises:
            InvalidAmount: If the request amount is invalid
            NoRoute: If no venue returns a non-zero quote
        """
        # Validates the amount before any venue call
        amount = request.from_amount_base_units
        kind = classify(request)
        venues = self.venues_for(request)

        logger.info(
            f"Finding quote: {request.from_amount_decimal} {request.from_token} -> "
            f"{request.to_token} ({kind.value}, venues: {[v.name for v in venues]})"
        )

        if not venues:
            raise NoRoute(
                f"No venue supports {request.from_network.name} -> {request.to_network.name}"
            )

        reasons = []
        for venue in venues:
            try:
                quote = await venue.quote(request)
            except NoRoute as e:
                reasons.extend(e.reasons or [str(e)])
                logger.debug(f"{venue.name} has no route: {e}")
                continue
            except Exception as e:
                error_msg = f"{venue.name} quote failed: {type(e).__name__}: {e}"
                logger.warning(error_msg)
                reasons.append(error_msg)
                continue

            if quote.expected_output_base_units <= 0:
                reasons.append(f"{venue.name} returned zero output")
                continue

            logger.info(
                f"Selected {venue.name}: {amount} -> {quote.expected_output_base_units} "
                f"(path: {quote.describe_path()}, impact: {quote.price_impact_percent}%)"
            )
            return quote

        logger.error(f"No route for {request.from_token} -> {request.to_token}: {'; '.join(reasons)}")
        raise NoRoute(reasons=reasons)

    # ======================
    # Generation tracking
    # ======================

    @property
    def generation(self) -> int:
        return self._generation

    def invalidate(self) -> int:
        """Mark every in-flight fetch as stale."""
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    async def fetch(self, request: SwapRequest) -> Optional[QuoteResult]:
        """Fetch a quote tagged with the current generation.

        Returns:
            The result (quote or error) if it is still current, otherwise
            None. Stale results are dropped, never raised.
        """
        generation = self._generation
        try:
            result = QuoteResult(generation, request, quote=await self.get_quote(request))
        except SwapError as e:
            result = QuoteResult(generation, request, error=e)

        if not self.is_current(generation):
            logger.warning(f"Discarding stale quote result (generation {generation} < {self._generation})")
            return None
        return result


class QuoteDebouncer:
    """Runs a callback once the input has been quiet for ``delay`` seconds.

    Each ``trigger`` cancels the pending run and restarts the timer.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float = 0.1):
        self.callback = callback
        self.delay = delay
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        await self.callback()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def wait(self) -> None:
        """Wait for the pending run (tests and shutdown)."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
