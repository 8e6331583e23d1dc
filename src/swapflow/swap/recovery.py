"""Recovery after a reverted swap.

Retries the quote at decreasing fractions of the original amount and offers
the first one that still has a route. Nothing is ever submitted from here;
the candidate goes back to the user.
"""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from swapflow.config import Settings, get_settings
from swapflow.errors import NoRecoverableRoute, SwapError
from swapflow.routing.aggregator import VenueQuoteAggregator
from swapflow.routing.base import Quote, SwapRequest, VenueKind
from swapflow.slippage import MAX_SLIPPAGE, SlippagePolicy
from swapflow.swap.attempt import RecoveryCandidate
from swapflow.swap.fee_on_transfer import FeeOnTransferDetector

logger = logging.getLogger(__name__)


class RecoveryPlanner:
    """Finds a smaller trade size that still routes after a revert."""

    def __init__(
        self,
        aggregator: VenueQuoteAggregator,
        slippage_policy: Optional[SlippagePolicy] = None,
        fractions: Optional[list[Decimal]] = None,
        settings: Optional[Settings] = None,
        fee_detector: Optional[FeeOnTransferDetector] = None,
    ):
        self.aggregator = aggregator
        self.settings = settings or get_settings()
        self.slippage_policy = slippage_policy or SlippagePolicy(settings=self.settings)
        self.fractions = fractions or self.settings.recovery_fraction_list
        self.slippage_buffer = Decimal(self.settings.recovery_slippage_buffer_percent)
        self.fee_detector = fee_detector or FeeOnTransferDetector(self.slippage_policy, self.settings)

    async def plan(self, request: SwapRequest, revert_reason: Optional[str] = None) -> RecoveryCandidate:
        """Find the largest fraction of the original amount with a route.

        Raises:
            NoRecoverableRoute: If no fraction returns a non-zero quote
        """
        original = request.from_amount_base_units
        logger.info(f"Planning recovery for {request.from_token} -> {request.to_token} (revert: {revert_reason})")

        for fraction in self.fractions:
            amount = int((Decimal(original) * fraction).to_integral_value(rounding=ROUND_DOWN))
            if amount <= 0:
                continue

            candidate_request = request.with_amount_base_units(amount)
            try:
                quote = await self.aggregator.get_quote(candidate_request)
            except SwapError as e:
                logger.debug(f"Recovery at {fraction:%} has no route: {e}")
                continue

            if quote.expected_output_base_units <= 0:
                continue

            quote = await self._recheck_fee_on_transfer(candidate_request, quote)

            recommended = min(
                self.slippage_policy.slippage_for(quote) + self.slippage_buffer,
                MAX_SLIPPAGE,
            )
            logger.info(
                f"Recovery candidate at {fraction:%}: {amount} -> {quote.expected_output_base_units} "
                f"via {quote.venue} (recommended slippage {recommended}%)"
            )
            return RecoveryCandidate(
                fraction_of_original_amount=fraction,
                amount_base_units=amount,
                request=candidate_request,
                quote=quote,
                recommended_slippage_percent=recommended,
                revert_reason=revert_reason,
            )

        logger.error(f"No recoverable route for {request.from_token} -> {request.to_token}")
        raise NoRecoverableRoute(revert_reason=revert_reason or "unknown reason")

    async def _recheck_fee_on_transfer(self, request: SwapRequest, quote: Quote) -> Quote:
        """Detect a transfer fee on the input token at the candidate size."""
        if quote.is_fee_on_transfer or request.from_token.is_native:
            return quote
        venue = self.aggregator.get_venue(quote.venue)
        if venue is None or venue.kind != VenueKind.AMM:
            return quote

        slippage = self.slippage_policy.evaluate(quote)
        tx = await venue.build_transaction(quote, request, slippage.amount_out_min_base_units)
        # Approval settled before the reverted swap
        route = await self.fee_detector.detect(venue, quote, request, tx, max_attempts=1)
        return route.quote if route else quote
