"""Live swap state for one user: request, quote and attempt.

``SwapSession`` is the only owner of this state. Every edit replaces the
request, drops the quote and attempt, invalidates in-flight fetches and
schedules a debounced refetch. Quote results are applied only if their
generation is still current.
"""

import logging
from typing import Callable, Optional

from swapflow.config import Settings, get_settings
from swapflow.errors import StaleQuote, SwapError
from swapflow.routing.aggregator import QuoteDebouncer, VenueQuoteAggregator
from swapflow.routing.base import Quote, SwapRequest
from swapflow.swap.attempt import ExecutionAttempt, ExecutionResult, RecoveryCandidate
from swapflow.swap.executor import SwapExecutor

logger = logging.getLogger(__name__)


class SwapSession:
    """Owns the current request, quote and execution attempt."""

    def __init__(
        self,
        aggregator: VenueQuoteAggregator,
        executor: Optional[SwapExecutor] = None,
        settings: Optional[Settings] = None,
        on_change: Optional[Callable[["SwapSession"], None]] = None,
    ):
        self.settings = settings or get_settings()
        self.aggregator = aggregator
        self.executor = executor
        self.on_change = on_change

        self.request: Optional[SwapRequest] = None
        self.quote: Optional[Quote] = None
        self.quote_error: Optional[SwapError] = None
        self.attempt: Optional[ExecutionAttempt] = None
        self.recovery: Optional[RecoveryCandidate] = None

        self._debouncer = QuoteDebouncer(self._refresh, delay=self.settings.quote_debounce_ms / 1000)
        if executor is not None:
            executor.add_listener(self._on_attempt)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    # ======================
    # Inputs
    # ======================

    def set_request(self, request: Optional[SwapRequest]) -> None:
        """Replace the request and schedule a refetch."""
        self.aggregator.invalidate()
        self.request = request
        self.quote = None
        self.quote_error = None
        self.attempt = None
        self.recovery = None

        if request is None:
            self._debouncer.cancel()
        else:
            self._debouncer.trigger()
        self._changed()

    def edit(self, **changes) -> None:
        """Change request fields (amount, tokens, recipient)."""
        if self.request is None:
            raise ValueError("No request to edit")
        self.set_request(self.request.with_changes(**changes))

    def clear(self) -> None:
        self.set_request(None)

    @property
    def refresh_pending(self) -> bool:
        return self._debouncer.pending

    async def wait_for_quote(self) -> Optional[Quote]:
        """Wait for the pending debounced fetch."""
        await self._debouncer.wait()
        return self.quote

    async def _refresh(self) -> None:
        request = self.request
        if request is None:
            return

        result = await self.aggregator.fetch(request)
        if result is None or result.request is not self.request:
            return

        self.quote = result.quote
        self.quote_error = result.error
        if result.error is not None:
            logger.info(f"No quote for current request: {result.error.reason}")
        self._changed()

    # ======================
    # Execution
    # ======================

    def _on_attempt(self, attempt: ExecutionAttempt) -> None:
        if attempt.request is self.request:
            self.attempt = attempt
            self._changed()

    async def execute(self) -> ExecutionResult:
        """Execute the current request with the current quote.

        Raises:
            StaleQuote: If there is no request or no quote for it
            SwapError: If execution fails before the outcome is known
        """
        if self.executor is None:
            raise RuntimeError("Session has no executor")
        request = self.request
        if request is None:
            raise StaleQuote("Nothing to execute.")

        quote = self.quote
        if not request.is_direct_transfer and (quote is None or not quote.matches(request)):
            raise StaleQuote("Wait for a fresh quote before swapping.")

        result = await self.executor.execute(request, quote)

        # An edit during execution owns the state now
        if self.request is request:
            self.attempt = result.attempt
            self.recovery = result.recovery
            self._changed()
        return result

    def accept_recovery(self) -> SwapRequest:
        """Turn the recovery candidate into the current request.

        The candidate's quote becomes the current quote; nothing is
        submitted until ``execute`` is called again.
        """
        candidate = self.recovery
        if candidate is None:
            raise ValueError("No recovery candidate")

        self.aggregator.invalidate()
        self._debouncer.cancel()
        self.request = candidate.request
        self.quote = candidate.quote
        self.quote_error = None
        self.attempt = None
        self.recovery = None
        self._changed()
        return candidate.request

    def close(self) -> None:
        self._debouncer.cancel()
        if self.executor is not None:
            self.executor.remove_listener(self._on_attempt)
