"""Fee-on-transfer detection by simulating both router variants.

A token that takes a cut on every transfer makes the standard V2 swap call
revert with ``TRANSFER_FROM_FAILED``. The same revert shows up when an
approval is not yet visible to the node, so the standard call is simulated
again under a retry budget before anything is concluded. The token only
counts as fee-on-transfer when the standard call keeps failing and the
``...SupportingFeeOnTransferTokens`` call simulates cleanly.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from swapflow.config import Settings, get_settings
from swapflow.errors import TransactionReverted
from swapflow.routing.amm import TRANSFER_FROM_FAILED
from swapflow.routing.base import Quote, SwapRequest, Venue
from swapflow.slippage import SlippagePolicy, SlippageResult
from swapflow.swap.transactions import TransactionRequest
from swapflow.utils.retry import retry_async

logger = logging.getLogger(__name__)


class _TransferFromFailed(TransactionReverted):
    retryable = True


@dataclass(frozen=True)
class FeeOnTransferRoute:
    """Transfer-tolerant replacement for a standard swap call."""

    quote: Quote
    slippage: SlippageResult
    transaction: TransactionRequest


class FeeOnTransferDetector:
    """Decides whether a swap needs the transfer-tolerant router call."""

    def __init__(
        self,
        slippage_policy: Optional[SlippagePolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.slippage_policy = slippage_policy or SlippagePolicy(settings=self.settings)

    async def detect(
        self,
        venue: Venue,
        quote: Quote,
        request: SwapRequest,
        tx: TransactionRequest,
        reduced_output: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> Optional[FeeOnTransferRoute]:
        """Simulate ``tx`` and fall back to the tolerant call if needed.

        Args:
            venue: AMM venue that built ``tx``
            quote: Quote ``tx`` was built from
            request: The swap request
            tx: Standard router call
            reduced_output: Reduced-input output for multi-hop paths
            max_attempts: Simulations of the standard call before giving up
                on it (default: the approval retry budget)

        Returns:
            The tolerant route if the token takes a transfer fee, else None.
            The venue has already been told about the token in that case.
        """
        sender = request.signer_address

        async def simulate() -> None:
            try:
                await venue.simulate(tx, sender)
            except TransactionReverted as e:
                if TRANSFER_FROM_FAILED in e.reason.upper():
                    raise _TransferFromFailed(e.reason) from e
                raise

        try:
            await retry_async(
                simulate,
                max_attempts=max_attempts or self.settings.approval_max_attempts,
                delay=self.settings.approval_retry_delay_seconds,
                backoff=self.settings.retry_backoff,
                retry_on=(_TransferFromFailed,),
                operation=f"swap simulation on {venue.name}",
            )
        except _TransferFromFailed as e:
            logger.info(f"Standard call keeps failing ({e.reason}); trying the transfer-tolerant call")
        except TransactionReverted as e:
            logger.warning(f"Pre-submission simulation reverted ({e.reason}); the receipt decides")
            return None
        else:
            return None

        tolerant_quote = quote.as_fee_on_transfer()
        slippage = self.slippage_policy.evaluate(tolerant_quote, reduced_output=reduced_output)
        tolerant_tx = await venue.build_transaction(tolerant_quote, request, slippage.amount_out_min_base_units)
        try:
            await venue.simulate(tolerant_tx, sender)
        except TransactionReverted as e:
            logger.warning(f"Transfer-tolerant simulation also reverted ({e.reason})")
            return None

        logger.warning(f"{request.from_token} takes a transfer fee; using the tolerant router call")
        venue.mark_fee_on_transfer(request.from_token)
        return FeeOnTransferRoute(quote=tolerant_quote, slippage=slippage, transaction=tolerant_tx)
