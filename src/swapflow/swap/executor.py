"""Swap execution engine.

Drives one ``ExecutionAttempt`` through its states:

    PREPARING -> [AWAITING_APPROVAL] -> [AWAITING_NETWORK_SWITCH]
              -> SUBMITTED -> CONFIRMED | REVERTED

Any error before the outcome is known moves the attempt to FAILED and is
re-raised. A revert is an expected outcome: it is handed to the recovery
planner and returned, not raised.

Same-token transfers to another address skip venues and slippage entirely.
"""

import logging
from dataclasses import replace
from typing import Callable, Optional

from swapflow.amounts import from_base_units
from swapflow.approval import ApprovalManager
from swapflow.config import Settings, get_settings
from swapflow.errors import (
    InsufficientBalance,
    NoRecoverableRoute,
    NoRoute,
    SameWalletTransfer,
    StaleQuote,
    SwapError,
    TransactionReverted,
    describe_error,
)
from swapflow.network import ChainContextManager
from swapflow.routing.aggregator import VenueQuoteAggregator
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.slippage import SlippagePolicy, SlippageResult
from swapflow.swap.attempt import AttemptStatus, ExecutionAttempt, ExecutionResult
from swapflow.swap.fee_on_transfer import FeeOnTransferDetector
from swapflow.swap.recovery import RecoveryPlanner
from swapflow.swap.transactions import TransactionBuilder, TransactionRequest, get_transaction_builder
from swapflow.tokens import Token
from swapflow.utils.locks import SignerLock
from swapflow.wallet.base import BalanceReader, WalletProvider

logger = logging.getLogger(__name__)

# Multi-hop paths are re-simulated at 90% of the input
REDUCED_INPUT_NUMERATOR = 9
REDUCED_INPUT_DENOMINATOR = 10

AttemptListener = Callable[[ExecutionAttempt], None]


class SwapExecutor:
    """Executes swaps and direct transfers for one wallet provider."""

    def __init__(
        self,
        aggregator: VenueQuoteAggregator,
        wallet: WalletProvider,
        balances: BalanceReader,
        chain_context: Optional[ChainContextManager] = None,
        approvals: Optional[ApprovalManager] = None,
        slippage_policy: Optional[SlippagePolicy] = None,
        recovery: Optional[RecoveryPlanner] = None,
        builder: Optional[TransactionBuilder] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.aggregator = aggregator
        self.wallet = wallet
        self.balances = balances
        self.chain_context = chain_context or ChainContextManager(wallet, settings=self.settings)
        self.builder = builder or get_transaction_builder()
        self.approvals = approvals or ApprovalManager(
            wallet, balances, self.chain_context, self.builder, self.settings
        )
        self.slippage_policy = slippage_policy or SlippagePolicy(settings=self.settings)
        self.fee_detector = FeeOnTransferDetector(self.slippage_policy, self.settings)
        self.recovery = recovery or RecoveryPlanner(
            aggregator, self.slippage_policy, settings=self.settings, fee_detector=self.fee_detector
        )
        self._listeners: list[AttemptListener] = []

    # ======================
    # Attempt listeners
    # ======================

    def add_listener(self, listener: AttemptListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: AttemptListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        for listener in list(self._listeners):
            listener(attempt)
        return attempt

    def _fail(self, attempt: ExecutionAttempt, error: Exception) -> None:
        if not isinstance(error, SwapError):
            error = SwapError(describe_error(error).message)
        if not attempt.is_terminal:
            failed = attempt.fail(error)
            logger.error(f"Attempt failed in {attempt.status.value}: {error.reason}")
            self._publish(failed)

    # ======================
    # Preparing
    # ======================

    async def _check_balance(self, token: Token, owner: str, amount: int) -> None:
        balance = await self.balances.get_balance(token, owner)
        if balance < amount:
            have = from_base_units(balance, token.decimals)
            need = from_base_units(amount, token.decimals)
            raise InsufficientBalance(
                f"You have {have} {token.symbol or 'tokens'} but need {need}."
            )

    def _venue_for(self, quote: Quote) -> Venue:
        venue = self.aggregator.get_venue(quote.venue)
        if venue is None:
            raise NoRoute(f"Venue {quote.venue} is not available")
        return venue

    @staticmethod
    def _validate_quote(request: SwapRequest, quote: Quote) -> None:
        if not quote.matches(request):
            raise StaleQuote()
        if quote.is_expired:
            seconds_ago = abs(quote.seconds_until_expiry)
            raise StaleQuote(f"Quote expired {seconds_ago:.0f} seconds ago. Please request a new quote.")

    async def _prepare(
        self,
        request: SwapRequest,
        quote: Optional[Quote],
    ) -> tuple[ExecutionAttempt, Venue, Optional[int]]:
        """Validate inputs and compute the minimum output.

        Returns:
            (attempt in PREPARING, venue, reduced-input output for multi-hop)
        """
        if request.is_self_transfer:
            raise SameWalletTransfer()

        amount = request.from_amount_base_units

        if quote is None:
            quote = await self.aggregator.get_quote(request)
        self._validate_quote(request, quote)

        venue = self._venue_for(quote)
        network = request.from_network

        await self._check_balance(request.from_token, request.signer_address, amount)

        reduced_output = None
        if venue.kind == VenueKind.AMM:
            # On-chain output is authoritative over the quoted one
            live_output = (await venue.get_amounts_out(network, amount, quote.path))[-1]
            if live_output <= 0:
                raise NoRoute(f"{venue.name} has no liquidity for this amount anymore")
            if live_output != quote.expected_output_base_units:
                logger.info(
                    f"{venue.name} output moved: {quote.expected_output_base_units} -> {live_output}"
                )
                quote = replace(quote, expected_output_base_units=live_output)

            if quote.is_multi_hop:
                reduced_in = amount * REDUCED_INPUT_NUMERATOR // REDUCED_INPUT_DENOMINATOR
                if reduced_in > 0:
                    reduced_output = (await venue.get_amounts_out(network, reduced_in, quote.path))[-1]

        slippage = self.slippage_policy.evaluate(quote, reduced_output=reduced_output)
        attempt = self._with_slippage(
            ExecutionAttempt(request=request, quote=quote, network=network),
            quote,
            slippage,
        )
        return attempt, venue, reduced_output

    @staticmethod
    def _with_slippage(
        attempt: ExecutionAttempt,
        quote: Quote,
        slippage: SlippageResult,
    ) -> ExecutionAttempt:
        return attempt.update(
            quote=quote,
            amount_out_min_base_units=slippage.amount_out_min_base_units,
            slippage_percent=slippage.slippage_percent,
            warnings=slippage.warnings,
        )

    async def prepare(self, request: SwapRequest, quote: Optional[Quote] = None) -> ExecutionAttempt:
        """Run the preparing step only (no signing).

        Raises:
            SameWalletTransfer, InvalidAmount, StaleQuote, InsufficientBalance, NoRoute
        """
        attempt, _, _ = await self._prepare(request, quote)
        return attempt

    # ======================
    # Executing
    # ======================

    async def execute(self, request: SwapRequest, quote: Optional[Quote] = None) -> ExecutionResult:
        """Execute a swap request (or a direct transfer).

        Args:
            request: The swap request
            quote: Quote to execute; fetched if not given

        Returns:
            ExecutionResult with a CONFIRMED or REVERTED attempt. After a
            revert, ``recovery`` holds a smaller-size candidate or
            ``recovery_error`` explains why there is none.

        Raises:
            SwapError: For failures before the on-chain outcome is known
        """
        # Rejected before any network call
        if request.is_self_transfer:
            raise SameWalletTransfer()

        async with SignerLock(request.signer_address, operation="swap"):
            if request.is_direct_transfer:
                return await self._execute_transfer(request)
            return await self._execute_swap(request, quote)

    async def _ensure_network(self, attempt: ExecutionAttempt) -> ExecutionAttempt:
        network = attempt.request.from_network
        if await self.chain_context.needs_switch(network):
            attempt = self._publish(attempt.advance(AttemptStatus.AWAITING_NETWORK_SWITCH))
        await self.chain_context.ensure_network(network)
        return attempt

    async def _execute_swap(self, request: SwapRequest, quote: Optional[Quote]) -> ExecutionResult:
        attempt, venue, reduced_output = await self._prepare(request, quote)
        self._publish(attempt)
        quote = attempt.quote
        network = request.from_network

        try:
            spender = quote.router_address
            if not request.from_token.is_native and spender:
                state = await self.approvals.check(
                    request.from_token, request.signer_address, spender, quote.from_amount_base_units
                )
                if state.needs_approval:
                    attempt = self._publish(attempt.advance(AttemptStatus.AWAITING_APPROVAL))
                    await self.approvals.ensure_approval(
                        request.from_token,
                        request.signer_address,
                        spender,
                        quote.from_amount_base_units,
                        state=state,
                    )

            attempt = await self._ensure_network(attempt)

            tx = await venue.build_transaction(quote, request, attempt.amount_out_min_base_units)
            if venue.kind == VenueKind.AMM and not quote.is_fee_on_transfer:
                attempt, tx = await self._fee_on_transfer_fallback(attempt, venue, tx, reduced_output)

            logger.info(
                f"Submitting {attempt.quote.venue} swap on {network.key}: "
                f"{attempt.quote.from_amount_base_units} {request.from_token} -> "
                f"min {attempt.amount_out_min_base_units} {request.to_token}"
            )
            tx_hash = await self.wallet.sign_and_send(tx)
            attempt = self._publish(attempt.advance(AttemptStatus.SUBMITTED, transaction_hash=tx_hash))

            receipt = await self.wallet.wait_for_receipt(
                tx_hash, timeout=self.settings.confirmation_timeout_seconds
            )
        except Exception as e:
            self._fail(attempt, e)
            raise

        if receipt.success:
            attempt = self._publish(attempt.advance(AttemptStatus.CONFIRMED))
            logger.info(f"Swap confirmed: {tx_hash}")
            return ExecutionResult(attempt=attempt)

        return await self._handle_revert(attempt, receipt.revert_reason)

    async def _fee_on_transfer_fallback(
        self,
        attempt: ExecutionAttempt,
        venue: Venue,
        tx: TransactionRequest,
        reduced_output: Optional[int],
    ) -> tuple[ExecutionAttempt, TransactionRequest]:
        """Switch to the transfer-tolerant router call if the token takes a fee."""
        route = await self.fee_detector.detect(
            venue, attempt.quote, attempt.request, tx, reduced_output=reduced_output
        )
        if route is None:
            return attempt, tx
        return self._with_slippage(attempt, route.quote, route.slippage), route.transaction

    async def _handle_revert(self, attempt: ExecutionAttempt, revert_reason: Optional[str]) -> ExecutionResult:
        error = TransactionReverted(revert_reason, tx_hash=attempt.transaction_hash)
        attempt = self._publish(attempt.advance(AttemptStatus.REVERTED, error=error))
        logger.error(f"Swap reverted: {attempt.transaction_hash} ({error.reason})")

        try:
            candidate = await self.recovery.plan(attempt.request, revert_reason=error.reason)
        except NoRecoverableRoute as e:
            return ExecutionResult(attempt=attempt, recovery_error=e)
        return ExecutionResult(attempt=attempt, recovery=candidate)

    async def _execute_transfer(self, request: SwapRequest) -> ExecutionResult:
        """Send the same token to another address on the same network."""
        amount = request.from_amount_base_units
        token = request.from_token
        attempt = self._publish(ExecutionAttempt(request=request, network=request.from_network))

        try:
            await self._check_balance(token, request.signer_address, amount)
            attempt = await self._ensure_network(attempt)

            if token.is_native:
                tx = self.builder.build_native_transfer(token.network, request.recipient, amount)
            else:
                tx = self.builder.build_token_transfer(token.network, token.address, request.recipient, amount)

            logger.info(f"Submitting transfer of {amount} {token} to {request.recipient}")
            tx_hash = await self.wallet.sign_and_send(tx)
            attempt = self._publish(attempt.advance(AttemptStatus.SUBMITTED, transaction_hash=tx_hash))

            receipt = await self.wallet.wait_for_receipt(
                tx_hash, timeout=self.settings.confirmation_timeout_seconds
            )
        except Exception as e:
            self._fail(attempt, e)
            raise

        if receipt.success:
            attempt = self._publish(attempt.advance(AttemptStatus.CONFIRMED))
            logger.info(f"Transfer confirmed: {tx_hash}")
            return ExecutionResult(attempt=attempt)

        # No smaller trade can fix a failed transfer
        error = TransactionReverted(receipt.revert_reason, tx_hash=tx_hash)
        attempt = self._publish(attempt.advance(AttemptStatus.REVERTED, error=error))
        logger.error(f"Transfer reverted: {tx_hash} ({error.reason})")
        return ExecutionResult(attempt=attempt)


def create_swap_executor(
    wallet: WalletProvider,
    balances: Optional[BalanceReader] = None,
    aggregator: Optional[VenueQuoteAggregator] = None,
    slippage_policy: Optional[SlippagePolicy] = None,
) -> SwapExecutor:
    """Create a swap executor wired to the configured venues.

    Args:
        wallet: Wallet provider that signs transactions
        balances: Balance reader (defaults to web3 RPC reads)
        aggregator: Quote aggregator (defaults to all configured venues)
        slippage_policy: Slippage policy (defaults to automatic)
    """
    from swapflow.routing.factory import create_aggregator

    if balances is None:
        from swapflow.wallet.evm import Web3BalanceReader
        balances = Web3BalanceReader()

    return SwapExecutor(
        aggregator=aggregator or create_aggregator(),
        wallet=wallet,
        balances=balances,
        slippage_policy=slippage_policy,
    )
