"""Tests for the swap execution engine."""

import time
from dataclasses import replace
from decimal import Decimal

import pytest

from conftest import (
    BSC_WBNB,
    ONE,
    RECIPIENT,
    SIGNER,
    FakeBalanceReader,
    FakeVenue,
    FakeWallet,
    make_request,
)
from swapflow.errors import (
    ApprovalRejected,
    AttemptInProgress,
    ConfirmationTimeout,
    InsufficientBalance,
    NoRecoverableRoute,
    SameWalletTransfer,
    StaleQuote,
    TransactionReverted,
    UserRejected,
)
from swapflow.network import ChainContextManager, WalletContext
from swapflow.routing.aggregator import VenueQuoteAggregator
from swapflow.routing.base import VenueKind
from swapflow.slippage import apply_slippage
from swapflow.swap.attempt import AttemptStatus
from swapflow.swap.executor import SwapExecutor
from swapflow.swap.transactions import ERC20_TRANSFER_SELECTOR
from swapflow.utils.locks import SignerLock


def make_executor(venue, wallet, balances, settings):
    aggregator = VenueQuoteAggregator([venue])
    chain_context = ChainContextManager(wallet, context=WalletContext(), settings=settings)
    executor = SwapExecutor(aggregator, wallet, balances, chain_context=chain_context, settings=settings)
    attempts = []
    executor.add_listener(attempts.append)
    return executor, attempts


class TestPreparing:
    """Tests for checks before anything is signed."""

    @pytest.mark.asyncio
    async def test_self_transfer_rejected_before_any_call(self, settings, venue, usdt):
        wallet = FakeWallet()
        balances = FakeBalanceReader()
        executor, attempts = make_executor(venue, wallet, balances, settings)

        with pytest.raises(SameWalletTransfer):
            await executor.execute(make_request(usdt, usdt, recipient=SIGNER))

        assert venue.calls == []
        assert wallet.sent == []
        assert balances.balance_reads == 0
        assert attempts == []

    @pytest.mark.asyncio
    async def test_quote_for_other_amount_is_stale(self, settings, venue, bnb, usdt):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)
        quote = await venue.quote(make_request(bnb, usdt, amount="2"))

        with pytest.raises(StaleQuote):
            await executor.execute(make_request(bnb, usdt, amount="1"), quote)
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_expired_quote(self, settings, venue, bnb, usdt):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)
        request = make_request(bnb, usdt)
        quote = replace(await venue.quote(request), timestamp=time.time() - 120)

        with pytest.raises(StaleQuote, match="expired"):
            await executor.execute(request, quote)
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, settings, venue, bnb, usdt):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(balance=ONE // 2), settings)

        with pytest.raises(InsufficientBalance, match="need 1"):
            await executor.execute(make_request(bnb, usdt))
        assert wallet.sent == []

    @pytest.mark.asyncio
    async def test_prepare_uses_live_amm_output(self, settings, venue, bnb, usdt):
        executor, _ = make_executor(venue, FakeWallet(), FakeBalanceReader(), settings)
        request = make_request(bnb, usdt)
        quote = await venue.quote(request)
        venue.rate = 3

        attempt = await executor.prepare(request, quote)

        assert attempt.quote.expected_output_base_units == 3 * ONE
        assert attempt.amount_out_min_base_units == apply_slippage(3 * ONE, Decimal("0.5"))

    @pytest.mark.asyncio
    async def test_multi_hop_uses_reduced_input_minimum(self, settings, usdt, cake):
        venue = FakeVenue(via=BSC_WBNB)
        executor, _ = make_executor(venue, FakeWallet(), FakeBalanceReader(), settings)

        attempt = await executor.prepare(make_request(usdt, cake))

        assert attempt.slippage_percent == Decimal("3")
        assert attempt.amount_out_min_base_units == apply_slippage(18 * ONE // 10, Decimal("3"))


class TestExecuteSwap:
    """Tests for the swap flow."""

    @pytest.mark.asyncio
    async def test_confirmed_swap(self, settings, venue, bnb, usdt):
        wallet = FakeWallet()
        executor, attempts = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(bnb, usdt))

        assert result.success
        assert result.transaction_hash.startswith("0x")
        assert result.attempt.statuses == [
            AttemptStatus.PREPARING,
            AttemptStatus.SUBMITTED,
            AttemptStatus.CONFIRMED,
        ]
        assert [a.status for a in attempts] == [
            AttemptStatus.PREPARING,
            AttemptStatus.SUBMITTED,
            AttemptStatus.CONFIRMED,
        ]
        assert len(wallet.sent) == 1
        _, amount_min = venue.builds[0]
        assert amount_min == apply_slippage(2 * ONE, Decimal("0.5"))
        assert amount_min == result.attempt.amount_out_min_base_units

    @pytest.mark.asyncio
    async def test_approval_then_swap(self, settings, venue, usdt, cake):
        wallet = FakeWallet()
        balances = FakeBalanceReader(allowances=[0, 0, 2**256 - 1])
        executor, _ = make_executor(venue, wallet, balances, settings)

        result = await executor.execute(make_request(usdt, cake))

        assert result.success
        assert AttemptStatus.AWAITING_APPROVAL in result.attempt.statuses
        # Approval first, then the swap
        assert len(wallet.sent) == 2
        assert wallet.sent[0].to == usdt.address

    @pytest.mark.asyncio
    async def test_allowance_read_once_before_approving(self, settings, venue, usdt, cake):
        wallet = FakeWallet()
        balances = FakeBalanceReader(allowances=[0, 2**256 - 1])
        executor, _ = make_executor(venue, wallet, balances, settings)

        result = await executor.execute(make_request(usdt, cake))

        assert result.success
        # One read before approving, one after
        assert balances.allowance_reads == 2
        assert len(wallet.sent) == 2

    @pytest.mark.asyncio
    async def test_rejected_approval_fails_attempt(self, settings, venue, usdt, cake):
        wallet = FakeWallet(reject_sign=True)
        executor, attempts = make_executor(venue, wallet, FakeBalanceReader(allowances=[0]), settings)

        with pytest.raises(ApprovalRejected):
            await executor.execute(make_request(usdt, cake))

        assert attempts[-1].status == AttemptStatus.FAILED
        assert isinstance(attempts[-1].error, ApprovalRejected)

    @pytest.mark.asyncio
    async def test_switches_network_first(self, settings, venue, bnb, usdt):
        wallet = FakeWallet(network="ethereum")
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(bnb, usdt))

        assert AttemptStatus.AWAITING_NETWORK_SWITCH in result.attempt.statuses
        assert wallet.switch_requests == ["bsc"]
        assert wallet.sent[0].chain_id == 56

    @pytest.mark.asyncio
    async def test_rejected_signature(self, settings, venue, bnb, usdt):
        wallet = FakeWallet(reject_sign=True)
        executor, attempts = make_executor(venue, wallet, FakeBalanceReader(), settings)

        with pytest.raises(UserRejected):
            await executor.execute(make_request(bnb, usdt))

        assert attempts[-1].status == AttemptStatus.FAILED

    @pytest.mark.asyncio
    async def test_confirmation_timeout_keeps_hash(self, settings, venue, bnb, usdt):
        wallet = FakeWallet(outcomes=["timeout"])
        executor, attempts = make_executor(venue, wallet, FakeBalanceReader(), settings)

        with pytest.raises(ConfirmationTimeout):
            await executor.execute(make_request(bnb, usdt))

        assert attempts[-1].status == AttemptStatus.FAILED
        assert attempts[-1].transaction_hash is not None
        assert AttemptStatus.SUBMITTED in attempts[-1].statuses

    @pytest.mark.asyncio
    async def test_revert_offers_recovery_without_resubmitting(self, settings, venue, bnb, usdt):
        """Only 20% of the amount still routes after the revert."""
        wallet = FakeWallet(outcomes=["revert"])
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)
        request = make_request(bnb, usdt)
        quote = await venue.quote(request)
        venue.max_amount = ONE // 5

        result = await executor.execute(request, quote)

        assert not result.success
        assert result.attempt.status == AttemptStatus.REVERTED
        assert isinstance(result.attempt.error, TransactionReverted)
        assert "INSUFFICIENT_OUTPUT_AMOUNT" in result.attempt.error.reason
        assert result.recovery is not None
        assert result.recovery.fraction_of_original_amount == Decimal("0.2")
        assert result.recovery.amount_base_units == ONE // 5
        assert len(wallet.sent) == 1

    @pytest.mark.asyncio
    async def test_revert_without_recoverable_route(self, settings, venue, bnb, usdt):
        wallet = FakeWallet(outcomes=["revert"])
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)
        request = make_request(bnb, usdt)
        quote = await venue.quote(request)
        venue.max_amount = 0

        result = await executor.execute(request, quote)

        assert result.recovery is None
        assert isinstance(result.recovery_error, NoRecoverableRoute)
        assert "INSUFFICIENT_OUTPUT_AMOUNT" in result.recovery_error.revert_reason

    @pytest.mark.asyncio
    async def test_fee_on_transfer_fallback(self, settings, usdt, cake):
        venue = FakeVenue(simulate_error="execution reverted: TransferHelper: TRANSFER_FROM_FAILED")
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(usdt, cake))

        assert result.success
        assert venue.fee_on_transfer == [usdt]
        # Rebuilt once with the fee-on-transfer quote
        assert len(venue.builds) == 2
        rebuilt_quote, amount_min = venue.builds[1]
        assert rebuilt_quote.is_fee_on_transfer
        assert result.attempt.slippage_percent == Decimal("15.5")
        assert amount_min == apply_slippage(2 * ONE, Decimal("15.5"))
        assert wallet.sent[0].data == "0x00000002"
        # The standard call was retried before switching
        assert venue.simulations == settings.approval_max_attempts
        assert venue.tolerant_simulations == 1

    @pytest.mark.asyncio
    async def test_lagging_simulation_does_not_mark_token(self, settings, usdt, cake):
        """A transient TRANSFER_FROM_FAILED right after approval is retried away."""
        venue = FakeVenue(
            simulate_error="execution reverted: TransferHelper: TRANSFER_FROM_FAILED",
            simulate_failures=1,
        )
        wallet = FakeWallet()
        balances = FakeBalanceReader(allowances=[0, 0, 2**256 - 1])
        executor, _ = make_executor(venue, wallet, balances, settings)

        result = await executor.execute(make_request(usdt, cake))

        assert result.success
        assert venue.fee_on_transfer == []
        assert venue.simulations == 2
        assert venue.tolerant_simulations == 0
        assert len(venue.builds) == 1
        assert result.attempt.slippage_percent == Decimal("0.5")
        # Approval first, then the standard swap call
        assert len(wallet.sent) == 2
        assert wallet.sent[-1].data == "0x00000001"

    @pytest.mark.asyncio
    async def test_tolerant_simulation_revert_keeps_token_unmarked(self, settings, usdt, cake):
        venue = FakeVenue(
            simulate_error="execution reverted: TransferHelper: TRANSFER_FROM_FAILED",
            tolerant_simulate_error="execution reverted: Pancake: K",
        )
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(usdt, cake))

        assert result.success
        assert venue.fee_on_transfer == []
        assert venue.tolerant_simulations == 1
        assert result.attempt.slippage_percent == Decimal("0.5")
        assert wallet.sent[0].data == "0x00000001"

    @pytest.mark.asyncio
    async def test_other_simulation_revert_submits_original(self, settings, bnb, usdt):
        venue = FakeVenue(simulate_error="execution reverted: EXPIRED")
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(bnb, usdt))

        assert result.success
        assert venue.fee_on_transfer == []
        assert len(venue.builds) == 1

    @pytest.mark.asyncio
    async def test_bridge_venue_skips_amm_checks(self, settings, usdt, eth_usdc):
        venue = FakeVenue(name="LI.FI", kind=VenueKind.BRIDGE)
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(usdt, eth_usdc))

        assert result.success
        assert venue.simulations == 0

    @pytest.mark.asyncio
    async def test_concurrent_attempt_fails_fast(self, settings, venue, bnb, usdt):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        async with SignerLock(SIGNER):
            with pytest.raises(AttemptInProgress):
                await executor.execute(make_request(bnb, usdt))

        assert wallet.sent == []


class TestDirectTransfer:
    """Tests for same-token transfers to another address."""

    @pytest.mark.asyncio
    async def test_token_transfer(self, settings, venue, usdt):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(usdt, usdt, recipient=RECIPIENT))

        assert result.success
        assert venue.calls == []
        assert wallet.sent[0].data.startswith(ERC20_TRANSFER_SELECTOR)
        assert result.attempt.quote is None

    @pytest.mark.asyncio
    async def test_native_transfer(self, settings, venue, bnb):
        wallet = FakeWallet()
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(bnb, bnb, amount="0.5", recipient=RECIPIENT))

        assert result.success
        assert wallet.sent[0].to == RECIPIENT
        assert wallet.sent[0].value == ONE // 2

    @pytest.mark.asyncio
    async def test_reverted_transfer_has_no_recovery(self, settings, venue, usdt):
        wallet = FakeWallet(outcomes=["revert"])
        executor, _ = make_executor(venue, wallet, FakeBalanceReader(), settings)

        result = await executor.execute(make_request(usdt, usdt, recipient=RECIPIENT))

        assert result.attempt.status == AttemptStatus.REVERTED
        assert result.recovery is None
        assert result.recovery_error is None
