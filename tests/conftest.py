"""Pytest configuration and fixtures."""

import asyncio
import os
from decimal import Decimal
from typing import Optional

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"

from swapflow.chains import Network, get_network
from swapflow.config import Settings, reset_settings_cache
from swapflow.errors import ConfirmationTimeout, NoRoute, TransactionReverted, UserRejected
from swapflow.routing.aggregator import VenueQuoteAggregator
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.rpc import clear_clients
from swapflow.swap.transactions import TransactionRequest
from swapflow.tokens import Token
from swapflow.utils.locks import clear_signer_locks
from swapflow.wallet.base import CHAIN_CHANGED, BalanceReader, Receipt, WalletProvider

SIGNER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"

BSC_USDT = "0x55d398326f99059fF775485246999027B3197955"
BSC_CAKE = "0x0E09FaBB73Bd3Ade0a17ECC321fD13a19e81cE82"
BSC_WBNB = "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c"
ETH_USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
SOL_USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

ONE = 10**18


class FakeWallet(WalletProvider):
    """In-memory wallet provider.

    ``outcomes`` is consumed one entry per ``wait_for_receipt`` call:
    "ok", "revert" or "timeout". Missing entries mean "ok".
    """

    def __init__(
        self,
        network: str = "bsc",
        accounts: Optional[list[str]] = None,
        switch_lag: int = 0,
        reject_switch: bool = False,
        reject_sign: bool = False,
        outcomes: Optional[list[str]] = None,
        revert_reason: str = "execution reverted: UniswapV2Router: INSUFFICIENT_OUTPUT_AMOUNT",
    ):
        super().__init__()
        self.network = get_network(network)
        self.accounts = list(accounts or [SIGNER])
        self.switch_lag = switch_lag
        self.reject_switch = reject_switch
        self.reject_sign = reject_sign
        self.outcomes = list(outcomes or [])
        self.revert_reason = revert_reason

        self.sent: list[TransactionRequest] = []
        self.switch_requests: list[str] = []
        self._pending: Optional[Network] = None
        self._lag_left = 0

    async def get_active_network(self) -> Network:
        if self._pending is not None:
            if self._lag_left <= 0:
                self.network, self._pending = self._pending, None
                self._emit(CHAIN_CHANGED, hex(self.network.chain_id))
            else:
                self._lag_left -= 1
        return self.network

    async def request_network_switch(self, network: Network) -> None:
        self.switch_requests.append(network.key)
        if self.reject_switch:
            raise UserRejected("User rejected the request.")
        self._pending = network
        self._lag_left = self.switch_lag

    async def get_accounts(self) -> list[str]:
        return list(self.accounts)

    async def sign_and_send(self, tx: TransactionRequest) -> str:
        if self.reject_sign:
            raise UserRejected("User denied transaction signature.")
        self.sent.append(tx)
        return f"0x{len(self.sent):064x}"

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if outcome == "timeout":
            raise ConfirmationTimeout(tx_hash=tx_hash)
        if outcome == "revert":
            return Receipt(transaction_hash=tx_hash, success=False, revert_reason=self.revert_reason)
        return Receipt(transaction_hash=tx_hash, success=True, block_number=1, gas_used=21000)


class FakeBalanceReader(BalanceReader):
    """Balances default to plenty; allowances are read from a queue.

    Each ``get_allowance`` call pops the next queued value; once the queue
    is empty the last value is repeated.
    """

    def __init__(self, balance: int = 10**30, allowances: Optional[list[int]] = None):
        self.balance = balance
        self.allowances = list(allowances if allowances is not None else [2**256 - 1])
        self.balance_reads = 0
        self.allowance_reads = 0

    async def get_balance(self, token: Token, owner: str) -> int:
        self.balance_reads += 1
        return self.balance

    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        self.allowance_reads += 1
        if len(self.allowances) > 1:
            return self.allowances.pop(0)
        return self.allowances[0]


class FakeVenue(Venue):
    """Venue returning ``amount * rate`` along a configurable path."""

    def __init__(
        self,
        name: str = "PancakeSwap",
        kind: VenueKind = VenueKind.AMM,
        networks: tuple[str, ...] = ("bsc",),
        rate: int = 2,
        via: Optional[str] = None,
        impact: Decimal = Decimal("0"),
        error: Optional[Exception] = None,
        max_amount: Optional[int] = None,
        simulate_error: Optional[str] = None,
        simulate_failures: Optional[int] = None,
        tolerant_simulate_error: Optional[str] = None,
        router: Optional[str] = ROUTER,
    ):
        self._name = name
        self._kind = kind
        self.networks = networks
        self.rate = rate
        self.via = via
        self.impact = impact
        self.error = error
        self.max_amount = max_amount
        self.simulate_error = simulate_error
        # Standard simulations that fail before passing; None fails them all
        self.simulate_failures = simulate_failures
        self.tolerant_simulate_error = tolerant_simulate_error
        self.router = router
        self.gate: Optional[asyncio.Event] = None

        self.calls: list[SwapRequest] = []
        self.builds: list[tuple[Quote, int]] = []
        self.simulations = 0
        self.tolerant_simulations = 0
        self._tolerant_data: set[str] = set()
        self.fee_on_transfer: list[Token] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def kind(self) -> VenueKind:
        return self._kind

    def supports(self, request: SwapRequest) -> bool:
        if self._kind == VenueKind.BRIDGE:
            return True
        return (
            request.from_network.key == request.to_network.key
            and request.from_network.key in self.networks
        )

    async def quote(self, request: SwapRequest) -> Quote:
        self.calls.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

        amount = request.from_amount_base_units
        if self.max_amount is not None and amount > self.max_amount:
            raise NoRoute(f"{self.name}: insufficient liquidity for {amount}")

        path = [request.from_token.address]
        if self.via:
            path.append(self.via)
        path.append(request.to_token.address)

        return Quote(
            venue=self.name,
            from_token=request.from_token,
            to_token=request.to_token,
            path=tuple(path),
            from_amount_base_units=amount,
            expected_output_base_units=amount * self.rate,
            price_impact_percent=self.impact,
            router_address=self.router,
        )

    async def build_transaction(self, quote, request, amount_out_min_base_units) -> TransactionRequest:
        self.builds.append((quote, amount_out_min_base_units))
        data = f"0x{len(self.builds):08x}"
        if quote.is_fee_on_transfer:
            self._tolerant_data.add(data)
        network = request.from_network
        return TransactionRequest(
            network=network.key,
            chain_id=network.chain_id,
            to=self.router,
            value=quote.from_amount_base_units if request.from_token.is_native else 0,
            data=data,
            description=f"Swap on {self.name}",
        )

    async def get_amounts_out(self, network, amount_in_base_units, path) -> list[int]:
        if self._kind != VenueKind.AMM:
            return await super().get_amounts_out(network, amount_in_base_units, path)
        return [amount_in_base_units, amount_in_base_units * self.rate]

    def mark_fee_on_transfer(self, token: Token) -> None:
        self.fee_on_transfer.append(token)

    async def simulate(self, tx: TransactionRequest, sender: str) -> None:
        if tx.data in self._tolerant_data:
            self.tolerant_simulations += 1
            if self.tolerant_simulate_error:
                raise TransactionReverted(self.tolerant_simulate_error)
            return

        self.simulations += 1
        if not self.simulate_error:
            return
        if self.simulate_failures is None or self.simulations <= self.simulate_failures:
            raise TransactionReverted(self.simulate_error)


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh settings, RPC clients and signer locks for every test."""
    reset_settings_cache()
    clear_clients()
    clear_signer_locks()
    yield
    clear_signer_locks()
    clear_clients()


@pytest.fixture
def settings() -> Settings:
    """Settings with retry delays short enough for tests."""
    return Settings(
        approval_retry_delay_seconds=0.0,
        network_switch_retry_delay_seconds=0.0,
        network_switch_max_attempts=5,
        quote_debounce_ms=20,
        fee_on_transfer_tokens="",
        allow_unprotected_swaps=False,
    )


@pytest.fixture
def bnb() -> Token:
    return Token.native("bsc")


@pytest.fixture
def usdt() -> Token:
    return Token(network="bsc", address=BSC_USDT, decimals=18, symbol="USDT")


@pytest.fixture
def cake() -> Token:
    return Token(network="bsc", address=BSC_CAKE, decimals=18, symbol="CAKE")


@pytest.fixture
def eth_usdc() -> Token:
    return Token(network="ethereum", address=ETH_USDC, decimals=6, symbol="USDC")


@pytest.fixture
def venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def aggregator(venue) -> VenueQuoteAggregator:
    return VenueQuoteAggregator([venue])


def make_request(from_token: Token, to_token: Token, amount: str = "1", recipient: Optional[str] = None):
    return SwapRequest(
        from_token=from_token,
        to_token=to_token,
        from_amount_decimal=amount,
        signer_address=SIGNER,
        recipient_address=recipient,
    )
