"""Abstract venue interface and the request/quote value objects."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional

from swapflow.amounts import from_base_units, to_base_units
from swapflow.chains import Network
from swapflow.swap.transactions import TransactionRequest
from swapflow.tokens import Token, same_address

logger = logging.getLogger(__name__)

DEFAULT_QUOTE_TTL_SECONDS = 60


@dataclass(frozen=True)
class SwapRequest:
    """What the user asked for. A new edit creates a new request."""

    from_token: Token
    to_token: Token
    from_amount_decimal: str
    signer_address: str
    recipient_address: Optional[str] = None

    @property
    def from_network(self) -> Network:
        return self.from_token.network

    @property
    def to_network(self) -> Network:
        return self.to_token.network

    @property
    def from_amount_base_units(self) -> int:
        """Input amount in base units.

        Raises:
            InvalidAmount: If the decimal amount is not a usable positive amount
        """
        return int(to_base_units(self.from_amount_decimal, self.from_token.decimals))

    @property
    def recipient(self) -> str:
        return self.recipient_address or self.signer_address

    @property
    def is_same_token(self) -> bool:
        return self.from_token.same_as(self.to_token)

    @property
    def is_self_transfer(self) -> bool:
        """Same token on the same network sent back to the signer."""
        return self.is_same_token and same_address(
            self.recipient, self.signer_address, self.from_network
        )

    @property
    def is_direct_transfer(self) -> bool:
        """Same token on the same network sent to another address."""
        return self.is_same_token and not self.is_self_transfer

    @property
    def quote_key(self) -> tuple:
        """The exact inputs a quote is valid for."""
        return (self.from_token.key, self.to_token.key, self.from_amount_base_units)

    def with_changes(self, **changes) -> "SwapRequest":
        return replace(self, **changes)

    def with_amount_base_units(self, amount_base_units: int) -> "SwapRequest":
        """Copy of the request for a different input amount."""
        decimal_amount = from_base_units(amount_base_units, self.from_token.decimals)
        return replace(self, from_amount_decimal=decimal_amount)


@dataclass(frozen=True)
class Quote:
    """A swap quote from a venue, valid for one exact request."""

    venue: str  # e.g., "PancakeSwap", "LI.FI"
    from_token: Token
    to_token: Token
    path: tuple[str, ...]
    from_amount_base_units: int
    expected_output_base_units: int
    price_impact_percent: Decimal = Decimal("0")
    is_fee_on_transfer: bool = False
    router_address: Optional[str] = None
    route_details: dict = field(default_factory=dict, compare=False)
    timestamp: float = field(default_factory=time.time)  # When quote was created
    ttl_seconds: int = DEFAULT_QUOTE_TTL_SECONDS

    def __post_init__(self):
        if len(self.path) < 2:
            raise ValueError(f"Quote path needs at least two tokens: {self.path}")
        if not same_address(self.path[0], self.from_token.address, self.from_token.network):
            raise ValueError(f"Path starts at {self.path[0]}, expected {self.from_token.address}")
        if not same_address(self.path[-1], self.to_token.address, self.to_token.network):
            raise ValueError(f"Path ends at {self.path[-1]}, expected {self.to_token.address}")
        if self.expected_output_base_units < 0 or self.from_amount_base_units <= 0:
            raise ValueError("Quote amounts must be positive")

    @property
    def hop_count(self) -> int:
        return len(self.path) - 1

    @property
    def is_multi_hop(self) -> bool:
        """More than one hop, i.e. at least one intermediate token."""
        return self.hop_count > 1

    @property
    def quote_key(self) -> tuple:
        return (self.from_token.key, self.to_token.key, self.from_amount_base_units)

    def matches(self, request: SwapRequest) -> bool:
        """Check the quote was computed for exactly this request's inputs."""
        return self.quote_key == request.quote_key

    @property
    def is_expired(self) -> bool:
        """Check if quote has expired."""
        return time.time() > (self.timestamp + self.ttl_seconds)

    @property
    def seconds_until_expiry(self) -> float:
        """Get seconds until quote expires (negative if expired)."""
        return (self.timestamp + self.ttl_seconds) - time.time()

    @property
    def expected_output_decimal(self) -> str:
        return from_base_units(self.expected_output_base_units, self.to_token.decimals)

    def as_fee_on_transfer(self) -> "Quote":
        """Copy of the quote marked as involving a fee-on-transfer token."""
        return replace(self, is_fee_on_transfer=True)

    def describe_path(self) -> str:
        return " -> ".join(_short(a) for a in self.path)


def _short(address: str) -> str:
    if len(address) <= 12:
        return address
    return f"{address[:6]}...{address[-4:]}"


class VenueKind(str, Enum):
    """How a venue settles a trade."""

    BRIDGE = "bridge"  # bridge/aggregator, the only cross-network venue
    AMM = "amm"  # constant-product router with getAmountsOut
    ORDER_ROUTER = "order_router"  # off-chain routed orders, single network


class Venue(ABC):
    """Abstract base class for swap venues."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Venue name identifier."""
        pass

    @property
    @abstractmethod
    def kind(self) -> VenueKind:
        pass

    @abstractmethod
    def supports(self, request: SwapRequest) -> bool:
        """Check if this venue can route the request's networks."""
        pass

    @abstractmethod
    async def quote(self, request: SwapRequest) -> Quote:
        """
        Get a swap quote.

        Args:
            request: The swap request

        Returns:
            Quote for the request's exact inputs

        Raises:
            NoRoute: If the venue cannot route the pair or amount
        """
        pass

    @abstractmethod
    async def build_transaction(
        self,
        quote: Quote,
        request: SwapRequest,
        amount_out_min_base_units: int,
    ) -> TransactionRequest:
        """
        Build the unsigned swap transaction.

        Args:
            quote: Quote to execute
            request: Request the quote was computed for
            amount_out_min_base_units: Minimum output enforced on-chain

        Returns:
            Unsigned transaction for the wallet provider
        """
        pass

    async def get_amounts_out(
        self,
        network: Network,
        amount_in_base_units: int,
        path: tuple[str, ...],
    ) -> list[int]:
        """Authoritative on-chain output for ``amount_in`` along ``path``.

        Only AMM venues implement this.
        """
        raise NotImplementedError(f"{self.name} has no on-chain amounts check")

    def mark_fee_on_transfer(self, token: Token) -> None:
        """Remember a token found to charge a transfer fee."""
        return None

    async def simulate(self, tx: TransactionRequest, sender: str) -> None:
        """Dry-run a transaction before submission.

        Raises:
            TransactionReverted: If the simulation reverts
        """
        return None

