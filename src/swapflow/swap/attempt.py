"""Execution attempt state.

One immutable ``ExecutionAttempt`` per swap. Every step produces a new
attempt; status only moves forward.
"""

import time
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional

from swapflow.chains import Network
from swapflow.errors import InvalidTransition, SwapError
from swapflow.routing.base import Quote, SwapRequest


class AttemptStatus(str, Enum):
    PREPARING = "preparing"
    AWAITING_APPROVAL = "awaiting_approval"
    AWAITING_NETWORK_SWITCH = "awaiting_network_switch"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = {AttemptStatus.CONFIRMED, AttemptStatus.REVERTED, AttemptStatus.FAILED}

# Position in the forward order; terminal outcomes share the last rank
_ORDER = {
    AttemptStatus.PREPARING: 0,
    AttemptStatus.AWAITING_APPROVAL: 1,
    AttemptStatus.AWAITING_NETWORK_SWITCH: 2,
    AttemptStatus.SUBMITTED: 3,
    AttemptStatus.CONFIRMED: 4,
    AttemptStatus.REVERTED: 4,
    AttemptStatus.FAILED: 4,
}


@dataclass(frozen=True)
class ExecutionAttempt:
    """A single try at executing a swap request."""

    request: SwapRequest
    quote: Optional[Quote] = None
    amount_out_min_base_units: Optional[int] = None
    slippage_percent: Optional[Decimal] = None
    network: Optional[Network] = None
    transaction_hash: Optional[str] = None
    status: AttemptStatus = AttemptStatus.PREPARING
    error: Optional[SwapError] = None
    warnings: tuple[str, ...] = ()
    history: tuple[tuple[AttemptStatus, float], ...] = field(default_factory=tuple)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        if not self.history:
            object.__setattr__(self, "history", ((self.status, self.created_at),))

    def can_advance(self, status: AttemptStatus) -> bool:
        if status == self.status:
            return not self.status.is_terminal
        if self.status.is_terminal:
            return False
        if status in (AttemptStatus.CONFIRMED, AttemptStatus.REVERTED):
            return self.status == AttemptStatus.SUBMITTED
        return _ORDER[status] > _ORDER[self.status]

    def advance(self, status: AttemptStatus, **changes) -> "ExecutionAttempt":
        """Return a new attempt moved to ``status``.

        Raises:
            InvalidTransition: If the move goes backwards, leaves a terminal
                state, or confirms/reverts something never submitted
        """
        status = AttemptStatus(status)
        if not self.can_advance(status):
            raise InvalidTransition(f"Cannot move attempt from {self.status.value} to {status.value}")

        history = self.history
        if status != self.status:
            history = history + ((status, time.time()),)
        return replace(self, status=status, history=history, **changes)

    def update(self, **changes) -> "ExecutionAttempt":
        """Return a copy with changed fields and the same status."""
        return replace(self, **changes)

    def fail(self, error: SwapError) -> "ExecutionAttempt":
        return self.advance(AttemptStatus.FAILED, error=error)

    @property
    def statuses(self) -> list[AttemptStatus]:
        return [s for s, _ in self.history]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class RecoveryCandidate:
    """A smaller trade that still has a route after a revert.

    Offered to the user; never submitted automatically.
    """

    fraction_of_original_amount: Decimal
    amount_base_units: int
    request: SwapRequest
    quote: Quote
    recommended_slippage_percent: Decimal
    revert_reason: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    """Final attempt plus, after a revert, the recovery outcome."""

    attempt: ExecutionAttempt
    recovery: Optional[RecoveryCandidate] = None
    recovery_error: Optional[SwapError] = None

    @property
    def success(self) -> bool:
        return self.attempt.status == AttemptStatus.CONFIRMED

    @property
    def transaction_hash(self) -> Optional[str]:
        return self.attempt.transaction_hash
