"""Error taxonomy for the swap engine.

Every error carries a concrete, user-presentable reason. Errors fall into
three groups that decide how they propagate:

- transient: infrastructure lag or timeouts, retried locally with a bounded
  budget (``retryable = True``)
- user decisions: rejected signatures or network switches, never retried
- on-chain outcomes: reverts, always routed through the recovery planner
"""

from dataclasses import dataclass
from typing import Optional, Union


class SwapError(Exception):
    """Base class for all swap engine errors."""

    kind = "swap_error"
    title = "Swap failed"
    default_reason = "Something went wrong. Please retry."
    retryable = False

    def __init__(self, reason: Optional[str] = None, **context):
        self.reason = reason or self.default_reason
        self.context = context
        super().__init__(self.reason)

    @property
    def user_message(self) -> str:
        return f"{self.title}: {self.reason}"


class InvalidAmount(SwapError):
    kind = "invalid_amount"
    title = "Invalid amount"
    default_reason = "Enter a valid positive amount."


class NoRoute(SwapError):
    """No venue returned a usable quote."""

    kind = "no_route"
    title = "No route available"
    default_reason = "No swap route for this pair."

    def __init__(self, reason: Optional[str] = None, reasons: Optional[list[str]] = None, **context):
        self.reasons = list(reasons or ([reason] if reason else []))
        if reason is None and self.reasons:
            reason = "; ".join(self.reasons)
        super().__init__(reason, **context)


class StaleQuote(SwapError):
    """A quote was used after its inputs changed. Discarded, never shown."""

    kind = "stale_quote"
    title = "Quote outdated"
    default_reason = "The quote no longer matches the swap inputs."


class ApprovalRejected(SwapError):
    kind = "approval_rejected"
    title = "Approval rejected"
    default_reason = "Token approval was rejected in the wallet."


class ApprovalFailed(SwapError):
    kind = "approval_failed"
    title = "Approval failed"
    default_reason = "The approval transaction failed on-chain."


class InsufficientAllowance(SwapError):
    kind = "insufficient_allowance"
    title = "Approval pending"
    default_reason = "Token allowance is not yet sufficient."
    retryable = True


class NetworkSwitchRejected(SwapError):
    kind = "network_switch_rejected"
    title = "Network switch rejected"
    default_reason = "Please approve the network switch in your wallet."


class NetworkSwitchTimeout(SwapError):
    kind = "network_switch_timeout"
    title = "Network switch timed out"
    default_reason = "The wallet did not confirm the network switch."
    retryable = True


class UserRejected(SwapError):
    kind = "user_rejected"
    title = "Request rejected"
    default_reason = "The request was rejected in the wallet."


class TransactionReverted(SwapError):
    kind = "transaction_reverted"
    title = "Transaction reverted"
    default_reason = "The transaction reverted on-chain."

    def __init__(self, reason: Optional[str] = None, tx_hash: Optional[str] = None, **context):
        self.tx_hash = tx_hash
        super().__init__(reason, tx_hash=tx_hash, **context)


class ConfirmationTimeout(SwapError):
    """Confirmation budget exceeded; the on-chain outcome is still unknown."""

    kind = "confirmation_timeout"
    title = "Confirmation timed out"
    default_reason = "The transaction was not confirmed in time. Check it on the explorer."
    retryable = True

    def __init__(self, reason: Optional[str] = None, tx_hash: Optional[str] = None, **context):
        self.tx_hash = tx_hash
        super().__init__(reason, tx_hash=tx_hash, **context)


class SameWalletTransfer(SwapError):
    kind = "same_wallet_transfer"
    title = "Same wallet"
    default_reason = "Sender and recipient are the same wallet on the same network."


class InsufficientBalance(SwapError):
    kind = "insufficient_balance"
    title = "Insufficient balance"
    default_reason = "Not enough balance for this amount."


class NoRecoverableRoute(SwapError):
    kind = "no_recoverable_route"
    title = "Swap reverted"
    default_reason = "Transaction reverted and no alternative route was found."

    def __init__(self, reason: Optional[str] = None, revert_reason: Optional[str] = None, **context):
        self.revert_reason = revert_reason
        if reason is None and revert_reason:
            reason = f"Transaction reverted ({revert_reason}) and no smaller trade size has a route."
        super().__init__(reason, revert_reason=revert_reason, **context)


class InvalidTransition(SwapError):
    kind = "invalid_transition"
    title = "Invalid state"
    default_reason = "Execution attempts can only move forward."


class AttemptInProgress(SwapError):
    kind = "attempt_in_progress"
    title = "Swap in progress"
    default_reason = "Another swap for this wallet is still being prepared."


class UnsupportedNetwork(SwapError):
    kind = "unsupported_network"
    title = "Network not supported"
    default_reason = "This network combination is not supported."


class UnprotectedSwapNotAllowed(SwapError):
    kind = "unprotected_swap_not_allowed"
    title = "Slippage protection required"
    default_reason = "Swaps without slippage protection are disabled."


@dataclass(frozen=True)
class ErrorInfo:
    """Short, user-facing description of an error."""

    title: str
    message: str


# Ordered: first matching pattern wins
_MESSAGE_PATTERNS: list[tuple[tuple[str, ...], ErrorInfo]] = [
    (("no route found", "no route available", "no swap route"),
     ErrorInfo("Route not available", "No swap route for this pair.")),
    (("insufficient liquidity", "low liquidity", "insufficient_output_amount", "k:"),
     ErrorInfo("Low liquidity", "Not enough liquidity for this swap. Try a smaller amount.")),
    (("transfer_from_failed",),
     ErrorInfo("Transfer failed", "The token blocked the transfer. It may charge a transfer fee.")),
    (("insufficient funds", "insufficient balance", "exceeds balance"),
     ErrorInfo("Insufficient balance", "Not enough balance to cover the amount and fees.")),
    (("user rejected", "user denied", "rejected"),
     ErrorInfo("Request rejected", "The request was rejected in the wallet.")),
    (("expired",),
     ErrorInfo("Quote expired", "The quote expired. Request a new one.")),
    (("timeout", "timed out"),
     ErrorInfo("Timed out", "Request took too long. Please retry.")),
    (("invalid", "missing required"),
     ErrorInfo("Invalid input", "Check tokens and amount, then retry.")),
    (("network", "connection", "fetch"),
     ErrorInfo("Network issue", "Check your connection and retry.")),
]


def describe_error(error: Union[BaseException, str]) -> ErrorInfo:
    """Map an error to a concrete, user-facing title and message."""
    if isinstance(error, SwapError):
        return ErrorInfo(error.title, error.reason)

    message = str(error) or type(error).__name__
    lower = message.lower()
    for patterns, info in _MESSAGE_PATTERNS:
        if any(p in lower for p in patterns):
            return info

    return ErrorInfo("Swap failed", format_error_message(message))


def format_error_message(message: str, max_length: int = 200) -> str:
    """Truncate long error messages for display."""
    if len(message) <= max_length:
        return message
    return message[: max_length - 3] + "..."
