"""Token approvals for venue routers.

Allowance reads lag behind the approval transaction on most RPC providers,
so after a successful approval receipt the allowance is re-read under a
bounded retry budget. If it still reads short, execution continues: the
router call itself is the authoritative check.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from swapflow.config import Settings, get_settings
from swapflow.errors import (
    ApprovalFailed,
    ApprovalRejected,
    ConfirmationTimeout,
    InsufficientAllowance,
    UserRejected,
)
from swapflow.network import ChainContextManager
from swapflow.swap.transactions import MAX_UINT256, TransactionBuilder, get_transaction_builder
from swapflow.tokens import Token
from swapflow.utils.retry import retry_async
from swapflow.wallet.base import BalanceReader, WalletProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalState:
    """Allowance of a spender compared to what a swap needs."""

    token: Token
    owner: str
    spender: str
    current_allowance_base_units: int
    required_base_units: int

    @property
    def needs_approval(self) -> bool:
        return self.current_allowance_base_units < self.required_base_units


class ApprovalManager:
    """Checks and grants token allowances."""

    def __init__(
        self,
        wallet: WalletProvider,
        balances: BalanceReader,
        chain_context: Optional[ChainContextManager] = None,
        builder: Optional[TransactionBuilder] = None,
        settings: Optional[Settings] = None,
    ):
        self.wallet = wallet
        self.balances = balances
        self.chain_context = chain_context
        self.builder = builder or get_transaction_builder()
        self.settings = settings or get_settings()

    async def check(self, token: Token, owner: str, spender: str, required: int) -> ApprovalState:
        """Read the current allowance for a spender."""
        if token.is_native:
            current = required
        else:
            current = await self.balances.get_allowance(token, owner, spender)
        return ApprovalState(
            token=token,
            owner=owner,
            spender=spender,
            current_allowance_base_units=current,
            required_base_units=required,
        )

    async def ensure_approval(
        self,
        token: Token,
        owner: str,
        spender: str,
        required: int,
        state: Optional[ApprovalState] = None,
    ) -> bool:
        """Make sure ``spender`` may move ``required`` base units of ``token``.

        Args:
            state: Allowance already read by ``check`` for the same inputs;
                read again when omitted

        Returns:
            True if an approval transaction was sent, False if none was needed

        Raises:
            ApprovalRejected: If the user declines the approval signature
            ApprovalFailed: If the approval transaction reverts
        """
        if token.is_native:
            return False

        if state is None or state.required_base_units != required:
            state = await self.check(token, owner, spender, required)
        if not state.needs_approval:
            logger.debug(f"Allowance for {token} already sufficient: {state.current_allowance_base_units}")
            return False

        logger.info(
            f"Approving {spender} for {token} "
            f"(allowance {state.current_allowance_base_units} < {required})"
        )

        # Approval is signed on the token's network
        if self.chain_context is not None:
            await self.chain_context.ensure_network(token.network)

        tx = self.builder.build_approval(token.network, token.address, spender, MAX_UINT256)
        try:
            tx_hash = await self.wallet.sign_and_send(tx)
        except UserRejected:
            raise ApprovalRejected(f"Approval for {token.symbol or token.address} was rejected.")

        receipt_ok = False
        try:
            receipt = await self.wallet.wait_for_receipt(
                tx_hash, timeout=self.settings.approval_receipt_timeout_seconds
            )
        except ConfirmationTimeout:
            logger.warning(f"Approval {tx_hash} not confirmed in time; checking allowance anyway")
        else:
            if not receipt.success:
                raise ApprovalFailed(
                    f"Approval transaction {tx_hash} failed: {receipt.revert_reason or 'reverted'}",
                    tx_hash=tx_hash,
                )
            receipt_ok = True

        async def read_allowance() -> int:
            allowance = await self.balances.get_allowance(token, owner, spender)
            if allowance < required:
                raise InsufficientAllowance(f"allowance {allowance} < {required}")
            return allowance

        try:
            allowance = await retry_async(
                read_allowance,
                max_attempts=self.settings.approval_max_attempts,
                delay=self.settings.approval_retry_delay_seconds,
                backoff=self.settings.retry_backoff,
                retry_on=(InsufficientAllowance,),
                operation=f"allowance check for {token}",
            )
        except InsufficientAllowance:
            if not receipt_ok:
                raise
            logger.warning(
                f"Allowance for {token} still reads short after approval {tx_hash}; "
                f"proceeding, the router call is authoritative"
            )
            return True

        logger.info(f"Approval confirmed for {token}: allowance {allowance}")
        return True
