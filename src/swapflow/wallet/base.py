"""Abstract wallet and balance interfaces.

The engine never talks to a key store or an RPC endpoint directly. A
``WalletProvider`` owns the signer's session (active network, accounts,
signing) and a ``BalanceReader`` answers eventually-consistent balance and
allowance reads.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from swapflow.chains import Network
from swapflow.swap.transactions import TransactionRequest
from swapflow.tokens import Token

logger = logging.getLogger(__name__)

# Provider events translated by the chain context manager
CHAIN_CHANGED = "chainChanged"
ACCOUNTS_CHANGED = "accountsChanged"


@dataclass(frozen=True)
class Receipt:
    """Outcome of a mined transaction."""

    transaction_hash: str
    success: bool
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    revert_reason: Optional[str] = None


class WalletProvider(ABC):
    """Abstract base class for wallet providers."""

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {}

    @abstractmethod
    async def get_active_network(self) -> Network:
        """Network the wallet currently signs for."""
        pass

    @abstractmethod
    async def request_network_switch(self, network: Network) -> None:
        """Ask the wallet to switch networks.

        Raises:
            UserRejected: If the user declines the switch
        """
        pass

    @abstractmethod
    async def get_accounts(self) -> list[str]:
        """Connected account addresses."""
        pass

    @abstractmethod
    async def sign_and_send(self, tx: TransactionRequest) -> str:
        """Sign and broadcast a transaction.

        Returns:
            Transaction hash

        Raises:
            UserRejected: If the user declines the signature
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        """Wait for a transaction to be mined on the network it was sent on.

        Raises:
            ConfirmationTimeout: If no receipt arrives within ``timeout``
        """
        pass

    def on(self, event: str, callback: Callable) -> None:
        """Register a provider event callback."""
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable) -> None:
        """Remove a provider event callback."""
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners.get(event, [])):
            callback(*args)


class BalanceReader(ABC):
    """Abstract base class for balance and allowance reads."""

    @abstractmethod
    async def get_balance(self, token: Token, owner: str) -> int:
        """Balance in base units."""
        pass

    @abstractmethod
    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        """Allowance granted by ``owner`` to ``spender`` in base units."""
        pass
