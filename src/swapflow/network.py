"""Chain context: which network the wallet signs for, and keeping it right.

The chain context manager is the only component that changes the wallet's
active network. It also owns the wallet event subscription and turns the
provider's ``chainChanged`` / ``accountsChanged`` events into one
``NetworkChanged`` signal.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from swapflow.chains import Network, get_network
from swapflow.config import Settings, get_settings
from swapflow.errors import (
    NetworkSwitchRejected,
    NetworkSwitchTimeout,
    SwapError,
    UnsupportedNetwork,
    UserRejected,
)
from swapflow.utils.retry import retry_async
from swapflow.wallet.base import ACCOUNTS_CHANGED, CHAIN_CHANGED, WalletProvider

logger = logging.getLogger(__name__)


class _NotYetSwitched(SwapError):
    retryable = True


@dataclass(frozen=True)
class NetworkChanged:
    """Canonical wallet change signal."""

    network: Optional[Network]
    accounts: tuple[str, ...] = ()
    connected: bool = True


class WalletContext:
    """Process-wide record of the connected wallet and its active network."""

    def __init__(self):
        self.wallet: Optional[WalletProvider] = None
        self.network: Optional[Network] = None
        self.accounts: tuple[str, ...] = ()

    @property
    def is_connected(self) -> bool:
        return self.wallet is not None

    @property
    def address(self) -> Optional[str]:
        return self.accounts[0] if self.accounts else None

    async def connect(self, wallet: WalletProvider) -> None:
        self.wallet = wallet
        self.network = await wallet.get_active_network()
        self.accounts = tuple(await wallet.get_accounts())
        logger.info(f"Wallet connected on {self.network.key}: {self.address}")

    def disconnect(self) -> None:
        logger.info(f"Wallet disconnected: {self.address}")
        self.wallet = None
        self.network = None
        self.accounts = ()


# Singleton instance
_wallet_context: Optional[WalletContext] = None


def get_wallet_context() -> WalletContext:
    """Get wallet context singleton."""
    global _wallet_context
    if _wallet_context is None:
        _wallet_context = WalletContext()
    return _wallet_context


class ChainContextManager:
    """Makes sure transactions are only signed on the network they target."""

    def __init__(
        self,
        wallet: WalletProvider,
        context: Optional[WalletContext] = None,
        settings: Optional[Settings] = None,
    ):
        self.wallet = wallet
        self.context = context or get_wallet_context()
        self.settings = settings or get_settings()
        self._listeners: list[Callable[[NetworkChanged], None]] = []
        self._subscribed = False

    async def current_network(self) -> Network:
        network = await self.wallet.get_active_network()
        self.context.network = network
        return network

    async def needs_switch(self, required: Network) -> bool:
        return (await self.current_network()).key != required.key

    async def ensure_network(self, required: Network) -> None:
        """Switch the wallet to ``required`` and verify it took effect.

        Raises:
            NetworkSwitchRejected: If the user declines the switch
            NetworkSwitchTimeout: If the wallet never reports the new network
        """
        current = await self.current_network()
        if current.key == required.key:
            return

        logger.info(f"Requesting network switch: {current.key} -> {required.key}")
        try:
            await self.wallet.request_network_switch(required)
        except UserRejected as e:
            logger.info(f"Network switch to {required.key} rejected: {e}")
            raise NetworkSwitchRejected(
                f"Switch to {required.name} was rejected. Approve it in your wallet to continue."
            )

        async def verify() -> Network:
            active = await self.current_network()
            if active.key != required.key:
                raise _NotYetSwitched(f"wallet still on {active.key}")
            return active

        try:
            await retry_async(
                verify,
                max_attempts=self.settings.network_switch_max_attempts,
                delay=self.settings.network_switch_retry_delay_seconds,
                backoff=self.settings.retry_backoff,
                retry_on=(_NotYetSwitched,),
                operation=f"network switch to {required.key}",
            )
        except _NotYetSwitched:
            raise NetworkSwitchTimeout(f"The wallet did not switch to {required.name} in time.")

        logger.info(f"Wallet now on {required.key}")

    # ======================
    # Wallet events
    # ======================

    def subscribe(self, callback: Callable[[NetworkChanged], None]) -> Callable[[], None]:
        """Register a listener for wallet changes.

        Returns:
            Function that removes the listener
        """
        if not self._subscribed:
            self.wallet.on(CHAIN_CHANGED, self._on_chain_changed)
            self.wallet.on(ACCOUNTS_CHANGED, self._on_accounts_changed)
            self._subscribed = True
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)
            if not self._listeners and self._subscribed:
                self.wallet.off(CHAIN_CHANGED, self._on_chain_changed)
                self.wallet.off(ACCOUNTS_CHANGED, self._on_accounts_changed)
                self._subscribed = False

        return unsubscribe

    def _notify(self, signal: NetworkChanged) -> None:
        for listener in list(self._listeners):
            listener(signal)

    def _on_chain_changed(self, chain_id) -> None:
        try:
            chain_id = int(chain_id, 16) if isinstance(chain_id, str) else int(chain_id)
            network = get_network(chain_id)
        except (UnsupportedNetwork, ValueError):
            logger.warning(f"Wallet switched to unsupported chain {chain_id}")
            network = None

        self.context.network = network
        logger.info(f"Wallet network changed: {network.key if network else chain_id}")
        self._notify(NetworkChanged(network=network, accounts=self.context.accounts))

    def _on_accounts_changed(self, accounts) -> None:
        accounts = tuple(accounts or ())
        if not accounts:
            self.context.disconnect()
            self._notify(NetworkChanged(network=None, connected=False))
            return

        self.context.accounts = accounts
        logger.info(f"Wallet accounts changed: {accounts[0]}")
        self._notify(NetworkChanged(network=self.context.network, accounts=accounts))
