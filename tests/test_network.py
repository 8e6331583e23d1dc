"""Tests for chain context management and wallet events."""

import pytest

from conftest import SIGNER, FakeWallet
from swapflow.chains import get_network
from swapflow.errors import NetworkSwitchRejected, NetworkSwitchTimeout
from swapflow.network import ChainContextManager, WalletContext, get_wallet_context
from swapflow.wallet.base import ACCOUNTS_CHANGED, CHAIN_CHANGED


class TestEnsureNetwork:
    """Tests for ChainContextManager.ensure_network."""

    @pytest.mark.asyncio
    async def test_already_on_network(self, settings):
        wallet = FakeWallet(network="bsc")
        manager = ChainContextManager(wallet, context=WalletContext(), settings=settings)

        await manager.ensure_network(get_network("bsc"))

        assert wallet.switch_requests == []

    @pytest.mark.asyncio
    async def test_switch_with_lag(self, settings):
        """The wallet reports the new network only after a few polls."""
        wallet = FakeWallet(network="ethereum", switch_lag=2)
        context = WalletContext()
        manager = ChainContextManager(wallet, context=context, settings=settings)

        await manager.ensure_network(get_network("bsc"))

        assert wallet.switch_requests == ["bsc"]
        assert context.network.key == "bsc"

    @pytest.mark.asyncio
    async def test_switch_rejected(self, settings):
        wallet = FakeWallet(network="ethereum", reject_switch=True)
        manager = ChainContextManager(wallet, context=WalletContext(), settings=settings)

        with pytest.raises(NetworkSwitchRejected, match="BNB Smart Chain"):
            await manager.ensure_network(get_network("bsc"))

    @pytest.mark.asyncio
    async def test_switch_never_confirmed(self, settings):
        wallet = FakeWallet(network="ethereum", switch_lag=100)
        manager = ChainContextManager(wallet, context=WalletContext(), settings=settings)

        with pytest.raises(NetworkSwitchTimeout):
            await manager.ensure_network(get_network("bsc"))

    @pytest.mark.asyncio
    async def test_needs_switch(self, settings):
        manager = ChainContextManager(FakeWallet(network="bsc"), context=WalletContext(), settings=settings)

        assert not await manager.needs_switch(get_network("bsc"))
        assert await manager.needs_switch(get_network("polygon"))


class TestWalletEvents:
    """Tests for the NetworkChanged signal."""

    def test_chain_changed(self, settings):
        wallet = FakeWallet()
        manager = ChainContextManager(wallet, context=WalletContext(), settings=settings)
        signals = []
        manager.subscribe(signals.append)

        wallet._emit(CHAIN_CHANGED, "0x89")

        assert signals[0].network.key == "polygon"
        assert signals[0].connected

    def test_unsupported_chain(self, settings):
        wallet = FakeWallet()
        context = WalletContext()
        manager = ChainContextManager(wallet, context=context, settings=settings)
        signals = []
        manager.subscribe(signals.append)

        wallet._emit(CHAIN_CHANGED, "0x999999")

        assert signals[0].network is None
        assert context.network is None

    @pytest.mark.asyncio
    async def test_accounts_changed(self, settings):
        wallet = FakeWallet()
        context = WalletContext()
        await context.connect(wallet)
        manager = ChainContextManager(wallet, context=context, settings=settings)
        signals = []
        manager.subscribe(signals.append)

        wallet._emit(ACCOUNTS_CHANGED, ["0x3333333333333333333333333333333333333333"])
        wallet._emit(ACCOUNTS_CHANGED, [])

        assert signals[0].accounts == ("0x3333333333333333333333333333333333333333",)
        assert signals[1].connected is False
        assert not context.is_connected

    def test_unsubscribe_detaches_from_wallet(self, settings):
        wallet = FakeWallet()
        manager = ChainContextManager(wallet, context=WalletContext(), settings=settings)
        signals = []
        unsubscribe = manager.subscribe(signals.append)

        unsubscribe()
        wallet._emit(CHAIN_CHANGED, 56)

        assert signals == []
        assert wallet._listeners[CHAIN_CHANGED] == []


class TestWalletContext:
    """Tests for the connected-wallet record."""

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self):
        context = WalletContext()
        await context.connect(FakeWallet(network="base"))

        assert context.is_connected
        assert context.network.key == "base"
        assert context.address == SIGNER

        context.disconnect()

        assert context.address is None

    def test_singleton(self):
        assert get_wallet_context() is get_wallet_context()
