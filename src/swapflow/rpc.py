"""Shared async web3 clients, one per EVM network."""

import logging
from typing import Optional, Union

from web3 import AsyncWeb3

from swapflow.chains import Network, get_network
from swapflow.config import get_settings
from swapflow.errors import UnsupportedNetwork

logger = logging.getLogger(__name__)

_clients: dict[str, AsyncWeb3] = {}


def get_async_web3(network: Union[str, Network], rpc_url: Optional[str] = None) -> AsyncWeb3:
    """Get (or lazily create) the AsyncWeb3 client for an EVM network."""
    net = get_network(network)
    if not net.is_evm:
        raise UnsupportedNetwork(f"No EVM RPC for {net.name}")

    if rpc_url is None and net.key in _clients:
        return _clients[net.key]

    url = rpc_url or get_settings().get_rpc_url(net.key)
    if not url:
        raise UnsupportedNetwork(f"No RPC URL configured for {net.name}")

    client = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url))
    if rpc_url is None:
        _clients[net.key] = client
        logger.debug(f"Created RPC client for {net.key}: {url}")
    return client


def clear_clients() -> None:
    """Drop cached clients (useful for testing)."""
    _clients.clear()
