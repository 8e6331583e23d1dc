"""Network registry for every network the engine can route on.

Supports two settlement families:
- EVM: Ethereum, BNB Smart Chain, Polygon, Arbitrum, Optimism, Base, Avalanche
- Solana

A network's family decides which venues and signing flows apply: AMM and
order-routing venues are local to one family, only the bridge/aggregator
venue can move value between families.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from swapflow.errors import UnsupportedNetwork


class SettlementFamily(str, Enum):
    """Broad category of network that determines venues and signing."""

    EVM = "evm"
    SOLANA = "solana"


# Placeholder addresses used for a network's gas asset
EVM_NATIVE_ADDRESSES = (
    "0x0000000000000000000000000000000000000000",
    "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee",
)
SOLANA_NATIVE_ADDRESSES = (
    "11111111111111111111111111111111",
    "So11111111111111111111111111111111111111112",
)


@dataclass(frozen=True)
class Network:
    """Configuration for a blockchain network."""

    # Required fields (no defaults) - must come first
    key: str
    name: str
    chain_id: int
    family: SettlementFamily
    native_symbol: str

    # Optional fields (with defaults)
    native_decimals: int = 18
    wrapped_native: Optional[str] = None
    explorer_url: Optional[str] = None
    bridge_chain_id: Optional[int] = None  # LI.FI uses its own id for non-EVM networks

    @property
    def is_evm(self) -> bool:
        return self.family == SettlementFamily.EVM

    @property
    def native_addresses(self) -> tuple[str, ...]:
        if self.is_evm:
            return EVM_NATIVE_ADDRESSES
        return SOLANA_NATIVE_ADDRESSES

    @property
    def native_address(self) -> str:
        """Canonical placeholder address for the gas asset."""
        return self.native_addresses[0]

    @property
    def lifi_chain_id(self) -> int:
        return self.bridge_chain_id or self.chain_id

    def explorer_tx_url(self, tx_hash: str) -> Optional[str]:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url}/tx/{tx_hash}"


# ======================
# Network Configurations
# ======================

NETWORKS: dict[str, Network] = {
    # Ethereum - Uniswap V2 first, PancakeSwap second
    "ethereum": Network(
        key="ethereum",
        name="Ethereum",
        chain_id=1,
        family=SettlementFamily.EVM,
        native_symbol="ETH",
        wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",  # WETH
        explorer_url="https://etherscan.io",
    ),

    # BNB Smart Chain - PancakeSwap first, Uniswap V2 second
    "bsc": Network(
        key="bsc",
        name="BNB Smart Chain",
        chain_id=56,
        family=SettlementFamily.EVM,
        native_symbol="BNB",
        wrapped_native="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",  # WBNB
        explorer_url="https://bscscan.com",
    ),

    "polygon": Network(
        key="polygon",
        name="Polygon",
        chain_id=137,
        family=SettlementFamily.EVM,
        native_symbol="POL",
        wrapped_native="0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",  # WMATIC/WPOL
        explorer_url="https://polygonscan.com",
    ),

    "arbitrum": Network(
        key="arbitrum",
        name="Arbitrum One",
        chain_id=42161,
        family=SettlementFamily.EVM,
        native_symbol="ETH",
        wrapped_native="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        explorer_url="https://arbiscan.io",
    ),

    "optimism": Network(
        key="optimism",
        name="Optimism",
        chain_id=10,
        family=SettlementFamily.EVM,
        native_symbol="ETH",
        wrapped_native="0x4200000000000000000000000000000000000006",
        explorer_url="https://optimistic.etherscan.io",
    ),

    "base": Network(
        key="base",
        name="Base",
        chain_id=8453,
        family=SettlementFamily.EVM,
        native_symbol="ETH",
        wrapped_native="0x4200000000000000000000000000000000000006",
        explorer_url="https://basescan.org",
    ),

    "avalanche": Network(
        key="avalanche",
        name="Avalanche C-Chain",
        chain_id=43114,
        family=SettlementFamily.EVM,
        native_symbol="AVAX",
        wrapped_native="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",  # WAVAX
        explorer_url="https://snowtrace.io",
    ),

    # Solana - Jupiter for same-network swaps
    "solana": Network(
        key="solana",
        name="Solana",
        chain_id=7565164,
        family=SettlementFamily.SOLANA,
        native_symbol="SOL",
        native_decimals=9,
        wrapped_native="So11111111111111111111111111111111111111112",  # wSOL mint
        explorer_url="https://solscan.io",
        bridge_chain_id=1151111081099710,
    ),
}


def get_network(network: Union[str, int, Network]) -> Network:
    """Resolve a network by key, chain id or instance.

    Raises:
        UnsupportedNetwork: If the network is not in the registry
    """
    if isinstance(network, Network):
        return network

    if isinstance(network, int):
        for candidate in NETWORKS.values():
            if network in (candidate.chain_id, candidate.bridge_chain_id):
                return candidate
        raise UnsupportedNetwork(f"Unsupported chain id: {network}")

    found = NETWORKS.get(str(network).lower())
    if found is None:
        raise UnsupportedNetwork(f"Unsupported network: {network}")
    return found


def get_supported_networks(family: Optional[SettlementFamily] = None) -> list[Network]:
    """List supported networks, optionally for one settlement family."""
    return [n for n in NETWORKS.values() if family is None or n.family == family]
