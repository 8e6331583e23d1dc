"""Token identity on a network."""

import re
from dataclasses import dataclass, field
from typing import Union

from swapflow.chains import Network, get_network

EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
SOLANA_ADDRESS_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


def is_address(address: str, network: Union[str, Network]) -> bool:
    """Check address format for the network's settlement family."""
    if not address or not isinstance(address, str):
        return False
    if get_network(network).is_evm:
        return bool(EVM_ADDRESS_RE.match(address.strip()))
    return bool(SOLANA_ADDRESS_RE.match(address.strip()))


def normalize_address(address: str, network: Union[str, Network]) -> str:
    """Normalize for comparison: EVM addresses are case-insensitive."""
    address = address.strip()
    if get_network(network).is_evm:
        return address.lower()
    return address


def same_address(a: str, b: str, network: Union[str, Network]) -> bool:
    return normalize_address(a, network) == normalize_address(b, network)


@dataclass(frozen=True)
class Token:
    """A token on a specific network."""

    network: Network
    address: str
    decimals: int
    symbol: str = ""
    is_native: bool = field(default=False)

    def __post_init__(self):
        if not isinstance(self.network, Network):
            object.__setattr__(self, "network", get_network(self.network))
        if self.decimals < 0:
            raise ValueError(f"Invalid decimals for {self.address}: {self.decimals}")
        if not self.is_native:
            native = {normalize_address(a, self.network) for a in self.network.native_addresses}
            if normalize_address(self.address, self.network) in native:
                object.__setattr__(self, "is_native", True)

    @classmethod
    def native(cls, network: Union[str, Network]) -> "Token":
        """Gas asset of a network."""
        net = get_network(network)
        return cls(
            network=net,
            address=net.native_address,
            decimals=net.native_decimals,
            symbol=net.native_symbol,
            is_native=True,
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.network.key, normalize_address(self.address, self.network))

    @property
    def routing_address(self) -> str:
        """Address used in AMM paths: wrapped native for the gas asset."""
        if self.is_native and self.network.wrapped_native:
            return self.network.wrapped_native
        return self.address

    def same_as(self, other: "Token") -> bool:
        return self.key == other.key

    def __str__(self) -> str:
        label = self.symbol or self.address
        return f"{label}@{self.network.key}"
