"""Unsigned transaction requests and the builder for plain token operations.

Building never signs or broadcasts; the wallet provider does that.
"""

import logging
from typing import Optional, Union

from pydantic import BaseModel, Field

from swapflow.chains import Network, get_network
from swapflow.errors import UnsupportedNetwork

logger = logging.getLogger(__name__)


# ERC-20 ABI fragments (minimal for transfers and approvals)
ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)
ERC20_APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
ERC20_BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
ERC20_ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)

MAX_UINT256 = 2**256 - 1


def encode_address(address: str) -> str:
    """Left-pad an EVM address to a 32-byte ABI word (no 0x)."""
    return address.lower().replace("0x", "").zfill(64)


def encode_uint(value: int) -> str:
    """Encode an unsigned integer as a 32-byte ABI word (no 0x)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return hex(value)[2:].zfill(64)


class TransactionRequest(BaseModel):
    """An unsigned transaction handed to the wallet provider.

    EVM transactions carry ``to``/``value``/``data``. Venues that return a
    fully serialized transaction (Solana order routing) set ``serialized``
    instead and leave ``data`` empty.
    """

    network: str = Field(..., description="Network key (ethereum, bsc, solana, ...)")
    chain_id: int = Field(..., description="Chain ID")
    to: Optional[str] = Field(None, description="Destination address (contract or recipient)")
    value: int = Field(default=0, ge=0, description="Native value in base units")
    data: str = Field(default="0x", description="Calldata (hex encoded)")
    gas_limit: Optional[int] = Field(None, description="Gas limit override")
    serialized: Optional[str] = Field(None, description="Base64 serialized transaction")

    # Additional context for the wallet prompt
    description: Optional[str] = Field(None, description="Human-readable description")
    warnings: list[str] = Field(default_factory=list, description="Any warnings")

    def to_tx_params(self) -> dict:
        """Convert to web3 transaction parameters."""
        params = {
            "to": self.to,
            "value": self.value,
            "data": self.data,
            "chainId": self.chain_id,
        }
        if self.gas_limit:
            params["gas"] = self.gas_limit
        return params


class TransactionBuilder:
    """Builds unsigned approval and transfer transactions."""

    def _evm_network(self, network: Union[str, Network]) -> Network:
        net = get_network(network)
        if not net.is_evm:
            raise UnsupportedNetwork(f"{net.name} transactions are built by its venue")
        return net

    def build_approval(
        self,
        network: Union[str, Network],
        token_address: str,
        spender: str,
        amount: Optional[int] = None,
    ) -> TransactionRequest:
        """Build an ERC-20 approval transaction.

        Args:
            network: Network key or instance
            token_address: Token contract address
            spender: Address to approve (usually the venue router)
            amount: Amount to approve (None = unlimited)
        """
        net = self._evm_network(network)
        if amount is None:
            amount = MAX_UINT256

        data = f"{ERC20_APPROVE_SELECTOR}{encode_address(spender)}{encode_uint(amount)}"

        return TransactionRequest(
            network=net.key,
            chain_id=net.chain_id,
            to=token_address,
            value=0,
            data=data,
            description=f"Approve {spender[:10]}... to spend tokens",
            warnings=["This approves token spending. Review carefully."],
        )

    def build_native_transfer(
        self,
        network: Union[str, Network],
        to_address: str,
        amount_base_units: int,
    ) -> TransactionRequest:
        """Build a native gas asset transfer."""
        net = self._evm_network(network)

        return TransactionRequest(
            network=net.key,
            chain_id=net.chain_id,
            to=to_address,
            value=amount_base_units,
            data="0x",
            description=f"Transfer {net.native_symbol} to {to_address[:10]}...",
        )

    def build_token_transfer(
        self,
        network: Union[str, Network],
        token_address: str,
        to_address: str,
        amount_base_units: int,
    ) -> TransactionRequest:
        """Build an ERC-20 token transfer."""
        net = self._evm_network(network)
        data = f"{ERC20_TRANSFER_SELECTOR}{encode_address(to_address)}{encode_uint(amount_base_units)}"

        return TransactionRequest(
            network=net.key,
            chain_id=net.chain_id,
            to=token_address,
            value=0,
            data=data,
            description=f"Transfer tokens to {to_address[:10]}...",
        )


# Singleton instance
_builder: Optional[TransactionBuilder] = None


def get_transaction_builder() -> TransactionBuilder:
    """Get transaction builder singleton."""
    global _builder
    if _builder is None:
        _builder = TransactionBuilder()
    return _builder
