"""EVM wallet and balance reader backed by web3 and a local key.

A local key can sign for any EVM network, so a network switch is accepted
immediately and reported through the ``chainChanged`` event.
"""

import asyncio
import logging
from typing import Optional, Union

from eth_account import Account
from eth_utils import to_checksum_address
from web3.exceptions import ContractLogicError, TransactionNotFound

from swapflow.chains import Network, get_network
from swapflow.config import get_settings
from swapflow.errors import ConfirmationTimeout, UnsupportedNetwork
from swapflow.rpc import get_async_web3
from swapflow.swap.transactions import (
    ERC20_ALLOWANCE_SELECTOR,
    ERC20_BALANCE_OF_SELECTOR,
    TransactionRequest,
    encode_address,
)
from swapflow.tokens import Token
from swapflow.wallet.base import (
    ACCOUNTS_CHANGED,
    CHAIN_CHANGED,
    BalanceReader,
    Receipt,
    WalletProvider,
)

logger = logging.getLogger(__name__)


class Web3Wallet(WalletProvider):
    """Wallet provider that signs EVM transactions with a local private key."""

    def __init__(
        self,
        private_key: str,
        network: Union[str, Network] = "ethereum",
        poll_interval: Optional[float] = None,
    ):
        super().__init__()
        self._account = Account.from_key(private_key)
        self._network = self._evm(network)
        if poll_interval is None:
            poll_interval = get_settings().receipt_poll_interval_seconds
        self.poll_interval = poll_interval
        # tx hash -> network it was broadcast on
        self._sent_on: dict[str, Network] = {}
        self._nonces: dict[tuple[str, str], int] = {}
        self._nonce_lock = asyncio.Lock()

    @staticmethod
    def _evm(network: Union[str, Network]) -> Network:
        net = get_network(network)
        if not net.is_evm:
            raise UnsupportedNetwork(f"Web3Wallet cannot sign for {net.name}")
        return net

    @property
    def address(self) -> str:
        return self._account.address

    async def get_active_network(self) -> Network:
        return self._network

    async def request_network_switch(self, network: Network) -> None:
        target = self._evm(network)
        if target.key == self._network.key:
            return
        logger.info(f"Switching wallet network: {self._network.key} -> {target.key}")
        self._network = target
        self._emit(CHAIN_CHANGED, hex(target.chain_id))

    async def get_accounts(self) -> list[str]:
        return [self.address]

    def disconnect(self) -> None:
        """Report that no accounts are connected anymore."""
        self._emit(ACCOUNTS_CHANGED, [])

    async def _next_nonce(self, network: Network) -> int:
        """Get next nonce, tracking locally sent transactions."""
        web3 = get_async_web3(network)
        key = (network.key, self.address)
        async with self._nonce_lock:
            chain_nonce = await web3.eth.get_transaction_count(self.address, "pending")
            next_nonce = max(chain_nonce, self._nonces.get(key, 0))
            self._nonces[key] = next_nonce + 1
            return next_nonce

    async def sign_and_send(self, tx: TransactionRequest) -> str:
        network = self._evm(tx.network)
        web3 = get_async_web3(network)

        params = tx.to_tx_params()
        params["to"] = to_checksum_address(params["to"])
        params["from"] = self.address
        params["nonce"] = await self._next_nonce(network)

        if "gas" not in params:
            params["gas"] = await web3.eth.estimate_gas(params)
        if "gasPrice" not in params and "maxFeePerGas" not in params:
            params["gasPrice"] = await web3.eth.gas_price

        signed_tx = self._account.sign_transaction(params)

        try:
            # web3.py 6.x uses raw_transaction, older versions use rawTransaction
            raw_tx = getattr(signed_tx, "raw_transaction", None) or signed_tx.rawTransaction
            tx_hash = await web3.eth.send_raw_transaction(raw_tx)
        except Exception:
            # Reset nonce tracking on failure so the next tx gets a fresh nonce
            self._nonces.pop((network.key, self.address), None)
            raise

        tx_hash_hex = tx_hash.hex()
        if not tx_hash_hex.startswith("0x"):
            tx_hash_hex = f"0x{tx_hash_hex}"
        self._sent_on[tx_hash_hex] = network
        logger.info(f"Sent transaction on {network.key}: {tx_hash_hex}")
        return tx_hash_hex

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        """Poll the network the transaction was sent on, not the active one."""
        network = self._sent_on.get(tx_hash, self._network)
        web3 = get_async_web3(network)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            try:
                receipt = await web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None

            if receipt is not None:
                success = receipt["status"] == 1
                revert_reason = None if success else await self._revert_reason(network, tx_hash, receipt)
                self._sent_on.pop(tx_hash, None)
                return Receipt(
                    transaction_hash=tx_hash,
                    success=success,
                    block_number=receipt.get("blockNumber"),
                    gas_used=receipt.get("gasUsed"),
                    revert_reason=revert_reason,
                )

            if loop.time() >= deadline:
                raise ConfirmationTimeout(tx_hash=tx_hash)
            await asyncio.sleep(self.poll_interval)

    async def _revert_reason(self, network: Network, tx_hash: str, receipt) -> Optional[str]:
        """Replay a reverted transaction to recover its reason string."""
        web3 = get_async_web3(network)
        try:
            tx = await web3.eth.get_transaction(tx_hash)
            await web3.eth.call(
                {"from": tx["from"], "to": tx["to"], "value": tx["value"], "data": tx["input"]},
                block_identifier=receipt["blockNumber"],
            )
        except ContractLogicError as e:
            return str(e)
        except Exception as e:
            logger.debug(f"Could not replay {tx_hash} for revert reason: {e}")
        return None


class Web3BalanceReader(BalanceReader):
    """Balance and allowance reads over per-network AsyncWeb3 clients."""

    async def get_balance(self, token: Token, owner: str) -> int:
        web3 = get_async_web3(token.network)
        if token.is_native:
            return await web3.eth.get_balance(to_checksum_address(owner))

        data = f"{ERC20_BALANCE_OF_SELECTOR}{encode_address(owner)}"
        result = await web3.eth.call({"to": to_checksum_address(token.address), "data": data})
        return int.from_bytes(bytes(result), "big") if result else 0

    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        if token.is_native:
            return 2**256 - 1

        web3 = get_async_web3(token.network)
        data = f"{ERC20_ALLOWANCE_SELECTOR}{encode_address(owner)}{encode_address(spender)}"
        result = await web3.eth.call({"to": to_checksum_address(token.address), "data": data})
        return int.from_bytes(bytes(result), "big") if result else 0
