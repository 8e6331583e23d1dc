"""Shared implementation for constant-product (Uniswap V2 style) routers.

PancakeSwap and Uniswap V2 expose the same router interface: ``getAmountsOut``
for quoting and the ``swapExact*`` family for execution. Subclasses only
declare their router deployments.
"""

import logging
import time
from decimal import Decimal
from typing import Optional

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from web3.exceptions import ContractLogicError

from swapflow.chains import Network
from swapflow.config import get_settings
from swapflow.errors import NoRoute, TransactionReverted
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.rpc import get_async_web3
from swapflow.swap.transactions import TransactionRequest
from swapflow.tokens import Token, normalize_address

logger = logging.getLogger(__name__)

# Uniswap V2 Router ABI (quoting only; swaps are encoded directly)
ROUTER_ABI = [
    {
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# Swap function signatures: (standard, fee-on-transfer tolerant)
SWAP_ETH_FOR_TOKENS = (
    "swapExactETHForTokens(uint256,address[],address,uint256)",
    "swapExactETHForTokensSupportingFeeOnTransferTokens(uint256,address[],address,uint256)",
)
SWAP_TOKENS_FOR_ETH = (
    "swapExactTokensForETH(uint256,uint256,address[],address,uint256)",
    "swapExactTokensForETHSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)",
)
SWAP_TOKENS_FOR_TOKENS = (
    "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)",
    "swapExactTokensForTokensSupportingFeeOnTransferTokens(uint256,uint256,address[],address,uint256)",
)

# Liquid intermediates tried for two-hop paths (wrapped native is added per network)
STABLE_INTERMEDIATES = {
    "ethereum": [
        "0xdAC17F958D2ee523a2206206994597C13D831ec7",  # USDT
        "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",  # USDC
    ],
    "bsc": [
        "0x55d398326f99059fF775485246999027B3197955",  # USDT-BEP20
        "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56",  # BUSD
        "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",  # USDC-BEP20
    ],
    "polygon": [
        "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",  # USDC
        "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",  # USDT
    ],
    "avalanche": [
        "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",  # USDC
        "0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7",  # USDT
    ],
    "arbitrum": ["0xaf88d065e77c8cC2239327C5EDb3A432268e5831"],  # USDC
    "optimism": ["0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"],  # USDC
    "base": ["0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"],  # USDC
}

# Spot-rate sample is 1/1000 of the trade
SAMPLE_DIVISOR = 1000
TRANSFER_FROM_FAILED = "TRANSFER_FROM_FAILED"


class UniswapV2StyleVenue(Venue):
    """Base venue for Uniswap V2 compatible routers."""

    # network key -> router address
    ROUTERS: dict[str, str] = {}

    def __init__(self, routers: Optional[dict[str, str]] = None):
        self.routers = dict(routers or self.ROUTERS)
        self._fee_on_transfer: set[tuple[str, str]] = set()

    @property
    def kind(self) -> VenueKind:
        return VenueKind.AMM

    def supports(self, request: SwapRequest) -> bool:
        return (
            request.from_network.key == request.to_network.key
            and request.from_network.key in self.routers
        )

    def router_for(self, network: Network) -> str:
        router = self.routers.get(network.key)
        if not router:
            raise NoRoute(f"{self.name} is not deployed on {network.name}")
        return router

    # ======================
    # Fee-on-transfer tokens
    # ======================

    def is_fee_on_transfer(self, token: Token) -> bool:
        if token.is_native:
            return False
        return token.key in self._fee_on_transfer or token.key in get_settings().fee_on_transfer_keys

    def mark_fee_on_transfer(self, token: Token) -> None:
        """Remember a token found to charge a transfer fee."""
        if token.key not in self._fee_on_transfer:
            logger.info(f"Marking {token} as fee-on-transfer for {self.name}")
            self._fee_on_transfer.add(token.key)

    # ======================
    # Quoting
    # ======================

    def _to_router_path(self, network: Network, path: tuple[str, ...]) -> list[str]:
        """Replace native placeholders with the wrapped native token."""
        native = {normalize_address(a, network) for a in network.native_addresses}
        router_path = []
        for address in path:
            if normalize_address(address, network) in native:
                address = network.wrapped_native
            router_path.append(to_checksum_address(address))
        return router_path

    def _candidate_paths(self, request: SwapRequest) -> list[tuple[str, ...]]:
        network = request.from_network
        start, end = request.from_token, request.to_token
        paths = [(start.address, end.address)]

        endpoints = {
            normalize_address(start.routing_address, network),
            normalize_address(end.routing_address, network),
        }
        intermediates = [network.wrapped_native] + STABLE_INTERMEDIATES.get(network.key, [])
        for middle in intermediates:
            if not middle or normalize_address(middle, network) in endpoints:
                continue
            paths.append((start.address, middle, end.address))
        return paths

    async def get_amounts_out(
        self,
        network: Network,
        amount_in_base_units: int,
        path: tuple[str, ...],
    ) -> list[int]:
        web3 = get_async_web3(network)
        router = web3.eth.contract(
            address=to_checksum_address(self.router_for(network)),
            abi=ROUTER_ABI,
        )
        amounts = await router.functions.getAmountsOut(
            amount_in_base_units,
            self._to_router_path(network, path),
        ).call()
        return [int(a) for a in amounts]

    async def quote(self, request: SwapRequest) -> Quote:
        network = request.from_network
        router = self.router_for(network)
        amount_in = request.from_amount_base_units

        best_path: Optional[tuple[str, ...]] = None
        best_out = 0
        for path in self._candidate_paths(request):
            try:
                amounts = await self.get_amounts_out(network, amount_in, path)
            except Exception as e:
                # Missing pair or no liquidity on this path
                logger.debug(f"{self.name} path {path} unavailable: {e}")
                continue
            if amounts and amounts[-1] > best_out:
                best_path, best_out = path, amounts[-1]

        if best_path is None or best_out <= 0:
            raise NoRoute(f"{self.name}: no liquidity for {request.from_token} -> {request.to_token}")

        impact = await self._price_impact(network, amount_in, best_out, best_path)
        is_fot = self.is_fee_on_transfer(request.from_token) or self.is_fee_on_transfer(request.to_token)

        logger.info(
            f"{self.name} quote on {network.key}: {amount_in} -> {best_out} "
            f"(hops: {len(best_path) - 1}, impact: {impact}%, fot: {is_fot})"
        )

        return Quote(
            venue=self.name,
            from_token=request.from_token,
            to_token=request.to_token,
            path=best_path,
            from_amount_base_units=amount_in,
            expected_output_base_units=best_out,
            price_impact_percent=impact,
            is_fee_on_transfer=is_fot,
            router_address=router,
            route_details={"network": network.key, "router": router},
            ttl_seconds=get_settings().quote_ttl_seconds,
        )

    async def _price_impact(
        self,
        network: Network,
        amount_in: int,
        amount_out: int,
        path: tuple[str, ...],
    ) -> Decimal:
        """Estimate price impact against the spot rate of a tiny sample trade."""
        sample_in = max(amount_in // SAMPLE_DIVISOR, 1)
        if sample_in >= amount_in:
            return Decimal("0")
        try:
            sample_out = (await self.get_amounts_out(network, sample_in, path))[-1]
        except Exception as e:
            logger.debug(f"{self.name} spot-rate sample failed: {e}")
            return Decimal("0")
        if sample_out <= 0:
            return Decimal("0")

        ideal_out = Decimal(sample_out) * Decimal(amount_in) / Decimal(sample_in)
        impact = (ideal_out - Decimal(amount_out)) / ideal_out * 100
        return max(impact, Decimal("0")).quantize(Decimal("0.01"))

    # ======================
    # Execution
    # ======================

    async def build_transaction(
        self,
        quote: Quote,
        request: SwapRequest,
        amount_out_min_base_units: int,
    ) -> TransactionRequest:
        network = request.from_network
        router = self.router_for(network)
        path = self._to_router_path(network, quote.path)
        recipient = to_checksum_address(request.recipient)
        deadline = int(time.time()) + get_settings().swap_deadline_seconds
        variant = 1 if quote.is_fee_on_transfer else 0

        if request.from_token.is_native:
            signature = SWAP_ETH_FOR_TOKENS[variant]
            args = [amount_out_min_base_units, path, recipient, deadline]
            value = quote.from_amount_base_units
        else:
            if request.to_token.is_native:
                signature = SWAP_TOKENS_FOR_ETH[variant]
            else:
                signature = SWAP_TOKENS_FOR_TOKENS[variant]
            args = [quote.from_amount_base_units, amount_out_min_base_units, path, recipient, deadline]
            value = 0

        arg_types = signature[signature.index("(") + 1 : -1].split(",")
        calldata = function_signature_to_4byte_selector(signature) + encode(arg_types, args)

        warnings = []
        if quote.is_fee_on_transfer:
            warnings.append("Token charges a transfer fee; received amount may be lower.")

        return TransactionRequest(
            network=network.key,
            chain_id=network.chain_id,
            to=router,
            value=value,
            data="0x" + calldata.hex(),
            description=f"Swap on {self.name} ({signature[: signature.index('(')]})",
            warnings=warnings,
        )

    async def simulate(self, tx: TransactionRequest, sender: str) -> None:
        """Dry-run the swap with eth_call."""
        web3 = get_async_web3(tx.network)
        params = tx.to_tx_params()
        params["from"] = to_checksum_address(sender)
        params["to"] = to_checksum_address(params["to"])
        params.pop("chainId", None)
        try:
            await web3.eth.call(params)
        except ContractLogicError as e:
            raise TransactionReverted(str(e))
