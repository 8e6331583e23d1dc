"""Jupiter order-routing venue for Solana.

Jupiter aggregates liquidity from Raydium, Orca, Meteora and other Solana
DEXes. It only routes within Solana; the swap is returned as a serialized
transaction that the wallet signs as-is.

API docs: https://dev.jup.ag/docs/swap-api
"""

import logging
from decimal import Decimal
from typing import Optional

import httpx

from swapflow.chains import SettlementFamily
from swapflow.config import get_settings
from swapflow.errors import NoRoute
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.swap.transactions import TransactionRequest
from swapflow.tokens import Token

logger = logging.getLogger(__name__)

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"

# Slippage used for quoting only; execution sets the policy's minimum
QUOTE_SLIPPAGE_BPS = 50


class JupiterVenue(Venue):
    """Jupiter DEX aggregator venue for Solana."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Jupiter venue.

        Args:
            api_url: Swap API base URL (defaults to settings)
            api_key: Optional API key for higher rate limits
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        settings = get_settings()
        self.api_url = (api_url or settings.jupiter_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.jupiter_api_key
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    @property
    def name(self) -> str:
        return "Jupiter"

    @property
    def kind(self) -> VenueKind:
        return VenueKind.ORDER_ROUTER

    def supports(self, request: SwapRequest) -> bool:
        return (
            request.from_network.key == request.to_network.key
            and request.from_network.family == SettlementFamily.SOLANA
        )

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            headers=self._get_headers(),
            transport=self._transport,
        )

    @staticmethod
    def _mint(token: Token) -> str:
        """Jupiter routes native SOL as the wrapped SOL mint."""
        return WRAPPED_SOL_MINT if token.is_native else token.address

    async def quote(self, request: SwapRequest) -> Quote:
        params = {
            "inputMint": self._mint(request.from_token),
            "outputMint": self._mint(request.to_token),
            "amount": str(request.from_amount_base_units),
            "slippageBps": QUOTE_SLIPPAGE_BPS,
        }

        try:
            async with self._client() as client:
                response = await client.get("/quote", params=params)
        except httpx.HTTPError as e:
            raise NoRoute(f"{self.name} request failed: {type(e).__name__}: {e}")

        if response.status_code != 200:
            logger.warning(f"{self.name} quote error {response.status_code}: {response.text[:200]}")
            raise NoRoute(f"{self.name}: no route ({response.status_code})")

        data = response.json()
        out_amount = int(data.get("outAmount") or 0)
        if out_amount <= 0:
            raise NoRoute(f"{self.name}: zero output for {request.from_token} -> {request.to_token}")

        path = [request.from_token.address]
        route_plan = data.get("routePlan") or []
        for leg in route_plan[:-1]:
            output_mint = (leg.get("swapInfo") or {}).get("outputMint")
            if output_mint:
                path.append(output_mint)
        path.append(request.to_token.address)

        # priceImpactPct is a fraction (0.01 = 1%)
        impact = Decimal(str(data.get("priceImpactPct") or "0")) * 100
        labels = [(leg.get("swapInfo") or {}).get("label") for leg in route_plan]

        logger.info(
            f"{self.name} quote: {request.from_amount_base_units} -> {out_amount} "
            f"via {', '.join(l for l in labels if l) or 'direct'}"
        )

        return Quote(
            venue=self.name,
            from_token=request.from_token,
            to_token=request.to_token,
            path=tuple(path),
            from_amount_base_units=request.from_amount_base_units,
            expected_output_base_units=out_amount,
            price_impact_percent=max(impact, Decimal("0")).quantize(Decimal("0.01")),
            route_details={"quote_response": data, "dexes": [l for l in labels if l]},
            ttl_seconds=get_settings().quote_ttl_seconds,
        )

    async def build_transaction(
        self,
        quote: Quote,
        request: SwapRequest,
        amount_out_min_base_units: int,
    ) -> TransactionRequest:
        """Request the serialized swap transaction with the policy's minimum."""
        quote_response = dict(quote.route_details.get("quote_response") or {})
        if not quote_response:
            raise NoRoute(f"{self.name} quote has no route payload")

        expected = quote.expected_output_base_units
        slippage_bps = -(-(expected - amount_out_min_base_units) * 10000 // expected)
        quote_response["slippageBps"] = slippage_bps
        quote_response["otherAmountThreshold"] = str(amount_out_min_base_units)

        payload = {
            "quoteResponse": quote_response,
            "userPublicKey": request.signer_address,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }

        try:
            async with self._client() as client:
                response = await client.post("/swap", json=payload)
        except httpx.HTTPError as e:
            raise NoRoute(f"{self.name} swap request failed: {type(e).__name__}: {e}")

        if response.status_code != 200:
            raise NoRoute(f"{self.name} swap build failed ({response.status_code}): {response.text[:200]}")

        serialized = response.json().get("swapTransaction")
        if not serialized:
            raise NoRoute(f"{self.name} returned no transaction")

        network = request.from_network
        return TransactionRequest(
            network=network.key,
            chain_id=network.chain_id,
            serialized=serialized,
            description=f"Swap on {self.name}",
        )
