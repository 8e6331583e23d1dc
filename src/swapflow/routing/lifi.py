"""LI.FI bridge/aggregator venue.

LI.FI aggregates bridges and DEX aggregators, so it is the only venue that
can move value between networks and between settlement families. It is also
the fallback for same-network swaps on networks without an AMM venue.

API docs: https://docs.li.fi/li.fi-api/li.fi-api
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from swapflow.chains import NETWORKS
from swapflow.config import get_settings
from swapflow.errors import NoRoute, StaleQuote
from swapflow.routing.base import Quote, SwapRequest, Venue, VenueKind
from swapflow.swap.transactions import TransactionRequest

logger = logging.getLogger(__name__)

# LI.FI default slippage (fraction, 0.005 = 0.5%)
DEFAULT_SLIPPAGE = Decimal("0.005")


class LiFiVenue(Venue):
    """LI.FI cross-network bridge and aggregator venue."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        integrator: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize LI.FI venue.

        Args:
            api_url: API base URL (defaults to settings)
            api_key: Optional API key for higher rate limits
            integrator: Integrator tag sent with every request
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (tests)
        """
        settings = get_settings()
        self.api_url = (api_url or settings.lifi_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.lifi_api_key
        self.integrator = integrator or settings.lifi_integrator
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    @property
    def name(self) -> str:
        return "LI.FI"

    @property
    def kind(self) -> VenueKind:
        return VenueKind.BRIDGE

    def supports(self, request: SwapRequest) -> bool:
        return request.from_network.key in NETWORKS and request.to_network.key in NETWORKS

    def _get_headers(self) -> dict:
        """Get API headers."""
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            headers=self._get_headers(),
            transport=self._transport,
        )

    async def _fetch_quote(self, request: SwapRequest, slippage: Decimal) -> dict:
        params = {
            "fromChain": request.from_network.lifi_chain_id,
            "toChain": request.to_network.lifi_chain_id,
            "fromToken": request.from_token.address,
            "toToken": request.to_token.address,
            "fromAmount": str(request.from_amount_base_units),
            "fromAddress": request.signer_address,
            "toAddress": request.recipient,
            "slippage": str(slippage),
            "integrator": self.integrator,
        }

        try:
            async with self._client() as client:
                response = await client.get("/quote", params=params)
        except httpx.HTTPError as e:
            raise NoRoute(f"{self.name} request failed: {type(e).__name__}: {e}")

        if response.status_code != 200:
            message = _error_message(response)
            logger.warning(f"{self.name} quote error {response.status_code}: {message}")
            raise NoRoute(f"{self.name}: {message}")

        return response.json()

    async def quote(self, request: SwapRequest) -> Quote:
        data = await self._fetch_quote(request, DEFAULT_SLIPPAGE)

        estimate = data.get("estimate") or {}
        to_amount = int(estimate.get("toAmount") or 0)
        if to_amount <= 0:
            raise NoRoute(f"{self.name}: zero output for {request.from_token} -> {request.to_token}")

        path = [request.from_token.address]
        steps = data.get("includedSteps") or []
        for step in steps[:-1]:
            token = (step.get("action") or {}).get("toToken") or {}
            if token.get("address"):
                path.append(token["address"])
        path.append(request.to_token.address)

        impact = _usd_price_impact(estimate.get("fromAmountUSD"), estimate.get("toAmountUSD"))
        tools = [(s.get("toolDetails") or {}).get("name") or s.get("tool") for s in steps]

        logger.info(
            f"{self.name} quote {request.from_network.key} -> {request.to_network.key}: "
            f"{request.from_amount_base_units} -> {to_amount} via {data.get('tool')}"
        )

        return Quote(
            venue=self.name,
            from_token=request.from_token,
            to_token=request.to_token,
            path=tuple(path),
            from_amount_base_units=request.from_amount_base_units,
            expected_output_base_units=to_amount,
            price_impact_percent=impact,
            router_address=estimate.get("approvalAddress"),
            route_details={
                "tool": data.get("tool"),
                "steps": [t for t in tools if t],
                "estimated_time_seconds": estimate.get("executionDuration"),
            },
            ttl_seconds=get_settings().quote_ttl_seconds,
        )

    async def build_transaction(
        self,
        quote: Quote,
        request: SwapRequest,
        amount_out_min_base_units: int,
    ) -> TransactionRequest:
        """Re-request the route with the policy's slippage and use its transaction."""
        expected = Decimal(quote.expected_output_base_units)
        slippage = (expected - Decimal(amount_out_min_base_units)) / expected
        slippage = max(slippage, Decimal("0")).quantize(Decimal("0.0001"))

        data = await self._fetch_quote(request, slippage)
        estimate = data.get("estimate") or {}
        route_min = int(estimate.get("toAmountMin") or 0)
        if route_min < amount_out_min_base_units:
            raise StaleQuote(
                f"{self.name} route minimum {route_min} is below the required {amount_out_min_base_units}"
            )

        tx = data.get("transactionRequest") or {}
        if not tx:
            raise NoRoute(f"{self.name} returned no transaction")

        network = request.from_network
        if network.is_evm:
            return TransactionRequest(
                network=network.key,
                chain_id=network.chain_id,
                to=tx.get("to"),
                value=int(str(tx.get("value") or "0"), 0),
                data=tx.get("data") or "0x",
                gas_limit=int(str(tx["gasLimit"]), 0) if tx.get("gasLimit") else None,
                description=f"Swap via {self.name} ({data.get('tool')})",
            )

        return TransactionRequest(
            network=network.key,
            chain_id=network.chain_id,
            serialized=tx.get("data"),
            description=f"Swap via {self.name} ({data.get('tool')})",
        )


def _usd_price_impact(from_usd, to_usd) -> Decimal:
    """Price impact from the USD values of input and output."""
    try:
        from_value = Decimal(str(from_usd))
        to_value = Decimal(str(to_usd))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")
    if not from_value.is_finite() or not to_value.is_finite() or from_value <= 0:
        return Decimal("0")
    impact = (from_value - to_value) / from_value * 100
    return max(impact, Decimal("0")).quantize(Decimal("0.01"))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    return str(body.get("message") or body.get("error") or f"HTTP {response.status_code}")
