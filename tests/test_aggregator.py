"""Tests for venue quote aggregation."""

import asyncio

import pytest

from conftest import BSC_USDT, FakeVenue, make_request
from swapflow.errors import InvalidAmount, NoRoute
from swapflow.routing.aggregator import (
    QuoteDebouncer,
    RouteKind,
    VenueQuoteAggregator,
    classify,
)
from swapflow.routing.base import VenueKind
from swapflow.tokens import Token


class TestClassify:
    """Tests for route classification."""

    def test_same_network(self, bnb, usdt):
        assert classify(make_request(bnb, usdt)) == RouteKind.SAME_NETWORK

    def test_cross_network(self, usdt, eth_usdc):
        assert classify(make_request(usdt, eth_usdc)) == RouteKind.CROSS_NETWORK

    def test_cross_family(self, usdt):
        sol = Token.native("solana")
        assert classify(make_request(usdt, sol)) == RouteKind.CROSS_FAMILY


class TestVenueSelection:
    """Tests for venue priority."""

    def test_bsc_priority(self, bnb, usdt):
        uniswap = FakeVenue(name="Uniswap V2")
        pancake = FakeVenue(name="PancakeSwap")
        bridge = FakeVenue(name="LI.FI", kind=VenueKind.BRIDGE)
        aggregator = VenueQuoteAggregator([bridge, uniswap, pancake])

        names = [v.name for v in aggregator.venues_for(make_request(bnb, usdt))]

        assert names == ["PancakeSwap", "Uniswap V2"]

    def test_cross_network_uses_bridge_only(self, usdt, eth_usdc):
        pancake = FakeVenue(name="PancakeSwap", networks=("bsc", "ethereum"))
        bridge = FakeVenue(name="LI.FI", kind=VenueKind.BRIDGE)
        aggregator = VenueQuoteAggregator([pancake, bridge])

        names = [v.name for v in aggregator.venues_for(make_request(usdt, eth_usdc))]

        assert names == ["LI.FI"]

    def test_network_without_amm_falls_back_to_bridge(self):
        avax = Token.native("avalanche")
        usdc = Token(network="avalanche", address="0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", decimals=6)
        uniswap = FakeVenue(name="Uniswap V2", networks=("ethereum",))
        bridge = FakeVenue(name="LI.FI", kind=VenueKind.BRIDGE)
        aggregator = VenueQuoteAggregator([uniswap, bridge])

        names = [v.name for v in aggregator.venues_for(make_request(avax, usdc))]

        assert names == ["LI.FI"]


class TestGetQuote:
    """Tests for VenueQuoteAggregator.get_quote."""

    @pytest.mark.asyncio
    async def test_first_venue_wins(self, bnb, usdt):
        pancake = FakeVenue(name="PancakeSwap", rate=2)
        uniswap = FakeVenue(name="Uniswap V2", rate=3)
        aggregator = VenueQuoteAggregator([uniswap, pancake])

        quote = await aggregator.get_quote(make_request(bnb, usdt))

        assert quote.venue == "PancakeSwap"
        assert uniswap.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_next_venue(self, bnb, usdt):
        pancake = FakeVenue(name="PancakeSwap", error=NoRoute("PancakeSwap: no liquidity"))
        uniswap = FakeVenue(name="Uniswap V2")
        aggregator = VenueQuoteAggregator([pancake, uniswap])

        quote = await aggregator.get_quote(make_request(bnb, usdt))

        assert quote.venue == "Uniswap V2"
        assert len(pancake.calls) == 1

    @pytest.mark.asyncio
    async def test_unexpected_venue_error_moves_on(self, bnb, usdt):
        pancake = FakeVenue(name="PancakeSwap", error=RuntimeError("rpc down"))
        uniswap = FakeVenue(name="Uniswap V2")
        aggregator = VenueQuoteAggregator([pancake, uniswap])

        quote = await aggregator.get_quote(make_request(bnb, usdt))

        assert quote.venue == "Uniswap V2"

    @pytest.mark.asyncio
    async def test_no_route_collects_reasons(self, bnb, usdt):
        pancake = FakeVenue(name="PancakeSwap", error=NoRoute("PancakeSwap: no pair"))
        uniswap = FakeVenue(name="Uniswap V2", error=RuntimeError("timeout"))
        aggregator = VenueQuoteAggregator([pancake, uniswap])

        with pytest.raises(NoRoute) as exc_info:
            await aggregator.get_quote(make_request(bnb, usdt))

        reasons = exc_info.value.reasons
        assert len(reasons) == 2
        assert "PancakeSwap: no pair" in reasons
        assert "timeout" in reasons[1]
        # Each venue is asked once
        assert len(pancake.calls) == 1
        assert len(uniswap.calls) == 1

    @pytest.mark.asyncio
    async def test_zero_output_is_failure(self, bnb, usdt):
        pancake = FakeVenue(name="PancakeSwap", rate=0)
        aggregator = VenueQuoteAggregator([pancake])

        with pytest.raises(NoRoute, match="zero output"):
            await aggregator.get_quote(make_request(bnb, usdt))

    @pytest.mark.asyncio
    async def test_invalid_amount_before_venue_call(self, venue, aggregator, bnb, usdt):
        with pytest.raises(InvalidAmount):
            await aggregator.get_quote(make_request(bnb, usdt, amount="0"))
        assert venue.calls == []

    @pytest.mark.asyncio
    async def test_no_supported_venue(self, bnb):
        aggregator = VenueQuoteAggregator([FakeVenue(networks=("ethereum",))])
        usdt = Token(network="bsc", address=BSC_USDT, decimals=18)

        with pytest.raises(NoRoute):
            await aggregator.get_quote(make_request(bnb, usdt))


class TestGenerations:
    """Tests for stale result handling."""

    @pytest.mark.asyncio
    async def test_current_result_returned(self, aggregator, bnb, usdt):
        result = await aggregator.fetch(make_request(bnb, usdt))

        assert result is not None
        assert result.quote is not None
        assert result.generation == aggregator.generation

    @pytest.mark.asyncio
    async def test_errors_are_results(self, bnb, usdt):
        aggregator = VenueQuoteAggregator([FakeVenue(error=NoRoute("no pair"))])

        result = await aggregator.fetch(make_request(bnb, usdt))

        assert result.quote is None
        assert isinstance(result.error, NoRoute)

    @pytest.mark.asyncio
    async def test_late_result_is_discarded(self, venue, aggregator, bnb, usdt):
        venue.gate = asyncio.Event()
        task = asyncio.create_task(aggregator.fetch(make_request(bnb, usdt)))
        await asyncio.sleep(0)

        aggregator.invalidate()
        venue.gate.set()

        assert await task is None

    def test_generation_is_monotonic(self, aggregator):
        first = aggregator.generation
        second = aggregator.invalidate()

        assert second > first
        assert aggregator.is_current(second)
        assert not aggregator.is_current(first)


class TestQuoteDebouncer:
    """Tests for the debounce window."""

    @pytest.mark.asyncio
    async def test_rapid_triggers_run_once(self):
        calls = []

        async def callback():
            calls.append(1)

        debouncer = QuoteDebouncer(callback, delay=0.02)
        for _ in range(3):
            debouncer.trigger()
            await asyncio.sleep(0.005)
        await debouncer.wait()

        assert calls == [1]
        assert not debouncer.pending

    @pytest.mark.asyncio
    async def test_cancel(self):
        calls = []

        async def callback():
            calls.append(1)

        debouncer = QuoteDebouncer(callback, delay=0.01)
        debouncer.trigger()
        debouncer.cancel()
        await asyncio.sleep(0.03)

        assert calls == []
