"""PancakeSwap V2 router venue.

PancakeSwap is the largest DEX on BNB Smart Chain and the first AMM tried
there; it is the second AMM tried on Ethereum.

Docs: https://docs.pancakeswap.finance/
"""

from swapflow.routing.amm import UniswapV2StyleVenue

# PancakeSwap Router V2 deployments
PANCAKESWAP_ROUTERS = {
    "bsc": "0x10ED43C718714eb63d5aA57B78B54704E256024E",
    "ethereum": "0xEfF92A263d31888d860bD50809A8D171709b7b1c",
}


class PancakeSwapVenue(UniswapV2StyleVenue):
    """PancakeSwap V2 AMM venue (BSC, Ethereum)."""

    ROUTERS = PANCAKESWAP_ROUTERS

    @property
    def name(self) -> str:
        return "PancakeSwap"
