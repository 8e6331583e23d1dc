"""Uniswap V2 router venue.

The canonical Uniswap V2 router on Ethereum plus the official V2 deployments
on other EVM networks.
"""

from swapflow.routing.amm import UniswapV2StyleVenue

# Uniswap V2 Router02 deployments
UNISWAP_V2_ROUTERS = {
    "ethereum": "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
    "bsc": "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
    "base": "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
    "arbitrum": "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
    "avalanche": "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24",
    "polygon": "0xedf6066a2b290C185783862C7F4776A2C8077AD1",
    "optimism": "0x4A7b5Da61326A6379179b40d00F57E5bbDC4e3A2",
}


class UniswapV2Venue(UniswapV2StyleVenue):
    """Uniswap V2 AMM venue."""

    ROUTERS = UNISWAP_V2_ROUTERS

    @property
    def name(self) -> str:
        return "Uniswap V2"
