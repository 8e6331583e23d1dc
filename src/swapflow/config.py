"""Application configuration using pydantic-settings.

Every tunable of the quote/execution engine (RPC endpoints, venue APIs,
retry budgets, slippage limits) is read from the environment or `.env`.
"""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Network RPC Endpoints
    # ======================
    eth_rpc_url: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC URL")
    bsc_rpc_url: str = Field(default="https://bsc-dataseed.binance.org", description="BSC RPC URL")
    polygon_rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon RPC URL")
    arbitrum_rpc_url: str = Field(default="https://arb1.arbitrum.io/rpc", description="Arbitrum RPC URL")
    optimism_rpc_url: str = Field(default="https://mainnet.optimism.io", description="Optimism RPC URL")
    base_rpc_url: str = Field(default="https://mainnet.base.org", description="Base RPC URL")
    avax_rpc_url: str = Field(
        default="https://api.avax.network/ext/bc/C/rpc", description="Avalanche RPC URL"
    )
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )

    # ======================
    # Venue APIs
    # ======================
    lifi_api_url: str = Field(default="https://li.quest/v1", description="LI.FI API URL")
    lifi_api_key: str = Field(default="", description="LI.FI API key (optional)")
    lifi_integrator: str = Field(default="swapflow", description="LI.FI integrator tag")
    jupiter_api_url: str = Field(
        default="https://lite-api.jup.ag/swap/v1", description="Jupiter swap API URL"
    )
    jupiter_api_key: str = Field(default="", description="Jupiter API key (optional)")
    http_timeout_seconds: float = Field(default=30.0, description="Venue HTTP timeout")

    # ======================
    # Quoting
    # ======================
    quote_debounce_ms: int = Field(default=100, description="Debounce window for quote refetch")
    quote_ttl_seconds: int = Field(default=60, description="Quote validity period")

    # ======================
    # Slippage
    # ======================
    slippage_cap_percent: Decimal = Field(
        default=Decimal("50"), description="Upper bound for automatic slippage"
    )
    allow_unprotected_swaps: bool = Field(
        default=False,
        description="Allow the opt-in mode that sets the minimum output near zero",
    )
    fee_on_transfer_tokens: str = Field(
        default="",
        description="Comma-separated network:address list of known fee-on-transfer tokens",
    )

    # ======================
    # Retry budgets
    # ======================
    approval_max_attempts: int = Field(default=5, description="Allowance re-check attempts")
    approval_retry_delay_seconds: float = Field(default=1.0, description="Initial re-check delay")
    approval_receipt_timeout_seconds: float = Field(
        default=60.0, description="Wait budget for the approval receipt"
    )
    network_switch_max_attempts: int = Field(default=10, description="Network poll attempts")
    network_switch_retry_delay_seconds: float = Field(
        default=0.5, description="Initial network poll delay"
    )
    retry_backoff: float = Field(default=1.5, description="Backoff multiplier for retries")

    # ======================
    # Execution
    # ======================
    confirmation_timeout_seconds: float = Field(
        default=120.0, description="Wait budget for transaction confirmation"
    )
    receipt_poll_interval_seconds: float = Field(default=2.0, description="Receipt poll interval")
    swap_deadline_seconds: int = Field(default=1200, description="AMM swap deadline")
    recovery_fractions: str = Field(
        default="1,0.5,0.2,0.1,0.05",
        description="Fractions of the original amount tried after a revert",
    )
    recovery_slippage_buffer_percent: Decimal = Field(
        default=Decimal("10"), description="Extra slippage recommended for a recovery retry"
    )

    @property
    def recovery_fraction_list(self) -> list[Decimal]:
        """Parse recovery fractions into Decimals, largest first."""
        fractions = [Decimal(f.strip()) for f in self.recovery_fractions.split(",") if f.strip()]
        return sorted((f for f in fractions if 0 < f <= 1), reverse=True)

    @property
    def fee_on_transfer_keys(self) -> set[tuple[str, str]]:
        """Parse known fee-on-transfer tokens into (network, address) keys."""
        keys = set()
        for item in self.fee_on_transfer_tokens.split(","):
            if ":" not in item:
                continue
            network, address = item.strip().split(":", 1)
            address = address.strip()
            if address.startswith("0x"):
                address = address.lower()
            keys.add((network.strip().lower(), address))
        return keys

    def get_rpc_url(self, network: str) -> str:
        """Get RPC URL for a network key."""
        rpc_map = {
            "ethereum": self.eth_rpc_url,
            "bsc": self.bsc_rpc_url,
            "polygon": self.polygon_rpc_url,
            "arbitrum": self.arbitrum_rpc_url,
            "optimism": self.optimism_rpc_url,
            "base": self.base_rpc_url,
            "avalanche": self.avax_rpc_url,
            "solana": self.sol_rpc_url,
        }
        return rpc_map.get(network.lower(), "")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "rpc": {
                key: self.get_rpc_url(key)
                for key in (
                    "ethereum", "bsc", "polygon", "arbitrum",
                    "optimism", "base", "avalanche", "solana",
                )
            },
            "venues": {
                "lifi": self.lifi_api_url,
                "lifi_api_key": "***" if self.lifi_api_key else "(not set)",
                "jupiter": self.jupiter_api_url,
                "jupiter_api_key": "***" if self.jupiter_api_key else "(not set)",
            },
            "slippage": {
                "cap_percent": str(self.slippage_cap_percent),
                "allow_unprotected": self.allow_unprotected_swaps,
            },
            "execution": {
                "confirmation_timeout": self.confirmation_timeout_seconds,
                "deadline": self.swap_deadline_seconds,
                "recovery_fractions": self.recovery_fractions,
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def reset_settings_cache() -> None:
    """Drop the cached settings (tests change the environment)."""
    get_settings.cache_clear()
