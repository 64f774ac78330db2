"""Application configuration using pydantic-settings.

Controls discovery bounds, gateway timeouts, scoring weights and the
execution retry policy of the payment routing engine.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

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
    debug: bool = Field(default=True, description="Enable debug logging")
    dry_run: bool = Field(
        default=True, description="Use simulated gateways (no real quotes or transactions)"
    )

    # ======================
    # Route Discovery
    # ======================
    default_slippage: Decimal = Field(
        default=Decimal("0.005"), ge=0, lt=1, description="Default slippage tolerance (0.5%)"
    )
    max_bridge_hops: int = Field(default=2, ge=0, le=2, description="Maximum bridge edges per path")
    max_swap_hops: int = Field(default=2, ge=0, le=2, description="Maximum swap edges per path")
    hub_chains: str = Field(
        default="ethereum",
        description="Comma-separated chains a first bridge may target without an accept entry",
    )
    max_concurrent_sources: int = Field(
        default=8, ge=1, description="Candidate sources explored concurrently"
    )
    discovery_timeout: float = Field(
        default=20.0, gt=0, description="Overall discovery deadline in seconds"
    )
    gateway_timeout: float = Field(
        default=8.0, gt=0, description="Timeout for a single quote/balance/status call"
    )
    strict_address_validation: bool = Field(
        default=True, description="Enforce full-length EVM/base58 address formats"
    )

    # ======================
    # Scoring
    # ======================
    time_weight: Decimal = Field(
        default=Decimal("0.00001"), ge=0, description="Cost added per estimated second"
    )
    estimate_only_bridge_penalty: Decimal = Field(
        default=Decimal("0.01"), ge=0, description="Penalty for bridges quoted without a finalized route"
    )
    price_impact_threshold: Decimal = Field(
        default=Decimal("3"), ge=0, description="Price impact (percent) above which a swap is penalized"
    )
    high_price_impact_penalty: Decimal = Field(
        default=Decimal("0.05"), ge=0, description="Penalty for swaps above the price impact threshold"
    )

    # ======================
    # Execution
    # ======================
    quote_max_age_seconds: float = Field(
        default=30.0, gt=0, description="Swap quotes older than this are re-quoted before submission"
    )
    max_submission_retries: int = Field(
        default=3, ge=1, description="Attempts per step for transient submission errors"
    )
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0, description="Base delay for exponential retry backoff"
    )
    confirmation_timeout: float = Field(
        default=120.0, gt=0, description="Seconds to wait for a same-chain step to confirm"
    )
    confirmation_poll_interval: float = Field(
        default=2.0, ge=0, description="Seconds between transaction status polls"
    )
    bridge_timeout: float = Field(
        default=1800.0, gt=0, description="Seconds to wait for a bridge transfer to settle"
    )
    bridge_poll_interval: float = Field(
        default=15.0, ge=0, description="Seconds between bridge status polls"
    )
    execution_lock_timeout: Optional[float] = Field(
        default=30.0, description="Seconds to wait for the per-address execution lock (None = forever)"
    )

    # ======================
    # Quote APIs
    # ======================
    oneinch_api_url: str = Field(
        default="https://api.1inch.dev/swap/v6.0", description="1inch swap API base URL"
    )
    oneinch_api_key: str = Field(default="", description="1inch API key")
    jupiter_api_url: str = Field(
        default="https://quote-api.jup.ag/v6", description="Jupiter quote API base URL"
    )
    lifi_api_url: str = Field(default="https://li.quest/v1", description="LI.FI API base URL")
    lifi_integrator: str = Field(default="payroute", description="LI.FI integrator tag")

    @property
    def hub_chain_list(self) -> list[str]:
        """Parse hub chains into a list of lowercase chain keys."""
        return [c.strip().lower() for c in self.hub_chains.split(",") if c.strip()]

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "discovery": {
                "slippage": str(self.default_slippage),
                "max_bridge_hops": self.max_bridge_hops,
                "max_swap_hops": self.max_swap_hops,
                "hub_chains": self.hub_chain_list,
                "max_concurrent_sources": self.max_concurrent_sources,
                "discovery_timeout": self.discovery_timeout,
                "gateway_timeout": self.gateway_timeout,
            },
            "execution": {
                "quote_max_age_seconds": self.quote_max_age_seconds,
                "max_submission_retries": self.max_submission_retries,
                "confirmation_timeout": self.confirmation_timeout,
                "bridge_timeout": self.bridge_timeout,
            },
            "apis": {
                "oneinch": {
                    "url": self.oneinch_api_url,
                    "api_key": "***" if self.oneinch_api_key else "(not set)",
                },
                "jupiter": {"url": self.jupiter_api_url},
                "lifi": {"url": self.lifi_api_url, "integrator": self.lifi_integrator},
            },
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
