"""Application configuration using pydantic-settings.

Covers the trading relay, the global bundle rate limit, the critical-bundle
retry policy and the RPC endpoint failover/health-check policy.
"""

from functools import lru_cache
from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from solrelay.endpoints.models import FailoverConfig
    from solrelay.utils.backoff import RetryPolicy


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
    # Trading relay
    # ======================
    relay_url: str = Field(default="", description="Trading server base URL")
    relay_timeout: float = Field(default=30.0, description="Relay request timeout (seconds)")

    # ======================
    # Bundle submission
    # ======================
    max_bundles_per_second: int = Field(default=2, description="Global bundle submission cap")
    rate_limit_window: float = Field(default=1.0, description="Rate limit window (seconds)")
    max_transactions_per_bundle: int = Field(
        default=5, description="Bundles larger than this are split"
    )
    critical_max_attempts: int = Field(default=50, description="Max attempts for the first bundle")
    critical_max_consecutive_errors: int = Field(
        default=3, description="Consecutive errors before the first bundle gives up"
    )
    retry_base_delay: float = Field(default=0.2, description="Backoff base delay (seconds)")
    bundle_delay: float = Field(
        default=0.1, description="Delay before each later bundle, multiplied by its index"
    )

    # ======================
    # RPC endpoints
    # ======================
    rpc_endpoints: str = Field(default="", description="JSON list of RPC endpoints")
    rpc_timeout: float = Field(default=10.0, description="RPC request timeout (seconds)")
    rpc_max_failures: int = Field(default=3, description="Failures before an endpoint is skipped")
    rpc_failure_reset_seconds: float = Field(
        default=60.0, description="Idle time before failure counts reset"
    )
    rpc_auto_disable_threshold: int = Field(
        default=3, description="Consecutive failures before auto-disable"
    )
    rpc_auto_disable_on_unhealthy: bool = Field(default=True)
    rpc_auto_reenable_on_healthy: bool = Field(default=True)

    # ======================
    # Health checks
    # ======================
    health_check_interval: float = Field(default=60.0, description="Seconds between probes")
    health_check_timeout: float = Field(default=1.0, description="Probe timeout (seconds)")
    healthy_latency_ms: int = Field(default=200)
    slow_latency_ms: int = Field(default=500)

    @field_validator("relay_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def failover_config(self) -> "FailoverConfig":
        """Build the endpoint failover policy."""
        from solrelay.endpoints.models import FailoverConfig

        return FailoverConfig(
            max_failures=self.rpc_max_failures,
            failure_reset_seconds=self.rpc_failure_reset_seconds,
            auto_disable_threshold=self.rpc_auto_disable_threshold,
            auto_disable_on_unhealthy=self.rpc_auto_disable_on_unhealthy,
            auto_reenable_on_healthy=self.rpc_auto_reenable_on_healthy,
        )

    def retry_policy(self) -> "RetryPolicy":
        """Build the critical-bundle retry policy."""
        from solrelay.utils.backoff import RetryPolicy

        return RetryPolicy(
            max_attempts=self.critical_max_attempts,
            max_consecutive_errors=self.critical_max_consecutive_errors,
            base_delay=self.retry_base_delay,
        )

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "relay": {
                "url": self._redact_url(self.relay_url) or "(not set)",
                "timeout": self.relay_timeout,
            },
            "submission": {
                "max_bundles_per_second": self.max_bundles_per_second,
                "max_transactions_per_bundle": self.max_transactions_per_bundle,
                "critical_max_attempts": self.critical_max_attempts,
                "critical_max_consecutive_errors": self.critical_max_consecutive_errors,
            },
            "rpc": {
                "endpoints_configured": bool(self.rpc_endpoints),
                "max_failures": self.rpc_max_failures,
                "auto_disable_threshold": self.rpc_auto_disable_threshold,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
