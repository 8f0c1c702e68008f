"""RPC endpoint data model and failover policy configuration."""

import json
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://solana-rpc.publicnode.com"


class HealthStatus(str, Enum):
    """Health status reported by the external prober."""
    HEALTHY = "healthy"
    SLOW = "slow"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class FailoverConfig:
    """Failure tracking and auto-disable policy.

    Attributes:
        max_failures: Failures before an endpoint is skipped by selection
        failure_reset_seconds: Idle time after which failure counts reset
        auto_disable_threshold: Consecutive failures before auto-disable
        auto_disable_on_unhealthy: Allow policy to deactivate endpoints
        auto_reenable_on_healthy: Allow policy to re-activate endpoints
    """
    max_failures: int = 3
    failure_reset_seconds: float = 60.0
    auto_disable_threshold: int = 3
    auto_disable_on_unhealthy: bool = True
    auto_reenable_on_healthy: bool = True


@dataclass
class Endpoint:
    """A candidate RPC endpoint.

    `failure_count` ages out after an idle window and drives selection;
    `consecutive_failures` only resets on a successful use and drives
    auto-disable.
    """

    id: str
    url: str
    name: str = ""
    is_active: bool = True
    priority: int = 1  # Lower sorts first
    weight: int = 0  # 0-100 among active endpoints
    failure_count: int = 0
    last_failure: Optional[float] = None
    last_used: Optional[float] = None
    consecutive_failures: int = 0
    latency: Optional[float] = None  # ms
    last_health_check: Optional[float] = None
    health_status: HealthStatus = HealthStatus.UNKNOWN
    auto_disabled: bool = False

    def __post_init__(self):
        if not self.name:
            self.name = self.id
        if not isinstance(self.health_status, HealthStatus):
            self.health_status = HealthStatus(self.health_status)

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        data = asdict(self)
        data["health_status"] = self.health_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Endpoint":
        """Build an endpoint from snake_case or camelCase keys."""
        def pick(snake: str, camel: str, default: Any = None) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            id=str(data["id"]),
            url=data["url"],
            name=data.get("name", ""),
            is_active=bool(pick("is_active", "isActive", True)),
            priority=int(data.get("priority", 1)),
            weight=int(data.get("weight") or 0),
            failure_count=int(pick("failure_count", "failureCount", 0) or 0),
            last_failure=pick("last_failure", "lastFailure"),
            last_used=pick("last_used", "lastUsed"),
            consecutive_failures=int(pick("consecutive_failures", "consecutiveFailures", 0) or 0),
            latency=data.get("latency"),
            last_health_check=pick("last_health_check", "lastHealthCheck"),
            health_status=pick("health_status", "healthStatus", HealthStatus.UNKNOWN.value),
            auto_disabled=bool(pick("auto_disabled", "autoDisabled", False)),
        )


def default_endpoints() -> list[Endpoint]:
    """Built-in endpoint used when nothing is configured."""
    return [
        Endpoint(
            id="default",
            url=DEFAULT_RPC_URL,
            name="PublicNode",
            is_active=True,
            priority=1,
            weight=100,
        )
    ]


def load_endpoints(raw: str) -> list[Endpoint]:
    """Parse a JSON list of endpoints.

    Raises:
        ValueError: If the JSON is malformed or not a list of objects
    """
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("RPC endpoints must be a JSON list")
    try:
        return [Endpoint.from_dict(item) for item in data]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid RPC endpoint entry: {e}") from e


def normalize_weights(endpoints: list[Endpoint]) -> list[Endpoint]:
    """Scale active endpoint weights so they total 100.

    When no active endpoint has a weight, spread 100 evenly. Mutates and
    returns the given list.
    """
    active = [e for e in endpoints if e.is_active]
    if not active:
        return endpoints

    total = sum(e.weight or 0 for e in active)
    if total > 0:
        for e in active:
            e.weight = round((e.weight / total) * 100)
    else:
        even = round(100 / len(active))
        for e in active:
            e.weight = even
    return endpoints
