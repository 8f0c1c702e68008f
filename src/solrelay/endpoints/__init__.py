"""RPC endpoint registry, failover and health checking."""

from solrelay.endpoints.health import HealthMonitor, ProbeResult, check_endpoints, probe_endpoint
from solrelay.endpoints.manager import (
    EndpointManager,
    apply_health_policy,
    create_manager_from_settings,
)
from solrelay.endpoints.models import (
    Endpoint,
    FailoverConfig,
    HealthStatus,
    default_endpoints,
    load_endpoints,
)
from solrelay.endpoints.rpc import RpcClient

__all__ = [
    "Endpoint",
    "EndpointManager",
    "FailoverConfig",
    "HealthMonitor",
    "HealthStatus",
    "ProbeResult",
    "RpcClient",
    "apply_health_policy",
    "check_endpoints",
    "create_manager_from_settings",
    "default_endpoints",
    "load_endpoints",
    "probe_endpoint",
]
