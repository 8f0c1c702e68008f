#!/usr/bin/env python3
"""Probe the configured RPC endpoints and show what the failover policy does.

Usage:
    python scripts/check_endpoints.py
    RPC_ENDPOINTS='[{"id": "a", "url": "https://..."}]' python scripts/check_endpoints.py
"""

import asyncio
import logging
import sys
from functools import partial

from solrelay.config import get_settings
from solrelay.endpoints import (
    HealthMonitor,
    HealthStatus,
    create_manager_from_settings,
    probe_endpoint,
)

# Colors for output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
RESET = "\033[0m"

STATUS_COLORS = {
    HealthStatus.HEALTHY: GREEN,
    HealthStatus.SLOW: YELLOW,
    HealthStatus.UNHEALTHY: RED,
    HealthStatus.UNKNOWN: RESET,
}


def print_endpoint(endpoint) -> None:
    """Print one endpoint row with color."""
    color = STATUS_COLORS[endpoint.health_status]
    latency = f"{endpoint.latency:.0f}ms" if endpoint.latency is not None else "-"
    state = "active" if endpoint.is_active else ("auto-disabled" if endpoint.auto_disabled else "disabled")
    print(
        f"  {color}{endpoint.health_status.value:<10}{RESET} "
        f"{endpoint.name:<20} {latency:>7}  weight={endpoint.weight:<3} {state}"
    )


async def main() -> int:
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    manager = create_manager_from_settings(settings)
    probe = partial(
        probe_endpoint,
        timeout=settings.health_check_timeout,
        healthy_ms=settings.healthy_latency_ms,
        slow_ms=settings.slow_latency_ms,
    )
    monitor = HealthMonitor(manager, probe=probe, interval=settings.health_check_interval)

    print(f"\nProbing {len(monitor.endpoints)} RPC endpoint(s)...")
    endpoints = await monitor.run_once()

    for endpoint in endpoints:
        print_endpoint(endpoint)

    current = manager.current_endpoint()
    print(f"\nPreferred endpoint: {current.name} ({current.url})")

    healthy = [e for e in endpoints if e.health_status in (HealthStatus.HEALTHY, HealthStatus.SLOW)]
    return 0 if healthy else 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
