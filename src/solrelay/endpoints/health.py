"""Endpoint health probing.

The prober does the network I/O and only records measurements. Deciding
what to disable or re-enable is left to EndpointManager.process_health_checks,
which is a pure function over the resulting snapshot.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional

import httpx

from solrelay.endpoints.manager import EndpointManager
from solrelay.endpoints.models import Endpoint, HealthStatus
from solrelay.errors import NoActiveEndpointsError

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of probing one endpoint."""
    status: HealthStatus
    latency_ms: float


Probe = Callable[[str], Awaitable[ProbeResult]]


def classify_latency(
    latency_ms: float,
    healthy_ms: int = 200,
    slow_ms: int = 500,
) -> HealthStatus:
    """Map a measured round-trip time to a health status."""
    if latency_ms < healthy_ms:
        return HealthStatus.HEALTHY
    if latency_ms < slow_ms:
        return HealthStatus.SLOW
    return HealthStatus.UNHEALTHY


async def probe_endpoint(
    url: str,
    timeout: float = 1.0,
    method: str = "getSlot",
    healthy_ms: int = 200,
    slow_ms: int = 500,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProbeResult:
    """Time a single JSON-RPC call against an endpoint.

    Never raises: any failure is reported as unhealthy.
    """
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(
                url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": []},
            )
        latency_ms = round((time.monotonic() - start) * 1000)

        if response.status_code != 200:
            return ProbeResult(HealthStatus.UNHEALTHY, latency_ms)

        data = response.json()
        if not isinstance(data, dict) or data.get("error"):
            return ProbeResult(HealthStatus.UNHEALTHY, latency_ms)

        return ProbeResult(classify_latency(latency_ms, healthy_ms, slow_ms), latency_ms)

    except (httpx.HTTPError, ValueError) as e:
        latency_ms = round((time.monotonic() - start) * 1000)
        logger.debug(f"Health probe failed for {url}: {type(e).__name__}: {e}")
        return ProbeResult(HealthStatus.UNHEALTHY, latency_ms)


async def check_endpoints(
    endpoints: list[Endpoint],
    probe: Probe = probe_endpoint,
    auto_reenable: bool = True,
) -> list[Endpoint]:
    """Probe endpoints concurrently and return an updated snapshot.

    Manually deactivated endpoints are not probed and report unknown.
    Auto-disabled endpoints are probed only when re-enabling is allowed.
    """

    async def check(endpoint: Endpoint) -> Endpoint:
        if not endpoint.is_active and not (auto_reenable and endpoint.auto_disabled):
            return replace(endpoint, health_status=HealthStatus.UNKNOWN)

        result = await probe(endpoint.url)
        return replace(
            endpoint,
            latency=result.latency_ms,
            health_status=result.status,
            last_health_check=time.time(),
        )

    return list(await asyncio.gather(*(check(e) for e in endpoints)))


class HealthMonitor:
    """Periodically probes endpoints and feeds results into the manager.

    The monitor keeps the full endpoint list, including disabled endpoints
    the manager no longer hands out, so recovered endpoints can be
    re-enabled.
    """

    def __init__(
        self,
        manager: EndpointManager,
        endpoints: Optional[list[Endpoint]] = None,
        probe: Probe = probe_endpoint,
        interval: float = 60.0,
    ):
        self.manager = manager
        self.endpoints = list(endpoints) if endpoints is not None else manager.endpoints
        self.probe = probe
        self.interval = interval
        self._running = False

    async def run_once(self) -> list[Endpoint]:
        """Run one probe pass and apply the health policy."""
        snapshot = await check_endpoints(
            self.endpoints,
            probe=self.probe,
            auto_reenable=self.manager.config.auto_reenable_on_healthy,
        )
        self.endpoints = self.manager.process_health_checks(snapshot)

        try:
            self.manager.update_endpoints(self.endpoints)
        except NoActiveEndpointsError:
            # Only possible for an empty endpoint list
            logger.error("Health check left no active endpoints")

        healthy = sum(1 for e in self.endpoints if e.health_status == HealthStatus.HEALTHY)
        active = sum(1 for e in self.endpoints if e.is_active)
        logger.info(
            f"Health check: {healthy}/{len(self.endpoints)} healthy, {active} active"
        )
        return self.endpoints

    async def run(self) -> None:
        """Run the probe loop until stop() is called."""
        self._running = True
        logger.info(f"Starting endpoint health monitor (interval: {self.interval}s)")

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Health monitor error: {e}")

            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        """Stop the probe loop."""
        self._running = False
        logger.info("Stopping endpoint health monitor")
