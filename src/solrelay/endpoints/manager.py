"""Endpoint registry with weighted selection and automatic failover.

Selection never gives up: when every endpoint has recently failed, failure
counts are wiped and selection runs again over the full active set. Policy
may auto-disable endpoints after repeated failures but never leaves the pool
without an active endpoint.
"""

import logging
import random
import threading
import time
from dataclasses import replace
from typing import Callable, Iterable, Optional

from solrelay.endpoints.models import (
    Endpoint,
    FailoverConfig,
    HealthStatus,
    default_endpoints,
    load_endpoints,
    normalize_weights,
)
from solrelay.errors import NoActiveEndpointsError

logger = logging.getLogger(__name__)


def _sort_endpoints(endpoints: list[Endpoint]) -> list[Endpoint]:
    return sorted(endpoints, key=lambda e: (e.priority, e.failure_count))


def _ensure_one_active(endpoints: list[Endpoint]) -> None:
    """Re-activate the least-failed endpoint if none is active."""
    if not endpoints or any(e.is_active for e in endpoints):
        return
    least_failed = min(endpoints, key=lambda e: e.failure_count or 0)
    least_failed.is_active = True
    least_failed.auto_disabled = False
    logger.warning(
        f"All endpoints disabled, keeping {least_failed.name} ({least_failed.url}) active"
    )


def apply_health_policy(
    endpoints: list[Endpoint],
    config: Optional[FailoverConfig] = None,
) -> list[Endpoint]:
    """Apply auto-disable / auto-re-enable policy to a health snapshot.

    Pure: the input endpoints are not modified and no I/O is performed.
    Each endpoint is expected to carry the `health_status` measured by an
    external prober.

    Args:
        endpoints: Snapshot of endpoints with measured health status
        config: Failover policy (defaults if omitted)

    Returns:
        New list of updated endpoint copies
    """
    config = config or FailoverConfig()
    updated_endpoints = []

    for endpoint in endpoints:
        updated = replace(endpoint)

        if (
            config.auto_disable_on_unhealthy
            and updated.is_active
            and not updated.auto_disabled
            and updated.health_status == HealthStatus.UNHEALTHY
        ):
            updated.consecutive_failures += 1
            if updated.consecutive_failures >= config.auto_disable_threshold:
                updated.is_active = False
                updated.auto_disabled = True
                logger.info(f"Auto-disabling unhealthy endpoint {updated.name}")

        if (
            config.auto_reenable_on_healthy
            and updated.auto_disabled
            and not updated.is_active
            and updated.health_status == HealthStatus.HEALTHY
        ):
            updated.is_active = True
            updated.auto_disabled = False
            updated.consecutive_failures = 0
            updated.failure_count = 0
            logger.info(f"Re-enabling recovered endpoint {updated.name}")

        if updated.health_status in (HealthStatus.HEALTHY, HealthStatus.SLOW):
            updated.consecutive_failures = 0

        updated_endpoints.append(updated)

    _ensure_one_active(updated_endpoints)
    return updated_endpoints


class EndpointManager:
    """Hands out RPC endpoints while steering load away from failing ones.

    Example:
        manager = EndpointManager(endpoints)
        endpoint = manager.select_endpoint()
        try:
            ...  # use endpoint.url
            manager.mark_success(endpoint)
        except NetworkError:
            manager.mark_failure(endpoint)
    """

    def __init__(
        self,
        endpoints: list[Endpoint],
        config: Optional[FailoverConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the manager.

        Args:
            endpoints: Full endpoint list; only active ones are kept
            config: Failover policy
            rng: Random source for weighted selection
            clock: Wall-clock source (seconds)

        Raises:
            NoActiveEndpointsError: If no endpoint is active
        """
        self.config = config or FailoverConfig()
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.RLock()
        self._rr_index = 0

        self._endpoints = _sort_endpoints([e for e in endpoints if e.is_active])
        if not self._endpoints:
            raise NoActiveEndpointsError()

    @property
    def endpoints(self) -> list[Endpoint]:
        """All managed endpoints (copy of the list)."""
        with self._lock:
            return list(self._endpoints)

    @property
    def active_endpoints(self) -> list[Endpoint]:
        with self._lock:
            return [e for e in self._endpoints if e.is_active]

    def _reset_failure_if_idle(self, endpoint: Endpoint, now: float) -> None:
        if (
            endpoint.last_failure is not None
            and now - endpoint.last_failure > self.config.failure_reset_seconds
        ):
            endpoint.failure_count = 0
            endpoint.last_failure = None

    def _select_by_weight(self, candidates: list[Endpoint]) -> Endpoint:
        if len(candidates) == 1:
            return candidates[0]

        total_weight = sum(e.weight or 0 for e in candidates)
        if total_weight <= 0:
            # No weights set: round-robin
            endpoint = candidates[self._rr_index % len(candidates)]
            self._rr_index += 1
            return endpoint

        remaining = self._rng.random() * total_weight
        for endpoint in candidates:
            remaining -= endpoint.weight or 0
            if remaining <= 0:
                return endpoint
        return candidates[0]

    def select_endpoint(self, exclude: Iterable[str] = ()) -> Endpoint:
        """Pick an endpoint for the next request.

        Always returns an endpoint: if every active endpoint has hit
        max_failures, all failure counters are reset and selection is
        retried over the full active set.

        Args:
            exclude: Endpoint ids to avoid while any other active endpoint
                remains (e.g. ones already tried for this request)
        """
        exclude = set(exclude)
        with self._lock:
            now = self._clock()
            for endpoint in self._endpoints:
                self._reset_failure_if_idle(endpoint, now)

            active = [e for e in self._endpoints if e.is_active]
            if not active:
                _ensure_one_active(self._endpoints)
                active = [e for e in self._endpoints if e.is_active]

            candidates = [e for e in active if e.failure_count < self.config.max_failures]
            if exclude:
                untried = [e for e in active if e.id not in exclude]
                if untried:
                    candidates = [
                        e for e in untried if e.failure_count < self.config.max_failures
                    ] or untried

            if not candidates:
                logger.warning("All RPC endpoints exhausted, resetting failure counts")
                for endpoint in self._endpoints:
                    endpoint.failure_count = 0
                    endpoint.last_failure = None
                candidates = active

            endpoint = self._select_by_weight(candidates)
            logger.debug(f"Selected RPC endpoint {endpoint.name} ({endpoint.url})")
            return endpoint

    def mark_success(self, endpoint: Endpoint) -> None:
        """Record a successful use of an endpoint."""
        with self._lock:
            endpoint.last_used = self._clock()
            endpoint.failure_count = 0
            endpoint.last_failure = None
            endpoint.consecutive_failures = 0

            if (
                self.config.auto_reenable_on_healthy
                and endpoint.auto_disabled
                and not endpoint.is_active
            ):
                endpoint.is_active = True
                endpoint.auto_disabled = False
                endpoint.health_status = HealthStatus.HEALTHY
                logger.info(f"Re-enabled endpoint {endpoint.name} after successful use")

    def mark_failure(self, endpoint: Endpoint) -> None:
        """Record a failed use of an endpoint, auto-disabling it if needed."""
        with self._lock:
            endpoint.failure_count += 1
            endpoint.last_failure = self._clock()
            endpoint.consecutive_failures += 1

            logger.debug(
                f"Endpoint {endpoint.name} failed "
                f"({endpoint.consecutive_failures} consecutive)"
            )

            if (
                self.config.auto_disable_on_unhealthy
                and endpoint.is_active
                and endpoint.consecutive_failures >= self.config.auto_disable_threshold
            ):
                endpoint.is_active = False
                endpoint.auto_disabled = True
                endpoint.health_status = HealthStatus.UNHEALTHY
                logger.warning(
                    f"Auto-disabled endpoint {endpoint.name} after "
                    f"{endpoint.consecutive_failures} consecutive failures"
                )
                _ensure_one_active(self._endpoints)

    def current_endpoint(self) -> Endpoint:
        """Best-ranked endpoint that is still usable, without selecting it."""
        with self._lock:
            usable = [
                e for e in self._endpoints
                if e.is_active and e.failure_count < self.config.max_failures
            ]
            return usable[0] if usable else self._endpoints[0]

    def update_endpoints(self, endpoints: list[Endpoint]) -> None:
        """Replace the managed endpoints (e.g. after a health-check pass).

        Active weights are normalized to total 100 and inactive endpoints
        are dropped.

        Raises:
            NoActiveEndpointsError: If no endpoint is active
        """
        normalize_weights(endpoints)
        active = _sort_endpoints([e for e in endpoints if e.is_active])
        if not active:
            raise NoActiveEndpointsError()

        with self._lock:
            self._endpoints = active
            self._rr_index = 0

    def process_health_checks(self, endpoints: list[Endpoint]) -> list[Endpoint]:
        """Apply this manager's policy to a health snapshot (pure)."""
        return apply_health_policy(endpoints, self.config)


def create_manager_from_settings(settings=None) -> EndpointManager:
    """Build a manager from configured endpoints, falling back to defaults."""
    if settings is None:
        from solrelay.config import get_settings
        settings = get_settings()

    endpoints: list[Endpoint] = []
    if settings.rpc_endpoints:
        try:
            endpoints = load_endpoints(settings.rpc_endpoints)
        except ValueError as e:
            logger.error(f"Failed to parse RPC endpoints, using defaults: {e}")

    config = settings.failover_config()
    if not any(e.is_active for e in endpoints):
        endpoints = default_endpoints()

    return EndpointManager(endpoints, config=config)
