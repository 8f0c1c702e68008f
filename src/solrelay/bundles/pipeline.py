"""Bundle submission pipeline.

Flow for one operation:
1. Prepare: the backend returns partially signed bundles
2. Sign: local wallets fill their signer slots (config errors fail here,
   before any network attempt)
3. Submit: bundles go out strictly in order through the global rate limiter

A critical bundle (the first one, or every stage of a staged deployment) is
retried with exponential backoff; if it never lands the operation aborts and
later bundles are not sent. Other bundles get a single attempt and their
failures are only recorded.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Iterable, Optional, Sequence

from solders.keypair import Keypair

from solrelay.bundles.models import (
    BundleError,
    BundleResult,
    ErrorKind,
    OperationResult,
    SigningWallet,
    TransactionBundle,
    split_large_bundles,
)
from solrelay.bundles.operations import OperationAction, OperationRequest, validate_operation
from solrelay.bundles.relay import RelayClient
from solrelay.bundles.signing import complete_bundle_signing, create_keypairs, keypair_from_secret
from solrelay.errors import (
    TRANSIENT_ERRORS,
    ConfigurationError,
    ExhaustedError,
    NetworkError,
    ProtocolError,
)
from solrelay.utils.backoff import RetryPolicy, retry_delay
from solrelay.utils.ratelimit import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

RetryCallback = Callable[[int, Exception, float], None]


def _error_kind(error: Exception) -> ErrorKind:
    if isinstance(error, NetworkError):
        return ErrorKind.NETWORK
    if isinstance(error, ProtocolError):
        return ErrorKind.PROTOCOL
    if isinstance(error, ConfigurationError):
        return ErrorKind.CONFIGURATION
    return ErrorKind.EXHAUSTED


def _label(bundle: TransactionBundle, index: int) -> str:
    return f"'{bundle.name}'" if bundle.name else f"#{index}"


def _failure(error: str, total_bundles: int = 0) -> OperationResult:
    return OperationResult(
        success=False,
        total_bundles=total_bundles,
        error=error,
        message=error,
    )


class BundlePipeline:
    """Signs and submits prepared bundles with retry and rate limiting."""

    def __init__(
        self,
        relay: RelayClient,
        rate_limiter: Optional[RateLimiter] = None,
        policy: Optional[RetryPolicy] = None,
        bundle_delay: float = 0.1,
        max_bundle_size: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        on_retry: Optional[RetryCallback] = None,
    ):
        """Initialize the pipeline.

        Args:
            relay: Trading server client
            rate_limiter: Limiter gating every submission (process-wide one if omitted)
            policy: Critical-bundle retry policy
            bundle_delay: Delay before each later bundle, multiplied by its index
            max_bundle_size: Bundles above this many transactions are split
            sleep: Awaitable sleep used for backoff and bundle spacing
            rng: Random source for backoff jitter
            on_retry: Called as (attempt, error, delay) before each backoff
        """
        self.relay = relay
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.policy = policy or RetryPolicy()
        self.bundle_delay = bundle_delay
        self.max_bundle_size = max_bundle_size
        self._sleep = sleep
        self._rng = rng
        self.on_retry = on_retry

    @classmethod
    def from_settings(cls, settings=None, relay: Optional[RelayClient] = None) -> "BundlePipeline":
        """Create a pipeline from application settings."""
        if settings is None:
            from solrelay.config import get_settings
            settings = get_settings()

        return cls(
            relay=relay or RelayClient.from_settings(settings),
            policy=settings.retry_policy(),
            bundle_delay=settings.bundle_delay,
            max_bundle_size=settings.max_transactions_per_bundle,
        )

    async def _send(self, bundle: TransactionBundle) -> Optional[str]:
        await self.rate_limiter.acquire()
        return await self.relay.submit_bundle(bundle.transactions)

    async def submit_critical(self, bundle: TransactionBundle, index: int = 0) -> BundleResult:
        """Submit a bundle whose failure aborts the operation.

        Retries while attempts < max_attempts and consecutive errors <
        max_consecutive_errors. Consecutive errors are never reset (a success
        returns immediately), so an always-failing relay sees exactly
        min(max_attempts, max_consecutive_errors) attempts.

        Raises:
            ExhaustedError: If the retry budget runs out
        """
        attempt = 0
        consecutive_errors = 0
        last_error: Optional[Exception] = None

        while (
            attempt < self.policy.max_attempts
            and consecutive_errors < self.policy.max_consecutive_errors
        ):
            try:
                relay_id = await self._send(bundle)
            except TRANSIENT_ERRORS as e:
                last_error = e
                consecutive_errors += 1
                delay = retry_delay(attempt, base=self.policy.base_delay, rng=self._rng)
                attempt += 1
                logger.warning(
                    f"Bundle {_label(bundle, index)} attempt {attempt} failed: {e}"
                )

                if (
                    attempt < self.policy.max_attempts
                    and consecutive_errors < self.policy.max_consecutive_errors
                ):
                    if self.on_retry:
                        self.on_retry(attempt, e, delay)
                    await self._sleep(delay)
                continue

            logger.info(f"Bundle {_label(bundle, index)} landed on attempt {attempt + 1}: {relay_id}")
            return BundleResult(
                index=index,
                success=True,
                relay_id=relay_id,
                attempts=attempt + 1,
                name=bundle.name,
            )

        raise ExhaustedError(
            f"Failed to send bundle {_label(bundle, index)} after {attempt} attempts: {last_error}",
            attempts=attempt,
            last_error=last_error,
        )

    async def submit_best_effort(self, bundle: TransactionBundle, index: int) -> BundleResult:
        """Submit a bundle once; failures are recorded, not raised."""
        try:
            relay_id = await self._send(bundle)
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Bundle {_label(bundle, index)} failed: {e}")
            return BundleResult(
                index=index,
                success=False,
                error=BundleError(_error_kind(e), str(e)),
                attempts=1,
                name=bundle.name,
            )

        logger.info(f"Bundle {_label(bundle, index)} sent: {relay_id}")
        return BundleResult(index=index, success=True, relay_id=relay_id, attempts=1, name=bundle.name)

    async def submit_bundles(self, bundles: Sequence[TransactionBundle]) -> OperationResult:
        """Submit signed bundles strictly in order.

        A critical bundle is fully resolved before anything after it is
        attempted. If it fails, the remaining bundles are never sent.
        """
        total = len(bundles)
        results: list[BundleResult] = []

        for index, bundle in enumerate(bundles):
            if bundle.critical:
                try:
                    result = await self.submit_critical(bundle, index)
                except ExhaustedError as e:
                    results.append(
                        BundleResult(
                            index=index,
                            success=False,
                            error=BundleError(ErrorKind.EXHAUSTED, str(e)),
                            attempts=e.attempts,
                            name=bundle.name,
                        )
                    )
                    prefix = "First bundle failed" if index == 0 else f"Bundle {_label(bundle, index)} failed"
                    logger.error(f"{prefix}, aborting {total - index - 1} remaining bundle(s)")
                    return self._summarize(total, results, error=f"{prefix}: {e}")
            else:
                if index > 0 and self.bundle_delay > 0:
                    await self._sleep(self.bundle_delay * index)
                result = await self.submit_best_effort(bundle, index)

            results.append(result)

            if result.success and bundle.settle_delay > 0 and index < total - 1:
                logger.debug(f"Waiting {bundle.settle_delay}s for bundle {_label(bundle, index)} to settle")
                await self._sleep(bundle.settle_delay)

        return self._summarize(total, results)

    @staticmethod
    def _summarize(
        total: int,
        results: list[BundleResult],
        error: Optional[str] = None,
    ) -> OperationResult:
        success_count = sum(1 for r in results if r.success)
        failure_count = sum(1 for r in results if not r.success)

        if error:
            message = error
        elif failure_count:
            message = f"{failure_count} failed, {success_count} succeeded"
        else:
            message = f"All {success_count} bundle(s) submitted"

        return OperationResult(
            success=error is None and success_count > 0,
            total_bundles=total,
            success_count=success_count,
            failure_count=failure_count,
            per_bundle_results=results,
            error=error or (message if failure_count else None),
            message=message,
        )

    def sign_bundles(
        self,
        wallets: Iterable[SigningWallet],
        bundles: Sequence[TransactionBundle],
        extra_keypairs: Iterable[Keypair] = (),
    ) -> list[TransactionBundle]:
        """Split oversized bundles and sign everything.

        Raises:
            ConfigurationError: Invalid key material or a missing signer
            ProtocolError: A transaction could not be decoded
        """
        keypairs = create_keypairs(wallets)
        extra = list(extra_keypairs)
        split = split_large_bundles(list(bundles), self.max_bundle_size)
        signed = [complete_bundle_signing(bundle, keypairs, extra) for bundle in split]
        return [bundle for bundle in signed if bundle.transactions]

    async def execute(
        self,
        wallets: Iterable[SigningWallet],
        bundles: Sequence[TransactionBundle],
        extra_keypairs: Iterable[Keypair] = (),
    ) -> OperationResult:
        """Sign and submit already-prepared bundles."""
        try:
            signed = self.sign_bundles(wallets, bundles, extra_keypairs)
        except (ConfigurationError, ProtocolError) as e:
            logger.error(f"Signing failed, nothing submitted: {e}")
            return _failure(str(e), total_bundles=len(bundles))

        if not signed:
            return _failure("No transactions generated.")

        return await self.submit_bundles(signed)

    async def run_operation(
        self,
        action: OperationAction,
        wallets: Sequence[SigningWallet],
        request: OperationRequest,
        amounts: Optional[Sequence[float]] = None,
    ) -> OperationResult:
        """Prepare, sign and submit one buy/sell/create operation.

        Never raises except for cancellation; every failure is reported in
        the returned OperationResult.
        """
        valid, error = validate_operation(action, wallets, request, amounts)
        if not valid:
            return _failure(error or "Invalid operation")

        try:
            prepared = await self.relay.prepare_bundles(
                action, [w.address for w in wallets], request, amounts
            )

            extra_keypairs = []
            if prepared.extra_signer_key:
                try:
                    extra_keypairs.append(keypair_from_secret(prepared.extra_signer_key))
                except ConfigurationError as e:
                    logger.warning(f"Ignoring extra signer from backend: {e}")

            result = await self.execute(wallets, prepared.bundles, extra_keypairs)

        except TRANSIENT_ERRORS as e:
            logger.error(f"Failed to prepare {action.value}: {e}")
            return _failure(f"Failed to prepare {action.value}: {e}")
        except asyncio.CancelledError:
            logger.info(f"{action.value} operation cancelled")
            raise

        result.metadata.update(prepared.metadata)
        result.metadata["action"] = action.value
        logger.info(f"{action.value} finished: {result.message}")
        return result
