"""
Probe Dispatcher - rate-limited, cached, retrying probe execution.

Probes are queued and drained by a background loop. On each pass the loop
pops up to ``batch_size`` admissible probes, starts them concurrently and
pauses for the inter-batch delay. A probe is checked in this order when it
reaches the front of the queue:

1. Access control (method allow-list, Authorization header, body size)
2. Response cache (fresh hit short-circuits the network)
3. Rate limiter (min delay, rolling per-minute ceiling, concurrency ceiling)

Probes held back by the limiter go to the back of the queue. Failed probes
are re-queued until the retry ceiling is reached, then dropped with the
transport's fallback signal recorded on the result.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional, Set

from xssprobe.core.cache import ResponseCache
from xssprobe.core.config import (
    AccessControlConfig,
    CacheConfig,
    RequestLimitConfig,
    RequestQueueConfig,
    ScanConfig,
    settings,
)
from xssprobe.core.exceptions import (
    AccessDenied,
    ProbeTimeout,
    TransportFailure,
    XSSProbeException,
    is_transient,
    wrap_exception,
)
from xssprobe.core.models import ProbeRequest, ProbeResult, Variant
from xssprobe.core.rate_limiter import RateLimiter
from xssprobe.core.transport import ProbeTransport
from xssprobe.utils.logger import get_logger

logger = get_logger("core.dispatcher")

# How long the loop waits for capacity when the inter-batch delay is zero
IDLE_POLL_SECONDS = 0.05


@dataclass
class QueuedProbe:
    """A probe waiting in the dispatcher queue."""
    request: ProbeRequest
    future: Optional[asyncio.Future] = None
    variant: Optional[Variant] = None
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass
class DispatcherStats:
    total_enqueued: int = 0
    executed: int = 0
    succeeded: int = 0
    cache_hits: int = 0
    retries: int = 0
    dropped: int = 0
    denied: int = 0

    def to_dict(self) -> Dict[str, int]:
        """Export stats as dictionary."""
        return dict(vars(self))


class ProbeDispatcher:
    """
    Usage:
        dispatcher = ProbeDispatcher.from_config(HttpxTransport(), scan_config)
        dispatcher.start()
        result = await dispatcher.submit(ProbeRequest(url="https://target/?q=x"))
        await dispatcher.stop()
    """

    def __init__(
        self,
        transport: ProbeTransport,
        request_limit: Optional[RequestLimitConfig] = None,
        cache_config: Optional[CacheConfig] = None,
        access_control: Optional[AccessControlConfig] = None,
        queue_config: Optional[RequestQueueConfig] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        on_result: Optional[Callable[[ProbeResult], Any]] = None,
    ):
        request_limit = request_limit or RequestLimitConfig()
        cache_config = cache_config or CacheConfig()
        queue_config = queue_config or RequestQueueConfig()

        self.transport = transport
        self.access_control = access_control or AccessControlConfig()
        self.batch_size = queue_config.batch_size
        self.retry_attempts = queue_config.retry_attempts
        self.batch_delay = request_limit.request_delay
        self.timeout = timeout or settings.PROBE_TIMEOUT
        self.on_result = on_result

        self.rate_limiter = RateLimiter(
            min_delay=request_limit.request_delay,
            max_per_minute=request_limit.max_requests_per_minute,
            max_concurrent=request_limit.max_concurrent_requests,
            clock=clock,
        )
        self.cache = ResponseCache(
            ttl=cache_config.ttl,
            max_size=cache_config.max_size,
            enabled=cache_config.enabled,
            clock=clock,
        )

        self._queue: Deque[QueuedProbe] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._wakeup = asyncio.Event()
        self.processing = False
        self.stats = DispatcherStats()

    @classmethod
    def from_config(cls, transport: ProbeTransport, config: ScanConfig, **kwargs) -> "ProbeDispatcher":
        return cls(
            transport,
            request_limit=config.request_limit,
            cache_config=config.cache,
            access_control=config.access_control,
            queue_config=config.request_queue,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(self, request: ProbeRequest, variant: Optional[Variant] = None) -> None:
        """Queue a probe; its result is delivered to ``on_result``."""
        self._push(QueuedProbe(request=request, variant=variant))

    def submit(self, request: ProbeRequest, variant: Optional[Variant] = None) -> asyncio.Future:
        """Queue a probe and return a future for its ProbeResult.

        The future raises AccessDenied when access control rejects the probe.
        """
        future = asyncio.get_running_loop().create_future()
        self._push(QueuedProbe(request=request, future=future, variant=variant))
        return future

    def _push(self, item: QueuedProbe) -> None:
        self._queue.append(item)
        self.stats.total_enqueued += 1
        self._wakeup.set()

    def pending(self) -> int:
        return len(self._queue)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the draining loop (no-op when already running)."""
        if self.processing:
            return
        self.processing = True
        self._loop_task = asyncio.create_task(self._drain_loop())
        logger.info(
            f"Dispatcher started: batch_size={self.batch_size}, delay={self.batch_delay}s, "
            f"limit={self.rate_limiter.max_per_minute}/min, concurrency={self.rate_limiter.max_concurrent}"
        )

    async def stop(self, wait_in_flight: bool = True) -> None:
        """Halt the draining loop. In-flight probes still finish and deliver results."""
        self.processing = False
        self._wakeup.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if wait_in_flight and self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info(f"Dispatcher stopped: {self.stats.to_dict()}")

    def cancel_pending(self, reason: str = "dispatcher stopped") -> int:
        """Resolve every queued probe as failed without executing it."""
        cancelled = 0
        while self._queue:
            item = self._queue.popleft()
            self._resolve(item, ProbeResult(request=item.request, variant=item.variant, error=reason))
            cancelled += 1
        return cancelled

    async def _drain_loop(self) -> None:
        while self.processing:
            self._wakeup.clear()
            self._admit_batch()
            await asyncio.sleep(self.batch_delay)
            if not self.processing:
                break
            if self._queue:
                if self.batch_delay == 0:
                    await self._wait_for_wakeup(IDLE_POLL_SECONDS)
                continue
            await self._wakeup.wait()

    async def _wait_for_wakeup(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def check_access(self, request: ProbeRequest) -> None:
        """Raise AccessDenied when the probe must not execute."""
        method = request.method.upper()
        if method not in self.access_control.allowed_methods:
            raise AccessDenied(f"Method {method} not allowed", reason="method")
        if self.access_control.require_auth and not any(
            k.lower() == "authorization" for k in request.headers
        ):
            raise AccessDenied("Authorization header required", reason="auth")
        body_size = len(request.body.encode("utf-8")) if request.body else 0
        if body_size > self.access_control.max_payload_size:
            raise AccessDenied(
                f"Body of {body_size} bytes exceeds {self.access_control.max_payload_size}",
                reason="payload_size",
            )

    def _admit_batch(self) -> int:
        admitted = 0
        for _ in range(len(self._queue)):
            if admitted >= self.batch_size:
                break
            item = self._queue.popleft()
            if item.future is not None and item.future.done():
                continue

            try:
                self.check_access(item.request)
            except AccessDenied as e:
                self._reject(item, e)
                continue

            cached = self.cache.get(item.request.signature)
            if cached is not None:
                self.stats.cache_hits += 1
                self._resolve(item, ProbeResult(
                    request=item.request, variant=item.variant,
                    response=cached, success=True, from_cache=True,
                ))
                continue

            if not self.rate_limiter.try_acquire():
                self._queue.append(item)
                continue

            task = asyncio.create_task(self._execute(item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            admitted += 1
        return admitted

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, item: QueuedProbe) -> None:
        request = item.request
        self.stats.executed += 1
        failure: Optional[XSSProbeException] = None
        body = None
        try:
            body = await asyncio.wait_for(self.transport.send(request), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            failure = ProbeTimeout("Probe timed out", timeout_seconds=self.timeout, url=request.url, cause=e)
        except TransportFailure as e:
            failure = e
        except Exception as e:
            logger.error(f"Unexpected transport error for {request.url}: {e}", exc_info=True)
            failure = wrap_exception(e, TransportFailure)
        finally:
            self.rate_limiter.release()
            self._wakeup.set()

        if failure is None:
            self.cache.put(request.signature, body)
            self.stats.succeeded += 1
            self._resolve(item, ProbeResult(request=request, variant=item.variant, response=body, success=True))
            return
        await self._handle_failure(item, failure)

    async def _handle_failure(self, item: QueuedProbe, failure: XSSProbeException) -> None:
        request = item.request
        # Wrapped errors retry only when the underlying cause is transient
        retryable = is_transient(failure.cause if failure.cause is not None else failure)
        if retryable and request.retry_count < self.retry_attempts:
            request.retry_count += 1
            self.stats.retries += 1
            logger.debug(f"Retrying {request.url} ({request.retry_count}/{self.retry_attempts}): {failure}")
            self._queue.append(item)
            self._wakeup.set()
            return

        self.stats.dropped += 1
        logger.warning(f"Dropping probe {request.url} after {request.retry_count} retries: {failure}")
        logger.debug(f"Dropped probe: {request.to_curl()}")
        fallback = await self._fallback_signal(request)
        self._resolve(item, ProbeResult(
            request=request, variant=item.variant,
            error=str(failure), fallback_signal=fallback,
        ))

    async def _fallback_signal(self, request: ProbeRequest) -> Optional[bool]:
        try:
            return await asyncio.wait_for(self.transport.signal(request), timeout=self.timeout)
        except Exception as e:
            logger.debug(f"Fallback signal unavailable for {request.url}: {e}")
            return None

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _resolve(self, item: QueuedProbe, result: ProbeResult) -> None:
        if item.future is not None and not item.future.done():
            item.future.set_result(result)
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception as e:
                logger.error(f"Result listener failed: {e}", exc_info=True)

    def _reject(self, item: QueuedProbe, error: AccessDenied) -> None:
        self.stats.denied += 1
        logger.warning(f"Probe to {item.request.url} denied: {error}")
        if item.future is not None and not item.future.done():
            item.future.set_exception(error)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats.to_dict(),
            "queue_depth": len(self._queue),
            "in_flight": self.in_flight,
            "rate_limiter": self.rate_limiter.get_stats(),
            "cache": self.cache.get_stats(),
        }
