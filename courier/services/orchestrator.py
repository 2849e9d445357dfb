"""
Orchestrator - request lifecycle coordinator.

Combines:
- RequestDeduplicator for concurrent duplicate suppression
- ConnectivityMonitor + RequestQueue for offline deferral
- CachePolicy + CacheStore for response caching
- RetryPolicy around a pluggable Transport

Every execution resolves to a ``Success`` or ``Failure``; transport, cache
and queue errors never escape ``execute``.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from courier.services.cache import (
    CacheEntry,
    CachePolicy,
    CacheStore,
    MemoryCacheStore,
    NoCachePolicy,
)
from courier.services.connectivity import ConnectivityMonitor
from courier.services.deduplicator import RequestDeduplicator
from courier.services.errors import (
    BadResponseError,
    NetworkError,
    RequestCancelledError,
    TransportTimeoutError,
)
from courier.services.events import (
    CacheHit,
    CacheMiss,
    ConnectivityChanged,
    Event,
    EventBus,
    RequestCompleted,
)
from courier.services.interceptors import Interceptor, InterceptorChain
from courier.services.metrics import MetricsCollector
from courier.services.models import (
    ErrorCategory,
    Failure,
    Request,
    RequestMetrics,
    ResponseDecoder,
    Result,
    Success,
    identity_decoder,
    new_correlation_id,
)
from courier.services.queue import (
    MemoryQueueStorage,
    ProcessOutcome,
    QueuedRequest,
    QueueStorageType,
    RequestQueue,
)
from courier.services.retry import NoRetryPolicy, RetryPolicy
from courier.services.transport import Transport
from courier.settings import Settings, global_settings
from courier.utils import DEFAULT_SENSITIVE_HEADERS, redact_headers, safe_job

# Failures after which NetworkFirst falls back to the cache
FALLBACK_CATEGORIES = frozenset({ErrorCategory.NETWORK, ErrorCategory.TIMEOUT})


def categorize_error(error: BaseException) -> ErrorCategory:
    """Map an exception raised by a transport attempt to a failure category."""
    if isinstance(error, (TransportTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, NetworkError):
        return ErrorCategory.NETWORK
    if isinstance(error, RequestCancelledError):
        return ErrorCategory.CANCELLED
    if isinstance(error, BadResponseError):
        return ErrorCategory.BAD_RESPONSE
    return ErrorCategory.UNKNOWN


@dataclass
class OrchestratorConfig:
    """Configuration shared by every request of an orchestrator."""

    default_timeout: timedelta = timedelta(seconds=30)
    default_headers: dict[str, str] = field(default_factory=dict)
    retry_policy: RetryPolicy = field(default_factory=NoRetryPolicy)
    cache_policy: CachePolicy = field(default_factory=NoCachePolicy)
    enable_dedup: bool = True
    dedup_window: timedelta = timedelta(seconds=5)
    enable_queue: bool = True
    queue_storage: QueueStorageType = QueueStorageType.MEMORY
    max_queue_size: int = 100
    max_queue_age: timedelta = timedelta(days=7)
    connectivity_interval: timedelta = timedelta(seconds=10)
    cache_sweep_interval: timedelta = timedelta(minutes=10)
    auto_replay_on_reconnect: bool = False
    max_replay_attempts: int = 5
    sensitive_headers: frozenset[str] = DEFAULT_SENSITIVE_HEADERS
    database_url: str = "sqlite+aiosqlite:///./courier.db"
    database_echo: bool = False
    debug: bool = False

    @classmethod
    def from_settings(
        cls, settings: Settings | None = None, **overrides: Any
    ) -> "OrchestratorConfig":
        """Build a config from environment settings, then apply overrides."""
        s = settings or global_settings
        values: dict[str, Any] = {
            "default_timeout": timedelta(seconds=s.default_timeout_seconds),
            "enable_dedup": s.enable_dedup,
            "dedup_window": timedelta(seconds=s.dedup_window_seconds),
            "enable_queue": s.enable_queue,
            "queue_storage": QueueStorageType(s.queue_storage.lower()),
            "max_queue_size": s.max_queue_size,
            "max_queue_age": timedelta(hours=s.max_queue_age_hours),
            "connectivity_interval": timedelta(
                seconds=s.connectivity_interval_seconds
            ),
            "cache_sweep_interval": timedelta(seconds=s.cache_sweep_interval_seconds),
            "auto_replay_on_reconnect": s.auto_replay_on_reconnect,
            "max_replay_attempts": s.max_replay_attempts,
            "database_url": s.database_url,
            "database_echo": s.database_echo,
            "debug": s.debug,
        }
        values.update(overrides)
        return cls(**values)


@dataclass
class RequestOptions:
    """Per-request overrides; ``None`` means use the orchestrator config."""

    timeout: timedelta | None = None
    headers: dict[str, str] | None = None
    retry_policy: RetryPolicy | None = None
    cache_policy: CachePolicy | None = None
    enable_dedup: bool | None = None
    dedup_window: timedelta | None = None
    enable_queue: bool | None = None
    tags: frozenset[str] | set[str] | None = None


@dataclass(frozen=True)
class _EffectiveOptions:
    timeout: timedelta | None
    headers: dict[str, str]
    retry_policy: RetryPolicy
    cache_policy: CachePolicy
    enable_dedup: bool
    dedup_window: timedelta
    enable_queue: bool
    tags: frozenset[str]


class Orchestrator:
    """
    Resilient request orchestration in front of a transport.

    Usage:
        async with Orchestrator(
            transport=HttpxTransport(),
            config=OrchestratorConfig(
                retry_policy=ExponentialBackoffRetryPolicy(
                    max_attempts=3, initial_delay=timedelta(milliseconds=500)
                ),
                cache_policy=CacheFirstCachePolicy(ttl=timedelta(minutes=1)),
            ),
        ) as orchestrator:
            result = await orchestrator.get("https://api.example.com/items")
            if isinstance(result, Success):
                ...
            elif isinstance(result, Failure):
                ...
    """

    def __init__(
        self,
        transport: Transport,
        config: OrchestratorConfig | None = None,
        cache_store: CacheStore | None = None,
        request_queue: RequestQueue | None = None,
        connectivity: ConnectivityMonitor | None = None,
        events: EventBus | None = None,
        interceptors: list[Interceptor] | None = None,
    ):
        self.transport = transport
        self.config = config or OrchestratorConfig()
        self.events = events or EventBus(debug=self.config.debug)
        self.interceptors = InterceptorChain(interceptors)
        self.metrics = MetricsCollector(self.events)

        self.cache_store = cache_store or MemoryCacheStore(
            events=self.events, debug=self.config.debug
        )
        self.queue = (
            request_queue
            if request_queue is not None
            else self._build_queue(self.config.queue_storage)
        )
        self.connectivity = connectivity or ConnectivityMonitor(
            interval=self.config.connectivity_interval,
            events=self.events,
        )

        self._deduplicator = RequestDeduplicator(
            window=self.config.dedup_window, debug=self.config.debug
        )
        self._active: dict[str, Request] = {}
        self._cancel_tokens: dict[str, asyncio.Event] = {}
        self._attempts: dict[str, asyncio.Future[Result]] = {}
        self._pending_writes: set[asyncio.Task[None]] = set()
        self._replay_task: asyncio.Task[int] | None = None

        self.scheduler = AsyncIOScheduler()
        self._started = False

        if self.config.auto_replay_on_reconnect:
            self.connectivity.events.add_listener(self._on_connectivity_event)

    def _build_queue(self, storage_type: QueueStorageType) -> RequestQueue | None:
        if storage_type == QueueStorageType.NONE:
            return None

        if storage_type == QueueStorageType.PERSISTENT:
            from courier.datastore.engine import Database
            from courier.datastore.stores import SqlQueueStorage

            storage = SqlQueueStorage(
                Database(self.config.database_url, echo=self.config.database_echo)
            )
        else:
            storage = MemoryQueueStorage()

        return RequestQueue(
            storage=storage,
            max_size=self.config.max_queue_size,
            max_age=self.config.max_queue_age,
            events=self.events,
            debug=self.config.debug,
        )

    # Request construction

    def build_request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: timedelta | None = None,
        tags: set[str] | frozenset[str] | None = None,
    ) -> Request:
        """Create a request; its correlation id can be used for cancellation."""
        return Request.create(
            method=method,
            url=url,
            headers=headers,
            body=body,
            timeout=timeout,
            tags=tags,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: Any = None,
        decoder: ResponseDecoder = identity_decoder,
        timeout: timedelta | None = None,
        tags: set[str] | frozenset[str] | None = None,
        options: RequestOptions | None = None,
    ) -> Result:
        request = self.build_request(method, url, headers, body, timeout, tags)
        return await self.execute(request, decoder, options)

    async def get(self, url: str, **kwargs: Any) -> Result:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> Result:
        return await self.request("HEAD", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Result:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Result:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> Result:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Result:
        return await self.request("DELETE", url, **kwargs)

    # Execution

    async def execute(
        self,
        request: Request,
        decoder: ResponseDecoder = identity_decoder,
        options: RequestOptions | None = None,
    ) -> Result:
        """
        Execute a request with dedup, offline queueing, caching and retries.

        Args:
            request: The logical request
            decoder: Turns the raw payload into the caller's type
            options: Per-request overrides of the orchestrator config

        Returns:
            Success or Failure; never raises for execution errors
        """
        started_at = datetime.now()
        started = time.perf_counter()
        opts = self._resolve(options)
        request = self._prepare(request, opts)

        try:
            request = await self.interceptors.process_request(request)
        except Exception as e:
            logger.exception(f"Request interceptor failed [{request.correlation_id}]")
            failure = self._failure(request, ErrorCategory.UNKNOWN, e)
            self._complete(request, failure, started_at, started)
            return failure

        self._log_request(request)

        if not opts.enable_dedup:
            return await self._run(request, decoder, opts, started_at, started)

        try:
            result, shared = await self._deduplicator.dedupe(
                request.signature,
                lambda: self._run(request, decoder, opts, started_at, started),
                window=opts.dedup_window,
            )
        except RequestCancelledError:
            failure = self._cancelled(request, 0)
            self._complete(request, failure, started_at, started, deduplicated=True)
            return failure
        if shared:
            logger.debug(
                f"Request deduplicated [{request.correlation_id}] "
                f"-> [{result.correlation_id}]"
            )
            self._complete(request, result, started_at, started, deduplicated=True)
        return result

    async def _run(
        self,
        request: Request,
        decoder: ResponseDecoder,
        opts: _EffectiveOptions,
        started_at: datetime,
        started: float,
    ) -> Result:
        """Run the pipeline with cancellation bookkeeping that always unwinds."""
        correlation_id = request.correlation_id
        self._active[correlation_id] = request
        token = self._cancel_tokens[correlation_id] = asyncio.Event()

        try:
            result = await self._pipeline(request, decoder, opts, token)
        except Exception as e:
            logger.exception(f"Request pipeline failed [{correlation_id}]")
            result = self._failure(request, ErrorCategory.UNKNOWN, e)
        finally:
            self._active.pop(correlation_id, None)
            self._cancel_tokens.pop(correlation_id, None)
            self._attempts.pop(correlation_id, None)

        try:
            result = await self.interceptors.process_result(result)
        except Exception as e:
            logger.exception(f"Response interceptor failed [{correlation_id}]")
            result = self._failure(request, ErrorCategory.UNKNOWN, e)

        result = result.with_duration(timedelta(seconds=time.perf_counter() - started))
        self._log_result(request, result)
        self._complete(request, result, started_at, started)
        return result

    async def _pipeline(
        self,
        request: Request,
        decoder: ResponseDecoder,
        opts: _EffectiveOptions,
        token: asyncio.Event,
    ) -> Result:
        # Offline short-circuit
        if (
            opts.enable_queue
            and self.queue is not None
            and self.connectivity.is_offline
            and self.queue.should_queue(request)
        ):
            item = await self.queue.enqueue(request)
            logger.info(
                f"Request queued while offline [{request.correlation_id}] "
                f"as {item.id if item else '?'}"
            )
            return Failure(
                category=ErrorCategory.QUEUED_FOR_LATER,
                correlation_id=request.correlation_id,
                message="Request queued until connectivity returns",
            )

        policy = opts.cache_policy
        use_cache = policy.should_use_cache(request.method)

        if use_cache and policy.prefer_cache:
            cached = await self._read_cache(request, decoder)
            if cached is not None:
                return cached

        result = await self._execute_with_retry(request, decoder, opts, token)

        if isinstance(result, Failure):
            if use_cache and not policy.prefer_cache and result.category in FALLBACK_CATEGORIES:
                cached = await self._read_cache(request, decoder)
                if cached is not None:
                    logger.warning(
                        f"Network failed ({result.category.value}), serving cached "
                        f"response [{request.correlation_id}]"
                    )
                    return cached.with_retry_count(result.retry_count)
            return result

        if policy.should_cache(request.method, result.status_code):
            self._schedule_cache_write(request, result, policy)
        return result

    async def _execute_with_retry(
        self,
        request: Request,
        decoder: ResponseDecoder,
        opts: _EffectiveOptions,
        token: asyncio.Event,
    ) -> Result:
        policy = opts.retry_policy
        attempt = 0

        while True:
            if token.is_set():
                return self._cancelled(request, attempt)

            result = await self._attempt(request, decoder, request.timeout, token)
            if isinstance(result, Success):
                return result.with_retry_count(attempt)

            failure = result.with_retry_count(attempt)
            if failure.category == ErrorCategory.CANCELLED or token.is_set():
                return self._cancelled(request, attempt)

            if not policy.should_retry(failure, attempt):
                if attempt:
                    logger.warning(
                        f"Giving up after {attempt} retries "
                        f"({failure.category.value}) [{request.correlation_id}]"
                    )
                return failure

            delay = policy.get_delay(attempt)
            logger.info(
                f"Retrying request [{request.correlation_id}] "
                f"attempt {attempt + 1}/{policy.max_attempts} "
                f"in {delay.total_seconds() * 1000:.0f}ms "
                f"after {failure.category.value}"
            )
            if await self._wait_or_cancelled(token, delay):
                return self._cancelled(request, attempt)
            attempt += 1

    async def _attempt(
        self,
        request: Request,
        decoder: ResponseDecoder,
        timeout: timedelta | None,
        token: asyncio.Event,
    ) -> Result:
        """One transport call, bounded by the per-request timeout."""
        seconds = timeout.total_seconds() if timeout is not None else None
        attempt = asyncio.ensure_future(
            asyncio.wait_for(self.transport.execute(request, decoder), timeout=seconds)
        )
        self._attempts[request.correlation_id] = attempt

        try:
            return await attempt
        except asyncio.CancelledError:
            if token.is_set():
                return self._cancelled(request, 0)
            raise
        except Exception as e:
            return self._failure(request, categorize_error(e), e)
        finally:
            self._attempts.pop(request.correlation_id, None)

    @staticmethod
    async def _wait_or_cancelled(token: asyncio.Event, delay: timedelta) -> bool:
        """Sleep for ``delay``; returns True if cancelled meanwhile."""
        seconds = delay.total_seconds()
        if seconds <= 0:
            return token.is_set()
        try:
            await asyncio.wait_for(token.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    # Cache

    async def _read_cache(
        self, request: Request, decoder: ResponseDecoder
    ) -> Success | None:
        key = request.signature
        try:
            entry = await self.cache_store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed [{request.correlation_id}]: {e}")
            return None

        if entry is None:
            self.events.publish(CacheMiss(key=key, correlation_id=request.correlation_id))
            return None

        try:
            data = decoder(entry.data)
        except Exception as e:
            logger.warning(
                f"Cached payload could not be decoded [{request.correlation_id}]: {e}"
            )
            return None

        self.events.publish(CacheHit(key=key, correlation_id=request.correlation_id))
        logger.debug(f"Cache hit [{request.correlation_id}]")
        return Success(
            data=data,
            status_code=200,
            correlation_id=request.correlation_id,
            headers=entry.headers,
            from_cache=True,
            raw_data=entry.data,
        )

    def _schedule_cache_write(
        self, request: Request, result: Success, policy: CachePolicy
    ) -> None:
        entry = CacheEntry(
            data=result.raw_data if result.raw_data is not None else result.data,
            created_at=datetime.now(),
            ttl=policy.ttl,
            headers=dict(result.headers),
        )
        task = asyncio.create_task(self._write_cache(request, entry))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_cache(self, request: Request, entry: CacheEntry) -> None:
        try:
            await self.cache_store.set(request.signature, entry)
        except Exception as e:
            logger.warning(f"Cache write failed [{request.correlation_id}]: {e}")

    async def wait_for_pending_writes(self) -> None:
        """Wait for background cache writes started so far."""
        if self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    @safe_job
    async def cache_sweep_job(self) -> None:
        removed = await self.cache_store.cleanup()
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")

    # Cancellation

    @property
    def active_requests(self) -> list[Request]:
        return list(self._active.values())

    def cancel_by_correlation_id(self, correlation_id: str) -> bool:
        token = self._cancel_tokens.get(correlation_id)
        if token is None:
            return False

        token.set()
        attempt = self._attempts.get(correlation_id)
        if attempt is not None and not attempt.done():
            attempt.cancel()
        logger.info(f"Cancelling request [{correlation_id}]")
        return True

    def cancel_by_tag(self, tag: str) -> int:
        matching = [cid for cid, req in self._active.items() if tag in req.tags]
        for correlation_id in matching:
            self.cancel_by_correlation_id(correlation_id)
        if matching:
            logger.info(f"Cancelled {len(matching)} requests tagged '{tag}'")
        return len(matching)

    def cancel_all(self) -> int:
        count = sum(
            1 for correlation_id in list(self._active)
            if self.cancel_by_correlation_id(correlation_id)
        )
        if count:
            logger.info(f"Cancelled all {count} in-flight requests")
        return count

    # Offline queue replay

    async def replay_queue(self) -> int:
        """
        Send queued requests in FIFO order.

        Returns the number of requests delivered. Stops early if connectivity
        drops or a network/timeout failure suggests it is still unreachable.
        """
        if self.queue is None or self.queue.is_empty:
            return 0
        if self.connectivity.is_offline:
            logger.info("Skipping queue replay while offline")
            return 0

        replay_options = RequestOptions(enable_queue=False, enable_dedup=False)

        async def send(item: QueuedRequest) -> ProcessOutcome:
            if self.connectivity.is_offline:
                return ProcessOutcome.STOP

            request = replace(item.request, correlation_id=new_correlation_id())
            result = await self.execute(request, identity_decoder, replay_options)
            if isinstance(result, Success):
                return ProcessOutcome.COMPLETED

            await self.queue.retry(item.id)
            await self.queue.mark_failed(item.id, result.message or result.category.value)

            if item.retry_count + 1 >= self.config.max_replay_attempts:
                logger.warning(
                    f"Dropping queued request {item.id} after "
                    f"{item.retry_count + 1} failed replays"
                )
                await self.queue.remove(item.id)
                return ProcessOutcome.FAILED

            if result.category in FALLBACK_CATEGORIES:
                return ProcessOutcome.STOP
            return ProcessOutcome.FAILED

        return await self.queue.process(send)

    def _on_connectivity_event(self, event: Event) -> None:
        if not isinstance(event, ConnectivityChanged) or not event.info.is_connected:
            return
        if self._replay_task is not None and not self._replay_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        logger.info("Connectivity restored, replaying queued requests")
        self._replay_task = loop.create_task(self.replay_queue())

    async def wait_for_replay(self) -> int | None:
        """Await an automatic replay started by a reconnect, if any."""
        if self._replay_task is None:
            return None
        return await self._replay_task

    # Lifecycle

    async def start(self) -> None:
        """Load the queue and start background probing and sweeps."""
        if self._started:
            return

        if self.queue is not None:
            await self.queue.load()
            self.queue.start()

        self.connectivity.start()

        self.scheduler.add_job(
            self.cache_sweep_job,
            trigger="interval",
            seconds=self.config.cache_sweep_interval.total_seconds(),
            id="cache_sweep",
            name="Cache Sweeper",
            replace_existing=True,
        )
        self.scheduler.start()
        self._started = True
        logger.info("Orchestrator started")

    async def close(self) -> None:
        """Cancel in-flight work, flush cache writes and release resources."""
        self.cancel_all()
        await self.wait_for_pending_writes()

        if self._replay_task is not None and not self._replay_task.done():
            self._replay_task.cancel()

        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False

        self.connectivity.stop()
        await self.transport.close()
        if self.queue is not None:
            await self.queue.close()
        await self.cache_store.close()
        self.metrics.detach()
        logger.debug("Orchestrator closed")

    async def __aenter__(self) -> "Orchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Health and status

    def get_health_status(self) -> dict[str, Any]:
        return {
            "connectivity": self.connectivity.current.to_dict(),
            "manual_offline": self.connectivity.manual_offline,
            "cache": self.cache_store.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
            "queue": (
                {"status": self.queue.status.value, "length": self.queue.length}
                if self.queue is not None
                else None
            ),
            "active_requests": len(self._active),
            "metrics": self.metrics.summary(),
        }

    # Helpers

    def _resolve(self, options: RequestOptions | None) -> _EffectiveOptions:
        o = options or RequestOptions()
        cfg = self.config
        return _EffectiveOptions(
            timeout=o.timeout,
            headers={**cfg.default_headers, **(o.headers or {})},
            retry_policy=o.retry_policy or cfg.retry_policy,
            cache_policy=o.cache_policy or cfg.cache_policy,
            enable_dedup=cfg.enable_dedup if o.enable_dedup is None else o.enable_dedup,
            dedup_window=cfg.dedup_window if o.dedup_window is None else o.dedup_window,
            enable_queue=cfg.enable_queue if o.enable_queue is None else o.enable_queue,
            tags=frozenset(o.tags or ()),
        )

    def _prepare(self, request: Request, opts: _EffectiveOptions) -> Request:
        request = request.with_headers(opts.headers)
        if opts.timeout is not None:
            request = request.with_timeout(opts.timeout)
        elif request.timeout is None:
            request = request.with_timeout(self.config.default_timeout)
        if opts.tags:
            request = request.with_tags(opts.tags)
        return request

    def _failure(
        self, request: Request, category: ErrorCategory, error: BaseException
    ) -> Failure:
        status_code = None
        headers: dict[str, str] = {}
        if isinstance(error, BadResponseError):
            status_code = error.status_code
            headers = error.headers
        return Failure(
            category=category,
            correlation_id=request.correlation_id,
            message=str(error) or type(error).__name__,
            status_code=status_code,
            headers=headers,
            cause=error,
        )

    def _cancelled(self, request: Request, retry_count: int) -> Failure:
        return self._failure(
            request,
            ErrorCategory.CANCELLED,
            RequestCancelledError(request.correlation_id),
        ).with_retry_count(retry_count)

    def _complete(
        self,
        request: Request,
        result: Result,
        started_at: datetime,
        started: float,
        deduplicated: bool = False,
    ) -> None:
        success = isinstance(result, Success)
        metrics = RequestMetrics(
            correlation_id=request.correlation_id,
            method=request.method,
            url=request.url,
            started_at=started_at,
            finished_at=datetime.now(),
            duration=timedelta(seconds=time.perf_counter() - started),
            success=success,
            status_code=result.status_code,
            from_cache=success and result.from_cache,
            retry_count=result.retry_count,
            deduplicated=deduplicated,
            error_category=None if success else result.category,
        )
        self.events.publish(RequestCompleted(metrics=metrics))

    def _log_request(self, request: Request) -> None:
        logger.info(f"-> {request.method} {request.url} [{request.correlation_id}]")
        if self.config.debug:
            headers = redact_headers(request.headers, self.config.sensitive_headers)
            logger.debug(f"Request headers [{request.correlation_id}]: {headers}")

    def _log_result(self, request: Request, result: Result) -> None:
        ms = result.duration.total_seconds() * 1000
        if isinstance(result, Success):
            source = " (cache)" if result.from_cache else ""
            logger.info(
                f"<- {result.status_code} {request.method} {request.url}{source} "
                f"{ms:.0f}ms retries={result.retry_count} [{request.correlation_id}]"
            )
            if self.config.debug:
                headers = redact_headers(result.headers, self.config.sensitive_headers)
                logger.debug(f"Response headers [{request.correlation_id}]: {headers}")
        elif result.is_soft:
            logger.info(
                f"<- queued {request.method} {request.url} [{request.correlation_id}]"
            )
        else:
            logger.warning(
                f"<- {result.category.value} {request.method} {request.url} "
                f"{ms:.0f}ms retries={result.retry_count} "
                f"[{request.correlation_id}]: {result.message}"
            )
