"""
Service layer - resilient request orchestration.

Provides:
- Orchestrator: Unified request executor combining all patterns
- RequestDeduplicator: Prevents duplicate concurrent requests
- RetryPolicy: Fixed, exponential and custom retry strategies
- CachePolicy / CacheStore: Response caching with TTL and bounded size
- RequestQueue: Offline FIFO of mutating requests
- ConnectivityMonitor: Reachability and quality probing
- EventBus / MetricsCollector: Observability stream and aggregates
"""

from courier.services.errors import (
    CourierError,
    TransportError,
    NetworkError,
    TransportTimeoutError,
    RequestCancelledError,
    BadResponseError,
    UnknownTransportError,
    StorageError,
    QueueError,
)
from courier.services.models import (
    ErrorCategory,
    Request,
    Success,
    Failure,
    Result,
    RequestMetrics,
    identity_decoder,
)
from courier.services.events import (
    Event,
    EventBus,
    Subscription,
    CacheHit,
    CacheMiss,
    CacheEvicted,
    QueueItemAdded,
    QueueItemRemoved,
    QueueItemRetried,
    QueueItemFailed,
    QueueItemEvicted,
    QueueItemsExpired,
    QueueCleared,
    QueuePaused,
    QueueResumed,
    QueueLoaded,
    QueueStorageError,
    ConnectivityChanged,
    RequestCompleted,
)
from courier.services.retry import (
    RetryPolicy,
    NoRetryPolicy,
    FixedDelayRetryPolicy,
    ExponentialBackoffRetryPolicy,
    CustomRetryPolicy,
)
from courier.services.cache import (
    CachePolicy,
    NoCachePolicy,
    NetworkFirstCachePolicy,
    CacheFirstCachePolicy,
    CacheOnlyCachePolicy,
    NetworkOnlyCachePolicy,
    CacheEntry,
    CacheStore,
    MemoryCacheStore,
    CacheStats,
)
from courier.services.queue import (
    QueueStatus,
    QueueStorageType,
    ProcessOutcome,
    QueuedRequest,
    QueueStorage,
    MemoryQueueStorage,
    RequestQueue,
)
from courier.services.connectivity import (
    ConnectivityStatus,
    ConnectionQuality,
    ConnectivityInfo,
    ConnectivityMonitor,
)
from courier.services.deduplicator import RequestDeduplicator
from courier.services.interceptors import Interceptor, InterceptorChain
from courier.services.transport import Transport, HttpxTransport
from courier.services.metrics import MetricsCollector
from courier.services.orchestrator import (
    Orchestrator,
    OrchestratorConfig,
    RequestOptions,
)

__all__ = [
    # Errors
    "CourierError",
    "TransportError",
    "NetworkError",
    "TransportTimeoutError",
    "RequestCancelledError",
    "BadResponseError",
    "UnknownTransportError",
    "StorageError",
    "QueueError",
    # Models
    "ErrorCategory",
    "Request",
    "Success",
    "Failure",
    "Result",
    "RequestMetrics",
    "identity_decoder",
    # Events
    "Event",
    "EventBus",
    "Subscription",
    "CacheHit",
    "CacheMiss",
    "CacheEvicted",
    "QueueItemAdded",
    "QueueItemRemoved",
    "QueueItemRetried",
    "QueueItemFailed",
    "QueueItemEvicted",
    "QueueItemsExpired",
    "QueueCleared",
    "QueuePaused",
    "QueueResumed",
    "QueueLoaded",
    "QueueStorageError",
    "ConnectivityChanged",
    "RequestCompleted",
    # Retry
    "RetryPolicy",
    "NoRetryPolicy",
    "FixedDelayRetryPolicy",
    "ExponentialBackoffRetryPolicy",
    "CustomRetryPolicy",
    # Cache
    "CachePolicy",
    "NoCachePolicy",
    "NetworkFirstCachePolicy",
    "CacheFirstCachePolicy",
    "CacheOnlyCachePolicy",
    "NetworkOnlyCachePolicy",
    "CacheEntry",
    "CacheStore",
    "MemoryCacheStore",
    "CacheStats",
    # Queue
    "QueueStatus",
    "QueueStorageType",
    "ProcessOutcome",
    "QueuedRequest",
    "QueueStorage",
    "MemoryQueueStorage",
    "RequestQueue",
    # Connectivity
    "ConnectivityStatus",
    "ConnectionQuality",
    "ConnectivityInfo",
    "ConnectivityMonitor",
    # Deduplicator
    "RequestDeduplicator",
    # Interceptors
    "Interceptor",
    "InterceptorChain",
    # Transport
    "Transport",
    "HttpxTransport",
    # Metrics
    "MetricsCollector",
    # Orchestrator
    "Orchestrator",
    "OrchestratorConfig",
    "RequestOptions",
]
