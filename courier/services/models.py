"""
Request and result value types.

A ``Request`` is immutable; its ``signature`` identifies the logical
operation for deduplication and caching. Every execution resolves to exactly
one of ``Success`` or ``Failure``.
"""

import base64
import hashlib
import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar("T")
R = TypeVar("R")

ResponseDecoder = Callable[[Any], T]


def identity_decoder(data: Any) -> Any:
    """Decoder that returns the payload unchanged."""
    return data


def new_correlation_id() -> str:
    return uuid.uuid4().hex


class ErrorCategory(str, Enum):
    """Failure categories surfaced to callers."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    BAD_RESPONSE = "bad_response"
    QUEUED_FOR_LATER = "queued_for_later"  # soft failure
    UNKNOWN = "unknown"


def _normalize_headers(headers: Mapping[str, str] | None) -> Mapping[str, str]:
    normalized: dict[str, str] = {}
    for key, value in (headers or {}).items():
        normalized[key.lower()] = str(value)
    return MappingProxyType(normalized)


def _encode_body(body: Any) -> Any:
    if isinstance(body, (bytes, bytearray)):
        return {"__bytes__": base64.b64encode(bytes(body)).decode("ascii")}
    return body


def _decode_body(body: Any) -> Any:
    if isinstance(body, dict) and set(body) == {"__bytes__"}:
        return base64.b64decode(body["__bytes__"])
    return body


@dataclass(frozen=True, eq=False)
class Request:
    """An outgoing logical request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: timedelta | None = None
    correlation_id: str = field(default_factory=new_correlation_id)
    tags: frozenset[str] = frozenset()
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _normalize_headers(self.headers))
        object.__setattr__(self, "tags", frozenset(self.tags))
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def create(
        cls,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: Any = None,
        timeout: timedelta | None = None,
        tags: set[str] | frozenset[str] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> "Request":
        """Create a request with a fresh correlation id."""
        return cls(
            method=method,
            url=url,
            headers=headers or {},
            body=body,
            timeout=timeout,
            tags=frozenset(tags or ()),
            extra=extra or {},
        )

    @property
    def signature(self) -> str:
        """Deterministic key over method, URL, headers and body."""
        canonical = json.dumps(
            {
                "method": self.method,
                "url": self.url,
                "headers": sorted(self.headers.items()),
                "body": _encode_body(self.body),
            },
            sort_keys=True,
            default=str,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def with_headers(self, defaults: Mapping[str, str]) -> "Request":
        """Return a copy with ``defaults`` merged underneath existing headers."""
        if not defaults:
            return self
        merged = dict(_normalize_headers(defaults))
        merged.update(self.headers)
        return replace(self, headers=merged)

    def with_timeout(self, timeout: timedelta | None) -> "Request":
        return replace(self, timeout=timeout)

    def with_tags(self, tags: set[str] | frozenset[str]) -> "Request":
        return replace(self, tags=self.tags | frozenset(tags))

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation used by durable queue storage."""
        return {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
            "body": _encode_body(self.body),
            "timeout": self.timeout.total_seconds() if self.timeout else None,
            "correlation_id": self.correlation_id,
            "tags": sorted(self.tags),
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Request":
        timeout = data.get("timeout")
        return cls(
            method=data["method"],
            url=data["url"],
            headers=data.get("headers") or {},
            body=_decode_body(data.get("body")),
            timeout=timedelta(seconds=timeout) if timeout is not None else None,
            correlation_id=data.get("correlation_id") or new_correlation_id(),
            tags=frozenset(data.get("tags") or ()),
            extra=data.get("extra") or {},
        )

    def __repr__(self) -> str:
        return (
            f"Request(method={self.method}, url={self.url}, "
            f"correlation_id={self.correlation_id}, tags={sorted(self.tags)})"
        )


class _ResultBase:
    """Shared behaviour of ``Success`` and ``Failure``."""

    def __bool__(self) -> bool:
        raise TypeError(
            "Results have no truth value; check isinstance(result, Success) "
            "or isinstance(result, Failure)"
        )

    def fold(
        self,
        on_success: Callable[["Success[Any]"], R],
        on_failure: Callable[["Failure"], R],
    ) -> R:
        if isinstance(self, Success):
            return on_success(self)
        if isinstance(self, Failure):
            return on_failure(self)
        raise TypeError(f"Unexpected result type {type(self).__name__}")


@dataclass(frozen=True)
class Success(_ResultBase, Generic[T]):
    """Successful execution."""

    data: T
    status_code: int
    correlation_id: str
    headers: Mapping[str, str] = field(default_factory=dict)
    from_cache: bool = False
    retry_count: int = 0
    raw_data: Any = None
    timestamp: datetime = field(default_factory=datetime.now)
    duration: timedelta = timedelta(0)

    def map(self, transform: Callable[[T], R]) -> "Success[R]":
        return replace(self, data=transform(self.data))  # type: ignore[arg-type]

    def with_retry_count(self, retry_count: int) -> "Success[T]":
        return replace(self, retry_count=retry_count)

    def with_duration(self, duration: timedelta) -> "Success[T]":
        return replace(self, duration=duration)


@dataclass(frozen=True)
class Failure(_ResultBase):
    """Failed (or deferred) execution."""

    category: ErrorCategory
    correlation_id: str
    message: str = ""
    status_code: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    cause: BaseException | None = None
    retry_count: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    duration: timedelta = timedelta(0)

    @property
    def is_soft(self) -> bool:
        """Expected, recoverable deferral rather than a defect."""
        return self.category == ErrorCategory.QUEUED_FOR_LATER

    def map(self, transform: Callable[[Any], Any]) -> "Failure":
        return self

    def recover(self, recovery: Callable[["Failure"], T]) -> Success[T]:
        return Success(
            data=recovery(self),
            status_code=self.status_code or 200,
            correlation_id=self.correlation_id,
            headers=self.headers,
            retry_count=self.retry_count,
            timestamp=self.timestamp,
            duration=self.duration,
        )

    def with_retry_count(self, retry_count: int) -> "Failure":
        return replace(self, retry_count=retry_count)

    def with_duration(self, duration: timedelta) -> "Failure":
        return replace(self, duration=duration)


Result = Union[Success[T], Failure]


@dataclass
class RequestMetrics:
    """Per-request metrics published when an execution completes."""

    correlation_id: str
    method: str
    url: str
    started_at: datetime
    finished_at: datetime
    duration: timedelta
    success: bool
    status_code: int | None = None
    from_cache: bool = False
    retry_count: int = 0
    deduplicated: bool = False
    error_category: ErrorCategory | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "method": self.method,
            "url": self.url,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration.total_seconds() * 1000, 2),
            "success": self.success,
            "status_code": self.status_code,
            "from_cache": self.from_cache,
            "retry_count": self.retry_count,
            "deduplicated": self.deduplicated,
            "error_category": (
                self.error_category.value if self.error_category else None
            ),
        }
