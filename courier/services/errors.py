"""
Service layer exceptions.

Transports raise the ``TransportError`` family; the orchestrator converts
them into typed ``Failure`` results by exception type alone.
"""


class CourierError(Exception):
    """Base exception for courier errors."""

    def __init__(self, message: str, correlation_id: str | None = None):
        self.correlation_id = correlation_id
        super().__init__(message)


class TransportError(CourierError):
    """Base class for errors raised by a transport."""

    pass


class NetworkError(TransportError):
    """Transport-level connectivity failure (DNS, refused, reset...)."""

    pass


class TransportTimeoutError(TransportError):
    """A single transport attempt timed out."""

    def __init__(
        self,
        timeout: float | None = None,
        correlation_id: str | None = None,
        message: str | None = None,
    ):
        self.timeout = timeout
        if message is None:
            message = (
                f"Request timed out after {timeout}s"
                if timeout is not None
                else "Request timed out"
            )
        super().__init__(message, correlation_id=correlation_id)


class RequestCancelledError(TransportError):
    """The request was cancelled while in flight."""

    def __init__(self, correlation_id: str | None = None):
        message = (
            f"Request '{correlation_id}' was cancelled"
            if correlation_id
            else "Request was cancelled"
        )
        super().__init__(message, correlation_id=correlation_id)


class BadResponseError(TransportError):
    """The remote peer answered with a non-2xx status."""

    def __init__(
        self,
        status_code: int,
        headers: dict[str, str] | None = None,
        body: str | None = None,
        correlation_id: str | None = None,
    ):
        self.status_code = status_code
        self.headers = headers or {}
        self.body = body
        message = f"HTTP {status_code}"
        if body:
            message += f": {body[:200]}"
        super().__init__(message, correlation_id=correlation_id)


class UnknownTransportError(TransportError):
    """Transport failure that fits no other category."""

    pass


class StorageError(CourierError):
    """Cache or queue persistence failed."""

    pass


class QueueError(CourierError):
    """Request queue operation not allowed in the current state."""

    pass
