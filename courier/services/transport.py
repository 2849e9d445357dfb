"""
Transport capability - executes a single request over the network.

The orchestrator depends only on ``Transport``. ``HttpxTransport`` adapts
``httpx.AsyncClient`` and raises the ``TransportError`` family so failures
can be categorised by type.
"""

import json
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

import httpx
from loguru import logger

from courier.services.errors import (
    BadResponseError,
    NetworkError,
    TransportTimeoutError,
    UnknownTransportError,
)
from courier.services.models import Request, ResponseDecoder, Result, Success

DEFAULT_HEADERS = {
    "user-agent": "courier/0.1 (httpx)",
    "accept": "application/json",
}


class Transport(ABC):
    """Executes one attempt of a request."""

    @abstractmethod
    async def execute(self, request: Request, decoder: ResponseDecoder) -> Result:
        """
        Run the request once.

        Returns a ``Result`` or raises a ``TransportError`` subclass.
        """
        ...

    async def close(self) -> None:
        return None


class HttpxTransport(Transport):
    """
    Transport backed by ``httpx.AsyncClient``.

    Usage:
        transport = HttpxTransport()
        orchestrator = Orchestrator(transport=transport)
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_headers: dict[str, str] | None = None,
        follow_redirects: bool = True,
    ):
        self._client = client
        self._owns_client = client is None
        self._follow_redirects = follow_redirects
        self._base_headers = {**DEFAULT_HEADERS, **(base_headers or {})}

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=self._follow_redirects)
        return self._client

    async def execute(self, request: Request, decoder: ResponseDecoder) -> Result:
        client = await self._get_http_client()
        headers = {**self._base_headers, **request.headers}
        content, json_body = self._encode_body(request.body)
        timeout = (
            httpx.Timeout(request.timeout.total_seconds())
            if request.timeout is not None
            else httpx.USE_CLIENT_DEFAULT
        )

        started = time.perf_counter()
        try:
            response = await client.request(
                method=request.method,
                url=request.url,
                headers=headers,
                content=content,
                json=json_body,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            seconds = request.timeout.total_seconds() if request.timeout else None
            raise TransportTimeoutError(seconds, request.correlation_id) from e
        except httpx.TransportError as e:
            raise NetworkError(
                f"Network error: {e}", correlation_id=request.correlation_id
            ) from e
        except httpx.HTTPError as e:
            raise UnknownTransportError(
                str(e), correlation_id=request.correlation_id
            ) from e

        elapsed = timedelta(seconds=time.perf_counter() - started)
        response_headers = dict(response.headers)

        if not response.is_success:
            raise BadResponseError(
                response.status_code,
                headers=response_headers,
                body=response.text,
                correlation_id=request.correlation_id,
            )

        raw = self._parse_body(response)
        logger.debug(
            f"{request.method} {request.url} -> {response.status_code} "
            f"({elapsed.total_seconds() * 1000:.0f}ms) [{request.correlation_id}]"
        )
        return Success(
            data=decoder(raw),
            status_code=response.status_code,
            correlation_id=request.correlation_id,
            headers=response_headers,
            raw_data=raw,
            timestamp=datetime.now(),
            duration=elapsed,
        )

    @staticmethod
    def _encode_body(body: Any) -> tuple[bytes | str | None, Any]:
        """Return (content, json) arguments for httpx."""
        if body is None:
            return None, None
        if isinstance(body, (bytes, str)):
            return body, None
        if isinstance(body, bytearray):
            return bytes(body), None
        return None, body

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type and response.content:
            try:
                return response.json()
            except json.JSONDecodeError:
                logger.debug("Response declared JSON but did not parse, keeping text")
        return response.text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
