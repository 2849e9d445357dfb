"""
Request/response hooks around orchestrated executions.

Request hooks run in registration order; response and error hooks run in
reverse order. An error hook may recover a ``Failure`` into a ``Success``,
which ends error processing.
"""

from courier.services.models import Failure, Request, Result, Success


class Interceptor:
    """Base interceptor; override the hooks you need."""

    async def on_request(self, request: Request) -> Request:
        return request

    async def on_response(self, response: Success) -> Success:
        return response

    async def on_error(self, failure: Failure) -> Result:
        return failure


class InterceptorChain:
    def __init__(self, interceptors: list[Interceptor] | None = None):
        self._interceptors: list[Interceptor] = list(interceptors or [])

    def add(self, interceptor: Interceptor) -> None:
        self._interceptors.append(interceptor)

    def remove(self, interceptor: Interceptor) -> None:
        if interceptor in self._interceptors:
            self._interceptors.remove(interceptor)

    def clear(self) -> None:
        self._interceptors.clear()

    @property
    def interceptors(self) -> list[Interceptor]:
        return list(self._interceptors)

    def __len__(self) -> int:
        return len(self._interceptors)

    async def process_request(self, request: Request) -> Request:
        for interceptor in self._interceptors:
            request = await interceptor.on_request(request)
        return request

    async def process_result(self, result: Result) -> Result:
        if isinstance(result, Success):
            for interceptor in reversed(self._interceptors):
                result = await interceptor.on_response(result)
            return result

        for interceptor in reversed(self._interceptors):
            result = await interceptor.on_error(result)
            if isinstance(result, Success):
                return result
        return result
