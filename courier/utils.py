import functools
from collections.abc import Mapping

from loguru import logger

DEFAULT_SENSITIVE_HEADERS = frozenset(
    {"authorization", "x-api-key", "x-auth-token", "cookie", "set-cookie"}
)


def safe_job(func):
    """
    A decorator for scheduled coroutine jobs.

    Features:
    - Logs job entry and successful exit at debug level
    - Logs exceptions with traceback instead of letting them reach the scheduler
    - Preserves function metadata and return values
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__qualname__
        logger.debug(f"Running job {func_name}")

        try:
            result = await func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.exception(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    return wrapper


def redact_headers(
    headers: Mapping[str, str],
    sensitive: frozenset[str] = DEFAULT_SENSITIVE_HEADERS,
) -> dict[str, str]:
    """Copy of ``headers`` with sensitive values masked for logging."""
    return {
        key: "***" if key.lower() in sensitive else value
        for key, value in headers.items()
    }
