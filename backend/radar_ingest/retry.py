"""
Retry with exponential backoff for outbound HTTP calls.

Transient failures (429, 5xx, timeouts, dropped connections) are retried up
to ``max_retries`` times with a delay of ``base_delay * 2 ** attempt``.
Credential failures (401/403) and other 4xx responses are re-raised on the
first attempt.
"""

import asyncio
import logging
from functools import wraps
from typing import Optional

import aiohttp
import httpx
import openai

from radar_ingest.exceptions import UpstreamHTTPError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
BACKOFF_MULTIPLIER = 2.0


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by an upstream or SDK exception, if any."""
    if isinstance(exc, UpstreamHTTPError):
        return exc.status_code
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, aiohttp.ClientResponseError):
        return exc.status
    return None


def is_retryable(exc: BaseException) -> bool:
    status = status_code_of(exc)
    if status is not None:
        return status == 429 or status >= 500
    return isinstance(
        exc,
        (
            openai.APITimeoutError,
            openai.APIConnectionError,
            httpx.TransportError,
            aiohttp.ClientConnectionError,
            asyncio.TimeoutError,
        ),
    )


def is_auth_failure(exc: BaseException) -> bool:
    """401/403 mean a bad credential; callers abandon the rest of the run."""
    return status_code_of(exc) in (401, 403)


def with_retry(max_retries: int = MAX_RETRIES, base_delay: Optional[float] = None):
    """
    Decorator for retrying async functions with exponential backoff.

    ``max_retries`` counts retries, so a call is attempted at most
    ``max_retries + 1`` times. ``base_delay`` defaults to INITIAL_BACKOFF,
    read when the call happens.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            backoff = INITIAL_BACKOFF if base_delay is None else base_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable(e):
                        if is_auth_failure(e):
                            logger.error(f"Auth failure on {func.__name__}: {e}")
                        raise
                    if attempt >= max_retries:
                        logger.error(f"All {max_retries} retries exhausted for {func.__name__}")
                        raise
                    wait_time = backoff * (BACKOFF_MULTIPLIER ** attempt)
                    logger.warning(
                        f"Transient error on {func.__name__} ({e}), retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    await asyncio.sleep(wait_time)

        return wrapper
    return decorator
