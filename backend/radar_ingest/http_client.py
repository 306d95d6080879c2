"""
HTTP plumbing shared by the connectors.

JSON APIs go through an ``httpx.AsyncClient`` built by ``create_client``;
connectors accept a ``client_factory`` so tests can swap in
``httpx.MockTransport``. Feed documents are downloaded with aiohttp.
Non-2xx responses become ``UpstreamHTTPError`` so the retry wrapper can
classify them.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional

import aiohttp
import httpx

from radar_ingest import __version__
from radar_ingest.exceptions import UpstreamFormatError, UpstreamHTTPError
from radar_ingest.retry import with_retry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = f"radar-ingest/{__version__}"
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"

ClientFactory = Callable[[], httpx.AsyncClient]
FeedLoader = Callable[[str], Any]


def create_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Default factory for JSON API clients."""
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
    )


def _snippet(text: str, limit: int = 500) -> str:
    return text[:limit]


def raise_for_upstream_status(
    response: httpx.Response, service: str, url: Optional[str] = None
) -> None:
    if response.is_success:
        return
    body = _snippet(response.text or "")
    request_id = (
        response.headers.get("x-request-id")
        or response.headers.get("xai-request-id")
        or response.headers.get("cf-ray")
    )
    raise UpstreamHTTPError(
        f"{service} request failed ({response.status_code} {response.reason_phrase})",
        status_code=response.status_code,
        url=url,
        body_snippet=body,
        request_id=request_id,
    )


@with_retry()
async def get_json(
    client: httpx.AsyncClient,
    url: str,
    service: str,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    """GET a JSON document, retrying 429/5xx with backoff."""
    logger.debug(f"GET {url} params={params}")
    response = await client.get(url, params=params, headers=headers)
    raise_for_upstream_status(response, service, url)
    try:
        return response.json()
    except json.JSONDecodeError as e:
        raise UpstreamFormatError(f"{service} returned invalid JSON: {e}") from e


@with_retry()
async def get_text(
    client: httpx.AsyncClient,
    url: str,
    service: str,
    headers: Optional[Dict[str, str]] = None,
) -> str:
    """GET a text document (XML filings, listings), retrying 429/5xx with backoff."""
    logger.debug(f"GET {url}")
    response = await client.get(url, headers=headers)
    raise_for_upstream_status(response, service, url)
    return response.text


@with_retry()
async def download_feed(
    feed_url: str,
    session: Optional[aiohttp.ClientSession] = None,
    timeout: int = 30,
) -> str:
    """Download raw feed markup, retrying 429/5xx with backoff."""
    logger.debug(f"Fetching feed: {feed_url}")

    close_session = session is None
    if session is None:
        session = aiohttp.ClientSession()

    try:
        headers = {"User-Agent": USER_AGENT, "Accept": FEED_ACCEPT}
        async with session.get(
            feed_url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
            allow_redirects=True,
        ) as response:
            if response.status >= 400:
                body = await response.text(errors="replace")
                raise UpstreamHTTPError(
                    f"Feed fetch failed (HTTP {response.status}: {response.reason})",
                    status_code=response.status,
                    url=feed_url,
                    body_snippet=_snippet(body),
                )
            return await response.text(errors="replace")
    except asyncio.TimeoutError:
        logger.warning(f"Feed fetch timeout for {feed_url} after {timeout}s")
        raise
    finally:
        if close_session:
            await session.close()
