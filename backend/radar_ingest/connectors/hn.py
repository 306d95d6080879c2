"""
Hacker News connector (Firebase API).

Reads the top or new story-ID list, then the first ``limits.max_items``
items with at most 10 requests in flight. A failed item is dropped; only
``story`` items are kept. The cursor only records when the run happened.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector
from radar_ingest.cursor import as_number, as_str
from radar_ingest.exceptions import IngestError, UpstreamFormatError
from radar_ingest.html_text import strip_html
from radar_ingest.http_client import ClientFactory, create_client, get_json
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult

logger = logging.getLogger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
HN_ITEM_URL = "https://news.ycombinator.com/item?id={id}"
MAX_CONCURRENT_ITEMS = 10
FEEDS = {"top": "topstories", "new": "newstories"}


@dataclass
class HnSourceConfig:
    feed: str = "top"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "HnSourceConfig":
        feed = as_str(config.get("feed"))
        return cls(feed=feed if feed in FEEDS else "top")


def _story_fields(data: Dict[str, Any], fallback_id: int) -> Dict[str, Any]:
    def _text(key: str) -> Optional[str]:
        value = data.get(key)
        return value if isinstance(value, str) else None

    def _int(key: str) -> Optional[int]:
        value = as_number(data.get(key))
        return int(value) if value is not None else None

    story_id = _int("id")
    return {
        "id": story_id if story_id is not None else fallback_id,
        "type": _text("type") or "unknown",
        "by": _text("by"),
        "time": _int("time"),
        "title": _text("title"),
        "text": _text("text"),
        "url": _text("url"),
        "score": _int("score"),
        "descendants": _int("descendants"),
    }


class HnConnector(Connector):
    """Front-page or newest stories from Hacker News."""

    source_type = "hn"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or create_client

    async def _fetch_story_ids(self, client: httpx.AsyncClient, feed: str) -> List[int]:
        listing = FEEDS[feed]
        ids = await get_json(client, f"{HN_API_BASE}/{listing}.json", "HN API")
        if not isinstance(ids, list):
            raise UpstreamFormatError(f"HN API returned unexpected format for {listing}")
        return [i for i in ids if isinstance(i, int) and not isinstance(i, bool)]

    async def _fetch_item(
        self, client: httpx.AsyncClient, story_id: int, semaphore: asyncio.Semaphore
    ) -> Optional[Dict[str, Any]]:
        async with semaphore:
            try:
                data = await get_json(client, f"{HN_API_BASE}/item/{story_id}.json", "HN API")
            except (IngestError, httpx.HTTPError) as e:
                logger.debug(f"hn: dropping item {story_id}: {e}")
                return None
        if not isinstance(data, dict):
            return None
        return _story_fields(data, story_id)

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = HnSourceConfig.from_config(params.config)
        max_items = max(0, params.limits.max_items)

        async with self._client_factory() as client:
            story_ids = await self._fetch_story_ids(client, config.feed)
            ids_to_fetch = story_ids[:max_items]

            semaphore = asyncio.Semaphore(MAX_CONCURRENT_ITEMS)
            items = await asyncio.gather(
                *(self._fetch_item(client, story_id, semaphore) for story_id in ids_to_fetch)
            )

        raw_items = [item for item in items if item is not None and item["type"] == "story"]
        logger.info(f"hn: {len(raw_items)} stories from {config.feed} ({len(ids_to_fetch)} requested)")

        return FetchResult(
            raw_items=raw_items,
            next_cursor={"last_run_at": params.window_end},
            meta={
                "feed": config.feed,
                "story_ids_available": len(story_ids),
                "story_ids_requested": len(ids_to_fetch),
                "stories_fetched": len(raw_items),
            },
        )

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        story_id = as_number(raw.get("id"))
        story_id = int(story_id) if story_id is not None else None
        url = as_str(raw.get("url"))
        text = as_str(raw.get("text"))
        posted = as_number(raw.get("time"))

        canonical_url = url or (HN_ITEM_URL.format(id=story_id) if story_id is not None else None)
        body_text = strip_html(text) if text else None

        metadata: Dict[str, Any] = {}
        for key in ("type", "score", "descendants", "url"):
            if raw.get(key) is not None:
                metadata[key] = raw[key]

        return ContentItemDraft(
            title=as_str(raw.get("title")),
            body_text=body_text or None,
            canonical_url=canonical_url,
            source_type=self.source_type,
            external_id=str(story_id) if story_id is not None else None,
            published_at=(
                datetime.fromtimestamp(posted, tz=timezone.utc) if posted is not None else None
            ),
            author=as_str(raw.get("by")),
            metadata=metadata,
            raw=dict(raw),
        )
