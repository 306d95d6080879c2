"""
RSS / Atom / RDF feed connector.

Cursor:
    {"last_published_at": ISO, "recent_guids": [newest first, max 200]}

An entry is skipped when its GUID is in ``recent_guids``, or when it has no
GUID and was published at or before ``last_published_at``. Feeds that reuse
dates for new GUIDs still come through.

Usage:
    from radar_ingest.connectors.rss import RssConnector

    connector = RssConnector()
    result = await connector.fetch(params)
    drafts = [connector.normalize(raw, params) for raw in result.raw_items]
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector, sha256_hex
from radar_ingest.cursor import (
    as_bool,
    as_str,
    as_str_list,
    clamp_int,
    later_iso,
    merge_recent_ids,
    parse_iso_datetime,
    pick,
    to_iso,
)
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.feed_parser import FeedEntry, parse_feed
from radar_ingest.html_text import clamp_text, strip_html
from radar_ingest.http_client import download_feed
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult
from radar_ingest.url_canonicalize import safe_canonicalize_url

logger = logging.getLogger(__name__)

RECENT_GUIDS_CAP = 200
MAX_BODY_CHARS = 50_000
MAX_RAW_FIELD_CHARS = 10_000

FeedLoader = Callable[[str], Awaitable[str]]


@dataclass
class RssSourceConfig:
    feed_url: str
    max_item_count: int = 50
    prefer_content_encoded: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RssSourceConfig":
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url:
            raise ConnectorConfigError(
                'RSS source config must include non-empty "feed_url" or "feedUrl"'
            )
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=as_bool(
                pick(config, "prefer_content_encoded", "preferContentEncoded"), True
            ),
        )


@dataclass
class FeedCursor:
    last_published_at: Optional[str] = None
    recent_guids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "FeedCursor":
        last = as_str(cursor.get("last_published_at"))
        if parse_iso_datetime(last) is None:
            last = None
        return cls(last_published_at=last, recent_guids=as_str_list(cursor.get("recent_guids")))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_published_at:
            out["last_published_at"] = self.last_published_at
        if self.recent_guids:
            out["recent_guids"] = list(self.recent_guids)
        return out


class RssConnector(Connector):
    """Generic syndication feed source."""

    source_type = "rss"

    def __init__(self, feed_loader: Optional[FeedLoader] = None):
        self._load_feed = feed_loader or download_feed

    # ------------------------------------------------------------------
    # Config hooks (overridden by feed-backed subclasses)
    # ------------------------------------------------------------------

    def parse_config(self, config: Dict[str, Any]) -> RssSourceConfig:
        return RssSourceConfig.from_config(config)

    def select_content(self, entry: FeedEntry, config: RssSourceConfig):
        """(content_html, content_text) for the raw item."""
        if config.prefer_content_encoded:
            return entry.content_html or entry.summary, entry.summary
        return entry.content_html, entry.summary or entry.content_html

    def extra_meta(self, config: RssSourceConfig) -> Dict[str, Any]:
        return {}

    def raw_extras(self, entry: FeedEntry, config: RssSourceConfig) -> Dict[str, Any]:
        """Extra fields a subclass keeps on the raw item."""
        return {}

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = self.parse_config(params.config)
        cursor_in = FeedCursor.from_dict(params.cursor)

        markup = await self._load_feed(config.feed_url)
        parsed = parse_feed(markup)

        last_published = parse_iso_datetime(cursor_in.last_published_at)
        seen_guids = set(cursor_in.recent_guids)

        raw_items: List[Dict[str, Any]] = []
        new_guids: List[str] = []
        newest = cursor_in.last_published_at

        for entry in parsed.entries:
            if len(raw_items) >= config.max_item_count:
                break
            if entry.guid and entry.guid in seen_guids:
                continue
            if (
                not entry.guid
                and last_published is not None
                and entry.published is not None
                and entry.published <= last_published
            ):
                continue

            newest = later_iso(newest, entry.published)
            if entry.guid:
                new_guids.append(entry.guid)

            content_html, content_text = self.select_content(entry, config)
            raw_items.append({
                "guid": entry.guid,
                "link": entry.link,
                "title": entry.title,
                "author": entry.author,
                "published_at": to_iso(entry.published) if entry.published else None,
                "content_html": content_html,
                "content_text": content_text,
                "categories": list(entry.categories),
                "feed_url": config.feed_url,
                **self.raw_extras(entry, config),
            })

        next_cursor = FeedCursor(
            last_published_at=newest,
            recent_guids=merge_recent_ids(new_guids, cursor_in.recent_guids, RECENT_GUIDS_CAP),
        )

        logger.info(
            f"{self.source_type}: {len(raw_items)} new of {len(parsed.entries)} entries "
            f"from {config.feed_url}"
        )

        meta = {
            "feed_type": parsed.feed_type,
            "entries_found": len(parsed.entries),
            "entries_after_cursor": len(raw_items),
            "feed_url": config.feed_url,
        }
        if parsed.bozo:
            meta["malformed_markup"] = parsed.bozo_message
        meta.update(self.extra_meta(config))

        return FetchResult(raw_items=raw_items, next_cursor=next_cursor.to_dict(), meta=meta)

    # ------------------------------------------------------------------
    # Normalize
    # ------------------------------------------------------------------

    def body_text(self, raw: Dict[str, Any]) -> Optional[str]:
        html = as_str(raw.get("content_html")) or as_str(raw.get("content_text"))
        if not html:
            return None
        text = strip_html(html)
        return clamp_text(text, MAX_BODY_CHARS) if text else None

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        guid = as_str(raw.get("guid"))
        link = as_str(raw.get("link"))
        title = as_str(raw.get("title"))
        published_raw = as_str(raw.get("published_at"))

        external_id = guid or link or sha256_hex(title or "", published_raw or "")

        metadata = {
            "feed_url": raw.get("feed_url"),
            "categories": as_str_list(raw.get("categories")),
            "guid": guid,
        }

        return ContentItemDraft(
            title=title,
            body_text=self.body_text(raw),
            canonical_url=safe_canonicalize_url(link),
            source_type=self.source_type,
            external_id=external_id,
            published_at=parse_iso_datetime(published_raw),
            author=as_str(raw.get("author")),
            metadata=metadata,
            raw={
                **raw,
                "content_html": _clamp_optional(raw.get("content_html")),
                "content_text": _clamp_optional(raw.get("content_text")),
            },
        )


def _clamp_optional(value: Any) -> Optional[str]:
    return clamp_text(value, MAX_RAW_FIELD_CHARS) if isinstance(value, str) else None
