"""
YouTube channel connector (public uploads Atom feed, no API key).

Cursor:
    {"last_published_at": ISO, "recent_video_ids": [newest first, max 100]}

A video is skipped when its ID was seen before or when it was published at
or before ``last_published_at``. The feed only lists the latest uploads, so
this is enough to keep runs from repeating themselves.

Transcripts are not fetched; ``include_transcript`` is carried in meta for
the downstream enrichment step.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector
from radar_ingest.connectors.rss import FeedLoader
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
from radar_ingest.exceptions import ConnectorConfigError, NormalizeError
from radar_ingest.feed_parser import FeedEntry, parse_feed
from radar_ingest.html_text import clamp_text
from radar_ingest.http_client import download_feed
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult

logger = logging.getLogger(__name__)

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"
RECENT_VIDEO_IDS_CAP = 100
MAX_DESCRIPTION_CHARS = 50_000

_GUID_VIDEO_RE = re.compile(r"^yt:video:([\w-]+)$")
_WATCH_VIDEO_RE = re.compile(r"[?&]v=([\w-]+)")


def video_id_of(entry: FeedEntry) -> Optional[str]:
    """``yt:videoId``, else the ID inside the ``yt:video:<id>`` GUID or watch URL."""
    video_id = entry.extensions.get("yt_videoid")
    if video_id:
        return video_id
    for pattern, value in ((_GUID_VIDEO_RE, entry.guid), (_WATCH_VIDEO_RE, entry.link)):
        match = pattern.search(value) if value else None
        if match:
            return match.group(1)
    return None


@dataclass
class YoutubeSourceConfig:
    channel_id: str
    max_video_count: int = 30
    include_transcript: bool = False
    transcript_max_chars: int = 2000

    @property
    def feed_url(self) -> str:
        return YOUTUBE_FEED_URL.format(channel_id=quote(self.channel_id, safe=""))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "YoutubeSourceConfig":
        channel_id = as_str(pick(config, "channel_id", "channelId"))
        if not channel_id:
            raise ConnectorConfigError(
                'YouTube source config must include non-empty "channel_id" or "channelId"'
            )
        return cls(
            channel_id=channel_id,
            max_video_count=clamp_int(pick(config, "max_video_count", "maxVideoCount"), 1, 100, 30),
            include_transcript=as_bool(
                pick(config, "include_transcript", "includeTranscript"), False
            ),
            transcript_max_chars=clamp_int(
                pick(config, "transcript_max_chars", "transcriptMaxChars"), 500, 5000, 2000
            ),
        )


@dataclass
class YoutubeCursor:
    last_published_at: Optional[str] = None
    recent_video_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "YoutubeCursor":
        last = as_str(cursor.get("last_published_at"))
        if parse_iso_datetime(last) is None:
            last = None
        return cls(
            last_published_at=last,
            recent_video_ids=as_str_list(cursor.get("recent_video_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_published_at:
            out["last_published_at"] = self.last_published_at
        if self.recent_video_ids:
            out["recent_video_ids"] = list(self.recent_video_ids)
        return out


class YoutubeConnector(Connector):
    """Latest uploads from one YouTube channel."""

    source_type = "youtube"

    def __init__(self, feed_loader: Optional[FeedLoader] = None):
        self._load_feed = feed_loader or download_feed

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = YoutubeSourceConfig.from_config(params.config)
        cursor_in = YoutubeCursor.from_dict(params.cursor)

        parsed = parse_feed(await self._load_feed(config.feed_url))
        last_published = parse_iso_datetime(cursor_in.last_published_at)
        seen_ids = set(cursor_in.recent_video_ids)

        raw_items: List[Dict[str, Any]] = []
        new_ids: List[str] = []
        newest = cursor_in.last_published_at

        for entry in parsed.entries:
            if len(raw_items) >= config.max_video_count:
                break
            video_id = video_id_of(entry)
            if not video_id or video_id in seen_ids or video_id in new_ids:
                continue
            if (
                last_published is not None
                and entry.published is not None
                and entry.published <= last_published
            ):
                continue

            newest = later_iso(newest, entry.published)
            new_ids.append(video_id)
            raw_items.append({
                "video_id": video_id,
                "channel_id": entry.extensions.get("yt_channelid") or config.channel_id,
                "title": entry.title,
                "description": entry.summary,
                "author": entry.author,
                "published_at": to_iso(entry.published) if entry.published else None,
                "updated_at": to_iso(entry.updated) if entry.updated else None,
                "thumbnail_url": entry.extensions.get("media_thumbnail"),
                "canonical_url": entry.link or WATCH_URL.format(video_id=video_id),
            })

        next_cursor = YoutubeCursor(
            last_published_at=newest,
            recent_video_ids=merge_recent_ids(
                new_ids, cursor_in.recent_video_ids, RECENT_VIDEO_IDS_CAP
            ),
        )

        logger.info(
            f"youtube: {len(raw_items)} new of {len(parsed.entries)} videos "
            f"for channel {config.channel_id}"
        )

        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor.to_dict(),
            meta={
                "channel_id": config.channel_id,
                "entries_found": len(parsed.entries),
                "entries_after_cursor": len(raw_items),
                "include_transcript": config.include_transcript,
            },
        )

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        video_id = as_str(raw.get("video_id"))
        if not video_id:
            raise NormalizeError("Malformed YouTube item: missing video_id")

        description = as_str(raw.get("description"))
        return ContentItemDraft(
            title=as_str(raw.get("title")),
            body_text=clamp_text(description, MAX_DESCRIPTION_CHARS) if description else None,
            canonical_url=as_str(raw.get("canonical_url")) or WATCH_URL.format(video_id=video_id),
            source_type=self.source_type,
            external_id=video_id,
            published_at=parse_iso_datetime(raw.get("published_at")),
            author=as_str(raw.get("author")),
            metadata={
                "video_id": video_id,
                "channel_id": as_str(raw.get("channel_id")),
                "thumbnail_url": as_str(raw.get("thumbnail_url")),
                "updated_at": as_str(raw.get("updated_at")),
            },
            raw=dict(raw),
        )
