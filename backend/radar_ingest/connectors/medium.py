"""
Medium connector, layered on the per-user or per-publication RSS feed.

Normalize adds the collection (publication slug) and the "N min read"
figure when the feed text carries one.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_bool, as_str, clamp_int, pick
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.models import ContentItemDraft, FetchParams

MEDIUM_FEED_BASE = "https://medium.com/feed"

_PATH_COLLECTION_RE = re.compile(r"https?://medium\.com/([^/@][^/]+)/")
_SUBDOMAIN_COLLECTION_RE = re.compile(r"https?://([^.]+)\.medium\.com")
_READING_TIME_RE = re.compile(r"(\d+)\s*min(?:ute)?s?\s*read", re.IGNORECASE)


def collection_from_url(url: Optional[str]) -> Optional[str]:
    """Publication slug from ``medium.com/<slug>/...`` or ``<slug>.medium.com``."""
    if not url:
        return None
    match = _PATH_COLLECTION_RE.search(url)
    if match and match.group(1) not in ("p", "tag"):
        return match.group(1)
    match = _SUBDOMAIN_COLLECTION_RE.search(url)
    return match.group(1) if match else None


def parse_reading_time(text: Optional[str]) -> Optional[int]:
    match = _READING_TIME_RE.search(text) if text else None
    return int(match.group(1)) if match else None


@dataclass
class MediumSourceConfig(RssSourceConfig):
    username: Optional[str] = None
    publication: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "MediumSourceConfig":
        username = as_str(config.get("username"))
        publication = as_str(config.get("publication"))
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url and username:
            handle = username if username.startswith("@") else f"@{username}"
            feed_url = f"{MEDIUM_FEED_BASE}/{handle}"
        elif not feed_url and publication:
            feed_url = f"{MEDIUM_FEED_BASE}/{publication}"
        if not feed_url:
            raise ConnectorConfigError(
                'Medium source config must include "username", "publication" or "feed_url"'
            )
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=as_bool(
                pick(config, "prefer_content_encoded", "preferContentEncoded"), True
            ),
            username=username,
            publication=publication,
        )


class MediumConnector(RssConnector):
    """Stories from a Medium author or publication."""

    source_type = "medium"

    def parse_config(self, config: Dict[str, Any]) -> MediumSourceConfig:
        return MediumSourceConfig.from_config(config)

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)
        link = as_str(raw.get("link"))
        collection = as_str((params.config or {}).get("publication")) or collection_from_url(link)
        draft.metadata.update({
            "collection": collection,
            "reading_time": parse_reading_time(
                as_str(raw.get("content_text")) or as_str(raw.get("content_html"))
            ),
        })
        return draft
