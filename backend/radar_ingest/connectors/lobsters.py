"""
Lobste.rs connector, layered on the site RSS (front page or one tag).
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str, clamp_int, pick
from radar_ingest.models import ContentItemDraft, FetchParams

LOBSTERS_BASE = "https://lobste.rs"

_COMMENTS_RE = re.compile(r"(\d+)\s+comments?", re.IGNORECASE)


def parse_comment_count(text: Optional[str]) -> Optional[int]:
    match = _COMMENTS_RE.search(text) if text else None
    return int(match.group(1)) if match else None


def link_domain(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    try:
        return urlsplit(link).hostname
    except ValueError:
        return None


@dataclass
class LobstersSourceConfig(RssSourceConfig):
    tag: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "LobstersSourceConfig":
        tag = as_str(config.get("tag"))
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url:
            feed_url = f"{LOBSTERS_BASE}/t/{tag}.rss" if tag else f"{LOBSTERS_BASE}/rss"
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=False,
            tag=tag,
        )


class LobstersConnector(RssConnector):
    """Stories from lobste.rs."""

    source_type = "lobsters"

    def parse_config(self, config: Dict[str, Any]) -> LobstersSourceConfig:
        return LobstersSourceConfig.from_config(config)

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)
        description = as_str(raw.get("content_text")) or as_str(raw.get("content_html"))
        draft.metadata.update({
            "tags": draft.metadata["categories"],
            "submitter": draft.author,
            "domain": link_domain(as_str(raw.get("link"))),
            "comment_count": parse_comment_count(description),
        })
        return draft
