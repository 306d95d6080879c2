"""
Substack connector, layered on a publication's ``/feed`` RSS.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str, clamp_int, pick
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.models import ContentItemDraft, FetchParams

_PUBLICATION_RE = re.compile(r"https?://([^.]+)\.substack\.com")


def publication_from_url(url: Optional[str]) -> Optional[str]:
    match = _PUBLICATION_RE.search(url) if url else None
    return match.group(1) if match else None


@dataclass
class SubstackSourceConfig(RssSourceConfig):
    publication: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SubstackSourceConfig":
        publication = as_str(config.get("publication"))
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url and publication:
            feed_url = f"https://{publication}.substack.com/feed"
        if not feed_url:
            raise ConnectorConfigError(
                'Substack source config must include "publication" or "feed_url"'
            )
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=True,
            publication=publication,
        )


class SubstackConnector(RssConnector):
    """Posts from one Substack publication."""

    source_type = "substack"

    def parse_config(self, config: Dict[str, Any]) -> SubstackSourceConfig:
        return SubstackSourceConfig.from_config(config)

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)
        draft.metadata["publication_name"] = (
            as_str((params.config or {}).get("publication"))
            or publication_from_url(as_str(raw.get("link")))
            or publication_from_url(as_str(raw.get("feed_url")))
        )
        return draft
