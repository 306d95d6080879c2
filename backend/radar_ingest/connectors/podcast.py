"""
Podcast connector: an RSS feed plus the enclosure and iTunes episode tags.

``itunes:duration`` arrives as seconds, ``MM:SS`` or ``HH:MM:SS`` and is
stored as whole seconds.
"""

from typing import Any, Dict, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str
from radar_ingest.feed_parser import FeedEntry
from radar_ingest.models import ContentItemDraft, FetchParams

EPISODE_FIELDS = (
    "enclosure_url",
    "enclosure_type",
    "enclosure_length",
    "duration",
    "episode_number",
    "season",
)


def parse_duration(value: Optional[str]) -> Optional[str]:
    """iTunes duration as a count of seconds; None when unreadable."""
    text = as_str(value)
    if not text:
        return None
    if text.isdigit():
        return str(int(text))
    parts = text.split(":")
    if not all(part.isdigit() for part in parts):
        return None
    numbers = [int(part) for part in parts]
    if len(numbers) == 3:
        return str(numbers[0] * 3600 + numbers[1] * 60 + numbers[2])
    if len(numbers) == 2:
        return str(numbers[0] * 60 + numbers[1])
    return None


class PodcastConnector(RssConnector):
    """Episodes from a podcast feed."""

    source_type = "podcast"

    def raw_extras(self, entry: FeedEntry, config: RssSourceConfig) -> Dict[str, Any]:
        ext = entry.extensions
        return {
            "enclosure_url": ext.get("enclosure_url"),
            "enclosure_type": ext.get("enclosure_type"),
            "enclosure_length": ext.get("enclosure_length"),
            "duration": parse_duration(ext.get("itunes_duration")),
            "episode_number": ext.get("itunes_episode"),
            "season": ext.get("itunes_season"),
        }

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)
        for name in EPISODE_FIELDS:
            value = as_str(raw.get(name))
            if value:
                draft.metadata[name] = value
        return draft
