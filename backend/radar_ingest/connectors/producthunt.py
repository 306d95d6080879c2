"""
Product Hunt connector, layered on the public launches feed.

The feed has no structured vote counts or taglines, so normalize derives a
tagline from the first line of the description and picks up a vote figure
only when the text states one ("123 upvotes").
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str, clamp_int, pick
from radar_ingest.models import ContentItemDraft, FetchParams

PRODUCTHUNT_FEED_URL = "https://www.producthunt.com/feed"
TAGLINE_MAX_CHARS = 200

_SENTENCE_RE = re.compile(r"^[^.!?]+[.!?]")
_VOTE_PATTERNS = (
    re.compile(r"(\d+)\s*upvotes?", re.IGNORECASE),
    re.compile(r"(\d+)\s*votes?", re.IGNORECASE),
    re.compile(r"(\d+)\s*points?", re.IGNORECASE),
)


def extract_tagline(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    first_line = text.split("\n", 1)[0].strip()
    if not first_line:
        return None
    if len(first_line) <= TAGLINE_MAX_CHARS:
        return first_line
    sentence = _SENTENCE_RE.match(first_line)
    if sentence and len(sentence.group(0)) <= TAGLINE_MAX_CHARS:
        return sentence.group(0).strip()
    return first_line[:TAGLINE_MAX_CHARS]


def extract_votes(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    for pattern in _VOTE_PATTERNS:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


@dataclass
class ProductHuntSourceConfig(RssSourceConfig):

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ProductHuntSourceConfig":
        return cls(
            feed_url=as_str(pick(config, "feed_url", "feedUrl")) or PRODUCTHUNT_FEED_URL,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=True,
        )


class ProductHuntConnector(RssConnector):
    """Product launches from Product Hunt."""

    source_type = "producthunt"

    def parse_config(self, config: Dict[str, Any]) -> ProductHuntSourceConfig:
        return ProductHuntSourceConfig.from_config(config)

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)
        draft.metadata.update({
            "topics": draft.metadata["categories"],
            "tagline": extract_tagline(draft.body_text),
            "maker": draft.author,
            "votes": extract_votes(draft.body_text),
        })
        return draft
