"""
arXiv connector, layered on the per-category RSS listing.

Same fetch and cursor as the rss connector. Normalize keys items by the
arXiv identifier, splits the comma-joined ``dc:creator`` into an author
list and links the PDF.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from radar_ingest.connectors.rss import RssConnector, RssSourceConfig
from radar_ingest.cursor import as_str, clamp_int, pick
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.html_text import clamp_text
from radar_ingest.models import ContentItemDraft, FetchParams

ARXIV_RSS_BASE = "https://export.arxiv.org/rss"
MAX_ABSTRACT_CHARS = 10_000

_ARXIV_ID_RE = re.compile(r"arxiv\.org/(?:abs|pdf)/([^\s?#]+)", re.IGNORECASE)
_SPACE_RE = re.compile(r"\s+")


def parse_arxiv_id(link: Optional[str]) -> Optional[str]:
    """``2403.01234v2`` from an abs/pdf URL."""
    if not link:
        return None
    match = _ARXIV_ID_RE.search(link)
    if not match:
        return None
    arxiv_id = match.group(1)
    return arxiv_id[:-4] if arxiv_id.endswith(".pdf") else arxiv_id


def split_authors(author: Optional[str]) -> List[str]:
    if not author:
        return []
    return [name.strip() for name in author.split(",") if name.strip()]


@dataclass
class ArxivSourceConfig(RssSourceConfig):
    category: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ArxivSourceConfig":
        category = as_str(config.get("category"))
        feed_url = as_str(pick(config, "feed_url", "feedUrl"))
        if not feed_url and category:
            feed_url = f"{ARXIV_RSS_BASE}/{category}"
        if not feed_url:
            raise ConnectorConfigError(
                'arXiv source config must include "category" (e.g. "cs.AI") or "feed_url"'
            )
        return cls(
            feed_url=feed_url,
            max_item_count=clamp_int(pick(config, "max_item_count", "maxItemCount"), 1, 200, 50),
            prefer_content_encoded=False,
            category=category,
        )


class ArxivConnector(RssConnector):
    """New submissions in one arXiv category."""

    source_type = "arxiv"

    def parse_config(self, config: Dict[str, Any]) -> ArxivSourceConfig:
        return ArxivSourceConfig.from_config(config)

    def extra_meta(self, config: ArxivSourceConfig) -> Dict[str, Any]:
        return {"category": config.category}

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        draft = super().normalize(raw, params)

        arxiv_id = parse_arxiv_id(as_str(raw.get("link")))
        authors = split_authors(draft.author)
        if arxiv_id:
            draft.external_id = arxiv_id
        if draft.title:
            draft.title = _SPACE_RE.sub(" ", draft.title).strip()
        draft.author = ", ".join(authors) if authors else None

        draft.metadata.update({
            "arxiv_id": arxiv_id,
            "pdf_url": f"https://arxiv.org/pdf/{arxiv_id}.pdf" if arxiv_id else None,
            "authors": authors,
            "abstract": clamp_text(draft.body_text, MAX_ABSTRACT_CHARS) if draft.body_text else None,
        })
        return draft
