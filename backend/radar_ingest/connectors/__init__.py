"""
Connectors for radar content ingestion.

This package provides one connector per source type:
1. rss / github_releases - RSS 2.0, Atom and RDF feeds
   arxiv, lobsters, medium, substack, producthunt, podcast - feeds with
   per-site metadata layered on the rss connector
   youtube - channel uploads feed
2. hn - Hacker News top/new stories
3. reddit - subreddit listings with optional comments
4. congress_trading / sec_edgar - congressional trades, SEC Form 4 and 13F filings
5. options_flow - unusual options activity
6. x_posts / signal - X search through the Grok x_search tool

Each connector turns upstream payloads into ContentItemDraft objects for the
downstream scoring pipeline.
"""

from .base import Connector
from .registry import CONNECTORS, get_connector, source_types

__all__ = [
    "CONNECTORS",
    "Connector",
    "get_connector",
    "source_types",
]
