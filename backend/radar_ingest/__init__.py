"""
Radar connector ingestion engine.

Pulls content from feeds, forum APIs, financial-disclosure vendors and a
generative-search provider, and turns each payload into a canonical
``ContentItemDraft`` for the downstream scoring pipeline.

Usage:
    from radar_ingest.connectors import get_connector
    from radar_ingest.models import FetchParams

    connector = get_connector("rss")
    result = await connector.fetch(params)
    drafts = [connector.normalize(item, params) for item in result.raw_items]
"""

__version__ = "0.4.0"
