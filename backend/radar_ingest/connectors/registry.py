"""
Connector registry.

A flat list searched by ``source_type``. An unknown type is a configuration
error and fails before any fetch is attempted.
"""

from typing import List

from radar_ingest.connectors.arxiv import ArxivConnector
from radar_ingest.connectors.base import Connector
from radar_ingest.connectors.congress_trading import CongressTradingConnector
from radar_ingest.connectors.github_releases import GithubReleasesConnector
from radar_ingest.connectors.hn import HnConnector
from radar_ingest.connectors.lobsters import LobstersConnector
from radar_ingest.connectors.medium import MediumConnector
from radar_ingest.connectors.options_flow import OptionsFlowConnector
from radar_ingest.connectors.podcast import PodcastConnector
from radar_ingest.connectors.producthunt import ProductHuntConnector
from radar_ingest.connectors.reddit import RedditConnector
from radar_ingest.connectors.rss import RssConnector
from radar_ingest.connectors.sec_edgar import SecEdgarConnector
from radar_ingest.connectors.signal import SignalConnector
from radar_ingest.connectors.substack import SubstackConnector
from radar_ingest.connectors.x_posts import XPostsConnector
from radar_ingest.connectors.youtube import YoutubeConnector
from radar_ingest.exceptions import ConnectorConfigError

CONNECTORS: List[Connector] = [
    RssConnector(),
    GithubReleasesConnector(),
    ArxivConnector(),
    LobstersConnector(),
    MediumConnector(),
    SubstackConnector(),
    ProductHuntConnector(),
    PodcastConnector(),
    YoutubeConnector(),
    HnConnector(),
    RedditConnector(),
    CongressTradingConnector(),
    SecEdgarConnector(),
    OptionsFlowConnector(),
    XPostsConnector(),
    SignalConnector(),
]


def source_types() -> List[str]:
    return [c.source_type for c in CONNECTORS]


def get_connector(source_type: str) -> Connector:
    for connector in CONNECTORS:
        if connector.source_type == source_type:
            return connector
    raise ConnectorConfigError(f"Unknown connector source_type: {source_type}")
