"""
Unit Tests for Feed-Backed Connectors

Tests the rss and github_releases connectors with an injected feed loader:
- Config validation before any network I/O
- Cursor handling: GUID window, date watermark for GUID-less entries
- Determinism of repeated fetches from the same cursor
- Normalization: external IDs, canonical URLs, body stripping, release fields

Usage:
    cd backend && pytest tests/test_feed_connectors.py -v
"""

import asyncio
import sys
import os
from typing import Any, Dict, List

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from radar_ingest.connectors.github_releases import (
    GithubReleasesConnector,
    is_prerelease,
    parse_version,
)
from radar_ingest.connectors.rss import RECENT_GUIDS_CAP, RssConnector
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.models import FetchLimits, FetchParams


# ============================================================================
# FIXTURES AND TEST DATA FACTORIES
# ============================================================================

def make_params(
    source_type: str = "rss",
    config: Dict[str, Any] = None,
    cursor: Dict[str, Any] = None,
    max_items: int = 50,
) -> FetchParams:
    """Factory function to create fetch params."""
    return FetchParams(
        user_id="user-1",
        source_id="source-1",
        source_type=source_type,
        config=config if config is not None else {"feed_url": "https://example.com/feed.xml"},
        cursor=cursor or {},
        limits=FetchLimits(max_items=max_items),
        window_start="2026-03-01T00:00:00Z",
        window_end="2026-03-02T00:00:00Z",
    )


def make_item(guid: str = None, title: str = "Item", pub_date: str = None, link: str = None) -> str:
    """Factory function to create one RSS item."""
    parts = [f"<title>{title}</title>"]
    if guid:
        parts.append(f"<guid>{guid}</guid>")
    if link:
        parts.append(f"<link>{link}</link>")
    if pub_date:
        parts.append(f"<pubDate>{pub_date}</pubDate>")
    parts.append("<description>&lt;p&gt;Hello &amp;amp; welcome&lt;/p&gt;</description>")
    return "<item>" + "".join(parts) + "</item>"


def make_rss(items: List[str]) -> str:
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel><title>T</title>'
        "<link>https://example.com</link><description>D</description>"
        + "".join(items)
        + "</channel></rss>"
    )


def make_loader(markup: str):
    """Feed loader stub that records requested URLs."""
    requested = []

    async def loader(url: str) -> str:
        requested.append(url)
        return markup

    return loader, requested


RELEASES_ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <id>tag:github.com,2008:https://github.com/acme/widget/releases</id>
  <title>Release notes from widget</title>
  <updated>2026-03-01T12:00:00Z</updated>
  <entry>
    <id>tag:github.com,2008:Repository/1/v2.1.0-rc.1</id>
    <updated>2026-03-01T12:00:00Z</updated>
    <link rel="alternate" type="text/html" href="https://github.com/acme/widget/releases/tag/v2.1.0-rc.1"/>
    <title>v2.1.0-rc.1</title>
    <content type="html">&lt;h2&gt;Changes&lt;/h2&gt;&lt;ul&gt;&lt;li&gt;Faster&lt;/li&gt;&lt;/ul&gt;</content>
    <author><name>octocat</name></author>
  </entry>
</feed>"""


# ============================================================================
# RSS CONNECTOR TESTS
# ============================================================================

class TestRssConfig:
    """Tests for RSS config validation."""

    def test_missing_feed_url_fails_fast(self):
        """A missing feed URL raises before the loader is called."""
        loader, requested = make_loader(make_rss([]))
        connector = RssConnector(feed_loader=loader)

        with pytest.raises(ConnectorConfigError):
            asyncio.run(connector.fetch(make_params(config={})))
        assert requested == []

    def test_camel_case_feed_url_accepted(self):
        loader, requested = make_loader(make_rss([]))
        connector = RssConnector(feed_loader=loader)

        asyncio.run(connector.fetch(make_params(config={"feedUrl": "https://example.com/camel"})))

        assert requested == ["https://example.com/camel"]


class TestRssFetch:
    """Tests for RssConnector.fetch cursor handling."""

    def test_seen_guid_is_skipped(self):
        """Entries whose GUID is already in recent_guids are not emitted again."""
        markup = make_rss([make_item("a", "A"), make_item("b", "B")])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)

        result = asyncio.run(connector.fetch(make_params(cursor={"recent_guids": ["a"]})))

        assert [item["guid"] for item in result.raw_items] == ["b"]
        assert result.next_cursor["recent_guids"] == ["b", "a"]

    def test_guidless_entry_at_or_before_watermark_skipped(self):
        """Without a GUID the publish date is compared to last_published_at."""
        markup = make_rss([
            make_item(title="Old", pub_date="Sun, 01 Mar 2026 10:00:00 GMT"),
            make_item(title="New", pub_date="Mon, 02 Mar 2026 10:00:00 GMT"),
        ])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)

        result = asyncio.run(connector.fetch(
            make_params(cursor={"last_published_at": "2026-03-01T10:00:00Z"})
        ))

        assert [item["title"] for item in result.raw_items] == ["New"]
        assert result.next_cursor["last_published_at"] == "2026-03-02T10:00:00Z"

    def test_watermark_never_regresses(self):
        """Older entries with new GUIDs come through but do not move the watermark back."""
        markup = make_rss([make_item("late", "Late", pub_date="Sat, 28 Feb 2026 10:00:00 GMT")])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)

        result = asyncio.run(connector.fetch(
            make_params(cursor={"last_published_at": "2026-03-01T10:00:00Z"})
        ))

        assert len(result.raw_items) == 1
        assert result.next_cursor["last_published_at"] == "2026-03-01T10:00:00Z"

    def test_recent_guids_capped(self):
        """The GUID window never grows past its cap."""
        markup = make_rss([make_item(f"g{i}", f"T{i}") for i in range(10)])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)
        previous = [f"old{i}" for i in range(RECENT_GUIDS_CAP)]

        result = asyncio.run(connector.fetch(make_params(cursor={"recent_guids": previous})))

        guids = result.next_cursor["recent_guids"]
        assert len(guids) == RECENT_GUIDS_CAP
        assert guids[:10] == [f"g{i}" for i in range(10)]
        assert guids[-1] == f"old{RECENT_GUIDS_CAP - 11}"

    def test_max_item_count_respected(self):
        markup = make_rss([make_item(f"g{i}") for i in range(5)])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)

        result = asyncio.run(connector.fetch(make_params(
            config={"feed_url": "https://example.com/feed.xml", "max_item_count": 2}
        )))

        assert len(result.raw_items) == 2

    def test_same_cursor_same_result(self):
        """Two fetches from the same cursor over the same feed are identical."""
        markup = make_rss([make_item("a", pub_date="Mon, 02 Mar 2026 10:00:00 GMT"), make_item("b")])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)
        params = make_params(cursor={"recent_guids": ["z"]})

        first = asyncio.run(connector.fetch(params))
        second = asyncio.run(connector.fetch(params))

        assert first.raw_items == second.raw_items
        assert first.next_cursor == second.next_cursor
        assert params.cursor == {"recent_guids": ["z"]}

    def test_malformed_cursor_ignored(self):
        """Garbage cursor fields are treated as absent."""
        markup = make_rss([make_item("a")])
        loader, _ = make_loader(markup)
        connector = RssConnector(feed_loader=loader)

        result = asyncio.run(connector.fetch(make_params(
            cursor={"last_published_at": "yesterday-ish", "recent_guids": "a"}
        )))

        assert len(result.raw_items) == 1


class TestRssNormalize:
    """Tests for RssConnector.normalize."""

    def test_normalize_fields(self):
        connector = RssConnector()
        raw = {
            "guid": "guid-1",
            "link": "https://Example.com/post/?utm_source=rss",
            "title": "Hello",
            "author": "Ann",
            "published_at": "2026-03-02T10:00:00Z",
            "content_html": "<p>Hello &amp; welcome</p><script>x()</script>",
            "content_text": None,
            "categories": ["News"],
            "feed_url": "https://example.com/feed.xml",
        }

        draft = connector.normalize(raw, make_params())

        assert draft.external_id == "guid-1"
        assert draft.canonical_url == "https://example.com/post"
        assert draft.body_text == "Hello & welcome"
        assert draft.published_at.isoformat() == "2026-03-02T10:00:00+00:00"
        assert draft.metadata == {
            "feed_url": "https://example.com/feed.xml",
            "categories": ["News"],
            "guid": "guid-1",
        }

    def test_external_id_falls_back_to_hash(self):
        """Without GUID or link the ID is a stable hash of title and date."""
        connector = RssConnector()
        raw = {"title": "No ids", "published_at": "2026-03-02T10:00:00Z"}

        first = connector.normalize(raw, make_params()).external_id
        second = connector.normalize(dict(raw), make_params()).external_id

        assert first == second
        assert len(first) == 64

    def test_raw_html_clamped(self):
        connector = RssConnector()
        raw = {"guid": "g", "content_html": "x" * 20_000}

        draft = connector.normalize(raw, make_params())

        assert len(draft.raw["content_html"]) == 10_000


# ============================================================================
# GITHUB RELEASES TESTS
# ============================================================================

class TestGithubReleases:
    """Tests for GithubReleasesConnector."""

    def test_requires_owner_and_repo(self):
        connector = GithubReleasesConnector(feed_loader=make_loader("")[0])

        with pytest.raises(ConnectorConfigError):
            asyncio.run(connector.fetch(make_params("github_releases", config={"owner": "acme"})))

    def test_fetch_builds_feed_url_and_normalizes(self):
        loader, requested = make_loader(RELEASES_ATOM)
        connector = GithubReleasesConnector(feed_loader=loader)
        params = make_params("github_releases", config={"owner": "acme", "repo": "widget"})

        result = asyncio.run(connector.fetch(params))
        draft = connector.normalize(result.raw_items[0], params)

        assert requested == ["https://github.com/acme/widget/releases.atom"]
        assert result.meta["owner"] == "acme"
        assert draft.source_type == "github_releases"
        assert draft.metadata["version"] == "v2.1.0-rc.1"
        assert draft.metadata["prerelease"] is True
        assert draft.metadata["repo_full_name"] == "acme/widget"
        assert "Faster" in draft.metadata["release_notes"]

    def test_version_parsing(self):
        assert parse_version("Release v1.4.2") == "v1.4.2"
        assert parse_version("2.0 is here") == "2.0"
        assert parse_version("No version") is None

    def test_prerelease_detection(self):
        assert is_prerelease("v3.0.0-beta.2", "v3.0.0-beta.2")
        assert is_prerelease("Nightly build", None)
        assert not is_prerelease("v3.0.0", "v3.0.0")
