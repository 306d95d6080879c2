"""
Multi-format feed parsing (RSS 2.0, Atom, RSS 1.0/RDF).

Wraps feedparser and flattens each entry into a ``FeedEntry`` using a fixed
fallback order per field:

- link: the ``rel="alternate"`` link, else the first link with an href
- author: ``dc:creator`` before ``author``
- published: ``pubDate`` before ``dc:date``; Atom ``published`` before ``updated``
- content: ``content:encoded`` / Atom ``content``; summary from ``description``

Parsing never raises. Markup that is not recognisably a feed yields an
empty entry list, and a missing or unparsable date yields None.

Usage:
    from radar_ingest.feed_parser import parse_feed

    parsed = parse_feed(xml_text)
    for entry in parsed.entries:
        print(entry.title, entry.published)
"""

import calendar
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import struct_time
from typing import Any, Dict, List, Optional, Union

import feedparser
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

FEED_TYPE_RSS = "rss"
FEED_TYPE_ATOM = "atom"
FEED_TYPE_RDF = "rdf"
FEED_TYPE_UNKNOWN = "unknown"

_RDF_VERSIONS = {"rss090", "rss10"}

_EXTENSION_KEYS = (
    "itunes_duration",
    "itunes_episode",
    "itunes_season",
    "yt_videoid",
    "yt_channelid",
)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class FeedEntry:
    """One feed entry with every field resolved through its fallback chain."""
    guid: Optional[str]
    link: Optional[str]
    title: Optional[str]
    author: Optional[str]
    published: Optional[datetime]
    content_html: Optional[str]
    summary: Optional[str]
    categories: List[str] = field(default_factory=list)
    updated: Optional[datetime] = None
    # namespaced extras: itunes_*, yt_*, enclosure_*, media_thumbnail
    extensions: Dict[str, str] = field(default_factory=dict)


@dataclass
class ParsedFeed:
    """Result of parsing one document."""
    feed_type: str
    entries: List[FeedEntry] = field(default_factory=list)
    version: str = ""
    bozo: bool = False
    bozo_message: Optional[str] = None


# ============================================================================
# Helper Functions
# ============================================================================

def classify_version(version: Optional[str]) -> str:
    """Map feedparser's ``version`` string onto rss / atom / rdf / unknown."""
    if not version:
        return FEED_TYPE_UNKNOWN
    if version in _RDF_VERSIONS:
        return FEED_TYPE_RDF
    if version.startswith("atom"):
        return FEED_TYPE_ATOM
    if version.startswith("rss"):
        return FEED_TYPE_RSS
    return FEED_TYPE_UNKNOWN


def extract_text(value: Any) -> Optional[str]:
    """
    Resolve text from a plain string or a content wrapper.

    feedparser represents content as ``[{"type": ..., "value": ...}]`` and
    details as ``{"value": ...}``; lists resolve to their first non-empty item.
    """
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (list, tuple)):
        for item in value:
            text = extract_text(item)
            if text:
                return text
        return None
    if isinstance(value, dict):
        for key in ("value", "#text", "name", "term"):
            if key in value:
                return extract_text(value.get(key))
    return None


def _struct_to_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, struct_time):
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return None


def _extract_link(entry: Any) -> Optional[str]:
    links = entry.get("links") or []
    fallback = None
    for link in links:
        href = extract_text(link.get("href")) if isinstance(link, dict) else None
        if not href:
            continue
        if link.get("rel", "alternate") == "alternate":
            return href
        if fallback is None:
            fallback = href
    return extract_text(entry.get("link")) or fallback


def _dc_creators(data: bytes) -> List[Optional[str]]:
    """
    Raw ``dc:creator`` text per item/entry, in document order.

    feedparser files ``dc:creator`` and ``<author>`` into the same
    ``authors`` list, so the element has to be read from the markup.
    """
    soup = BeautifulSoup(data, "html.parser")
    creators: List[Optional[str]] = []
    for node in soup.find_all(["item", "entry"]):
        creator = node.find("dc:creator")
        creators.append(extract_text(creator.get_text()) if creator is not None else None)
    return creators


def _extract_author(entry: Any) -> Optional[str]:
    # RSS <author> is usually "email (name)"
    authors = [a for a in (entry.get("authors") or []) if isinstance(a, dict)]
    for detail in authors:
        if detail.get("name") and not detail.get("email"):
            return extract_text(detail.get("name"))
    for detail in authors:
        name = extract_text(detail.get("name")) or extract_text(detail.get("email"))
        if name:
            return name
    return extract_text(entry.get("author"))


def _extract_published(entry: Any) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = _struct_to_datetime(entry.get(key))
        if parsed is not None:
            return parsed
    return None


def _extract_categories(entry: Any) -> List[str]:
    categories = []
    for tag in entry.get("tags") or []:
        if not isinstance(tag, dict):
            continue
        term = extract_text(tag.get("term")) or extract_text(tag.get("label"))
        if term and term not in categories:
            categories.append(term)
    return categories


def _extract_extensions(entry: Any) -> Dict[str, str]:
    extensions: Dict[str, str] = {}
    for key in _EXTENSION_KEYS:
        text = extract_text(entry.get(key))
        if text:
            extensions[key] = text

    for enclosure in entry.get("enclosures") or []:
        if isinstance(enclosure, dict) and extract_text(enclosure.get("href")):
            for source, target in (
                ("href", "enclosure_url"),
                ("type", "enclosure_type"),
                ("length", "enclosure_length"),
            ):
                text = extract_text(enclosure.get(source))
                if text:
                    extensions[target] = text
            break

    for thumbnail in entry.get("media_thumbnail") or []:
        url = extract_text(thumbnail.get("url")) if isinstance(thumbnail, dict) else None
        if url:
            extensions["media_thumbnail"] = url
            break

    return extensions


def _to_entry(entry: Any, creator: Optional[str] = None) -> FeedEntry:
    return FeedEntry(
        guid=extract_text(entry.get("id")),
        link=_extract_link(entry),
        title=extract_text(entry.get("title")),
        author=creator or _extract_author(entry),
        published=_extract_published(entry),
        content_html=extract_text(entry.get("content")),
        summary=extract_text(entry.get("summary")),
        categories=_extract_categories(entry),
        updated=_struct_to_datetime(entry.get("updated_parsed")),
        extensions=_extract_extensions(entry),
    )


# ============================================================================
# Main Parser
# ============================================================================

def parse_feed(markup: Union[str, bytes]) -> ParsedFeed:
    """Parse feed markup into a ``ParsedFeed``; never raises."""
    data = markup.encode("utf-8") if isinstance(markup, str) else (markup or b"")
    if not data.strip():
        return ParsedFeed(feed_type=FEED_TYPE_UNKNOWN)

    try:
        # a stream keeps feedparser from treating the text as a URL or path
        parsed = feedparser.parse(io.BytesIO(data))
    except Exception as e:
        logger.warning(f"Feed parsing failed: {e}")
        return ParsedFeed(feed_type=FEED_TYPE_UNKNOWN, bozo=True, bozo_message=str(e))

    version = parsed.get("version") or ""
    feed_type = classify_version(version)
    bozo = bool(parsed.get("bozo"))
    bozo_message = str(parsed.get("bozo_exception")) if bozo else None
    if bozo:
        logger.warning(f"Malformed feed markup ({version or 'unrecognised'}): {bozo_message}")

    if feed_type == FEED_TYPE_UNKNOWN:
        return ParsedFeed(
            feed_type=feed_type, version=version, bozo=bozo, bozo_message=bozo_message
        )

    creators: List[Optional[str]] = []
    if b"creator" in data:
        creators = _dc_creators(data)
        if len(creators) != len(parsed.entries):
            creators = []

    entries = []
    for index, raw_entry in enumerate(parsed.entries):
        try:
            entries.append(_to_entry(raw_entry, creators[index] if creators else None))
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Dropping unreadable feed entry: {e}")

    return ParsedFeed(
        feed_type=feed_type,
        entries=entries,
        version=version,
        bozo=bozo,
        bozo_message=bozo_message,
    )
