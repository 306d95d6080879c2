"""
Reddit connector (public JSON listings).

For the ``new`` listing each subreddit keeps its own watermark in
``last_seen_created_utc`` (a map keyed by lowercased subreddit name; a bare
number from older cursors seeds every subreddit). Paging stops at the first
post at or below the watermark.

``max_items`` is shared out across subreddits. When a subreddit's share runs
out before paging reaches its watermark, the watermark stays put and the
IDs already handed out are kept in ``delivered_ids`` so the next run skips
them and continues with older posts. Leftover budget from subreddits with
nothing new goes to the ones that were cut short.

``top`` and ``hot`` have no stable order, so they never touch the cursor.

Optional comment enrichment stores top-level comment bodies on the raw
post as ``_top_comments``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector
from radar_ingest.cursor import (
    as_bool,
    as_dict,
    as_number,
    as_str,
    as_str_list,
    clamp_int,
    merge_recent_ids,
    pick,
)
from radar_ingest.exceptions import ConnectorConfigError
from radar_ingest.html_text import clamp_text
from radar_ingest.http_client import ClientFactory, create_client, get_json
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult

logger = logging.getLogger(__name__)

REDDIT_BASE = "https://www.reddit.com"
MAX_PAGES = 10
PAGE_SIZE = 100
MAX_COMMENTS = 50
DELIVERED_IDS_CAP = 1000
MAX_BODY_CHARS = 50_000
LISTINGS = ("new", "top", "hot")
TIME_FILTERS = ("hour", "day", "week", "month", "year", "all")


@dataclass
class RedditSourceConfig:
    subreddits: List[str]
    listing: str = "new"
    time_filter: str = "day"
    include_comments: bool = False
    max_comment_count: int = 0
    include_nsfw: bool = False

    @property
    def incremental(self) -> bool:
        return self.listing == "new"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RedditSourceConfig":
        subreddits = as_str_list(config.get("subreddits"))
        legacy = as_str(config.get("subreddit"))
        if not subreddits and legacy:
            subreddits = [legacy]
        subreddits = [s[2:] if s.lower().startswith("r/") else s for s in subreddits]
        if not subreddits:
            raise ConnectorConfigError('Reddit source config must include non-empty "subreddits"')

        listing = as_str(config.get("listing"))
        time_filter = as_str(pick(config, "time_filter", "timeFilter"))
        return cls(
            subreddits=subreddits,
            listing=listing if listing in LISTINGS else "new",
            time_filter=time_filter if time_filter in TIME_FILTERS else "day",
            include_comments=as_bool(pick(config, "include_comments", "includeComments"), False),
            max_comment_count=clamp_int(
                pick(config, "max_comment_count", "maxCommentCount"), 0, MAX_COMMENTS, 0
            ),
            include_nsfw=as_bool(pick(config, "include_nsfw", "includeNsfw"), False),
        )


@dataclass
class RedditCursor:
    last_seen_created_utc: Dict[str, float] = field(default_factory=dict)
    delivered_ids: Dict[str, List[str]] = field(default_factory=dict)
    legacy_last_seen: Optional[float] = None

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "RedditCursor":
        raw = cursor.get("last_seen_created_utc")
        marks: Dict[str, float] = {}
        legacy = None
        if isinstance(raw, dict):
            for name, value in raw.items():
                number = as_number(value)
                if isinstance(name, str) and number and number > 0:
                    marks[name.lower()] = number
        else:
            number = as_number(raw)
            legacy = number if number and number > 0 else None

        delivered: Dict[str, List[str]] = {}
        for name, ids in as_dict(cursor.get("delivered_ids")).items():
            ids = as_str_list(ids)
            if isinstance(name, str) and ids:
                delivered[name.lower()] = ids

        return cls(last_seen_created_utc=marks, delivered_ids=delivered, legacy_last_seen=legacy)

    def watermark(self, subreddit: str) -> float:
        return self.last_seen_created_utc.get(subreddit.lower(), self.legacy_last_seen or 0.0)

    def delivered(self, subreddit: str) -> List[str]:
        return list(self.delivered_ids.get(subreddit.lower(), []))

    def advance(self, runs: List["_SubredditRun"]) -> "RedditCursor":
        """Next cursor: completed listings move their watermark, cut-short ones keep it."""
        marks = dict(self.last_seen_created_utc)
        delivered = {name: list(ids) for name, ids in self.delivered_ids.items()}
        for run in runs:
            key = run.name.lower()
            if run.complete:
                if run.newest > 0:
                    marks[key] = run.newest
                delivered.pop(key, None)
                continue
            if run.watermark > 0:
                marks[key] = run.watermark
            if run.fresh_ids:
                delivered[key] = merge_recent_ids(run.fresh_ids, run.delivered, DELIVERED_IDS_CAP)
        return RedditCursor(last_seen_created_utc=marks, delivered_ids=delivered)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_seen_created_utc:
            out["last_seen_created_utc"] = dict(self.last_seen_created_utc)
        elif self.legacy_last_seen is not None:
            out["last_seen_created_utc"] = self.legacy_last_seen
        if self.delivered_ids:
            out["delivered_ids"] = {name: list(ids) for name, ids in self.delivered_ids.items()}
        return out


@dataclass
class _SubredditRun:
    """Paging progress for one subreddit within a fetch."""
    name: str
    watermark: float = 0.0
    delivered: List[str] = field(default_factory=list)
    newest: float = 0.0
    fresh_ids: List[str] = field(default_factory=list)
    fetched: bool = False
    complete: bool = False


@dataclass
class _PageState:
    raw_items: List[Dict[str, Any]] = field(default_factory=list)
    requests: int = 0
    nsfw_skipped: int = 0


class RedditConnector(Connector):
    """Posts from one or more subreddits."""

    source_type = "reddit"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or create_client

    async def _fetch_listing(
        self,
        client: httpx.AsyncClient,
        run: _SubredditRun,
        config: RedditSourceConfig,
        share: int,
        state: _PageState,
    ) -> None:
        """Page one subreddit until its watermark, the end, or ``share`` new posts."""
        after: Optional[str] = None
        url = f"{REDDIT_BASE}/r/{run.name}/{config.listing}.json"
        skip = set(run.delivered) | set(run.fresh_ids)
        taken = 0
        run.fetched = True

        for _ in range(MAX_PAGES):
            if taken >= share:
                return
            query: Dict[str, Any] = {
                "raw_json": 1,
                "limit": max(1, min(PAGE_SIZE, share - taken + len(skip))),
            }
            if after:
                query["after"] = after
            if config.listing == "top":
                query["t"] = config.time_filter

            payload = await get_json(client, url, "Reddit", params=query)
            state.requests += 1

            data = as_dict(as_dict(payload).get("data"))
            children = data.get("children") if isinstance(data.get("children"), list) else []
            if not children:
                run.complete = True
                return

            for child in children:
                if taken >= share:
                    return
                post = as_dict(as_dict(child).get("data"))
                if not post:
                    continue
                created = as_number(post.get("created_utc"))
                if config.incremental and created is not None and created <= run.watermark:
                    run.complete = True
                    return
                if created is not None and created > run.newest:
                    run.newest = created
                post_id = as_str(post.get("name")) or as_str(post.get("id"))
                if post_id and post_id in skip:
                    continue
                if post.get("over_18") is True and not config.include_nsfw:
                    state.nsfw_skipped += 1
                    continue
                state.raw_items.append(post)
                taken += 1
                if post_id:
                    skip.add(post_id)
                    run.fresh_ids.append(post_id)

            after = as_str(data.get("after"))
            if not after:
                run.complete = True
                return

        # older pages past MAX_PAGES are given up on
        run.complete = True

    async def _top_comments(
        self, client: httpx.AsyncClient, permalink: str, max_count: int
    ) -> List[str]:
        payload = await get_json(
            client,
            f"{REDDIT_BASE}{permalink.rstrip('/')}.json",
            "Reddit",
            params={"raw_json": 1, "limit": max(1, min(MAX_COMMENTS, max_count)), "depth": 1},
        )
        if not isinstance(payload, list) or len(payload) < 2:
            return []
        children = as_dict(as_dict(payload[1]).get("data")).get("children")
        out: List[str] = []
        for child in children if isinstance(children, list) else []:
            child = as_dict(child)
            if child.get("kind") != "t1":
                continue
            body = as_str(as_dict(child.get("data")).get("body"))
            if body:
                out.append(body)
            if len(out) >= max_count:
                break
        return out

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = RedditSourceConfig.from_config(params.config)
        cursor_in = RedditCursor.from_dict(params.cursor)
        max_items = max(0, params.limits.max_items)

        runs = []
        for subreddit in config.subreddits:
            watermark = cursor_in.watermark(subreddit) if config.incremental else 0.0
            runs.append(_SubredditRun(
                name=subreddit,
                watermark=watermark,
                delivered=cursor_in.delivered(subreddit) if config.incremental else [],
                newest=watermark,
            ))

        state = _PageState()
        async with self._client_factory() as client:
            for index, run in enumerate(runs):
                remaining = max_items - len(state.raw_items)
                if remaining <= 0:
                    break
                share = max(1, remaining // (len(runs) - index))
                await self._fetch_listing(client, run, config, share, state)

            # leftover budget goes to listings that were cut short
            if config.incremental:
                for run in runs:
                    remaining = max_items - len(state.raw_items)
                    if remaining <= 0:
                        break
                    if run.fetched and not run.complete:
                        await self._fetch_listing(client, run, config, remaining, state)

            if config.include_comments and config.max_comment_count > 0:
                for post in state.raw_items:
                    permalink = as_str(post.get("permalink"))
                    if not permalink:
                        continue
                    post["_top_comments"] = await self._top_comments(
                        client, permalink, config.max_comment_count
                    )
                    state.requests += 1

        if config.incremental:
            next_cursor = cursor_in.advance(runs).to_dict()
        else:
            next_cursor = dict(params.cursor)

        logger.info(
            f"reddit: {len(state.raw_items)} posts from {', '.join(config.subreddits)} "
            f"({config.listing}, {state.requests} requests)"
        )

        return FetchResult(
            raw_items=state.raw_items,
            next_cursor=next_cursor,
            meta={
                "requests": state.requests,
                "listing": config.listing,
                "subreddits": config.subreddits,
                "incremental": config.incremental,
                "nsfw_skipped": state.nsfw_skipped,
            },
        )

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        post_id = as_str(raw.get("name")) or as_str(raw.get("id"))
        permalink = as_str(raw.get("permalink"))
        permalink_url = f"{REDDIT_BASE}{permalink}" if permalink else None
        outbound = as_str(raw.get("url"))
        is_self = raw.get("is_self") is True

        canonical_url = permalink_url
        if outbound and not is_self and outbound.startswith(("http://", "https://")):
            canonical_url = outbound

        parts = []
        selftext = as_str(raw.get("selftext"))
        if selftext:
            parts.append(selftext)
        comments = as_str_list(raw.get("_top_comments"))
        if comments:
            parts.append("Top comments:\n" + "\n".join(f"- {c}" for c in comments))
        body_text = clamp_text("\n\n".join(parts), MAX_BODY_CHARS) if parts else None

        created = as_number(raw.get("created_utc"))
        author = as_str(raw.get("author"))

        return ContentItemDraft(
            title=as_str(raw.get("title")),
            body_text=body_text,
            canonical_url=canonical_url,
            source_type=self.source_type,
            external_id=post_id,
            published_at=(
                datetime.fromtimestamp(created, tz=timezone.utc) if created is not None else None
            ),
            author=None if author in (None, "[deleted]") else author,
            metadata={
                "subreddit": as_str(raw.get("subreddit")),
                "score": as_number(raw.get("score")),
                "num_comments": as_number(raw.get("num_comments")),
                "permalink": permalink_url,
                "over_18": raw.get("over_18") is True,
                "is_self": is_self,
                "top_comment_count": len(comments),
            },
            raw={
                "id": as_str(raw.get("id")),
                "name": as_str(raw.get("name")),
                "subreddit": as_str(raw.get("subreddit")),
                "title": as_str(raw.get("title")),
                "url": outbound,
                "permalink": permalink,
                "created_utc": created,
            },
        )
