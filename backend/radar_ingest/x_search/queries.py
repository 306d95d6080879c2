"""
Query compilation and account batching for X search.

Config ``{accounts, keywords, queries}`` becomes a list of ``SearchJob``s,
one provider call each:

- raw ``queries`` are used verbatim, one job per query
- ``off``: one ``from:<account> [filters] (<kw> OR ...)`` query per account
- ``manual``: one query per configured group of handles
- ``auto``: accounts chunked into groups of ``batch_size`` (1-10, default 5)

Every group is re-chunked to the per-call handle cap before dispatch.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from radar_ingest.cursor import as_str_list, clamp_int
from radar_ingest.settings import env_int

logger = logging.getLogger(__name__)

BATCH_MODES = ("off", "manual", "auto")
DEFAULT_BATCH_SIZE = 5
MAX_BATCH_SIZE = 10
DEFAULT_MAX_HANDLES_PER_CALL = 5
MAX_HANDLES_ENV = "X_POSTS_MAX_HANDLES_PER_CALL"

_FROM_QUERY_RE = re.compile(r"^from:([A-Za-z0-9_]{1,30})(?:\s|$)")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T")


@dataclass
class BatchingConfig:
    mode: str = "off"
    batch_size: Optional[int] = None
    groups: Optional[List[List[str]]] = None

    @classmethod
    def from_value(cls, value: Any) -> Optional["BatchingConfig"]:
        if not isinstance(value, dict):
            return None
        mode = value.get("mode")
        if mode not in BATCH_MODES:
            return None
        raw_size = value.get("batch_size", value.get("batchSize"))
        batch_size = raw_size if isinstance(raw_size, int) and not isinstance(raw_size, bool) else None
        groups = None
        raw_groups = value.get("groups")
        if mode in ("manual", "auto") and isinstance(raw_groups, list):
            parsed = [as_str_list(g) for g in raw_groups if isinstance(g, list)]
            parsed = [g for g in parsed if g]
            groups = parsed or None
        return cls(mode=mode, batch_size=batch_size, groups=groups)


@dataclass
class QuerySpec:
    """The query-shaping part of a search source config."""
    accounts: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    exclude_replies: bool = True
    exclude_retweets: bool = True
    batching: Optional[BatchingConfig] = None


@dataclass
class SearchJob:
    """One provider call: query text plus the handles it covers."""
    query: str
    handles: List[str] = field(default_factory=list)

    @property
    def group_size(self) -> int:
        return max(1, len(self.handles))


# ============================================================================
# Query text
# ============================================================================

def keyword_expression(keywords: List[str]) -> Optional[str]:
    """``"kw1" OR "kw2"`` with embedded quotes escaped; None without keywords."""
    cleaned = [k.strip() for k in keywords if k and k.strip()]
    if not cleaned:
        return None
    return " OR ".join('"' + k.replace('"', '\\"') + '"' for k in cleaned)


def _filter_tokens(spec: QuerySpec) -> List[str]:
    filters = []
    if spec.exclude_replies:
        filters.append("-filter:replies")
    if spec.exclude_retweets:
        filters.append("-filter:retweets")
    return filters


def compile_queries(spec: QuerySpec) -> List[str]:
    """Per-account queries; keywords alone become a single query."""
    if spec.queries:
        return list(spec.queries)

    kw_expr = keyword_expression(spec.keywords)
    filters = _filter_tokens(spec)
    out = []
    for account in spec.accounts:
        account = account.strip()
        if not account:
            continue
        base = " ".join([f"from:{account}"] + filters)
        out.append(f"{base} ({kw_expr})" if kw_expr else base)

    if not out and kw_expr:
        out.append(kw_expr)
    return out


def compile_batched_query(handles: List[str], spec: QuerySpec) -> str:
    """``(from:a OR from:b) [filters] (<kw expr>)`` for one handle group."""
    from_expr = "(" + " OR ".join(f"from:{h.strip()}" for h in handles) + ")"
    parts = [from_expr] + _filter_tokens(spec)
    kw_expr = keyword_expression(spec.keywords)
    if kw_expr:
        parts.append(f"({kw_expr})")
    return " ".join(parts)


def extract_handle_from_query(query: str) -> Optional[str]:
    match = _FROM_QUERY_RE.match(query.strip())
    return match.group(1) if match else None


# ============================================================================
# Batching
# ============================================================================

def max_handles_per_call() -> int:
    """Provider cap on handles per call (X_POSTS_MAX_HANDLES_PER_CALL, 1-10)."""
    return clamp_int(
        env_int(MAX_HANDLES_ENV, DEFAULT_MAX_HANDLES_PER_CALL), 1, MAX_BATCH_SIZE,
        DEFAULT_MAX_HANDLES_PER_CALL,
    )


def chunk_group(group: List[str], max_size: int) -> List[List[str]]:
    size = max(1, min(MAX_BATCH_SIZE, max_size))
    cleaned = [h.strip() for h in group if h and h.strip()]
    return [cleaned[i:i + size] for i in range(0, len(cleaned), size)]


def build_auto_groups(accounts: List[str], batch_size: int) -> List[List[str]]:
    return chunk_group(accounts, clamp_int(batch_size, 1, MAX_BATCH_SIZE, DEFAULT_BATCH_SIZE))


def _per_account_jobs(spec: QuerySpec) -> List[SearchJob]:
    jobs = []
    for query in compile_queries(spec):
        handle = extract_handle_from_query(query)
        jobs.append(SearchJob(query=query, handles=[handle] if handle else []))
    return jobs


def _grouped_jobs(groups: List[List[str]], spec: QuerySpec, cap: int) -> List[SearchJob]:
    jobs = []
    for group in groups:
        for chunk in chunk_group(group, cap):
            jobs.append(SearchJob(query=compile_batched_query(chunk, spec), handles=chunk))
    return jobs


def build_search_jobs(spec: QuerySpec, handle_cap: Optional[int] = None) -> List[SearchJob]:
    """Expand a query spec into the ordered list of provider calls."""
    if spec.queries:
        return [SearchJob(query=q) for q in spec.queries]

    cap = handle_cap if handle_cap is not None else max_handles_per_call()
    batching = spec.batching
    accounts = [a.strip() for a in spec.accounts if a and a.strip()]

    if batching and batching.mode == "manual" and batching.groups:
        return _grouped_jobs(batching.groups, spec, cap)

    if batching and batching.mode == "auto":
        if not accounts:
            return _per_account_jobs(spec)
        groups = batching.groups or build_auto_groups(
            accounts, batching.batch_size or DEFAULT_BATCH_SIZE
        )
        return _grouped_jobs(groups, spec, cap)

    return _per_account_jobs(spec)


# ============================================================================
# Time filters
# ============================================================================

def to_day(value: Optional[str]) -> Optional[str]:
    """Reduce an ISO timestamp or date to ``YYYY-MM-DD``; None when unusable."""
    if not value:
        return None
    if _DATE_ONLY_RE.match(value):
        return value
    if _ISO_PREFIX_RE.match(value):
        return value[:10]
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.strftime("%Y-%m-%d")


def with_since(query: str, since: Optional[str]) -> str:
    """
    Append a ``since:YYYY-MM-DD`` token to the query text.

    The provider's native date-range parameters return stale cached results,
    so the filter travels inside the query. ``until:`` is never added: it is
    exclusive and a same-day window would come back empty.
    """
    day = to_day(since)
    return f"{query} since:{day}" if day else query


def results_limit(per_account_limit: int, group_size: int, max_items: int) -> int:
    """Per-call result limit: per-account limit scaled by group size, capped by max_items."""
    return max(1, min(per_account_limit * group_size, max_items))


def spec_from_config(config: Dict[str, Any]) -> QuerySpec:
    """Build a QuerySpec from an untyped source config map."""
    def _bool(key_snake: str, key_camel: str) -> bool:
        value = config.get(key_snake, config.get(key_camel))
        return value if isinstance(value, bool) else True

    return QuerySpec(
        accounts=as_str_list(config.get("accounts")),
        keywords=as_str_list(config.get("keywords")),
        queries=as_str_list(config.get("queries")),
        exclude_replies=_bool("exclude_replies", "excludeReplies"),
        exclude_retweets=_bool("exclude_retweets", "excludeRetweets"),
        batching=BatchingConfig.from_value(config.get("batching")),
    )
