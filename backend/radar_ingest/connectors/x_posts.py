"""
X posts connector: canonical post ingestion through Grok x_search.

Config maps accounts/keywords/queries onto search jobs (see
``radar_ingest.x_search.queries``); each returned post becomes one
``x_post_v1`` raw item. Posts are normalized to stable status URLs and
IDs; a missing timestamp is recovered from the snowflake status ID when
the decoded time is plausible.

Usage:
    from radar_ingest.connectors.x_posts import XPostsConnector

    result = await XPostsConnector().fetch(params, budget=RunBudget(max_calls=20))
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from radar_ingest.connectors.base import sha256_hex
from radar_ingest.connectors.provider_search import ProviderSearchConnector, SearchCallPlan
from radar_ingest.cursor import as_dict, as_number, as_str, day_bucket, parse_iso_datetime, pick
from radar_ingest.html_text import clamp_text
from radar_ingest.models import ContentItemDraft, FetchParams
from radar_ingest.x_search import (
    QuerySpec,
    XSearchRequest,
    XSearchResult,
    build_search_jobs,
    compute_token_budget,
    results_limit,
    spec_from_config,
)

logger = logging.getLogger(__name__)

RAW_KIND = "x_post_v1"
MAX_POSTS_PER_CALL = 200
MAX_EXTRACTED_URLS = 100
MAX_BODY_CHARS = 10_000
PROMPT_PROFILE_CHARS = {"light": 500, "heavy": 1500}

# Twitter snowflake epoch (2010-11-04T01:42:54.657Z) in milliseconds
SNOWFLAKE_EPOCH_MS = 1288834974657
MAX_FUTURE_SKEW = timedelta(days=1)

_STATUS_URL_RE = re.compile(
    r"//(?:www\.)?(?:x\.com|twitter\.com)/([A-Za-z0-9_]{1,30})/status/(\d+)"
)
_URL_IN_TEXT_RE = re.compile(r"https?://[^\s\"'<>]+")
_TRAILING_PUNCT_RE = re.compile(r"[)\].,;!?]+$")
_DIGITS_RE = re.compile(r"^\d+$")
_HANDLE_RE = re.compile(r"^[A-Za-z0-9_]{1,30}$")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# ============================================================================
# Post field recovery
# ============================================================================

def parse_status_url(url: Optional[str]):
    """(handle, status_id) from an x.com / twitter.com status URL."""
    if not url:
        return None, None
    match = _STATUS_URL_RE.search(url)
    if not match:
        return None, None
    return match.group(1), match.group(2)


def extract_urls(text: str, limit: int = MAX_EXTRACTED_URLS) -> List[str]:
    out: List[str] = []
    for raw in _URL_IN_TEXT_RE.findall(text):
        cleaned = _TRAILING_PUNCT_RE.sub("", raw)
        if not cleaned.startswith(("http://", "https://")) or cleaned in out:
            continue
        out.append(cleaned)
        if len(out) >= limit:
            break
    return out


def snowflake_to_datetime(status_id: Any, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Decode the creation time embedded in a snowflake status ID.

    The top bits hold milliseconds since the platform epoch. A decode that
    is not after the epoch, or lands more than a day in the future, means
    the value was not a real snowflake and None is returned.
    """
    if isinstance(status_id, bool):
        return None
    if isinstance(status_id, str):
        if not _DIGITS_RE.match(status_id):
            return None
        status_id = int(status_id)
    if not isinstance(status_id, int) or status_id <= 0:
        return None

    ms = (status_id >> 22) + SNOWFLAKE_EPOCH_MS
    if ms <= SNOWFLAKE_EPOCH_MS:
        return None
    try:
        decoded = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    now = now or datetime.now(timezone.utc)
    if decoded > now + MAX_FUTURE_SKEW:
        return None
    return decoded


def explicit_timestamp(value: Any) -> Optional[datetime]:
    """A full timestamp only; a bare day is not a genuine publish time."""
    text = as_str(value)
    if not text or _DATE_ONLY_RE.match(text):
        return None
    return parse_iso_datetime(text)


def _clean_handle(value: Any) -> Optional[str]:
    text = as_str(value)
    if not text:
        return None
    text = text.lstrip("@")
    return text if _HANDLE_RE.match(text) else None


def _post_date_day(value: Any) -> Optional[str]:
    text = as_str(value)
    if text and len(text) >= 10 and re.match(r"^\d{4}-\d{2}-\d{2}", text):
        return text[:10]
    return None


# ============================================================================
# Config
# ============================================================================

@dataclass
class XPostsSourceConfig:
    vendor: str = "grok"
    query_spec: QuerySpec = field(default_factory=QuerySpec)
    max_results_per_query: int = 20
    max_output_tokens_per_account: Optional[int] = None
    prompt_profile: Optional[str] = None

    @property
    def batch_mode(self) -> str:
        return self.query_spec.batching.mode if self.query_spec.batching else "off"

    @property
    def max_text_chars(self) -> Optional[int]:
        return PROMPT_PROFILE_CHARS.get(self.prompt_profile or "")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "XPostsSourceConfig":
        max_results = as_number(pick(config, "max_results_per_query", "maxResultsPerQuery"))
        per_account = as_number(
            pick(config, "max_output_tokens_per_account", "maxOutputTokensPerAccount")
        )
        profile = as_str(pick(config, "prompt_profile", "promptProfile"))
        return cls(
            vendor=as_str(config.get("vendor")) or "grok",
            query_spec=spec_from_config(config),
            max_results_per_query=int(max_results) if max_results and max_results > 0 else 20,
            max_output_tokens_per_account=(
                int(per_account) if per_account and per_account > 0 else None
            ),
            prompt_profile=profile if profile in PROMPT_PROFILE_CHARS else None,
        )


# ============================================================================
# Connector
# ============================================================================

class XPostsConnector(ProviderSearchConnector):
    """Posts from followed X accounts and keyword searches."""

    source_type = "x_posts"
    purpose = "x_posts_fetch"
    credits_env = ("X_POSTS_CREDITS_PER_CALL", "SIGNAL_CREDITS_PER_CALL")
    # a rejected query shape is shared by every account batch
    abort_status_codes = (401, 403, 422)

    def parse_config(self, config: Dict[str, Any]) -> XPostsSourceConfig:
        return XPostsSourceConfig.from_config(config)

    def plan_calls(self, config: XPostsSourceConfig, params: FetchParams) -> List[SearchCallPlan]:
        plans = []
        for job in build_search_jobs(config.query_spec):
            plans.append(SearchCallPlan(
                job=job,
                limit=results_limit(
                    config.max_results_per_query, job.group_size, params.limits.max_items
                ),
                token_budget=compute_token_budget(
                    job.group_size, config.max_output_tokens_per_account
                ),
                max_text_chars=config.max_text_chars,
            ))
        return plans

    def build_request(
        self, plan: SearchCallPlan, params: FetchParams, since_time: Optional[str]
    ) -> XSearchRequest:
        return XSearchRequest(
            query=plan.job.query,
            limit=plan.limit,
            since_time=since_time,
            from_date=since_time or params.window_start,
            allowed_handles=list(plan.job.handles),
            max_output_tokens=plan.token_budget.max_output_tokens,
            max_text_chars=plan.max_text_chars,
        )

    def call_meta(self, plan: SearchCallPlan, config: XPostsSourceConfig) -> Dict[str, Any]:
        return {"vendor": config.vendor, "batch_mode": config.batch_mode}

    def result_meta(self, config: XPostsSourceConfig) -> Dict[str, Any]:
        return {"vendor": config.vendor}

    def collect_items(
        self,
        result: XSearchResult,
        plan: SearchCallPlan,
        config: XPostsSourceConfig,
        params: FetchParams,
        since_time: Optional[str],
    ) -> List[Dict[str, Any]]:
        bucket = day_bucket(params.window_end) or params.window_end[:10]
        items = []
        for entry in result.outcome.results[:MAX_POSTS_PER_CALL]:
            item = {
                "kind": RAW_KIND,
                "vendor": config.vendor,
                "query": plan.job.query,
                "day_bucket": bucket,
                "window_start": params.window_start,
                "window_end": params.window_end,
                "id": as_str(entry.get("id")) or _stringify_id(entry.get("id")),
                "date": as_str(entry.get("date")),
                "url": as_str(entry.get("url")),
                "text": as_str(entry.get("text")),
                "user_handle": as_str(entry.get("user_handle")),
                "user_display_name": as_str(entry.get("user_display_name")),
            }
            metrics = entry.get("metrics")
            if isinstance(metrics, dict):
                item["metrics"] = metrics
            items.append(item)
        return items

    def normalize(
        self, raw: Dict[str, Any], params: FetchParams, now: Optional[datetime] = None
    ) -> ContentItemDraft:
        query = as_str(raw.get("query")) or "x_posts"
        vendor = as_str(raw.get("vendor")) or "grok"
        bucket = as_str(raw.get("day_bucket")) or params.window_end[:10]

        url = as_str(raw.get("url"))
        http_url = url if url and url.startswith(("http://", "https://")) else None
        text = as_str(raw.get("text"))
        body_text = clamp_text(text.replace("\n", " ").strip(), MAX_BODY_CHARS) if text else None

        url_handle, url_status_id = parse_status_url(http_url)
        text_handle, text_status_id = (None, None)
        if body_text and not url_status_id:
            for candidate in extract_urls(body_text):
                text_handle, text_status_id = parse_status_url(candidate)
                if text_status_id:
                    break

        raw_id = as_str(raw.get("id"))
        status_id = (
            (raw_id if raw_id and _DIGITS_RE.match(raw_id) else None)
            or url_status_id
            or text_status_id
        )
        handle = _clean_handle(raw.get("user_handle")) or url_handle or text_handle

        if status_id and handle:
            canonical_url = f"https://x.com/{handle}/status/{status_id}"
        elif http_url and url_status_id:
            canonical_url = f"https://x.com/{url_handle}/status/{url_status_id}"
        else:
            canonical_url = http_url

        external_id = status_id or sha256_hex(vendor, query, bucket, canonical_url or body_text or "")

        published_at = explicit_timestamp(raw.get("date"))
        if published_at is None and status_id:
            published_at = snowflake_to_datetime(status_id, now=now)

        extracted = [
            u for u in (extract_urls(body_text) if body_text else [])
            if u != canonical_url and u != http_url
        ]

        metadata: Dict[str, Any] = {
            "vendor": vendor,
            "query": query,
            "day_bucket": bucket,
            "window_start": as_str(raw.get("window_start")) or params.window_start,
            "window_end": as_str(raw.get("window_end")) or params.window_end,
            "post_url": canonical_url or url,
            "post_date": _post_date_day(raw.get("date")),
            "status_id": status_id,
            "extracted_urls": extracted,
            "primary_url": extracted[0] if extracted else canonical_url,
            "user_display_name": as_str(raw.get("user_display_name")),
        }
        metrics = as_dict(raw.get("metrics"))
        if metrics:
            metadata["metrics"] = metrics

        return ContentItemDraft(
            title=None,
            body_text=body_text,
            canonical_url=canonical_url,
            source_type=self.source_type,
            external_id=external_id,
            published_at=published_at,
            author=f"@{handle}" if handle else None,
            metadata=metadata,
            raw={
                "kind": RAW_KIND,
                "query": query,
                "vendor": vendor,
                "day_bucket": bucket,
                "id": raw_id,
                "date": as_str(raw.get("date")),
                "url": url,
            },
        )


def _stringify_id(value: Any) -> Optional[str]:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
