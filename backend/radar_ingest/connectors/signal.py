"""
Signal connector: one digest item per x_search query.

Unlike ``x_posts`` the provider answer is not split into posts; each query
response becomes a single ``signal_query_response_v1`` raw item whose draft
lists a handful of post texts and the URLs they reference. Items are keyed
by query and window day, so a re-run over the same day updates in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from radar_ingest.connectors.base import sha256_hex
from radar_ingest.connectors.provider_search import ProviderSearchConnector, SearchCallPlan
from radar_ingest.cursor import as_number, as_str, pick
from radar_ingest.html_text import clamp_text
from radar_ingest.models import ContentItemDraft, FetchParams
from radar_ingest.x_search import (
    QuerySpec,
    SearchJob,
    XSearchRequest,
    XSearchResult,
    compute_token_budget,
    spec_from_config,
)
from radar_ingest.x_search.queries import compile_queries, extract_handle_from_query

logger = logging.getLogger(__name__)

RAW_KIND = "signal_query_response_v1"
PROVIDER_NAME = "x_search"
VENDOR = "grok"
MAX_BULLETS = 5
MAX_URLS = 20
MAX_BODY_CHARS = 10_000


@dataclass
class SignalSourceConfig:
    query_spec: QuerySpec = field(default_factory=QuerySpec)
    max_results_per_query: int = 20

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SignalSourceConfig":
        max_results = as_number(pick(config, "max_results_per_query", "maxResultsPerQuery"))
        return cls(
            query_spec=spec_from_config(config),
            max_results_per_query=int(max_results) if max_results and max_results > 0 else 20,
        )


def per_query_limit(max_results_per_query: int, max_items: int, query_count: int) -> int:
    """Split max_items across queries, never exceeding the per-query maximum."""
    share = max(1, max_items // max(1, query_count))
    return max(1, min(max_results_per_query, share))


def _result_urls(results: List[Dict[str, Any]]) -> List[str]:
    urls: List[str] = []
    for result in results:
        candidates = result.get("urls") if isinstance(result.get("urls"), list) else []
        candidates = list(candidates) + [result.get("url")]
        for candidate in candidates:
            url = as_str(candidate)
            if not url or not url.startswith(("http://", "https://")) or url in urls:
                continue
            urls.append(url)
            if len(urls) >= MAX_URLS:
                return urls
    return urls


class SignalConnector(ProviderSearchConnector):
    """Per-query signal digests from the x_search provider."""

    source_type = "signal"
    purpose = "signal_search"
    credits_env = ("SIGNAL_CREDITS_PER_CALL",)

    def parse_config(self, config: Dict[str, Any]) -> SignalSourceConfig:
        return SignalSourceConfig.from_config(config)

    def plan_calls(self, config: SignalSourceConfig, params: FetchParams) -> List[SearchCallPlan]:
        queries = compile_queries(config.query_spec)
        limit = per_query_limit(config.max_results_per_query, params.limits.max_items, len(queries))
        plans = []
        for query in queries:
            handle = extract_handle_from_query(query)
            job = SearchJob(query=query, handles=[handle] if handle else [])
            plans.append(SearchCallPlan(
                job=job, limit=limit, token_budget=compute_token_budget(job.group_size)
            ))
        return plans

    def build_request(
        self, plan: SearchCallPlan, params: FetchParams, since_time: Optional[str]
    ) -> XSearchRequest:
        return XSearchRequest(
            query=plan.job.query,
            limit=plan.limit,
            since_time=since_time,
            max_output_tokens=plan.token_budget.max_output_tokens,
        )

    def result_meta(self, config: SignalSourceConfig) -> Dict[str, Any]:
        return {"provider": PROVIDER_NAME, "vendor": VENDOR}

    def collect_items(
        self,
        result: XSearchResult,
        plan: SearchCallPlan,
        config: SignalSourceConfig,
        params: FetchParams,
        since_time: Optional[str],
    ) -> List[Dict[str, Any]]:
        return [{
            "kind": RAW_KIND,
            "provider": PROVIDER_NAME,
            "vendor": VENDOR,
            "query": plan.job.query,
            "limit": plan.limit,
            "since_time": since_time,
            "window_start": params.window_start,
            "window_end": params.window_end,
            "parse_status": result.outcome.status.value,
            "results": result.outcome.results,
        }]

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        query = as_str(raw.get("query")) or "signal"
        provider = as_str(raw.get("provider")) or PROVIDER_NAME
        vendor = as_str(raw.get("vendor")) or VENDOR
        window_start = as_str(raw.get("window_start")) or params.window_start
        results = [r for r in raw.get("results") or [] if isinstance(r, dict)]

        bullets = []
        for result in results:
            text = as_str(result.get("text"))
            if text:
                bullets.append(f"- {text.replace(chr(10), ' ').strip()}")
            if len(bullets) >= MAX_BULLETS:
                break
        body_text = clamp_text("\n".join(bullets), MAX_BODY_CHARS) if bullets else None
        urls = _result_urls(results)

        return ContentItemDraft(
            title=f"Signal: {query}",
            body_text=body_text,
            canonical_url=None,
            source_type=self.source_type,
            external_id=sha256_hex(provider, vendor, query, window_start[:10]),
            published_at=None,
            author=None,
            metadata={
                "provider": provider,
                "vendor": vendor,
                "query": query,
                "window_start": window_start,
                "window_end": as_str(raw.get("window_end")) or params.window_end,
                "parse_status": as_str(raw.get("parse_status")),
                "result_count": len(results),
                "primary_url": urls[0] if urls else None,
                "extracted_urls": urls,
            },
            raw=raw,
        )
