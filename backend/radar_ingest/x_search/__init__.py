"""
Generative-search adapter for X posts (Grok x_search).

Supports:
- Query compilation and account batching (queries)
- Output-token budgeting with headroom (token_budget)
- Provider configuration from the environment (config)
- Layered response parsing (parsing)
- The metered call itself (client)
"""

from radar_ingest.x_search.client import GrokXSearchClient, XSearchRequest, XSearchResult
from radar_ingest.x_search.config import GrokXSearchConfig
from radar_ingest.x_search.parsing import ParseOutcome, ParseStatus, parse_response
from radar_ingest.x_search.queries import (
    QuerySpec,
    SearchJob,
    build_search_jobs,
    results_limit,
    spec_from_config,
)
from radar_ingest.x_search.token_budget import TokenBudget, compute_token_budget

__all__ = [
    "GrokXSearchClient",
    "GrokXSearchConfig",
    "ParseOutcome",
    "ParseStatus",
    "QuerySpec",
    "SearchJob",
    "TokenBudget",
    "XSearchRequest",
    "XSearchResult",
    "build_search_jobs",
    "compute_token_budget",
    "parse_response",
    "results_limit",
    "spec_from_config",
]
