"""
Unit Tests for the Grok x_search Adapter

Tests the pure parts of the generative-search adapter:
- Query compilation and since: filters
- Account batching (off / manual / auto) and the per-call handle cap
- Output-token budgeting with headroom
- Layered response parsing (emit_results, JSON text, POST lines)
- Request body construction

Usage:
    cd backend && pytest tests/test_x_search.py -v
"""

import json
import sys
import os
from typing import Any, Dict, List

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from radar_ingest.exceptions import MissingCredentialsError
from radar_ingest.x_search import (
    GrokXSearchClient,
    GrokXSearchConfig,
    ParseStatus,
    XSearchRequest,
    build_search_jobs,
    compute_token_budget,
    parse_response,
    results_limit,
    spec_from_config,
)
from radar_ingest.x_search.parsing import extract_structured_error, extract_usage
from radar_ingest.x_search.queries import compile_queries, keyword_expression, to_day, with_since


# ============================================================================
# FIXTURES AND TEST DATA FACTORIES
# ============================================================================

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Provider knobs start from their defaults in every test."""
    for name in (
        "X_POSTS_MAX_HANDLES_PER_CALL",
        "X_POSTS_MAX_OUTPUT_TOKENS_PER_ACCOUNT",
        "X_POSTS_TOKEN_HEADROOM_PCT",
        "X_POSTS_TOKEN_HEADROOM_MIN",
        "X_POSTS_MAX_OUTPUT_TOKENS_HARD_CAP",
        "SIGNAL_GROK_API_KEY",
        "GROK_API_KEY",
        "SIGNAL_GROK_ENDPOINT",
        "SIGNAL_GROK_BASE_URL",
        "GROK_BASE_URL",
        "SIGNAL_GROK_MODEL",
        "SIGNAL_GROK_OUTPUT_FORMAT",
        "SIGNAL_GROK_MAX_OUTPUT_TOKENS",
        "SIGNAL_GROK_ENABLE_X_SEARCH_TOOL",
        "DEFAULT_TIER",
    ):
        monkeypatch.delenv(name, raising=False)


def make_config(**overrides) -> GrokXSearchConfig:
    """Factory function to create a provider config."""
    values = dict(
        api_key="xai-test",
        base_url="https://api.x.ai/v1",
        model="grok-4-1-fast-non-reasoning",
        tier="normal",
        default_max_output_tokens=2000,
        max_output_tokens_hard_cap=32000,
        enable_x_search_tool=True,
        output_format="emit_results",
    )
    values.update(overrides)
    return GrokXSearchConfig(**values)


def make_emit_response(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Responses API payload with an emit_results function call."""
    return {
        "model": "grok-4-1-fast-non-reasoning",
        "output": [
            {"type": "x_search_call", "status": "completed"},
            {
                "type": "function_call",
                "name": "emit_results",
                "arguments": json.dumps({"results": results}),
            },
        ],
        "usage": {"input_tokens": 1200, "output_tokens": 300},
    }


def make_text_response(text: str) -> Dict[str, Any]:
    """Responses API payload with a plain assistant message."""
    return {
        "output": [{
            "type": "message",
            "role": "assistant",
            "content": [{"type": "output_text", "text": text}],
        }],
    }


# ============================================================================
# QUERY COMPILATION TESTS
# ============================================================================

class TestQueryCompilation:
    """Tests for query text construction."""

    def test_accounts_with_keywords(self):
        spec = spec_from_config({"accounts": ["nasa"], "keywords": ["artemis", "moon base"]})

        assert compile_queries(spec) == [
            'from:nasa -filter:replies -filter:retweets ("artemis" OR "moon base")'
        ]

    def test_filters_can_be_disabled(self):
        spec = spec_from_config({"accounts": ["nasa"], "exclude_replies": False, "excludeRetweets": False})

        assert compile_queries(spec) == ["from:nasa"]

    def test_keywords_only(self):
        spec = spec_from_config({"keywords": ["fusion"]})

        assert compile_queries(spec) == ['"fusion"']

    def test_raw_queries_used_verbatim(self):
        spec = spec_from_config({"queries": ["grok lang:en"], "accounts": ["ignored"]})

        assert compile_queries(spec) == ["grok lang:en"]

    def test_keyword_quotes_escaped(self):
        assert keyword_expression(['say "hi"']) == '"say \\"hi\\""'

    def test_since_token_uses_day(self):
        """Time filters travel in the query text as since:YYYY-MM-DD."""
        assert with_since("from:nasa", "2026-03-01T18:30:00Z") == "from:nasa since:2026-03-01"
        assert with_since("from:nasa", None) == "from:nasa"
        assert to_day("2026-03-01") == "2026-03-01"
        assert to_day("garbage") is None


# ============================================================================
# BATCHING TESTS
# ============================================================================

class TestBatching:
    """Tests for build_search_jobs."""

    def test_off_mode_one_job_per_account(self):
        spec = spec_from_config({"accounts": ["a", "b", "c"]})

        jobs = build_search_jobs(spec)

        assert [job.handles for job in jobs] == [["a"], ["b"], ["c"]]
        assert all(job.group_size == 1 for job in jobs)

    def test_auto_mode_six_accounts_split_five_and_one(self):
        """Auto batching of 6 accounts with the default size gives 5 + 1."""
        accounts = [f"acct{i}" for i in range(6)]
        spec = spec_from_config({"accounts": accounts, "batching": {"mode": "auto"}})

        jobs = build_search_jobs(spec)

        assert [len(job.handles) for job in jobs] == [5, 1]
        assert jobs[0].query.startswith("(from:acct0 OR from:acct1 OR from:acct2")
        assert jobs[1].query.startswith("(from:acct5)")

    def test_oversized_group_rechunked_to_cap(self):
        """A batch size above the handle cap is chunked again before dispatch."""
        accounts = [f"h{i}" for i in range(10)]
        spec = spec_from_config({"accounts": accounts, "batching": {"mode": "auto", "batch_size": 10}})

        jobs = build_search_jobs(spec)

        assert [len(job.handles) for job in jobs] == [5, 5]

    def test_handle_cap_from_environment(self, monkeypatch):
        monkeypatch.setenv("X_POSTS_MAX_HANDLES_PER_CALL", "10")
        accounts = [f"h{i}" for i in range(10)]
        spec = spec_from_config({"accounts": accounts, "batching": {"mode": "auto", "batch_size": 10}})

        assert [len(job.handles) for job in build_search_jobs(spec)] == [10]

    def test_manual_groups(self):
        spec = spec_from_config({
            "accounts": ["a", "b", "c"],
            "keywords": ["ai"],
            "batching": {"mode": "manual", "groups": [["a", "b"], ["c"], []]},
        })

        jobs = build_search_jobs(spec)

        assert [job.handles for job in jobs] == [["a", "b"], ["c"]]
        assert jobs[0].query == '(from:a OR from:b) -filter:replies -filter:retweets ("ai")'

    def test_results_limit_scales_with_group(self):
        assert results_limit(20, 5, 500) == 100
        assert results_limit(20, 5, 30) == 30
        assert results_limit(20, 1, 0) == 1


# ============================================================================
# TOKEN BUDGET TESTS
# ============================================================================

class TestTokenBudget:
    """Tests for compute_token_budget."""

    def test_single_account_uses_provider_default(self):
        budget = compute_token_budget(1)

        assert budget.mode == "provider_default"
        assert budget.max_output_tokens is None

    def test_batched_default_with_min_headroom(self):
        """base = 400 * 2 = 800; 25% is 200, so the 256 minimum applies."""
        budget = compute_token_budget(2)

        assert budget.mode == "batched_default_per_account"
        assert budget.base == 800
        assert budget.headroom == 256
        assert budget.max_output_tokens == 1056

    def test_batched_default_with_pct_headroom(self):
        budget = compute_token_budget(5)

        assert budget.base == 2000
        assert budget.headroom == 500
        assert budget.max_output_tokens == 2500

    def test_per_account_override(self):
        budget = compute_token_budget(1, per_account_override=1000)

        assert budget.mode == "per_account_override"
        assert budget.max_output_tokens == 1000 + 256

    def test_clamped_to_hard_cap(self, monkeypatch):
        monkeypatch.setenv("X_POSTS_MAX_OUTPUT_TOKENS_HARD_CAP", "3000")

        budget = compute_token_budget(10, per_account_override=1000)

        assert budget.max_output_tokens == 3000
        assert budget.clamped is True
        assert budget.as_meta()["max_output_tokens_clamped"] is True


# ============================================================================
# RESPONSE PARSING TESTS
# ============================================================================

class TestParseResponse:
    """Tests for the layered response parser."""

    def test_emit_results_function_call(self):
        response = make_emit_response([{"id": "1", "text": "hello"}])

        outcome = parse_response(response)

        assert outcome.status == ParseStatus.PARSED
        assert outcome.strategy == "emit_results"
        assert outcome.results == [{"id": "1", "text": "hello"}]

    def test_emit_results_empty(self):
        """Zero matches is distinct from unparsable output."""
        outcome = parse_response(make_emit_response([]))

        assert outcome.status == ParseStatus.EMPTY
        assert outcome.as_meta()["results_count"] == 0

    def test_fenced_json_text(self):
        text = 'Here you go:\n```json\n{"results": [{"id": "9", "text": "fenced"}]}\n```'

        outcome = parse_response(make_text_response(text))

        assert outcome.status == ParseStatus.PARSED
        assert outcome.strategy == "json_text"
        assert outcome.results[0]["id"] == "9"

    def test_bare_json_array(self):
        outcome = parse_response(make_text_response('[{"id": "3", "text": "arr"}]'))

        assert outcome.status == ParseStatus.PARSED
        assert outcome.results[0]["text"] == "arr"

    def test_post_lines(self):
        text = (
            "POST\t2026-03-01T10:00:00Z\t@nasa\t1893456789012345678\t"
            "https://x.com/nasa/status/1893456789012345678\tLiftoff!\n"
            "POST\tbroken line\n"
        )

        outcome = parse_response(make_text_response(text))

        assert outcome.status == ParseStatus.PARSED
        assert outcome.strategy == "post_lines"
        assert outcome.line_stats == {"total": 2, "valid": 1, "invalid": 1}
        assert outcome.results[0]["user_handle"] == "nasa"
        assert outcome.results[0]["text"] == "Liftoff!"

    def test_post_line_text_with_brackets_is_not_json(self):
        """Brackets or braces inside post text leave the line to the POST parser."""
        for post_text, json_like in (
            ("arrays [] are fun", "[]"),
            ('config {"debug": true} shipped', '{"debug": true}'),
        ):
            text = (
                "POST\t2026-01-01T00:00:00Z\t@alice\t1893456789012345678\t"
                f"https://x.com/alice/status/1893456789012345678\t{post_text}"
            )

            outcome = parse_response(make_text_response(text))

            assert outcome.status == ParseStatus.PARSED
            assert outcome.strategy == "post_lines"
            assert len(outcome.results) == 1
            assert json_like in outcome.results[0]["text"]

    def test_old_five_field_line_is_invalid(self):
        """The retired five-field line format no longer parses."""
        text = "POST\t2026-03-01\t@nasa\t1893456789012345678\tLiftoff!"

        outcome = parse_response(make_text_response(text))

        assert outcome.status == ParseStatus.UNPARSABLE
        assert outcome.reason == "no_valid_post_lines"

    def test_no_results_marker(self):
        outcome = parse_response(make_text_response("NO_RESULTS"))

        assert outcome.status == ParseStatus.EMPTY

    def test_prose_is_unparsable_with_snippets(self):
        """Unparsable output keeps head/tail snippets and the length."""
        text = "I could not find any posts matching that query."

        outcome = parse_response(make_text_response(text))
        meta = outcome.as_meta()

        assert outcome.status == ParseStatus.UNPARSABLE
        assert meta["assistant_parse_error"] is True
        assert meta["assistant_text_head"] == text
        assert meta["assistant_text_length"] == len(text)

    def test_empty_response(self):
        outcome = parse_response({})

        assert outcome.status == ParseStatus.UNPARSABLE
        assert outcome.reason == "no_output"

    def test_usage_and_structured_error(self):
        assert extract_usage({"usage": {"prompt_tokens": 10, "completion_tokens": 5}}) == (10, 5)
        assert extract_usage({"usage": {"input_tokens": 10}}) is None
        assert extract_structured_error('{"error": {"code": "rate_limited", "message": "slow"}}') == {
            "code": "rate_limited",
            "message": "slow",
        }


# ============================================================================
# CLIENT CONFIG AND REQUEST TESTS
# ============================================================================

class TestGrokXSearchConfig:
    """Tests for GrokXSearchConfig.from_env."""

    def test_missing_key_raises(self):
        with pytest.raises(MissingCredentialsError) as exc_info:
            GrokXSearchConfig.from_env()

        assert exc_info.value.reason == "SIGNAL_GROK_API_KEY not configured"

    def test_legacy_key_and_defaults(self, monkeypatch):
        monkeypatch.setenv("GROK_API_KEY", "legacy")

        config = GrokXSearchConfig.from_env()

        assert config.api_key == "legacy"
        assert config.base_url == "https://api.x.ai/v1"
        assert config.endpoint == "https://api.x.ai/v1/responses"
        assert config.default_max_output_tokens == 2000

    def test_endpoint_override_and_high_tier(self, monkeypatch):
        monkeypatch.setenv("SIGNAL_GROK_API_KEY", "k")
        monkeypatch.setenv("SIGNAL_GROK_ENDPOINT", "https://proxy.test/v1/chat/completions")
        monkeypatch.setenv("DEFAULT_TIER", "high")

        config = GrokXSearchConfig.from_env()

        assert config.base_url == "https://proxy.test/v1"
        assert config.default_max_output_tokens == 4000
        assert config.default_max_text_chars == 1000


class TestBuildRequestBody:
    """Tests for GrokXSearchClient.build_request_body."""

    def test_batched_request(self):
        client = GrokXSearchClient(config=make_config(), client=object())
        request = XSearchRequest(
            query="(from:a OR from:b)",
            limit=40,
            from_date="2026-03-01T00:00:00Z",
            allowed_handles=["a", "b"],
            max_output_tokens=1056,
        )

        body = client.build_request_body(request)

        assert body["model"] == "grok-4-1-fast-non-reasoning"
        assert body["max_output_tokens"] == 1056
        assert body["temperature"] == 0
        assert body["tool_choice"] == "required"
        assert body["tools"][0] == {"type": "x_search", "allowed_x_handles": ["a", "b"]}
        assert body["tools"][1]["name"] == "emit_results"
        assert '"(from:a OR from:b) since:2026-03-01"' in body["input"][1]["content"]
        assert "covers 2 accounts" in body["input"][0]["content"]

    def test_lines_format_has_no_function_tool(self):
        client = GrokXSearchClient(config=make_config(output_format="lines"), client=object())

        body = client.build_request_body(XSearchRequest(query="q", limit=5))

        assert body["tools"] == [{"type": "x_search"}]
        assert "POST<TAB>" in body["input"][0]["content"]
        assert body["max_output_tokens"] == 2000

    def test_requested_tokens_capped(self):
        client = GrokXSearchClient(config=make_config(max_output_tokens_hard_cap=3000), client=object())

        assert client.resolve_max_output_tokens(50_000) == 3000
        assert client.resolve_max_output_tokens(None) == 2000
