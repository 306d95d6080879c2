"""
Grok x_search adapter.

One ``search`` call is one metered provider request through the OpenAI
SDK's Responses API (xAI is wire-compatible). The SDK's own retries are
disabled; ``with_retry`` owns backoff so 429/5xx handling stays identical
across connectors.

Usage:
    from radar_ingest.x_search import GrokXSearchClient, XSearchRequest

    client = GrokXSearchClient()        # raises MissingCredentialsError without a key
    result = await client.search(XSearchRequest(query="from:xai", limit=20))
    print(result.outcome.status, len(result.outcome.results))
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from radar_ingest.exceptions import UpstreamHTTPError
from radar_ingest.retry import with_retry
from radar_ingest.x_search.config import GrokXSearchConfig
from radar_ingest.x_search.parsing import (
    EMIT_RESULTS_FUNCTION,
    ParseOutcome,
    extract_structured_error,
    extract_usage,
    parse_response,
    ResponseView,
)
from radar_ingest.x_search.queries import with_since

logger = logging.getLogger(__name__)

RESPONSE_SNIPPET_CHARS = 500


@dataclass
class XSearchRequest:
    query: str
    limit: int
    since_time: Optional[str] = None
    from_date: Optional[str] = None
    allowed_handles: List[str] = field(default_factory=list)
    max_output_tokens: Optional[int] = None
    max_text_chars: Optional[int] = None


@dataclass
class XSearchResult:
    response: Dict[str, Any]
    endpoint: str
    model: str
    query_sent: str
    max_output_tokens: int
    outcome: ParseOutcome
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    structured_error: Optional[Dict[str, Optional[str]]] = None

    @property
    def tokens_reported(self) -> bool:
        return self.input_tokens is not None and self.output_tokens is not None


# ============================================================================
# Request construction
# ============================================================================

EMIT_RESULTS_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "required": ["results"],
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["id", "date", "url", "text", "user_handle", "user_display_name"],
                "properties": {
                    "id": {"type": "string"},
                    "date": {"type": ["string", "null"]},
                    "url": {"type": ["string", "null"]},
                    "text": {"type": "string"},
                    "user_handle": {"type": ["string", "null"]},
                    "user_display_name": {"type": ["string", "null"]},
                    "metrics": {
                        "type": "object",
                        "additionalProperties": False,
                        "required": [
                            "reply_count", "repost_count", "like_count",
                            "quote_count", "view_count",
                        ],
                        "properties": {
                            "reply_count": {"type": "number"},
                            "repost_count": {"type": "number"},
                            "like_count": {"type": "number"},
                            "quote_count": {"type": "number"},
                            "view_count": {"type": "number"},
                        },
                    },
                },
            },
        },
    },
}

EMIT_RESULTS_TOOL = {
    "type": "function",
    "name": EMIT_RESULTS_FUNCTION,
    "description": "Return structured X post results",
    "parameters": EMIT_RESULTS_SCHEMA,
}

_RESULT_FIELDS = """Each result MUST include:
- id (string, digits): the status ID
- date (string|null): ISO 8601 UTC timestamp (e.g. 2026-01-08T05:23:00Z); YYYY-MM-DD if only the day is known
- url (string|null): https://x.com/<handle>/status/<id>; construct it from id + handle if the tool omits it
- text (string): post text, <= {max_chars} chars, no newlines (truncate with "..." if needed)
- user_handle (string|null): handle, with or without "@"
- user_display_name (string|null): display name
- metrics (optional): only if the tool provides counts: reply_count, repost_count, like_count, quote_count, view_count"""

_TOOL_OUTPUT = """Use the x_search tool to fetch real posts.
Then call the emit_results function with a JSON object containing a "results" array.
Do NOT output any normal assistant message or prose.
If the x_search tool is unavailable or returns no posts, call emit_results with {{"results": []}}.
Do NOT fabricate. If a field is unavailable from the tool results, use null.

""" + _RESULT_FIELDS

_LINE_OUTPUT = """Use the x_search tool to fetch real posts.
Reply with one line per post and nothing else, fields separated by a single TAB:
POST<TAB><date><TAB>@<handle><TAB><id digits><TAB><url><TAB><text>
date is ISO 8601 UTC (YYYY-MM-DD if only the day is known); text is <= {max_chars} chars with no tabs or newlines.
If there are no posts, reply with the single line NO_RESULTS.
Do NOT fabricate."""

_PROMPT_FOOTER = """

Ordering: newest first. Return at most the requested limit.{batching_hint}

Light filtering (cost + quality):
- Exclude only obvious low-information noise (emoji-only, single-word reactions, or empty text).
- Do NOT judge relevance here; downstream triage handles it."""


def build_system_prompt(output_format: str, max_text_chars: int, group_size: int, limit: int) -> str:
    batching_hint = ""
    if group_size > 1:
        per_account = limit // group_size
        batching_hint = (
            f"\nThis query covers {group_size} accounts. Aim for ~{per_account} results "
            f"per account, distributed fairly across all accounts."
        )
    body = _LINE_OUTPUT if output_format == "lines" else _TOOL_OUTPUT
    return body.format(max_chars=max_text_chars) + _PROMPT_FOOTER.format(
        batching_hint=batching_hint
    )


def build_tools(config: GrokXSearchConfig, allowed_handles: List[str]) -> List[Dict[str, Any]]:
    tools: List[Dict[str, Any]] = []
    if config.enable_x_search_tool:
        x_search: Dict[str, Any] = {"type": "x_search"}
        if allowed_handles:
            x_search["allowed_x_handles"] = list(allowed_handles)
        tools.append(x_search)
    if config.output_format == "emit_results":
        tools.append(EMIT_RESULTS_TOOL)
    return tools


def query_text(request: XSearchRequest) -> str:
    """The query as sent, with the since: token appended."""
    return with_since(request.query, request.from_date or request.since_time)


def _response_snippet(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    return text[:RESPONSE_SNIPPET_CHARS]


# ============================================================================
# Client
# ============================================================================

class GrokXSearchClient:
    """Executes x_search calls against the configured Grok endpoint."""

    def __init__(
        self,
        config: Optional[GrokXSearchConfig] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config or GrokXSearchConfig.from_env()
        self._client = client or AsyncOpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url,
            max_retries=0,
        )

    def resolve_max_output_tokens(self, requested: Optional[int]) -> int:
        if requested:
            return min(requested, self.config.max_output_tokens_hard_cap)
        return self.config.default_max_output_tokens

    def build_request_body(self, request: XSearchRequest) -> Dict[str, Any]:
        max_text_chars = request.max_text_chars or self.config.default_max_text_chars
        query = query_text(request)
        group_size = max(1, len(request.allowed_handles))
        tools = build_tools(self.config, request.allowed_handles)
        body: Dict[str, Any] = {
            "model": self.config.model,
            "input": [
                {
                    "role": "system",
                    "content": build_system_prompt(
                        self.config.output_format, max_text_chars, group_size, request.limit
                    ),
                },
                {
                    "role": "user",
                    "content": (
                        f"Query: {json.dumps(query)}\n"
                        f"Mode: Latest\n"
                        f"Return up to {request.limit} results."
                    ),
                },
            ],
            "temperature": 0,
            "max_output_tokens": self.resolve_max_output_tokens(request.max_output_tokens),
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "required"
        return body

    @with_retry()
    async def _create_response(self, body: Dict[str, Any]) -> Dict[str, Any]:
        raw = await self._client.responses.with_raw_response.create(**body)
        text = raw.http_response.text
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Provider returned a non-JSON body")
            return {"output_text": text}
        return payload if isinstance(payload, dict) else {"output": payload}

    async def search(self, request: XSearchRequest) -> XSearchResult:
        """
        Run one x_search call and parse whatever encoding the provider used.

        Raises UpstreamHTTPError for a non-2xx answer once retries are spent;
        connection failures propagate as the SDK's own exceptions.
        """
        body = self.build_request_body(request)
        query_sent = query_text(request)
        logger.debug(f"x_search call: model={self.config.model} query={query_sent!r}")

        try:
            response = await self._create_response(body)
        except openai.APIStatusError as e:
            request_id = getattr(e, "request_id", None)
            raise UpstreamHTTPError(
                f"Grok x_search error ({e.status_code}): {str(e)[:300]}",
                status_code=e.status_code,
                url=self.config.endpoint,
                body_snippet=_response_snippet(e.body),
                request_id=request_id,
            ) from e

        outcome = parse_response(response)
        usage = extract_usage(response)
        view = ResponseView.from_response(response)

        return XSearchResult(
            response=response,
            endpoint=self.config.endpoint,
            model=response.get("model") or self.config.model,
            query_sent=query_sent,
            max_output_tokens=body["max_output_tokens"],
            outcome=outcome,
            input_tokens=usage[0] if usage else None,
            output_tokens=usage[1] if usage else None,
            structured_error=extract_structured_error(view.assistant_text),
        )
