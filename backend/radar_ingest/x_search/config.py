"""
Grok x_search provider configuration.

Environment Variables:
- SIGNAL_GROK_API_KEY / GROK_API_KEY: API key (required)
- SIGNAL_GROK_ENDPOINT: full Responses endpoint, overrides the base URL
- SIGNAL_GROK_BASE_URL / GROK_BASE_URL: API base (default https://api.x.ai/v1)
- SIGNAL_GROK_MODEL: model name (default grok-4-1-fast-non-reasoning)
- SIGNAL_GROK_MAX_OUTPUT_TOKENS: default output budget (2000, or 4000 on the high tier)
- SIGNAL_GROK_ENABLE_X_SEARCH_TOOL: "0" disables the x_search tool
- SIGNAL_GROK_OUTPUT_FORMAT: "emit_results" (default) or "lines"
- DEFAULT_TIER: low | normal | high
"""

import logging
from dataclasses import dataclass

from radar_ingest.exceptions import MissingCredentialsError
from radar_ingest.settings import default_tier, env_flag, env_int, first_env
from radar_ingest.x_search.token_budget import hard_cap

logger = logging.getLogger(__name__)

API_KEY_ENV = ("SIGNAL_GROK_API_KEY", "GROK_API_KEY")
BASE_URL_ENV = ("SIGNAL_GROK_BASE_URL", "GROK_BASE_URL")
DEFAULT_BASE_URL = "https://api.x.ai/v1"
DEFAULT_MODEL = "grok-4-1-fast-non-reasoning"
OUTPUT_FORMATS = ("emit_results", "lines")


def with_v1(base_url: str) -> str:
    trimmed = base_url.rstrip("/")
    return trimmed if trimmed.endswith("/v1") else f"{trimmed}/v1"


def base_url_from_endpoint(endpoint: str) -> str:
    """
    Derive the SDK base URL from a full endpoint.

    A chat-completions endpoint is swapped for the Responses API base.
    """
    trimmed = endpoint.rstrip("/")
    for suffix in ("/responses", "/chat/completions"):
        if trimmed.endswith(suffix):
            return trimmed[: -len(suffix)]
    return trimmed


@dataclass
class GrokXSearchConfig:
    """Resolved provider settings for one fetch."""
    api_key: str
    base_url: str
    model: str
    tier: str
    default_max_output_tokens: int
    max_output_tokens_hard_cap: int
    enable_x_search_tool: bool
    output_format: str

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/responses"

    @property
    def default_max_text_chars(self) -> int:
        return 1000 if self.tier == "high" else 480

    @classmethod
    def from_env(cls) -> "GrokXSearchConfig":
        api_key = first_env(API_KEY_ENV)
        if not api_key:
            raise MissingCredentialsError(API_KEY_ENV)

        explicit = first_env("SIGNAL_GROK_ENDPOINT")
        if explicit:
            base_url = base_url_from_endpoint(explicit)
        else:
            base_url = with_v1(first_env(BASE_URL_ENV) or DEFAULT_BASE_URL)

        tier = default_tier()
        output_format = (first_env("SIGNAL_GROK_OUTPUT_FORMAT") or "emit_results").lower()
        if output_format not in OUTPUT_FORMATS:
            logger.warning(f"Unknown SIGNAL_GROK_OUTPUT_FORMAT {output_format!r}, using emit_results")
            output_format = "emit_results"

        return cls(
            api_key=api_key,
            base_url=base_url,
            model=first_env("SIGNAL_GROK_MODEL") or DEFAULT_MODEL,
            tier=tier,
            default_max_output_tokens=env_int(
                "SIGNAL_GROK_MAX_OUTPUT_TOKENS", 4000 if tier == "high" else 2000
            ),
            max_output_tokens_hard_cap=hard_cap(),
            enable_x_search_tool=env_flag("SIGNAL_GROK_ENABLE_X_SEARCH_TOOL", True),
            output_format=output_format,
        )
