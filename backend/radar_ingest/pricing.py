"""
Model pricing for USD cost estimates.

Prices are USD per 1M tokens. xAI also bills server-side tool invocations
(x_search) per call on top of tokens.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from radar_ingest.settings import env_float

logger = logging.getLogger(__name__)

# $5 per 1,000 invocations
XAI_X_SEARCH_COST_PER_CALL = 0.005


@dataclass(frozen=True)
class ModelPricing:
    provider: str
    model: str
    input_per_1m_tokens: float
    output_per_1m_tokens: float


MODEL_PRICING = [
    # OpenAI
    ModelPricing("openai", "gpt-4o", 2.5, 10.0),
    ModelPricing("openai", "gpt-4o-mini", 0.15, 0.6),
    ModelPricing("openai", "gpt-4.1", 2.0, 8.0),
    ModelPricing("openai", "gpt-4.1-mini", 0.4, 1.6),
    ModelPricing("openai", "o3-mini", 1.1, 4.4),
    ModelPricing("openai", "text-embedding-3-small", 0.02, 0.0),
    ModelPricing("openai", "text-embedding-ada-002", 0.1, 0.0),
    # Anthropic
    ModelPricing("anthropic", "claude-sonnet-4-5", 3.0, 15.0),
    ModelPricing("anthropic", "claude-3-5-haiku-latest", 0.8, 4.0),
    # xAI (Grok)
    ModelPricing("xai", "grok-4-1-fast-non-reasoning", 0.2, 0.5),
    ModelPricing("xai", "grok-4-1-fast-reasoning", 0.2, 0.5),
    ModelPricing("xai", "grok-4-fast-non-reasoning", 0.2, 0.5),
    ModelPricing("xai", "grok-4-fast-reasoning", 0.2, 0.5),
    ModelPricing("xai", "grok-4-1-fast-non-reasoning-latest", 0.2, 0.5),
    ModelPricing("xai", "grok-code-fast-1", 0.2, 1.5),
    ModelPricing("xai", "grok-4-0709", 3.0, 15.0),
    ModelPricing("xai", "grok-4-latest", 3.0, 15.0),
    ModelPricing("xai", "grok-3-mini", 0.3, 0.5),
    ModelPricing("xai", "grok-3", 3.0, 15.0),
]

_PRICING_INDEX: Dict[Tuple[str, str], ModelPricing] = {
    (p.provider, p.model): p for p in MODEL_PRICING
}


def get_model_pricing(provider: str, model: str) -> Optional[ModelPricing]:
    return _PRICING_INDEX.get((provider, model))


def calculate_cost_usd(provider: str, model: str, input_tokens: int, output_tokens: int) -> float:
    """Token cost in USD; 0.0 for a model missing from the table."""
    pricing = get_model_pricing(provider, model)
    if pricing is None:
        logger.debug(f"No pricing for {provider}:{model}, cost recorded as 0")
        return 0.0
    input_cost = (input_tokens / 1_000_000) * pricing.input_per_1m_tokens
    output_cost = (output_tokens / 1_000_000) * pricing.output_per_1m_tokens
    return input_cost + output_cost


def xai_x_search_cost_per_call() -> float:
    """Per-invocation x_search cost, overridable by XAI_X_SEARCH_COST_PER_CALL."""
    value = env_float("XAI_X_SEARCH_COST_PER_CALL", None)
    if value is not None and value >= 0:
        return value
    return XAI_X_SEARCH_COST_PER_CALL
