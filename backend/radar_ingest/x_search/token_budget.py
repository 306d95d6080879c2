"""
Max-output-token budgeting for X search calls.

A batched call returns posts for several accounts, so its output budget
scales with the group: ``base = per_account * group_size``. A headroom of
``max(base * pct, min)`` absorbs formatting overhead, and the result is
clamped to a hard ceiling. Single-account calls without an explicit
override leave the provider default in place.
"""

from dataclasses import dataclass
from typing import Optional

from radar_ingest.settings import env_float, env_int

PROVIDER_DEFAULT = "provider_default"
PER_ACCOUNT_OVERRIDE = "per_account_override"
BATCHED_DEFAULT_PER_ACCOUNT = "batched_default_per_account"

PER_ACCOUNT_ENV = "X_POSTS_MAX_OUTPUT_TOKENS_PER_ACCOUNT"
HEADROOM_PCT_ENV = "X_POSTS_TOKEN_HEADROOM_PCT"
HEADROOM_MIN_ENV = "X_POSTS_TOKEN_HEADROOM_MIN"
HARD_CAP_ENV = "X_POSTS_MAX_OUTPUT_TOKENS_HARD_CAP"

DEFAULT_PER_ACCOUNT_TOKENS = 400
DEFAULT_HEADROOM_PCT = 0.25
DEFAULT_HEADROOM_MIN = 256
DEFAULT_HARD_CAP = 32000


@dataclass
class TokenBudget:
    """Outcome of a budget computation; recorded on the provider call."""
    max_output_tokens: Optional[int]
    mode: str
    base: Optional[int] = None
    headroom: int = 0
    clamped: bool = False

    def as_meta(self) -> dict:
        return {
            "max_output_tokens": self.max_output_tokens,
            "max_output_tokens_mode": self.mode,
            "max_output_tokens_base": self.base,
            "max_output_tokens_headroom": self.headroom,
            "max_output_tokens_clamped": self.clamped,
        }


def hard_cap() -> int:
    return env_int(HARD_CAP_ENV, DEFAULT_HARD_CAP)


def compute_token_budget(group_size: int, per_account_override: Optional[int] = None) -> TokenBudget:
    if per_account_override is not None and per_account_override > 0:
        per_account = per_account_override
        mode = PER_ACCOUNT_OVERRIDE
    elif group_size > 1:
        per_account = env_int(PER_ACCOUNT_ENV, DEFAULT_PER_ACCOUNT_TOKENS)
        mode = BATCHED_DEFAULT_PER_ACCOUNT
    else:
        return TokenBudget(max_output_tokens=None, mode=PROVIDER_DEFAULT)

    base = per_account * max(1, group_size)
    pct = env_float(HEADROOM_PCT_ENV, DEFAULT_HEADROOM_PCT)
    minimum = env_int(HEADROOM_MIN_ENV, DEFAULT_HEADROOM_MIN)
    headroom = max(int(base * pct), minimum)
    ceiling = hard_cap()
    total = base + headroom
    return TokenBudget(
        max_output_tokens=min(total, ceiling),
        mode=mode,
        base=base,
        headroom=headroom,
        clamped=total > ceiling,
    )
