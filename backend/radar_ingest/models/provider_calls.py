"""
Provider Call Accounting Models

One ProviderCallDraft is produced per outbound call to a metered provider,
success or failure. Budget enforcement downstream consumes these records.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class ProviderCallError(BaseModel):
    """Failure detail attached to an errored provider call."""

    message: str
    status_code: Optional[int] = None
    response_snippet: Optional[str] = None


class ProviderCallDraft(BaseModel):
    """Accounting record of one call to a metered provider."""

    user_id: str
    purpose: str = Field(..., description="e.g. x_posts_fetch, signal_search")
    provider: str
    model: str
    input_tokens: Optional[int] = Field(None, description="None when the provider reported no usage")
    output_tokens: Optional[int] = None
    cost_estimate_credits: float = 0.0
    cost_estimate_usd: Optional[float] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    ended_at: datetime
    status: Literal["ok", "error"]
    error: Optional[ProviderCallError] = None
