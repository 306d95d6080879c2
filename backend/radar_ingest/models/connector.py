"""
Connector Contract Models

FetchParams is supplied by the scheduler for one fetch; FetchResult and
ContentItemDraft are the terminal outputs. ``config`` and ``cursor`` are
connector-owned maps: nothing outside the owning connector looks inside them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from radar_ingest.models.provider_calls import ProviderCallDraft


class FetchLimits(BaseModel):
    """Item-count limits for one fetch."""

    max_items: int = Field(50, ge=0, description="Maximum raw items to emit")
    max_comments: Optional[int] = Field(
        None, ge=0, description="Optional per-item comment cap"
    )


class FetchParams(BaseModel):
    """Input for a single connector fetch."""

    user_id: str
    source_id: str
    source_type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    cursor: Dict[str, Any] = Field(default_factory=dict)
    limits: FetchLimits = Field(default_factory=FetchLimits)
    window_start: str = Field(..., description="ISO timestamp, inclusive hint")
    window_end: str = Field(..., description="ISO timestamp, exclusive hint")

    @field_validator("config", "cursor", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return {} if v is None else v

    @property
    def run_key(self) -> str:
        """Identity of the logical scheduler run this fetch belongs to."""
        return f"{self.user_id}|{self.window_end}"


class FetchResult(BaseModel):
    """Output of a connector fetch."""

    raw_items: List[Dict[str, Any]] = Field(default_factory=list)
    next_cursor: Dict[str, Any] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)
    provider_calls: List[ProviderCallDraft] = Field(default_factory=list)


class ContentItemDraft(BaseModel):
    """
    Canonical, source-agnostic representation of one ingested item.

    ``external_id`` is the dedup key within a ``source_type``. ``published_at``
    stays None when the upstream has no genuine timestamp.
    """

    title: Optional[str] = None
    body_text: Optional[str] = None
    canonical_url: Optional[str] = None
    source_type: str
    external_id: Optional[str] = None
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict)
