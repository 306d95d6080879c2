"""
Pydantic models shared by every connector.

Supports:
- FetchParams / FetchLimits: per-invocation input from the scheduler
- FetchResult: raw items, next cursor and diagnostics
- ContentItemDraft: canonical normalized item
- ProviderCallDraft / ProviderCallError: metered provider call accounting
"""

from radar_ingest.models.connector import (
    ContentItemDraft,
    FetchLimits,
    FetchParams,
    FetchResult,
)
from radar_ingest.models.provider_calls import ProviderCallDraft, ProviderCallError

__all__ = [
    "ContentItemDraft",
    "FetchLimits",
    "FetchParams",
    "FetchResult",
    "ProviderCallDraft",
    "ProviderCallError",
]
