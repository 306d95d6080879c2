"""
Connector contract.

A connector pairs ``fetch`` (pull raw items, apply cursoring and filters,
return the next cursor) with ``normalize`` (one raw item to one
``ContentItemDraft``). Each connector parses its own config and cursor;
nothing outside it looks inside those maps.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from radar_ingest.budget import RunBudget
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult

logger = logging.getLogger(__name__)


def sha256_hex(*parts: str) -> str:
    """Hex digest of the parts joined with ``|``."""
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def skipped_result(params: FetchParams, reason: str) -> FetchResult:
    """Soft skip: no items, cursor handed back untouched."""
    logger.warning(f"{params.source_type}: {reason}, skipping fetch for source {params.source_id}")
    return FetchResult(
        raw_items=[],
        next_cursor=dict(params.cursor),
        meta={"skipped": True, "reason": reason},
    )


def failed_result(params: FetchParams, error: Exception) -> FetchResult:
    """Upstream failure: no items, cursor unchanged, error surfaced in meta."""
    logger.error(f"{params.source_type}: fetch failed for source {params.source_id}: {error}")
    return FetchResult(
        raw_items=[],
        next_cursor=dict(params.cursor),
        meta={"error": str(error)},
    )


class Connector(ABC):
    """Fetch + normalize unit for one source type."""

    source_type: str = ""

    @abstractmethod
    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        """Pull raw items for one source; never mutates ``params.cursor``."""

    @abstractmethod
    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        """Map one raw item from ``fetch`` onto the canonical draft."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} source_type={self.source_type!r}>"
