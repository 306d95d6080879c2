"""
Per-run provider call budget.

A scheduler run is identified by ``user_id|window_end``. Every fetch in
that run draws from the same counter; a new run key resets it. The budget
object is passed explicitly to connectors instead of living in module state.
"""

import asyncio
import logging
from typing import Optional

from radar_ingest.settings import env_int

logger = logging.getLogger(__name__)

MAX_CALLS_ENV = ("X_POSTS_MAX_SEARCH_CALLS_PER_RUN", "SIGNAL_MAX_SEARCH_CALLS_PER_RUN")


class RunBudget:
    """Counts provider calls for the current run key; ``max_calls=None`` is unlimited."""

    def __init__(self, max_calls: Optional[int] = None):
        self.max_calls = max_calls
        self._run_key: Optional[str] = None
        self._used = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_env(cls) -> "RunBudget":
        return cls(env_int(MAX_CALLS_ENV, None))

    @property
    def used(self) -> int:
        return self._used

    @property
    def run_key(self) -> Optional[str]:
        return self._run_key

    def _reset_if_needed(self, run_key: str) -> None:
        if self._run_key != run_key:
            if self._run_key is not None:
                logger.debug(f"Run budget reset: {self._run_key} -> {run_key}")
            self._run_key = run_key
            self._used = 0

    async def try_acquire(self, run_key: str) -> bool:
        """Reserve one call for ``run_key``; False when the budget is spent."""
        async with self._lock:
            self._reset_if_needed(run_key)
            if self.max_calls is not None and self._used >= self.max_calls:
                return False
            self._used += 1
            return True

    async def remaining(self, run_key: str) -> Optional[int]:
        async with self._lock:
            self._reset_if_needed(run_key)
            if self.max_calls is None:
                return None
            return max(0, self.max_calls - self._used)
