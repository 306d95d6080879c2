"""
Shared fetch loop for connectors backed by the metered x_search provider.

Calls run one after another so the run budget and an authoritative
rejection can stop the remaining calls before they are made. Each subclass
names the statuses it treats as authoritative in ``abort_status_codes``.
Every dispatched call yields exactly one ProviderCallDraft. The
``since_time`` watermark advances only when at least one call succeeded;
otherwise the cursor comes back unchanged.
"""

import logging
from abc import abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import openai

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector, skipped_result
from radar_ingest.cursor import as_str, pick
from radar_ingest.exceptions import IngestError, MissingCredentialsError, UpstreamHTTPError
from radar_ingest.models import FetchParams, FetchResult, ProviderCallDraft, ProviderCallError
from radar_ingest.pricing import calculate_cost_usd, xai_x_search_cost_per_call
from radar_ingest.retry import status_code_of
from radar_ingest.settings import env_float
from radar_ingest.x_search import (
    GrokXSearchClient,
    SearchJob,
    TokenBudget,
    XSearchRequest,
    XSearchResult,
)

logger = logging.getLogger(__name__)

PROVIDER = "xai"
DEFAULT_CREDITS_PER_CALL = 50.0
CALL_ERRORS = (IngestError, openai.OpenAIError, httpx.HTTPError)


@dataclass
class SearchCallPlan:
    """One planned provider call and the knobs it is sent with."""
    job: SearchJob
    limit: int
    token_budget: TokenBudget
    max_text_chars: Optional[int] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProviderSearchConnector(Connector):
    """Base for connectors that turn x_search calls into raw items."""

    purpose = ""
    credits_env: Tuple[str, ...] = ()
    # statuses that reject every call alike, so the rest of the run is abandoned
    abort_status_codes: Tuple[int, ...] = (401, 403)

    def __init__(self, search_client: Optional[GrokXSearchClient] = None):
        self._search_client = search_client

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def parse_config(self, config: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    def plan_calls(self, config: Any, params: FetchParams) -> List[SearchCallPlan]:
        ...

    @abstractmethod
    def build_request(
        self, plan: SearchCallPlan, params: FetchParams, since_time: Optional[str]
    ) -> XSearchRequest:
        ...

    @abstractmethod
    def collect_items(
        self, result: XSearchResult, plan: SearchCallPlan, config: Any, params: FetchParams,
        since_time: Optional[str],
    ) -> List[Dict[str, Any]]:
        ...

    def call_meta(self, plan: SearchCallPlan, config: Any) -> Dict[str, Any]:
        return {}

    def result_meta(self, config: Any) -> Dict[str, Any]:
        return {}

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def credits_per_call(self) -> float:
        value = env_float(self.credits_env, DEFAULT_CREDITS_PER_CALL)
        return value if value is not None else DEFAULT_CREDITS_PER_CALL

    def _base_meta(
        self, params: FetchParams, plan: SearchCallPlan, config: Any, budget: RunBudget
    ) -> Dict[str, Any]:
        meta = {
            "source_id": params.source_id,
            "query": plan.job.query,
            "limit": plan.limit,
            "window_start": params.window_start,
            "window_end": params.window_end,
            "max_search_calls_per_run": budget.max_calls,
            "batch_size": plan.job.group_size,
            "batch_handles_count": len(plan.job.handles),
        }
        meta.update(plan.token_budget.as_meta())
        meta.update(self.call_meta(plan, config))
        return meta

    def _ok_draft(
        self,
        params: FetchParams,
        plan: SearchCallPlan,
        config: Any,
        budget: RunBudget,
        result: XSearchResult,
        started_at: datetime,
    ) -> ProviderCallDraft:
        cost_usd = None
        # no usage block means the token cost is unknown, not zero
        if result.tokens_reported:
            cost_usd = (
                calculate_cost_usd(PROVIDER, result.model, result.input_tokens, result.output_tokens)
                + xai_x_search_cost_per_call()
            )

        meta = self._base_meta(params, plan, config, budget)
        meta.update({
            "endpoint": result.endpoint,
            "query_sent": result.query_sent,
            "max_output_tokens_sent": result.max_output_tokens,
            "tokens_reported": result.tokens_reported,
            "tool_error_code": (result.structured_error or {}).get("code"),
        })
        meta.update(result.outcome.as_meta())

        return ProviderCallDraft(
            user_id=params.user_id,
            purpose=self.purpose,
            provider=PROVIDER,
            model=result.model,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost_estimate_credits=self.credits_per_call(),
            cost_estimate_usd=cost_usd,
            meta=meta,
            started_at=started_at,
            ended_at=_now(),
            status="ok",
        )

    def _error_draft(
        self,
        params: FetchParams,
        plan: SearchCallPlan,
        config: Any,
        budget: RunBudget,
        client: GrokXSearchClient,
        error: Exception,
        started_at: datetime,
    ) -> ProviderCallDraft:
        status_code = status_code_of(error)
        snippet = None
        meta = self._base_meta(params, plan, config, budget)
        meta["endpoint"] = client.config.endpoint
        if isinstance(error, UpstreamHTTPError):
            snippet = error.body_snippet
            meta["request_id"] = error.request_id

        return ProviderCallDraft(
            user_id=params.user_id,
            purpose=self.purpose,
            provider=PROVIDER,
            model=client.config.model or "unknown",
            cost_estimate_credits=self.credits_per_call(),
            # the x_search tool may still be billed on a failed call
            cost_estimate_usd=xai_x_search_cost_per_call(),
            meta=meta,
            started_at=started_at,
            ended_at=_now(),
            status="error",
            error=ProviderCallError(
                message=str(error), status_code=status_code, response_snippet=snippet
            ),
        )

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = self.parse_config(params.config)
        plans = self.plan_calls(config, params)
        if not plans:
            return FetchResult(
                raw_items=[], next_cursor=dict(params.cursor), meta={"query_count": 0}
            )

        try:
            client = self._search_client or GrokXSearchClient()
        except MissingCredentialsError as e:
            return skipped_result(params, e.reason)

        budget = budget if budget is not None else RunBudget.from_env()
        since_time = as_str(pick(params.cursor, "since_time", "sinceTime"))

        raw_items: List[Dict[str, Any]] = []
        provider_calls: List[ProviderCallDraft] = []
        any_success = False
        executed = 0
        last_error: Optional[str] = None

        for plan in plans:
            if not await budget.try_acquire(params.run_key):
                logger.warning(
                    f"[{self.purpose}] Skipping {len(plans) - executed} of {len(plans)} query jobs: "
                    f"run budget of {budget.max_calls} calls spent"
                )
                break
            executed += 1
            started_at = _now()

            try:
                result = await client.search(self.build_request(plan, params, since_time))
            except CALL_ERRORS as e:
                provider_calls.append(
                    self._error_draft(params, plan, config, budget, client, e, started_at)
                )
                last_error = str(e)
                status_code = status_code_of(e)
                logger.error(f"[{self.purpose}] provider call failed ({status_code}): {e}")
                if status_code in self.abort_status_codes:
                    logger.error(
                        f"[{self.purpose}] {status_code} is not per-query; "
                        f"abandoning {len(plans) - executed} remaining calls"
                    )
                    break
                continue

            provider_calls.append(
                self._ok_draft(params, plan, config, budget, result, started_at)
            )
            any_success = True
            raw_items.extend(self.collect_items(result, plan, config, params, since_time))

        next_cursor = dict(params.cursor)
        if any_success:
            next_cursor["since_time"] = params.window_end

        logger.info(
            f"[{self.purpose}] {len(raw_items)} raw items from {executed}/{len(plans)} calls "
            f"(any_success={any_success})"
        )

        meta: Dict[str, Any] = {
            "provider_calls": [call.model_dump(mode="json") for call in provider_calls],
            "any_success": any_success,
            "query_count": len(plans),
            "queries_executed": executed,
            "queries_skipped": len(plans) - executed,
            "max_search_calls_per_run": budget.max_calls,
        }
        meta.update(self.result_meta(config))
        if not any_success and last_error:
            meta["error"] = last_error

        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor,
            meta=meta,
            provider_calls=provider_calls,
        )
