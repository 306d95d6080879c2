"""
Unusual options flow (Unusual Whales API).

Requires UNUSUAL_WHALES_API_KEY; without it the fetch is skipped softly.

Upstream rows arrive under several field-name variants and are coerced
into one flat shape before filtering. Sentiment is classified from the
contract only when the row does not already carry one.

Cursor:
    {"last_fetch_at": window_end, "last_seen_id": str,
     "seen_ids": [newest first, max 500]}
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector, failed_result, sha256_hex, skipped_result
from radar_ingest.cursor import (
    as_bool,
    as_str,
    as_str_list,
    clamp_int,
    merge_recent_ids,
    parse_iso_datetime,
    pick,
)
from radar_ingest.exceptions import IngestError, NormalizeError, UpstreamFormatError
from radar_ingest.http_client import ClientFactory, create_client, get_json
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult
from radar_ingest.settings import first_env

logger = logging.getLogger(__name__)

UNUSUAL_WHALES_URL = "https://api.unusualwhales.com/api/flow"
API_KEY_ENV = "UNUSUAL_WHALES_API_KEY"
SEEN_IDS_CAP = 500
FLOW_TYPES = ("sweep", "block", "unusual")
SENTIMENTS = ("bullish", "bearish")

ETF_SYMBOLS = frozenset({
    "SPY", "QQQ", "IWM", "DIA", "XLF", "XLE", "XLK", "XLV", "XLI", "XLP",
    "XLU", "XLB", "XLY", "XLRE", "GLD", "SLV", "TLT", "HYG", "EEM", "EFA",
    "VXX", "UVXY", "SQQQ", "TQQQ", "ARKK",
})


# ============================================================================
# Row coercion
# ============================================================================

def _first(row: Dict[str, Any], *keys: str) -> Any:
    """First truthy value among the variant keys."""
    for key in keys:
        value = row.get(key)
        if value:
            return value
    return None


def _to_float(value: Any) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def coerce_flow(row: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one upstream row into the connector's raw item shape."""
    symbol = str(_first(row, "symbol", "ticker") or "").strip().upper()
    strike = _to_float(_first(row, "strike", "strike_price"))
    expiry = str(_first(row, "expiry", "expiration", "expires") or "")
    timestamp = _first(row, "timestamp", "created_at", "time")

    flow_id = _first(row, "id", "alert_id")
    if flow_id is None:
        # no upstream id: a content hash keeps re-fetches of the same row stable
        flow_id = "h_" + sha256_hex(symbol, f"{strike:g}", expiry, str(timestamp or ""))[:24]

    contract_raw = str(_first(row, "contract_type", "type", "put_call", "option_type") or "").lower()
    contract_type = "put" if contract_raw in ("put", "p") else "call"

    flow_raw = str(_first(row, "flow_type", "order_type", "type") or "").lower()
    if "sweep" in flow_raw:
        flow_type = "sweep"
    elif "block" in flow_raw:
        flow_type = "block"
    else:
        flow_type = "unusual"

    sentiment_raw = str(_first(row, "sentiment", "direction") or "").lower()
    if "bull" in sentiment_raw or sentiment_raw == "buy":
        sentiment = "bullish"
    elif "bear" in sentiment_raw or sentiment_raw == "sell":
        sentiment = "bearish"
    else:
        sentiment = "neutral"

    exchange = row.get("exchange")
    return {
        "id": str(flow_id),
        "symbol": symbol,
        "strike": strike,
        "expiry": expiry,
        "contract_type": contract_type,
        "flow_type": flow_type,
        "sentiment": sentiment,
        "premium": _to_float(_first(row, "premium", "total_premium", "value")),
        "volume": _to_float(_first(row, "volume", "contracts", "size")),
        "open_interest": _to_float(_first(row, "open_interest", "oi")),
        "spot_price": _to_float(_first(row, "spot_price", "underlying_price", "stock_price")),
        "timestamp": str(timestamp) if timestamp else None,
        "exchange": str(exchange) if exchange else None,
    }


def is_otm(flow: Dict[str, Any]) -> bool:
    if flow.get("contract_type") == "call":
        return flow["strike"] > flow["spot_price"]
    return flow["strike"] < flow["spot_price"]


def classify_sentiment(flow: Dict[str, Any]) -> str:
    """
    Keep an upstream bullish/bearish label; otherwise infer from the contract.

    Sweeps on out-of-the-money calls read bullish and on out-of-the-money
    puts bearish. Everything else stays neutral.
    """
    if flow.get("sentiment") in SENTIMENTS:
        return flow["sentiment"]
    if flow.get("flow_type") == "sweep" and is_otm(flow):
        return "bullish" if flow.get("contract_type") == "call" else "bearish"
    return "neutral"


def days_to_expiry(expiry: Any, reference: datetime) -> int:
    """Whole days from ``reference`` to expiry, rounded up, never negative."""
    expiry_dt = parse_iso_datetime(expiry)
    if expiry_dt is None:
        return 0
    diff_days = (expiry_dt - reference).total_seconds() / 86400
    return max(0, math.ceil(diff_days))


def _reference_time(params: FetchParams) -> datetime:
    return parse_iso_datetime(params.window_end) or datetime.now(timezone.utc)


# ============================================================================
# Formatting
# ============================================================================

def format_premium(premium: float) -> str:
    if premium >= 1_000_000:
        return f"${premium / 1_000_000:.1f}M"
    if premium >= 1000:
        return f"${premium / 1000:.0f}K"
    return f"${premium:.0f}"


def format_expiry(expiry: str) -> str:
    parsed = parse_iso_datetime(expiry)
    return f"{parsed.month}/{parsed.day}" if parsed else expiry


def _num(value: float) -> str:
    return f"{value:g}"


# ============================================================================
# Connector
# ============================================================================

@dataclass
class OptionsFlowSourceConfig:
    symbols: List[str] = field(default_factory=list)
    min_premium: int = 50000
    flow_types: List[str] = field(default_factory=list)
    sentiment_filter: Optional[str] = None
    include_etfs: bool = True
    expiry_max_days: int = 90
    max_alerts_per_fetch: int = 50

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "OptionsFlowSourceConfig":
        flow_types = []
        for value in as_str_list(pick(config, "flow_types", "flowTypes")):
            value = value.lower()
            if value in FLOW_TYPES and value not in flow_types:
                flow_types.append(value)
        sentiment = as_str(pick(config, "sentiment_filter", "sentimentFilter"))
        sentiment = sentiment.lower() if sentiment else None

        return cls(
            symbols=[s.upper() for s in as_str_list(config.get("symbols"))],
            min_premium=clamp_int(pick(config, "min_premium", "minPremium"), 0, 10**12, 50000),
            flow_types=flow_types,
            sentiment_filter=sentiment if sentiment in SENTIMENTS else None,
            include_etfs=as_bool(pick(config, "include_etfs", "includeEtfs"), True),
            expiry_max_days=clamp_int(
                pick(config, "expiry_max_days", "expiryMaxDays"), 1, 10**6, 90
            ),
            max_alerts_per_fetch=clamp_int(
                pick(config, "max_alerts_per_fetch", "maxAlertsPerFetch"), 1, 100, 50
            ),
        )

    def as_meta(self) -> Dict[str, Any]:
        return {
            "symbols": self.symbols or None,
            "min_premium": self.min_premium,
            "flow_types": self.flow_types or None,
            "sentiment_filter": self.sentiment_filter,
            "include_etfs": self.include_etfs,
            "expiry_max_days": self.expiry_max_days,
        }


@dataclass
class OptionsFlowCursor:
    last_fetch_at: Optional[str] = None
    last_seen_id: Optional[str] = None
    seen_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "OptionsFlowCursor":
        return cls(
            last_fetch_at=as_str(cursor.get("last_fetch_at")),
            last_seen_id=as_str(cursor.get("last_seen_id")),
            seen_ids=as_str_list(cursor.get("seen_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_fetch_at:
            out["last_fetch_at"] = self.last_fetch_at
        if self.last_seen_id:
            out["last_seen_id"] = self.last_seen_id
        if self.seen_ids:
            out["seen_ids"] = list(self.seen_ids)
        return out


class OptionsFlowConnector(Connector):
    """Large or unusual options orders."""

    source_type = "options_flow"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or create_client

    async def _fetch_flows(self, api_key: str) -> List[Dict[str, Any]]:
        async with self._client_factory() as client:
            data = await get_json(
                client,
                UNUSUAL_WHALES_URL,
                "Unusual Whales API",
                headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            )
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"]
        if not isinstance(data, list):
            raise UpstreamFormatError(
                f"Unusual Whales API returned unexpected data format: {type(data).__name__}"
            )
        return [coerce_flow(row) for row in data if isinstance(row, dict)]

    def _passes(self, flow: Dict[str, Any], config: OptionsFlowSourceConfig, now: datetime) -> bool:
        if config.symbols and flow["symbol"] not in config.symbols:
            return False
        if not config.include_etfs and flow["symbol"] in ETF_SYMBOLS:
            return False
        if config.min_premium > 0 and flow["premium"] < config.min_premium:
            return False
        if config.flow_types and flow["flow_type"] not in config.flow_types:
            return False
        if config.sentiment_filter and flow["sentiment"] != config.sentiment_filter:
            return False
        if days_to_expiry(flow["expiry"], now) > config.expiry_max_days:
            return False
        return True

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = OptionsFlowSourceConfig.from_config(params.config)
        cursor_in = OptionsFlowCursor.from_dict(params.cursor)

        api_key = first_env(API_KEY_ENV)
        if not api_key:
            return skipped_result(params, f"{API_KEY_ENV} not configured")

        try:
            flows = await self._fetch_flows(api_key)
        except (IngestError, httpx.HTTPError) as e:
            return failed_result(params, e)

        max_items = min(config.max_alerts_per_fetch, max(0, params.limits.max_items))
        reference = _reference_time(params)
        seen = set(cursor_in.seen_ids)
        raw_items: List[Dict[str, Any]] = []
        new_ids: List[str] = []

        for flow in flows:
            if len(raw_items) >= max_items:
                break
            if flow["id"] in seen or flow["id"] in new_ids:
                continue
            flow["sentiment"] = classify_sentiment(flow)
            if not self._passes(flow, config, reference):
                continue
            new_ids.append(flow["id"])
            raw_items.append(flow)

        next_cursor = OptionsFlowCursor(
            last_fetch_at=params.window_end,
            last_seen_id=new_ids[-1] if new_ids else cursor_in.last_seen_id,
            seen_ids=merge_recent_ids(new_ids, cursor_in.seen_ids, SEEN_IDS_CAP),
        )

        logger.info(f"options_flow: {len(raw_items)} alerts kept of {len(flows)} received")

        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor.to_dict(),
            meta={"alerts_fetched": len(raw_items), "filters_applied": config.as_meta()},
        )

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        symbol = as_str(raw.get("symbol"))
        strike = _to_float(raw.get("strike"))
        contract_type = as_str(raw.get("contract_type"))
        if not symbol or not strike or contract_type not in ("call", "put"):
            raise NormalizeError(
                "Malformed options flow: missing required fields (symbol, strike, contract_type)"
            )

        flow = coerce_flow(raw)
        flow["sentiment"] = classify_sentiment(flow)
        reference = _reference_time(params)
        dte = days_to_expiry(flow["expiry"], reference)
        otm = is_otm(flow)
        sentiment_label = flow["sentiment"].capitalize()
        premium_label = format_premium(flow["premium"])
        volume, oi = flow["volume"], flow["open_interest"]

        title = (
            f"[{flow['flow_type'].upper()}] ${symbol} ${_num(strike)}"
            f"{'C' if contract_type == 'call' else 'P'} {format_expiry(flow['expiry'])} "
            f"- {premium_label} ({sentiment_label})"
        )

        if otm:
            moneyness = "OTM"
        elif strike == flow["spot_price"]:
            moneyness = "ATM"
        else:
            moneyness = "ITM"

        lines = [
            f"{flow['flow_type'].upper()} order on ${symbol}",
            "",
            f"Contract: {symbol} ${_num(strike)} {contract_type.upper()}",
            f"Expiration: {flow['expiry']} ({dte} days)",
            f"Moneyness: {moneyness}",
            "",
            "Order Details:",
            f"  Premium: {premium_label}",
            f"  Volume: {int(volume):,} contracts",
            f"  Open Interest: {int(oi):,}",
            f"  Volume/OI Ratio: {volume / oi:.2f}" if oi > 0 else "  Volume/OI Ratio: N/A",
            "",
            f"Underlying: ${flow['spot_price']:.2f}",
            f"Sentiment: {sentiment_label}",
        ]
        if flow["exchange"]:
            lines.append(f"Exchange: {flow['exchange']}")

        metadata: Dict[str, Any] = {
            "symbol": symbol,
            "strike": strike,
            "expiry": flow["expiry"],
            "contract_type": contract_type,
            "flow_type": flow["flow_type"],
            "sentiment": flow["sentiment"],
            "premium": flow["premium"],
            "volume": volume,
            "open_interest": oi,
            "volume_oi_ratio": volume / oi if oi > 0 else None,
            "spot_price": flow["spot_price"],
            "days_to_expiry": dte,
            "is_weekly": dte <= 7,
            "is_otm": otm,
        }
        if flow["exchange"]:
            metadata["exchange"] = flow["exchange"]

        return ContentItemDraft(
            title=title,
            body_text="\n".join(lines),
            canonical_url=f"https://unusualwhales.com/flow?symbol={symbol}",
            source_type=self.source_type,
            external_id=f"of_{flow['id']}",
            published_at=parse_iso_datetime(flow["timestamp"]),
            author="Options Flow",
            metadata=metadata,
            raw={
                key: flow[key]
                for key in (
                    "id", "symbol", "strike", "expiry", "contract_type",
                    "flow_type", "premium", "volume", "timestamp",
                )
            },
        )
