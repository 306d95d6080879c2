"""
Congressional trading disclosures (Quiver Quantitative live feed).

Requires QUIVER_API_KEY; without it the fetch is skipped softly.

Cursor:
    {"last_fetch_at": window_end,
     "last_report_date": newest ReportDate seen (YYYY-MM-DD),
     "seen_trade_ids": [newest first, max 500]}

Trades carry no upstream ID, so a composite
``ct_<BioGuideId>_<Ticker>_<Date>_<transaction>`` is the dedup key.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector, failed_result, skipped_result
from radar_ingest.cursor import as_number, as_str, as_str_list, clamp_int, merge_recent_ids, pick
from radar_ingest.exceptions import IngestError, NormalizeError, UpstreamFormatError
from radar_ingest.http_client import ClientFactory, create_client, get_json
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult
from radar_ingest.settings import first_env

logger = logging.getLogger(__name__)

QUIVER_URL = "https://api.quiverquant.com/beta/live/congresstrading"
QUIVER_FALLBACK_PAGE = "https://www.quiverquant.com/congresstrading/"
API_KEY_ENV = "QUIVER_API_KEY"
SEEN_IDS_CAP = 500

AMOUNT_RANGES: Dict[str, Tuple[float, float]] = {
    "$1,001 - $15,000": (1001, 15000),
    "$15,001 - $50,000": (15001, 50000),
    "$50,001 - $100,000": (50001, 100000),
    "$100,001 - $250,000": (100001, 250000),
    "$250,001 - $500,000": (250001, 500000),
    "$500,001 - $1,000,000": (500001, 1000000),
    "$1,000,001 - $5,000,000": (1000001, 5000000),
    "$5,000,001 - $25,000,000": (5000001, 25000000),
    "$25,000,001 - $50,000,000": (25000001, 50000000),
    "Over $50,000,000": (50000001, math.inf),
}

_RANGE_SEP_RE = re.compile(r"\s*[-\u2013\u2014]\s*")
_SPACE_RE = re.compile(r"\s+")


def parse_amount_range(value: Any) -> Dict[str, float]:
    """Disclosure range to ``{"min", "max"}``; unknown ranges map to zeros."""
    if not isinstance(value, str):
        return {"min": 0, "max": 0}
    key = _RANGE_SEP_RE.sub(" - ", _SPACE_RE.sub(" ", value.strip()))
    low, high = AMOUNT_RANGES.get(key, (0, 0))
    return {"min": low, "max": high}


def get_chamber(district: Any) -> str:
    """``TX-Sen`` style districts are senators; everything else is the House."""
    return "senate" if isinstance(district, str) and "-Sen" in district else "house"


def generate_trade_id(trade: Dict[str, Any]) -> str:
    txn = _SPACE_RE.sub("_", str(trade.get("Transaction") or "").strip().lower())
    return f"ct_{trade.get('BioGuideId')}_{trade.get('Ticker')}_{trade.get('Date')}_{txn}"


def days_to_disclose(transaction_date: Any, report_date: Any) -> Optional[int]:
    try:
        txn = datetime.strptime(str(transaction_date)[:10], "%Y-%m-%d")
        rpt = datetime.strptime(str(report_date)[:10], "%Y-%m-%d")
    except ValueError:
        return None
    return round((rpt - txn).total_seconds() / 86400)


@dataclass
class CongressTradingSourceConfig:
    politicians: List[str] = field(default_factory=list)
    chambers: List[str] = field(default_factory=list)
    transaction_types: List[str] = field(default_factory=list)
    tickers: List[str] = field(default_factory=list)
    min_amount: int = 0
    max_trades_per_fetch: int = 50

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "CongressTradingSourceConfig":
        def _lowered(values: List[str], allowed: Tuple[str, ...]) -> List[str]:
            out = []
            for v in values:
                v = v.lower()
                if v in allowed and v not in out:
                    out.append(v)
            return out

        min_amount = as_number(pick(config, "min_amount", "minAmount"))
        return cls(
            politicians=as_str_list(config.get("politicians")),
            chambers=_lowered(as_str_list(config.get("chambers")), ("senate", "house")),
            transaction_types=_lowered(
                as_str_list(pick(config, "transaction_types", "transactionTypes")),
                ("purchase", "sale"),
            ),
            tickers=[t.upper() for t in as_str_list(config.get("tickers"))],
            min_amount=max(0, int(math.floor(min_amount))) if min_amount is not None else 0,
            max_trades_per_fetch=clamp_int(
                pick(config, "max_trades_per_fetch", "maxTradesPerFetch"), 1, 100, 50
            ),
        )

    def matches(self, trade: Dict[str, Any]) -> bool:
        if self.chambers and get_chamber(trade.get("District")) not in self.chambers:
            return False
        if self.politicians:
            rep = str(trade.get("Representative") or "").lower()
            if not any(p.lower() in rep for p in self.politicians):
                return False
        if self.transaction_types:
            if str(trade.get("Transaction") or "").lower() not in self.transaction_types:
                return False
        if self.tickers and str(trade.get("Ticker") or "").upper() not in self.tickers:
            return False
        if self.min_amount > 0:
            if parse_amount_range(trade.get("Range"))["min"] < self.min_amount:
                return False
        return True

    def as_meta(self) -> Dict[str, Any]:
        return {
            "politicians": self.politicians or None,
            "chambers": self.chambers or None,
            "transaction_types": self.transaction_types or None,
            "tickers": self.tickers or None,
            "min_amount": self.min_amount,
        }


@dataclass
class CongressTradingCursor:
    last_fetch_at: Optional[str] = None
    last_report_date: Optional[str] = None
    seen_trade_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "CongressTradingCursor":
        return cls(
            last_fetch_at=as_str(cursor.get("last_fetch_at")),
            last_report_date=as_str(cursor.get("last_report_date")),
            seen_trade_ids=as_str_list(cursor.get("seen_trade_ids")),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_fetch_at:
            out["last_fetch_at"] = self.last_fetch_at
        if self.last_report_date:
            out["last_report_date"] = self.last_report_date
        if self.seen_trade_ids:
            out["seen_trade_ids"] = list(self.seen_trade_ids)
        return out


class CongressTradingConnector(Connector):
    """Stock trades disclosed by members of Congress."""

    source_type = "congress_trading"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or create_client

    async def _fetch_trades(self, api_key: str) -> List[Dict[str, Any]]:
        async with self._client_factory() as client:
            data = await get_json(
                client,
                QUIVER_URL,
                "Quiver API",
                headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            )
        if not isinstance(data, list):
            raise UpstreamFormatError(
                f"Quiver API returned unexpected data format: {type(data).__name__}"
            )
        return [t for t in data if isinstance(t, dict)]

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = CongressTradingSourceConfig.from_config(params.config)
        cursor_in = CongressTradingCursor.from_dict(params.cursor)

        api_key = first_env(API_KEY_ENV)
        if not api_key:
            return skipped_result(params, f"{API_KEY_ENV} not configured")

        max_items = min(config.max_trades_per_fetch, max(0, params.limits.max_items))
        seen = set(cursor_in.seen_trade_ids)

        try:
            trades = await self._fetch_trades(api_key)
        except (IngestError, httpx.HTTPError) as e:
            return failed_result(params, e)

        raw_items: List[Dict[str, Any]] = []
        new_ids: List[str] = []
        newest_report = cursor_in.last_report_date or ""

        for trade in trades:
            if len(raw_items) >= max_items:
                break
            trade_id = generate_trade_id(trade)
            if trade_id in seen or trade_id in new_ids:
                continue
            if not config.matches(trade):
                continue

            report_date = as_str(trade.get("ReportDate")) or ""
            if report_date > newest_report:
                newest_report = report_date

            new_ids.append(trade_id)
            raw_items.append(trade)

        next_cursor = CongressTradingCursor(
            last_fetch_at=params.window_end,
            last_report_date=newest_report or None,
            seen_trade_ids=merge_recent_ids(new_ids, cursor_in.seen_trade_ids, SEEN_IDS_CAP),
        )

        logger.info(f"congress_trading: {len(raw_items)} new trades of {len(trades)} disclosed")

        return FetchResult(
            raw_items=raw_items,
            next_cursor=next_cursor.to_dict(),
            meta={"trades_fetched": len(raw_items), "filters_applied": config.as_meta()},
        )

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        representative = as_str(raw.get("Representative"))
        ticker = as_str(raw.get("Ticker"))
        transaction = as_str(raw.get("Transaction"))
        if not representative or not ticker or not transaction:
            raise NormalizeError(
                "Malformed Congress trade: missing required fields "
                "(Representative, Ticker, Transaction)"
            )

        district = as_str(raw.get("District")) or ""
        party = as_str(raw.get("Party")) or ""
        chamber = get_chamber(district)
        chamber_label = "Senate" if chamber == "senate" else "House"
        amount = parse_amount_range(raw.get("Range"))
        disclose_days = days_to_disclose(raw.get("Date"), raw.get("ReportDate"))
        link = as_str(raw.get("Link"))

        txn_lower = transaction.lower()
        action = {"purchase": "BUY", "sale": "SELL"}.get(txn_lower, transaction.upper())
        title = f"[{chamber_label}] {representative} ({party}) {action} {ticker}"

        lines = [
            f"{representative} ({party}-{district})",
            f"{chamber_label} member",
            "",
            f"Transaction: {transaction}",
            f"Asset: {raw.get('Asset') or ''}",
            f"Ticker: {ticker}",
        ]
        range_line = f"Amount Range: {raw.get('Range') or ''}"
        if amount["min"] > 0:
            high = "50,000,000+" if math.isinf(amount["max"]) else f"{int(amount['max']):,}"
            range_line += f" (${int(amount['min']):,} - ${high})"
        lines.append(range_line)
        lines += ["", f"Transaction Date: {raw.get('Date') or ''}"]
        report_line = f"Report Date: {raw.get('ReportDate') or ''}"
        if disclose_days is not None:
            report_line += f" ({disclose_days} days to disclose)"
        lines.append(report_line)
        if link:
            lines += ["", f"Source: {link}"]

        published_at = None
        report_date = as_str(raw.get("ReportDate"))
        if report_date:
            try:
                published_at = datetime.strptime(report_date[:10], "%Y-%m-%d").replace(
                    tzinfo=timezone.utc
                )
            except ValueError:
                published_at = None

        metadata: Dict[str, Any] = {
            "politician": representative,
            "bioguide_id": raw.get("BioGuideId"),
            "party": party or None,
            "chamber": chamber,
            "district": district or None,
            "ticker": ticker,
            "asset_description": raw.get("Asset"),
            "transaction_type": txn_lower,
            "amount_range": raw.get("Range"),
            "amount_min": amount["min"],
            "amount_max": None if math.isinf(amount["max"]) else amount["max"],
            "transaction_date": raw.get("Date"),
            "report_date": raw.get("ReportDate"),
        }
        if disclose_days is not None:
            metadata["days_to_disclose"] = disclose_days
        if link:
            metadata["disclosure_link"] = link

        return ContentItemDraft(
            title=title,
            body_text="\n".join(lines),
            canonical_url=link or QUIVER_FALLBACK_PAGE,
            source_type=self.source_type,
            external_id=generate_trade_id(raw),
            published_at=published_at,
            author=representative,
            metadata=metadata,
            raw={
                "representative": representative,
                "bioguide_id": raw.get("BioGuideId"),
                "party": raw.get("Party"),
                "district": raw.get("District"),
                "ticker": ticker,
                "transaction": transaction,
                "range": raw.get("Range"),
                "date": raw.get("Date"),
                "report_date": raw.get("ReportDate"),
            },
        )
