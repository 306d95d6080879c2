"""
SEC EDGAR connector: insider trades (Form 4) and institutional holdings (13F).

Each configured filing type reads EDGAR's "latest filings" Atom listing,
then downloads every unseen filing's full submission and parses the
ownership or information-table XML inside it. EDGAR asks for no more than
ten requests a second and a contact address in the User-Agent, so requests
are spaced by REQUEST_DELAY and SEC_EDGAR_USER_AGENT overrides the agent.

Cursor (per filing type):
    {"form4": {"last_accession": ..., "last_fetch_at": ISO,
               "recent_accessions": [newest first, max 500]},
     "13f": {...}}

Accession numbers are not ordered across filers, so dedup is by the recent
window, not by comparison. A filing whose download fails is left out of
the window and retried on the next run while it is still listed.
"""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from radar_ingest.budget import RunBudget
from radar_ingest.connectors.base import Connector
from radar_ingest.cursor import (
    as_dict,
    as_number,
    as_str,
    as_str_list,
    clamp_int,
    merge_recent_ids,
    parse_iso_datetime,
    pick,
)
from radar_ingest.exceptions import ConnectorConfigError, IngestError, NormalizeError
from radar_ingest.feed_parser import FeedEntry, parse_feed
from radar_ingest.http_client import USER_AGENT, ClientFactory, create_client, get_text
from radar_ingest.models import ContentItemDraft, FetchParams, FetchResult
from radar_ingest.settings import first_env

logger = logging.getLogger(__name__)

FILING_TYPES = ("form4", "13f")
LISTING_URLS = {
    "form4": (
        "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=4"
        "&company=&dateb=&owner=include&count=100&output=atom"
    ),
    "13f": (
        "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=13F"
        "&company=&dateb=&owner=include&count=100&output=atom"
    ),
}
COMPANY_BROWSE_URL = (
    "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK={cik}"
    "&type={form}&dateb=&owner={owner}&count=40"
)
USER_AGENT_ENV = "SEC_EDGAR_USER_AGENT"
REQUEST_DELAY = 0.1  # seconds
RECENT_ACCESSIONS_CAP = 500
MAX_LISTED_TRANSACTIONS = 10
MAX_LISTED_HOLDINGS = 10
CALL_ERRORS = (IngestError, httpx.HTTPError)

TRANSACTION_TYPES = {
    "P": "purchase",
    "S": "sale",
    "A": "award",
    "D": "disposition",
    "M": "exercise",
    "X": "exercise",
    "C": "conversion",
    "E": "expiration",
    "H": "holding",
    "O": "other",
    "F": "payment",
    "I": "intra-company transfer",
    "Z": "conversion of derivative",
}
TITLE_LABELS = {
    "purchase": "BUY",
    "sale": "SELL",
    "award": "AWARD",
    "disposition": "DISPOSITION",
    "exercise": "EXERCISE",
    "conversion": "CONVERSION",
}

_ACCESSION_RE = re.compile(r"(\d{10}-\d{2}-\d{6})")
_INDEX_PAGE_RE = re.compile(r"-index\.html?$", re.IGNORECASE)
_HTML_SUFFIX_RE = re.compile(r"\.htm.*$", re.IGNORECASE)
_LISTING_TITLE_RE = re.compile(r"^\s*[\w/-]+\s+-\s+(.+?)\s+\((\d{4,10})\)")


# ============================================================================
# Listing helpers
# ============================================================================

def accession_of(entry: FeedEntry) -> Optional[str]:
    """``0000320193-24-000010`` from the entry ID, title, link or summary."""
    for value in (entry.guid, entry.title, entry.link, entry.summary):
        match = _ACCESSION_RE.search(value) if value else None
        if match:
            return match.group(1)
    return None


def filing_document_url(link: Optional[str]) -> Optional[str]:
    """Full submission text for an index page, else the ``.xml`` twin of the link."""
    if not link:
        return None
    base = link.split("?", 1)[0]
    if _INDEX_PAGE_RE.search(base):
        return _INDEX_PAGE_RE.sub(".txt", base)
    return _HTML_SUFFIX_RE.sub(".xml", base)


def filer_from_title(title: Optional[str]) -> Dict[str, Optional[str]]:
    """``13F-HR - ACME CAPITAL LLC (0001234567) (Filer)`` to name and CIK."""
    match = _LISTING_TITLE_RE.match(title or "")
    if not match:
        return {"name": None, "cik": None}
    return {"name": match.group(1), "cik": match.group(2)}


def normalize_cik(value: Optional[str]) -> Optional[str]:
    text = as_str(value)
    if text is None:
        return None
    return str(int(text)) if text.isdigit() else text.upper()


# ============================================================================
# Filing XML parsing
# ============================================================================

def _named(name: str) -> Callable[[Any], bool]:
    # html.parser lowercases tags and keeps any namespace prefix
    return lambda tag: tag.name.rsplit(":", 1)[-1] == name


def _node(node: Any, *path: str) -> Any:
    for name in path:
        if node is None:
            return None
        node = node.find(_named(name))
    return node


def _field(node: Any, *path: str) -> Optional[str]:
    """Text at ``path``; EDGAR wraps most leaf values in a ``<value>`` child."""
    target = _node(node, *path)
    if target is None:
        return None
    value = target.find(_named("value"), recursive=False)
    return as_str((value or target).get_text())


def _number(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        number = float(text.replace(",", ""))
    except ValueError:
        return None
    return as_number(number)


def _flag(text: Optional[str]) -> bool:
    return (text or "").strip().lower() in ("1", "true")


def transaction_type(code: str) -> str:
    return TRANSACTION_TYPES.get(code.upper(), "unknown")


@dataclass
class Form4Transaction:
    code: str
    type: str
    shares: Optional[float]
    price_per_share: Optional[float]
    total_value: Optional[float]
    shares_owned_after: Optional[float]
    is_derivative: bool
    is_direct: bool
    date: Optional[str]


@dataclass
class Form4Filing:
    insider_name: str
    insider_title: Optional[str]
    company_name: str
    ticker: str
    cik: str
    period_of_report: Optional[str]
    is_director: bool = False
    is_officer: bool = False
    is_ten_percent_owner: bool = False
    transactions: List[Form4Transaction] = field(default_factory=list)


@dataclass
class Form13fHolding:
    name: Optional[str]
    title_of_class: Optional[str]
    cusip: Optional[str]
    shares: Optional[float]
    value: Optional[float]
    shares_type: str = "SH"


@dataclass
class Form13fFiling:
    institution_name: str
    cik: str
    report_period: Optional[str]
    total_value: Optional[float]
    holdings: List[Form13fHolding] = field(default_factory=list)


def parse_form4(text: str) -> Optional[Form4Filing]:
    """Ownership document inside a Form 4 submission; None when malformed."""
    soup = BeautifulSoup(text or "", "html.parser")
    doc = _node(soup, "ownershipdocument")
    if doc is None:
        return None

    owner = _node(doc, "reportingowner")
    relationship = _node(owner, "reportingownerrelationship")

    transactions = []
    for row_name, is_derivative in (
        ("nonderivativetransaction", False),
        ("derivativetransaction", True),
    ):
        for row in doc.find_all(_named(row_name)):
            code = _field(row, "transactioncoding", "transactioncode")
            shares = _number(_field(row, "transactionamounts", "transactionshares"))
            if not code or shares is None:
                continue
            price = _number(_field(row, "transactionamounts", "transactionpricepershare"))
            direct = _field(row, "ownershipnature", "directorindirectownership") or "D"
            transactions.append(Form4Transaction(
                code=code,
                type=transaction_type(code),
                shares=shares,
                price_per_share=price,
                total_value=shares * price if shares and price else None,
                shares_owned_after=_number(
                    _field(row, "posttransactionamounts", "sharesownedfollowingtransaction")
                ),
                is_derivative=is_derivative,
                is_direct=direct.upper() == "D",
                date=_field(row, "transactiondate"),
            ))

    company = _field(doc, "issuer", "issuername")
    ticker = _field(doc, "issuer", "issuertradingsymbol")
    cik = _field(doc, "issuer", "issuercik")
    insider = _field(owner, "reportingownerid", "rptownername")
    if not company or not ticker or not cik or not insider:
        return None

    return Form4Filing(
        insider_name=insider,
        insider_title=_field(relationship, "officertitle"),
        company_name=company,
        ticker=ticker.upper(),
        cik=cik,
        period_of_report=_field(doc, "periodofreport"),
        is_director=_flag(_field(relationship, "isdirector")),
        is_officer=_flag(_field(relationship, "isofficer")),
        is_ten_percent_owner=_flag(_field(relationship, "istenpercentowner")),
        transactions=transactions,
    )


def parse_13f(text: str, listing_title: Optional[str] = None) -> Optional[Form13fFiling]:
    """Cover page and information table of a 13F-HR submission; None when malformed."""
    soup = BeautifulSoup(text or "", "html.parser")

    holdings = []
    for row in soup.find_all(_named("infotable")):
        name = _field(row, "nameofissuer")
        cusip = _field(row, "cusip")
        if not name and not cusip:
            continue
        holdings.append(Form13fHolding(
            name=name,
            title_of_class=_field(row, "titleofclass"),
            cusip=cusip,
            shares=_number(_field(row, "shrsorprnamt", "sshprnamt")),
            value=_number(_field(row, "value")),
            shares_type=_field(row, "shrsorprnamt", "sshprnamttype") or "SH",
        ))

    filer = filer_from_title(listing_title)
    institution = _field(soup, "filingmanager", "name") or filer["name"]
    cik = _field(soup, "filerinfo", "cik") or _field(soup, "cik") or filer["cik"]
    if not institution or not cik or not holdings:
        return None

    values = [h.value for h in holdings if h.value is not None]
    return Form13fFiling(
        institution_name=institution,
        cik=cik,
        report_period=_field(soup, "periodofreport") or _field(soup, "reportcalendarorquarter"),
        total_value=sum(values) if values else None,
        holdings=sorted(holdings, key=lambda h: h.value or 0, reverse=True),
    )


# ============================================================================
# Config and cursor
# ============================================================================

@dataclass
class SecEdgarSourceConfig:
    filing_types: List[str]
    tickers: List[str] = field(default_factory=list)
    ciks: List[str] = field(default_factory=list)
    min_transaction_value: int = 0
    max_filings_per_fetch: int = 50

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SecEdgarSourceConfig":
        filing_types: List[str] = []
        for value in as_str_list(pick(config, "filing_types", "filingTypes")):
            value = value.lower()
            if value in FILING_TYPES and value not in filing_types:
                filing_types.append(value)
        if not filing_types:
            raise ConnectorConfigError(
                'SEC EDGAR source config must include "filing_types" with at least one of: '
                f"{list(FILING_TYPES)}"
            )

        min_value = as_number(pick(config, "min_transaction_value", "minTransactionValue"))
        return cls(
            filing_types=filing_types,
            tickers=[t.upper() for t in as_str_list(config.get("tickers"))],
            ciks=[normalize_cik(c) for c in as_str_list(config.get("ciks"))],
            min_transaction_value=max(0, int(min_value)) if min_value is not None else 0,
            max_filings_per_fetch=clamp_int(
                pick(config, "max_filings_per_fetch", "maxFilingsPerFetch"), 1, 100, 50
            ),
        )

    def accepts_form4(self, filing: Form4Filing) -> bool:
        if self.tickers and filing.ticker.upper() not in self.tickers:
            return False
        if self.ciks and normalize_cik(filing.cik) not in self.ciks:
            return False
        if self.min_transaction_value > 0:
            return any(
                (t.total_value or 0) >= self.min_transaction_value for t in filing.transactions
            )
        return True

    def accepts_13f(self, filing: Form13fFiling) -> bool:
        return not self.ciks or normalize_cik(filing.cik) in self.ciks


@dataclass
class FilingTypeCursor:
    last_accession: Optional[str] = None
    last_fetch_at: Optional[str] = None
    recent_accessions: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, cursor: Dict[str, Any]) -> "FilingTypeCursor":
        recent = as_str_list(cursor.get("recent_accessions"))
        last = as_str(cursor.get("last_accession"))
        if last and last not in recent:
            recent.append(last)
        return cls(
            last_accession=last,
            last_fetch_at=as_str(cursor.get("last_fetch_at")),
            recent_accessions=recent,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.last_accession:
            out["last_accession"] = self.last_accession
        if self.last_fetch_at:
            out["last_fetch_at"] = self.last_fetch_at
        if self.recent_accessions:
            out["recent_accessions"] = list(self.recent_accessions)
        return out


# ============================================================================
# Connector
# ============================================================================

def format_currency(amount: Optional[float]) -> str:
    return f"${round(amount or 0):,}"


def quarter_label(report_period: Optional[str]) -> str:
    if not report_period:
        return "Q unknown"
    try:
        parsed = date_parser.parse(report_period)
    except (ValueError, OverflowError):
        return "Q unknown"
    return f"Q{(parsed.month - 1) // 3 + 1} {parsed.year}"


class SecEdgarConnector(Connector):
    """Form 4 insider trades and 13F holdings filed with the SEC."""

    source_type = "sec_edgar"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self._client_factory = client_factory or create_client

    @staticmethod
    def _headers() -> Dict[str, str]:
        return {
            "User-Agent": first_env(USER_AGENT_ENV) or f"{USER_AGENT} (connectors/sec_edgar)",
            "Accept": "application/atom+xml, application/xml, text/xml, */*",
        }

    async def _get(self, client: httpx.AsyncClient, url: str, meta: Dict[str, Any]) -> str:
        await asyncio.sleep(REQUEST_DELAY)
        meta["requests"] += 1
        return await get_text(client, url, "SEC EDGAR", headers=self._headers())

    def _parse_filing(
        self, filing_type: str, text: str, entry: FeedEntry, config: SecEdgarSourceConfig
    ) -> Optional[Dict[str, Any]]:
        if filing_type == "form4":
            form4 = parse_form4(text)
            if form4 is None or not config.accepts_form4(form4):
                return None
            return {"cik": form4.cik, "ticker": form4.ticker, "form4_data": asdict(form4)}
        form13f = parse_13f(text, entry.title)
        if form13f is None or not config.accepts_13f(form13f):
            return None
        return {"cik": form13f.cik, "ticker": None, "form13f_data": asdict(form13f)}

    async def fetch(self, params: FetchParams, budget: Optional[RunBudget] = None) -> FetchResult:
        config = SecEdgarSourceConfig.from_config(params.config)
        max_items = min(config.max_filings_per_fetch, max(0, params.limits.max_items))

        raw_items: List[Dict[str, Any]] = []
        next_cursor: Dict[str, Any] = dict(params.cursor)
        meta: Dict[str, Any] = {"requests": 0, "filing_types": config.filing_types}
        errors: Dict[str, str] = {}

        async with self._client_factory() as client:
            for filing_type in config.filing_types:
                if len(raw_items) >= max_items:
                    break
                section = FilingTypeCursor.from_dict(as_dict(params.cursor.get(filing_type)))

                try:
                    listing = await self._get(client, LISTING_URLS[filing_type], meta)
                except CALL_ERRORS as e:
                    logger.warning(f"sec_edgar: {filing_type} listing failed: {e}")
                    errors[filing_type] = str(e)
                    continue

                seen = set(section.recent_accessions)
                fresh: List[str] = []
                for entry in parse_feed(listing).entries:
                    if len(raw_items) >= max_items:
                        break
                    accession = accession_of(entry)
                    if not accession or accession in seen or accession in fresh:
                        continue
                    document_url = filing_document_url(entry.link)
                    if not document_url:
                        continue

                    try:
                        text = await self._get(client, document_url, meta)
                    except CALL_ERRORS as e:
                        logger.warning(f"sec_edgar: skipping {accession}, download failed: {e}")
                        continue

                    fresh.append(accession)
                    parsed = self._parse_filing(filing_type, text, entry, config)
                    if parsed is None:
                        continue
                    raw_items.append({
                        "filing_type": filing_type,
                        "accession_number": accession,
                        "filing_date": (
                            entry.published.date().isoformat() if entry.published else None
                        ),
                        "filing_url": entry.link,
                        **parsed,
                    })

                next_cursor[filing_type] = FilingTypeCursor(
                    last_accession=fresh[0] if fresh else section.last_accession,
                    last_fetch_at=params.window_end,
                    recent_accessions=merge_recent_ids(
                        fresh, section.recent_accessions, RECENT_ACCESSIONS_CAP
                    ),
                ).to_dict()

        logger.info(
            f"sec_edgar: {len(raw_items)} filings ({', '.join(config.filing_types)}, "
            f"{meta['requests']} requests)"
        )

        meta["items_fetched"] = len(raw_items)
        if errors:
            meta["errors"] = errors
        return FetchResult(raw_items=raw_items, next_cursor=next_cursor, meta=meta)

    # ------------------------------------------------------------------
    # Normalize
    # ------------------------------------------------------------------

    def normalize(self, raw: Dict[str, Any], params: FetchParams) -> ContentItemDraft:
        filing_type = as_str(raw.get("filing_type"))
        if filing_type == "form4":
            form4 = as_dict(raw.get("form4_data"))
            if not form4.get("company_name") or not form4.get("ticker"):
                raise NormalizeError("Malformed Form 4: missing company info")
            return self._normalize_form4(raw, form4)
        if filing_type == "13f":
            form13f = as_dict(raw.get("form13f_data"))
            if not form13f.get("institution_name"):
                raise NormalizeError("Malformed 13F: missing institution info")
            return self._normalize_13f(raw, form13f)
        raise NormalizeError(f"Unknown SEC EDGAR filing type: {filing_type}")

    def _normalize_form4(self, raw: Dict[str, Any], form4: Dict[str, Any]) -> ContentItemDraft:
        accession = as_str(raw.get("accession_number"))
        filing_date = as_str(raw.get("filing_date")) or as_str(form4.get("period_of_report"))
        insider = form4.get("insider_name")
        insider_title = form4.get("insider_title")
        company = form4.get("company_name")
        ticker = form4.get("ticker")
        cik = form4.get("cik")
        transactions = [as_dict(t) for t in form4.get("transactions") or []]

        primary = None
        for txn in transactions:
            if primary is None or (txn.get("total_value") or 0) > (primary.get("total_value") or 0):
                primary = txn
        label = "TRANSACTION"
        if primary:
            label = TITLE_LABELS.get(primary["type"], primary["type"].upper())
        title = (
            f"[{label}] {insider} - {company} - "
            f"{format_currency(primary.get('total_value') if primary else None)}"
        )

        body = f"Insider {insider}"
        if insider_title:
            body += f" ({insider_title})"
        body += f" of {company} ({ticker})"
        if transactions:
            lines = []
            for txn in transactions[:MAX_LISTED_TRANSACTIONS]:
                shares = txn.get("shares")
                price = txn.get("price_per_share")
                value = txn.get("total_value")
                line = f"- {txn['type'].capitalize()}: "
                line += f"{round(shares):,} shares" if shares is not None else "unknown shares"
                if price is not None:
                    line += f" at ${price:.2f}/share"
                if value is not None:
                    line += f" ({format_currency(value)})"
                lines.append(line)
            body += "\n\nTransactions:\n" + "\n".join(lines)

        metadata: Dict[str, Any] = {
            "filing_type": "form4",
            "ticker": ticker,
            "cik": cik,
            "insider_name": insider,
            "insider_title": insider_title,
            "is_director": bool(form4.get("is_director")),
            "is_officer": bool(form4.get("is_officer")),
            "is_ten_percent_owner": bool(form4.get("is_ten_percent_owner")),
        }
        if primary:
            metadata.update({
                "transaction_type": primary.get("type"),
                "transaction_code": primary.get("code"),
                "shares": primary.get("shares"),
                "price_per_share": primary.get("price_per_share"),
                "total_value": primary.get("total_value"),
                "shares_owned_after": primary.get("shares_owned_after"),
                "is_direct": primary.get("is_direct"),
                "is_derivative": primary.get("is_derivative"),
            })
        metadata.update({
            "transaction_count": len(transactions),
            "filing_date": filing_date,
            "accession_number": accession,
        })

        return ContentItemDraft(
            title=title,
            body_text=body,
            canonical_url=as_str(raw.get("filing_url")) or (
                COMPANY_BROWSE_URL.format(cik=cik, form="4", owner="include") if cik else None
            ),
            source_type=self.source_type,
            external_id=f"form4_{accession}" if accession else None,
            published_at=parse_iso_datetime(filing_date),
            author=insider,
            metadata=metadata,
            raw={
                "filing_type": "form4",
                "accession_number": accession,
                "filing_date": filing_date,
                "insider_name": insider,
                "ticker": ticker,
                "cik": cik,
                "transaction_count": len(transactions),
            },
        )

    def _normalize_13f(self, raw: Dict[str, Any], form13f: Dict[str, Any]) -> ContentItemDraft:
        accession = as_str(raw.get("accession_number"))
        filing_date = as_str(raw.get("filing_date"))
        institution = form13f.get("institution_name")
        cik = form13f.get("cik")
        report_period = form13f.get("report_period")
        total_value = form13f.get("total_value")
        holdings = [as_dict(h) for h in form13f.get("holdings") or []]
        top = holdings[:MAX_LISTED_HOLDINGS]
        quarter = quarter_label(report_period)

        body = f"{institution} quarterly institutional holdings filing ({quarter})\n\n"
        if top:
            lines = []
            for holding in top:
                name = holding.get("name") or holding.get("cusip") or "Unknown"
                shares = holding.get("shares")
                line = f"- {name}: "
                line += f"{round(shares):,} shares" if shares is not None else "position"
                if holding.get("value") is not None:
                    line += f" ({format_currency(holding['value'])})"
                lines.append(line)
            body += "Top Holdings:\n" + "\n".join(lines) + "\n"
        body += f"\nTotal holdings: {len(holdings)} positions"
        if total_value is not None:
            body += f" ({format_currency(total_value)} total value)"

        metadata: Dict[str, Any] = {
            "filing_type": "13f",
            "institution_name": institution,
            "cik": cik,
            "report_period": report_period,
            "total_value": total_value,
            "holdings_count": len(holdings),
        }
        if top:
            metadata["top_holdings"] = [
                {
                    "name": h.get("name"),
                    "cusip": h.get("cusip"),
                    "shares": h.get("shares"),
                    "value": h.get("value"),
                }
                for h in top
            ]
        metadata.update({"filing_date": filing_date, "accession_number": accession})

        return ContentItemDraft(
            title=f"[13F] {institution} - {quarter} Holdings",
            body_text=body,
            canonical_url=as_str(raw.get("filing_url")) or (
                COMPANY_BROWSE_URL.format(cik=cik, form="13F", owner="exclude") if cik else None
            ),
            source_type=self.source_type,
            external_id=f"13f_{accession}" if accession else None,
            published_at=parse_iso_datetime(filing_date),
            author=institution,
            metadata=metadata,
            raw={
                "filing_type": "13f",
                "accession_number": accession,
                "filing_date": filing_date,
                "institution_name": institution,
                "cik": cik,
                "holdings_count": len(holdings),
            },
        )
