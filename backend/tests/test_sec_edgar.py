"""
Unit Tests for the SEC EDGAR Connector (Form 4, 13F)

Tests:
- Listing helpers: accession numbers, document URLs, filer titles, quarters
- Form 4 ownership and 13F information-table parsing
- Config validation and filters (tickers, CIKs, minimum transaction value)
- Cursor: recent accession window, retry of failed downloads, failed listings
- Normalization of insider trades and holdings reports

Usage:
    cd backend && pytest tests/test_sec_edgar.py -v
"""

import asyncio
import sys
import os
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx
import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import radar_ingest.retry
import radar_ingest.connectors.sec_edgar as sec_edgar
from radar_ingest.connectors.sec_edgar import (
    SecEdgarConnector,
    SecEdgarSourceConfig,
    accession_of,
    filer_from_title,
    filing_document_url,
    parse_13f,
    parse_form4,
    quarter_label,
)
from radar_ingest.exceptions import ConnectorConfigError, NormalizeError
from radar_ingest.feed_parser import FeedEntry
from radar_ingest.models import FetchLimits, FetchParams


# ============================================================================
# FIXTURES AND TEST DATA FACTORIES
# ============================================================================

ACC_1 = "0001214128-26-000011"
ACC_2 = "0001214128-26-000012"
ACC_13F = "0001067983-26-000003"


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(radar_ingest.retry, "INITIAL_BACKOFF", 0)
    monkeypatch.setattr(sec_edgar, "REQUEST_DELAY", 0)
    monkeypatch.delenv("SEC_EDGAR_USER_AGENT", raising=False)


def make_params(
    config: Dict[str, Any] = None,
    cursor: Dict[str, Any] = None,
    max_items: int = 50,
) -> FetchParams:
    """Factory function to create fetch params."""
    return FetchParams(
        user_id="user-1",
        source_id="source-1",
        source_type="sec_edgar",
        config=config if config is not None else {"filing_types": ["form4"]},
        cursor=cursor or {},
        limits=FetchLimits(max_items=max_items),
        window_start="2026-03-01T00:00:00Z",
        window_end="2026-03-02T00:00:00Z",
    )


def make_entry(**fields) -> FeedEntry:
    """Factory function to create a parsed listing entry."""
    base = dict(
        guid=None, link=None, title=None, author=None,
        published=None, content_html=None, summary=None,
    )
    base.update(fields)
    return FeedEntry(**base)


def make_listing_entry(accession: str, title: str) -> str:
    """Factory function to create one EDGAR "latest filings" Atom entry."""
    folder = accession.replace("-", "")
    return (
        "<entry>"
        f"<title>{title}</title>"
        f'<link rel="alternate" type="text/html" href="https://www.sec.gov/Archives/edgar/data/320193/{folder}/{accession}-index.htm"/>'
        f"<summary type=\"html\">&lt;b&gt;Filed:&lt;/b&gt; 2026-03-01 &lt;b&gt;AccNo:&lt;/b&gt; {accession}</summary>"
        "<updated>2026-03-01T16:30:00-05:00</updated>"
        f"<id>urn:tag:sec.gov,2008:accession-number={accession}</id>"
        "</entry>"
    )


def make_listing(entries: List[str]) -> str:
    return (
        '<?xml version="1.0" encoding="ISO-8859-1" ?>'
        '<feed xmlns="http://www.w3.org/2005/Atom">'
        "<title>Latest Filings - Sun, 01 Mar 2026 17:00:00 EST</title>"
        '<link rel="self" href="https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent"/>'
        "<id>https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent</id>"
        "<updated>2026-03-01T17:00:00-05:00</updated>"
        + "".join(entries)
        + "</feed>"
    )


def make_form4(
    ticker: str = "AAPL",
    company: str = "Apple Inc.",
    code: str = "P",
    shares: str = "1000",
    price: str = "150.00",
    derivative_code: str = None,
) -> str:
    """Factory function to create a Form 4 full submission text."""
    derivative = ""
    if derivative_code:
        derivative = (
            "<derivativeTable><derivativeTransaction>"
            "<securityTitle><value>Stock Option</value></securityTitle>"
            "<transactionDate><value>2026-02-26</value></transactionDate>"
            f"<transactionCoding><transactionFormType>4</transactionFormType><transactionCode>{derivative_code}</transactionCode></transactionCoding>"
            "<transactionAmounts><transactionShares><value>2000</value></transactionShares>"
            "<transactionPricePerShare><value>0</value></transactionPricePerShare></transactionAmounts>"
            "<ownershipNature><directOrIndirectOwnership><value>I</value></directOrIndirectOwnership></ownershipNature>"
            "</derivativeTransaction></derivativeTable>"
        )
    return f"""<SEC-DOCUMENT>{ACC_1}.txt : 20260301
<SEC-HEADER>{ACC_1}.hdr.sgml : 20260301
ACCESSION NUMBER:		{ACC_1}
</SEC-HEADER>
<DOCUMENT>
<TYPE>4
<SEQUENCE>1
<TEXT>
<XML>
<?xml version="1.0"?>
<ownershipDocument>
<schemaVersion>X0508</schemaVersion>
<documentType>4</documentType>
<periodOfReport>2026-02-27</periodOfReport>
<issuer><issuerCik>0000320193</issuerCik><issuerName>{company}</issuerName><issuerTradingSymbol>{ticker}</issuerTradingSymbol></issuer>
<reportingOwner>
<reportingOwnerId><rptOwnerCik>0001214128</rptOwnerCik><rptOwnerName>Doe Jane</rptOwnerName></reportingOwnerId>
<reportingOwnerRelationship><isDirector>0</isDirector><isOfficer>1</isOfficer><isTenPercentOwner>false</isTenPercentOwner><officerTitle>Chief Financial Officer</officerTitle></reportingOwnerRelationship>
</reportingOwner>
<nonDerivativeTable>
<nonDerivativeTransaction>
<securityTitle><value>Common Stock</value></securityTitle>
<transactionDate><value>2026-02-27</value></transactionDate>
<transactionCoding><transactionFormType>4</transactionFormType><transactionCode>{code}</transactionCode><equitySwapInvolved>0</equitySwapInvolved></transactionCoding>
<transactionAmounts><transactionShares><value>{shares}</value></transactionShares><transactionPricePerShare><value>{price}</value></transactionPricePerShare><transactionAcquiredDisposedCode><value>A</value></transactionAcquiredDisposedCode></transactionAmounts>
<postTransactionAmounts><sharesOwnedFollowingTransaction><value>5000</value></sharesOwnedFollowingTransaction></postTransactionAmounts>
<ownershipNature><directOrIndirectOwnership><value>D</value></directOrIndirectOwnership></ownershipNature>
</nonDerivativeTransaction>
<nonDerivativeHolding>
<securityTitle><value>Common Stock</value></securityTitle>
<postTransactionAmounts><sharesOwnedFollowingTransaction><value>300</value></sharesOwnedFollowingTransaction></postTransactionAmounts>
</nonDerivativeHolding>
</nonDerivativeTable>
{derivative}
</ownershipDocument>
</XML>
</TEXT>
</DOCUMENT>
</SEC-DOCUMENT>
"""


def make_info_row(name: str, cusip: str, value: str, shares: str, prefix: str = "") -> str:
    """Factory function to create one 13F information-table row."""
    p = prefix
    return (
        f"<{p}infoTable><{p}nameOfIssuer>{name}</{p}nameOfIssuer>"
        f"<{p}titleOfClass>COM</{p}titleOfClass><{p}cusip>{cusip}</{p}cusip>"
        f"<{p}value>{value}</{p}value>"
        f"<{p}shrsOrPrnAmt><{p}sshPrnamt>{shares}</{p}sshPrnamt>"
        f"<{p}sshPrnamtType>SH</{p}sshPrnamtType></{p}shrsOrPrnAmt>"
        f"</{p}infoTable>"
    )


def make_13f() -> str:
    """Factory function to create a 13F-HR full submission text."""
    rows = (
        make_info_row("APPLE INC", "037833100", "1000000", "5000")
        + make_info_row("NVIDIA CORP", "67066G104", "3000000", "20000")
    )
    return f"""<SEC-DOCUMENT>{ACC_13F}.txt : 20260301
<DOCUMENT>
<TYPE>13F-HR
<TEXT>
<XML>
<?xml version="1.0" encoding="UTF-8"?>
<edgarSubmission xmlns="http://www.sec.gov/edgar/thirteenffiler">
<headerData><submissionType>13F-HR</submissionType>
<filerInfo><filer><credentials><cik>0001067983</cik><ccc>XXXXXXXX</ccc></credentials></filer>
<periodOfReport>12-31-2025</periodOfReport></filerInfo></headerData>
<formData><coverPage><reportCalendarOrQuarter>12-31-2025</reportCalendarOrQuarter>
<filingManager><name>Acme Capital LLC</name></filingManager></coverPage></formData>
</edgarSubmission>
</XML>
</TEXT>
</DOCUMENT>
<DOCUMENT>
<TYPE>INFORMATION TABLE
<TEXT>
<XML>
<informationTable xmlns="http://www.sec.gov/edgar/document/thirteenf/informationtable">
{rows}
</informationTable>
</XML>
</TEXT>
</DOCUMENT>
</SEC-DOCUMENT>
"""


FORM4_LISTING = make_listing([
    make_listing_entry(ACC_1, "4 - Doe Jane (0001214128) (Reporting)"),
    make_listing_entry(ACC_1, "4 - Apple Inc. (0000320193) (Issuer)"),
    make_listing_entry(ACC_2, "4 - Roe Richard (0001214129) (Reporting)"),
])

F13_LISTING = make_listing([
    make_listing_entry(ACC_13F, "13F-HR - ACME CAPITAL LLC (0001067983) (Filer)"),
])


def make_handler(documents: Dict[str, Any], listings: Dict[str, Any] = None):
    """Route listing and document requests; values are markup or a status code."""
    listings = listings if listings is not None else {"4": FORM4_LISTING, "13F": F13_LISTING}
    requested: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request)
        url = str(request.url)
        if "browse-edgar" in url:
            body = listings.get(request.url.params.get("type"), 404)
        else:
            body = next(
                (doc for acc, doc in documents.items() if url.endswith(f"{acc}.txt")), 404
            )
        if isinstance(body, int):
            return httpx.Response(body, text="not found")
        return httpx.Response(200, text=body)

    return handler, requested


def make_connector(handler) -> SecEdgarConnector:
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SecEdgarConnector(client_factory=factory)


def document_requests(requested: List[httpx.Request]) -> List[str]:
    return [str(r.url).rsplit("/", 1)[-1] for r in requested if str(r.url).endswith(".txt")]


# ============================================================================
# LISTING HELPER TESTS
# ============================================================================

class TestListingHelpers:
    """Tests for Atom listing helpers."""

    def test_accession_from_entry_id(self):
        entry = make_entry(guid=f"urn:tag:sec.gov,2008:accession-number={ACC_1}")
        assert accession_of(entry) == ACC_1

    def test_accession_from_link_when_id_missing(self):
        entry = make_entry(link=f"https://www.sec.gov/Archives/edgar/data/1/x/{ACC_2}-index.htm")
        assert accession_of(entry) == ACC_2
        assert accession_of(make_entry(title="4 - Someone")) is None

    def test_index_page_maps_to_full_submission(self):
        link = f"https://www.sec.gov/Archives/edgar/data/320193/000121412826000011/{ACC_1}-index.htm"
        assert filing_document_url(link) == link.replace("-index.htm", ".txt")
        assert filing_document_url(link + "l?x=1") == link.replace("-index.htm", ".txt")

    def test_html_document_maps_to_xml(self):
        assert filing_document_url("https://www.sec.gov/doc/form4.htm?x=1") == "https://www.sec.gov/doc/form4.xml"
        assert filing_document_url(None) is None

    def test_filer_from_listing_title(self):
        assert filer_from_title("13F-HR - ACME CAPITAL LLC (0001067983) (Filer)") == {
            "name": "ACME CAPITAL LLC",
            "cik": "0001067983",
        }
        assert filer_from_title("garbage") == {"name": None, "cik": None}

    def test_quarter_label(self):
        assert quarter_label("12-31-2025") == "Q4 2025"
        assert quarter_label("2026-03-31") == "Q1 2026"
        assert quarter_label("not a date") == "Q unknown"
        assert quarter_label(None) == "Q unknown"


# ============================================================================
# FILING PARSER TESTS
# ============================================================================

class TestParseForm4:
    """Tests for the Form 4 ownership document parser."""

    def test_reads_issuer_owner_and_transaction(self):
        filing = parse_form4(make_form4())

        assert filing.company_name == "Apple Inc."
        assert filing.ticker == "AAPL"
        assert filing.cik == "0000320193"
        assert filing.insider_name == "Doe Jane"
        assert filing.insider_title == "Chief Financial Officer"
        assert filing.is_officer is True
        assert filing.is_director is False
        assert filing.is_ten_percent_owner is False
        assert filing.period_of_report == "2026-02-27"

        assert len(filing.transactions) == 1
        txn = filing.transactions[0]
        assert txn.code == "P"
        assert txn.type == "purchase"
        assert txn.shares == 1000
        assert txn.price_per_share == 150
        assert txn.total_value == 150000
        assert txn.shares_owned_after == 5000
        assert txn.is_direct is True
        assert txn.is_derivative is False
        assert txn.date == "2026-02-27"

    def test_derivative_rows_are_marked(self):
        filing = parse_form4(make_form4(derivative_code="M"))

        assert [t.is_derivative for t in filing.transactions] == [False, True]
        option = filing.transactions[1]
        assert option.type == "exercise"
        assert option.total_value is None
        assert option.is_direct is False

    def test_missing_issuer_is_malformed(self):
        assert parse_form4(make_form4(ticker="")) is None
        assert parse_form4("<html><body>Not found</body></html>") is None
        assert parse_form4("") is None


class TestParse13f:
    """Tests for the 13F cover page and information table parser."""

    def test_reads_manager_and_holdings_by_value(self):
        filing = parse_13f(make_13f())

        assert filing.institution_name == "Acme Capital LLC"
        assert filing.cik == "0001067983"
        assert filing.report_period == "12-31-2025"
        assert filing.total_value == 4000000
        assert [h.name for h in filing.holdings] == ["NVIDIA CORP", "APPLE INC"]
        assert filing.holdings[0].cusip == "67066G104"
        assert filing.holdings[0].shares == 20000
        assert filing.holdings[0].shares_type == "SH"

    def test_prefixed_rows_and_listing_title_fallback(self):
        """Namespace-prefixed tables parse; the filer comes from the listing title."""
        text = (
            '<ns1:informationTable xmlns:ns1="http://www.sec.gov/edgar/document/thirteenf/informationtable">'
            + make_info_row("MICROSOFT CORP", "594918104", "2500", "10", prefix="ns1:")
            + "</ns1:informationTable>"
        )

        filing = parse_13f(text, "13F-HR - ACME CAPITAL LLC (0001067983) (Filer)")

        assert filing.institution_name == "ACME CAPITAL LLC"
        assert filing.cik == "0001067983"
        assert filing.holdings[0].name == "MICROSOFT CORP"
        assert filing.holdings[0].value == 2500

    def test_no_holdings_is_malformed(self):
        assert parse_13f("<edgarSubmission></edgarSubmission>", "13F-HR - X (0000000001) (Filer)") is None


# ============================================================================
# CONFIG TESTS
# ============================================================================

class TestSecEdgarConfig:
    """Tests for SEC EDGAR config validation."""

    def test_filing_types_required(self):
        with pytest.raises(ConnectorConfigError):
            SecEdgarSourceConfig.from_config({})
        with pytest.raises(ConnectorConfigError):
            SecEdgarSourceConfig.from_config({"filing_types": ["10-K"]})

    def test_camel_case_keys_and_normalization(self):
        config = SecEdgarSourceConfig.from_config({
            "filingTypes": ["13F", "form4", "form4"],
            "tickers": ["aapl"],
            "ciks": ["0000320193"],
            "minTransactionValue": 250000.7,
            "maxFilingsPerFetch": 500,
        })

        assert config.filing_types == ["13f", "form4"]
        assert config.tickers == ["AAPL"]
        assert config.ciks == ["320193"]
        assert config.min_transaction_value == 250000
        assert config.max_filings_per_fetch == 100

    def test_invalid_config_fails_before_any_request(self):
        handler, requested = make_handler({})
        connector = make_connector(handler)

        with pytest.raises(ConnectorConfigError):
            asyncio.run(connector.fetch(make_params(config={"filing_types": []})))
        assert requested == []


# ============================================================================
# FETCH TESTS
# ============================================================================

class TestSecEdgarFetch:
    """Tests for listing, download, filtering and cursor handling."""

    def test_fetches_form4_filings_and_advances_cursor(self):
        handler, requested = make_handler({ACC_1: make_form4(), ACC_2: make_form4(ticker="MSFT", company="Microsoft")})
        connector = make_connector(handler)

        result = asyncio.run(connector.fetch(make_params()))

        # the issuer entry repeats ACC_1 and is downloaded once
        assert document_requests(requested) == [f"{ACC_1}.txt", f"{ACC_2}.txt"]
        assert [r["accession_number"] for r in result.raw_items] == [ACC_1, ACC_2]
        first = result.raw_items[0]
        assert first["filing_type"] == "form4"
        assert first["ticker"] == "AAPL"
        assert first["filing_date"] == "2026-03-01"
        assert first["filing_url"].endswith(f"{ACC_1}-index.htm")

        assert result.next_cursor == {
            "form4": {
                "last_accession": ACC_1,
                "last_fetch_at": "2026-03-02T00:00:00Z",
                "recent_accessions": [ACC_1, ACC_2],
            }
        }
        assert result.meta["requests"] == 3
        assert result.meta["items_fetched"] == 2

    def test_recent_accessions_are_not_downloaded_again(self):
        handler, requested = make_handler({ACC_1: make_form4(), ACC_2: make_form4()})
        connector = make_connector(handler)
        cursor = {"form4": {"last_accession": ACC_1, "recent_accessions": [ACC_1]}}

        result = asyncio.run(connector.fetch(make_params(cursor=cursor)))

        assert document_requests(requested) == [f"{ACC_2}.txt"]
        assert [r["accession_number"] for r in result.raw_items] == [ACC_2]
        assert result.next_cursor["form4"]["last_accession"] == ACC_2
        assert result.next_cursor["form4"]["recent_accessions"] == [ACC_2, ACC_1]

    def test_filtered_filings_are_remembered(self):
        handler, requested = make_handler({
            ACC_1: make_form4(),
            ACC_2: make_form4(ticker="MSFT", company="Microsoft", price="400.00"),
        })
        connector = make_connector(handler)
        params = make_params(config={"filing_types": ["form4"], "tickers": ["msft"]})

        result = asyncio.run(connector.fetch(params))

        assert [r["ticker"] for r in result.raw_items] == ["MSFT"]
        assert result.next_cursor["form4"]["recent_accessions"] == [ACC_1, ACC_2]

    def test_minimum_transaction_value(self):
        handler, _ = make_handler({
            ACC_1: make_form4(),
            ACC_2: make_form4(ticker="MSFT", company="Microsoft", price="400.00"),
        })
        connector = make_connector(handler)
        params = make_params(config={"filing_types": ["form4"], "min_transaction_value": 200000})

        result = asyncio.run(connector.fetch(params))

        assert [r["accession_number"] for r in result.raw_items] == [ACC_2]

    def test_failed_download_is_retried_next_run(self):
        handler, requested = make_handler({ACC_2: make_form4()})
        connector = make_connector(handler)

        result = asyncio.run(connector.fetch(make_params()))

        assert [r["accession_number"] for r in result.raw_items] == [ACC_2]
        assert result.next_cursor["form4"]["recent_accessions"] == [ACC_2]
        assert ACC_1 not in result.next_cursor["form4"]["recent_accessions"]

    def test_failed_listing_keeps_cursor_and_continues(self):
        handler, _ = make_handler({ACC_13F: make_13f()}, listings={"13F": F13_LISTING})
        connector = make_connector(handler)
        cursor = {"form4": {"last_accession": ACC_1, "recent_accessions": [ACC_1]}}
        params = make_params(config={"filing_types": ["form4", "13f"]}, cursor=cursor)

        result = asyncio.run(connector.fetch(params))

        assert "form4" in result.meta["errors"]
        assert result.next_cursor["form4"] == cursor["form4"]
        assert [r["filing_type"] for r in result.raw_items] == ["13f"]
        assert result.raw_items[0]["cik"] == "0001067983"
        assert result.next_cursor["13f"]["recent_accessions"] == [ACC_13F]

    def test_max_items_caps_downloads(self):
        handler, requested = make_handler({ACC_1: make_form4(), ACC_2: make_form4()})
        connector = make_connector(handler)

        result = asyncio.run(connector.fetch(make_params(max_items=1)))

        assert len(result.raw_items) == 1
        assert document_requests(requested) == [f"{ACC_1}.txt"]

    def test_user_agent_override(self, monkeypatch):
        monkeypatch.setenv("SEC_EDGAR_USER_AGENT", "Acme Research ops@acme.test")
        handler, requested = make_handler({ACC_1: make_form4(), ACC_2: make_form4()})
        connector = make_connector(handler)

        asyncio.run(connector.fetch(make_params()))

        assert {r.headers["User-Agent"] for r in requested} == {"Acme Research ops@acme.test"}

    def test_default_user_agent_names_the_connector(self):
        handler, requested = make_handler({ACC_1: make_form4(), ACC_2: make_form4()})
        connector = make_connector(handler)

        asyncio.run(connector.fetch(make_params()))

        assert requested[0].headers["User-Agent"].endswith("(connectors/sec_edgar)")


# ============================================================================
# NORMALIZE TESTS
# ============================================================================

def fetch_first(documents: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    handler, _ = make_handler(documents)
    connector = make_connector(handler)
    return asyncio.run(connector.fetch(make_params(config=config, max_items=1))).raw_items[0]


class TestSecEdgarNormalize:
    """Tests for Form 4 and 13F normalization."""

    def test_form4_draft(self):
        raw = fetch_first({ACC_1: make_form4()}, {"filing_types": ["form4"]})

        draft = SecEdgarConnector().normalize(raw, make_params())

        assert draft.title == "[BUY] Doe Jane - Apple Inc. - $150,000"
        assert draft.external_id == f"form4_{ACC_1}"
        assert draft.source_type == "sec_edgar"
        assert draft.author == "Doe Jane"
        assert draft.published_at == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert draft.canonical_url.endswith(f"{ACC_1}-index.htm")
        assert draft.body_text.startswith(
            "Insider Doe Jane (Chief Financial Officer) of Apple Inc. (AAPL)"
        )
        assert "- Purchase: 1,000 shares at $150.00/share ($150,000)" in draft.body_text
        assert draft.metadata["ticker"] == "AAPL"
        assert draft.metadata["transaction_type"] == "purchase"
        assert draft.metadata["total_value"] == 150000
        assert draft.metadata["is_officer"] is True
        assert draft.metadata["transaction_count"] == 1
        assert draft.metadata["accession_number"] == ACC_1

    def test_13f_draft(self):
        raw = fetch_first({ACC_13F: make_13f()}, {"filing_types": ["13f"]})

        draft = SecEdgarConnector().normalize(raw, make_params())

        assert draft.title == "[13F] Acme Capital LLC - Q4 2025 Holdings"
        assert draft.external_id == f"13f_{ACC_13F}"
        assert draft.author == "Acme Capital LLC"
        lines = draft.body_text.split("\n")
        assert lines[0] == "Acme Capital LLC quarterly institutional holdings filing (Q4 2025)"
        assert lines[3] == "- NVIDIA CORP: 20,000 shares ($3,000,000)"
        assert draft.body_text.endswith("Total holdings: 2 positions ($4,000,000 total value)")
        assert draft.metadata["holdings_count"] == 2
        assert draft.metadata["top_holdings"][0]["cusip"] == "67066G104"

    def test_browse_url_when_filing_link_missing(self):
        raw = fetch_first({ACC_1: make_form4()}, {"filing_types": ["form4"]})
        raw["filing_url"] = None

        draft = SecEdgarConnector().normalize(raw, make_params())

        assert "CIK=0000320193" in draft.canonical_url
        assert "type=4" in draft.canonical_url

    def test_malformed_items_raise(self):
        connector = SecEdgarConnector()
        with pytest.raises(NormalizeError):
            connector.normalize({"filing_type": "form4", "form4_data": {}}, make_params())
        with pytest.raises(NormalizeError):
            connector.normalize({"filing_type": "13f", "form13f_data": {}}, make_params())
        with pytest.raises(NormalizeError):
            connector.normalize({"filing_type": "10k"}, make_params())
