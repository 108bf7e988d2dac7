"""Tests for the SEC EDGAR connector and its XML parsers."""

from __future__ import annotations

import pytest

from conftest import make_params, text_response
from radar.connectors.errors import ConfigError, MalformedItemError, ProviderHTTPError
from radar.connectors.sec_edgar import FEED_URLS, SecEdgarConnector, SecEdgarSourceConfig
from radar.connectors.sec_edgar_parse import (
    extract_accession,
    filing_xml_url,
    parse_13f_xml,
    parse_browse_feed,
    parse_form4_xml,
    transaction_type,
)

FORM4_ACC = "0001197647-25-000001"
FORM4_LINK = f"https://www.sec.gov/Archives/edgar/data/1045810/000119764725000001/{FORM4_ACC}-index.htm"
F13_ACC = "0000950123-25-000100"
F13_LINK = f"https://www.sec.gov/Archives/edgar/data/1067983/000095012325000100/{F13_ACC}-index.htm"


def browse_feed(*entries):
    body = "".join(
        f"""
  <entry>
    <title>{title}</title>
    <link rel="alternate" type="text/html" href="{link}"/>
    <updated>2025-01-06T16:05:12-05:00</updated>
    <category scheme="https://www.sec.gov/" label="form type" term="4"/>
    <id>urn:tag:sec.gov,2008:accession-number={acc}</id>
  </entry>"""
        for title, link, acc in entries
    )
    return f"""<?xml version="1.0" encoding="ISO-8859-1"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Latest Filings</title>
  <updated>2025-01-06T16:10:00-05:00</updated>{body}
</feed>
"""


FORM4_FEED = browse_feed(("4 - HUANG JEN HSUN (0001197647) (Reporting)", FORM4_LINK, FORM4_ACC))
F13_FEED = browse_feed(("13F-HR - BERKSHIRE HATHAWAY INC (0001067983) (Filer)", F13_LINK, F13_ACC))

FORM4_XML = """<?xml version="1.0"?>
<ownershipDocument>
  <schemaVersion>X0508</schemaVersion>
  <documentType>4</documentType>
  <periodOfReport>2025-01-03</periodOfReport>
  <issuer>
    <issuerCik>0001045810</issuerCik>
    <issuerName>NVIDIA CORP</issuerName>
    <issuerTradingSymbol>NVDA</issuerTradingSymbol>
  </issuer>
  <reportingOwner>
    <reportingOwnerId>
      <rptOwnerCik>0001197647</rptOwnerCik>
      <rptOwnerName>HUANG JEN HSUN</rptOwnerName>
    </reportingOwnerId>
    <reportingOwnerRelationship>
      <isDirector>1</isDirector>
      <isOfficer>1</isOfficer>
      <isTenPercentOwner>0</isTenPercentOwner>
      <officerTitle>President and CEO</officerTitle>
    </reportingOwnerRelationship>
  </reportingOwner>
  <nonDerivativeTable>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2025-01-03</value></transactionDate>
      <transactionCoding>
        <transactionFormType>4</transactionFormType>
        <transactionCode>S</transactionCode>
      </transactionCoding>
      <transactionAmounts>
        <transactionShares><value>1000</value></transactionShares>
        <transactionPricePerShare><value>141</value></transactionPricePerShare>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
      <postTransactionAmounts>
        <sharesOwnedFollowingTransaction><value>75010000</value></sharesOwnedFollowingTransaction>
      </postTransactionAmounts>
      <ownershipNature><directOrIndirectOwnership><value>D</value></directOrIndirectOwnership></ownershipNature>
    </nonDerivativeTransaction>
    <nonDerivativeTransaction>
      <securityTitle><value>Common Stock</value></securityTitle>
      <transactionDate><value>2025-01-03</value></transactionDate>
      <transactionCoding>
        <transactionFormType>4</transactionFormType>
        <transactionCode>S</transactionCode>
      </transactionCoding>
      <transactionAmounts>
        <transactionShares><value>10000</value></transactionShares>
        <transactionPricePerShare><value>140.50</value></transactionPricePerShare>
        <transactionAcquiredDisposedCode><value>D</value></transactionAcquiredDisposedCode>
      </transactionAmounts>
      <postTransactionAmounts>
        <sharesOwnedFollowingTransaction><value>75000000</value></sharesOwnedFollowingTransaction>
      </postTransactionAmounts>
      <ownershipNature><directOrIndirectOwnership><value>I</value></directOrIndirectOwnership></ownershipNature>
    </nonDerivativeTransaction>
  </nonDerivativeTable>
</ownershipDocument>
"""

F13_XML = """<?xml version="1.0"?>
<edgarSubmission>
  <formData>
    <coverPage>
      <reportCalendarOrQuarter>09-30-2024</reportCalendarOrQuarter>
      <filingManager><name>Berkshire Hathaway Inc</name></filingManager>
    </coverPage>
  </formData>
  <informationTable>
    <infoTable>
      <nameOfIssuer>APPLE INC</nameOfIssuer>
      <titleOfClass>COM</titleOfClass>
      <value>69900000</value>
      <shrsOrPrnAmt><sshPrnamt>300000000</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
    </infoTable>
    <infoTable>
      <nameOfIssuer>BANK AMER CORP</nameOfIssuer>
      <titleOfClass>COM</titleOfClass>
      <value>31700000</value>
      <shrsOrPrnAmt><sshPrnamt>800000000</sshPrnamt><sshPrnamtType>SH</sshPrnamtType></shrsOrPrnAmt>
    </infoTable>
  </informationTable>
</edgarSubmission>
"""


def form4_routes(http):
    http.add("action=getcurrent&type=4&", text_response(FORM4_FEED))
    http.add(f"{FORM4_ACC}-index.xml", text_response(FORM4_XML))


class TestParsers:
    def test_transaction_type(self):
        assert transaction_type("p") == "purchase"
        assert transaction_type("Q") == "unknown"

    def test_extract_accession(self):
        assert extract_accession("no number", None, FORM4_LINK) == FORM4_ACC
        assert extract_accession(None, None, None) is None

    def test_filing_xml_url(self):
        assert filing_xml_url(FORM4_LINK + "?x=1") == FORM4_LINK.replace(".htm", ".xml")

    def test_parse_browse_feed(self):
        (entry,) = parse_browse_feed(FORM4_FEED)
        assert entry.accession_number == FORM4_ACC
        assert entry.filing_type == "form4"
        assert entry.link == FORM4_LINK
        assert entry.filer_name == "HUANG JEN HSUN"
        assert entry.filer_cik == "0001197647"

    def test_parse_form4(self):
        filing = parse_form4_xml(FORM4_XML)
        assert filing.company_name == "NVIDIA CORP"
        assert filing.ticker == "NVDA"
        assert filing.insider_title == "President and CEO"
        assert filing.is_director and filing.is_officer and not filing.is_ten_percent_owner
        big = filing.transactions[1]
        assert big.type == "sale"
        assert big.total_value == pytest.approx(1_405_000)
        assert big.is_direct is False
        assert big.date == "2025-01-03"

    def test_parse_form4_without_issuer(self):
        assert parse_form4_xml("<ownershipDocument><reportingOwner/></ownershipDocument>") is None

    def test_parse_13f(self):
        filing = parse_13f_xml(F13_XML, "IGNORED", "0001067983")
        assert filing.institution_name == "Berkshire Hathaway Inc"
        assert filing.cik == "0001067983"
        assert filing.report_period == "09-30-2024"
        assert [h.name for h in filing.holdings] == ["APPLE INC", "BANK AMER CORP"]
        assert filing.total_value == 101_600_000

    def test_parse_13f_falls_back_to_hints(self):
        xml = "<informationTable><infoTable><nameOfIssuer>X</nameOfIssuer><value>5</value></infoTable></informationTable>"
        filing = parse_13f_xml(xml, "Some Fund", "123456")
        assert filing.institution_name == "Some Fund"
        assert parse_13f_xml(xml) is None


class TestSecEdgarConfig:
    def test_requires_filing_types(self):
        with pytest.raises(ConfigError):
            SecEdgarSourceConfig.from_dict({})
        with pytest.raises(ConfigError):
            SecEdgarSourceConfig.from_dict({"filing_types": ["10-K"]})

    def test_parses_and_clamps(self):
        config = SecEdgarSourceConfig.from_dict({
            "filingTypes": ["FORM4", "13f", "form4"],
            "tickers": ["nvda"],
            "minTransactionValue": -5,
            "maxFilingsPerFetch": 1000,
        })
        assert config.filing_types == ("form4", "13f")
        assert config.tickers == ("NVDA",)
        assert config.min_transaction_value == 0
        assert config.max_filings_per_fetch == 100


class TestSecEdgarFetch:
    @pytest.mark.asyncio
    async def test_retries_then_fails(self, http, sleep):
        http.add(
            "action=getcurrent",
            text_response("", status=429),
            text_response("", status=429),
            text_response("", status=429),
            text_response("unavailable", status=503),
        )
        connector = SecEdgarConnector(http=http, sleep=sleep, env={})

        with pytest.raises(ProviderHTTPError) as exc:
            await connector._get_text(FEED_URLS["form4"])

        assert exc.value.status == 503
        assert len(http.calls) == 4
        assert sleep.calls == [0.1, 0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retry_recovers(self, http, sleep):
        http.add("action=getcurrent", text_response("", status=503), text_response("ok"))
        text = await SecEdgarConnector(http=http, sleep=sleep, env={})._get_text(FEED_URLS["form4"])
        assert text == "ok"
        assert sleep.calls == [0.1, 0.5]

    @pytest.mark.asyncio
    async def test_user_agent_from_env(self, http, sleep):
        http.add("action=getcurrent", text_response("ok"))
        env = {"SEC_EDGAR_USER_AGENT": "Example Corp admin@example.com"}
        await SecEdgarConnector(http=http, sleep=sleep, env=env)._get_text(FEED_URLS["form4"])
        assert http.calls[0]["headers"]["User-Agent"] == "Example Corp admin@example.com"

    @pytest.mark.asyncio
    async def test_fetch_form4(self, http, sleep):
        form4_routes(http)
        connector = SecEdgarConnector(http=http, sleep=sleep, env={})

        result = await connector.fetch(make_params("sec_edgar", {"filing_types": ["form4"]}))

        (item,) = result.raw_items
        assert item["filing_type"] == "form4"
        assert item["accession_number"] == FORM4_ACC
        assert item["ticker"] == "NVDA"
        assert item["form4_data"]["insider_name"] == "HUANG JEN HSUN"
        assert result.next_cursor["form4"]["last_accession"] == FORM4_ACC
        assert result.meta["requests"] == 2
        assert sleep.calls == [0.1, 0.1]

    @pytest.mark.asyncio
    async def test_cursor_skips_seen_accession(self, http, sleep):
        form4_routes(http)
        cursor = {"form4": {"last_accession": FORM4_ACC, "last_fetch_at": "2025-01-06T00:00:00.000Z"}}

        result = await SecEdgarConnector(http=http, sleep=sleep, env={}).fetch(
            make_params("sec_edgar", {"filing_types": ["form4"]}, cursor=cursor)
        )

        assert result.raw_items == []
        assert result.next_cursor["form4"]["last_accession"] == FORM4_ACC
        assert http.urls("-index.xml") == []

    @pytest.mark.asyncio
    async def test_filters(self, http, sleep):
        form4_routes(http)
        connector = SecEdgarConnector(http=http, sleep=sleep, env={})

        too_small = await connector.fetch(
            make_params("sec_edgar", {"filing_types": ["form4"], "min_transaction_value": 2_000_000})
        )
        other_ticker = await connector.fetch(
            make_params("sec_edgar", {"filing_types": ["form4"], "tickers": ["AAPL"]})
        )

        assert too_small.raw_items == []
        assert other_ticker.raw_items == []
        assert too_small.next_cursor["form4"]["last_accession"] == FORM4_ACC

    @pytest.mark.asyncio
    async def test_feed_failure_is_isolated_per_type(self, http, sleep):
        http.add("action=getcurrent&type=4&", text_response("forbidden", status=403))
        http.add("action=getcurrent&type=13F&", text_response(F13_FEED))
        http.add(f"{F13_ACC}-index.xml", text_response(F13_XML))

        result = await SecEdgarConnector(http=http, sleep=sleep, env={}).fetch(
            make_params("sec_edgar", {"filing_types": ["form4", "13f"]})
        )

        assert "403" in result.meta["errors"]["form4"]
        (item,) = result.raw_items
        assert item["filing_type"] == "13f"
        assert item["form13f_data"]["cik"] == "0001067983"
        assert "form4" not in result.next_cursor
        assert result.next_cursor["13f"]["last_accession"] == F13_ACC


class TestSecEdgarNormalize:
    @pytest.mark.asyncio
    async def test_form4_draft(self, http, sleep):
        form4_routes(http)
        connector = SecEdgarConnector(http=http, sleep=sleep, env={})
        params = make_params("sec_edgar", {"filing_types": ["form4"]})
        result = await connector.fetch(params)

        draft = connector.normalize(result.raw_items[0], params)

        assert draft.title == "[SELL] HUANG JEN HSUN - NVIDIA CORP - $1,405,000"
        assert draft.body_text == (
            "Insider HUANG JEN HSUN (President and CEO) of NVIDIA CORP (NVDA)\n\n"
            "Transactions:\n"
            "- Sale: 1,000 shares at $141.00/share ($141,000)\n"
            "- Sale: 10,000 shares at $140.50/share ($1,405,000)"
        )
        assert draft.external_id == f"form4_{FORM4_ACC}"
        assert draft.canonical_url == (
            "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK=0001045810"
            "&type=4&dateb=&owner=include&count=40"
        )
        assert draft.published_at == "2025-01-03T00:00:00.000Z"
        assert draft.author == "HUANG JEN HSUN"
        assert draft.metadata["transaction_type"] == "sale"
        assert draft.metadata["transaction_count"] == 2

    def test_13f_draft(self):
        filing = parse_13f_xml(F13_XML, None, "0001067983")
        raw = {"filing_type": "13f", "accession_number": F13_ACC, "filing_date": "2024-11-14", "form13f_data": filing.to_dict()}

        draft = SecEdgarConnector(env={}).normalize(raw, make_params("sec_edgar"))

        assert draft.title == "[13F] Berkshire Hathaway Inc - Q3 2024 Holdings"
        assert "- APPLE INC: 300,000,000 shares ($69,900,000,000)" in draft.body_text
        assert draft.body_text.endswith("Total holdings: 2 positions ($101,600,000,000 total value)")
        assert draft.external_id == f"13f_{F13_ACC}"
        assert draft.published_at == "2024-11-14T00:00:00.000Z"
        assert draft.metadata["holdings_count"] == 2

    def test_form4_with_untyped_and_string_values(self):
        raw = {
            "filing_type": "form4",
            "accession_number": FORM4_ACC,
            "form4_data": {
                "company_name": "ACME CORP",
                "ticker": "ACME",
                "insider_name": "Jane Doe",
                "transactions": [
                    {"code": "P", "shares": "10", "price_per_share": "2.5", "total_value": "25"},
                    {"type": "sale", "shares": 5, "total_value": 5},
                ],
            },
        }

        draft = SecEdgarConnector(env={}).normalize(raw, make_params("sec_edgar"))

        assert draft.title == "[UNKNOWN] Jane Doe - ACME CORP - $25"
        assert draft.body_text.endswith(
            "Transactions:\n- Unknown: 10 shares at $2.50/share ($25)\n- Sale: 5 shares ($5)"
        )
        assert draft.metadata["transaction_type"] == "unknown"
        assert draft.metadata["transaction_code"] == "P"

    @pytest.mark.parametrize(
        "raw",
        [
            {"filing_type": "form4"},
            {"filing_type": "form4", "form4_data": {"company_name": "X"}},
            {"filing_type": "13f", "form13f_data": {"cik": "1"}},
            {"filing_type": "10k"},
        ],
    )
    def test_malformed_items_raise(self, raw):
        with pytest.raises(MalformedItemError):
            SecEdgarConnector(env={}).normalize(raw, make_params("sec_edgar"))
