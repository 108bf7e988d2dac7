"""Parsers for SEC EDGAR browse feeds and Form 4 / 13F XML documents."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

import feedparser
from bs4 import BeautifulSoup

from radar.connectors.values import as_number, as_str

logger = logging.getLogger(__name__)

_ACCESSION_RE = re.compile(r"(\d{10}-\d{2}-\d{6})")
# "13F-HR - BERKSHIRE HATHAWAY INC (0001067983) (Filer)"
_FILER_TITLE_RE = re.compile(r"^\S+\s+-\s+(.+?)\s+\((\d{4,10})\)")

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


def transaction_type(code: str) -> str:
    return TRANSACTION_TYPES.get(code.upper(), "unknown")


@dataclass
class FeedEntry:
    title: Optional[str]
    link: Optional[str]
    published: Optional[str]
    accession_number: Optional[str]
    filing_type: Optional[str]
    filer_name: Optional[str] = None
    filer_cik: Optional[str] = None


def extract_accession(*texts: Optional[str]) -> Optional[str]:
    """First accession number found in the entry title, id or link."""
    for text in texts:
        match = _ACCESSION_RE.search(text or "")
        if match:
            return match.group(1)
    return None


def parse_browse_feed(xml_text: str) -> List[FeedEntry]:
    """Parse the EDGAR "getcurrent" Atom feed."""
    parsed = feedparser.parse(xml_text)
    if parsed.bozo and not parsed.entries:
        logger.warning("EDGAR feed parse error: %s", parsed.get("bozo_exception"))
    results: List[FeedEntry] = []
    for entry in parsed.entries:
        title = as_str(entry.get("title"))
        links = entry.get("links") or []
        link = as_str(links[0].get("href")) if links else as_str(entry.get("link"))
        filing_type = None
        if title and ("Form 4" in title or "/4 " in title or title.startswith("4 ")):
            filing_type = "form4"
        elif title and "13F" in title:
            filing_type = "13f"
        filer = _FILER_TITLE_RE.match(title or "")
        results.append(FeedEntry(
            title=title,
            link=link,
            published=as_str(entry.get("published") or entry.get("updated")),
            accession_number=extract_accession(title, as_str(entry.get("id")), link),
            filing_type=filing_type,
            filer_name=filer.group(1) if filer else None,
            filer_cik=filer.group(2) if filer else None,
        ))
    return results


def filing_xml_url(link: str) -> str:
    """Rewrite a filing index link to its XML document."""
    return re.sub(r"\.htm.*", ".xml", re.sub(r"\?.*", "", link))


def _text(node: Any, *names: str) -> Optional[str]:
    """Text of the first descendant matching any name; unwraps ``<value>`` children."""
    if node is None:
        return None
    for name in names:
        found = node.find(name)
        if found is None:
            continue
        inner = found.find("value")
        return as_str((found if inner is None else inner).get_text())
    return None


def _flag(node: Any, name: str) -> bool:
    return (_text(node, name) or "").lower() in ("1", "true")


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
    accession_number: Optional[str]
    filing_date: Optional[str]
    insider_name: Optional[str]
    insider_title: Optional[str]
    company_name: Optional[str]
    ticker: Optional[str]
    cik: Optional[str]
    is_director: bool = False
    is_officer: bool = False
    is_ten_percent_owner: bool = False
    transactions: List[Form4Transaction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _transactions(soup: BeautifulSoup, tag: str, derivative: bool) -> List[Form4Transaction]:
    out: List[Form4Transaction] = []
    for txn in soup.find_all(tag):
        code = _text(txn, "transactionCode")
        shares = as_number(_text(txn, "transactionShares", "shares"))
        if not code or shares is None:
            continue
        price = as_number(_text(txn, "transactionPricePerShare", "transactionPrice", "price"))
        out.append(Form4Transaction(
            code=code,
            type=transaction_type(code),
            shares=shares,
            price_per_share=price,
            total_value=shares * price if shares and price else None,
            shares_owned_after=as_number(_text(txn, "sharesOwnedFollowingTransaction", "sharesAfter")),
            is_derivative=derivative,
            is_direct=(_text(txn, "directOrIndirectOwnership") or "D") == "D",
            date=_text(txn, "transactionDate", "date"),
        ))
    return out


def parse_form4_xml(xml_text: str) -> Optional[Form4Filing]:
    """Parse an ownership document; None when issuer or insider identity is missing."""
    soup = BeautifulSoup(xml_text, "xml")
    issuer = soup.find("issuer")
    owner = soup.find("reportingOwner")
    relationship = owner.find("reportingOwnerRelationship") if owner is not None else None
    filing = Form4Filing(
        accession_number=_text(soup, "accessionNumber"),
        filing_date=_text(soup, "periodOfReport", "dateOfEvent", "filingDate"),
        insider_name=_text(owner, "rptOwnerName", "name"),
        insider_title=_text(relationship, "officerTitle"),
        company_name=_text(issuer, "issuerName", "companyName"),
        ticker=_text(issuer, "issuerTradingSymbol", "ticker"),
        cik=_text(issuer, "issuerCik", "issuerCentralIndexKey", "cik"),
        is_director=_flag(relationship, "isDirector"),
        is_officer=_flag(relationship, "isOfficer"),
        is_ten_percent_owner=_flag(relationship, "isTenPercentOwner"),
        transactions=(
            _transactions(soup, "nonDerivativeTransaction", False)
            + _transactions(soup, "derivativeTransaction", True)
        ),
    )
    if not (filing.company_name and filing.ticker and filing.cik and filing.insider_name):
        logger.debug("Form 4 %s missing issuer or owner identity", filing.accession_number)
        return None
    return filing


@dataclass
class Holding13F:
    ticker: Optional[str]
    name: Optional[str]
    shares: Optional[float]
    value: Optional[float]
    shrs_type: str = "SH"


@dataclass
class Form13FFiling:
    accession_number: Optional[str]
    filing_date: Optional[str]
    report_period: Optional[str]
    institution_name: Optional[str]
    cik: Optional[str]
    total_value: Optional[float]
    holdings: List[Holding13F] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_13f_xml(
    xml_text: str, institution_hint: Optional[str] = None, cik_hint: Optional[str] = None
) -> Optional[Form13FFiling]:
    """Parse a 13F information table.

    Cover-page fields are read when present; otherwise the filer name and CIK
    from the feed entry title are used.
    """
    soup = BeautifulSoup(xml_text, "xml")
    holdings: List[Holding13F] = []
    for row in soup.find_all("infoTable"):
        name = _text(row, "nameOfIssuer")
        ticker = _text(row, "titleOfClass", "cusip")
        if not (name or ticker):
            continue
        holdings.append(Holding13F(
            ticker=ticker,
            name=name,
            shares=as_number(_text(row, "sshPrnamt", "shares")),
            value=as_number(_text(row, "value", "marketValue")),
            shrs_type=_text(row, "sshPrnamtType", "shrsType") or "SH",
        ))

    cover = soup.find("coverPage")
    if cover is None:
        cover = soup
    manager = cover.find("filingManager")
    if manager is not None:
        institution = _text(manager, "name")
    else:
        institution = _text(cover, "filerName", "managerName")
    filing = Form13FFiling(
        accession_number=_text(soup, "accessionNumber"),
        filing_date=_text(cover, "signatureDate", "filingDate", "reportDate"),
        report_period=_text(soup, "periodOfReport", "reportCalendarOrQuarter", "reportPeriod"),
        institution_name=institution or institution_hint,
        cik=_text(cover, "cik", "centralIndexKey") or cik_hint,
        total_value=sum(h.value for h in holdings if h.value is not None) if holdings else None,
        holdings=holdings,
    )
    if not filing.institution_name or not filing.cik or not holdings:
        logger.debug("13F %s is incomplete", filing.accession_number)
        return None
    return filing
