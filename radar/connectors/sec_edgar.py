"""SEC EDGAR connector: insider trades (Form 4) and institutional holdings (13F).

EDGAR allows 10 requests per second, so every request is preceded by a short
delay and 429/503 answers are retried with exponential backoff.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from radar.connectors.base import (
    BaseConnector,
    ContentItemDraft,
    FetchParams,
    FetchResult,
    SleepFn,
    parse_datetime,
    to_iso,
    utcnow,
)
from radar.connectors.errors import ConfigError, MalformedItemError, ProviderHTTPError, TransientHTTPError
from radar.connectors.http import HttpClient
from radar.connectors.sec_edgar_parse import (
    FeedEntry,
    filing_xml_url,
    parse_13f_xml,
    parse_browse_feed,
    parse_form4_xml,
)
from radar.connectors.values import as_number, as_str, as_str_list, clamp_int, pick

logger = logging.getLogger(__name__)

FILING_TYPES = ("form4", "13f")
FEED_URLS = {
    "form4": "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=4&company=&dateb=&owner=include&count=100&output=atom",
    "13f": "https://www.sec.gov/cgi-bin/browse-edgar?action=getcurrent&type=13F&company=&dateb=&owner=include&count=100&output=atom",
}
COMPANY_URLS = {
    "form4": "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK={cik}&type=4&dateb=&owner=include&count=40",
    "13f": "https://www.sec.gov/cgi-bin/browse-edgar?action=getcompany&CIK={cik}&type=13F&dateb=&owner=exclude&count=40",
}
DEFAULT_USER_AGENT = "radar/0.1 (connectors/sec_edgar)"
MIN_REQUEST_DELAY_SECONDS = 0.1
MAX_RETRIES = 3
BACKOFF_BASE_SECONDS = 0.5

TXN_LABELS = {
    "purchase": "BUY",
    "sale": "SELL",
    "award": "AWARD",
    "disposition": "DISPOSITION",
    "exercise": "EXERCISE",
    "conversion": "CONVERSION",
}


@dataclass(frozen=True)
class SecEdgarSourceConfig:
    filing_types: Tuple[str, ...]
    tickers: Tuple[str, ...] = ()
    ciks: Tuple[str, ...] = ()
    min_transaction_value: int = 0
    max_filings_per_fetch: int = 50

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> SecEdgarSourceConfig:
        filing_types: List[str] = []
        for value in as_str_list(pick(config, "filing_types", "filingTypes")):
            kind = value.lower()
            if kind in FILING_TYPES and kind not in filing_types:
                filing_types.append(kind)
        if not filing_types:
            raise ConfigError('Config must include "filing_types" with at least one of: ["form4", "13f"]')
        min_value = as_number(pick(config, "min_transaction_value", "minTransactionValue")) or 0
        return cls(
            filing_types=tuple(filing_types),
            tickers=tuple(t.upper() for t in as_str_list(config.get("tickers"))),
            ciks=tuple(c.upper() for c in as_str_list(config.get("ciks"))),
            min_transaction_value=max(0, int(min_value)),
            max_filings_per_fetch=clamp_int(
                pick(config, "max_filings_per_fetch", "maxFilingsPerFetch"), 1, 100, 50
            ),
        )

    def matches_issuer(self, ticker: Optional[str], cik: Optional[str]) -> bool:
        if not self.tickers and not self.ciks:
            return True
        if ticker and ticker.upper() in self.tickers:
            return True
        return bool(cik) and cik.lstrip("0") in {c.lstrip("0") for c in self.ciks}


def _format_currency(amount: Optional[float]) -> str:
    return f"${round(amount or 0):,}"


def _txn_type(txn: Dict[str, Any]) -> str:
    return as_str(txn.get("type")) or "unknown"


def _quarter_label(report_period: Optional[str]) -> str:
    date = parse_datetime(report_period)
    if date is None:
        return "Q unknown"
    return f"Q{(date.month - 1) // 3 + 1} {date.year}"


class SecEdgarConnector(BaseConnector):
    source_type = "sec_edgar"

    def __init__(
        self,
        http: Optional[HttpClient] = None,
        sleep: Optional[SleepFn] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(http=http, sleep=sleep)
        self.env = env if env is not None else os.environ

    @property
    def user_agent(self) -> str:
        return as_str(self.env.get("SEC_EDGAR_USER_AGENT")) or DEFAULT_USER_AGENT

    async def _get_text(self, url: str) -> str:
        """Polite GET: fixed delay first, then up to 3 backoff retries on 429/503."""
        await self.sleep(MIN_REQUEST_DELAY_SECONDS)
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientHTTPError),
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=BACKOFF_BASE_SECONDS),
            sleep=self.sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                resp = await self.http.get(
                    url,
                    headers={
                        "User-Agent": self.user_agent,
                        "Accept": "application/xml, text/xml, application/atom+xml, */*",
                    },
                )
                if resp.status in (429, 503):
                    raise TransientHTTPError(
                        resp.status, url, resp.text,
                        message=f"SEC EDGAR fetch failed ({resp.status}): {resp.text[:500]}",
                    )
        if not resp.ok:
            raise ProviderHTTPError(
                resp.status, url, resp.text,
                message=f"SEC EDGAR fetch failed ({resp.status}): {resp.text[:500]}",
            )
        return resp.text

    async def _fetch_detail(
        self, filing_type: str, entry: FeedEntry, config: SecEdgarSourceConfig
    ) -> Optional[Dict[str, Any]]:
        xml_text = await self._get_text(filing_xml_url(entry.link or ""))
        item: Dict[str, Any] = {
            "filing_type": filing_type,
            "accession_number": entry.accession_number,
            "filing_date": entry.published,
            "cik": None,
            "ticker": None,
        }
        if filing_type == "form4":
            form4 = parse_form4_xml(xml_text)
            if form4 is None:
                return None
            if not config.matches_issuer(form4.ticker, form4.cik):
                return None
            if config.min_transaction_value > 0 and not any(
                (t.total_value or 0) >= config.min_transaction_value for t in form4.transactions
            ):
                return None
            item.update(form4_data=form4.to_dict(), cik=form4.cik, ticker=form4.ticker)
            return item

        form13f = parse_13f_xml(xml_text, entry.filer_name, entry.filer_cik)
        if form13f is None or not config.matches_issuer(None, form13f.cik):
            return None
        item.update(form13f_data=form13f.to_dict(), cik=form13f.cik)
        return item

    async def fetch(self, params: FetchParams) -> FetchResult:
        config = SecEdgarSourceConfig.from_dict(params.config)
        cursor_in = {
            kind: params.cursor.get(kind) if isinstance(params.cursor.get(kind), dict) else {}
            for kind in FILING_TYPES
        }
        max_items = min(max(0, int(params.limits.max_items)), config.max_filings_per_fetch)
        raw_items: List[Dict[str, Any]] = []
        requests = 0
        errors: Dict[str, str] = {}
        newest: Dict[str, Optional[str]] = {
            kind: as_str(cursor_in[kind].get("last_accession")) for kind in FILING_TYPES
        }

        for filing_type in config.filing_types:
            if len(raw_items) >= max_items:
                break
            last_accession = newest[filing_type]
            try:
                feed_xml = await self._get_text(FEED_URLS[filing_type])
                requests += 1
                entries = parse_browse_feed(feed_xml)
            except Exception as e:
                logger.warning("Error fetching SEC EDGAR %s filings: %s", filing_type, e)
                errors[filing_type] = str(e)
                continue

            for entry in entries:
                if len(raw_items) >= max_items:
                    break
                accession = entry.accession_number
                if not accession or accession == last_accession:
                    continue
                if newest[filing_type] is None or accession > newest[filing_type]:
                    newest[filing_type] = accession
                if not entry.link:
                    continue
                try:
                    requests += 1
                    item = await self._fetch_detail(filing_type, entry, config)
                except Exception as e:
                    logger.debug("Skipping %s %s: %s", filing_type, accession, e)
                    continue
                if item is not None:
                    raw_items.append(item)

        fetched_at = to_iso(utcnow())
        next_cursor: Dict[str, Any] = {
            kind: dict(cursor_in[kind]) for kind in FILING_TYPES if cursor_in[kind]
        }
        for filing_type in config.filing_types:
            if newest[filing_type]:
                next_cursor[filing_type] = {
                    "last_accession": newest[filing_type],
                    "last_fetch_at": fetched_at,
                }

        meta: Dict[str, Any] = {
            "requests": requests,
            "filing_types": list(config.filing_types),
            "items_fetched": len(raw_items),
        }
        if errors:
            meta["errors"] = errors
        return FetchResult(raw_items=raw_items, next_cursor=next_cursor, meta=meta)

    def _normalize_form4(self, item: Dict[str, Any], form4: Dict[str, Any]) -> ContentItemDraft:
        accession = as_str(item.get("accession_number")) or as_str(form4.get("accession_number"))
        filing_date = as_str(form4.get("filing_date")) or as_str(item.get("filing_date"))
        insider = as_str(form4.get("insider_name"))
        insider_title = as_str(form4.get("insider_title"))
        company = as_str(form4.get("company_name"))
        ticker = as_str(form4.get("ticker"))
        cik = as_str(form4.get("cik"))
        transactions = [t for t in form4.get("transactions") or [] if isinstance(t, dict)]

        primary = None
        for txn in transactions:
            if primary is None or (as_number(txn.get("total_value")) or 0) > (
                as_number(primary.get("total_value")) or 0
            ):
                primary = txn

        label = "TRANSACTION"
        primary_value = None
        if primary:
            primary_type = _txn_type(primary)
            label = TXN_LABELS.get(primary_type, primary_type.upper())
            primary_value = as_number(primary.get("total_value"))
        title = f"[{label}] {insider} - {company} - {_format_currency(primary_value)}"

        body = f"Insider {insider}"
        if insider_title:
            body += f" ({insider_title})"
        body += f" of {company} ({ticker})"
        if transactions:
            lines = []
            for txn in transactions[:10]:
                shares = as_number(txn.get("shares"))
                price = as_number(txn.get("price_per_share"))
                value = as_number(txn.get("total_value"))
                line = f"- {_txn_type(txn).capitalize()}: "
                line += f"{round(shares):,} shares" if shares is not None else "unknown shares"
                if price is not None:
                    line += f" at ${price:.2f}/share"
                if value is not None:
                    line += f" ({_format_currency(value)})"
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
            metadata.update(
                transaction_type=_txn_type(primary),
                transaction_code=primary.get("code"),
                shares=primary.get("shares"),
                price_per_share=primary.get("price_per_share"),
                total_value=primary.get("total_value"),
                shares_owned_after=primary.get("shares_owned_after"),
                is_direct=primary.get("is_direct"),
                is_derivative=primary.get("is_derivative"),
            )
        metadata.update(
            transaction_count=len(transactions),
            filing_date=filing_date,
            accession_number=accession,
        )

        return ContentItemDraft(
            title=title,
            body_text=body,
            canonical_url=COMPANY_URLS["form4"].format(cik=cik) if cik else None,
            source_type=self.source_type,
            external_id=f"form4_{accession}" if accession else None,
            published_at=to_iso(parse_datetime(filing_date)),
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

    def _normalize_13f(self, item: Dict[str, Any], form13f: Dict[str, Any]) -> ContentItemDraft:
        accession = as_str(item.get("accession_number")) or as_str(form13f.get("accession_number"))
        filing_date = as_str(form13f.get("filing_date")) or as_str(item.get("filing_date"))
        institution = form13f["institution_name"]
        cik = as_str(form13f.get("cik"))
        report_period = as_str(form13f.get("report_period"))
        quarter = _quarter_label(report_period)
        holdings = [h for h in form13f.get("holdings") or [] if isinstance(h, dict)]
        top = holdings[:10]
        total_value = as_number(form13f.get("total_value"))

        body = f"{institution} quarterly institutional holdings filing ({quarter})\n\n"
        if top:
            body += "Top Holdings:\n"
            for holding in top:
                name = holding.get("name") or holding.get("ticker") or "Unknown"
                shares = as_number(holding.get("shares"))
                value = as_number(holding.get("value"))
                body += f"- {name}: "
                body += f"{round(shares):,} shares" if shares is not None else "position"
                if value is not None:
                    body += f" (${round(value * 1000):,})"
                body += "\n"
        body += f"\nTotal holdings: {len(holdings)} positions"
        if total_value is not None:
            body += f" ({_format_currency(total_value * 1000)} total value)"

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
                {k: h.get(k) for k in ("ticker", "name", "shares", "value")} for h in top
            ]
        metadata.update(filing_date=filing_date, accession_number=accession)

        return ContentItemDraft(
            title=f"[13F] {institution} - {quarter} Holdings",
            body_text=body,
            canonical_url=COMPANY_URLS["13f"].format(cik=cik) if cik and accession else None,
            source_type=self.source_type,
            external_id=f"13f_{accession}" if accession else None,
            published_at=to_iso(parse_datetime(filing_date)),
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

    def normalize(self, raw: Any, params: FetchParams) -> ContentItemDraft:
        item = raw if isinstance(raw, dict) else {}
        filing_type = as_str(item.get("filing_type"))
        if filing_type == "form4":
            form4 = item.get("form4_data")
            if not isinstance(form4, dict) or not form4:
                raise MalformedItemError("Malformed SEC EDGAR item: missing Form 4 data")
            if not as_str(form4.get("company_name")) or not as_str(form4.get("ticker")):
                raise MalformedItemError("Malformed Form 4: missing company info")
            return self._normalize_form4(item, form4)
        if filing_type == "13f":
            form13f = item.get("form13f_data")
            if not isinstance(form13f, dict) or not form13f:
                raise MalformedItemError("Malformed SEC EDGAR item: missing 13F data")
            if not as_str(form13f.get("institution_name")):
                raise MalformedItemError("Malformed 13F: missing institution info")
            return self._normalize_13f(item, form13f)
        raise MalformedItemError(f"Unknown SEC EDGAR filing type: {filing_type}")
