"""
Source Resolvers - map a free-text query to listed companies and their
offering documents, one resolver per market.

Resolution is two-tier:
1. Live lookup against the exchange's (or regulator's) public search surface
2. Curated reference table (reference.py) when the live tier fails or is empty

Neither tier raises to the caller: a failed lookup is an empty list.
Filing lookups fall back to deterministic placeholder records so that
downstream stages always have a candidate to attempt.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

import requests

from prospectus_research.config import ResearchConfig, default_config
from prospectus_research.http_client import fetch, get_requests_session, parse_json_body
from prospectus_research.models import CompanyIdentity, DocumentKind, FilingRecord, Market
from prospectus_research.reference import REFERENCE_TABLES, ReferenceTable

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

# Markets are queried (and their results concatenated) in this order
MARKET_ORDER: Tuple[Market, ...] = (
    Market.HKEX,
    Market.NYSE,
    Market.NASDAQ,
    Market.SSE,
    Market.SZSE,
)

TICKER_PATTERNS: Dict[Market, Pattern[str]] = {
    Market.HKEX: re.compile(r"^\d{4}$"),
    Market.NYSE: re.compile(r"^[A-Z]{1,5}$"),
    Market.NASDAQ: re.compile(r"^[A-Z]{1,5}$"),
    Market.SSE: re.compile(r"^\d{6}$"),
    Market.SZSE: re.compile(r"^\d{6}$"),
}

PLACEHOLDER_SCHEME = "placeholder://"
PLACEHOLDER_FILING_DATE = "2024-01-15"

HKEX_BASE_URL = "https://www1.hkexnews.hk"
HKEX_PREFIX_URL = f"{HKEX_BASE_URL}/search/prefix.do"
HKEX_TITLE_SEARCH_URL = f"{HKEX_BASE_URL}/search/titleSearchServlet.do"

SEC_TICKERS_URL = "https://www.sec.gov/files/company_tickers_exchange.json"
SEC_SUBMISSIONS_URL = "https://data.sec.gov/submissions/CIK{cik:010d}.json"
SEC_ARCHIVE_URL = "https://www.sec.gov/Archives/edgar/data/{cik}/{accession}/{document}"

CNINFO_SEARCH_URL = "http://www.cninfo.com.cn/new/information/topSearch/query"

# SEC form types that carry an offering document
SEC_OFFERING_FORMS: Dict[str, DocumentKind] = {
    "S-1": DocumentKind.IPO,
    "S-1/A": DocumentKind.IPO,
    "F-1": DocumentKind.IPO,
    "F-1/A": DocumentKind.IPO,
    "424B1": DocumentKind.SECONDARY,
    "424B3": DocumentKind.SECONDARY,
    "424B4": DocumentKind.SECONDARY,
    "424B5": DocumentKind.SECONDARY,
}

MAX_FILINGS = 10


# =============================================================================
# Shared Helpers
# =============================================================================


def placeholder_url(market: Market, ticker: str, slug: str) -> str:
    """Build an explicit non-real document URL."""
    return f"{PLACEHOLDER_SCHEME}{market.value}/{ticker}/{slug}"


def is_placeholder_url(url: str) -> bool:
    return url.startswith(PLACEHOLDER_SCHEME)


def is_valid_ticker(ticker: str, market: Market) -> bool:
    """Market-specific ticker shape check."""
    return bool(TICKER_PATTERNS[market].match(ticker or ""))


def classify_title(title: str) -> DocumentKind:
    """Map an offering document title to its kind."""
    lowered = title.lower()
    if "rights" in lowered or "配股" in title:
        return DocumentKind.RIGHTS
    if any(word in lowered for word in ("ipo", "initial public offering", "global offering")):
        return DocumentKind.IPO
    if "首次公开发行" in title:
        return DocumentKind.IPO
    return DocumentKind.SECONDARY


def infer_sector(company_name: str) -> str:
    """Guess a sector from keywords in an English company name."""
    name = company_name.lower()
    if any(word in name for word in ("bank", "financial", "capital")):
        return "Financial Services"
    if any(word in name for word in ("tech", "software", "systems")):
        return "Technology"
    if any(word in name for word in ("pharma", "bio", "health")):
        return "Healthcare"
    if any(word in name for word in ("energy", "oil", "gas")):
        return "Energy"
    if any(word in name for word in ("retail", "consumer")):
        return "Consumer Discretionary"
    return "Diversified"


def dedupe_identities(
    identities: Iterable[CompanyIdentity],
    key: str = "ticker",
) -> List[CompanyIdentity]:
    """Drop repeats, keeping first-seen order.

    Args:
        identities: Candidate identities
        key: "ticker" within one market, "ticker_market" across markets
    """
    seen = set()
    unique = []
    for identity in identities:
        marker = identity.ticker if key == "ticker" else identity.key
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(identity)
    return unique


# =============================================================================
# A-share Helpers
# =============================================================================


def china_exchange_for_ticker(ticker: str) -> Optional[Market]:
    """Return SSE or SZSE from a 6-digit A-share code, None if out of range."""
    if not TICKER_PATTERNS[Market.SSE].match(ticker or ""):
        return None
    code = int(ticker)
    if 600000 <= code <= 603999 or 605000 <= code <= 605999 or 688000 <= code <= 688999:
        return Market.SSE
    if 0 <= code <= 3999 or 300000 <= code <= 300999:
        return Market.SZSE
    return None


def china_board(ticker: str) -> Optional[str]:
    """Name the listing board of an A-share code."""
    exchange = china_exchange_for_ticker(ticker)
    if exchange is None:
        return None
    if ticker.startswith("688"):
        return "STAR Market"
    if ticker.startswith("300"):
        return "ChiNext"
    if exchange == Market.SSE:
        return "SSE Main Board"
    if ticker.startswith("002"):
        return "SZSE SME Board"
    return "SZSE Main Board"


def format_china_ticker(ticker: str) -> str:
    """Append the .SH / .SZ exchange suffix."""
    exchange = china_exchange_for_ticker(ticker)
    if exchange == Market.SSE:
        return f"{ticker}.SH"
    if exchange == Market.SZSE:
        return f"{ticker}.SZ"
    return ticker


# =============================================================================
# Resolver Interface
# =============================================================================


class SourceResolver(ABC):
    """
    One market's company and filing lookup.

    Subclasses implement the live tier (`_live_search`, `_live_filings`);
    this base class owns validation, de-duplication and fallback.
    """

    def __init__(
        self,
        market: Market,
        config: ResearchConfig = default_config,
        session: Optional[requests.Session] = None,
        reference: Optional[ReferenceTable] = None,
    ):
        self.market = market
        self.config = config
        self.session = session or get_requests_session(config.user_agent)
        self.reference = reference if reference is not None else REFERENCE_TABLES[market]

    async def search(self, query: str) -> List[CompanyIdentity]:
        """
        Resolve a free-text query to companies listed on this market.

        Args:
            query: Company name, ticker or sector fragment

        Returns:
            Valid, de-duplicated identities; empty when nothing matched
        """
        try:
            live = await self._live_search(query)
        except Exception as e:
            logger.warning(f"[{self.market.value}] live search failed for '{query}': {e}")
            live = []

        identities = self._finalize(live)
        if identities:
            logger.info(f"[{self.market.value}] live search returned {len(identities)} for '{query}'")
            return identities

        fallback = self._finalize(self.reference.search(query))
        logger.info(f"[{self.market.value}] reference table returned {len(fallback)} for '{query}'")
        return fallback

    async def list_filings(self, ticker: str, company_name: Optional[str] = None) -> List[FilingRecord]:
        """
        List offering documents for a known ticker, newest first.

        Returns placeholder records when the live index is unavailable.
        """
        name = company_name or self._company_name(ticker)
        try:
            records = await self._live_filings(ticker, name)
        except Exception as e:
            logger.warning(f"[{self.market.value}] live filings failed for {ticker}: {e}")
            records = []

        if records:
            return records[:MAX_FILINGS]

        logger.info(f"[{self.market.value}] using placeholder filings for {ticker}")
        return self.placeholder_filings(ticker, name)

    def placeholder_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        return [
            FilingRecord(
                ticker=ticker,
                market=self.market,
                company_name=company_name,
                filing_date=PLACEHOLDER_FILING_DATE,
                document_url=placeholder_url(self.market, ticker, "ipo-prospectus"),
                document_kind=DocumentKind.IPO,
                title="IPO Prospectus",
                is_placeholder=True,
            )
        ]

    def is_valid_ticker(self, ticker: str) -> bool:
        return is_valid_ticker(ticker, self.market)

    def _finalize(self, identities: Sequence[CompanyIdentity]) -> List[CompanyIdentity]:
        valid = []
        for identity in identities:
            if identity.market != self.market or not self.is_valid_ticker(identity.ticker):
                logger.debug(f"[{self.market.value}] rejected identity {identity.ticker!r}")
                continue
            valid.append(identity)
        return dedupe_identities(valid)[: self.config.max_search_results]

    def _company_name(self, ticker: str) -> str:
        identity = self.reference.get(ticker)
        return identity.name if identity else ticker

    def _sector_for(self, ticker: str) -> Optional[str]:
        identity = self.reference.get(ticker)
        return identity.sector if identity else None

    async def _get_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await fetch(
            self.session, method, url, timeout=self.config.search_timeout_seconds, **kwargs
        )
        return parse_json_body(response.text)

    @abstractmethod
    async def _live_search(self, query: str) -> List[CompanyIdentity]:
        """Query the live source. May raise; the caller falls back."""

    @abstractmethod
    async def _live_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        """Query the live filing index. May raise; the caller falls back."""


# =============================================================================
# Hong Kong
# =============================================================================


def normalize_hk_code(code: str) -> str:
    """'00700' -> '0700'; HKEX codes are shown as 4 digits."""
    return (code or "").strip().lstrip("0").zfill(4)


def _hk_date(raw: str) -> str:
    """'15/01/2024 19:30' -> '2024-01-15'"""
    return datetime.strptime(raw.strip()[:10], "%d/%m/%Y").date().isoformat()


class HKEXResolver(SourceResolver):
    """HKEXnews issuer prefix search and title search."""

    def __init__(self, config: ResearchConfig = default_config, **kwargs: Any):
        super().__init__(Market.HKEX, config=config, **kwargs)

    async def _stock_info(self, name: str) -> List[Dict[str, Any]]:
        payload = await self._get_json(
            "GET",
            HKEX_PREFIX_URL,
            params={
                "callback": "callback",
                "lang": "EN",
                "type": "A",
                "name": name,
                "market": "SEHK",
            },
        )
        return payload.get("stockInfo", []) if isinstance(payload, dict) else []

    async def _live_search(self, query: str) -> List[CompanyIdentity]:
        identities = []
        for item in await self._stock_info(query):
            ticker = normalize_hk_code(str(item.get("code", "")))
            name = (item.get("name") or "").strip()
            if not name:
                continue
            identities.append(
                CompanyIdentity(
                    name=name,
                    ticker=ticker,
                    market=Market.HKEX,
                    sector=self._sector_for(ticker),
                )
            )
        return identities

    async def _live_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        stock_id = None
        for item in await self._stock_info(ticker):
            if normalize_hk_code(str(item.get("code", ""))) == ticker:
                stock_id = item.get("stockId")
                break
        if stock_id is None:
            return []

        payload = await self._get_json(
            "GET",
            HKEX_TITLE_SEARCH_URL,
            params={
                "sortDir": "0",
                "sortByOptions": "DateTime",
                "category": "0",
                "market": "SEHK",
                "stockId": str(stock_id),
                "documentType": "-1",
                "fromDate": "19990401",
                "toDate": date.today().strftime("%Y%m%d"),
                "title": "",
                "searchType": "0",
                "t1code": "-2",
                "t2Gcode": "-2",
                "t2code": "-2",
                "rowRange": "100",
                "lang": "EN",
            },
        )
        # "result" is itself a JSON-encoded string
        rows = json.loads(payload.get("result") or "[]")

        records = []
        for row in rows:
            title = (row.get("TITLE") or "").strip()
            link = row.get("FILE_LINK") or ""
            if not link or "prospectus" not in title.lower():
                continue
            records.append(
                FilingRecord(
                    ticker=ticker,
                    market=Market.HKEX,
                    company_name=company_name,
                    filing_date=_hk_date(row.get("DATE_TIME", "")),
                    document_url=link if link.startswith("http") else f"{HKEX_BASE_URL}{link}",
                    document_kind=classify_title(title),
                    title=title,
                )
            )
        return records


# =============================================================================
# United States
# =============================================================================


class SECTickerDirectory:
    """
    The SEC company / ticker / exchange directory.

    One instance is shared by the NYSE and Nasdaq resolvers so the file is
    downloaded once per refresh. Rows are reloaded once they are older than
    `ttl_seconds`; concurrent callers wait on the same download.
    """

    def __init__(
        self,
        session: requests.Session,
        config: ResearchConfig = default_config,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session
        self.config = config
        self.ttl_seconds = config.sec_directory_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._rows: Optional[List[Dict[str, Any]]] = None
        self._loaded_at = 0.0
        self._pending: Optional[asyncio.Future] = None

    def is_stale(self) -> bool:
        return self._rows is None or self._clock() - self._loaded_at >= self.ttl_seconds

    async def rows(self) -> List[Dict[str, Any]]:
        """All directory rows, downloading them first if stale."""
        if not self.is_stale():
            return self._rows
        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._download())
        pending = self._pending
        try:
            return await asyncio.shield(pending)
        finally:
            if pending.done() and self._pending is pending:
                self._pending = None

    async def for_exchange(self, label: str) -> List[Dict[str, Any]]:
        return [row for row in await self.rows() if row.get("exchange") == label]

    async def _download(self) -> List[Dict[str, Any]]:
        response = await fetch(
            self.session, "GET", SEC_TICKERS_URL, timeout=self.config.search_timeout_seconds
        )
        payload = parse_json_body(response.text)
        fields = payload["fields"]
        self._rows = [dict(zip(fields, row)) for row in payload["data"]]
        self._loaded_at = self._clock()
        logger.info(f"Loaded SEC ticker directory: {len(self._rows)} rows")
        return self._rows


class USResolver(SourceResolver):
    """
    SEC EDGAR lookup for NYSE or Nasdaq listings.

    Search and CIK lookup both read the SEC ticker directory, filtered to
    this resolver's exchange. Pass a shared `directory` to avoid one
    download per exchange.
    """

    # Exchange label used by the SEC ticker directory
    EXCHANGE_LABELS = {Market.NYSE: "NYSE", Market.NASDAQ: "Nasdaq"}

    def __init__(
        self,
        market: Market,
        config: ResearchConfig = default_config,
        directory: Optional[SECTickerDirectory] = None,
        **kwargs: Any,
    ):
        if market not in self.EXCHANGE_LABELS:
            raise ValueError(f"Not a US market: {market}")
        super().__init__(market, config=config, **kwargs)
        self.directory = directory or SECTickerDirectory(self.session, config)

    async def _load_directory(self) -> List[Dict[str, Any]]:
        return await self.directory.for_exchange(self.EXCHANGE_LABELS[self.market])

    async def _live_search(self, query: str) -> List[CompanyIdentity]:
        needle = query.strip().lower()
        if not needle:
            return []
        identities = []
        for row in await self._load_directory():
            name = row.get("name") or ""
            ticker = (row.get("ticker") or "").upper()
            if needle not in name.lower() and needle != ticker.lower():
                continue
            identities.append(
                CompanyIdentity(
                    name=name,
                    ticker=ticker,
                    market=self.market,
                    sector=self._sector_for(ticker) or infer_sector(name),
                )
            )
        return identities

    async def _cik_for(self, ticker: str) -> Optional[int]:
        for row in await self._load_directory():
            if (row.get("ticker") or "").upper() == ticker.upper():
                return int(row["cik"])
        return None

    async def _live_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        cik = await self._cik_for(ticker)
        if cik is None:
            return []

        payload = await self._get_json("GET", SEC_SUBMISSIONS_URL.format(cik=cik))
        recent = payload.get("filings", {}).get("recent", {})
        forms = recent.get("form", [])
        dates = recent.get("filingDate", [])
        accessions = recent.get("accessionNumber", [])
        documents = recent.get("primaryDocument", [])
        descriptions = recent.get("primaryDocDescription", [])

        records = []
        for i, form in enumerate(forms):
            kind = SEC_OFFERING_FORMS.get(form)
            if kind is None or not documents[i]:
                continue
            records.append(
                FilingRecord(
                    ticker=ticker,
                    market=self.market,
                    company_name=payload.get("name") or company_name,
                    filing_date=dates[i],
                    document_url=SEC_ARCHIVE_URL.format(
                        cik=cik,
                        accession=accessions[i].replace("-", ""),
                        document=documents[i],
                    ),
                    document_kind=kind,
                    title=(descriptions[i] if i < len(descriptions) else None) or form,
                )
            )
        return records


# =============================================================================
# Mainland China (A-shares)
# =============================================================================

# (title, filing date, kind); CNINFO has no stable prospectus index
CHINA_PLACEHOLDER_FILINGS: Tuple[Tuple[str, str, DocumentKind], ...] = (
    ("IPO招股说明书", "2023-12-15", DocumentKind.IPO),
    ("首次公开发行股票招股说明书", "2023-11-20", DocumentKind.IPO),
    ("配股说明书", "2024-01-10", DocumentKind.RIGHTS),
)


class ChinaResolver(SourceResolver):
    """CNINFO search for Shanghai or Shenzhen A-shares."""

    def __init__(self, market: Market, config: ResearchConfig = default_config, **kwargs: Any):
        if market not in (Market.SSE, Market.SZSE):
            raise ValueError(f"Not an A-share market: {market}")
        super().__init__(market, config=config, **kwargs)

    def is_valid_ticker(self, ticker: str) -> bool:
        return super().is_valid_ticker(ticker) and china_exchange_for_ticker(ticker) == self.market

    async def _live_search(self, query: str) -> List[CompanyIdentity]:
        rows = await self._get_json(
            "POST",
            CNINFO_SEARCH_URL,
            data={"keyWord": query, "maxNum": 10},
        )
        identities = []
        for row in rows or []:
            ticker = str(row.get("code", "")).strip()
            if row.get("category") != "A股" or china_exchange_for_ticker(ticker) != self.market:
                continue
            reference = self.reference.get(ticker)
            identities.append(
                CompanyIdentity(
                    name=reference.name if reference else (row.get("zwjc") or ticker),
                    ticker=ticker,
                    market=self.market,
                    sector=reference.sector if reference else None,
                )
            )
        return identities

    async def _live_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        return []

    def placeholder_filings(self, ticker: str, company_name: str) -> List[FilingRecord]:
        return [
            FilingRecord(
                ticker=ticker,
                market=self.market,
                company_name=company_name,
                filing_date=filing_date,
                document_url=placeholder_url(self.market, ticker, f"prospectus-{i}"),
                document_kind=kind,
                title=title,
                is_placeholder=True,
            )
            for i, (title, filing_date, kind) in enumerate(CHINA_PLACEHOLDER_FILINGS)
        ]

    def _company_name(self, ticker: str) -> str:
        identity = self.reference.get(ticker)
        return identity.name if identity else f"公司{ticker}"


# =============================================================================
# Registry & Multi-market Search
# =============================================================================


class ResolverRegistry:
    """Selects the resolver for a market tag."""

    def __init__(self, resolvers: Mapping[Market, SourceResolver]):
        self._resolvers = dict(resolvers)

    def get(self, market: Market) -> SourceResolver:
        try:
            return self._resolvers[market]
        except KeyError:
            raise KeyError(f"No resolver registered for market '{market.value}'") from None

    @property
    def markets(self) -> List[Market]:
        return [market for market in MARKET_ORDER if market in self._resolvers]


def default_registry(config: ResearchConfig = default_config) -> ResolverRegistry:
    """Build the registry of all five market resolvers over one HTTP session.

    The NYSE and Nasdaq resolvers share one SEC ticker directory.
    """
    session = get_requests_session(config.user_agent)
    sec_directory = SECTickerDirectory(session, config)
    return ResolverRegistry({
        Market.HKEX: HKEXResolver(config, session=session),
        Market.NYSE: USResolver(Market.NYSE, config, directory=sec_directory, session=session),
        Market.NASDAQ: USResolver(Market.NASDAQ, config, directory=sec_directory, session=session),
        Market.SSE: ChinaResolver(Market.SSE, config, session=session),
        Market.SZSE: ChinaResolver(Market.SZSE, config, session=session),
    })


async def search_markets(
    query: str,
    registry: ResolverRegistry,
    markets: Optional[Sequence[Market]] = None,
    sector: Optional[str] = None,
    min_market_cap: Optional[float] = None,
) -> List[CompanyIdentity]:
    """
    Search several markets concurrently and merge the results.

    Each market branch is isolated: a failing branch contributes nothing.
    Results are concatenated in MARKET_ORDER and de-duplicated on
    (ticker, market), keeping the first occurrence.

    Args:
        query: Free-text company query
        registry: Resolver per market
        markets: Markets to search (default: every registered market).
            Markets without a registered resolver are skipped.
        sector: Optional case-insensitive sector substring filter
        min_market_cap: Optional lower bound; identities without a market
            cap are dropped when this is set

    Returns:
        Merged identity list
    """
    requested = set(markets) if markets is not None else set(registry.markets)
    registered = set(registry.markets)
    selected = [market for market in MARKET_ORDER if market in requested & registered]
    skipped = [market.value for market in MARKET_ORDER if market in requested - registered]
    if skipped:
        logger.warning(f"No resolver registered for {skipped}; skipping")

    branches = await asyncio.gather(
        *(registry.get(market).search(query) for market in selected),
        return_exceptions=True,
    )

    merged: List[CompanyIdentity] = []
    for market, branch in zip(selected, branches):
        if isinstance(branch, BaseException):
            logger.error(f"[{market.value}] search branch failed: {branch}")
            continue
        merged.extend(branch)

    results = dedupe_identities(merged, key="ticker_market")

    if sector:
        needle = sector.lower()
        results = [r for r in results if r.sector and needle in r.sector.lower()]
    if min_market_cap is not None:
        results = [
            r for r in results if r.market_cap is not None and r.market_cap >= min_market_cap
        ]
    return results
