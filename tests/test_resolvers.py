"""
Tests for the source resolvers.

These tests verify:
1. Live tier parsing per market (mocked HTTP session)
2. Fallback to curated reference tables on failure or empty results
3. Ticker validation and de-duplication
4. Placeholder filings
5. Multi-market fan-out with per-branch isolation
"""
import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest
import requests

from prospectus_research.config import ResearchConfig
from prospectus_research.models import CompanyIdentity, DocumentKind, Market
from prospectus_research.reference import REFERENCE_TABLES
from prospectus_research.resolvers import (
    ChinaResolver,
    HKEXResolver,
    ResolverRegistry,
    SECTickerDirectory,
    USResolver,
    china_board,
    china_exchange_for_ticker,
    classify_title,
    dedupe_identities,
    default_registry,
    format_china_ticker,
    infer_sector,
    is_placeholder_url,
    is_valid_ticker,
    normalize_hk_code,
    search_markets,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config() -> ResearchConfig:
    return ResearchConfig(pacing_interval_seconds=0.0, max_search_results=20)


@pytest.fixture
def offline_session() -> MagicMock:
    """Session whose every request fails like an unreachable network."""
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("network unreachable")
    return session


def _response(body) -> MagicMock:
    response = MagicMock()
    response.text = body if isinstance(body, str) else json.dumps(body, ensure_ascii=False)
    return response


def _session(*bodies) -> MagicMock:
    session = MagicMock()
    session.request.side_effect = [_response(body) for body in bodies]
    return session


# =============================================================================
# Helpers
# =============================================================================


class TestTickerValidation:
    """Tests for market-specific ticker shapes."""

    @pytest.mark.parametrize(
        "ticker,market,expected",
        [
            ("0700", Market.HKEX, True),
            ("700", Market.HKEX, False),
            ("00700", Market.HKEX, False),
            ("AAPL", Market.NASDAQ, True),
            ("GOOGLE", Market.NASDAQ, False),
            ("aapl", Market.NYSE, False),
            ("600519", Market.SSE, True),
            ("60051", Market.SSE, False),
            ("", Market.SZSE, False),
        ],
    )
    def test_shapes(self, ticker, market, expected):
        assert is_valid_ticker(ticker, market) is expected

    def test_normalize_hk_code(self):
        assert normalize_hk_code("00700") == "0700"
        assert normalize_hk_code("5") == "0005"
        assert normalize_hk_code("09988") == "9988"


class TestChinaHelpers:
    """Tests for A-share exchange, board and suffix helpers."""

    @pytest.mark.parametrize(
        "ticker,expected",
        [
            ("600519", Market.SSE),
            ("605111", Market.SSE),
            ("688981", Market.SSE),
            ("000858", Market.SZSE),
            ("002594", Market.SZSE),
            ("300750", Market.SZSE),
            ("900901", None),
            ("ABCDEF", None),
        ],
    )
    def test_exchange_for_ticker(self, ticker, expected):
        assert china_exchange_for_ticker(ticker) == expected

    @pytest.mark.parametrize(
        "ticker,board",
        [
            ("688981", "STAR Market"),
            ("300750", "ChiNext"),
            ("600519", "SSE Main Board"),
            ("002594", "SZSE SME Board"),
            ("000001", "SZSE Main Board"),
            ("900901", None),
        ],
    )
    def test_board(self, ticker, board):
        assert china_board(ticker) == board

    def test_format_ticker(self):
        assert format_china_ticker("600519") == "600519.SH"
        assert format_china_ticker("000858") == "000858.SZ"
        assert format_china_ticker("900901") == "900901"


class TestClassification:
    """Tests for title and sector classification."""

    def test_classify_title(self):
        assert classify_title("Global Offering - Prospectus") is DocumentKind.IPO
        assert classify_title("Rights Issue Prospectus") is DocumentKind.RIGHTS
        assert classify_title("配股说明书") is DocumentKind.RIGHTS
        assert classify_title("Listing Document - Introduction") is DocumentKind.SECONDARY

    def test_infer_sector(self):
        assert infer_sector("First Capital Bancorp") == "Financial Services"
        assert infer_sector("Acme Software Systems") == "Technology"
        assert infer_sector("Widget Holdings") == "Diversified"


class TestDedupe:
    """Tests for identity de-duplication."""

    def test_ticker_key_within_market(self):
        a = CompanyIdentity(name="A", ticker="0700", market=Market.HKEX)
        b = CompanyIdentity(name="B", ticker="0700", market=Market.HKEX)
        assert dedupe_identities([a, b]) == [a]

    def test_ticker_market_key_keeps_cross_market(self):
        hk = CompanyIdentity(name="Alibaba", ticker="BABA", market=Market.NYSE)
        us = CompanyIdentity(name="Alibaba", ticker="BABA", market=Market.NASDAQ)
        assert dedupe_identities([hk, us, hk], key="ticker_market") == [hk, us]


class TestReferenceTable:
    """Tests for curated reference lookup."""

    def test_get_by_ticker(self):
        assert REFERENCE_TABLES[Market.HKEX].get("0700").name == "Tencent Holdings Limited"
        assert REFERENCE_TABLES[Market.HKEX].get("XXXX") is None

    def test_search_by_alias(self):
        results = REFERENCE_TABLES[Market.HKEX].search("腾讯")
        assert [r.ticker for r in results] == ["0700"]

    def test_search_by_sector(self):
        results = REFERENCE_TABLES[Market.NYSE].search("energy")
        assert {r.ticker for r in results} == {"XOM", "CVX"}

    def test_blank_query(self):
        assert REFERENCE_TABLES[Market.SSE].search("   ") == []


# =============================================================================
# Hong Kong
# =============================================================================


class TestHKEXResolver:
    """Tests for HKEXResolver."""

    def test_tencent_falls_back_to_reference_when_offline(self, config, offline_session):
        resolver = HKEXResolver(config, session=offline_session)
        results = asyncio.run(resolver.search("Tencent"))
        assert any(r.ticker == "0700" for r in results)
        assert all(r.market is Market.HKEX for r in results)

    def test_live_prefix_search(self, config):
        session = _session(
            'callback({"more":"0","stockInfo":[{"stockId":7609,"code":"00700","name":"TENCENT"}]});'
        )
        resolver = HKEXResolver(config, session=session)
        results = asyncio.run(resolver.search("tencent"))

        assert len(results) == 1
        assert results[0].ticker == "0700"
        assert results[0].name == "TENCENT"
        assert results[0].sector == "Technology"

    def test_invalid_live_tickers_fall_back(self, config):
        session = _session('callback({"stockInfo":[{"stockId":1,"code":"80737","name":"TENCENT-R"}]});')
        resolver = HKEXResolver(config, session=session)
        results = asyncio.run(resolver.search("tencent"))
        assert [r.ticker for r in results] == ["0700"]

    def test_empty_live_and_reference(self, config, offline_session):
        resolver = HKEXResolver(config, session=offline_session)
        assert asyncio.run(resolver.search("no such company zzz")) == []

    def test_live_filings(self, config):
        rows = [
            {
                "FILE_LINK": "/listedco/listconews/sehk/2004/0607/ltn20040607000.pdf",
                "TITLE": "Global Offering - Prospectus",
                "DATE_TIME": "07/06/2004 08:00",
            },
            {
                "FILE_LINK": "/listedco/annual.pdf",
                "TITLE": "Annual Report 2023",
                "DATE_TIME": "01/04/2024 17:00",
            },
        ]
        session = _session(
            'callback({"stockInfo":[{"stockId":7609,"code":"00700","name":"TENCENT"}]});',
            {"result": json.dumps(rows)},
        )
        resolver = HKEXResolver(config, session=session)
        filings = asyncio.run(resolver.list_filings("0700"))

        assert len(filings) == 1
        assert filings[0].filing_date == "2004-06-07"
        assert filings[0].document_kind is DocumentKind.IPO
        assert filings[0].document_url.startswith("https://www1.hkexnews.hk/listedco/")
        assert filings[0].company_name == "Tencent Holdings Limited"
        assert filings[0].is_placeholder is False

    def test_placeholder_filings_when_offline(self, config, offline_session):
        resolver = HKEXResolver(config, session=offline_session)
        filings = asyncio.run(resolver.list_filings("0700"))

        assert len(filings) == 1
        assert filings[0].is_placeholder
        assert is_placeholder_url(filings[0].document_url)
        assert filings[0].filing_date == "2024-01-15"


# =============================================================================
# United States
# =============================================================================


SEC_DIRECTORY = {
    "fields": ["cik", "name", "ticker", "exchange"],
    "data": [
        [320193, "Apple Inc.", "AAPL", "Nasdaq"],
        [19617, "JPMORGAN CHASE & CO", "JPM", "NYSE"],
        [999999, "Applied Widgets Capital", "APWC", "NYSE"],
    ],
}

SEC_SUBMISSIONS = {
    "name": "Apple Inc.",
    "filings": {
        "recent": {
            "form": ["10-K", "S-1", "424B4"],
            "filingDate": ["2024-11-01", "1980-10-01", "1980-12-12"],
            "accessionNumber": [
                "0000320193-24-000123",
                "0000320193-80-000001",
                "0000320193-80-000002",
            ],
            "primaryDocument": ["aapl-10k.htm", "s1.htm", "424b4.htm"],
            "primaryDocDescription": ["10-K", "", "Prospectus"],
        }
    },
}


class TestUSResolver:
    """Tests for USResolver."""

    def test_rejects_non_us_market(self, config):
        with pytest.raises(ValueError):
            USResolver(Market.HKEX, config, session=MagicMock())

    def test_live_search_filters_by_exchange(self, config):
        resolver = USResolver(Market.NASDAQ, config, session=_session(SEC_DIRECTORY))
        results = asyncio.run(resolver.search("apple"))

        assert [r.ticker for r in results] == ["AAPL"]
        assert results[0].sector == "Technology"
        assert results[0].market is Market.NASDAQ

    def test_live_search_infers_sector(self, config):
        resolver = USResolver(Market.NYSE, config, session=_session(SEC_DIRECTORY))
        results = asyncio.run(resolver.search("applied"))
        assert results[0].ticker == "APWC"
        assert results[0].sector == "Financial Services"

    def test_no_match_anywhere_returns_empty(self, config):
        resolver = USResolver(Market.NYSE, config, session=_session(SEC_DIRECTORY))
        assert asyncio.run(resolver.search("tesla")) == []

    def test_offline_falls_back(self, config, offline_session):
        resolver = USResolver(Market.NASDAQ, config, session=offline_session)
        results = asyncio.run(resolver.search("nvidia"))
        assert [r.ticker for r in results] == ["NVDA"]

    def test_live_filings(self, config):
        resolver = USResolver(Market.NASDAQ, config, session=_session(SEC_DIRECTORY, SEC_SUBMISSIONS))
        filings = asyncio.run(resolver.list_filings("AAPL"))

        assert [f.document_kind for f in filings] == [DocumentKind.IPO, DocumentKind.SECONDARY]
        assert filings[0].document_url == (
            "https://www.sec.gov/Archives/edgar/data/320193/000032019380000001/s1.htm"
        )
        assert filings[0].title == "S-1"
        assert filings[1].title == "Prospectus"

    def test_unknown_ticker_gets_placeholder(self, config):
        resolver = USResolver(Market.NYSE, config, session=_session(SEC_DIRECTORY))
        filings = asyncio.run(resolver.list_filings("ZZZZ"))
        assert len(filings) == 1
        assert filings[0].is_placeholder


class TestSECTickerDirectory:
    """Tests for the shared SEC ticker directory."""

    def test_exchanges_share_one_download(self, config):
        session = _session(SEC_DIRECTORY)
        directory = SECTickerDirectory(session, config)
        nyse = USResolver(Market.NYSE, config, directory=directory, session=session)
        nasdaq = USResolver(Market.NASDAQ, config, directory=directory, session=session)

        async def run():
            return await asyncio.gather(nyse.search("jpmorgan"), nasdaq.search("apple"))

        jpm, apple = asyncio.run(run())

        assert [r.ticker for r in jpm] == ["JPM"]
        assert [r.ticker for r in apple] == ["AAPL"]
        assert session.request.call_count == 1

    def test_rows_reused_within_ttl(self, config):
        now = [0.0]
        session = _session(SEC_DIRECTORY)
        directory = SECTickerDirectory(session, config, ttl_seconds=60, clock=lambda: now[0])

        asyncio.run(directory.rows())
        now[0] = 59.0
        rows = asyncio.run(directory.rows())

        assert len(rows) == 3
        assert session.request.call_count == 1

    def test_rows_refreshed_after_ttl(self, config):
        now = [0.0]
        refreshed = {
            "fields": SEC_DIRECTORY["fields"],
            "data": SEC_DIRECTORY["data"] + [[1999999, "Zeta Widgets Holdings", "ZWGT", "Nasdaq"]],
        }
        session = _session(SEC_DIRECTORY, refreshed)
        directory = SECTickerDirectory(session, config, ttl_seconds=60, clock=lambda: now[0])
        resolver = USResolver(Market.NASDAQ, config, directory=directory, session=session)

        assert asyncio.run(resolver.search("zeta")) == []
        now[0] = 61.0
        results = asyncio.run(resolver.search("zeta"))

        assert [r.ticker for r in results] == ["ZWGT"]
        assert session.request.call_count == 2

    def test_ttl_defaults_to_config(self):
        config = ResearchConfig(sec_directory_ttl_seconds=120.0)
        directory = SECTickerDirectory(MagicMock(), config)
        assert directory.ttl_seconds == 120.0
        assert directory.is_stale()

    def test_failed_download_is_retried(self, config):
        session = MagicMock()
        session.request.side_effect = [
            requests.ConnectionError("network unreachable"),
            _response(SEC_DIRECTORY),
        ]
        directory = SECTickerDirectory(session, config)

        with pytest.raises(requests.ConnectionError):
            asyncio.run(directory.rows())
        assert len(asyncio.run(directory.rows())) == 3

    def test_default_registry_shares_directory(self, config):
        registry = default_registry(config)
        assert registry.get(Market.NYSE).directory is registry.get(Market.NASDAQ).directory


# =============================================================================
# Mainland China
# =============================================================================


CNINFO_ROWS = [
    {"code": "600519", "zwjc": "贵州茅台", "category": "A股", "orgId": "gssh0600519"},
    {"code": "000858", "zwjc": "五粮液", "category": "A股", "orgId": "gssz0000858"},
    {"code": "00700", "zwjc": "腾讯控股", "category": "港股", "orgId": "9900011"},
]


class TestChinaResolver:
    """Tests for ChinaResolver."""

    def test_rejects_non_china_market(self, config):
        with pytest.raises(ValueError):
            ChinaResolver(Market.NYSE, config, session=MagicMock())

    def test_live_search_keeps_own_exchange(self, config):
        sse = ChinaResolver(Market.SSE, config, session=_session(CNINFO_ROWS))
        szse = ChinaResolver(Market.SZSE, config, session=_session(CNINFO_ROWS))

        sse_results = asyncio.run(sse.search("茅台"))
        szse_results = asyncio.run(szse.search("五粮液"))

        assert [r.ticker for r in sse_results] == ["600519"]
        assert sse_results[0].name == "贵州茅台酒股份有限公司"
        assert [r.ticker for r in szse_results] == ["000858"]

    def test_offline_falls_back_by_english_alias(self, config, offline_session):
        resolver = ChinaResolver(Market.SSE, config, session=offline_session)
        results = asyncio.run(resolver.search("moutai"))
        assert [r.ticker for r in results] == ["600519"]

    def test_placeholder_filings(self, config, offline_session):
        resolver = ChinaResolver(Market.SZSE, config, session=offline_session)
        filings = asyncio.run(resolver.list_filings("300750"))

        assert [f.document_kind for f in filings] == [
            DocumentKind.IPO,
            DocumentKind.IPO,
            DocumentKind.RIGHTS,
        ]
        assert [f.filing_date for f in filings] == ["2023-12-15", "2023-11-20", "2024-01-10"]
        assert all(f.is_placeholder for f in filings)
        assert filings[0].company_name == "宁德时代新能源科技股份有限公司"

    def test_placeholders_are_deterministic(self, config, offline_session):
        resolver = ChinaResolver(Market.SSE, config, session=offline_session)
        first = asyncio.run(resolver.list_filings("600519"))
        second = asyncio.run(resolver.list_filings("600519"))
        assert first == second

    def test_unknown_ticker_name(self, config, offline_session):
        resolver = ChinaResolver(Market.SSE, config, session=offline_session)
        filings = asyncio.run(resolver.list_filings("603999"))
        assert filings[0].company_name == "公司603999"


# =============================================================================
# Multi-market Search
# =============================================================================


class FakeResolver:
    """Resolver stand-in returning canned results or raising."""

    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error

    async def search(self, query):
        if self.error:
            raise self.error
        return list(self.results)


def _identity(ticker, market, sector=None, market_cap=None):
    return CompanyIdentity(
        name=f"Company {ticker}",
        ticker=ticker,
        market=market,
        sector=sector,
        market_cap=market_cap,
    )


class TestSearchMarkets:
    """Tests for search_markets."""

    def test_results_in_fixed_market_order(self):
        registry = ResolverRegistry({
            Market.SZSE: FakeResolver([_identity("000858", Market.SZSE)]),
            Market.HKEX: FakeResolver([_identity("0700", Market.HKEX)]),
            Market.NASDAQ: FakeResolver([_identity("AAPL", Market.NASDAQ)]),
        })
        results = asyncio.run(search_markets("q", registry))
        assert [r.market for r in results] == [Market.HKEX, Market.NASDAQ, Market.SZSE]

    def test_failing_branch_is_isolated(self):
        registry = ResolverRegistry({
            Market.HKEX: FakeResolver(error=RuntimeError("boom")),
            Market.NYSE: FakeResolver([_identity("JPM", Market.NYSE)]),
        })
        results = asyncio.run(search_markets("q", registry))
        assert [r.ticker for r in results] == ["JPM"]

    def test_dedupes_on_ticker_and_market(self):
        registry = ResolverRegistry({
            Market.NYSE: FakeResolver([_identity("BABA", Market.NYSE), _identity("BABA", Market.NYSE)]),
            Market.NASDAQ: FakeResolver([_identity("BABA", Market.NASDAQ)]),
        })
        results = asyncio.run(search_markets("q", registry))
        assert [r.key for r in results] == [("BABA", Market.NYSE), ("BABA", Market.NASDAQ)]

    def test_market_subset(self):
        registry = ResolverRegistry({
            Market.HKEX: FakeResolver([_identity("0700", Market.HKEX)]),
            Market.NYSE: FakeResolver([_identity("JPM", Market.NYSE)]),
        })
        results = asyncio.run(search_markets("q", registry, markets=[Market.NYSE]))
        assert [r.ticker for r in results] == ["JPM"]

    def test_sector_and_market_cap_filters(self):
        registry = ResolverRegistry({
            Market.NYSE: FakeResolver([
                _identity("JPM", Market.NYSE, sector="Financial Services", market_cap=5e11),
                _identity("XOM", Market.NYSE, sector="Energy", market_cap=4e11),
                _identity("BAC", Market.NYSE, sector="Financial Services"),
            ]),
        })
        by_sector = asyncio.run(search_markets("q", registry, sector="financial"))
        assert [r.ticker for r in by_sector] == ["JPM", "BAC"]

        by_cap = asyncio.run(search_markets("q", registry, min_market_cap=4.5e11))
        assert [r.ticker for r in by_cap] == ["JPM"]

    def test_all_branches_failing_returns_empty(self):
        registry = ResolverRegistry({
            Market.HKEX: FakeResolver(error=RuntimeError("down")),
            Market.SSE: FakeResolver(error=requests.Timeout("slow")),
        })
        assert asyncio.run(search_markets("q", registry)) == []

    def test_registry_unknown_market(self):
        registry = ResolverRegistry({})
        with pytest.raises(KeyError):
            registry.get(Market.HKEX)

    def test_unregistered_market_is_skipped(self):
        assert asyncio.run(search_markets("x", ResolverRegistry({}), markets=[Market.HKEX])) == []

    def test_unregistered_market_does_not_sink_registered_ones(self, caplog):
        caplog.set_level(logging.WARNING, logger="prospectus_research.resolvers")
        registry = ResolverRegistry({
            Market.NYSE: FakeResolver([_identity("JPM", Market.NYSE)]),
        })
        results = asyncio.run(
            search_markets("q", registry, markets=[Market.HKEX, Market.NYSE, Market.SSE])
        )

        assert [r.ticker for r in results] == ["JPM"]
        assert "['hkex', 'sse']" in caplog.text
