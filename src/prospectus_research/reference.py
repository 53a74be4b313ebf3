"""
Curated reference tables of well-known listed companies per market.

These are the second tier of every resolver: when a live lookup fails or
returns nothing, the query is matched against the table for that market.
Tables are built once at import and are read-only.
"""
from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional, Tuple

from prospectus_research.models import CompanyIdentity, Market


class ReferenceEntry(NamedTuple):
    """One curated company plus alternate names it can be found by."""

    identity: CompanyIdentity
    aliases: Tuple[str, ...] = ()

    def matches(self, needle: str) -> bool:
        """Case-insensitive substring match against name, ticker, sector, aliases."""
        haystacks = [self.identity.name, self.identity.ticker, *self.aliases]
        if self.identity.sector:
            haystacks.append(self.identity.sector)
        return any(needle in value.lower() for value in haystacks)


class ReferenceTable:
    """Immutable lookup over curated entries, indexed by ticker.

    Example:
        table = REFERENCE_TABLES[Market.HKEX]
        table.search("tencent")   # [CompanyIdentity(ticker="0700", ...)]
    """

    def __init__(self, market: Market, entries: Iterable[ReferenceEntry]) -> None:
        self.market = market
        self._entries: Tuple[ReferenceEntry, ...] = tuple(entries)
        by_ticker: Dict[str, ReferenceEntry] = {}
        for entry in self._entries:
            # first entry wins for a repeated ticker
            by_ticker.setdefault(entry.identity.ticker, entry)
        self._by_ticker: Mapping[str, ReferenceEntry] = MappingProxyType(by_ticker)

    def get(self, ticker: str) -> Optional[CompanyIdentity]:
        entry = self._by_ticker.get(ticker)
        return entry.identity if entry else None

    def search(self, query: str) -> List[CompanyIdentity]:
        """Return every entry matching the query, in table order. Never raises."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return [entry.identity for entry in self._entries if entry.matches(needle)]

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ReferenceTable(market={self.market.value}, entries={len(self)})"


def _rows(market: Market, rows: Iterable[tuple]) -> List[ReferenceEntry]:
    entries = []
    for name, ticker, sector, *aliases in rows:
        entries.append(
            ReferenceEntry(
                identity=CompanyIdentity(name=name, ticker=ticker, market=market, sector=sector),
                aliases=tuple(aliases),
            )
        )
    return entries


# =============================================================================
# Curated Data
# =============================================================================

# (name, ticker, sector, *aliases)
_HKEX_ROWS = [
    ("Tencent Holdings Limited", "0700", "Technology", "腾讯控股", "腾讯"),
    ("China Mobile Limited", "0941", "Telecommunications", "中国移动"),
    ("HSBC Holdings plc", "0005", "Financial Services", "汇丰控股", "汇丰"),
    ("AIA Group Limited", "1299", "Financial Services", "友邦保险"),
    ("Alibaba Group Holding Limited", "9988", "Consumer Discretionary", "阿里巴巴"),
    ("Meituan", "3690", "Consumer Discretionary", "美团"),
    ("Xiaomi Corporation", "1810", "Technology", "小米集团", "小米"),
    ("JD.com, Inc.", "9618", "Consumer Discretionary", "京东集团", "京东"),
    ("CK Hutchison Holdings Limited", "0001", "Industrials", "长和"),
    ("Hong Kong Exchanges and Clearing Limited", "0388", "Financial Services", "香港交易所", "港交所"),
    ("Ping An Insurance (Group) Company of China, Ltd.", "2318", "Financial Services", "中国平安"),
    ("BYD Company Limited", "1211", "Automobiles", "比亚迪股份", "比亚迪"),
    ("Li Ning Company Limited", "2331", "Consumer Discretionary", "李宁"),
    ("Industrial and Commercial Bank of China Limited", "1398", "Financial Services", "工商银行", "ICBC"),
    ("Kuaishou Technology", "1024", "Technology", "快手"),
    ("NetEase, Inc.", "9999", "Technology", "网易"),
    ("Baidu, Inc.", "9888", "Technology", "百度集团", "百度"),
]

_NYSE_ROWS = [
    ("JPMorgan Chase & Co.", "JPM", "Financial Services"),
    ("Johnson & Johnson", "JNJ", "Healthcare"),
    ("Visa Inc.", "V", "Financial Services"),
    ("Procter & Gamble Co.", "PG", "Consumer Staples"),
    ("Mastercard Inc.", "MA", "Financial Services"),
    ("UnitedHealth Group Inc.", "UNH", "Healthcare"),
    ("Home Depot Inc.", "HD", "Consumer Discretionary"),
    ("Bank of America Corp.", "BAC", "Financial Services"),
    ("Coca-Cola Co.", "KO", "Consumer Staples"),
    ("Exxon Mobil Corporation", "XOM", "Energy"),
    ("Chevron Corporation", "CVX", "Energy"),
    ("Walt Disney Co.", "DIS", "Communication Services"),
    ("Nike Inc.", "NKE", "Consumer Discretionary"),
    ("International Business Machines Corporation", "IBM", "Technology"),
    ("Alibaba Group Holding Limited", "BABA", "Consumer Discretionary", "阿里巴巴"),
]

_NASDAQ_ROWS = [
    ("Apple Inc.", "AAPL", "Technology", "苹果"),
    ("Microsoft Corporation", "MSFT", "Technology", "微软"),
    ("Amazon.com Inc.", "AMZN", "Consumer Discretionary", "亚马逊"),
    ("Alphabet Inc.", "GOOGL", "Technology", "Google", "谷歌"),
    ("Tesla Inc.", "TSLA", "Consumer Discretionary", "特斯拉"),
    ("Meta Platforms Inc.", "META", "Technology", "Facebook"),
    ("NVIDIA Corporation", "NVDA", "Technology", "英伟达"),
    ("Netflix Inc.", "NFLX", "Communication Services"),
    ("PayPal Holdings Inc.", "PYPL", "Financial Services"),
    ("Adobe Inc.", "ADBE", "Technology"),
    ("Cisco Systems Inc.", "CSCO", "Technology"),
    ("PepsiCo Inc.", "PEP", "Consumer Staples"),
    ("Intel Corporation", "INTC", "Technology"),
    ("Comcast Corporation", "CMCSA", "Communication Services"),
    ("Broadcom Inc.", "AVGO", "Technology"),
    ("Texas Instruments Inc.", "TXN", "Technology"),
    ("Qualcomm Inc.", "QCOM", "Technology"),
    ("Amgen Inc.", "AMGN", "Healthcare"),
    ("Starbucks Corporation", "SBUX", "Consumer Discretionary"),
    ("Gilead Sciences Inc.", "GILD", "Healthcare"),
    ("Mondelez International Inc.", "MDLZ", "Consumer Staples"),
    ("Advanced Micro Devices Inc.", "AMD", "Technology"),
]

_SSE_ROWS = [
    ("中国石油化工股份有限公司", "600028", "能源", "Sinopec"),
    ("中国石油天然气股份有限公司", "601857", "能源", "PetroChina"),
    ("中国工商银行股份有限公司", "601398", "金融", "ICBC", "工商银行"),
    ("中国建设银行股份有限公司", "601939", "金融", "China Construction Bank", "建设银行"),
    ("中国农业银行股份有限公司", "601288", "金融", "Agricultural Bank of China", "农业银行"),
    ("中国银行股份有限公司", "601988", "金融", "Bank of China"),
    ("贵州茅台酒股份有限公司", "600519", "消费品", "Kweichow Moutai", "茅台"),
    ("中国平安保险(集团)股份有限公司", "601318", "金融", "Ping An", "中国平安"),
    ("招商银行股份有限公司", "600036", "金融", "China Merchants Bank"),
    ("中国人寿保险股份有限公司", "601628", "金融", "China Life"),
    ("中国太平洋保险(集团)股份有限公司", "601601", "金融", "CPIC", "中国太保"),
    ("上海浦东发展银行股份有限公司", "600000", "金融", "SPD Bank", "浦发银行"),
    ("兴业银行股份有限公司", "601166", "金融", "Industrial Bank"),
    ("中国民生银行股份有限公司", "600016", "金融", "Minsheng Bank", "民生银行"),
    ("中信证券股份有限公司", "600030", "金融", "CITIC Securities"),
    ("海通证券股份有限公司", "600837", "金融", "Haitong Securities"),
    ("华泰证券股份有限公司", "601688", "金融", "Huatai Securities"),
    ("中国联合网络通信股份有限公司", "600050", "通信", "China Unicom", "中国联通"),
    ("中国移动有限公司", "600941", "通信", "China Mobile", "中国移动"),
    ("三一重工股份有限公司", "600031", "机械", "Sany Heavy Industry"),
    ("江苏恒瑞医药股份有限公司", "600276", "医药", "Hengrui Medicine", "恒瑞医药"),
    ("中芯国际集成电路制造有限公司", "688981", "科技", "SMIC", "中芯国际"),
]

_SZSE_ROWS = [
    ("宜宾五粮液股份有限公司", "000858", "消费品", "Wuliangye", "五粮液"),
    ("比亚迪股份有限公司", "002594", "汽车", "BYD", "比亚迪"),
    ("万科企业股份有限公司", "000002", "房地产", "Vanke", "万科"),
    ("平安银行股份有限公司", "000001", "金融", "Ping An Bank", "平安银行"),
    ("美的集团股份有限公司", "000333", "家电", "Midea", "美的"),
    ("珠海格力电器股份有限公司", "000651", "家电", "Gree Electric", "格力"),
    ("杭州海康威视数字技术股份有限公司", "002415", "科技", "Hikvision", "海康威视"),
    ("大族激光科技产业集团股份有限公司", "002008", "科技", "Han's Laser", "大族激光"),
    ("深圳迈瑞生物医疗电子股份有限公司", "300760", "医疗", "Mindray", "迈瑞医疗"),
    ("宁德时代新能源科技股份有限公司", "300750", "新能源", "CATL", "宁德时代"),
    ("东方财富信息股份有限公司", "300059", "金融科技", "East Money", "东方财富"),
    ("顺丰控股股份有限公司", "002352", "物流", "SF Holding", "顺丰"),
    ("中兴通讯股份有限公司", "000063", "通信", "ZTE", "中兴"),
    ("京东方科技集团股份有限公司", "000725", "科技", "BOE Technology", "京东方"),
    ("立讯精密工业股份有限公司", "002475", "电子", "Luxshare Precision", "立讯精密"),
    ("温氏食品集团股份有限公司", "300498", "农业", "Wens Foodstuff", "温氏"),
    ("牧原食品股份有限公司", "002714", "农业", "Muyuan Foods", "牧原"),
]


REFERENCE_TABLES: Mapping[Market, ReferenceTable] = MappingProxyType({
    Market.HKEX: ReferenceTable(Market.HKEX, _rows(Market.HKEX, _HKEX_ROWS)),
    Market.NYSE: ReferenceTable(Market.NYSE, _rows(Market.NYSE, _NYSE_ROWS)),
    Market.NASDAQ: ReferenceTable(Market.NASDAQ, _rows(Market.NASDAQ, _NASDAQ_ROWS)),
    Market.SSE: ReferenceTable(Market.SSE, _rows(Market.SSE, _SSE_ROWS)),
    Market.SZSE: ReferenceTable(Market.SZSE, _rows(Market.SZSE, _SZSE_ROWS)),
})
