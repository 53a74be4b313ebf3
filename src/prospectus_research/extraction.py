"""
Pattern Extractor: deterministic extraction of financial and business facts
from unstructured prospectus text. No LLM. No network calls.

Extraction Strategy:
- Each field has an ordered list of bilingual (English / Chinese) labels.
- Numeric fields: the labels are compiled into one alternation followed by a
  numeric capture group, so every match is collected in document order
  without overlapping ("total revenue: 10" is not also read as "revenue: 10").
- The bare revenue label does not fire inside qualified lines such as
  "cost of revenue" or "other revenue".
- Negative values are read from a leading "-" or accounting brackets,
  so loss years ("net income: (1,234)") keep their sign.
- Series fields keep the first three matches (most recent period first);
  scalar fields keep the first match only.
- Qualitative fields capture a bounded span (100-500 chars) after a label.

Both public functions are total: any text in, a well-typed model out.
"""
from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Pattern, Sequence

from prospectus_research.models import BusinessProfile, FinancialDataset

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

# Series fields report at most this many periods
MAX_SERIES_PERIODS = 3

# Label / value separator: ASCII or full-width colon, or whitespace
_SEPARATOR = r"[:：\s]+"

# Optional sign or opening bracket, thousands separators and decimal point;
# validated again by parse_number
_NUMBER = r"(\(?-?[0-9][0-9,，]*\.?[0-9]*\)?)"

# Labels per numeric field, most specific first
REVENUE_LABELS = [
    r"total\s+revenues?",
    r"(?<!of\s)(?<!other\s)(?<!deferred\s)\brevenues?",
    r"营业总收入",
    r"(?<!其他)营业收入",
    r"总收入",
]

NET_INCOME_LABELS = [
    r"net\s+income",
    r"net\s+profit",
    r"profit\s+for\s+the\s+year",
    r"净利润",
    r"年度利润",
]

TOTAL_ASSETS_LABELS = [
    r"total\s+assets",
    r"资产总计",
    r"总资产",
]

TOTAL_LIABILITIES_LABELS = [
    r"total\s+liabilities",
    r"total\s+debt",
    r"负债合计",
    r"总负债",
]

EQUITY_LABELS = [
    r"total\s+shareholders['’]?\s*equity",
    r"shareholders['’]?\s*equity",
    r"stockholders['’]?\s*equity",
    r"total\s+equity",
    r"股东权益合计",
    r"股东权益",
]

OPERATING_CASH_FLOW_LABELS = [
    r"net\s+cash\s+(?:generated\s+)?from\s+operating\s+activities",
    r"operating\s+cash\s+flows?",
    r"cash\s+from\s+operations",
    r"经营活动产生的现金流量净额",
    r"经营活动现金流",
]


def _compile_labels(labels: Sequence[str]) -> Pattern[str]:
    alternation = "|".join(f"(?:{label})" for label in labels)
    return re.compile(rf"(?:{alternation}){_SEPARATOR}{_NUMBER}", re.IGNORECASE)


REVENUE_PATTERN = _compile_labels(REVENUE_LABELS)
NET_INCOME_PATTERN = _compile_labels(NET_INCOME_LABELS)
TOTAL_ASSETS_PATTERN = _compile_labels(TOTAL_ASSETS_LABELS)
TOTAL_LIABILITIES_PATTERN = _compile_labels(TOTAL_LIABILITIES_LABELS)
EQUITY_PATTERN = _compile_labels(EQUITY_LABELS)
OPERATING_CASH_FLOW_PATTERN = _compile_labels(OPERATING_CASH_FLOW_LABELS)

# Qualitative patterns: English spans stop at ".", Chinese spans at "。"
BUSINESS_MODEL_PATTERNS = [
    re.compile(r"business\s+model[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"our\s+business[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"业务模式[：:\s]+([^。]{100,500})"),
    re.compile(r"主营业务[：:\s]+([^。]{100,500})"),
]

ADVANTAGE_PATTERNS = [
    re.compile(r"competitive\s+advantages?[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"our\s+strengths?[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"竞争优势[：:\s]+([^。]{100,500})"),
]

RISK_PATTERNS = [
    re.compile(r"risk\s+factors?[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"\brisks?[:\s]+([^.]{100,500})", re.IGNORECASE),
    re.compile(r"风险因素[：:\s]+([^。]{100,500})"),
]


# =============================================================================
# Numeric Helpers
# =============================================================================


def parse_number(raw: str) -> Optional[float]:
    """Parse a captured numeric string, stripping thousands separators.

    A value in accounting brackets ("(1,234)") is negative, as is one with a
    leading "-". Returns None for anything that is not a finite number
    (e.g. "," or "1.2.3").
    """
    cleaned = raw.replace(",", "").replace("，", "").strip()
    bracketed = cleaned.startswith("(")
    cleaned = cleaned.strip("()").strip()
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return -abs(value) if bracketed else value


def find_numbers(text: str, pattern: Pattern[str]) -> List[float]:
    """Collect every parsable number captured by `pattern`, in document order."""
    numbers = []
    for match in pattern.finditer(text):
        value = parse_number(match.group(1))
        if value is not None:
            numbers.append(value)
    return numbers


def _first_series(text: str, pattern: Pattern[str]) -> Optional[List[float]]:
    numbers = find_numbers(text, pattern)
    return numbers[:MAX_SERIES_PERIODS] if numbers else None


def _first_scalar(text: str, pattern: Pattern[str]) -> Optional[float]:
    numbers = find_numbers(text, pattern)
    return numbers[0] if numbers else None


# =============================================================================
# Text Helpers
# =============================================================================


def _clean_span(span: str) -> str:
    return " ".join(span.split())


def find_first_span(text: str, patterns: Sequence[Pattern[str]]) -> Optional[str]:
    """Return the first span captured by the highest-priority matching pattern."""
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return _clean_span(match.group(1))
    return None


def find_all_spans(text: str, patterns: Sequence[Pattern[str]]) -> List[str]:
    """Return every span from every pattern, pattern by pattern.

    Overlapping spans from different patterns are kept; duplicates are
    resolved downstream by the report synthesizer.
    """
    spans = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            if match.group(1).strip():
                spans.append(_clean_span(match.group(1)))
    return spans


# =============================================================================
# Public API
# =============================================================================


def extract_financials(text: str) -> FinancialDataset:
    """Extract a FinancialDataset from document text.

    Missing labels yield absent fields; ratios are derived by the model.
    """
    text = text or ""
    dataset = FinancialDataset(
        revenue=_first_series(text, REVENUE_PATTERN),
        net_income=_first_series(text, NET_INCOME_PATTERN),
        total_assets=_first_scalar(text, TOTAL_ASSETS_PATTERN),
        total_liabilities=_first_scalar(text, TOTAL_LIABILITIES_PATTERN),
        shareholder_equity=_first_scalar(text, EQUITY_PATTERN),
        operating_cash_flow=_first_series(text, OPERATING_CASH_FLOW_PATTERN),
    )
    logger.debug(f"Extracted financials: {dataset.model_dump(exclude_none=True)}")
    return dataset


def extract_business_profile(text: str) -> BusinessProfile:
    """Extract business model, competitive advantages and risk statements."""
    text = text or ""
    return BusinessProfile(
        business_model=find_first_span(text, BUSINESS_MODEL_PATTERNS),
        competitive_advantages=find_all_spans(text, ADVANTAGE_PATTERNS),
        risks=find_all_spans(text, RISK_PATTERNS),
    )
