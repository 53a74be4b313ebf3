"""
Analysis Orchestrator - applies one of four investment philosophies to a
prospectus via an LLM and parses the free-text reply into an AnalysisRecord.

The reply is treated as a labeled-section text format:

    Score: 7
    Recommendation: Buy
    Strengths:
    - ...
    Weaknesses:
    - ...
    Risks:
    - ...
    Key Metrics:
    - ROE: 15.2
    Summary:
    ...

Labels are recognized in English and Chinese. A section runs until the next
recognized label. Parsing never raises: a reply that cannot be read yields a
defaulted record flagged as degraded.
"""
from __future__ import annotations

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from anthropic import Anthropic

from prospectus_research.config import ResearchConfig, default_config
from prospectus_research.models import (
    AnalysisMethod,
    AnalysisRecord,
    CompanyIdentity,
    FinancialDataset,
    Recommendation,
)

logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Raised when the reasoning engine call for a method fails."""

    def __init__(self, method: AnalysisMethod, message: str):
        self.method = method
        self.message = message
        super().__init__(f"{method.value} analysis failed: {message}")


# =============================================================================
# Prompt Templates
# =============================================================================

_PROMPT_FOOTER = "Provide an objective, professional investment analysis."

SYSTEM_PROMPTS: Dict[AnalysisMethod, str] = {
    AnalysisMethod.BUFFETT: f"""You are a professional investment analyst following Warren Buffett's value investing philosophy. Focus on:
1. Intrinsic value and margin of safety
2. Durable competitive advantage (the moat)
3. Management ability and integrity
4. Consistent, growing earnings power
5. A reasonable valuation
{_PROMPT_FOOTER}""",

    AnalysisMethod.LYNCH: f"""You are a professional investment analyst following Peter Lynch's growth investing philosophy. Focus on:
1. Growth rate and growth potential
2. Whether the PEG ratio (price/earnings to growth) is reasonable
3. Industry position and market opportunity
4. Management execution
5. Financial health
{_PROMPT_FOOTER}""",

    AnalysisMethod.GRAHAM: f"""You are a professional investment analyst following Benjamin Graham's margin-of-safety philosophy. Focus on:
1. Adequacy of the margin of safety
2. Balance sheet strength
3. Earnings stability
4. Conservative valuation
5. Risk control
{_PROMPT_FOOTER}""",

    AnalysisMethod.FISHER: f"""You are a professional investment analyst following Philip Fisher's growth stock philosophy. Focus on:
1. Long-range prospects of products and services
2. Research and development capability
3. Effectiveness of the sales organization
4. Room for profit margin improvement
5. Management's long-range outlook
{_PROMPT_FOOTER}""",
}

METHOD_NAMES: Dict[AnalysisMethod, str] = {
    AnalysisMethod.BUFFETT: "Buffett value investing",
    AnalysisMethod.LYNCH: "Peter Lynch growth investing",
    AnalysisMethod.GRAHAM: "Graham margin of safety",
    AnalysisMethod.FISHER: "Philip Fisher growth stock",
}

ANALYSIS_PROMPT = """Using the {method_name} framework, analyze the following company as an investment.

Company:
- Name: {name}
- Ticker: {ticker}
- Exchange: {market}
- Sector: {sector}

Financial data:
{financials}

Prospectus excerpt:
{excerpt}

Reply in exactly this layout:

Score: [integer 1-10]
Recommendation: [Buy/Hold/Sell/Avoid]

Strengths:
- [strength 1]
- [strength 2]
- [strength 3]

Weaknesses:
- [weakness 1]
- [weakness 2]
- [weakness 3]

Risks:
- [risk 1]
- [risk 2]
- [risk 3]

Key Metrics:
- [metric 1]: [number]
- [metric 2]: [number]
- [metric 3]: [number]

Summary:
[investment summary, under 200 words]
"""

NOT_PROVIDED = "not provided"


# =============================================================================
# Prompt Construction
# =============================================================================


def _format_amount(value: Optional[float]) -> str:
    return f"{value:,.0f}" if value is not None else NOT_PROVIDED


def _format_series(values: Optional[List[float]]) -> str:
    if not values:
        return NOT_PROVIDED
    return ", ".join(_format_amount(v) for v in values)


def _format_ratio(value: Optional[float], suffix: str = "") -> str:
    return f"{value:.2f}{suffix}" if value is not None else NOT_PROVIDED


def format_financials(data: FinancialDataset) -> str:
    """Render every financial field, absent ones as an explicit marker."""
    lines = [
        f"Revenue: {_format_series(data.revenue)}",
        f"Net income: {_format_series(data.net_income)}",
        f"Operating cash flow: {_format_series(data.operating_cash_flow)}",
        f"Total assets: {_format_amount(data.total_assets)}",
        f"Total liabilities: {_format_amount(data.total_liabilities)}",
        f"Shareholder equity: {_format_amount(data.shareholder_equity)}",
        f"ROE: {_format_ratio(data.roe, '%')}",
        f"ROA: {_format_ratio(data.roa, '%')}",
        f"Debt to equity: {_format_ratio(data.debt_to_equity)}",
    ]
    return "\n".join(lines)


def build_prompt(
    text: str,
    financial_data: FinancialDataset,
    method: AnalysisMethod,
    identity: CompanyIdentity,
    prefix_chars: int = 8000,
) -> str:
    """Build the user prompt for one method.

    Args:
        text: Full document text (only a prefix is sent)
        financial_data: Extracted financials
        method: Investment philosophy
        identity: Company being analyzed
        prefix_chars: Maximum document characters to include

    Returns:
        Prompt string
    """
    return ANALYSIS_PROMPT.format(
        method_name=METHOD_NAMES[method],
        name=identity.name,
        ticker=identity.ticker,
        market=identity.market.value.upper(),
        sector=identity.sector or NOT_PROVIDED,
        financials=format_financials(financial_data),
        excerpt=(text or "")[:prefix_chars],
    )


# =============================================================================
# Reply Parsing
# =============================================================================

DEFAULT_SCORE = 5
MIN_SCORE = 1
MAX_SCORE = 10
NO_INFORMATION = "No information available"
NO_SUMMARY = "No summary provided"
DEGRADED_SUMMARY = "The analysis reply could not be parsed"

SECTION_LABELS: Dict[str, List[str]] = {
    "score": ["score", "rating", "评分"],
    "recommendation": ["recommendation", "investment recommendation", "投资建议", "建议"],
    "strengths": ["strengths", "优势"],
    "weaknesses": ["weaknesses", "劣势"],
    "risks": ["risks", "key risks", "风险"],
    "key_metrics": ["key metrics", "metrics", "关键指标"],
    "summary": ["summary", "总结"],
}

_LABEL_TO_SECTION = {
    label: section for section, labels in SECTION_LABELS.items() for label in labels
}

# Longest labels first so "key metrics" wins over "metrics"
_LABEL_ALTERNATION = "|".join(
    re.escape(label).replace(r"\ ", r"\s+")
    for label in sorted(_LABEL_TO_SECTION, key=len, reverse=True)
)

# A label at the start of a line, optionally wrapped in markdown emphasis
# or preceded by a heading marker, followed by an ASCII or full-width colon.
_LABEL_PATTERN = re.compile(
    rf"^[ \t]*(?:#+[ \t]*)?[*_]*[ \t]*(?P<label>{_LABEL_ALTERNATION})[ \t]*[*_]*[ \t]*[:：][*_]*",
    re.IGNORECASE | re.MULTILINE,
)

_NUMBER_PATTERN = re.compile(r"-?\d[\d,]*(?:\.\d+)?")

_RECOMMENDATION_PATTERN = re.compile(
    r"(?<![A-Za-z])(buy|hold|sell|avoid)(?![A-Za-z])|(买入|持有|卖出|避免|回避)",
    re.IGNORECASE,
)

_RECOMMENDATION_VALUES = {
    "buy": Recommendation.BUY,
    "hold": Recommendation.HOLD,
    "sell": Recommendation.SELL,
    "avoid": Recommendation.AVOID,
    "买入": Recommendation.BUY,
    "持有": Recommendation.HOLD,
    "卖出": Recommendation.SELL,
    "避免": Recommendation.AVOID,
    "回避": Recommendation.AVOID,
}

_BULLET_PATTERN = re.compile(r"^\s*(?:[-*•·]|\d+[.)、])\s*(?P<item>.+?)\s*$")


@dataclass(frozen=True)
class ParsedReply:
    """Result of parsing a reply: a record plus whether it was defaulted."""

    record: AnalysisRecord
    degraded: bool = False
    reason: Optional[str] = None


def split_sections(text: str) -> Dict[str, str]:
    """Split a reply into {section: body}. The first occurrence of a section wins."""
    matches = list(_LABEL_PATTERN.finditer(text))
    sections: Dict[str, str] = {}
    for i, match in enumerate(matches):
        label = re.sub(r"\s+", " ", match.group("label").lower())
        section = _LABEL_TO_SECTION[label]
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        sections.setdefault(section, text[match.end():end].strip())
    return sections


def parse_score(body: Optional[str]) -> int:
    """First number in the score section, rounded and clamped into [1, 10]."""
    if not body:
        return DEFAULT_SCORE
    match = _NUMBER_PATTERN.search(body)
    if not match:
        return DEFAULT_SCORE
    try:
        value = float(match.group(0).replace(",", ""))
    except ValueError:
        return DEFAULT_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, int(round(value))))


def parse_recommendation(body: Optional[str]) -> Recommendation:
    if not body:
        return Recommendation.HOLD
    match = _RECOMMENDATION_PATTERN.search(body)
    if not match:
        return Recommendation.HOLD
    token = (match.group(1) or match.group(2)).lower()
    return _RECOMMENDATION_VALUES[token]


def parse_list_items(body: Optional[str]) -> List[str]:
    """Bullet or numbered lines; a single placeholder when there are none."""
    items = []
    for line in (body or "").splitlines():
        match = _BULLET_PATTERN.match(line)
        if match:
            item = match.group("item").strip(" *_")
            if item:
                items.append(item)
    return items or [NO_INFORMATION]


def parse_key_metrics(body: Optional[str]) -> Dict[str, float]:
    """'label: value' lines with a numeric value; other lines are dropped."""
    metrics: Dict[str, float] = {}
    for line in (body or "").splitlines():
        bullet = _BULLET_PATTERN.match(line)
        line = bullet.group("item") if bullet else line.strip()
        parts = re.split(r"[:：]", line, maxsplit=1)
        if len(parts) != 2:
            continue
        label = parts[0].strip(" *_")
        match = _NUMBER_PATTERN.search(parts[1])
        if not label or not match:
            continue
        try:
            metrics[label] = float(match.group(0).replace(",", ""))
        except ValueError:
            continue
    return metrics


def default_record(
    method: AnalysisMethod,
    ticker: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> AnalysisRecord:
    """A fully defaulted, well-typed record."""
    return AnalysisRecord(
        method=method,
        score=DEFAULT_SCORE,
        summary=DEGRADED_SUMMARY,
        strengths=[NO_INFORMATION],
        weaknesses=[NO_INFORMATION],
        risks=[NO_INFORMATION],
        recommendation=Recommendation.HOLD,
        key_metrics={},
        created_at=created_at or datetime.now(),
        ticker=ticker,
    )


def parse_analysis_reply(
    text: str,
    method: AnalysisMethod,
    ticker: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> ParsedReply:
    """
    Parse a reasoning-engine reply into an AnalysisRecord.

    Never raises. A reply with no recognizable section, or one that fails
    to parse, yields a defaulted record with degraded=True.

    Args:
        text: Raw reply text
        method: Method the reply answers
        ticker: Ticker stamped on the record
        created_at: Creation timestamp (default: now)

    Returns:
        ParsedReply
    """
    created_at = created_at or datetime.now()
    try:
        sections = split_sections(text or "")
        if not sections:
            return ParsedReply(
                record=default_record(method, ticker, created_at),
                degraded=True,
                reason="no recognized sections",
            )

        record = AnalysisRecord(
            method=method,
            score=parse_score(sections.get("score")),
            summary=sections.get("summary") or NO_SUMMARY,
            strengths=parse_list_items(sections.get("strengths")),
            weaknesses=parse_list_items(sections.get("weaknesses")),
            risks=parse_list_items(sections.get("risks")),
            recommendation=parse_recommendation(sections.get("recommendation")),
            key_metrics=parse_key_metrics(sections.get("key_metrics")),
            created_at=created_at,
            ticker=ticker,
        )
        return ParsedReply(record=record)

    except Exception as e:
        logger.warning(f"Could not parse {method.value} reply: {e}")
        return ParsedReply(
            record=default_record(method, ticker, created_at),
            degraded=True,
            reason=str(e),
        )


# =============================================================================
# Reasoning Engine
# =============================================================================


class ReasoningEngine(Protocol):
    """Anything that turns a system directive and a prompt into reply text."""

    async def complete(self, system: str, prompt: str) -> str:
        ...


class AnthropicEngine:
    """Claude via the Anthropic SDK, run in a worker thread."""

    def __init__(self, config: ResearchConfig = default_config, client: Optional[Anthropic] = None):
        self.config = config
        self._client = client

    def _get_client(self) -> Anthropic:
        if self._client is None:
            api_key = os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ValueError(
                    "ANTHROPIC_API_KEY environment variable required for analysis"
                )
            self._client = Anthropic(
                api_key=api_key,
                timeout=self.config.reasoning_timeout_seconds,
            )
        return self._client

    def _create(self, system: str, prompt: str) -> str:
        response = self._get_client().messages.create(
            model=self.config.analysis_model,
            max_tokens=self.config.analysis_max_tokens,
            temperature=self.config.analysis_temperature,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text.strip()

    async def complete(self, system: str, prompt: str) -> str:
        return await asyncio.to_thread(self._create, system, prompt)


# =============================================================================
# Pacing
# =============================================================================


class RateLimiter:
    """Enforces a minimum interval between consecutive calls."""

    def __init__(self, min_interval: float):
        self.min_interval = max(0.0, min_interval)
        self._last_call: Optional[float] = None

    async def wait(self) -> None:
        if self._last_call is not None and self.min_interval > 0:
            remaining = self.min_interval - (time.monotonic() - self._last_call)
            if remaining > 0:
                await asyncio.sleep(remaining)
        self._last_call = time.monotonic()


# =============================================================================
# Orchestrator
# =============================================================================


ALL_METHODS: List[AnalysisMethod] = list(AnalysisMethod)


class InvestmentAnalyzer:
    """
    Runs investment-method analyses against a reasoning engine.

    Example:
        analyzer = InvestmentAnalyzer()
        record = await analyzer.analyze(text, financials, AnalysisMethod.BUFFETT, identity)
        records = await analyzer.batch_analyze(text, financials, identity)
    """

    def __init__(
        self,
        engine: Optional[ReasoningEngine] = None,
        config: ResearchConfig = default_config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.engine = engine or AnthropicEngine(config)
        self.clock = clock

    async def analyze(
        self,
        text: str,
        financial_data: FinancialDataset,
        method: AnalysisMethod,
        identity: CompanyIdentity,
    ) -> AnalysisRecord:
        """
        Analyze a document with one method.

        Raises:
            AnalysisError: If the reasoning engine call fails or times out.
                Reply parsing problems never raise.
        """
        prompt = build_prompt(
            text, financial_data, method, identity, self.config.document_prefix_chars
        )
        logger.info(f"Running {method.value} analysis for {identity.ticker}")

        try:
            reply = await asyncio.wait_for(
                self.engine.complete(SYSTEM_PROMPTS[method], prompt),
                timeout=self.config.reasoning_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisError(
                method, f"timed out after {self.config.reasoning_timeout_seconds}s"
            ) from e
        except Exception as e:
            raise AnalysisError(method, str(e)) from e

        parsed = parse_analysis_reply(reply, method, identity.ticker, self.clock())
        if parsed.degraded:
            logger.warning(f"{method.value} reply degraded to defaults: {parsed.reason}")
        return parsed.record

    async def batch_analyze(
        self,
        text: str,
        financial_data: FinancialDataset,
        identity: CompanyIdentity,
        methods: Optional[Sequence[AnalysisMethod]] = None,
    ) -> List[AnalysisRecord]:
        """
        Run several methods one after another, paced by the configured interval.

        A failing method is logged and left out; the batch itself does not raise.

        Returns:
            Records for the methods that succeeded, in request order
        """
        methods = list(methods) if methods is not None else ALL_METHODS
        limiter = RateLimiter(self.config.pacing_interval_seconds)
        records = []

        for method in methods:
            await limiter.wait()
            try:
                records.append(await self.analyze(text, financial_data, method, identity))
            except Exception as e:
                logger.error(f"Dropping {method.value} from batch: {e}")

        logger.info(f"Batch produced {len(records)}/{len(methods)} analyses for {identity.ticker}")
        return records
