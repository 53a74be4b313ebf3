"""
Pydantic models for company resolution, document acquisition and analysis.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


# =============================================================================
# Enumerations
# =============================================================================


class Market(str, Enum):
    """Exchanges a company can be resolved against."""

    HKEX = "hkex"
    NYSE = "nyse"
    NASDAQ = "nasdaq"
    SSE = "sse"
    SZSE = "szse"


class AnalysisMethod(str, Enum):
    """The four investment philosophies applied to a prospectus."""

    BUFFETT = "buffett"   # intrinsic value & moat
    LYNCH = "lynch"       # growth & PEG
    GRAHAM = "graham"     # margin of safety & balance sheet
    FISHER = "fisher"     # qualitative 15-point checklist


class Recommendation(str, Enum):
    BUY = "Buy"
    HOLD = "Hold"
    SELL = "Sell"
    AVOID = "Avoid"


class DocumentKind(str, Enum):
    IPO = "IPO"
    SECONDARY = "Secondary"
    RIGHTS = "Rights"


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


# =============================================================================
# Resolution Models
# =============================================================================


class CompanyIdentity(BaseModel):
    """A listed company resolved from a free-text query."""

    model_config = ConfigDict(frozen=True)

    name: str
    ticker: str
    market: Market
    sector: Optional[str] = None
    market_cap: Optional[float] = None

    @property
    def key(self) -> Tuple[str, Market]:
        """Uniqueness key across markets."""
        return (self.ticker, self.market)


class FilingRecord(BaseModel):
    """A candidate offering document filed by a company."""

    model_config = ConfigDict(frozen=True)

    ticker: str
    market: Market
    company_name: str
    filing_date: str                # ISO date, e.g. "2024-01-15"
    document_url: str
    document_kind: DocumentKind
    title: Optional[str] = None

    # Placeholder records point at no real document (placeholder:// URL)
    is_placeholder: bool = False


# =============================================================================
# Document Models
# =============================================================================


class DocumentMetadata(BaseModel):
    """Structural metadata read from a document payload."""

    page_count: int
    title: Optional[str] = None
    author: Optional[str] = None
    creation_date: Optional[str] = None


class RawDocument(BaseModel):
    """Text extracted from a downloaded document. The bytes are not kept."""

    text: str
    metadata: DocumentMetadata


class FinancialDataset(BaseModel):
    """Numeric facts extracted from a document. Every field may be absent.

    Series fields hold up to three periods, most recent first. Ratios are
    derived on access so they can never go stale against the base fields.
    """

    revenue: Optional[List[float]] = None
    net_income: Optional[List[float]] = None
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    shareholder_equity: Optional[float] = None
    operating_cash_flow: Optional[List[float]] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def roe(self) -> Optional[float]:
        """Return on equity, in percent."""
        if not self.net_income or not self.shareholder_equity:
            return None
        return self.net_income[0] * 100 / self.shareholder_equity

    @computed_field  # type: ignore[prop-decorator]
    @property
    def roa(self) -> Optional[float]:
        """Return on assets, in percent."""
        if not self.net_income or not self.total_assets:
            return None
        return self.net_income[0] * 100 / self.total_assets

    @computed_field  # type: ignore[prop-decorator]
    @property
    def debt_to_equity(self) -> Optional[float]:
        if self.total_liabilities is None or not self.shareholder_equity:
            return None
        return self.total_liabilities / self.shareholder_equity

    def is_empty(self) -> bool:
        """True when no base field was extracted."""
        return all(
            value is None
            for value in (
                self.revenue,
                self.net_income,
                self.total_assets,
                self.total_liabilities,
                self.shareholder_equity,
                self.operating_cash_flow,
            )
        )


class BusinessProfile(BaseModel):
    """Qualitative facts extracted from a document."""

    business_model: Optional[str] = None
    competitive_advantages: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)


class AcquiredDocument(BaseModel):
    """Output of the acquisition pipeline for one document."""

    source_url: str
    document: RawDocument
    financial_data: FinancialDataset
    business_profile: BusinessProfile
    synthetic: bool = False  # True when generated as a stand-in

    @property
    def text(self) -> str:
        return self.document.text

    @property
    def metadata(self) -> DocumentMetadata:
        return self.document.metadata


# =============================================================================
# Analysis & Report Models
# =============================================================================


class AnalysisRecord(BaseModel):
    """One investment method's verdict on a company."""

    model_config = ConfigDict(frozen=True)

    method: AnalysisMethod
    score: int = Field(ge=1, le=10)
    summary: str
    strengths: List[str]
    weaknesses: List[str]
    risks: List[str]
    recommendation: Recommendation
    key_metrics: Dict[str, float] = Field(default_factory=dict)
    created_at: datetime
    ticker: Optional[str] = None


class ReportConfig(BaseModel):
    """Report layout options. Only the language changes wording."""

    language: Literal["zh", "en"] = "zh"
    template: str = "comprehensive"
    analysis_depth: Literal["basic", "detailed", "comprehensive"] = "detailed"


class Report(BaseModel):
    """A synthesized investment report."""

    body: str
    language: Literal["zh", "en"]
    average_score: float
    consensus: Recommendation
    recommendation_counts: Dict[str, int]
    methods: List[AnalysisMethod]
    generated_at: Optional[datetime] = None


# =============================================================================
# Workflow Models
# =============================================================================


class WorkflowRequest(BaseModel):
    """Inbound request for one end-to-end analysis.

    `market=None` searches every supported market.
    """

    query: str
    market: Optional[Market] = Market.HKEX
    analysis_method: AnalysisMethod = AnalysisMethod.BUFFETT
    batch_analysis: bool = False
    report_config: ReportConfig = Field(default_factory=ReportConfig)

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value


class WorkflowStep(BaseModel):
    """State of one pipeline stage."""

    name: str
    status: StageStatus = StageStatus.PENDING
    details: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class DocumentSummary(BaseModel):
    """What the presentation layer sees of an acquired document."""

    source_url: str
    text_length: int
    synthetic: bool
    financial_data: FinancialDataset
    business_profile: BusinessProfile
    metadata: DocumentMetadata


class WorkflowResults(BaseModel):
    search_results: List[CompanyIdentity] = Field(default_factory=list)
    target_company: Optional[CompanyIdentity] = None
    filings: List[FilingRecord] = Field(default_factory=list)
    target_filing: Optional[FilingRecord] = None
    document: Optional[DocumentSummary] = None
    analyses: List[AnalysisRecord] = Field(default_factory=list)
    report: Optional[Report] = None


class WorkflowResult(BaseModel):
    """Outbound result of a workflow run. Always well-formed."""

    workflow: Literal["completed", "partial_success"]
    steps: Dict[str, WorkflowStep]
    results: WorkflowResults
    error: Optional[str] = None
    error_details: Optional[str] = None
    completed_at: datetime
