"""
Workflow Coordinator - runs one query end to end:

    search -> filings -> acquire -> analyze -> report

Every stage records its state in a WorkflowStep. Acquisition failures are
absorbed by substituting a synthetic document. Failures with no fallback
(nothing found, every analysis failed, report rendering failed) end the run
as "partial_success" carrying whatever earlier stages produced. The caller
always gets a well-formed WorkflowResult.

Example usage:
    from prospectus_research.orchestrator import WorkflowCoordinator
    from prospectus_research.models import WorkflowRequest

    coordinator = WorkflowCoordinator()
    result = asyncio.run(coordinator.run(WorkflowRequest(query="Tencent")))
    print(result.workflow, result.results.report.body)
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from prospectus_research.analyzer import ALL_METHODS, InvestmentAnalyzer
from prospectus_research.config import ResearchConfig, default_config
from prospectus_research.ingestion import DocumentAcquirer, build_synthetic_document
from prospectus_research.models import (
    AcquiredDocument,
    AnalysisRecord,
    CompanyIdentity,
    DocumentSummary,
    FilingRecord,
    StageStatus,
    WorkflowRequest,
    WorkflowResult,
    WorkflowResults,
    WorkflowStep,
)
from prospectus_research.observability import RunSummary, log_fallback, timed_stage
from prospectus_research.report import synthesize
from prospectus_research.resolvers import ResolverRegistry, default_registry, search_markets

logger = logging.getLogger(__name__)


STAGES = ("search", "filings", "acquire", "analyze", "report")

# How many results the outbound payload carries
MAX_RETURNED_SEARCH_RESULTS = 5
MAX_RETURNED_FILINGS = 3

# Error markers for partial_success outcomes
NO_COMPANY_FOUND = "no_company_found"
NO_FILINGS_FOUND = "no_filings_found"
SEARCH_FAILED = "search_failed"
ANALYSIS_FAILED = "analysis_failed"
REPORT_FAILED = "report_failed"


class StageFailure(Exception):
    """A stage failed with no fallback; ends the run as partial_success."""

    def __init__(self, stage: str, marker: str, details: str):
        self.stage = stage
        self.marker = marker
        self.details = details
        super().__init__(f"{stage}: {details}")


def summarize_document(document: AcquiredDocument) -> DocumentSummary:
    return DocumentSummary(
        source_url=document.source_url,
        text_length=len(document.text),
        synthetic=document.synthetic,
        financial_data=document.financial_data,
        business_profile=document.business_profile,
        metadata=document.metadata,
    )


class WorkflowCoordinator:
    """
    Composes resolvers, acquirer, analyzer and report synthesizer.

    All collaborators are injectable so runs can be driven without network
    or LLM access.
    """

    def __init__(
        self,
        registry: Optional[ResolverRegistry] = None,
        acquirer: Optional[DocumentAcquirer] = None,
        analyzer: Optional[InvestmentAnalyzer] = None,
        config: ResearchConfig = default_config,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.registry = registry or default_registry(config)
        self.acquirer = acquirer or DocumentAcquirer(config)
        self.analyzer = analyzer or InvestmentAnalyzer(config=config, clock=clock)
        self.clock = clock

    async def run(self, request: WorkflowRequest) -> WorkflowResult:
        """
        Run the full workflow for one request.

        Args:
            request: Validated workflow request

        Returns:
            WorkflowResult with workflow "completed" or "partial_success"
        """
        steps: Dict[str, WorkflowStep] = {name: WorkflowStep(name=name) for name in STAGES}
        results = WorkflowResults()
        summary = RunSummary(request.query)

        logger.info(
            f"Workflow started: query='{request.query}' "
            f"market={request.market.value if request.market else 'all'}"
        )

        try:
            identity = await self._search(request, steps["search"], results, summary)
            filing = await self._filings(identity, steps["filings"], results, summary)
            document = await self._acquire(identity, filing, steps["acquire"], results, summary)
            records = await self._analyze(request, identity, document, steps["analyze"], results, summary)
            self._report(request, identity, document, records, steps["report"], results, summary)

        except StageFailure as failure:
            summary.outcome = "partial_success"
            summary.log_summary()
            logger.warning(f"Workflow partial_success at {failure.stage}: {failure.details}")
            return WorkflowResult(
                workflow="partial_success",
                steps=steps,
                results=WorkflowResults(
                    search_results=results.search_results,
                    target_company=results.target_company,
                    filings=results.filings,
                    target_filing=results.target_filing,
                    document=results.document,
                ),
                error=failure.marker,
                error_details=failure.details,
                completed_at=self.clock(),
            )

        summary.outcome = "completed"
        summary.log_summary()
        logger.info(f"Workflow completed for {results.target_company.ticker}")
        return WorkflowResult(
            workflow="completed",
            steps=steps,
            results=results,
            completed_at=self.clock(),
        )

    # =========================================================================
    # Stages
    # =========================================================================

    def _fail(self, step: WorkflowStep, summary: RunSummary, marker: str, details: str) -> StageFailure:
        step.status = StageStatus.ERROR
        step.error = marker
        step.details["error_details"] = details
        summary.record_stage(step.name, ok=False)
        return StageFailure(step.name, marker, details)

    def _complete(self, step: WorkflowStep, summary: RunSummary, **details) -> None:
        step.status = StageStatus.COMPLETED
        step.details.update(details)
        summary.record_stage(step.name, ok=True)

    async def _search(
        self,
        request: WorkflowRequest,
        step: WorkflowStep,
        results: WorkflowResults,
        summary: RunSummary,
    ) -> CompanyIdentity:
        step.status = StageStatus.RUNNING
        markets = [request.market] if request.market else None
        try:
            with timed_stage("search", query=request.query) as stage:
                identities = await search_markets(request.query, self.registry, markets=markets)
                stage["results"] = len(identities)
        except Exception as e:
            raise self._fail(step, summary, SEARCH_FAILED, str(e)) from e

        if not identities:
            raise self._fail(
                step, summary, NO_COMPANY_FOUND, f"No company found for '{request.query}'"
            )

        target = identities[0]
        results.search_results = identities[:MAX_RETURNED_SEARCH_RESULTS]
        results.target_company = target
        self._complete(
            step,
            summary,
            query=request.query,
            market=request.market.value if request.market else None,
            results_count=len(identities),
            target_ticker=target.ticker,
        )
        return target

    async def _filings(
        self,
        identity: CompanyIdentity,
        step: WorkflowStep,
        results: WorkflowResults,
        summary: RunSummary,
    ) -> FilingRecord:
        step.status = StageStatus.RUNNING
        try:
            with timed_stage("filings", ticker=identity.ticker) as stage:
                resolver = self.registry.get(identity.market)
                filings = await resolver.list_filings(identity.ticker, identity.name)
                stage["filings"] = len(filings)
        except Exception as e:
            raise self._fail(step, summary, NO_FILINGS_FOUND, str(e)) from e

        if not filings:
            raise self._fail(
                step, summary, NO_FILINGS_FOUND, f"No filings found for {identity.ticker}"
            )

        target = filings[0]
        if target.is_placeholder:
            summary.record_fallback("placeholder_filings")
        results.filings = filings[:MAX_RETURNED_FILINGS]
        results.target_filing = target
        self._complete(
            step,
            summary,
            found_count=len(filings),
            target_url=target.document_url,
            placeholder=target.is_placeholder,
        )
        return target

    async def _acquire(
        self,
        identity: CompanyIdentity,
        filing: FilingRecord,
        step: WorkflowStep,
        results: WorkflowResults,
        summary: RunSummary,
    ) -> AcquiredDocument:
        step.status = StageStatus.RUNNING
        try:
            with timed_stage("acquire", ticker=identity.ticker, url=filing.document_url):
                document = await self.acquirer.acquire(filing.document_url)
        except Exception as e:
            log_fallback("acquire", str(e), "synthetic_document", ticker=identity.ticker)
            summary.record_fallback("synthetic_document")
            document = build_synthetic_document(identity)
            step.details["fallback_reason"] = str(e)

        results.document = summarize_document(document)
        self._complete(
            step,
            summary,
            synthetic=document.synthetic,
            text_length=len(document.text),
            page_count=document.metadata.page_count,
        )
        return document

    async def _analyze(
        self,
        request: WorkflowRequest,
        identity: CompanyIdentity,
        document: AcquiredDocument,
        step: WorkflowStep,
        results: WorkflowResults,
        summary: RunSummary,
    ) -> List[AnalysisRecord]:
        step.status = StageStatus.RUNNING
        methods = ALL_METHODS if request.batch_analysis else [request.analysis_method]
        try:
            with timed_stage("analyze", ticker=identity.ticker, methods=[m.value for m in methods]) as stage:
                if request.batch_analysis:
                    records = await self.analyzer.batch_analyze(
                        document.text, document.financial_data, identity, methods
                    )
                else:
                    records = [
                        await self.analyzer.analyze(
                            document.text, document.financial_data, request.analysis_method, identity
                        )
                    ]
                stage["produced"] = len(records)
        except Exception as e:
            summary.record_analyses(len(methods), 0)
            raise self._fail(step, summary, ANALYSIS_FAILED, str(e)) from e

        summary.record_analyses(len(methods), len(records))
        if not records:
            raise self._fail(step, summary, ANALYSIS_FAILED, "Every analysis method failed")

        results.analyses = records
        self._complete(
            step,
            summary,
            methods=[r.method.value for r in records],
            requested=len(methods),
        )
        return records

    def _report(
        self,
        request: WorkflowRequest,
        identity: CompanyIdentity,
        document: AcquiredDocument,
        records: List[AnalysisRecord],
        step: WorkflowStep,
        results: WorkflowResults,
        summary: RunSummary,
    ) -> None:
        step.status = StageStatus.RUNNING
        try:
            with timed_stage("report", ticker=identity.ticker, language=request.report_config.language):
                report = synthesize(
                    records,
                    identity,
                    document.financial_data,
                    request.report_config,
                    generated_at=self.clock(),
                )
        except Exception as e:
            raise self._fail(step, summary, REPORT_FAILED, str(e)) from e

        results.report = report
        self._complete(
            step,
            summary,
            language=report.language,
            average_score=round(report.average_score, 2),
            consensus=report.consensus.value,
        )
