#!/usr/bin/env python3
"""
Workflow Runner Script.

Runs one prospectus analysis end to end:
1. Resolves the query to a listed company (live lookup, then curated table)
2. Lists its offering documents and downloads the first one
3. Analyzes it with one or all investment methods
4. Writes the JSON result and the Markdown report

Usage:
    python scripts/run_workflow.py "Tencent" --market hkex
    python scripts/run_workflow.py "Apple" --market nasdaq --batch --language en
    python scripts/run_workflow.py "茅台" --market all --method graham
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from prospectus_research.config import ResearchConfig
from prospectus_research.models import (
    AnalysisMethod,
    Market,
    ReportConfig,
    WorkflowRequest,
)
from prospectus_research.observability import setup_structured_logging
from prospectus_research.orchestrator import WorkflowCoordinator
from prospectus_research.output import write_outputs


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the run."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    setup_structured_logging(level)

    # Reduce noise from some loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("pdfminer").setLevel(logging.WARNING)


def main() -> int:
    """Main entry point for the workflow script."""
    parser = argparse.ArgumentParser(
        description="Analyze a company's prospectus end to end"
    )
    parser.add_argument("query", help="Company name, ticker or sector")
    parser.add_argument(
        "--market",
        choices=[m.value for m in Market] + ["all"],
        default=Market.HKEX.value,
        help="Market to search (default: hkex)",
    )
    parser.add_argument(
        "--method",
        choices=[m.value for m in AnalysisMethod],
        default=AnalysisMethod.BUFFETT.value,
        help="Investment method for a single analysis",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Run all four investment methods",
    )
    parser.add_argument(
        "--language",
        choices=["zh", "en"],
        default="zh",
        help="Report language",
    )
    parser.add_argument(
        "--depth",
        choices=["basic", "detailed", "comprehensive"],
        default="detailed",
        help="Report detail level",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory for the JSON result and Markdown report",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        request = WorkflowRequest(
            query=args.query,
            market=None if args.market == "all" else Market(args.market),
            analysis_method=AnalysisMethod(args.method),
            batch_analysis=args.batch,
            report_config=ReportConfig(language=args.language, analysis_depth=args.depth),
        )
    except ValidationError as e:
        print(f"ERROR: Invalid request: {e}")
        return 2

    print("=" * 60)
    print(f"Prospectus Workflow: {request.query}")
    print("=" * 60)

    coordinator = WorkflowCoordinator(config=ResearchConfig.from_env())
    result = asyncio.run(coordinator.run(request))

    for name, step in result.steps.items():
        marker = f" ({step.error})" if step.error else ""
        print(f"  {name:<8} {step.status.value}{marker}")

    stem = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{args.market}"
    written = write_outputs(result, args.output_dir, stem)

    print("-" * 60)
    print(f"Workflow: {result.workflow}")
    for kind, path in written.items():
        print(f"  {kind}: {path}")

    return 0 if result.workflow == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
