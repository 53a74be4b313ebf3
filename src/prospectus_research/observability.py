"""
Structured logging for the prospectus pipeline.

Emits one machine-parsable line per event:
- STAGE        workflow stage transitions (started / completed / failed)
- FALLBACK     a stage absorbed a failure and substituted a default
- RUN_SUMMARY  per-run counters, logged once at the end of a workflow

Uses Python's logging; lines are "<TAG> | <json>".
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional


# =============================================================================
# Logger Setup
# =============================================================================

logger = logging.getLogger("prospectus_research.observability")


def setup_structured_logging(
    level: int = logging.INFO,
    json_format: bool = False,
) -> None:
    """Configure structured logging for the pipeline.

    Args:
        level: Logging level (default INFO)
        json_format: If True, emit only the message so lines stay JSON-parsable
    """
    handler = logging.StreamHandler()

    if json_format:
        formatter = logging.Formatter("%(message)s")
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)

    obs_logger = logging.getLogger("prospectus_research.observability")
    obs_logger.handlers = []
    obs_logger.addHandler(handler)
    obs_logger.setLevel(level)
    obs_logger.propagate = False


# =============================================================================
# Structured Log Events
# =============================================================================


@dataclass
class StageEvent:
    """One workflow stage transition."""
    stage: str  # "search", "filings", "acquire", "analyze", "report"
    status: str = "started"  # "started", "completed", "failed"
    ticker: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()


@dataclass
class FallbackEvent:
    """A failure absorbed by substituting a default."""
    stage: str
    reason: str
    substitute: str  # "reference_table", "placeholder_filings", "synthetic_document", ...
    ticker: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()


# =============================================================================
# Logging Functions
# =============================================================================


def log_stage_event(stage: str, status: str = "started", **kwargs) -> None:
    """Log a stage transition.

    Args:
        stage: Stage name
        status: "started", "completed", or "failed"
        **kwargs: Additional StageEvent fields (ticker, details, duration_ms)
    """
    event = StageEvent(stage=stage, status=status, **kwargs)
    line = f"STAGE | {json.dumps(asdict(event), default=str, ensure_ascii=False)}"

    if status == "failed":
        logger.error(line)
    else:
        logger.info(line)


def log_fallback(stage: str, reason: str, substitute: str, **kwargs) -> None:
    """Log that a stage fell back to a substitute result."""
    event = FallbackEvent(stage=stage, reason=reason[:500], substitute=substitute, **kwargs)
    logger.warning(f"FALLBACK | {json.dumps(asdict(event), default=str, ensure_ascii=False)}")


# =============================================================================
# Context Managers
# =============================================================================


@contextmanager
def timed_stage(stage: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a stage and log its start and outcome. Exceptions are re-raised.

    Usage:
        with timed_stage("search", query="tencent") as stage:
            results = await resolver.search("tencent")
            stage["results"] = len(results)

    Args:
        stage: Stage name
        **context: Fields recorded in the event details
    """
    start_time = time.perf_counter()
    result_data: Dict[str, Any] = {}

    log_stage_event(stage, status="started", details=context or None)

    try:
        yield result_data
        duration_ms = (time.perf_counter() - start_time) * 1000
        log_stage_event(
            stage,
            status="completed",
            duration_ms=round(duration_ms, 2),
            details={**context, **result_data},
        )
    except Exception as e:
        duration_ms = (time.perf_counter() - start_time) * 1000
        log_stage_event(
            stage,
            status="failed",
            duration_ms=round(duration_ms, 2),
            details={**context, "error": str(e)},
        )
        raise


# =============================================================================
# Run Summary
# =============================================================================


class RunSummary:
    """Collects counters during a workflow run for a final summary line."""

    def __init__(self, query: str):
        self.query = query
        self.start_time = time.perf_counter()
        self.stages_completed: List[str] = []
        self.stages_failed: List[str] = []
        self.fallbacks: List[str] = []
        self.analyses_requested = 0
        self.analyses_produced = 0
        self.outcome: Optional[str] = None

    def record_stage(self, stage: str, ok: bool) -> None:
        if ok:
            self.stages_completed.append(stage)
        else:
            self.stages_failed.append(stage)

    def record_fallback(self, substitute: str) -> None:
        self.fallbacks.append(substitute)

    def record_analyses(self, requested: int, produced: int) -> None:
        self.analyses_requested += requested
        self.analyses_produced += produced

    def to_dict(self) -> Dict[str, Any]:
        """Return summary as dict."""
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        return {
            "query": self.query,
            "outcome": self.outcome,
            "duration_ms": round(duration_ms, 2),
            "stages_completed": list(self.stages_completed),
            "stages_failed": list(self.stages_failed),
            "fallbacks": list(self.fallbacks),
            "analyses_requested": self.analyses_requested,
            "analyses_produced": self.analyses_produced,
        }

    def log_summary(self) -> None:
        """Log the final summary."""
        logger.info(f"RUN_SUMMARY | {json.dumps(self.to_dict(), ensure_ascii=False)}")
