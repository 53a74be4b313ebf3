"""
Structured Output - serialization of workflow results.

JSON is the primary output format; the rendered report body is written
separately as Markdown.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from prospectus_research.models import WorkflowResult

logger = logging.getLogger(__name__)


def result_to_json(result: WorkflowResult, pretty: bool = True) -> str:
    """Serialize a WorkflowResult to JSON.

    Args:
        result: WorkflowResult to serialize
        pretty: If True, format with indentation (default).
                If False, compact single-line output.

    Returns:
        JSON string representation
    """
    data = result.model_dump()

    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False, default=_json_serializer)
    else:
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=_json_serializer)


def _json_serializer(obj: Any) -> Any:
    """Custom JSON serializer for objects not serializable by default."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_outputs(result: WorkflowResult, output_dir: Path, stem: str) -> dict:
    """Write <stem>.json and, when a report exists, <stem>.md.

    Returns:
        Mapping of output kind ("json", "markdown") to written path
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    written = {}

    json_path = output_dir / f"{stem}.json"
    json_path.write_text(result_to_json(result), encoding="utf-8")
    written["json"] = json_path

    report = result.results.report
    if report is not None:
        md_path = output_dir / f"{stem}.md"
        md_path.write_text(report.body, encoding="utf-8")
        written["markdown"] = md_path

    logger.info(f"Wrote {', '.join(str(p) for p in written.values())}")
    return written
