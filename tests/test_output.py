"""
Tests for structured output module.
"""
import json
from datetime import datetime

import pytest

from prospectus_research.models import (
    AnalysisMethod,
    CompanyIdentity,
    Market,
    Recommendation,
    Report,
    StageStatus,
    WorkflowResult,
    WorkflowResults,
    WorkflowStep,
)
from prospectus_research.output import result_to_json, write_outputs


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def completed_result() -> WorkflowResult:
    identity = CompanyIdentity(name="腾讯控股", ticker="0700", market=Market.HKEX)
    report = Report(
        body="# 腾讯控股 - 投资分析报告\n",
        language="zh",
        average_score=7.0,
        consensus=Recommendation.BUY,
        recommendation_counts={"Buy": 1},
        methods=[AnalysisMethod.BUFFETT],
        generated_at=datetime(2024, 3, 1, 9, 30),
    )
    return WorkflowResult(
        workflow="completed",
        steps={"search": WorkflowStep(name="search", status=StageStatus.COMPLETED)},
        results=WorkflowResults(search_results=[identity], target_company=identity, report=report),
        completed_at=datetime(2024, 3, 1, 9, 31),
    )


@pytest.fixture
def partial_result() -> WorkflowResult:
    return WorkflowResult(
        workflow="partial_success",
        steps={"search": WorkflowStep(name="search", status=StageStatus.ERROR, error="no_company_found")},
        results=WorkflowResults(),
        error="no_company_found",
        error_details="No company found for 'zzz'",
        completed_at=datetime(2024, 3, 1, 9, 31),
    )


# =============================================================================
# JSON
# =============================================================================


class TestResultToJson:
    """Tests for result_to_json."""

    def test_enums_and_datetimes_serialized(self, completed_result):
        data = json.loads(result_to_json(completed_result))

        assert data["workflow"] == "completed"
        assert data["completed_at"] == "2024-03-01T09:31:00"
        assert data["steps"]["search"]["status"] == "completed"
        assert data["results"]["target_company"]["market"] == "hkex"
        assert data["results"]["report"]["consensus"] == "Buy"
        assert data["results"]["report"]["methods"] == ["buffett"]

    def test_non_ascii_kept(self, completed_result):
        assert "腾讯控股" in result_to_json(completed_result)

    def test_compact_is_single_line(self, completed_result):
        compact = result_to_json(completed_result, pretty=False)
        assert "\n" not in compact.replace("\\n", "")
        assert json.loads(compact) == json.loads(result_to_json(completed_result))

    def test_partial_result(self, partial_result):
        data = json.loads(result_to_json(partial_result))
        assert data["error"] == "no_company_found"
        assert data["results"]["report"] is None
        assert data["results"]["analyses"] == []


# =============================================================================
# Files
# =============================================================================


class TestWriteOutputs:
    """Tests for write_outputs."""

    def test_writes_json_and_markdown(self, completed_result, tmp_path):
        written = write_outputs(completed_result, tmp_path / "out", "run")

        assert set(written) == {"json", "markdown"}
        assert written["json"].name == "run.json"
        assert json.loads(written["json"].read_text(encoding="utf-8"))["workflow"] == "completed"
        assert written["markdown"].read_text(encoding="utf-8") == "# 腾讯控股 - 投资分析报告\n"

    def test_partial_result_writes_json_only(self, partial_result, tmp_path):
        written = write_outputs(partial_result, tmp_path, "run")

        assert set(written) == {"json"}
        assert not (tmp_path / "run.md").exists()
