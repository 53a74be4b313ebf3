"""
Tests for structured logging helpers.
"""
import json
import logging

import pytest

from prospectus_research.observability import (
    RunSummary,
    log_fallback,
    log_stage_event,
    timed_stage,
)

OBS_LOGGER = "prospectus_research.observability"


def _payloads(caplog, tag):
    prefix = f"{tag} | "
    return [
        json.loads(record.getMessage()[len(prefix):])
        for record in caplog.records
        if record.getMessage().startswith(prefix)
    ]


class TestStageEvents:
    """Tests for STAGE and FALLBACK lines."""

    def test_stage_event_is_json(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        log_stage_event("search", "completed", ticker="0700", details={"results": 2})

        [event] = _payloads(caplog, "STAGE")
        assert event["stage"] == "search"
        assert event["status"] == "completed"
        assert event["ticker"] == "0700"
        assert event["details"] == {"results": 2}
        assert event["timestamp"]

    def test_failed_stage_logged_as_error(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        log_stage_event("acquire", "failed")
        assert caplog.records[-1].levelno == logging.ERROR

    def test_fallback_is_warning(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        log_fallback("acquire", "x" * 600, "synthetic_document", ticker="0700")

        [event] = _payloads(caplog, "FALLBACK")
        assert event["substitute"] == "synthetic_document"
        assert len(event["reason"]) == 500
        assert caplog.records[-1].levelno == logging.WARNING


class TestTimedStage:
    """Tests for the timed_stage context manager."""

    def test_completed_stage_records_details(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        with timed_stage("search", query="tencent") as stage:
            stage["results"] = 3

        events = _payloads(caplog, "STAGE")
        assert [e["status"] for e in events] == ["started", "completed"]
        assert events[1]["details"] == {"query": "tencent", "results": 3}
        assert events[1]["duration_ms"] >= 0

    def test_failure_is_logged_and_reraised(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        with pytest.raises(RuntimeError):
            with timed_stage("analyze"):
                raise RuntimeError("engine down")

        events = _payloads(caplog, "STAGE")
        assert events[-1]["status"] == "failed"
        assert events[-1]["details"]["error"] == "engine down"


class TestRunSummary:
    """Tests for RunSummary."""

    def test_counters(self):
        summary = RunSummary("Tencent")
        summary.record_stage("search", ok=True)
        summary.record_stage("analyze", ok=False)
        summary.record_fallback("synthetic_document")
        summary.record_analyses(4, 3)
        summary.outcome = "partial_success"

        data = summary.to_dict()
        assert data["query"] == "Tencent"
        assert data["stages_completed"] == ["search"]
        assert data["stages_failed"] == ["analyze"]
        assert data["fallbacks"] == ["synthetic_document"]
        assert data["analyses_requested"] == 4
        assert data["analyses_produced"] == 3
        assert data["outcome"] == "partial_success"

    def test_log_summary(self, caplog):
        caplog.set_level(logging.INFO, logger=OBS_LOGGER)
        RunSummary("茅台").log_summary()

        [event] = _payloads(caplog, "RUN_SUMMARY")
        assert event["query"] == "茅台"
