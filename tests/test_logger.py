import json
import logging

import pytest

from researcher.errors import QuotaExceeded
from researcher.models.trace import ResearchPhase, ToolKind, TraceStep
from researcher.services import logger as log_service
from researcher.services.quota import QuotaTracker


def payload(record, kind):
    prefix = f"{kind}: "
    assert record.getMessage().startswith(prefix)
    return json.loads(record.getMessage()[len(prefix):])


def test_research_step_record_carries_index_revision_and_phase(caplog):
    step = TraceStep(
        index=1,
        thought="search next",
        action='Search the web for "notes apps"',
        observation="awaiting results",
        tool=ToolKind.WEB_SEARCH,
        phase=ResearchPhase.SEARCHING,
        query="notes apps",
    ).revise(observation="x" * 500, results=[{"title": "A"}, {"title": "B"}])

    with caplog.at_level(logging.INFO, logger="researcher"):
        log_service.log_research_step("s-1", step)

    data = payload(caplog.records[-1], "TRACE_STEP")
    assert data["session_id"] == "s-1"
    assert data["index"] == 1
    assert data["revision"] == 1
    assert data["phase"] == "searching"
    assert data["tool"] == "Web Search"
    assert data["result_count"] == 2
    assert len(data["observation"]) == log_service.OBSERVATION_PREVIEW_CHARS + 3


def test_store_error_is_logged_at_error_level(caplog):
    with caplog.at_level(logging.INFO, logger="researcher"):
        log_service.log_store_operation("get", "supabase", "s-1", status="error", error="timeout")

    record = caplog.records[-1]
    assert record.levelno == logging.ERROR
    assert payload(record, "STORE_OPERATION")["backend"] == "supabase"


def test_quota_exhaustion_is_logged(caplog):
    quota = QuotaTracker(limit=1)
    quota.acquire()

    with caplog.at_level(logging.INFO, logger="researcher"):
        with pytest.raises(QuotaExceeded):
            quota.acquire()

    data = payload(caplog.records[-1], "QUOTA_EXHAUSTED")
    assert data["limit"] == 1
    assert data["resets_at"] == quota.resets_at.isoformat()
