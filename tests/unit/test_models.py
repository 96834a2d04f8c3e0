"""Tests for process records and step results."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from longsteps.models import (
    FinalStep,
    NextStep,
    ProcessRecord,
    ProcessStatus,
    ProcessView,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _record(**overrides):
    fields = dict(
        id="p1",
        process_type="Order",
        status=ProcessStatus.PAUSED,
        current_step="remind",
        run_at=NOW,
        state={"order": 1},
    )
    fields.update(overrides)
    return ProcessRecord(**fields)


def test_waiting_record_requires_run_at():
    with pytest.raises(ValidationError):
        _record(run_at=None)


def test_running_record_requires_claim_token_and_no_run_at():
    record = _record(status=ProcessStatus.RUNNING, run_at=None, claim_token="abc")
    assert record.status is ProcessStatus.RUNNING

    with pytest.raises(ValidationError):
        _record(status=ProcessStatus.RUNNING, run_at=None)
    with pytest.raises(ValidationError):
        _record(status=ProcessStatus.RUNNING, claim_token="abc")


def test_claim_token_only_while_running():
    with pytest.raises(ValidationError):
        _record(claim_token="abc")


def test_terminated_record_has_no_step_and_no_run_at():
    record = _record(
        status=ProcessStatus.TERMINATED, current_step=None, run_at=None, last_error="boom"
    )
    assert record.is_terminated

    with pytest.raises(ValidationError):
        _record(status=ProcessStatus.TERMINATED, run_at=None)


def test_last_error_only_on_terminated_records():
    with pytest.raises(ValidationError):
        _record(last_error="boom")


def test_naive_datetimes_are_taken_as_utc():
    record = _record(run_at=datetime(2026, 1, 1, 8, 30))
    assert record.run_at == datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)

    step = NextStep(next_step="x", run_at=datetime(2026, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2))))
    assert step.run_at == datetime(2026, 1, 1, 8, 0, tzinfo=timezone.utc)
    assert step.run_at.tzinfo == timezone.utc


def test_step_results_keep_state_unless_set():
    assert NextStep(next_step="a").state_or({"kept": True}) == {"kept": True}
    assert NextStep(next_step="a", state={"new": 1}).state_or({"kept": True}) == {"new": 1}
    assert NextStep(next_step="a", state=None).state_or({"kept": True}) is None
    assert FinalStep().state_or([1, 2]) == [1, 2]
    assert FinalStep(state="done").state_or([1, 2]) == "done"


def test_next_step_requires_a_name():
    with pytest.raises(ValidationError):
        NextStep(next_step="")


def test_step_results_and_views_are_frozen():
    step = NextStep(next_step="a")
    with pytest.raises(ValidationError):
        step.next_step = "b"

    view = ProcessView.from_record(
        _record(status=ProcessStatus.TERMINATED, current_step=None, run_at=None)
    )
    assert view.id == "p1"
    assert view.state == {"order": 1}
    with pytest.raises(ValidationError):
        view.state = {}
