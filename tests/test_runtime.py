"""
Tests for the sync supervisor and the runtime CLI.
"""

from __future__ import annotations

import threading

import pytest

from backend_metagauge.accumulator import SyncOutcome, SyncState
from backend_metagauge.agent_worker import runtime
from backend_metagauge.agent_worker.runtime import SyncSupervisor, resume_analysis
from backend_metagauge.database import STATUS_COMPLETED


def _outcome(analysis_id, state=SyncState.COMPLETED_STOPPED, reason="user_requested"):
    return SyncOutcome(
        analysis_id=analysis_id,
        state=state,
        reason=reason,
        cycles_completed=1,
        last_processed_block=1_000,
    )


def _blocking_runner(started: threading.Event):
    """Runner that blocks until its stop_event is set, like a real sync loop."""

    def runner(analysis_id, config, user_id, *, db, settings, stop_event, **kwargs):
        started.set()
        stop_event.wait(5)
        return _outcome(analysis_id)

    return runner


def test_supervisor_runs_sync_in_named_thread(db, sync_config):
    seen = {}

    def runner(analysis_id, config, user_id, **kwargs):
        seen["thread"] = threading.current_thread().name
        seen["kwargs"] = kwargs
        return _outcome(analysis_id, SyncState.COMPLETED_CEILING, "max-cycles-reached")

    supervisor = SyncSupervisor(db, runner=runner, runner_kwargs={"sleep": None})
    supervisor.start("a1", sync_config, "u1")
    assert supervisor.wait("a1", timeout=5)

    assert seen["thread"] == "sync-a1"
    assert seen["kwargs"]["db"] is db
    assert isinstance(seen["kwargs"]["stop_event"], threading.Event)
    assert "sleep" in seen["kwargs"]
    assert supervisor.outcome("a1").reason == "max-cycles-reached"
    assert supervisor.error("a1") is None


def test_supervisor_refuses_second_loop_for_same_analysis(db, sync_config):
    started = threading.Event()
    supervisor = SyncSupervisor(db, runner=_blocking_runner(started))
    supervisor.start("a1", sync_config, "u1")
    assert started.wait(5)

    with pytest.raises(ValueError):
        supervisor.start("a1", sync_config, "u1")
    assert supervisor.running() == ["a1"]

    assert supervisor.stop("a1", timeout=5) is True
    assert not supervisor.is_running("a1")
    assert supervisor.outcome("a1").state is SyncState.COMPLETED_STOPPED


def test_supervisor_allows_restart_after_finish(db, sync_config):
    calls = []

    def runner(analysis_id, config, user_id, **kwargs):
        calls.append(analysis_id)
        return _outcome(analysis_id)

    supervisor = SyncSupervisor(db, runner=runner)
    supervisor.start("a1", sync_config, "u1")
    assert supervisor.wait("a1", timeout=5)
    supervisor.start("a1", sync_config, "u1")
    assert supervisor.wait("a1", timeout=5)
    assert calls == ["a1", "a1"]


def test_supervisor_keeps_runner_error(db, sync_config):
    def runner(analysis_id, config, user_id, **kwargs):
        raise RuntimeError("config broken")

    supervisor = SyncSupervisor(db, runner=runner)
    supervisor.start("a1", sync_config, "u1")
    assert supervisor.wait("a1", timeout=5)
    assert str(supervisor.error("a1")) == "config broken"
    assert supervisor.outcome("a1") is None


def test_stop_all_stops_every_sync(db, sync_config):
    started_a, started_b = threading.Event(), threading.Event()
    runners = {"a1": _blocking_runner(started_a), "a2": _blocking_runner(started_b)}

    def runner(analysis_id, *args, **kwargs):
        return runners[analysis_id](analysis_id, *args, **kwargs)

    supervisor = SyncSupervisor(db, runner=runner)
    supervisor.start("a1", sync_config, "u1")
    supervisor.start("a2", sync_config, "u1")
    assert started_a.wait(5) and started_b.wait(5)

    supervisor.stop_all(timeout=5)
    assert supervisor.running() == []


def test_resume_analysis_marks_record_running(db, analysis, sync_config):
    db.update_analysis("a1", {"status": STATUS_COMPLETED, "metadata": {"continuous": False, "sync_cycle": 9}})

    config, user_id = resume_analysis(db, "a1")

    assert config.contract_address == sync_config.contract_address
    assert config.chain == "ethereum"
    assert user_id == "u1"
    record = db.get_analysis("a1")
    assert record.status == "running"
    assert record.metadata == {"continuous": True, "sync_cycle": 9}


def test_resume_analysis_missing_record(db):
    with pytest.raises(ValueError):
        resume_analysis(db, "missing")


def test_main_returns_1_for_unknown_analysis(tmp_path):
    assert runtime.main(["--analysis-id", "missing", "--db-path", str(tmp_path / "m.db")]) == 1


def test_main_runs_sync_to_completion(tmp_path, monkeypatch, sync_config):
    """The CLI resumes the record, runs the sync and returns 0."""
    from backend_metagauge.database import AnalysisRecord, get_database

    db_path = tmp_path / "m.db"
    get_database(db_path).create_analysis(
        AnalysisRecord(id="a9", user_id="u9", config=sync_config.to_dict())
    )
    calls = []

    def fake_sync(analysis_id, config, user_id, **kwargs):
        calls.append((analysis_id, config.contract_address, user_id))
        return _outcome(analysis_id, SyncState.COMPLETED_EXHAUSTED, "auto-stopped-no-data")

    monkeypatch.setattr(runtime, "perform_continuous_contract_sync", fake_sync)
    monkeypatch.setattr(runtime.signal, "signal", lambda *a: None)

    assert runtime.main(["--analysis-id", "a9", "--db-path", str(db_path)]) == 0
    assert calls == [("a9", sync_config.contract_address, "u9")]
    assert get_database(db_path).get_analysis("a9").status == "running"
