"""
Tests for the continuation controller and perform_continuous_contract_sync.

Runs full loops against a temporary SQLite store with a scripted source and no
inter-cycle delay.
"""

from __future__ import annotations

import sqlite3
import threading
from unittest.mock import patch

import pytest

from backend_metagauge.accumulator import (
    ContinuationController,
    CycleExecutor,
    DeduplicationStore,
    SyncRecordBridge,
    SyncRun,
    SyncState,
    perform_continuous_contract_sync,
)
from backend_metagauge.accumulator.models import CycleReport, Window
from backend_metagauge.config.settings import SyncConfig, SyncSettings
from backend_metagauge.core.exceptions import ConfigurationError, RpcProviderError
from factories import ScriptedSource, batch, raw_tx


def _sync(db, sync_config, settings, source, **kwargs):
    return perform_continuous_contract_sync(
        "a1", sync_config, "u1", db=db, source=source, settings=settings, **kwargs
    )


def _new_tx_each_call(n):
    return batch([raw_tx(f"0x{n:04x}", block=n)])


def _controller(db, sync_config, settings, source=None, **kwargs):
    bridge = SyncRecordBridge(db)
    run = SyncRun(analysis_id="a1", user_id="u1", config=sync_config)
    executor = CycleExecutor(bridge, DeduplicationStore(), source or ScriptedSource(_new_tx_each_call), settings)
    return ContinuationController(run, executor, bridge, settings, **kwargs)


def _report(cycle, new_txs=0, new_events=0, to_block=1_000):
    return CycleReport(
        cycle_number=cycle,
        window=Window(0, to_block),
        fetched_transactions=new_txs,
        new_transactions_count=new_txs,
        new_events_count=new_events,
        new_users_count=0,
        duplicates_skipped=0,
        data_integrity_score=100.0,
    )


# --- Full loops ---


def test_exhaustion_after_ten_empty_cycles(db, sync_config, settings, analysis):
    """Cycles 1-5 add data, 6-15 are empty: auto-stop after cycle 15 with no 16th fetch."""

    def script(n):
        # from cycle 6 on the source only returns what was already seen
        return _new_tx_each_call(min(n, 5))

    source = ScriptedSource(script)
    outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.COMPLETED_EXHAUSTED
    assert outcome.reason == "auto-stopped-no-data"
    assert outcome.cycles_completed == 15
    assert len(source.fetch_calls) == 15

    record = db.get_analysis("a1")
    assert record.status == "completed"
    assert record.progress == 100
    assert record.completed_at is not None
    assert record.metadata["continuous"] is False
    assert record.metadata["completed_after_cycles"] == 15
    assert record.metadata["empty_cycles"] == 10
    assert record.metadata["auto_stopped_reason"] == "No new data detected"
    assert record.logs[-1] == "Continuous sync auto-stopped after 10 cycles without new data"

    projection = db.get_user("u1").onboarding["default_contract"]
    assert projection["continuous_sync"] is False
    assert projection["is_indexed"] is True
    assert projection["indexing_progress"] == 100
    assert projection["completion_reason"] == "auto-stopped-no-data"
    assert projection["address"] == sync_config.contract_address


def test_ceiling_after_fifty_cycles(db, sync_config, settings, analysis):
    """Every cycle has new data: the run completes after cycle 50."""
    source = ScriptedSource(_new_tx_each_call)
    outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.COMPLETED_CEILING
    assert outcome.reason == "max-cycles-reached"
    assert outcome.cycles_completed == 50
    assert len(source.fetch_calls) == 50

    record = db.get_analysis("a1")
    assert record.status == "completed"
    assert record.progress == 100
    assert record.metadata["completed_after_cycles"] == 50
    assert record.metadata["auto_stopped_reason"] == "Maximum cycles reached"
    assert record.logs[-1] == "Continuous sync completed after 50 cycles (auto-stopped)"
    assert record.results["target"]["transactions"] == 50
    assert db.get_user("u1").onboarding["default_contract"]["completion_reason"] == "max-cycles-reached"


def test_transient_failures_do_not_stop_the_run(db, sync_config, analysis):
    """Failed cycles are logged and retried; the run still reaches its ceiling."""
    settings = SyncSettings(cycle_delay_sec=0, max_cycles=6)

    def script(n):
        if n in (2, 3):
            raise RpcProviderError("upstream timeout", url="http://rpc.invalid")
        return _new_tx_each_call(n)

    source = ScriptedSource(script)
    outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.COMPLETED_CEILING
    assert len(source.fetch_calls) == 6
    logs = db.get_analysis("a1").logs
    assert "Cycle 2: Error - upstream timeout (interaction-based fetch)" in logs
    assert "Cycle 3: Error - upstream timeout (interaction-based fetch)" in logs
    assert db.get_analysis("a1").results["target"]["transactions"] == 4


def test_failed_cycles_sleep_the_fixed_delay(db, sync_config, analysis):
    settings = SyncSettings(cycle_delay_sec=30, max_cycles=3)
    delays = []

    def script(n):
        raise RpcProviderError("down", url="http://rpc.invalid")

    outcome = _sync(db, sync_config, settings, ScriptedSource(script), sleep=delays.append)
    assert outcome.state is SyncState.COMPLETED_CEILING
    # no sleep after the final cycle
    assert delays == [30, 30]


def test_last_processed_block_never_decreases(db, sync_config, settings, analysis):
    """A head that goes backwards falls back to a backward window without moving the cursor back."""
    settings.max_cycles = 3
    source = ScriptedSource(_new_tx_each_call, heads=[1_000, 900, 1_200])
    outcome = _sync(db, sync_config, settings, source)

    windows = [(f, t) for _, f, t, _ in source.fetch_calls]
    assert windows[0] == (0, 1_000)
    assert windows[1] == (0, 900)
    assert windows[2] == (1_001, 1_200)
    assert outcome.last_processed_block == 1_200


def test_external_stop_flag_ends_run_before_next_cycle(db, sync_config, settings, analysis):
    """continuous=False written during a cycle survives that cycle's writes and stops the next one."""

    def script(n):
        if n == 2:
            db.update_analysis("a1", {}, metadata_patch={"continuous": False})
        return _new_tx_each_call(n)

    source = ScriptedSource(script)
    outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.COMPLETED_STOPPED
    assert outcome.reason == "user_requested"
    assert len(source.fetch_calls) == 2
    assert db.get_analysis("a1").metadata["continuous"] is False
    assert db.get_user("u1").onboarding["default_contract"]["completion_reason"] == "user_requested"


def test_record_deleted_mid_run_is_terminal(db, sync_config, settings, analysis):
    """A vanished record fails the cycle and the next check ends the run without raising."""

    def script(n):
        db.delete_analysis("a1")
        return _new_tx_each_call(n)

    source = ScriptedSource(script)
    outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.FAILED_TERMINAL
    assert len(source.fetch_calls) == 1
    assert db.get_analysis("a1") is None
    assert db.get_user("u1").onboarding["default_contract"]["is_indexed"] is True


def test_shutdown_event_stops_at_top_of_cycle(db, sync_config, settings, analysis):
    stop = threading.Event()

    def script(n):
        stop.set()
        return _new_tx_each_call(n)

    source = ScriptedSource(script)
    outcome = _sync(db, sync_config, settings, source, stop_event=stop)
    assert outcome.state is SyncState.COMPLETED_STOPPED
    assert outcome.reason == "user_requested"
    assert len(source.fetch_calls) == 1


def test_invalid_config_marks_user_and_reraises(db, settings, analysis):
    config = SyncConfig(contract_address="", chain="ethereum", rpc_config={"ethereum": ["http://rpc.invalid"]})
    source = ScriptedSource(_new_tx_each_call)
    with pytest.raises(ConfigurationError):
        _sync(db, config, settings, source)

    assert source.fetch_calls == []
    projection = db.get_user("u1").onboarding["default_contract"]
    assert projection["is_indexed"] is False
    assert projection["indexing_progress"] == 0
    assert projection["continuous_sync"] is False
    assert "address" in projection["error"]


def test_config_can_be_passed_as_stored_dict(db, sync_config, settings, analysis):
    settings.max_cycles = 1
    source = ScriptedSource(_new_tx_each_call)
    outcome = _sync(db, sync_config.to_dict(), settings, source)
    assert outcome.state is SyncState.COMPLETED_CEILING
    assert source.fetch_calls[0][0] == sync_config.contract_address


def test_unsupported_chain_fails_before_any_fetch(db, settings, analysis):
    config = SyncConfig(contract_address="0x1", chain="starknet", rpc_config={"starknet": ["http://rpc.invalid"]})
    source = ScriptedSource(_new_tx_each_call)
    with pytest.raises(ConfigurationError, match="Unsupported chain"):
        _sync(db, config, settings, source)

    assert source.fetch_calls == []
    assert source.head_calls == 0
    assert "starknet" in db.get_user("u1").onboarding["default_contract"]["error"]


def _locked_on_calls(db, failing_calls):
    """Wrap db.get_analysis so the given call numbers raise a locked-database error."""
    real = db.get_analysis
    calls = []

    def get_analysis(analysis_id):
        calls.append(analysis_id)
        if len(calls) in failing_calls:
            raise sqlite3.OperationalError("database is locked")
        return real(analysis_id)

    return get_analysis


def test_record_read_error_counts_as_failed_cycle(db, sync_config, analysis):
    """A locked store at the top of cycle 2 is logged, retried, and the run still reaches its ceiling."""
    settings = SyncSettings(cycle_delay_sec=0, max_cycles=3)
    source = ScriptedSource(_new_tx_each_call)
    with patch.object(db, "get_analysis", side_effect=_locked_on_calls(db, {2})):
        outcome = _sync(db, sync_config, settings, source)

    assert outcome.state is SyncState.COMPLETED_CEILING
    assert outcome.cycles_completed == 3
    assert len(source.fetch_calls) == 2
    record = db.get_analysis("a1")
    assert "Cycle 2: Error - database is locked (interaction-based fetch)" in record.logs
    assert record.metadata["completed_after_cycles"] == 3


def test_record_read_errors_until_ceiling(db, sync_config, analysis):
    settings = SyncSettings(cycle_delay_sec=5, max_cycles=2)
    delays = []
    source = ScriptedSource(_new_tx_each_call)
    with patch.object(db, "get_analysis", side_effect=sqlite3.OperationalError("database is locked")):
        outcome = _sync(db, sync_config, settings, source, sleep=delays.append)

    assert outcome.state is SyncState.COMPLETED_CEILING
    assert source.fetch_calls == []
    assert delays == [5]


def test_record_read_error_after_shutdown_stops(db, sync_config, settings, analysis):
    stop = threading.Event()
    stop.set()
    source = ScriptedSource(_new_tx_each_call)
    with patch.object(db, "get_analysis", side_effect=sqlite3.OperationalError("database is locked")):
        outcome = _sync(db, sync_config, settings, source, stop_event=stop)

    assert outcome.state is SyncState.COMPLETED_STOPPED
    assert outcome.reason == "user_requested"
    assert source.fetch_calls == []


# --- Pre-cycle rules ---


def test_pre_check_missing_record(db, sync_config, settings):
    controller = _controller(db, sync_config, settings)
    assert controller.check_before_cycle() is SyncState.FAILED_TERMINAL
    assert controller.reason == "normal-completion"


@pytest.mark.parametrize(
    "status,metadata,expected,reason",
    [
        ("running", {"continuous": True}, SyncState.RUNNING, None),
        ("running", {}, SyncState.RUNNING, None),
        ("pending", {"continuous": True}, SyncState.RUNNING, None),
        ("completed", {"continuous": True}, SyncState.RUNNING, None),
        ("failed", {"continuous": True}, SyncState.FAILED_TERMINAL, "normal-completion"),
        ("running", {"continuous": False}, SyncState.COMPLETED_STOPPED, "user_requested"),
        ("completed", {}, SyncState.COMPLETED_STOPPED, "normal-completion"),
    ],
)
def test_pre_check_rules(db, sync_config, settings, analysis, status, metadata, expected, reason):
    db.update_analysis("a1", {"status": status, "metadata": metadata})
    controller = _controller(db, sync_config, settings)
    assert controller.check_before_cycle() is expected
    assert controller.reason == reason


# --- Post-cycle transitions ---


def test_new_data_resets_empty_streak(db, sync_config, settings, analysis):
    controller = _controller(db, sync_config, settings)
    controller.run.empty_cycle_streak = 7
    assert controller.after_success(_report(1, new_events=1)) is SyncState.RUNNING
    assert controller.run.empty_cycle_streak == 0
    assert controller.run.cycle_number == 2
    assert controller.run.last_processed_block == 1_000


def test_failure_keeps_streak_and_cursor(db, sync_config, settings, analysis):
    controller = _controller(db, sync_config, settings)
    run = controller.run
    run.cycle_number, run.empty_cycle_streak, run.last_processed_block = 4, 3, 5_000

    assert controller.after_failure(RpcProviderError("x", url="u")) is SyncState.RUNNING
    assert run.cycle_number == 5
    assert run.empty_cycle_streak == 3
    assert run.last_processed_block == 5_000
    assert db.get_analysis("a1").logs[-1] == "Cycle 4: Error - x (interaction-based fetch)"


def test_failure_log_write_error_is_not_raised(db, sync_config, settings):
    """No record to log against: the failure is still absorbed."""
    controller = _controller(db, sync_config, settings)
    assert controller.after_failure(RuntimeError("boom")) is SyncState.RUNNING
    assert controller.run.cycle_number == 2


def test_user_projection_written_once_per_terminal_transition(db, sync_config, settings, analysis):
    controller = _controller(db, sync_config, settings)
    controller.run.cycle_number = 50
    assert controller.after_success(_report(50, new_txs=1)) is SyncState.COMPLETED_CEILING
    first = db.get_user("u1").onboarding["default_contract"]
    assert first["completion_reason"] == "max-cycles-reached"
    assert controller.reason == "max-cycles-reached"
