"""
Continuation controller: the state machine around repeated sync cycles.

Each iteration starts with a pre-cycle check of the analysis record (missing,
failed, stopped), runs one cycle, then decides between another cycle,
auto-stop on an empty-cycle streak, and the cycle ceiling. A failed cycle is
logged against the record and retried after the fixed delay; it counts
towards the ceiling but never ends the run by itself. A record read that
fails before a cycle is treated the same way. Terminal transitions update the
owning user's onboarding projection exactly once.
"""

from __future__ import annotations

import threading
from typing import Any, Callable

from backend_metagauge.accumulator.bridge import SyncRecordBridge, utc_now_iso
from backend_metagauge.accumulator.cycle import Analyzers, CycleExecutor, InteractionSource
from backend_metagauge.accumulator.models import (
    REASON_MAX_CYCLES,
    REASON_NO_DATA,
    REASON_NORMAL,
    REASON_USER_REQUESTED,
    CycleReport,
    SyncOutcome,
    SyncRun,
    SyncState,
)
from backend_metagauge.accumulator.store import DeduplicationStore
from backend_metagauge.config.settings import SyncConfig, SyncSettings, get_settings
from backend_metagauge.core.exceptions import RecordNotFoundError
from backend_metagauge.database import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
    AnalysisRecord,
    Database,
)
from backend_metagauge.metagauge_logging import bind_analysis

NO_DATA_REASON_TEXT = "No new data detected"
MAX_CYCLES_REASON_TEXT = "Maximum cycles reached"


class ContinuationController:
    """
    Drives one SyncRun until a terminal state.

    stop_event: When set, the inter-cycle wait returns early and the next
        pre-cycle check ends the run as user requested.
    sleep: Inter-cycle wait; receives the delay in seconds. Defaults to
        stop_event.wait so shutdown is never delayed by a full cycle delay.
    """

    def __init__(
        self,
        run: SyncRun,
        executor: CycleExecutor,
        bridge: SyncRecordBridge,
        settings: SyncSettings,
        *,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.run = run
        self._executor = executor
        self._bridge = bridge
        self._settings = settings
        self._stop_event = stop_event or threading.Event()
        self._sleep = sleep or self._stop_event.wait
        self._reason: str | None = None
        self._log = bind_analysis(run.analysis_id, __name__)

    @property
    def reason(self) -> str | None:
        return self._reason

    # --- Transitions ---

    def check_before_cycle(self) -> SyncState:
        """Apply the pre-cycle rules in order; returns RUNNING when a cycle should run."""
        return self._apply_record(self._bridge.read(self.run.analysis_id))

    def _apply_record(self, record: AnalysisRecord | None) -> SyncState:
        run = self.run
        if record is None:
            self._log.warning("sync_record_missing", cycle=run.cycle_number)
            return self._finish(SyncState.FAILED_TERMINAL, REASON_NORMAL)
        run.status = record.status
        run.continuous = record.continuous
        if self._stop_event.is_set():
            self._log.info("sync_shutdown_requested", cycle=run.cycle_number)
            return self._finish(SyncState.COMPLETED_STOPPED, REASON_USER_REQUESTED)
        if record.status == STATUS_FAILED:
            self._log.info("sync_record_failed", cycle=run.cycle_number)
            return self._finish(SyncState.FAILED_TERMINAL, REASON_NORMAL)
        if record.continuous is False:
            self._log.info("sync_continuous_disabled", cycle=run.cycle_number)
            return self._finish(SyncState.COMPLETED_STOPPED, REASON_USER_REQUESTED)
        if record.status != STATUS_RUNNING and record.continuous is not True:
            self._log.info("sync_record_not_running", cycle=run.cycle_number, status=record.status)
            return self._finish(SyncState.COMPLETED_STOPPED, REASON_NORMAL)
        return SyncState.RUNNING

    def after_success(self, report: CycleReport) -> SyncState:
        run = self.run
        completed = run.cycle_number
        run.last_processed_block = self._advance(report.window.to_block)
        run.cycle_number += 1
        if not report.is_empty:
            run.empty_cycle_streak = 0
            return self._check_ceiling()

        run.empty_cycle_streak += 1
        self._log.info(
            "sync_cycle_empty",
            cycle=completed,
            empty_cycle_streak=run.empty_cycle_streak,
            max_empty_cycles=self._settings.max_empty_cycles,
        )
        if run.empty_cycle_streak < self._settings.max_empty_cycles:
            return self._check_ceiling()
        return self._complete(
            SyncState.COMPLETED_EXHAUSTED,
            REASON_NO_DATA,
            metadata={
                "completed_after_cycles": completed,
                "auto_stopped_reason": NO_DATA_REASON_TEXT,
                "empty_cycles": run.empty_cycle_streak,
            },
            line=f"Continuous sync auto-stopped after {run.empty_cycle_streak} cycles without new data",
        )

    def after_failure(self, error: Exception) -> SyncState:
        """Record the error; the streak and last processed block are left untouched."""
        run = self.run
        self._log.exception("sync_cycle_failed", cycle=run.cycle_number, error=str(error))
        try:
            self._bridge.append_logs(
                run.analysis_id,
                f"Cycle {run.cycle_number}: Error - {error} (interaction-based fetch)",
            )
        except Exception as e:
            self._log.warning("sync_error_log_failed", cycle=run.cycle_number, error=str(e))
        run.cycle_number += 1
        return self._check_ceiling()

    def _check_ceiling(self) -> SyncState:
        run = self.run
        if run.cycle_number <= self._settings.max_cycles:
            return SyncState.RUNNING
        completed = run.cycle_number - 1
        return self._complete(
            SyncState.COMPLETED_CEILING,
            REASON_MAX_CYCLES,
            metadata={
                "completed_after_cycles": completed,
                "auto_stopped_reason": MAX_CYCLES_REASON_TEXT,
            },
            line=f"Continuous sync completed after {completed} cycles (auto-stopped)",
        )

    # --- Loop ---

    def execute(self) -> SyncOutcome:
        """Run cycles until a terminal state; blocks the calling thread."""
        run = self.run
        self._log.info("sync_loop_started", chain=run.config.chain, contract=run.config.contract_address)
        while self._pre_cycle() is SyncState.RUNNING:
            try:
                report = self._executor.run(run)
            except Exception as e:
                state = self.after_failure(e)
            else:
                state = self.after_success(report)
            if state is not SyncState.RUNNING:
                break
            self._wait()
        self._log.info(
            "sync_loop_ended",
            state=run.state.value,
            reason=self._reason,
            cycles_completed=run.cycles_completed,
            last_processed_block=run.last_processed_block,
        )
        return SyncOutcome(
            analysis_id=run.analysis_id,
            state=run.state,
            reason=self._reason or REASON_NORMAL,
            cycles_completed=run.cycles_completed,
            last_processed_block=run.last_processed_block,
        )

    # --- Helpers ---

    def _pre_cycle(self) -> SyncState:
        """check_before_cycle, where a failed record read counts as a failed cycle."""
        while True:
            try:
                record = self._bridge.read(self.run.analysis_id)
            except Exception as e:
                if self._stop_event.is_set():
                    self._log.info("sync_shutdown_requested", cycle=self.run.cycle_number)
                    return self._finish(SyncState.COMPLETED_STOPPED, REASON_USER_REQUESTED)
                state = self.after_failure(e)
                if state is not SyncState.RUNNING:
                    return state
                self._wait()
                continue
            return self._apply_record(record)

    def _wait(self) -> None:
        if self._settings.cycle_delay_sec > 0 and not self._stop_event.is_set():
            self._sleep(self._settings.cycle_delay_sec)

    def _advance(self, to_block: int) -> int:
        current = self.run.last_processed_block
        return to_block if current is None else max(current, to_block)

    def _complete(self, state: SyncState, reason: str, *, metadata: dict[str, Any], line: str) -> SyncState:
        """Mark the record completed at 100%; a vanished record makes the run FAILED_TERMINAL."""
        try:
            self._bridge.write(
                self.run.analysis_id,
                fields={"status": STATUS_COMPLETED, "progress": 100, "completed_at": utc_now_iso()},
                metadata={"continuous": False, **metadata},
                logs=[line],
            )
        except RecordNotFoundError:
            self._log.warning("sync_record_missing", cycle=self.run.cycle_number)
            return self._finish(SyncState.FAILED_TERMINAL, REASON_NORMAL)
        self.run.status = STATUS_COMPLETED
        self.run.continuous = False
        return self._finish(state, reason)

    def _finish(self, state: SyncState, reason: str) -> SyncState:
        run = self.run
        run.state = state
        self._reason = reason
        updated = self._bridge.write_user_onboarding(
            run.user_id,
            {
                "continuous_sync": False,
                "is_indexed": True,
                "indexing_progress": 100,
                "last_update": utc_now_iso(),
                "completion_reason": reason,
            },
        )
        self._log.info("sync_terminal", state=state.value, reason=reason, user_updated=updated)
        return state


def perform_continuous_contract_sync(
    analysis_id: str,
    config: SyncConfig | dict[str, Any],
    user_id: str,
    *,
    db: Database | None = None,
    source: InteractionSource | None = None,
    settings: SyncSettings | None = None,
    analyzers: Analyzers | None = None,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], Any] | None = None,
) -> SyncOutcome:
    """
    Accumulate interactions for one contract until the run terminates.

    Blocks the calling thread. Unrecoverable errors outside a cycle (invalid
    configuration, record store failure while finishing) mark the user's
    default contract projection as failed and are re-raised.
    """
    if db is None:
        from backend_metagauge.database import get_database

        db = get_database()
    bridge = SyncRecordBridge(db)
    log = bind_analysis(analysis_id, __name__)
    owns_source = False
    try:
        if isinstance(config, dict):
            config = SyncConfig.from_dict(config)
        config.validate()
        settings = settings or get_settings()
        if source is None:
            from backend_metagauge.ingestion import ContractInteractionFetcher

            source = ContractInteractionFetcher(config.rpc_config)
            owns_source = True
        run = SyncRun(analysis_id=analysis_id, user_id=user_id, config=config)
        executor = CycleExecutor(bridge, DeduplicationStore(), source, settings, analyzers)
        controller = ContinuationController(
            run, executor, bridge, settings, stop_event=stop_event, sleep=sleep
        )
        return controller.execute()
    except Exception as e:
        log.exception("sync_controller_failed", user_id=user_id, error=str(e))
        try:
            bridge.write_user_onboarding(
                user_id,
                {
                    "continuous_sync": False,
                    "indexing_progress": 0,
                    "is_indexed": False,
                    "error": str(e),
                    "last_update": utc_now_iso(),
                },
            )
        except Exception as update_error:
            log.warning("sync_user_error_update_failed", user_id=user_id, error=str(update_error))
        raise
    finally:
        if owns_source:
            source.close()
