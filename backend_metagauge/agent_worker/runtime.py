"""
Long-running host for continuous syncs.

SyncSupervisor gives every analysis its own daemon thread running
perform_continuous_contract_sync and refuses a second loop for an analysis
that is already syncing. main() is the CLI: it resumes one sync from an
existing analysis record and stops it cleanly on SIGINT/SIGTERM.

Usage: python -m backend_metagauge.agent_worker.runtime --analysis-id <id>
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from backend_metagauge.accumulator import SyncOutcome, perform_continuous_contract_sync
from backend_metagauge.config.settings import SyncConfig, SyncSettings
from backend_metagauge.database import STATUS_RUNNING, Database
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

DEFAULT_JOIN_TIMEOUT_SEC = 60.0


@dataclass
class _SyncHandle:
    thread: threading.Thread
    stop_event: threading.Event
    outcome: SyncOutcome | None = None
    error: Exception | None = None
    done: threading.Event = field(default_factory=threading.Event)


class SyncSupervisor:
    """
    One sync thread per analysis id.

    runner: Replaces perform_continuous_contract_sync (tests); receives the
        same arguments including db, settings and stop_event.
    """

    def __init__(
        self,
        db: Database,
        *,
        settings: SyncSettings | None = None,
        runner: Callable[..., SyncOutcome] | None = None,
        runner_kwargs: dict[str, Any] | None = None,
    ) -> None:
        self._db = db
        self._settings = settings
        self._runner = runner or perform_continuous_contract_sync
        self._runner_kwargs = dict(runner_kwargs or {})
        self._handles: dict[str, _SyncHandle] = {}
        self._lock = threading.Lock()

    def start(self, analysis_id: str, config: SyncConfig | dict[str, Any], user_id: str) -> threading.Thread:
        """Start a sync thread; raises ValueError if this analysis is already syncing."""
        with self._lock:
            current = self._handles.get(analysis_id)
            if current is not None and current.thread.is_alive():
                raise ValueError(f"continuous sync already running: {analysis_id}")
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(analysis_id, config, user_id),
                name=f"sync-{analysis_id}",
                daemon=True,
            )
            self._handles[analysis_id] = _SyncHandle(thread=thread, stop_event=stop_event)
            thread.start()
        logger.info("supervisor_sync_started", analysis_id=analysis_id, user_id=user_id)
        return thread

    def _run(self, analysis_id: str, config: SyncConfig | dict[str, Any], user_id: str) -> None:
        handle = self._handles[analysis_id]
        try:
            handle.outcome = self._runner(
                analysis_id,
                config,
                user_id,
                db=self._db,
                settings=self._settings,
                stop_event=handle.stop_event,
                **self._runner_kwargs,
            )
        except Exception as e:
            # already annotated on the user record by the controller
            handle.error = e
            logger.warning("supervisor_sync_failed", analysis_id=analysis_id, error=str(e))
        finally:
            handle.done.set()
            logger.info("supervisor_sync_finished", analysis_id=analysis_id)

    def is_running(self, analysis_id: str) -> bool:
        handle = self._handles.get(analysis_id)
        return handle is not None and handle.thread.is_alive()

    def running(self) -> list[str]:
        with self._lock:
            return [aid for aid, h in self._handles.items() if h.thread.is_alive()]

    def outcome(self, analysis_id: str) -> SyncOutcome | None:
        handle = self._handles.get(analysis_id)
        return handle.outcome if handle is not None else None

    def error(self, analysis_id: str) -> Exception | None:
        handle = self._handles.get(analysis_id)
        return handle.error if handle is not None else None

    def wait(self, analysis_id: str, timeout: float | None = None) -> bool:
        """Block until the sync thread finished; returns False on timeout."""
        handle = self._handles.get(analysis_id)
        if handle is None:
            return True
        return handle.done.wait(timeout)

    def stop(self, analysis_id: str, timeout: float | None = DEFAULT_JOIN_TIMEOUT_SEC) -> bool:
        handle = self._handles.get(analysis_id)
        if handle is None:
            return True
        handle.stop_event.set()
        handle.thread.join(timeout)
        return not handle.thread.is_alive()

    def stop_all(self, timeout: float | None = DEFAULT_JOIN_TIMEOUT_SEC) -> None:
        with self._lock:
            handles = list(self._handles.items())
        for _, handle in handles:
            handle.stop_event.set()
        for analysis_id, handle in handles:
            handle.thread.join(timeout)
            if handle.thread.is_alive():
                logger.warning("supervisor_stop_timeout", analysis_id=analysis_id)
        logger.info("supervisor_stopped", syncs=len(handles))


def resume_analysis(db: Database, analysis_id: str, user_id: str | None = None) -> tuple[SyncConfig, str]:
    """
    Load config and owner for an existing analysis and mark it running/continuous.

    Raises ValueError when the analysis does not exist.
    """
    record = db.get_analysis(analysis_id)
    if record is None:
        raise ValueError(f"analysis not found: {analysis_id}")
    config = SyncConfig.from_dict(record.config)
    db.update_analysis(analysis_id, {"status": STATUS_RUNNING}, metadata_patch={"continuous": True})
    return config, user_id or record.user_id


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: run one continuous sync until it terminates or a signal arrives."""
    parser = argparse.ArgumentParser(description="Run a continuous contract sync for an existing analysis.")
    parser.add_argument("--analysis-id", required=True, help="Analysis record to accumulate into.")
    parser.add_argument("--user-id", default=None, help="Owning user; defaults to the record's user_id.")
    parser.add_argument("--db-path", default=None, help="SQLite path; default METAGAUGE_DB_PATH.")
    args = parser.parse_args(argv)

    from backend_metagauge.config.env import load_metagauge_env
    from backend_metagauge.database import get_database

    load_metagauge_env()
    db = get_database(args.db_path)
    try:
        config, user_id = resume_analysis(db, args.analysis_id, args.user_id)
    except ValueError as e:
        logger.error("runtime_config_error", analysis_id=args.analysis_id, error=str(e))
        return 1

    analysis_id = args.analysis_id
    supervisor = SyncSupervisor(db)

    def request_shutdown(*args: Any, **kwargs: Any) -> None:
        logger.info("runtime_shutdown_signal", analysis_id=analysis_id)
        supervisor.stop(analysis_id, timeout=0)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, request_shutdown)
        except (AttributeError, ValueError):
            # Windows or not in main thread
            pass

    supervisor.start(analysis_id, config, user_id)
    # short waits keep the main thread responsive to signals
    while not supervisor.wait(analysis_id, timeout=1.0):
        pass

    if supervisor.error(analysis_id) is not None:
        return 1
    outcome = supervisor.outcome(analysis_id)
    logger.info(
        "runtime_sync_done",
        analysis_id=analysis_id,
        state=outcome.state.value if outcome else None,
        reason=outcome.reason if outcome else None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
