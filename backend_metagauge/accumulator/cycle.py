"""
One sync cycle: fetch a window, deduplicate, re-analyze everything, persist.

The executor owns no retry logic; any exception propagates to the
continuation controller, which decides what a failed cycle means.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence

from backend_metagauge.accumulator.bridge import SyncRecordBridge
from backend_metagauge.accumulator.models import (
    FETCH_METHOD,
    CycleReport,
    SyncRun,
    Window,
)
from backend_metagauge.accumulator.store import DeduplicationStore
from backend_metagauge.accumulator.window import plan_window
from backend_metagauge.analytics import (
    analyze_journeys,
    analyze_user_lifecycle,
    analyze_ux_bottlenecks,
    calculate_all_metrics,
)
from backend_metagauge.config.settings import SyncSettings
from backend_metagauge.core.exceptions import ConfigurationError
from backend_metagauge.ingestion.models import InteractionBatch, NormalizedTransaction
from backend_metagauge.ingestion.normalizer import normalize_transactions
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

REPORT_FETCH_METHOD = "contract-interactions"
ESTIMATED_CYCLE_DURATION = "30-45 seconds"
MIN_CYCLE_PROGRESS = 10
MAX_CYCLE_PROGRESS = 90
PROGRESS_PER_CYCLE = 2


class InteractionSource(Protocol):
    def get_current_block_number(self, chain: str) -> int: ...

    def fetch_contract_interactions(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
    ) -> InteractionBatch: ...


@dataclass
class Analyzers:
    """Analytics collaborators, replaceable in tests."""

    normalize: Callable[[list[dict[str, Any]], str], list[NormalizedTransaction]] = normalize_transactions
    metrics: Callable[..., dict[str, Any]] = calculate_all_metrics
    ux: Callable[[Sequence[NormalizedTransaction]], dict[str, Any]] = analyze_ux_bottlenecks
    journeys: Callable[[Sequence[NormalizedTransaction]], dict[str, Any]] = analyze_journeys
    lifecycle: Callable[..., dict[str, Any]] = analyze_user_lifecycle


def cycle_progress(cycle_number: int) -> int:
    return min(MAX_CYCLE_PROGRESS, MIN_CYCLE_PROGRESS + cycle_number * PROGRESS_PER_CYCLE)


def data_integrity_score(duplicates_skipped: int, fetched: int) -> float:
    return 100 - duplicates_skipped / max(fetched, 1) * 100


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CycleExecutor:
    """
    Runs cycles for one SyncRun against its DeduplicationStore.

    source: get_current_block_number / fetch_contract_interactions provider.
    analyzers: normalizer and the four analytics functions.
    """

    def __init__(
        self,
        bridge: SyncRecordBridge,
        store: DeduplicationStore,
        source: InteractionSource,
        settings: SyncSettings,
        analyzers: Analyzers | None = None,
    ) -> None:
        self._bridge = bridge
        self._store = store
        self._source = source
        self._settings = settings
        self._analyzers = analyzers or Analyzers()

    @property
    def store(self) -> DeduplicationStore:
        return self._store

    def run(self, run: SyncRun) -> CycleReport:
        cycle = run.cycle_number
        config = run.config
        if not config.chain:
            raise ConfigurationError("Target contract chain is missing from configuration")
        log = logger.bind(analysis_id=run.analysis_id, cycle=cycle)

        self._mark_started(run)

        head = self._source.get_current_block_number(config.chain)
        window = plan_window(head, run.last_processed_block, cycle, config.search_strategy, config.block_range)
        log.info(
            "sync_cycle_window",
            from_block=window.from_block,
            to_block=window.to_block,
            extended=window.extended,
        )
        batch = self._source.fetch_contract_interactions(
            config.contract_address, window.from_block, window.to_block, config.chain
        )
        normalized = self._analyzers.normalize(batch.transactions, config.chain)

        added_at = _utc_iso()
        tx_merge = self._store.merge_transactions(normalized, cycle, added_at)
        event_merge = self._store.merge_events(batch.events, cycle, added_at)
        new_users = self._store.derive_users()
        self._store.record_block_range(window)

        all_txs = self._store.normalized_transactions()
        defi = self._analyzers.metrics(all_txs, config.chain, contract_address=config.contract_address)
        ux = self._analyzers.ux(all_txs)
        journeys = self._analyzers.journeys(all_txs)
        lifecycle = self._analyzers.lifecycle(all_txs)

        integrity = data_integrity_score(tx_merge.skipped, len(normalized))
        metrics = self._snapshot(run, window, defi, ux, journeys, lifecycle, tx_merge.skipped, integrity)
        results = self._results(run, window, metrics, ux, journeys, lifecycle, tx_merge.skipped, integrity)

        report = CycleReport(
            cycle_number=cycle,
            window=window,
            fetched_transactions=len(normalized),
            new_transactions_count=tx_merge.added,
            new_events_count=event_merge.added,
            new_users_count=new_users,
            duplicates_skipped=tx_merge.skipped,
            data_integrity_score=integrity,
        )
        retention = lifecycle["summary"]["retention_rate"]
        self._bridge.write(
            run.analysis_id,
            logs=[
                f"Cycle {cycle}: Added {report.new_transactions_count} new transactions, "
                f"{report.new_events_count} new events, {report.new_users_count} new users "
                f"({report.duplicates_skipped} duplicates skipped)",
                f"Cycle {cycle}: Total accumulated - {self._store.transaction_count} transactions, "
                f"{self._store.user_count} users, {self._store.event_count} events",
                f"Cycle {cycle}: UX Grade: {ux['ux_grade']['grade']}, "
                f"Bottlenecks: {len(ux['bottlenecks'])}, Retention: {retention:.1f}%",
                f"Cycle {cycle}: Data integrity score: {_round_half_up(integrity)}%",
            ],
            results=results,
        )
        log.info(
            "sync_cycle_completed",
            new_transactions=report.new_transactions_count,
            new_events=report.new_events_count,
            new_users=report.new_users_count,
            duplicates_skipped=report.duplicates_skipped,
            total_transactions=self._store.transaction_count,
            total_events=self._store.event_count,
            total_users=self._store.user_count,
        )
        return report

    def _mark_started(self, run: SyncRun) -> None:
        cycle = run.cycle_number
        progress = cycle_progress(cycle)
        started = _utc_iso()
        self._bridge.write(
            run.analysis_id,
            fields={"progress": progress},
            metadata={
                "sync_cycle": cycle,
                "last_cycle_started": started,
                "last_processed_block": run.last_processed_block,
                "fetch_method": FETCH_METHOD,
                "cycle_start_time": started,
                "estimated_cycle_duration": ESTIMATED_CYCLE_DURATION,
            },
            logs=[f"Cycle {cycle}: Starting interaction-based fetch (estimated 30-45s)..."],
        )
        self._bridge.write_user_onboarding(run.user_id, {"indexing_progress": progress})

    def _snapshot(
        self,
        run: SyncRun,
        window: Window,
        defi: dict[str, Any],
        ux: dict[str, Any],
        journeys: dict[str, Any],
        lifecycle: dict[str, Any],
        duplicates: int,
        integrity: float,
    ) -> dict[str, Any]:
        store = self._store
        return {
            **defi.get("financial", {}),
            **defi.get("activity", {}),
            **defi.get("performance", {}),
            "total_transactions": store.transaction_count,
            "unique_users": store.user_count,
            "total_events": store.event_count,
            "total_value": store.total_user_value(),
            "avg_transactions_per_user": store.transaction_count / store.user_count if store.user_count else 0.0,
            "data_freshness": _utc_iso(),
            "sync_cycles_completed": run.cycle_number,
            "last_processed_block": window.to_block,
            "block_range_processed": window.label,
            "interaction_based": True,
            "deduplication_enabled": True,
            "duplicates_skipped": duplicates,
            "data_integrity_score": integrity,
            "ux_grade": ux["ux_grade"]["grade"],
            "ux_completion_rate": ux["ux_grade"]["completion_rate"],
            "ux_bottleneck_count": len(ux["bottlenecks"]),
            "average_session_duration": ux["session_durations"]["average_duration"],
            "user_retention_rate": lifecycle["summary"]["retention_rate"],
            "user_activation_rate": lifecycle["activation_metrics"]["activation_rate"],
            "average_journey_length": journeys["average_journey_length"],
        }

    def _results(
        self,
        run: SyncRun,
        window: Window,
        metrics: dict[str, Any],
        ux: dict[str, Any],
        journeys: dict[str, Any],
        lifecycle: dict[str, Any],
        duplicates: int,
        integrity: float,
    ) -> dict[str, Any]:
        config = run.config
        store = self._store
        settings = self._settings
        block_range = {"from": window.from_block, "to": window.to_block}
        return {
            "target": {
                "contract": config.contract_address,
                "chain": config.chain,
                "name": config.contract_name,
                "metrics": metrics,
                "transactions": store.transaction_count,
                "block_range": block_range,
                "full_report": {
                    "transactions": [t.to_dict() for t in store.transactions(settings.report_transaction_limit)],
                    "events": [e.to_dict() for e in store.events(settings.report_event_limit)],
                    "users": [u.to_dict() for u in store.users(settings.report_user_limit)],
                    "defi_metrics": metrics,
                    "ux_analysis": ux,
                    "user_journeys": journeys,
                    "user_lifecycle": lifecycle,
                    "summary": {
                        "total_transactions": store.transaction_count,
                        "unique_users": store.user_count,
                        "total_events": store.event_count,
                        "total_value": metrics["total_value"],
                        "interaction_based": True,
                        "deduplication_enabled": True,
                        "data_integrity_score": integrity,
                        "ux_grade": metrics["ux_grade"],
                        "ux_bottleneck_count": metrics["ux_bottleneck_count"],
                        "user_retention_rate": metrics["user_retention_rate"],
                        "average_journey_length": metrics["average_journey_length"],
                    },
                    "metadata": {
                        "sync_cycle": run.cycle_number,
                        "accumulated_data": True,
                        "continuous_sync": True,
                        "last_updated": _utc_iso(),
                        "processed_block_ranges": store.processed_block_ranges,
                        "last_processed_block": window.to_block,
                        "fetch_method": REPORT_FETCH_METHOD,
                        "data_integrity_score": integrity,
                        "duplicates_skipped": duplicates,
                    },
                },
            },
            "competitors": [],
            "comparative": None,
            "metadata": {
                "block_range": block_range,
                "chains_analyzed": [config.chain],
                "total_transactions": store.transaction_count,
                "is_default_contract": True,
                "continuous": True,
                "sync_cycle": run.cycle_number,
                "accumulated_data": True,
                "interaction_based": True,
                "deduplication_enabled": True,
                "fetch_method": REPORT_FETCH_METHOD,
                "data_integrity_score": integrity,
            },
        }
