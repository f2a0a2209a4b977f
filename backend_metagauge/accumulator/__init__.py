"""
Continuous contract-sync accumulator.

- store: deduplication of transactions, events and derived users.
- window: block window planning per cycle.
- bridge: reads and ordered writes of the analysis and user records.
- cycle: one fetch → merge → analyze → persist cycle.
- controller: continuation state machine and perform_continuous_contract_sync.
"""

from backend_metagauge.accumulator.bridge import SyncRecordBridge
from backend_metagauge.accumulator.controller import (
    ContinuationController,
    perform_continuous_contract_sync,
)
from backend_metagauge.accumulator.cycle import Analyzers, CycleExecutor
from backend_metagauge.accumulator.models import (
    AccumulatedEvent,
    AccumulatedTransaction,
    AccumulatedUser,
    CycleReport,
    SyncOutcome,
    SyncRun,
    SyncState,
    Window,
)
from backend_metagauge.accumulator.store import DeduplicationStore
from backend_metagauge.accumulator.window import plan_window

__all__ = [
    "AccumulatedEvent",
    "AccumulatedTransaction",
    "AccumulatedUser",
    "Analyzers",
    "ContinuationController",
    "CycleExecutor",
    "CycleReport",
    "DeduplicationStore",
    "SyncOutcome",
    "SyncRecordBridge",
    "SyncRun",
    "SyncState",
    "Window",
    "perform_continuous_contract_sync",
    "plan_window",
]
