"""
Domain models for the continuous sync accumulator.

SyncRun is the controller's mutable loop state; the Accumulated* types are
what the deduplication store holds; Window, MergeResult and CycleReport are
passed between planner, store, executor and controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from backend_metagauge.config.settings import SyncConfig
from backend_metagauge.ingestion.models import ContractEvent, NormalizedTransaction

FETCH_METHOD = "interaction-based"

REASON_NO_DATA = "auto-stopped-no-data"
REASON_MAX_CYCLES = "max-cycles-reached"
REASON_NORMAL = "normal-completion"
REASON_USER_REQUESTED = "user_requested"

USER_TYPE_WHALE = "whale"
USER_TYPE_POWER_USER = "power_user"
USER_TYPE_ACTIVE = "active"
USER_TYPE_EVENT_ACTIVE = "event_active"
USER_TYPE_CASUAL = "casual"


class SyncState(str, Enum):
    RUNNING = "running"
    COMPLETED_EXHAUSTED = "completed_exhausted"
    COMPLETED_CEILING = "completed_ceiling"
    COMPLETED_STOPPED = "completed_stopped"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncState.RUNNING


@dataclass
class SyncRun:
    """
    Loop state of one continuous sync, owned by exactly one controller.

    cycle_number starts at 1 and increases on every iteration, failed or not.
    last_processed_block is None until the first successful cycle and never
    decreases. empty_cycle_streak counts consecutive successful cycles that
    added neither transactions nor events.
    """

    analysis_id: str
    user_id: str
    config: SyncConfig
    cycle_number: int = 1
    last_processed_block: int | None = None
    empty_cycle_streak: int = 0
    status: str = "running"
    continuous: bool | None = True
    state: SyncState = SyncState.RUNNING

    @property
    def cycles_completed(self) -> int:
        return self.cycle_number - 1


@dataclass(frozen=True)
class Window:
    """Inclusive block range for one cycle."""

    from_block: int
    to_block: int
    extended: bool = False
    """True when the planner fell back to a backwards range because no new blocks existed."""

    @property
    def label(self) -> str:
        return f"{self.from_block}-{self.to_block}"

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1


@dataclass
class AccumulatedTransaction:
    """A normalized transaction plus the cycle that first introduced it."""

    transaction: NormalizedTransaction
    sync_cycle: int
    added_at: str

    @property
    def hash(self) -> str:
        return self.transaction.hash

    @property
    def from_address(self) -> str | None:
        return self.transaction.from_address

    def to_dict(self) -> dict[str, Any]:
        data = self.transaction.to_dict()
        data["sync_cycle"] = self.sync_cycle
        data["added_at"] = self.added_at
        return data


@dataclass
class AccumulatedEvent:
    """A contract event plus the cycle that first introduced it."""

    event: ContractEvent
    sync_cycle: int
    added_at: str

    @property
    def key(self) -> str:
        return self.event.key

    @property
    def transaction_hash(self) -> str:
        return self.event.transaction_hash

    def to_dict(self) -> dict[str, Any]:
        data = self.event.to_dict()
        data["sync_cycle"] = self.sync_cycle
        data["added_at"] = self.added_at
        return data


@dataclass
class AccumulatedUser:
    """Per-sender aggregate, recomputed from the whole store every cycle."""

    address: str
    transaction_count: int = 0
    total_value: float = 0.0
    total_gas_spent: float = 0.0
    first_seen: str | None = None
    last_seen: str | None = None
    event_interactions: int = 0
    loyalty_score: float = 0.0
    risk_score: float = 0.0
    user_type: str = USER_TYPE_CASUAL
    sync_cycles_active: set[int] = field(default_factory=set)
    last_active_sync: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "transaction_count": self.transaction_count,
            "total_value": self.total_value,
            "total_gas_spent": self.total_gas_spent,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "event_interactions": self.event_interactions,
            "loyalty_score": self.loyalty_score,
            "risk_score": self.risk_score,
            "user_type": self.user_type,
            "sync_cycles_active": sorted(self.sync_cycles_active),
            "last_active_sync": self.last_active_sync,
        }


@dataclass(frozen=True)
class MergeResult:
    added: int = 0
    skipped: int = 0


@dataclass
class CycleReport:
    """What one successful cycle did; the controller decides continuation from it."""

    cycle_number: int
    window: Window
    fetched_transactions: int
    new_transactions_count: int
    new_events_count: int
    new_users_count: int
    duplicates_skipped: int
    data_integrity_score: float

    @property
    def is_empty(self) -> bool:
        return self.new_transactions_count == 0 and self.new_events_count == 0


@dataclass(frozen=True)
class SyncOutcome:
    """Terminal result of perform_continuous_contract_sync."""

    analysis_id: str
    state: SyncState
    reason: str
    cycles_completed: int
    last_processed_block: int | None
