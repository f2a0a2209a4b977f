"""
Deduplication store: the accumulated transactions, events and users of one run.

Transactions are keyed by hash, events by transaction_hash-log_index, users by
sender address. Merges are first-write-wins and the store only grows. Users
are never merged incrementally; derive_users rebuilds them from everything
accumulated so far.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from backend_metagauge.accumulator.models import (
    USER_TYPE_ACTIVE,
    USER_TYPE_CASUAL,
    USER_TYPE_EVENT_ACTIVE,
    USER_TYPE_POWER_USER,
    USER_TYPE_WHALE,
    AccumulatedEvent,
    AccumulatedTransaction,
    AccumulatedUser,
    MergeResult,
    Window,
)
from backend_metagauge.ingestion.models import ContractEvent, NormalizedTransaction

WHALE_TOTAL_VALUE = 100
POWER_USER_EVENTS = 50
ACTIVE_TRANSACTIONS = 20
EVENT_ACTIVE_EVENTS = 10
LOYALTY_PER_DAILY_TX = 20
MAX_LOYALTY = 100
RISK_SCALE = 10


def classify_user_type(total_value: float, event_interactions: int, transaction_count: int) -> str:
    """First matching rule wins: whale, power_user, active, event_active, else casual."""
    if total_value > WHALE_TOTAL_VALUE:
        return USER_TYPE_WHALE
    if event_interactions > POWER_USER_EVENTS:
        return USER_TYPE_POWER_USER
    if transaction_count > ACTIVE_TRANSACTIONS:
        return USER_TYPE_ACTIVE
    if event_interactions > EVENT_ACTIVE_EVENTS:
        return USER_TYPE_EVENT_ACTIVE
    return USER_TYPE_CASUAL


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeduplicationStore:
    """In-memory accumulation for one SyncRun; not shared between runs."""

    def __init__(self) -> None:
        self._transactions: dict[str, AccumulatedTransaction] = {}
        self._events: dict[str, AccumulatedEvent] = {}
        self._users: dict[str, AccumulatedUser] = {}
        self._block_ranges: list[str] = []

    # --- Merging ---

    def merge_transactions(
        self,
        transactions: Iterable[NormalizedTransaction],
        cycle: int,
        added_at: str | None = None,
    ) -> MergeResult:
        added_at = added_at or _utc_iso()
        added = skipped = 0
        for tx in transactions:
            if self.has_transaction(tx.hash):
                skipped += 1
                continue
            self._transactions[tx.hash] = AccumulatedTransaction(tx, cycle, added_at)
            added += 1
        return MergeResult(added=added, skipped=skipped)

    def merge_events(
        self,
        events: Iterable[ContractEvent],
        cycle: int,
        added_at: str | None = None,
    ) -> MergeResult:
        added_at = added_at or _utc_iso()
        added = skipped = 0
        for event in events:
            if event.key in self._events:
                skipped += 1
                continue
            self._events[event.key] = AccumulatedEvent(event, cycle, added_at)
            added += 1
        return MergeResult(added=added, skipped=skipped)

    def record_block_range(self, window: Window) -> None:
        if window.label not in self._block_ranges:
            self._block_ranges.append(window.label)

    # --- User derivation ---

    def derive_users(self) -> int:
        """
        Rebuild every AccumulatedUser from all transactions and events.

        Pure function of the store contents, so calling it twice without a
        merge in between yields identical users. Returns how many users exist
        now that did not exist before.
        """
        previous = len(self._users)
        users: dict[str, AccumulatedUser] = {}
        bounds: dict[str, tuple[datetime | None, datetime | None]] = {}
        for acc in self._transactions.values():
            tx = acc.transaction
            address = tx.from_address
            if not address:
                continue
            user = users.get(address)
            if user is None:
                user = users[address] = AccumulatedUser(address=address)
            user.transaction_count += 1
            user.total_value += tx.value_eth
            user.total_gas_spent += tx.gas_cost_eth
            user.sync_cycles_active.add(acc.sync_cycle)
            user.last_active_sync = max(user.last_active_sync, acc.sync_cycle)
            first, last = bounds.get(address, (None, None))
            ts = tx.timestamp
            if ts is not None:
                if first is None or ts < first:
                    first = ts
                    user.first_seen = tx.block_timestamp
                if last is None or ts > last:
                    last = ts
                    user.last_seen = tx.block_timestamp
            bounds[address] = (first, last)

        for acc in self._events.values():
            owner = self._transactions.get(acc.transaction_hash)
            if owner is None or not owner.from_address:
                continue
            user = users.get(owner.from_address)
            if user is None:
                continue
            user.event_interactions += 1
            user.sync_cycles_active.add(acc.sync_cycle)
            user.last_active_sync = max(user.last_active_sync, acc.sync_cycle)

        for address, user in users.items():
            first, last = bounds.get(address, (None, None))
            span_days = (last - first).total_seconds() / 86_400 if first and last else 0.0
            frequency = user.transaction_count / max(1.0, span_days)
            user.loyalty_score = min(MAX_LOYALTY, frequency * LOYALTY_PER_DAILY_TX)
            user.risk_score = (
                user.event_interactions / user.transaction_count * RISK_SCALE if user.total_value > 0 else 0.0
            )
            user.user_type = classify_user_type(user.total_value, user.event_interactions, user.transaction_count)

        self._users = users
        return len(users) - previous

    # --- Views ---

    @property
    def transaction_count(self) -> int:
        return len(self._transactions)

    @property
    def event_count(self) -> int:
        return len(self._events)

    @property
    def user_count(self) -> int:
        return len(self._users)

    @property
    def processed_block_ranges(self) -> list[str]:
        return list(self._block_ranges)

    def has_transaction(self, tx_hash: str) -> bool:
        return tx_hash in self._transactions

    def has_event(self, key: str) -> bool:
        return key in self._events

    def get_user(self, address: str) -> AccumulatedUser | None:
        return self._users.get(address)

    def normalized_transactions(self) -> list[NormalizedTransaction]:
        """All accumulated transactions in first-seen order, as analyzers consume them."""
        return [acc.transaction for acc in self._transactions.values()]

    def transactions(self, limit: int | None = None) -> list[AccumulatedTransaction]:
        items = list(self._transactions.values())
        return items if limit is None else items[:limit]

    def events(self, limit: int | None = None) -> list[AccumulatedEvent]:
        items = list(self._events.values())
        return items if limit is None else items[:limit]

    def users(self, limit: int | None = None) -> list[AccumulatedUser]:
        items = list(self._users.values())
        return items if limit is None else items[:limit]

    def total_user_value(self) -> float:
        return sum(user.total_value for user in self._users.values())
