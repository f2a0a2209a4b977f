"""Shared helpers for the analytics modules."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable, Sequence

from backend_metagauge.ingestion.models import NormalizedTransaction

SECONDS_PER_DAY = 86_400.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def tx_time(tx: NormalizedTransaction) -> datetime | None:
    """Timezone-aware block time of a transaction, or None."""
    ts = tx.timestamp
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def wallet_of(tx: NormalizedTransaction) -> str | None:
    return tx.from_address.lower() if tx.from_address else None


def function_of(tx: NormalizedTransaction) -> str:
    return tx.function_name or tx.method_id or "unknown"


def group_by_wallet(
    transactions: Iterable[NormalizedTransaction],
    *,
    require_time: bool = True,
) -> dict[str, list[NormalizedTransaction]]:
    """
    Transactions per sender, each list in chronological order.

    Ties are broken by block number then hash so ordering is deterministic.
    With require_time, transactions without a timestamp are dropped.
    """
    grouped: dict[str, list[NormalizedTransaction]] = defaultdict(list)
    for tx in transactions:
        wallet = wallet_of(tx)
        if not wallet:
            continue
        if require_time and tx_time(tx) is None:
            continue
        grouped[wallet].append(tx)
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    for txs in grouped.values():
        txs.sort(key=lambda t: (tx_time(t) or epoch, t.block_number or 0, t.hash))
    return dict(grouped)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def median(values: Sequence[float]) -> float:
    """Upper median (element at len // 2 of the sorted values); 0 for empty input."""
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0
