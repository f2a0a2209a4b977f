"""
DeFi metrics over accumulated transactions.

Three groups computed over a trailing window (default 30 days, ending now):
- activity: daily/weekly/monthly active senders, volume, average size.
- financial: inflow/outflow through the protocol address, TVL, fee revenue,
  share of whale-sized transactions.
- performance: success rate, average gas cost, utilization, address spread,
  stickiness (share of repeat senders).
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Sequence

from backend_metagauge.analytics.utils import tx_time, utc_now
from backend_metagauge.ingestion.models import NormalizedTransaction
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

DEFAULT_WINDOW_DAYS = 30
WHALE_THRESHOLD_ETH = 10.0
ADDRESS_LENGTH = 42


def _is_protocol_address(address: str | None, contract_address: str | None) -> bool:
    if not address:
        return False
    if contract_address:
        return address.lower() == contract_address.lower()
    return len(address) == ADDRESS_LENGTH


def _active_senders(transactions: Sequence[NormalizedTransaction], since: datetime, until: datetime) -> int:
    senders = set()
    for tx in transactions:
        ts = tx_time(tx)
        if ts is not None and since <= ts <= until and tx.from_address:
            senders.add(tx.from_address)
    return len(senders)


def _activity(transactions: Sequence[NormalizedTransaction], end: datetime) -> dict[str, Any]:
    volume = sum(tx.value_eth for tx in transactions)
    return {
        "dau": _active_senders(transactions, end - timedelta(days=1), end),
        "wau": _active_senders(transactions, end - timedelta(days=7), end),
        "mau": _active_senders(transactions, end - timedelta(days=30), end),
        "transaction_volume": round(volume, 6),
        "average_transaction_size": round(volume / len(transactions), 6) if transactions else 0.0,
    }


def _financial(transactions: Sequence[NormalizedTransaction], contract_address: str | None) -> dict[str, Any]:
    inflow = 0.0
    outflow = 0.0
    for tx in transactions:
        if _is_protocol_address(tx.to_address, contract_address):
            inflow += tx.value_eth
        if _is_protocol_address(tx.from_address, contract_address):
            outflow += tx.value_eth
    unique_senders = len({tx.from_address for tx in transactions if tx.from_address})
    revenue = sum(tx.gas_cost_eth for tx in transactions)
    whales = sum(1 for tx in transactions if tx.value_eth >= WHALE_THRESHOLD_ETH)
    return {
        "tvl": round(max(0.0, inflow - outflow), 6),
        "net_inflow": round(inflow, 6),
        "net_outflow": round(outflow, 6),
        "net_flow": round(inflow - outflow, 6),
        "revenue_per_user": round(revenue / unique_senders, 6) if unique_senders else 0.0,
        "protocol_revenue": round(revenue, 6),
        "whale_activity_ratio": round(whales / len(transactions) * 100, 2) if transactions else 0.0,
    }


def _performance(
    transactions: Sequence[NormalizedTransaction],
    start: datetime,
    end: datetime,
) -> dict[str, Any]:
    total = len(transactions)
    successes = sum(1 for tx in transactions if tx.status)
    gas = sum(tx.gas_cost_eth for tx in transactions)
    period_days = (end - start).total_seconds() / 86_400.0
    addresses: set[str] = set()
    for tx in transactions:
        if tx.to_address:
            addresses.add(tx.to_address)
        if tx.from_address:
            addresses.add(tx.from_address)
    per_sender = Counter(tx.from_address for tx in transactions if tx.from_address)
    repeat = sum(1 for count in per_sender.values() if count > 1)
    return {
        "function_success_rate": round(successes / total * 100, 2) if total else 0.0,
        "average_gas_cost": round(gas / total, 6) if total else 0.0,
        "contract_utilization_rate": round(total / period_days, 2) if period_days > 0 else 0.0,
        "cross_contract_interaction_rate": len(addresses),
        "protocol_stickiness": round(repeat / len(per_sender) * 100, 2) if per_sender else 0.0,
    }


def calculate_all_metrics(
    transactions: Sequence[NormalizedTransaction],
    chain: str = "",
    *,
    contract_address: str | None = None,
    now: datetime | None = None,
    window_days: int = DEFAULT_WINDOW_DAYS,
) -> dict[str, Any]:
    """
    Compute activity, financial and performance metrics.

    Only transactions whose block time falls inside [now - window_days, now]
    count. When contract_address is given it is the protocol address for
    inflow/outflow; otherwise any full-length address counts as one.

    Returns:
        dict with calculated_at, time_range, total_transactions, activity,
        financial, performance.
    """
    end = now or utc_now()
    start = end - timedelta(days=window_days)
    in_window = []
    for tx in transactions:
        ts = tx_time(tx)
        if ts is not None and start <= ts <= end:
            in_window.append(tx)
    metrics = {
        "calculated_at": end.isoformat(),
        "chain": chain,
        "time_range": {"start": start.isoformat(), "end": end.isoformat()},
        "total_transactions": len(in_window),
        "activity": _activity(in_window, end),
        "financial": _financial(in_window, contract_address),
        "performance": _performance(in_window, start, end),
    }
    logger.debug(
        "defi_metrics_calculated",
        chain=chain,
        transactions=len(transactions),
        in_window=len(in_window),
    )
    return metrics

