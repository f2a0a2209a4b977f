"""
UX bottleneck detection over contract transactions.

Per wallet session durations, function-to-function abandonment (bottlenecks),
failure patterns, time to first success, and an A–F grade from completion
rate, failure rate and average session length.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Sequence

from backend_metagauge.analytics.utils import (
    function_of,
    group_by_wallet,
    mean,
    median,
    minutes_between,
    tx_time,
    wallet_of,
)
from backend_metagauge.ingestion.models import NormalizedTransaction
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

BOTTLENECK_THRESHOLD = 0.3
_EPSILON = 1e-4
MAX_FAILURE_SEQUENCES = 50

# (grade, min completion rate, max failure rate, max average session minutes), best first
GRADE_THRESHOLDS: tuple[tuple[str, float, float, float], ...] = (
    ("A", 0.9, 0.05, 10.0),
    ("B", 0.8, 0.1, 20.0),
    ("C", 0.7, 0.15, 30.0),
    ("D", 0.6, 0.2, 45.0),
)
GRADE_FAIL = "F"


def completion_rate(transactions: Sequence[NormalizedTransaction]) -> float:
    """Share of wallets with at least one successful transaction."""
    wallets = group_by_wallet(transactions, require_time=False)
    if not wallets:
        return 0.0
    completed = sum(1 for txs in wallets.values() if any(tx.status for tx in txs))
    return completed / len(wallets)


def failure_rate(transactions: Sequence[NormalizedTransaction]) -> float:
    """Share of transactions that failed."""
    if not transactions:
        return 0.0
    return sum(1 for tx in transactions if not tx.status) / len(transactions)


def session_durations(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    """First-to-last transaction span per wallet, in minutes."""
    sessions = []
    for wallet, txs in group_by_wallet(transactions).items():
        first, last = tx_time(txs[0]), tx_time(txs[-1])
        successes = sum(1 for tx in txs if tx.status)
        sessions.append({
            "wallet": wallet,
            "first_transaction": first.isoformat(),
            "last_transaction": last.isoformat(),
            "duration_minutes": minutes_between(first, last),
            "transaction_count": len(txs),
            "successful_transactions": successes,
            "failed_transactions": len(txs) - successes,
        })
    durations = [s["duration_minutes"] for s in sessions]
    return {
        "sessions": sessions,
        "average_duration": mean(durations),
        "median_duration": median(durations),
        "min_duration": min(durations) if durations else 0.0,
        "max_duration": max(durations) if durations else 0.0,
    }


def detect_bottlenecks(transactions: Sequence[NormalizedTransaction]) -> list[dict[str, Any]]:
    """
    Consecutive function pairs whose abandonment exceeds the threshold.

    Abandonment for A->B is 1 - (times B directly followed A) / (calls of A).
    Sorted by abandonment rate, highest first.
    """
    starts = Counter(function_of(tx) for tx in transactions)
    pairs: dict[tuple[str, str], dict[str, Any]] = {}
    for wallet, txs in group_by_wallet(transactions).items():
        for current, following in zip(txs, txs[1:]):
            key = (function_of(current), function_of(following))
            stats = pairs.setdefault(key, {"completed": 0, "wallets": set()})
            stats["completed"] += 1
            stats["wallets"].add(wallet)

    bottlenecks = []
    for (from_func, to_func), stats in pairs.items():
        started = starts.get(from_func, 0)
        if not started:
            continue
        completion = stats["completed"] / started
        abandonment = 1 - completion
        if abandonment > BOTTLENECK_THRESHOLD + _EPSILON:
            bottlenecks.append({
                "from_function": from_func,
                "to_function": to_func,
                "abandonment_rate": abandonment,
                "completion_rate": completion,
                "total_started": started,
                "completed": stats["completed"],
                "abandoned": started - stats["completed"],
                "affected_users": len(stats["wallets"]),
            })
    bottlenecks.sort(key=lambda b: b["abandonment_rate"], reverse=True)
    return bottlenecks


def _failure_patterns(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    failed = [tx for tx in transactions if not tx.status]
    if not failed:
        return {"total_failures": 0, "failures_by_function": [], "failure_sequences": []}
    failures = Counter(function_of(tx) for tx in failed)
    attempts = Counter(function_of(tx) for tx in transactions)
    by_function = [
        {
            "function_name": func,
            "failure_count": count,
            "total_attempts": attempts[func],
            "failure_rate": count / attempts[func] if attempts[func] else 0.0,
        }
        for func, count in failures.items()
    ]
    by_function.sort(key=lambda f: f["failure_count"], reverse=True)

    sequences = []
    for wallet, txs in group_by_wallet(failed).items():
        if len(txs) < 2:
            continue
        sequences.append({
            "wallet": wallet,
            "failure_count": len(txs),
            "functions": [function_of(tx) for tx in txs],
            "first_failure": tx_time(txs[0]).isoformat(),
            "last_failure": tx_time(txs[-1]).isoformat(),
        })
    sequences.sort(key=lambda s: s["failure_count"], reverse=True)
    return {
        "total_failures": len(failed),
        "failures_by_function": by_function,
        "failure_sequences": sequences[:MAX_FAILURE_SEQUENCES],
    }


def _time_to_first_success(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    grouped = group_by_wallet(transactions)
    users = []
    for wallet, txs in grouped.items():
        for index, tx in enumerate(txs):
            if tx.status:
                first, success = tx_time(txs[0]), tx_time(tx)
                users.append({
                    "wallet": wallet,
                    "first_transaction": first.isoformat(),
                    "first_success": success.isoformat(),
                    "time_to_success_minutes": minutes_between(first, success),
                    "attempts_before_success": index + 1,
                })
                break
    times = [u["time_to_success_minutes"] for u in users]
    return {
        "users": users,
        "average_time_to_success_minutes": mean(times),
        "median_time_to_success_minutes": median(times),
        "users_with_success": len(users),
        "total_users": len(grouped),
    }


def grade_ux_quality(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    """Best grade whose completion, failure and session-length thresholds all hold; else F."""
    if not transactions:
        return {
            "grade": GRADE_FAIL,
            "completion_rate": 0.0,
            "failure_rate": 0.0,
            "average_transaction_time": 0.0,
            "bottleneck_count": 0,
        }
    completion = completion_rate(transactions)
    failures = failure_rate(transactions)
    avg_minutes = session_durations(transactions)["average_duration"]
    grade = GRADE_FAIL
    for level, min_completion, max_failure, max_minutes in GRADE_THRESHOLDS:
        if completion >= min_completion and failures <= max_failure and avg_minutes <= max_minutes:
            grade = level
            break
    successes = sum(1 for tx in transactions if tx.status)
    return {
        "grade": grade,
        "completion_rate": completion,
        "failure_rate": failures,
        "average_transaction_time": avg_minutes,
        "bottleneck_count": len(detect_bottlenecks(transactions)),
        "metrics": {
            "total_transactions": len(transactions),
            "successful_transactions": successes,
            "failed_transactions": len(transactions) - successes,
            "unique_users": len({w for w in map(wallet_of, transactions) if w}),
        },
    }


def empty_analysis() -> dict[str, Any]:
    return {
        "session_durations": {
            "sessions": [],
            "average_duration": 0.0,
            "median_duration": 0.0,
            "min_duration": 0.0,
            "max_duration": 0.0,
        },
        "bottlenecks": [],
        "failure_patterns": {"total_failures": 0, "failures_by_function": [], "failure_sequences": []},
        "time_to_first_success": {
            "users": [],
            "average_time_to_success_minutes": 0.0,
            "median_time_to_success_minutes": 0.0,
            "users_with_success": 0,
            "total_users": 0,
        },
        "ux_grade": grade_ux_quality([]),
        "summary": {
            "total_sessions": 0,
            "average_session_duration": 0.0,
            "bottleneck_count": 0,
            "overall_completion_rate": 0.0,
            "overall_failure_rate": 0.0,
        },
    }


def analyze_ux_bottlenecks(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    """Full UX analysis; an empty-shaped report when there are no transactions."""
    if not transactions:
        return empty_analysis()
    sessions = session_durations(transactions)
    bottlenecks = detect_bottlenecks(transactions)
    grade = grade_ux_quality(transactions)
    logger.debug(
        "ux_analysis_done",
        transactions=len(transactions),
        bottlenecks=len(bottlenecks),
        grade=grade["grade"],
    )
    return {
        "session_durations": sessions,
        "bottlenecks": bottlenecks,
        "failure_patterns": _failure_patterns(transactions),
        "time_to_first_success": _time_to_first_success(transactions),
        "ux_grade": grade,
        "summary": {
            "total_sessions": len(sessions["sessions"]),
            "average_session_duration": sessions["average_duration"],
            "bottleneck_count": len(bottlenecks),
            "overall_completion_rate": grade["completion_rate"],
            "overall_failure_rate": grade["failure_rate"],
        },
    }
