"""
User journey analysis: the ordered function calls each wallet makes.

Entry points, function-to-function adoption, drop-off points, common paths
shared by several wallets, and the distribution of journey lengths.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Any, Sequence

from backend_metagauge.analytics.utils import function_of, group_by_wallet, mean, tx_time
from backend_metagauge.ingestion.models import NormalizedTransaction

MIN_PATH_LENGTH = 2
MAX_PATH_LENGTH = 5
MIN_PATH_USERS = 2
MAX_COMMON_PATHS = 20
PATH_SEPARATOR = " → "

Journeys = dict[str, list[NormalizedTransaction]]


def _entry_points(journeys: Journeys) -> list[dict[str, Any]]:
    counts = Counter(function_of(txs[0]) for txs in journeys.values() if txs)
    total = len(journeys)
    points = [
        {"function_name": func, "user_count": count, "percentage": count / total * 100}
        for func, count in counts.items()
    ]
    points.sort(key=lambda p: p["user_count"], reverse=True)
    return points


def _feature_adoption(journeys: Journeys) -> dict[str, Any]:
    function_users: dict[str, set[str]] = defaultdict(set)
    transitions: dict[tuple[str, str], set[str]] = defaultdict(set)
    for wallet, txs in journeys.items():
        names = [function_of(tx) for tx in txs]
        for name in names:
            function_users[name].add(wallet)
        for current, following in zip(names, names[1:]):
            transitions[(current, following)].add(wallet)

    adoption_rates: dict[str, float] = {}
    rows = []
    for (src, dst), wallets in transitions.items():
        from_users = len(function_users.get(src, ()))
        rate = len(wallets) / from_users if from_users else 0.0
        adoption_rates[f"{src}{PATH_SEPARATOR}{dst}"] = rate
        rows.append({
            "from": src,
            "to": dst,
            "user_count": len(wallets),
            "adoption_rate": rate,
            "percentage": rate * 100,
        })
    rows.sort(key=lambda r: r["adoption_rate"], reverse=True)
    usage = [
        {"function_name": func, "unique_users": len(wallets)}
        for func, wallets in function_users.items()
    ]
    usage.sort(key=lambda u: u["unique_users"], reverse=True)
    return {"transitions": rows, "adoption_rates": adoption_rates, "function_usage": usage}


def _dropoff_points(journeys: Journeys) -> list[dict[str, Any]]:
    last_counts = Counter(function_of(txs[-1]) for txs in journeys.values() if txs)
    appearances = Counter(function_of(tx) for txs in journeys.values() for tx in txs)
    points = []
    for func, dropped in last_counts.items():
        total = appearances.get(func, 0)
        rate = dropped / total if total else 0.0
        points.append({
            "function_name": func,
            "dropoff_count": dropped,
            "total_appearances": total,
            "dropoff_rate": rate,
            "dropoff_percentage": rate * 100,
        })
    points.sort(key=lambda p: p["dropoff_rate"], reverse=True)
    return points


def _common_paths(journeys: Journeys) -> list[dict[str, Any]]:
    """Contiguous call sequences of length 2–5 used by at least two wallets, top 20 by users."""
    occurrences: Counter[tuple[str, ...]] = Counter()
    wallets_by_path: dict[tuple[str, ...], set[str]] = defaultdict(set)
    durations: dict[tuple[str, ...], list[float]] = defaultdict(list)
    for wallet, txs in journeys.items():
        if len(txs) < MIN_PATH_LENGTH:
            continue
        names = [function_of(tx) for tx in txs]
        for length in range(MIN_PATH_LENGTH, min(MAX_PATH_LENGTH, len(txs)) + 1):
            for i in range(len(txs) - length + 1):
                path = tuple(names[i:i + length])
                occurrences[path] += 1
                wallets_by_path[path].add(wallet)
                start, end = tx_time(txs[i]), tx_time(txs[i + length - 1])
                durations[path].append((end - start).total_seconds() * 1000)

    total_users = len(journeys)
    paths = [
        {
            "sequence": list(path),
            "user_count": len(wallets_by_path[path]),
            "total_occurrences": count,
            "average_completion_time": mean(durations[path]),
            "conversion_rate": len(wallets_by_path[path]) / total_users if total_users else 0.0,
        }
        for path, count in occurrences.items()
        if len(wallets_by_path[path]) >= MIN_PATH_USERS
    ]
    paths.sort(key=lambda p: p["user_count"], reverse=True)
    return paths[:MAX_COMMON_PATHS]


def empty_report() -> dict[str, Any]:
    return {
        "total_users": 0,
        "average_journey_length": 0.0,
        "common_paths": [],
        "entry_points": [],
        "feature_adoption": {"transitions": [], "adoption_rates": {}, "function_usage": []},
        "dropoff_points": [],
        "journey_distribution": {},
    }


def analyze_journeys(transactions: Sequence[NormalizedTransaction]) -> dict[str, Any]:
    """Journey report over every wallet with at least one timestamped transaction."""
    journeys = group_by_wallet(transactions)
    if not journeys:
        return empty_report()
    lengths = [len(txs) for txs in journeys.values()]
    return {
        "total_users": len(journeys),
        "average_journey_length": mean(lengths),
        "common_paths": _common_paths(journeys),
        "entry_points": _entry_points(journeys),
        "feature_adoption": _feature_adoption(journeys),
        "dropoff_points": _dropoff_points(journeys),
        "journey_distribution": dict(Counter(lengths)),
    }
