"""
User lifecycle analysis.

Each wallet gets a lifecycle stage from how recently it was first and last
seen, and a wallet type from its volume, activity and breadth. Wallets are
grouped into monthly cohorts with retention at 1/7/30/90 days. The summary
retention rate is the share of wallets that are still active or only inactive
(not dormant or churned).
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from backend_metagauge.analytics.utils import (
    SECONDS_PER_DAY,
    function_of,
    group_by_wallet,
    mean,
    tx_time,
    utc_now,
)
from backend_metagauge.ingestion.models import NormalizedTransaction

STAGE_NEW = "new"
STAGE_ACTIVE = "active"
STAGE_INACTIVE = "inactive"
STAGE_DORMANT = "dormant"
STAGE_CHURNED = "churned"
STAGES = (STAGE_NEW, STAGE_ACTIVE, STAGE_INACTIVE, STAGE_DORMANT, STAGE_CHURNED)

TYPE_WHALE = "whale"
TYPE_RETAIL = "retail"
TYPE_BOT = "bot"
TYPE_ARBITRAGEUR = "arbitrageur"
TYPE_EXPERIMENTER = "experimenter"
WALLET_TYPES = (TYPE_WHALE, TYPE_RETAIL, TYPE_BOT, TYPE_ARBITRAGEUR, TYPE_EXPERIMENTER)

WHALE_VOLUME = 100_000
BOT_MIN_TRANSACTIONS = 100
BOT_MAX_AGE_DAYS = 7
ARBITRAGEUR_MIN_FUNCTIONS = 3
ARBITRAGEUR_MIN_VOLUME = 1_000
EXPERIMENTER_MAX_TRANSACTIONS = 3
RETENTION_PERIODS_DAYS = (1, 7, 30, 90)
RETAINED_MAX_IDLE_DAYS = 7
POWER_USER_MIN_FUNCTIONS = 5
MAX_PROGRESSION_PATHS = 10


@dataclass
class WalletActivity:
    """Per-wallet aggregates used by every lifecycle view."""

    wallet: str
    first_seen: datetime
    last_seen: datetime
    transaction_count: int = 0
    successful_transactions: int = 0
    total_volume: float = 0.0
    total_gas_spent: float = 0.0
    functions_used: list[str] = field(default_factory=list)
    """Distinct functions in first-use order."""
    days_since_first_seen: int = 0
    days_since_last_activity: int = 0
    lifecycle_stage: str = STAGE_NEW


def _days_since(moment: datetime, now: datetime) -> int:
    return math.ceil(abs((now - moment).total_seconds()) / SECONDS_PER_DAY)


def lifecycle_stage(days_since_last_activity: int, days_since_first_seen: int) -> str:
    if days_since_first_seen <= 1:
        return STAGE_NEW
    if days_since_last_activity <= 7:
        return STAGE_ACTIVE
    if days_since_last_activity <= 30:
        return STAGE_INACTIVE
    if days_since_last_activity <= 90:
        return STAGE_DORMANT
    return STAGE_CHURNED


def wallet_type(activity: WalletActivity) -> str:
    if activity.total_volume > WHALE_VOLUME:
        return TYPE_WHALE
    if activity.transaction_count > BOT_MIN_TRANSACTIONS and activity.days_since_first_seen < BOT_MAX_AGE_DAYS:
        return TYPE_BOT
    if len(activity.functions_used) >= ARBITRAGEUR_MIN_FUNCTIONS and activity.total_volume > ARBITRAGEUR_MIN_VOLUME:
        return TYPE_ARBITRAGEUR
    if activity.transaction_count <= EXPERIMENTER_MAX_TRANSACTIONS:
        return TYPE_EXPERIMENTER
    return TYPE_RETAIL


def build_wallet_activity(
    transactions: Sequence[NormalizedTransaction],
    now: datetime,
) -> dict[str, WalletActivity]:
    wallets: dict[str, WalletActivity] = {}
    for wallet, txs in group_by_wallet(transactions).items():
        activity = WalletActivity(wallet=wallet, first_seen=tx_time(txs[0]), last_seen=tx_time(txs[-1]))
        for tx in txs:
            activity.transaction_count += 1
            if tx.status:
                activity.successful_transactions += 1
            activity.total_volume += tx.value_eth
            activity.total_gas_spent += tx.gas_cost_eth
            name = function_of(tx)
            if name not in activity.functions_used:
                activity.functions_used.append(name)
        activity.days_since_first_seen = _days_since(activity.first_seen, now)
        activity.days_since_last_activity = _days_since(activity.last_seen, now)
        activity.lifecycle_stage = lifecycle_stage(
            activity.days_since_last_activity, activity.days_since_first_seen
        )
        wallets[wallet] = activity
    return wallets


def _classification(wallets: dict[str, WalletActivity]) -> dict[str, Any]:
    details: dict[str, list[dict[str, Any]]] = {t: [] for t in WALLET_TYPES}
    for activity in wallets.values():
        kind = wallet_type(activity)
        details[kind].append({
            "wallet": activity.wallet,
            "transaction_count": activity.transaction_count,
            "total_volume": activity.total_volume,
            "functions_used": list(activity.functions_used),
            "lifecycle_stage": activity.lifecycle_stage,
            "type": kind,
        })
    distribution = {}
    for kind, members in details.items():
        distribution[kind] = {
            "count": len(members),
            "percentage": len(members) / len(wallets) * 100 if wallets else 0.0,
            "total_volume": sum(m["total_volume"] for m in members),
            "average_transactions": mean([m["transaction_count"] for m in members]),
        }
    return {"distribution": distribution, "details": details}


def _cohorts(wallets: dict[str, WalletActivity]) -> list[dict[str, Any]]:
    cohorts: dict[str, dict[str, Any]] = {}
    for activity in wallets.values():
        key = activity.first_seen.strftime("%Y-%m")
        cohort = cohorts.setdefault(key, {"total_users": 0, "total_volume": 0.0, "retained": Counter()})
        cohort["total_users"] += 1
        cohort["total_volume"] += activity.total_volume
        for period in RETENTION_PERIODS_DAYS:
            if (
                activity.days_since_first_seen >= period
                and activity.days_since_last_activity <= RETAINED_MAX_IDLE_DAYS
            ):
                cohort["retained"][period] += 1
    result = []
    for key in sorted(cohorts):
        cohort = cohorts[key]
        total = cohort["total_users"]
        result.append({
            "cohort_period": key,
            "total_users": total,
            "retention_rates": {f"day{p}": c / total * 100 for p, c in sorted(cohort["retained"].items())},
            "total_volume": cohort["total_volume"],
            "average_volume_per_user": cohort["total_volume"] / total if total else 0.0,
        })
    return result


def _time_distribution(days: list[int]) -> dict[str, int]:
    buckets = {"immediate": 0, "same_day": 0, "same_week": 0, "same_month": 0, "long_term": 0}
    for d in days:
        if d == 0:
            buckets["immediate"] += 1
        elif d == 1:
            buckets["same_day"] += 1
        elif d <= 7:
            buckets["same_week"] += 1
        elif d <= 30:
            buckets["same_month"] += 1
        else:
            buckets["long_term"] += 1
    return buckets


def _activation(wallets: dict[str, WalletActivity]) -> dict[str, Any]:
    activated = sum(1 for a in wallets.values() if a.successful_transactions > 0)
    ages = [a.days_since_first_seen for a in wallets.values() if a.transaction_count > 0]
    return {
        "total_wallets": len(wallets),
        "activated_wallets": activated,
        "activation_rate": activated / len(wallets) * 100 if wallets else 0.0,
        "average_activation_time": mean(ages),
        "activation_time_distribution": _time_distribution(ages),
    }


def _progression(wallets: dict[str, WalletActivity]) -> dict[str, Any]:
    orders: dict[str, list[int]] = {}
    paths: Counter[str] = Counter()
    for activity in wallets.values():
        funcs = activity.functions_used
        for position, func in enumerate(funcs, start=1):
            orders.setdefault(func, []).append(position)
        for current, following in zip(funcs, funcs[1:]):
            paths[f"{current} → {following}"] += 1
    total = len(wallets)
    stats = [
        {
            "function_name": func,
            "total_adoptions": len(positions),
            "average_adoption_order": mean(positions),
            "is_entry_point": positions.count(1),
            "adoption_rate": len(positions) / total * 100 if total else 0.0,
        }
        for func, positions in orders.items()
    ]
    stats.sort(key=lambda s: s["average_adoption_order"])
    top_paths = [
        {"path": path, "user_count": count, "percentage": count / total * 100 if total else 0.0}
        for path, count in paths.most_common(MAX_PROGRESSION_PATHS)
    ]
    values = list(wallets.values())
    return {
        "function_progression": stats,
        "top_progression_paths": top_paths,
        "progression_depth": {
            "single_function": sum(1 for a in values if len(a.functions_used) == 1),
            "multi_function": sum(1 for a in values if len(a.functions_used) > 1),
            "power_users": sum(1 for a in values if len(a.functions_used) >= POWER_USER_MIN_FUNCTIONS),
        },
    }


def retention_rate(distribution: dict[str, int]) -> float:
    total = sum(distribution.values())
    retained = distribution.get(STAGE_ACTIVE, 0) + distribution.get(STAGE_INACTIVE, 0)
    return retained / total * 100 if total else 0.0


def empty_analysis() -> dict[str, Any]:
    return {
        "total_wallets": 0,
        "lifecycle_distribution": {},
        "wallet_classification": {"distribution": {}, "details": {}},
        "cohort_analysis": [],
        "activation_metrics": {
            "total_wallets": 0,
            "activated_wallets": 0,
            "activation_rate": 0.0,
            "average_activation_time": 0.0,
            "activation_time_distribution": {},
        },
        "progression_analysis": {
            "function_progression": [],
            "top_progression_paths": [],
            "progression_depth": {"single_function": 0, "multi_function": 0, "power_users": 0},
        },
        "summary": {
            "active_users": 0,
            "new_users": 0,
            "churned_users": 0,
            "retention_rate": 0.0,
            "average_lifespan": 0.0,
        },
    }


def analyze_user_lifecycle(
    transactions: Sequence[NormalizedTransaction],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Lifecycle report; an empty-shaped report when no wallet has a timestamped transaction."""
    wallets = build_wallet_activity(transactions, now or utc_now())
    if not wallets:
        return empty_analysis()
    distribution = {stage: 0 for stage in STAGES}
    for activity in wallets.values():
        distribution[activity.lifecycle_stage] += 1
    lifespans = [
        (a.last_seen - a.first_seen).total_seconds() / SECONDS_PER_DAY for a in wallets.values()
    ]
    return {
        "total_wallets": len(wallets),
        "lifecycle_distribution": distribution,
        "wallet_classification": _classification(wallets),
        "cohort_analysis": _cohorts(wallets),
        "activation_metrics": _activation(wallets),
        "progression_analysis": _progression(wallets),
        "summary": {
            "active_users": distribution[STAGE_ACTIVE],
            "new_users": distribution[STAGE_NEW],
            "churned_users": distribution[STAGE_CHURNED],
            "retention_rate": retention_rate(distribution),
            "average_lifespan": mean(lifespans),
        },
    }
