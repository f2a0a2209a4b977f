"""
Sync settings and per-run configuration.

SyncSettings holds the loop constants (empty-cycle threshold, cycle ceiling,
inter-cycle delay, report caps); get_settings() reads overrides from the
environment. SyncConfig is the per-analysis configuration passed to
perform_continuous_contract_sync.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from backend_metagauge.config.env import SUPPORTED_CHAINS, get_rpc_config, load_metagauge_env
from backend_metagauge.core.exceptions import ConfigurationError

DEFAULT_MAX_EMPTY_CYCLES = 10
DEFAULT_MAX_CYCLES = 50
DEFAULT_CYCLE_DELAY_SEC = 30.0
DEFAULT_REPORT_TRANSACTION_LIMIT = 500
DEFAULT_REPORT_EVENT_LIMIT = 500
DEFAULT_REPORT_USER_LIMIT = 100
DEFAULT_BLOCK_RANGE = 1000

SEARCH_STRATEGY_STANDARD = "standard"
SEARCH_STRATEGY_COMPREHENSIVE = "comprehensive"


@dataclass
class SyncSettings:
    """
    Loop constants for the continuation controller.

    max_empty_cycles: Consecutive cycles without new data before auto-stop.
    max_cycles: Cycle ceiling; the run completes once cycle_number exceeds it.
    cycle_delay_sec: Fixed delay between cycles, also used after a failed cycle.
    report_*_limit: Caps on the item lists embedded in the persisted report.
    """

    max_empty_cycles: int = DEFAULT_MAX_EMPTY_CYCLES
    max_cycles: int = DEFAULT_MAX_CYCLES
    cycle_delay_sec: float = DEFAULT_CYCLE_DELAY_SEC
    report_transaction_limit: int = DEFAULT_REPORT_TRANSACTION_LIMIT
    report_event_limit: int = DEFAULT_REPORT_EVENT_LIMIT
    report_user_limit: int = DEFAULT_REPORT_USER_LIMIT

    def __post_init__(self) -> None:
        self.max_empty_cycles = max(1, int(self.max_empty_cycles))
        self.max_cycles = max(1, int(self.max_cycles))
        self.cycle_delay_sec = max(0.0, float(self.cycle_delay_sec))
        self.report_transaction_limit = max(0, int(self.report_transaction_limit))
        self.report_event_limit = max(0, int(self.report_event_limit))
        self.report_user_limit = max(0, int(self.report_user_limit))


def _env_int(key: str, default: int) -> int:
    raw = (os.getenv(key) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = (os.getenv(key) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def get_settings() -> SyncSettings:
    """Build SyncSettings from SYNC_MAX_EMPTY_CYCLES, SYNC_MAX_CYCLES, SYNC_CYCLE_DELAY_SEC."""
    load_metagauge_env()
    return SyncSettings(
        max_empty_cycles=_env_int("SYNC_MAX_EMPTY_CYCLES", DEFAULT_MAX_EMPTY_CYCLES),
        max_cycles=_env_int("SYNC_MAX_CYCLES", DEFAULT_MAX_CYCLES),
        cycle_delay_sec=_env_float("SYNC_CYCLE_DELAY_SEC", DEFAULT_CYCLE_DELAY_SEC),
    )


@dataclass
class SyncConfig:
    """
    Target and fetch parameters for one continuous sync run.

    contract_address: Contract whose interactions are accumulated.
    chain: Chain name (ethereum, lisk); mandatory for normalization.
    rpc_config: {chain: [url, ...]}; empty means read from the environment.
    search_strategy: "comprehensive" widens the first-cycle window.
    block_range: Base width of the backwards window used when no new blocks exist.
    """

    contract_address: str
    chain: str
    contract_name: str = ""
    rpc_config: dict[str, list[str]] = field(default_factory=dict)
    search_strategy: str = SEARCH_STRATEGY_STANDARD
    block_range: int = DEFAULT_BLOCK_RANGE

    def __post_init__(self) -> None:
        self.contract_address = (self.contract_address or "").strip()
        self.chain = (self.chain or "").strip().lower()
        self.search_strategy = (self.search_strategy or SEARCH_STRATEGY_STANDARD).strip().lower()
        self.block_range = max(1, int(self.block_range or DEFAULT_BLOCK_RANGE))
        if not self.rpc_config:
            self.rpc_config = get_rpc_config()
        self.rpc_config = {(chain or "").lower(): list(urls or []) for chain, urls in self.rpc_config.items()}

    def validate(self) -> None:
        """Raise ConfigurationError when the target cannot be synced at all."""
        if not self.contract_address:
            raise ConfigurationError("Target contract address is missing from configuration")
        if not self.chain:
            raise ConfigurationError("Target contract chain is missing from configuration")
        if self.chain not in SUPPORTED_CHAINS:
            raise ConfigurationError(f"Unsupported chain: {self.chain}")
        if not any(self.rpc_config.get(self.chain) or []):
            raise ConfigurationError(f"No RPC providers configured for chain: {self.chain}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """
        Build from a stored analysis config.

        Accepts the flat form used here and the nested
        {"target_contract": {...}, "analysis_params": {...}} form.
        """
        target = data.get("target_contract") or {}
        params = data.get("analysis_params") or {}
        return cls(
            contract_address=target.get("address") or data.get("contract_address") or "",
            chain=target.get("chain") or data.get("chain") or "",
            contract_name=target.get("name") or data.get("contract_name") or "",
            rpc_config=data.get("rpc_config") or {},
            search_strategy=params.get("search_strategy") or data.get("search_strategy") or SEARCH_STRATEGY_STANDARD,
            block_range=params.get("block_range") or data.get("block_range") or DEFAULT_BLOCK_RANGE,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_address": self.contract_address,
            "chain": self.chain,
            "contract_name": self.contract_name,
            "rpc_config": self.rpc_config,
            "search_strategy": self.search_strategy,
            "block_range": self.block_range,
        }
