"""
Data models for chain ingestion output.

ContractEvent mirrors an eth_getLogs entry; InteractionBatch is what the
fetcher returns for one block window; NormalizedTransaction is the unified
transaction shape every analyzer consumes.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


def hex_to_int(value: Any, default: int | None = None) -> int | None:
    """Parse 0x-prefixed hex, decimal strings and ints; default on None or garbage."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        text = str(value).strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ContractEvent:
    """A single contract log; the dedup key is (transaction_hash, log_index)."""

    transaction_hash: str
    log_index: int | None
    address: str
    topics: tuple[str, ...] = ()
    data: str = "0x"
    block_number: int | None = None
    block_hash: str | None = None
    transaction_index: int | None = None
    removed: bool = False

    @property
    def key(self) -> str:
        """transaction_hash-log_index with a missing index counted as 0."""
        return f"{self.transaction_hash}-{self.log_index or 0}"

    @classmethod
    def from_rpc_log(cls, log: dict[str, Any]) -> ContractEvent:
        """Build from a single eth_getLogs result item."""
        return cls(
            transaction_hash=log["transactionHash"],
            log_index=hex_to_int(log.get("logIndex")),
            address=(log.get("address") or "").lower(),
            topics=tuple(log.get("topics") or ()),
            data=log.get("data") or "0x",
            block_number=hex_to_int(log.get("blockNumber")),
            block_hash=log.get("blockHash"),
            transaction_index=hex_to_int(log.get("transactionIndex")),
            removed=bool(log.get("removed", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["topics"] = list(self.topics)
        return data


@dataclass
class InteractionBatch:
    """
    Result of fetching one block window for a contract.

    transactions: Raw transaction dicts (RPC field names) for the normalizer.
    events: Contract logs in the window.
    summary: total_transactions, total_events, event_transactions, blocks_scanned.
    """

    transactions: list[dict[str, Any]] = field(default_factory=list)
    events: list[ContractEvent] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    method: str = "event-based"


@dataclass
class NormalizedTransaction:
    """Chain-independent transaction record."""

    hash: str
    block_number: int | None
    block_timestamp: str | None
    """ISO 8601 UTC; None when the source had no usable timestamp."""
    from_address: str | None
    to_address: str | None
    value_wei: int = 0
    value_eth: float = 0.0
    gas_used: int = 0
    gas_price_wei: int = 0
    gas_cost_wei: int = 0
    gas_cost_eth: float = 0.0
    status: bool = False
    chain: str = ""
    nonce: int | None = None
    method_id: str | None = None
    function_name: str = "unknown"

    @property
    def timestamp(self) -> datetime | None:
        if not self.block_timestamp:
            return None
        try:
            return datetime.fromisoformat(self.block_timestamp.replace("Z", "+00:00"))
        except ValueError:
            return None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
