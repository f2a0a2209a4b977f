"""
Builders for raw transactions, events and batches, plus a scripted interaction source.
"""

from __future__ import annotations

from typing import Any, Callable

from backend_metagauge.ingestion.models import ContractEvent, InteractionBatch

CONTRACT = "0x1111111111111111111111111111111111111111"
ALICE = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
BOB = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
BASE_TS = 1_700_000_000
ONE_ETH = 10**18


def raw_tx(
    tx_hash: str,
    sender: str = ALICE,
    *,
    ts: int = BASE_TS,
    value_wei: int = 0,
    status: bool = True,
    block: int = 100,
    selector: str = "0xa9059cbb",
) -> dict[str, Any]:
    """Raw transaction in the shape the fetcher returns."""
    return {
        "hash": tx_hash,
        "from": sender,
        "to": CONTRACT,
        "value": hex(value_wei),
        "gasPrice": hex(10**9),
        "gasUsed": hex(21_000),
        "input": selector + "00" * 32,
        "blockNumber": block,
        "blockTimestamp": ts,
        "status": status,
    }


def event(tx_hash: str, log_index: int | None = 0) -> ContractEvent:
    return ContractEvent(transaction_hash=tx_hash, log_index=log_index, address=CONTRACT)


def batch(transactions: list[dict[str, Any]], events: list[ContractEvent] | None = None) -> InteractionBatch:
    events = events if events is not None else [event(tx["hash"]) for tx in transactions]
    return InteractionBatch(
        transactions=transactions,
        events=events,
        summary={"total_transactions": len(transactions), "total_events": len(events)},
    )


class ScriptedSource:
    """
    Interaction source driven by a script.

    heads: Chain head per call; the last value repeats.
    batches: Callable(call_number) -> InteractionBatch, or raise to fail the cycle.
    """

    def __init__(
        self,
        batches: Callable[[int], InteractionBatch],
        heads: list[int] | None = None,
    ) -> None:
        self._batches = batches
        self._heads = list(heads or [1_000])
        self.head_calls = 0
        self.fetch_calls: list[tuple[str, int, int, str]] = []

    def get_current_block_number(self, chain: str) -> int:
        index = min(self.head_calls, len(self._heads) - 1)
        self.head_calls += 1
        return self._heads[index]

    def fetch_contract_interactions(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
    ) -> InteractionBatch:
        self.fetch_calls.append((contract_address, from_block, to_block, chain))
        return self._batches(len(self.fetch_calls))
