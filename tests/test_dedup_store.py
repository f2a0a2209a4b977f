"""
Tests for the deduplication store: first-write-wins merges and user derivation.
"""

from __future__ import annotations

from backend_metagauge.accumulator.models import Window
from backend_metagauge.accumulator.store import DeduplicationStore, classify_user_type
from backend_metagauge.ingestion.models import NormalizedTransaction
from factories import ALICE, BOB, event


def _tx(tx_hash: str, sender: str | None = ALICE, *, day: int = 1, value_eth: float = 0.0, gas_eth: float = 0.001):
    return NormalizedTransaction(
        hash=tx_hash,
        block_number=100 + day,
        block_timestamp=f"2024-01-{day:02d}T12:00:00+00:00",
        from_address=sender,
        to_address="0xcontract",
        value_eth=value_eth,
        gas_cost_eth=gas_eth,
        status=True,
        chain="ethereum",
    )


def test_merge_overlapping_batches_counts_new_and_skipped():
    """A–E then A–G adds 2 and skips 5; store holds 7 transactions."""
    store = DeduplicationStore()
    first = store.merge_transactions([_tx(h) for h in "ABCDE"], cycle=1)
    assert first.added == 5 and first.skipped == 0

    second = store.merge_transactions([_tx(h) for h in "ABCDEFG"], cycle=2)
    assert second.added == 2
    assert second.skipped == 5
    assert store.transaction_count == 7
    assert store.has_transaction("G")
    assert not store.has_transaction("H")


def test_merge_is_first_write_wins():
    """Re-fetching a hash keeps the cycle that first introduced it."""
    store = DeduplicationStore()
    store.merge_transactions([_tx("0x1", value_eth=1.0)], cycle=1, added_at="t1")
    store.merge_transactions([_tx("0x1", value_eth=99.0)], cycle=4, added_at="t4")
    [acc] = store.transactions()
    assert acc.sync_cycle == 1
    assert acc.added_at == "t1"
    assert acc.transaction.value_eth == 1.0


def test_merge_same_batch_twice_is_idempotent():
    store = DeduplicationStore()
    txs = [_tx("0x1"), _tx("0x2")]
    store.merge_transactions(txs, cycle=1)
    again = store.merge_transactions(txs, cycle=2)
    assert again.added == 0
    assert again.skipped == 2
    assert store.transaction_count == 2


def test_events_keyed_by_hash_and_log_index():
    """Missing log index counts as 0; distinct indexes of one tx are distinct events."""
    store = DeduplicationStore()
    result = store.merge_events([event("0x1", 0), event("0x1", 1), event("0x1", None)], cycle=1)
    assert result.added == 2
    assert result.skipped == 1
    assert store.has_event("0x1-0")
    assert store.has_event("0x1-1")


def test_derive_users_aggregates_and_scores():
    """Per-sender counts, value, gas, first/last seen, loyalty and risk."""
    store = DeduplicationStore()
    store.merge_transactions(
        [
            _tx("0x1", ALICE, day=1, value_eth=1.0),
            _tx("0x2", ALICE, day=3, value_eth=2.0),
            _tx("0x3", ALICE, day=2, value_eth=0.5),
            _tx("0x4", BOB, day=5),
        ],
        cycle=1,
    )
    store.merge_events([event("0x1", 0), event("0x1", 1)], cycle=2)
    new_users = store.derive_users()
    assert new_users == 2

    alice = store.get_user(ALICE)
    assert alice.transaction_count == 3
    assert alice.total_value == 3.5
    assert round(alice.total_gas_spent, 6) == 0.003
    assert alice.first_seen.startswith("2024-01-01")
    assert alice.last_seen.startswith("2024-01-03")
    assert alice.event_interactions == 2
    # 3 txs over 2 days -> 1.5 per day -> 30
    assert alice.loyalty_score == 30.0
    # 2 events / 3 txs * 10
    assert round(alice.risk_score, 4) == round(2 / 3 * 10, 4)
    assert alice.sync_cycles_active == {1, 2}
    assert alice.last_active_sync == 2

    bob = store.get_user(BOB)
    # single day span counts as one day
    assert bob.loyalty_score == 20.0
    # no value moved -> no risk score
    assert bob.risk_score == 0.0


def test_derive_users_is_idempotent_and_counts_only_new_users():
    store = DeduplicationStore()
    store.merge_transactions([_tx("0x1", ALICE)], cycle=1)
    assert store.derive_users() == 1
    before = store.get_user(ALICE).to_dict()
    assert store.derive_users() == 0
    assert store.get_user(ALICE).to_dict() == before

    store.merge_transactions([_tx("0x2", ALICE), _tx("0x3", BOB)], cycle=2)
    assert store.derive_users() == 1
    assert store.user_count == 2


def test_transactions_without_sender_have_no_user():
    store = DeduplicationStore()
    store.merge_transactions([_tx("0x1", None)], cycle=1)
    assert store.derive_users() == 0
    assert store.user_count == 0


def test_classify_user_type_first_rule_wins():
    assert classify_user_type(101, 60, 30) == "whale"
    assert classify_user_type(100, 51, 30) == "power_user"
    assert classify_user_type(0, 50, 21) == "active"
    assert classify_user_type(0, 11, 20) == "event_active"
    assert classify_user_type(0, 10, 20) == "casual"


def test_views_are_capped_and_block_ranges_unique():
    store = DeduplicationStore()
    store.merge_transactions([_tx(f"0x{i}") for i in range(10)], cycle=1)
    assert len(store.transactions(limit=3)) == 3
    assert len(store.transactions()) == 10
    store.record_block_range(Window(0, 1000))
    store.record_block_range(Window(0, 1000))
    store.record_block_range(Window(1001, 1200))
    assert store.processed_block_ranges == ["0-1000", "1001-1200"]
