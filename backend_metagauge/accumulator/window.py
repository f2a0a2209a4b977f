"""
Block window planning for each sync cycle.
"""

from __future__ import annotations

from backend_metagauge.accumulator.models import Window
from backend_metagauge.config.settings import DEFAULT_BLOCK_RANGE, SEARCH_STRATEGY_COMPREHENSIVE

COMPREHENSIVE_INITIAL_RANGE = 100_000
STANDARD_INITIAL_RANGE = 50_000
FALLBACK_GROWTH_PER_CYCLE = 100


def initial_range(strategy: str) -> int:
    if (strategy or "").lower() == SEARCH_STRATEGY_COMPREHENSIVE:
        return COMPREHENSIVE_INITIAL_RANGE
    return STANDARD_INITIAL_RANGE


def plan_window(
    current_head: int,
    last_processed_block: int | None,
    cycle_number: int,
    strategy: str,
    block_range: int = DEFAULT_BLOCK_RANGE,
) -> Window:
    """
    Choose [from_block, to_block] for a cycle.

    First cycle looks back initial_range(strategy) blocks from the head. Later
    cycles start right after the last processed block. When that leaves no
    blocks (head has not moved), fall back to a backwards window of
    block_range + cycle_number * 100 blocks so the cycle still scans
    something; dedup absorbs the overlap.
    """
    head = max(0, int(current_head))
    if last_processed_block is None:
        from_block = head - initial_range(strategy)
    else:
        from_block = last_processed_block + 1
    from_block = max(0, from_block)
    if from_block < head:
        return Window(from_block=from_block, to_block=head)

    width = (block_range or DEFAULT_BLOCK_RANGE) + cycle_number * FALLBACK_GROWTH_PER_CYCLE
    return Window(from_block=max(0, head - width), to_block=head, extended=True)
