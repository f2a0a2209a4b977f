"""
Backend MetaGauge — continuous contract-sync accumulator.

Runs a self-rescheduling loop per analysis that incrementally fetches on-chain
transactions and events for one contract, deduplicates them against what was
already accumulated, and recomputes rolling analytics (DeFi metrics, UX
bottlenecks, user journeys, user lifecycle) over the whole accumulated set.
"""

__version__ = "0.1.0"
