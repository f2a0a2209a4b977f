"""
Chain ingestion — JSON-RPC access, window fetching and transaction normalization.
"""

from backend_metagauge.ingestion.fetcher import ContractInteractionFetcher
from backend_metagauge.ingestion.models import ContractEvent, InteractionBatch, NormalizedTransaction
from backend_metagauge.ingestion.normalizer import normalize_transactions
from backend_metagauge.ingestion.rpc_client import EvmRpcClient

__all__ = [
    "ContractEvent",
    "ContractInteractionFetcher",
    "EvmRpcClient",
    "InteractionBatch",
    "NormalizedTransaction",
    "normalize_transactions",
]
