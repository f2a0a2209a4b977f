"""
Core cross-cutting pieces shared by ingestion, analytics, accumulator and worker.
"""

from backend_metagauge.core.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    DataSourceError,
    MetaGaugeError,
    RecordNotFoundError,
    RpcProviderError,
)

__all__ = [
    "AllProvidersFailedError",
    "ConfigurationError",
    "DataSourceError",
    "MetaGaugeError",
    "RecordNotFoundError",
    "RpcProviderError",
]
