"""
Application-level exceptions.

Library code raises these; the continuation controller is the only place that
absorbs them, and only at the per-cycle boundary.
"""

from __future__ import annotations


class MetaGaugeError(Exception):
    """Base class for all MetaGauge errors."""


class ConfigurationError(MetaGaugeError):
    """Missing or invalid chain, contract address or RPC configuration."""


class DataSourceError(MetaGaugeError):
    """Transport or protocol failure while reading chain data."""


class RpcProviderError(DataSourceError):
    """A single RPC provider failed (HTTP error, JSON-RPC error, bad payload)."""

    def __init__(self, message: str, *, url: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.code = code


class AllProvidersFailedError(DataSourceError):
    """Every configured provider for a chain failed the same operation."""

    def __init__(self, chain: str, operation: str, last_error: Exception | None = None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"All {chain} providers failed for {operation}{detail}")
        self.chain = chain
        self.operation = operation
        self.last_error = last_error


class RecordNotFoundError(MetaGaugeError):
    """The analysis or user record a write targets does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} record not found: {record_id}")
        self.kind = kind
        self.record_id = record_id
