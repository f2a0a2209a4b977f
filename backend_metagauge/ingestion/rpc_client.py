"""
EVM JSON-RPC client over httpx.

One client per provider URL. Transport failures, HTTP errors and JSON-RPC
error objects all surface as RpcProviderError carrying the provider URL, so
the fetcher can fail over to the next provider.
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx

from backend_metagauge.core.exceptions import RpcProviderError
from backend_metagauge.ingestion.models import hex_to_int

DEFAULT_TIMEOUT_SEC = 30.0

_request_ids = itertools.count(1)


def _build_rpc_body(method: str, params: list[Any]) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": next(_request_ids),
        "method": method,
        "params": params,
    }


class EvmRpcClient:
    """Synchronous JSON-RPC client for Ethereum-compatible chains."""

    def __init__(
        self,
        url: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        client: httpx.Client | None = None,
    ) -> None:
        """
        Args:
            url: Provider HTTP endpoint.
            timeout_sec: HTTP timeout per request.
            client: Optional pre-built httpx.Client (tests pass one with a MockTransport).
        """
        if not url or not url.strip():
            raise ValueError("url must be non-empty")
        self.url = url.strip()
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_sec))
        self._owns_client = client is None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> EvmRpcClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def call(self, method: str, params: list[Any] | None = None) -> Any:
        """Perform one JSON-RPC call; raise RpcProviderError on transport or RPC error."""
        body = _build_rpc_body(method, params or [])
        try:
            resp = self._client.post(self.url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise RpcProviderError(f"{method} failed: {e}", url=self.url) from e
        except ValueError as e:
            raise RpcProviderError(f"{method} returned invalid JSON", url=self.url) from e
        if not isinstance(data, dict):
            raise RpcProviderError(f"{method} returned a non-object response", url=self.url)
        if "error" in data and data["error"]:
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            code = err.get("code") if isinstance(err, dict) else None
            raise RpcProviderError(f"RPC error in {method}: {message} (code={code})", url=self.url, code=code)
        return data.get("result")

    def block_number(self) -> int:
        result = hex_to_int(self.call("eth_blockNumber"))
        if result is None:
            raise RpcProviderError("eth_blockNumber returned no result", url=self.url)
        return result

    def get_logs(self, address: str, from_block: int, to_block: int) -> list[dict[str, Any]]:
        result = self.call(
            "eth_getLogs",
            [{"fromBlock": hex(from_block), "toBlock": hex(to_block), "address": address}],
        )
        return result if isinstance(result, list) else []

    def get_transaction(self, tx_hash: str) -> dict[str, Any] | None:
        return self.call("eth_getTransactionByHash", [tx_hash])

    def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return self.call("eth_getTransactionReceipt", [tx_hash])

    def get_block(self, block_number: int, full_transactions: bool = False) -> dict[str, Any] | None:
        return self.call("eth_getBlockByNumber", [hex(block_number), full_transactions])
