"""
Contract interaction fetcher: event-based window fetch with provider failover.

Responsibilities:
- Resolve the current chain head (get_current_block_number).
- Fetch a contract's logs for a block window, then the transaction, receipt
  and block timestamp behind every distinct transaction hash.
- When a provider cannot serve eth_getLogs, scan the first blocks of the
  window for transactions sent to or from the contract instead.
- On chains in direct_scan_chains (Lisk), also scan the window for direct
  transactions that emitted no event.
- Retry each provider with exponential backoff, then fail over to the next
  provider of the same chain; raise AllProvidersFailedError when all fail.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from backend_metagauge.config.env import get_rpc_timeout_sec
from backend_metagauge.core.exceptions import (
    AllProvidersFailedError,
    ConfigurationError,
    DataSourceError,
)
from backend_metagauge.ingestion.models import ContractEvent, InteractionBatch, hex_to_int
from backend_metagauge.ingestion.rpc_client import EvmRpcClient
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_MIN_RETRY_DELAY_SEC = 1.0
DEFAULT_MAX_RETRY_DELAY_SEC = 30.0
DEFAULT_BATCH_SIZE = 50
DEFAULT_CONCURRENCY = 8
# eth_getLogs fallback scans at most this many blocks from the window start
FALLBACK_SCAN_BLOCKS = 100
SCAN_BATCH_BLOCKS = 100
DEFAULT_DIRECT_SCAN_CHAINS = ("lisk",)
DEFAULT_MAX_DIRECT_SCAN_BLOCKS = 2000


class ContractInteractionFetcher:
    """
    Fetches contract interactions by events, with block scans as a supplement.

    rpc_config maps chain name to provider URLs in priority order. Provider
    clients are built lazily and reused across calls.
    """

    def __init__(
        self,
        rpc_config: dict[str, list[str]],
        *,
        timeout_sec: float | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        min_retry_delay_sec: float = DEFAULT_MIN_RETRY_DELAY_SEC,
        max_retry_delay_sec: float = DEFAULT_MAX_RETRY_DELAY_SEC,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        direct_scan_chains: tuple[str, ...] = DEFAULT_DIRECT_SCAN_CHAINS,
        max_direct_scan_blocks: int = DEFAULT_MAX_DIRECT_SCAN_BLOCKS,
        client_factory: Callable[[str], EvmRpcClient] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._rpc_config = {
            (chain or "").lower(): [u for u in (urls or []) if u]
            for chain, urls in (rpc_config or {}).items()
        }
        self._timeout_sec = timeout_sec if timeout_sec is not None else get_rpc_timeout_sec()
        self._max_retries = max(1, int(max_retries))
        self._min_retry_delay = min_retry_delay_sec
        self._max_retry_delay = max_retry_delay_sec
        self._batch_size = max(1, int(batch_size))
        self._concurrency = max(1, int(concurrency))
        self._direct_scan_chains = tuple(c.lower() for c in direct_scan_chains)
        self._max_direct_scan_blocks = max(1, int(max_direct_scan_blocks))
        self._client_factory = client_factory or (
            lambda url: EvmRpcClient(url, timeout_sec=self._timeout_sec)
        )
        self._sleep = sleep
        self._clients: dict[str, list[EvmRpcClient]] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        with self._lock:
            for clients in self._clients.values():
                for client in clients:
                    client.close()
            self._clients.clear()

    def _providers(self, chain: str) -> list[EvmRpcClient]:
        with self._lock:
            if chain not in self._clients:
                urls = self._rpc_config.get(chain) or []
                if not urls:
                    raise ConfigurationError(f"No providers configured for chain: {chain}")
                self._clients[chain] = [self._client_factory(url) for url in urls]
            return self._clients[chain]

    def _with_retry(self, client: EvmRpcClient, operation: str, fn: Callable[[EvmRpcClient], T]) -> T:
        delay = self._min_retry_delay
        for attempt in range(self._max_retries):
            try:
                return fn(client)
            except DataSourceError as e:
                if attempt + 1 >= self._max_retries:
                    raise
                logger.warning(
                    "rpc_retry",
                    operation=operation,
                    url=client.url,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    error=str(e),
                )
                self._sleep(delay)
                delay = min(delay * 2, self._max_retry_delay)
        raise AssertionError("unreachable")

    def _with_failover(self, chain: str, operation: str, fn: Callable[[EvmRpcClient], T]) -> T:
        last_error: Exception | None = None
        for client in self._providers(chain):
            try:
                return self._with_retry(client, operation, fn)
            except DataSourceError as e:
                last_error = e
                logger.warning(
                    "rpc_provider_failed",
                    operation=operation,
                    chain=chain,
                    url=client.url,
                    error=str(e),
                )
        raise AllProvidersFailedError(chain, operation, last_error)

    def get_current_block_number(self, chain: str) -> int:
        if not chain:
            raise ConfigurationError("Chain is required")
        return self._with_failover(chain.lower(), "get_current_block_number", lambda c: c.block_number())

    def fetch_contract_interactions(
        self,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
    ) -> InteractionBatch:
        """Fetch events and their transactions for [from_block, to_block] inclusive."""
        if not contract_address or not chain:
            raise ConfigurationError("Contract address and chain are required")
        chain = chain.lower()
        return self._with_failover(
            chain,
            "fetch_contract_interactions",
            lambda c: self._fetch_by_events(c, contract_address, from_block, to_block, chain),
        )

    def _fetch_by_events(
        self,
        client: EvmRpcClient,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
    ) -> InteractionBatch:
        try:
            logs = client.get_logs(contract_address, from_block, to_block)
        except DataSourceError as e:
            logger.warning("fetcher_get_logs_failed", chain=chain, url=client.url, error=str(e))
            return self._fallback_block_scan(client, contract_address, from_block, to_block, chain)
        events: list[ContractEvent] = []
        tx_hashes: list[str] = []
        seen: set[str] = set()
        for log in logs:
            try:
                event = ContractEvent.from_rpc_log(log)
            except (KeyError, TypeError) as e:
                logger.debug("fetcher_skip_invalid_log", error=str(e))
                continue
            events.append(event)
            if event.transaction_hash not in seen:
                seen.add(event.transaction_hash)
                tx_hashes.append(event.transaction_hash)

        block_times: dict[int, int | None] = {}
        block_lock = threading.Lock()
        transactions: list[dict[str, Any]] = []
        with ThreadPoolExecutor(max_workers=self._concurrency) as executor:
            for start in range(0, len(tx_hashes), self._batch_size):
                batch = tx_hashes[start:start + self._batch_size]
                results = executor.map(
                    lambda h: self._fetch_transaction(client, h, chain, block_times, block_lock),
                    batch,
                )
                transactions.extend(tx for tx in results if tx is not None)

        direct: list[dict[str, Any]] = []
        if chain in self._direct_scan_chains:
            # only the newest blocks of a wide window are scanned
            scan_from = max(from_block, to_block - self._max_direct_scan_blocks + 1)
            direct, _, _ = self._scan_blocks(client, contract_address, scan_from, to_block, chain, seen)
            transactions.extend(direct)

        logger.info(
            "fetcher_window_done",
            chain=chain,
            contract=contract_address,
            from_block=from_block,
            to_block=to_block,
            events=len(events),
            transactions=len(transactions),
            direct_transactions=len(direct),
        )
        return InteractionBatch(
            transactions=transactions,
            events=events,
            summary={
                "total_transactions": len(transactions),
                "event_transactions": len(tx_hashes),
                "direct_transactions": len(direct),
                "total_events": len(events),
                "blocks_scanned": max(0, to_block - from_block + 1),
            },
            method="event-based",
        )

    def _fallback_block_scan(
        self,
        client: EvmRpcClient,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
    ) -> InteractionBatch:
        """
        Scan the first FALLBACK_SCAN_BLOCKS blocks of the window for direct transactions.

        Used when the provider cannot serve eth_getLogs. Blocks that cannot be
        read are skipped; if none can be read the last error is raised so the
        fetcher moves on to the next provider.
        """
        end_block = min(to_block, from_block + FALLBACK_SCAN_BLOCKS - 1)
        transactions, blocks_read, last_error = self._scan_blocks(
            client, contract_address, from_block, end_block, chain, set()
        )
        if blocks_read == 0 and last_error is not None:
            raise last_error
        logger.info(
            "fetcher_fallback_scan_done",
            chain=chain,
            contract=contract_address,
            from_block=from_block,
            to_block=end_block,
            blocks_read=blocks_read,
            transactions=len(transactions),
        )
        return InteractionBatch(
            transactions=transactions,
            events=[],
            summary={
                "total_transactions": len(transactions),
                "event_transactions": 0,
                "direct_transactions": len(transactions),
                "total_events": 0,
                "blocks_scanned": max(0, end_block - from_block + 1),
            },
            method="fallback-block-scan",
        )

    def _scan_blocks(
        self,
        client: EvmRpcClient,
        contract_address: str,
        from_block: int,
        to_block: int,
        chain: str,
        skip_hashes: set[str],
    ) -> tuple[list[dict[str, Any]], int, DataSourceError | None]:
        """
        Transactions sent to or from the contract in [from_block, to_block].

        Returns (transactions, blocks_read, last_error). Hashes in skip_hashes
        are left out and every returned hash is added to it.
        """
        contract = contract_address.lower()
        numbers = list(range(from_block, to_block + 1))
        found: list[dict[str, Any]] = []
        blocks_read = 0
        last_error: DataSourceError | None = None
        with ThreadPoolExecutor(max_workers=self._concurrency) as executor:
            for start in range(0, len(numbers), SCAN_BATCH_BLOCKS):
                futures = [
                    (n, executor.submit(self._scan_block, client, contract, n, chain))
                    for n in numbers[start:start + SCAN_BATCH_BLOCKS]
                ]
                for block_number, future in futures:
                    try:
                        block_txs = future.result()
                    except DataSourceError as e:
                        logger.warning("fetcher_block_scan_failed", block_number=block_number, error=str(e))
                        last_error = e
                        continue
                    blocks_read += 1
                    for tx in block_txs:
                        if tx["hash"] in skip_hashes:
                            continue
                        skip_hashes.add(tx["hash"])
                        found.append(tx)
        return found, blocks_read, last_error

    def _scan_block(
        self,
        client: EvmRpcClient,
        contract: str,
        block_number: int,
        chain: str,
    ) -> list[dict[str, Any]]:
        block = client.get_block(block_number, full_transactions=True) or {}
        block_ts = hex_to_int(block.get("timestamp"))
        found = []
        for tx in block.get("transactions") or []:
            if not isinstance(tx, dict) or not tx.get("hash"):
                continue
            if (tx.get("to") or "").lower() == contract:
                source = "to_contract"
            elif (tx.get("from") or "").lower() == contract:
                source = "from_contract"
            else:
                continue
            receipt = client.get_receipt(tx["hash"]) or {}
            found.append(_transaction_dict(tx, receipt, block_number, block_ts, chain, source))
        return found

    def _fetch_transaction(
        self,
        client: EvmRpcClient,
        tx_hash: str,
        chain: str,
        block_times: dict[int, int | None],
        block_lock: threading.Lock,
    ) -> dict[str, Any] | None:
        """Transaction + receipt + block timestamp for one hash; None when the tx cannot be read."""
        try:
            tx = client.get_transaction(tx_hash)
            if not tx:
                return None
            receipt = client.get_receipt(tx_hash) or {}
            block_number = hex_to_int(tx.get("blockNumber"))
            block_ts = None
            if block_number is not None:
                with block_lock:
                    cached = block_number in block_times
                    block_ts = block_times.get(block_number)
                if not cached:
                    block_ts = self._block_timestamp(client, block_number)
                    with block_lock:
                        block_times[block_number] = block_ts
        except DataSourceError as e:
            logger.warning("fetcher_transaction_failed", tx_hash=tx_hash, error=str(e))
            return None
        tx = {**tx, "hash": tx.get("hash") or tx_hash}
        return _transaction_dict(tx, receipt, block_number, block_ts, chain, "event")

    def _block_timestamp(self, client: EvmRpcClient, block_number: int) -> int | None:
        try:
            block = client.get_block(block_number)
        except DataSourceError as e:
            logger.warning("fetcher_block_timestamp_failed", block_number=block_number, error=str(e))
            return None
        return hex_to_int((block or {}).get("timestamp"))


def _transaction_dict(
    tx: dict[str, Any],
    receipt: dict[str, Any],
    block_number: int | None,
    block_ts: int | None,
    chain: str,
    source: str,
) -> dict[str, Any]:
    return {
        "hash": tx.get("hash"),
        "from": tx.get("from"),
        "to": tx.get("to"),
        "value": tx.get("value") or "0x0",
        "gasPrice": tx.get("gasPrice") or "0x0",
        "gasUsed": receipt.get("gasUsed") or "0x0",
        "gasLimit": tx.get("gas") or "0x0",
        "input": tx.get("input") or "0x",
        "blockNumber": block_number,
        "blockTimestamp": block_ts,
        "status": receipt.get("status") in ("0x1", 1, True),
        "chain": chain,
        "nonce": hex_to_int(tx.get("nonce")),
        "source": source,
    }
