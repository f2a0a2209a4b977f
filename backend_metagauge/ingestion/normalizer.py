"""
Chain normalizer: raw RPC-shaped transactions into NormalizedTransaction.

Accepts hex or decimal numeric fields, seconds or milliseconds timestamps,
and resolves a function name from the 4-byte selector. The chain argument is
mandatory; a missing or unsupported chain fails fast with ConfigurationError.
A single malformed transaction is skipped with a warning.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from backend_metagauge.config.env import SUPPORTED_CHAINS
from backend_metagauge.core.exceptions import ConfigurationError
from backend_metagauge.ingestion.models import NormalizedTransaction, hex_to_int
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

WEI_PER_ETH = Decimal(10) ** 18
# Unix timestamps above this are milliseconds
_MS_THRESHOLD = 10**12

KNOWN_METHODS: dict[str, str] = {
    # ERC-20
    "0xa9059cbb": "transfer",
    "0x095ea7b3": "approve",
    "0x23b872dd": "transferFrom",
    "0x70a08231": "balanceOf",
    "0xdd62ed3e": "allowance",
    "0x18160ddd": "totalSupply",
    # DeFi
    "0xb6b55f25": "deposit",
    "0xe2bbb158": "deposit",
    "0x2e1a7d4d": "withdraw",
    "0x3ccfd60b": "withdraw",
    "0x441a3e70": "withdraw",
    "0xa694fc3a": "stake",
    "0x2e17de78": "unstake",
    "0x40c10f19": "mint",
    "0x6a627842": "mint",
    "0x42966c68": "burn",
    "0x022c0d9f": "swap",
    "0x38ed1739": "swapExactTokensForTokens",
    "0x7ff36ab5": "swapExactETHForTokens",
    "0x18cbafe5": "swapTokensForExactETH",
    "0x791ac947": "swapExactTokensForETH",
    "0x4a25d94a": "swapTokensForExactTokens",
    "0xe8e33700": "addLiquidity",
    "0xf305d719": "addLiquidityETH",
    "0xbaa2abde": "removeLiquidity",
    "0x02751cec": "removeLiquidityETH",
    "0x372500ab": "claimRewards",
    "0x4e71d92d": "claimRewards",
    "0x379607f5": "claimReward",
    "0x12d43a51": "claim",
    "0x1959a002": "claimAll",
    "0xf69e2046": "compound",
    "0x5312ea8e": "reinvest",
    "0x853828b6": "harvest",
    "0x4641257d": "exit",
    "0x6e553f65": "emergencyWithdraw",
}


def wei_to_eth(wei: int) -> float:
    if not wei:
        return 0.0
    return float(Decimal(wei) / WEI_PER_ETH)


def normalize_timestamp(value: Any) -> str | None:
    """ISO 8601 UTC string from unix seconds/milliseconds, ISO strings or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc).isoformat()
    if isinstance(value, str) and not value.strip().lower().startswith("0x") and not value.strip().isdigit():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return normalize_timestamp(parsed)
    seconds = hex_to_int(value)
    if seconds is None or seconds <= 0:
        return None
    if seconds > _MS_THRESHOLD:
        seconds = seconds / 1000
    return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()


def _normalize_hash(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        raise ValueError("transaction hash is missing")
    return text if text.startswith("0x") else f"0x{text}"


def _normalize_address(value: Any) -> str | None:
    if not value:
        return None
    return str(value).lower()


def _normalize_status(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("0x1", "1", "true", "success")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value == 1
    return bool(value)


def extract_method_id(raw: dict[str, Any]) -> str | None:
    data = raw.get("input") or raw.get("data")
    if isinstance(data, str) and data.startswith("0x") and len(data) >= 10:
        return data[:10].lower()
    return None


def resolve_function_name(raw: dict[str, Any], method_id: str | None) -> str:
    """Explicit name on the raw tx, then the selector table, then the selector itself."""
    explicit = raw.get("function_name") or raw.get("functionName")
    if explicit:
        return str(explicit)
    if method_id:
        return KNOWN_METHODS.get(method_id, method_id)
    return "unknown"


def normalize_transaction(raw: dict[str, Any], chain: str) -> NormalizedTransaction:
    """Normalize one raw transaction; raises ValueError on a malformed record."""
    value_wei = hex_to_int(raw.get("value"), 0) or 0
    gas_used = hex_to_int(raw.get("gasUsed", raw.get("gas_used")), 0) or 0
    gas_price = hex_to_int(raw.get("gasPrice", raw.get("gas_price")), 0) or 0
    gas_cost = gas_used * gas_price
    method_id = extract_method_id(raw)
    return NormalizedTransaction(
        hash=_normalize_hash(raw.get("hash")),
        block_number=hex_to_int(raw.get("blockNumber", raw.get("block_number"))),
        block_timestamp=normalize_timestamp(
            raw.get("blockTimestamp") or raw.get("timestamp") or raw.get("block_timestamp")
        ),
        from_address=_normalize_address(raw.get("from") or raw.get("from_address")),
        to_address=_normalize_address(raw.get("to") or raw.get("to_address")),
        value_wei=value_wei,
        value_eth=wei_to_eth(value_wei),
        gas_used=gas_used,
        gas_price_wei=gas_price,
        gas_cost_wei=gas_cost,
        gas_cost_eth=wei_to_eth(gas_cost),
        status=_normalize_status(raw.get("status")),
        chain=chain,
        nonce=hex_to_int(raw.get("nonce")),
        method_id=method_id,
        function_name=resolve_function_name(raw, method_id),
    )


def normalize_transactions(raw_transactions: Iterable[dict[str, Any]], chain: str | None) -> list[NormalizedTransaction]:
    """
    Normalize a batch for one chain.

    Raises ConfigurationError when chain is empty or unsupported. Malformed
    transactions are logged and skipped; the rest of the batch is kept.
    """
    if not chain:
        raise ConfigurationError("Chain parameter is required and cannot be empty")
    chain_key = chain.strip().lower()
    if chain_key not in SUPPORTED_CHAINS:
        raise ConfigurationError(f"Unsupported chain: {chain}")
    normalized: list[NormalizedTransaction] = []
    for raw in raw_transactions:
        try:
            normalized.append(normalize_transaction(raw, chain_key))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(
                "normalizer_skip_transaction",
                chain=chain_key,
                tx_hash=str(raw.get("hash")) if isinstance(raw, dict) else None,
                error=str(e),
            )
    return normalized
