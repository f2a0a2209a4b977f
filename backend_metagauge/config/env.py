"""
Environment variable loading for MetaGauge.

- METAGAUGE_DB_PATH: SQLite file holding analysis and user records (default: metagauge.db)
- ETHEREUM_RPC_URL, ETHEREUM_RPC_URL_FALLBACK: Ethereum providers, in priority order
- LISK_RPC_URL1, LISK_RPC_URL2, LISK_RPC_URL3: Lisk providers, in priority order
- RPC_TIMEOUT_SEC: HTTP timeout per JSON-RPC request
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_metagauge/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_DB_FILENAME = "metagauge.db"
DEFAULT_RPC_TIMEOUT_SEC = 30.0

SUPPORTED_CHAINS = ("ethereum", "lisk")

DEFAULT_RPC_URLS: dict[str, list[str]] = {
    "ethereum": ["https://ethereum-rpc.publicnode.com"],
    "lisk": ["https://rpc.api.lisk.com", "https://lisk.drpc.org"],
}

_RPC_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "ethereum": ("ETHEREUM_RPC_URL", "ETHEREUM_RPC_URL_FALLBACK"),
    "lisk": ("LISK_RPC_URL1", "LISK_RPC_URL2", "LISK_RPC_URL3"),
}


def load_metagauge_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def get_db_path() -> Path:
    """Path of the SQLite record store; relative paths resolve against the project root."""
    load_metagauge_env()
    raw = (os.getenv("METAGAUGE_DB_PATH") or "").strip() or DEFAULT_DB_FILENAME
    path = Path(raw)
    return path if path.is_absolute() else _ROOT / path


def get_rpc_urls(chain: str) -> list[str]:
    """
    Provider URLs for one chain, highest priority first.

    Env-configured URLs come first, then the public defaults; duplicates are
    dropped while keeping order.
    """
    load_metagauge_env()
    chain = (chain or "").strip().lower()
    urls: list[str] = []
    for key in _RPC_ENV_KEYS.get(chain, ()):
        value = (os.getenv(key) or "").strip()
        if value:
            urls.append(value)
    urls.extend(DEFAULT_RPC_URLS.get(chain, []))
    seen: set[str] = set()
    ordered = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def get_rpc_config() -> dict[str, list[str]]:
    """Provider URLs for every known chain: {chain: [url, ...]}."""
    return {chain: get_rpc_urls(chain) for chain in _RPC_ENV_KEYS}


def get_rpc_timeout_sec() -> float:
    """RPC_TIMEOUT_SEC as float; falls back to the default on a bad value."""
    load_metagauge_env()
    raw = (os.getenv("RPC_TIMEOUT_SEC") or "").strip()
    if not raw:
        return DEFAULT_RPC_TIMEOUT_SEC
    try:
        return max(1.0, float(raw))
    except ValueError:
        return DEFAULT_RPC_TIMEOUT_SEC
