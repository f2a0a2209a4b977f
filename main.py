"""
Main entrypoint: run one continuous contract sync for an existing analysis.

Env: METAGAUGE_DB_PATH, ETHEREUM_RPC_URL, LISK_RPC_URL1..3, SYNC_* overrides,
LOG_LEVEL, LOG_FORMAT (optionally from a .env file at the project root).

Usage: python main.py --analysis-id <id> [--user-id <id>] [--db-path metagauge.db]
"""

import sys

# Configure structured JSON logging before other imports that may log
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger("main")


def main() -> int:
    from backend_metagauge.agent_worker.runtime import main as run_sync

    logger.info("main_starting")
    return run_sync()


if __name__ == "__main__":
    sys.exit(main())
