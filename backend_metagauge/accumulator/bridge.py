"""
Sync record bridge: the accumulator's only path to the record store.

Reads and writes the analysis record that owns a sync run and the owning
user's onboarding projection. A single write() applies its parts in a fixed
order: status/progress/metadata first, then log lines, then results, so a
reader never sees results newer than the status that produced them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from backend_metagauge.core.exceptions import RecordNotFoundError
from backend_metagauge.database import AnalysisRecord, Database, UserRecord
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONTRACT_KEY = "default_contract"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncRecordBridge:
    def __init__(self, db: Database) -> None:
        self._db = db

    def read(self, analysis_id: str) -> AnalysisRecord | None:
        return self._db.get_analysis(analysis_id)

    def write(
        self,
        analysis_id: str,
        *,
        fields: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        logs: list[str] | None = None,
        results: dict[str, Any] | None = None,
    ) -> None:
        """
        Apply a partial update to the analysis record.

        fields: Top-level fields replaced as given (status, progress, completed_at, ...).
        metadata: Keys merged into the stored metadata inside one transaction.
        logs: Lines appended to the log list.
        results: Replaces the stored results snapshot.

        Raises RecordNotFoundError if the record no longer exists.
        """
        if fields or metadata:
            updated = self._db.update_analysis(analysis_id, dict(fields or {}), metadata_patch=metadata)
            if updated is None:
                raise RecordNotFoundError("analysis", analysis_id)
        if logs:
            if not self._db.append_analysis_logs(analysis_id, list(logs)):
                raise RecordNotFoundError("analysis", analysis_id)
        if results is not None:
            if self._db.update_analysis(analysis_id, {"results": results}) is None:
                raise RecordNotFoundError("analysis", analysis_id)

    def append_logs(self, analysis_id: str, *lines: str) -> None:
        self.write(analysis_id, logs=list(lines))

    def read_user(self, user_id: str) -> UserRecord | None:
        return self._db.get_user(user_id)

    def write_user_onboarding(self, user_id: str, partial: dict[str, Any]) -> bool:
        """
        Merge partial into onboarding.default_contract of the user.

        Returns False without writing when the user or its default contract
        projection does not exist.
        """
        user = self.read_user(user_id)
        if user is None:
            logger.debug("bridge_user_missing", user_id=user_id)
            return False
        projection = user.onboarding.get(DEFAULT_CONTRACT_KEY)
        if not isinstance(projection, dict):
            logger.debug("bridge_default_contract_missing", user_id=user_id)
            return False
        onboarding = dict(user.onboarding)
        onboarding[DEFAULT_CONTRACT_KEY] = {**projection, **partial}
        return self._db.update_user(user_id, {"onboarding": onboarding}) is not None
