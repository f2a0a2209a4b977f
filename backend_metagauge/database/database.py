"""
Record store for analysis runs and users.

MVP uses SQLite; the backend can be swapped (e.g. PostgreSQL) via a different
DatabaseBackend implementation. Updates are shallow merges of top-level
fields: a field passed to update_* replaces the stored value, fields not
passed are kept. Logs have a dedicated atomic append so concurrent writers
never drop each other's lines.
"""

from __future__ import annotations

import json
import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from backend_metagauge.database.models import AnalysisRecord, UserRecord
from backend_metagauge.metagauge_logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite). JSON columns hold dicts/lists serialized with json.dumps.
# -----------------------------------------------------------------------------

SCHEMA_ANALYSES = """
CREATE TABLE IF NOT EXISTS analyses (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    status TEXT NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0,
    metadata_json TEXT,
    logs_json TEXT,
    results_json TEXT,
    config_json TEXT,
    error_message TEXT,
    completed_at TEXT,
    created_at INTEGER,
    updated_at INTEGER
);
CREATE INDEX IF NOT EXISTS ix_analyses_user ON analyses(user_id);
CREATE INDEX IF NOT EXISTS ix_analyses_status ON analyses(status);
"""

SCHEMA_USERS = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT,
    onboarding_json TEXT,
    created_at INTEGER,
    updated_at INTEGER
);
"""

# Top-level AnalysisRecord field -> (column, is_json)
_ANALYSIS_COLUMNS: dict[str, tuple[str, bool]] = {
    "user_id": ("user_id", False),
    "status": ("status", False),
    "progress": ("progress", False),
    "metadata": ("metadata_json", True),
    "logs": ("logs_json", True),
    "results": ("results_json", True),
    "config": ("config_json", True),
    "error_message": ("error_message", False),
    "completed_at": ("completed_at", False),
}

_USER_COLUMNS: dict[str, tuple[str, bool]] = {
    "email": ("email", False),
    "onboarding": ("onboarding_json", True),
}


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _loads(raw: str | None, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def _row_to_analysis(row: sqlite3.Row) -> AnalysisRecord:
    return AnalysisRecord(
        id=row["id"],
        user_id=row["user_id"],
        status=row["status"],
        progress=row["progress"],
        metadata=_loads(row["metadata_json"], {}),
        logs=_loads(row["logs_json"], []),
        results=_loads(row["results_json"], None),
        config=_loads(row["config_json"], {}),
        error_message=row["error_message"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        id=row["id"],
        email=row["email"],
        onboarding=_loads(row["onboarding_json"], {}),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class DatabaseBackend(ABC):
    """Abstract interface for persistence; implement for SQLite or PostgreSQL."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def create_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        """Insert a new analysis record. Raises ValueError if the id exists."""
        ...

    @abstractmethod
    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None:
        """Return the analysis record, or None."""
        ...

    @abstractmethod
    def update_analysis(
        self,
        analysis_id: str,
        fields: dict[str, Any],
        *,
        metadata_patch: dict[str, Any] | None = None,
    ) -> AnalysisRecord | None:
        """
        Shallow-merge top-level fields; return the updated record or None if missing.

        metadata_patch is merged key by key into the stored metadata in the same
        transaction, so concurrent writers of other metadata keys are not lost.
        """
        ...

    @abstractmethod
    def append_analysis_logs(self, analysis_id: str, lines: list[str]) -> bool:
        """Append log lines in one transaction. Returns False if the record is missing."""
        ...

    @abstractmethod
    def delete_analysis(self, analysis_id: str) -> bool:
        """Delete an analysis record. Returns True if a row was removed."""
        ...

    @abstractmethod
    def create_user(self, record: UserRecord) -> UserRecord:
        """Insert a new user record. Raises ValueError if the id exists."""
        ...

    @abstractmethod
    def get_user(self, user_id: str) -> UserRecord | None:
        """Return the user record, or None."""
        ...

    @abstractmethod
    def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        """Shallow-merge top-level fields; return the updated record or None if missing."""
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _cursor(self, *, immediate: bool = False) -> Iterator[sqlite3.Cursor]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            if immediate:
                # Take the write lock before reading so read-modify-write is atomic
                cur.execute("BEGIN IMMEDIATE")
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for stmt in (SCHEMA_ANALYSES, SCHEMA_USERS):
                cur.executescript(stmt)

    # --- Analyses ---

    def create_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        now = int(time.time())
        record.created_at = record.created_at or now
        record.updated_at = now
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO analyses (id, user_id, status, progress, metadata_json, logs_json,
                        results_json, config_json, error_message, completed_at, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.user_id,
                        record.status,
                        record.progress,
                        _dumps(record.metadata),
                        _dumps(record.logs),
                        _dumps(record.results),
                        _dumps(record.config),
                        record.error_message,
                        record.completed_at,
                        record.created_at,
                        record.updated_at,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"analysis already exists: {record.id}") from e
        return record

    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM analyses WHERE id = ?", (analysis_id,))
            row = cur.fetchone()
        return _row_to_analysis(row) if row is not None else None

    def update_analysis(
        self,
        analysis_id: str,
        fields: dict[str, Any],
        *,
        metadata_patch: dict[str, Any] | None = None,
    ) -> AnalysisRecord | None:
        with self._cursor(immediate=True) as cur:
            fields = dict(fields)
            if metadata_patch:
                cur.execute("SELECT metadata_json FROM analyses WHERE id = ?", (analysis_id,))
                row = cur.fetchone()
                if row is None:
                    return None
                metadata = dict(fields.get("metadata") or _loads(row["metadata_json"], {}))
                metadata.update(metadata_patch)
                fields["metadata"] = metadata
            assignments, params = self._assignments(fields, _ANALYSIS_COLUMNS)
            cur.execute(
                f"UPDATE analyses SET {assignments} WHERE id = ?",
                (*params, analysis_id),
            )
            if cur.rowcount == 0:
                return None
            cur.execute("SELECT * FROM analyses WHERE id = ?", (analysis_id,))
            row = cur.fetchone()
        return _row_to_analysis(row)

    def append_analysis_logs(self, analysis_id: str, lines: list[str]) -> bool:
        with self._cursor(immediate=True) as cur:
            cur.execute("SELECT logs_json FROM analyses WHERE id = ?", (analysis_id,))
            row = cur.fetchone()
            if row is None:
                return False
            logs = _loads(row["logs_json"], [])
            logs.extend(lines)
            cur.execute(
                "UPDATE analyses SET logs_json = ?, updated_at = ? WHERE id = ?",
                (_dumps(logs), int(time.time()), analysis_id),
            )
        return True

    def delete_analysis(self, analysis_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM analyses WHERE id = ?", (analysis_id,))
            return cur.rowcount > 0

    # --- Users ---

    def create_user(self, record: UserRecord) -> UserRecord:
        now = int(time.time())
        record.created_at = record.created_at or now
        record.updated_at = now
        try:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO users (id, email, onboarding_json, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (record.id, record.email, _dumps(record.onboarding), record.created_at, record.updated_at),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"user already exists: {record.id}") from e
        return record

    def get_user(self, user_id: str) -> UserRecord | None:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        assignments, params = self._assignments(fields, _USER_COLUMNS)
        with self._cursor(immediate=True) as cur:
            cur.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*params, user_id))
            if cur.rowcount == 0:
                return None
            cur.execute("SELECT * FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()
        return _row_to_user(row)

    @staticmethod
    def _assignments(
        fields: dict[str, Any],
        columns: dict[str, tuple[str, bool]],
    ) -> tuple[str, list[Any]]:
        unknown = set(fields) - set(columns)
        if unknown:
            raise ValueError(f"unknown fields: {sorted(unknown)}")
        parts: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            column, is_json = columns[name]
            parts.append(f"{column} = ?")
            params.append(_dumps(value) if is_json else value)
        parts.append("updated_at = ?")
        params.append(int(time.time()))
        return ", ".join(parts), params


# -----------------------------------------------------------------------------
# Database facade
# -----------------------------------------------------------------------------


class Database:
    """
    Record store facade: analysis records and user records.

    Uses a Backend (SQLite for MVP); replace with a PostgreSQL backend when upgrading.
    """

    def __init__(self, backend: DatabaseBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        self._backend.ensure_schema()

    # --- Analyses ---

    def create_analysis(self, record: AnalysisRecord) -> AnalysisRecord:
        return self._backend.create_analysis(record)

    def get_analysis(self, analysis_id: str) -> AnalysisRecord | None:
        return self._backend.get_analysis(analysis_id)

    def update_analysis(
        self,
        analysis_id: str,
        fields: dict[str, Any],
        *,
        metadata_patch: dict[str, Any] | None = None,
    ) -> AnalysisRecord | None:
        return self._backend.update_analysis(analysis_id, fields, metadata_patch=metadata_patch)

    def append_analysis_logs(self, analysis_id: str, lines: list[str]) -> bool:
        if not lines:
            return self._backend.get_analysis(analysis_id) is not None
        return self._backend.append_analysis_logs(analysis_id, list(lines))

    def delete_analysis(self, analysis_id: str) -> bool:
        return self._backend.delete_analysis(analysis_id)

    # --- Users ---

    def create_user(self, record: UserRecord) -> UserRecord:
        return self._backend.create_user(record)

    def get_user(self, user_id: str) -> UserRecord | None:
        return self._backend.get_user(user_id)

    def update_user(self, user_id: str, fields: dict[str, Any]) -> UserRecord | None:
        return self._backend.update_user(user_id, fields)


def get_database(path: str | Path | None = None) -> Database:
    """
    Return a Database using the SQLite backend, with schema ensured.

    path: SQLite file; None reads METAGAUGE_DB_PATH from the environment.
    """
    if path is None:
        from backend_metagauge.config.env import get_db_path

        path = get_db_path()
    backend = SQLiteBackend(path)
    db = Database(backend)
    db.ensure_schema()
    logger.debug("database_ready", path=str(path))
    return db
