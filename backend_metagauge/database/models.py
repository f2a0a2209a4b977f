"""
Domain models for stored records.

Analysis (sync) records and user records. JSON-shaped fields are plain dicts
and lists here; the backend serializes them. No ORM coupling so backends stay
swappable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class AnalysisRecord:
    """One analysis run; the continuous sync reads and writes this record every cycle."""

    id: str
    user_id: str
    status: str = STATUS_PENDING
    progress: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    """Run metadata; the continuous flag and cycle bookkeeping live here."""
    logs: list[str] = field(default_factory=list)
    """Append-only human-readable progress lines."""
    results: dict[str, Any] | None = None
    """Latest accumulated snapshot; fully replaced each cycle."""
    config: dict[str, Any] = field(default_factory=dict)
    """Stored SyncConfig for the run (see SyncConfig.from_dict)."""
    error_message: str | None = None
    completed_at: str | None = None
    """ISO 8601 timestamp set when the run reaches a terminal state."""
    created_at: int | None = None
    updated_at: int | None = None

    @property
    def continuous(self) -> bool | None:
        """metadata['continuous'] as stored: True, False or None when unset."""
        value = self.metadata.get("continuous")
        return value if isinstance(value, bool) else None


@dataclass
class UserRecord:
    """Owning user; onboarding carries the default contract indexing projection."""

    id: str
    email: str | None = None
    onboarding: dict[str, Any] = field(default_factory=dict)
    created_at: int | None = None
    updated_at: int | None = None
