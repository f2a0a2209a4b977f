"""
Record store — analysis (sync) records and user records.

MVP uses SQLite via Database and get_database(); the backend is swappable.
"""

from backend_metagauge.database.database import (
    Database,
    DatabaseBackend,
    SQLiteBackend,
    get_database,
)
from backend_metagauge.database.models import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    AnalysisRecord,
    UserRecord,
)

__all__ = [
    "Database",
    "DatabaseBackend",
    "SQLiteBackend",
    "get_database",
    "AnalysisRecord",
    "UserRecord",
    "STATUS_COMPLETED",
    "STATUS_FAILED",
    "STATUS_PENDING",
    "STATUS_RUNNING",
]
