"""
Database subsystem for kzsync.

Provides the async SQLAlchemy engine and session management, lock-retry
policy, and the insert-if-absent / relocation primitives.
"""

from kzsync.core.database.base import metadata, utc_now
from kzsync.core.database.bootstrap import (
    create_retry_policy,
    initialize_database_subsystem,
    shutdown_database_subsystem,
)
from kzsync.core.database.retry_policy import DatabaseRetryPolicy, is_lock_contention
from kzsync.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)
from kzsync.core.database.upsert import (
    RelocationMismatchError,
    column_mapping,
    count_rows,
    insert_ignore,
    relocate_rows,
    upsert_rows,
)

__all__ = [
    "metadata",
    "utc_now",
    "DatabaseService",
    "DatabaseRetryPolicy",
    "is_lock_contention",
    "initialize_database_subsystem",
    "shutdown_database_subsystem",
    "create_retry_policy",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
    "RelocationMismatchError",
    "column_mapping",
    "count_rows",
    "insert_ignore",
    "relocate_rows",
    "upsert_rows",
]
