"""
Utils package for the Tezeus CRM backend.
"""

# Database helpers
from .db_helpers import (
    is_transient_db_error,
    is_missing_table_or_schema_error,
    is_supabase_not_configured_error,
    is_unique_violation_error,
    db_call_with_retry,
    db_call_in_thread,
    rows,
    first_row,
    utc_now_iso,
)

# Auth helpers
from .auth_helpers import (
    JWT_SECRET,
    create_token,
    verify_token,
    require_workspace_id,
    security,
)

# Locks
from .locks import KeyedLock

__all__ = [
    # DB helpers
    "is_transient_db_error",
    "is_missing_table_or_schema_error",
    "is_supabase_not_configured_error",
    "is_unique_violation_error",
    "db_call_with_retry",
    "db_call_in_thread",
    "rows",
    "first_row",
    "utc_now_iso",
    # Auth helpers
    "JWT_SECRET",
    "create_token",
    "verify_token",
    "require_workspace_id",
    "security",
    # Locks
    "KeyedLock",
]
