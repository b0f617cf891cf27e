"""
Database helper utilities.

These functions handle database operations with retry logic and error
detection for the PostgREST errors the Supabase client surfaces.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)


# ==================== ERROR DETECTION ====================
def is_transient_db_error(exc: Exception) -> bool:
    """Check if an exception is a transient database error that may be retried."""
    s = str(exc or "").lower()
    transient_markers = [
        "timeout",
        "timed out",
        "temporarily unavailable",
        "connection refused",
        "connection reset",
        "connection error",
        "network",
        "dns",
        "name or service not known",
        "failed to establish a new connection",
        "server disconnected",
        "502",
        "503",
        "504",
        "bad gateway",
        "gateway timeout",
        "service unavailable",
    ]
    return any(m in s for m in transient_markers)


def is_missing_table_or_schema_error(exc: Exception, table_name: str) -> bool:
    """Check if an exception indicates a missing table or schema."""
    s = str(exc or "").lower()
    t = (table_name or "").lower()
    if not t:
        return False
    markers = [
        "does not exist",
        "undefined table",
        "could not find the table",
        "relation",
        "pgrst",
        "not found",
    ]
    return t in s and any(m in s for m in markers)


def is_supabase_not_configured_error(exc: Exception) -> bool:
    """Check if an exception indicates Supabase is not configured."""
    s = str(exc or "").lower()
    return "supabase não configurado" in s or "supabase nao configurado" in s


def is_unique_violation_error(exc: Exception) -> bool:
    """Check if an exception is a Postgres unique violation (SQLSTATE 23505)."""
    code = getattr(exc, "code", None)
    if str(code or "") == "23505":
        return True
    s = str(exc or "").lower()
    return "23505" in s or "duplicate key value" in s


# ==================== RETRY LOGIC ====================
def db_call_with_retry(op_name: str, fn: Callable[[], Any], max_attempts: int = 4) -> Any:
    """
    Execute a database call with retry logic for transient errors.

    Args:
        op_name: Name of the operation (for logging)
        fn: Function to execute
        max_attempts: Maximum number of retry attempts

    Returns:
        Result of the function call

    Raises:
        Exception: If all attempts fail or a non-transient error occurs
    """
    try:
        asyncio.get_running_loop()
        in_event_loop = True
    except RuntimeError:
        in_event_loop = False

    # time.sleep would block the loop
    if in_event_loop:
        max_attempts = 1

    last_exc: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as e:
            last_exc = e
            if attempt >= max_attempts or not is_transient_db_error(e):
                raise
            sleep_s = min(2.0, 0.15 * (2 ** (attempt - 1)))
            logger.warning(f"{op_name} falhou (tentativa {attempt}/{max_attempts}): {e}")
            time.sleep(sleep_s)
    raise last_exc or Exception(f"{op_name} falhou")


# ==================== RESULT HELPERS ====================
def rows(result: Any) -> List[dict]:
    """Return the row list of a PostgREST response, tolerating ``None``."""
    data = getattr(result, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def first_row(result: Any) -> Optional[dict]:
    """Return the first row of a PostgREST response or ``None``."""
    data = rows(result)
    return data[0] if data else None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def db_call_in_thread(op_name: str, fn: Callable[[], Any], max_attempts: int = 4) -> Any:
    """Run ``db_call_with_retry`` on a worker thread; the sync client would block the loop."""
    return await asyncio.to_thread(db_call_with_retry, op_name, fn, max_attempts)
