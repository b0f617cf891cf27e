"""Best-effort audit writes.

History rows (``conversation_assignments``, ``conversation_agent_history``)
are auxiliary: the primary update has already happened when they are written.
Each row is attempted independently; a failure is logged and kept in
``failures`` but never raised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..errors import HistoryWriteError
from ..observability import LogContext, Observability
from ..utils.db_helpers import db_call_with_retry, is_missing_table_or_schema_error


@dataclass
class PendingWrite:
    table: str
    row: dict[str, Any]


@dataclass
class FlushReport:
    written: List[PendingWrite] = field(default_factory=list)
    failures: List[HistoryWriteError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class AuditOutbox:
    def __init__(self, client: Any, *, obs: Observability, ctx: Optional[LogContext] = None):
        self._client = client
        self._obs = obs
        self._ctx = ctx
        self._pending: List[PendingWrite] = []

    def append(self, table: str, row: dict[str, Any]) -> None:
        self._pending.append(PendingWrite(table=table, row=row))

    @property
    def pending(self) -> List[PendingWrite]:
        return list(self._pending)

    def flush(self) -> FlushReport:
        report = FlushReport()
        pending, self._pending = self._pending, []
        for item in pending:
            try:
                db_call_with_retry(
                    f"{item.table}.insert",
                    lambda item=item: self._client.table(item.table).insert(item.row).execute(),
                )
            except Exception as e:
                failure = HistoryWriteError(item.table, error=str(e), row=item.row)
                report.failures.append(failure)
                event = "audit.table_missing" if is_missing_table_or_schema_error(e, item.table) else "audit.write_failed"
                self._obs.warning(
                    event,
                    ctx=self._ctx,
                    table=item.table,
                    action=item.row.get("action"),
                    error=str(e),
                )
                continue
            report.written.append(item)
        return report
