from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

CARDS_TABLE = "pipeline_cards"
COLUMNS_TABLE = "pipeline_columns"
EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


@dataclass(frozen=True)
class ChangeEvent:
    event_type: str
    table: str
    new_row: dict[str, Any] = field(default_factory=dict)
    old_row: Optional[dict[str, Any]] = None

    @property
    def row_id(self) -> Optional[str]:
        if self.event_type == "DELETE":
            return (self.old_row or {}).get("id")
        return self.new_row.get("id") or (self.old_row or {}).get("id")


def parse_change_payload(payload: Mapping[str, Any], *, table: Optional[str] = None) -> ChangeEvent:
    """Normalize a postgres_changes payload.

    Accepts the realtime-py shape (``{"data": {"type", "table", "record",
    "old_record"}}``) and the flat shape (``{"eventType", "table", "new",
    "old"}``). ``table`` fills in when the payload does not carry one.
    """
    data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload

    event_type = str(data.get("type") or data.get("eventType") or data.get("event_type") or "").upper()
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Evento realtime desconhecido: {event_type or '<vazio>'}")

    new_row = data.get("record")
    if new_row is None:
        new_row = data.get("new")
    if new_row is None:
        new_row = data.get("new_row")
    old_row = data.get("old_record")
    if old_row is None:
        old_row = data.get("old")
    if old_row is None:
        old_row = data.get("old_row")

    return ChangeEvent(
        event_type=event_type,
        table=str(data.get("table") or table or ""),
        new_row=dict(new_row or {}),
        # an empty old payload means REPLICA IDENTITY did not ship it
        old_row=dict(old_row) if old_row else None,
    )


def is_column_move(event: ChangeEvent) -> bool:
    """True when a card UPDATE changed ``column_id``.

    Requires the previous payload; without it a move cannot be told apart
    from any other field update.
    """
    if event.event_type != "UPDATE" or event.table != CARDS_TABLE:
        return False
    old_column = (event.old_row or {}).get("column_id")
    if not old_column:
        return False
    return old_column != event.new_row.get("column_id")
