from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..observability import LogContext, Observability
from .events import CARDS_TABLE, COLUMNS_TABLE, ChangeEvent, is_column_move

RowHandler = Callable[[dict[str, Any]], None]
IdHandler = Callable[[str], None]
MoveHandler = Callable[[dict[str, Any], Optional[str], Optional[str]], None]


@dataclass
class PipelineHandlers:
    on_card_insert: Optional[RowHandler] = None
    on_card_update: Optional[RowHandler] = None
    on_card_delete: Optional[IdHandler] = None
    on_column_insert: Optional[RowHandler] = None
    on_column_update: Optional[RowHandler] = None
    on_column_delete: Optional[IdHandler] = None
    # UI feedback only; the card update handler still runs
    on_card_moved: Optional[MoveHandler] = None


class PipelineEventDispatcher:
    def __init__(self, pipeline_id: str, handlers: PipelineHandlers, *, obs: Optional[Observability] = None):
        self.pipeline_id = pipeline_id
        self._handlers = handlers
        self._obs = obs or Observability(logging.getLogger("tezeus_crm.realtime"))
        self._ctx = LogContext(pipeline_id=pipeline_id)

    def dispatch(self, event: ChangeEvent) -> bool:
        """Route one change event. Returns True when it was a column move."""
        if event.table == CARDS_TABLE:
            return self._dispatch_card(event)
        if event.table == COLUMNS_TABLE:
            self._dispatch_column(event)
            return False
        self._obs.warning("realtime.unknown_table", ctx=self._ctx, table=event.table)
        return False

    def _dispatch_card(self, event: ChangeEvent) -> bool:
        h = self._handlers
        if event.event_type == "INSERT":
            self._obs.debug("realtime.card_inserted", ctx=self._ctx, card_id=event.row_id)
            if h.on_card_insert:
                h.on_card_insert(event.new_row)
            return False

        if event.event_type == "UPDATE":
            moved = is_column_move(event)
            self._obs.debug(
                "realtime.card_updated",
                ctx=self._ctx,
                card_id=event.row_id,
                column_changed=moved,
                has_old=event.old_row is not None,
            )
            if moved:
                old_column = (event.old_row or {}).get("column_id")
                new_column = event.new_row.get("column_id")
                self._obs.info(
                    "realtime.card_moved",
                    ctx=self._ctx,
                    card_id=event.row_id,
                    from_column=old_column,
                    to_column=new_column,
                )
                if h.on_card_moved:
                    h.on_card_moved(event.new_row, old_column, new_column)
            if h.on_card_update:
                h.on_card_update(event.new_row)
            return moved

        row_id = event.row_id
        self._obs.debug("realtime.card_deleted", ctx=self._ctx, card_id=row_id)
        if h.on_card_delete and row_id:
            h.on_card_delete(row_id)
        return False

    def _dispatch_column(self, event: ChangeEvent) -> None:
        h = self._handlers
        if event.event_type == "INSERT":
            if h.on_column_insert:
                h.on_column_insert(event.new_row)
        elif event.event_type == "UPDATE":
            if h.on_column_update:
                h.on_column_update(event.new_row)
        else:
            row_id = event.row_id
            if h.on_column_delete and row_id:
                h.on_column_delete(row_id)
