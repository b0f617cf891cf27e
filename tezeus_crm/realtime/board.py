from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .dispatcher import PipelineHandlers


@dataclass(frozen=True)
class CardMove:
    card_id: str
    from_column_id: Optional[str]
    to_column_id: Optional[str]


class PipelineBoardState:
    """Client-side copy of one pipeline's cards and columns.

    Patched in place from realtime events. Persisted state is never touched
    from here; a fresh subscription starts from a full re-fetch via ``load``.
    """

    def __init__(self, pipeline_id: str):
        self.pipeline_id = pipeline_id
        self._cards: Dict[str, Dict[str, Any]] = {}
        self._columns: Dict[str, Dict[str, Any]] = {}
        self.moves: List[CardMove] = []

    def load(self, cards: List[Dict[str, Any]], columns: List[Dict[str, Any]]) -> None:
        self._cards = {c["id"]: dict(c) for c in cards if c.get("id")}
        self._columns = {c["id"]: dict(c) for c in columns if c.get("id")}
        self.moves = []

    @property
    def cards(self) -> List[Dict[str, Any]]:
        return list(self._cards.values())

    @property
    def columns(self) -> List[Dict[str, Any]]:
        return sorted(self._columns.values(), key=lambda c: c.get("order_position") or 0)

    def card(self, card_id: str) -> Optional[Dict[str, Any]]:
        return self._cards.get(card_id)

    def cards_in_column(self, column_id: str) -> List[Dict[str, Any]]:
        return [c for c in self._cards.values() if c.get("column_id") == column_id]

    def as_handlers(self) -> PipelineHandlers:
        return PipelineHandlers(
            on_card_insert=self._upsert_card,
            on_card_update=self._upsert_card,
            on_card_delete=self._remove_card,
            on_column_insert=self._upsert_column,
            on_column_update=self._upsert_column,
            on_column_delete=self._remove_column,
            on_card_moved=self._record_move,
        )

    def _upsert_card(self, card: Dict[str, Any]) -> None:
        card_id = card.get("id")
        if not card_id:
            return
        self._cards[card_id] = dict(card)

    def _remove_card(self, card_id: str) -> None:
        self._cards.pop(card_id, None)

    def _upsert_column(self, column: Dict[str, Any]) -> None:
        column_id = column.get("id")
        if not column_id:
            return
        self._columns[column_id] = dict(column)

    def _remove_column(self, column_id: str) -> None:
        self._columns.pop(column_id, None)

    def _record_move(self, card: Dict[str, Any], from_column_id: Optional[str], to_column_id: Optional[str]) -> None:
        self.moves.append(CardMove(card_id=card.get("id") or "", from_column_id=from_column_id, to_column_id=to_column_id))
