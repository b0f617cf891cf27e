"""Card timeline.

Merges the card's own history (``pipeline_card_history``) with the agent,
assignment and tag history of its contact's conversations into one list,
newest first. A source that cannot be read is logged and left out.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import NotFoundError
from ..observability import LogContext, Observability
from ..utils.db_helpers import db_call_in_thread, first_row, rows

UNKNOWN_COLUMN = "Desconhecida"


class CardHistoryService:
    def __init__(self, client: Any, *, obs: Observability):
        self._client = client
        self._obs = obs

    async def card_history(self, card_id: str) -> List[Dict[str, Any]]:
        """Timeline events ``{id, type, action, description, timestamp, user_name, metadata}``."""
        card = first_row(
            await db_call_in_thread(
                "pipeline_cards.get",
                lambda: self._client.table("pipeline_cards")
                .select("id, pipeline_id, contact_id")
                .eq("id", card_id)
                .limit(1)
                .execute(),
            )
        )
        if card is None:
            raise NotFoundError("Card", card_id, message="Card não encontrado")
        ctx = LogContext(pipeline_id=card.get("pipeline_id"))
        contact_id = card.get("contact_id")

        card_rows = await self._read(
            "pipeline_card_history",
            ctx,
            lambda: self._client.table("pipeline_card_history")
            .select("*")
            .eq("card_id", card_id)
            .order("changed_at", desc=True)
            .execute(),
        )

        conversation_ids: List[str] = []
        if contact_id:
            conversation_ids = [
                c["id"]
                for c in await self._read(
                    "conversations",
                    ctx,
                    lambda: self._client.table("conversations").select("id").eq("contact_id", contact_id).execute(),
                )
                if c.get("id")
            ]

        agent_rows: List[Dict[str, Any]] = []
        assignment_rows: List[Dict[str, Any]] = []
        if conversation_ids:
            agent_rows = await self._read(
                "conversation_agent_history",
                ctx,
                lambda: self._client.table("conversation_agent_history")
                .select("id, conversation_id, action, agent_name, created_at, metadata, changed_by")
                .in_("conversation_id", conversation_ids)
                .order("created_at", desc=True)
                .execute(),
            )
            assignment_rows = await self._read(
                "conversation_assignments",
                ctx,
                lambda: self._client.table("conversation_assignments")
                .select("id, conversation_id, action, changed_at, from_assigned_user_id, to_assigned_user_id, changed_by")
                .in_("conversation_id", conversation_ids)
                .order("changed_at", desc=True)
                .execute(),
            )

        tag_rows: List[Dict[str, Any]] = []
        if contact_id:
            tag_rows = await self._read(
                "contact_tags",
                ctx,
                lambda: self._client.table("contact_tags")
                .select("id, tag_id, created_at, created_by")
                .eq("contact_id", contact_id)
                .order("created_at", desc=True)
                .execute(),
            )
        tags = await self._by_id("tags", "id, name, color", [r.get("tag_id") for r in tag_rows], ctx)

        user_ids: List[Optional[str]] = []
        for r in card_rows + agent_rows + assignment_rows:
            user_ids.append(r.get("changed_by"))
        for r in assignment_rows:
            user_ids.extend([r.get("from_assigned_user_id"), r.get("to_assigned_user_id")])
        user_ids.extend(r.get("created_by") for r in tag_rows)
        users = await self._by_id("system_users", "id, name", user_ids, ctx)

        def user_name(user_id: Optional[str]) -> Optional[str]:
            return (users.get(user_id) or {}).get("name") if user_id else None

        events: List[Dict[str, Any]] = []
        events.extend(_card_event(r, user_name) for r in card_rows)
        events.extend(_agent_event(r, user_name) for r in agent_rows)
        events.extend(_assignment_event(r, user_name) for r in assignment_rows)
        events.extend(_tag_event(r, tags.get(r.get("tag_id")) or {}, user_name) for r in tag_rows)

        events.sort(key=lambda e: str(e.get("timestamp") or ""), reverse=True)
        return events

    async def _read(self, source: str, ctx: LogContext, fn: Callable[[], Any]) -> List[Dict[str, Any]]:
        try:
            return rows(await db_call_in_thread(f"card_history.{source}", fn))
        except Exception as e:
            self._obs.warning("card_history.source_failed", ctx=ctx, source=source, error=str(e))
            return []

    async def _by_id(self, table: str, columns: str, ids: Iterable[Optional[str]], ctx: LogContext) -> Dict[str, Dict[str, Any]]:
        wanted = sorted({i for i in ids if i})
        if not wanted:
            return {}
        found = await self._read(
            table,
            ctx,
            lambda: self._client.table(table).select(columns).in_("id", wanted).execute(),
        )
        return {r["id"]: r for r in found if r.get("id")}


def _card_event(row: Dict[str, Any], user_name: Callable[[Optional[str]], Optional[str]]) -> Dict[str, Any]:
    metadata = row.get("metadata") or {}
    action = row.get("action")
    if action == "column_changed":
        description = (
            f"Negócio movido: {metadata.get('old_column_name') or UNKNOWN_COLUMN}"
            f" → {metadata.get('new_column_name') or UNKNOWN_COLUMN}"
        )
    elif action == "created":
        description = "Negócio iniciado por mensagem"
    elif action == "status_changed":
        description = f"Status alterado para: {metadata.get('new_status')}"
    else:
        description = ""
    return {
        "id": row.get("id"),
        "type": "column_transfer",
        "action": action,
        "description": description,
        "timestamp": row.get("changed_at"),
        "user_name": user_name(row.get("changed_by")),
        "metadata": metadata,
    }


def _agent_event(row: Dict[str, Any], user_name: Callable[[Optional[str]], Optional[str]]) -> Dict[str, Any]:
    action = row.get("action")
    verb = "desativado" if action == "deactivated" else "ativado"
    return {
        "id": row.get("id"),
        "type": "agent_activity",
        "action": action,
        "description": f"Agente **{row.get('agent_name')}** foi {verb} para esse Negócio",
        "timestamp": row.get("created_at"),
        "user_name": user_name(row.get("changed_by")),
        "metadata": row.get("metadata"),
    }


def _assignment_event(row: Dict[str, Any], user_name: Callable[[Optional[str]], Optional[str]]) -> Dict[str, Any]:
    action = row.get("action")
    event_type = "user_assigned"
    if action == "transfer":
        description = (
            f"Conversa transferida de {user_name(row.get('from_assigned_user_id')) or 'Ninguém'}"
            f" para {user_name(row.get('to_assigned_user_id')) or 'Ninguém'}"
        )
    elif action == "assign":
        description = f"Conversa vinculada ao responsável: {user_name(row.get('to_assigned_user_id')) or 'Desconhecido'}"
    elif action == "queue_transfer":
        description = "Conversa transferida de fila"
        event_type = "queue_transfer"
    else:
        description = ""
    return {
        "id": row.get("id"),
        "type": event_type,
        "action": action,
        "description": description,
        "timestamp": row.get("changed_at"),
        "user_name": user_name(row.get("changed_by")),
        "metadata": None,
    }


def _tag_event(
    row: Dict[str, Any],
    tag: Dict[str, Any],
    user_name: Callable[[Optional[str]], Optional[str]],
) -> Dict[str, Any]:
    return {
        "id": row.get("id"),
        "type": "tag",
        "action": "tag_added",
        "description": f"Tag \"{tag.get('name')}\" foi adicionada ao contato",
        "timestamp": row.get("created_at"),
        "user_name": user_name(row.get("created_by")),
        "metadata": {"tag_name": tag.get("name"), "tag_color": tag.get("color")},
    }
