"""Pipeline card resolution.

``resolve_or_create_card`` keeps exactly one open card per
``(contact_id, pipeline_id)``: repeated interactions are merged into the open
card as timestamped notes instead of creating new cards. Database calls run
on worker threads, so the read-then-write is serialized per pair by an
in-process lock; across processes the database carries a partial unique
index (see ``schema.py``) and an insert rejected by it falls back to merging.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..config import CrmSettings
from ..errors import (
    InvalidContactError,
    InvalidTransitionError,
    NoColumnError,
    NoPipelineError,
    NotFoundError,
)
from ..observability import LogContext, Observability
from ..utils.db_helpers import (
    db_call_in_thread,
    first_row,
    is_unique_violation_error,
    utc_now_iso,
)
from ..utils.locks import KeyedLock
from .assignments import ConversationAssignmentService
from .audit import AuditOutbox

NOTE_TIMESTAMP_FORMAT = "%d/%m/%Y, %H:%M:%S"
UNNAMED_CONTACT_TITLE = "Contato sem nome"
CARD_HISTORY_TABLE = "pipeline_card_history"


@dataclass(frozen=True)
class CardResolution:
    card: Dict[str, Any]
    action: str  # "created" | "updated"

    @property
    def message(self) -> str:
        if self.action == "created":
            return "Novo card criado no pipeline"
        return "Card existente atualizado com nova interação"


def contact_identifier(contact: Dict[str, Any]) -> Optional[str]:
    """Phone when present, else email, else ``None``."""
    phone = str(contact.get("phone") or "").strip()
    if phone:
        return phone
    email = str(contact.get("email") or "").strip()
    return email or None


def card_title_for(contact: Dict[str, Any]) -> str:
    for key in ("name", "phone", "email"):
        value = str(contact.get(key) or "").strip()
        if value:
            return value
    return UNNAMED_CONTACT_TITLE


class PipelineCardManager:
    def __init__(
        self,
        client: Any,
        *,
        obs: Observability,
        settings: CrmSettings,
        locks: KeyedLock,
        assignments: ConversationAssignmentService,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._client = client
        self._obs = obs
        self._settings = settings
        self._locks = locks
        self._assignments = assignments
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def resolve_or_create_card(
        self,
        contact_id: str,
        conversation_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        pipeline_id: Optional[str] = None,
    ) -> CardResolution:
        """Find the open card of ``contact_id`` in the target pipeline or create it.

        Raises:
            NotFoundError: the contact does not exist.
            InvalidContactError: the contact has neither phone nor email.
            NoPipelineError: no pipeline given and the workspace has no active one.
            NoColumnError: a card must be created but the pipeline has no columns.
        """
        ctx = LogContext(workspace_id=workspace_id, pipeline_id=pipeline_id, conversation_id=conversation_id)

        contact = await self._get_contact(contact_id)
        if contact is None:
            raise NotFoundError("Contato", contact_id, message="Contato não encontrado")
        if contact_identifier(contact) is None:
            self._obs.warning("cards.invalid_contact", ctx=ctx, contact_id=contact_id)
            raise InvalidContactError(contact_id)

        target_pipeline_id = pipeline_id or await self._first_active_pipeline_id(workspace_id)
        if not target_pipeline_id:
            raise NoPipelineError(workspace_id)
        ctx = LogContext(workspace_id=workspace_id, pipeline_id=target_pipeline_id, conversation_id=conversation_id)

        async with self._locks.acquire((contact_id, target_pipeline_id)):
            responsible_user_id = await self._conversation_assignee(conversation_id)

            existing = await self._find_open_card(contact_id, target_pipeline_id)
            if existing is not None:
                return await self._merge_interaction(existing, conversation_id, responsible_user_id, ctx)

            column_id = await self._first_column_id(target_pipeline_id)
            if not column_id:
                raise NoColumnError(target_pipeline_id)

            new_card = {
                "pipeline_id": target_pipeline_id,
                "column_id": column_id,
                "contact_id": contact_id,
                "conversation_id": conversation_id,
                "responsible_user_id": responsible_user_id,
                "title": card_title_for(contact),
                "description": f"[{self._timestamp()}] Card criado automaticamente",
                "value": 0,
                "status": self._settings.open_card_status,
                "tags": [],
            }
            try:
                result = await db_call_in_thread(
                    "pipeline_cards.insert",
                    lambda: self._client.table("pipeline_cards").insert(new_card).execute(),
                )
            except Exception as e:
                if not is_unique_violation_error(e):
                    raise
                # another worker created the open card between our read and insert
                self._obs.warning("cards.insert_conflict", ctx=ctx, contact_id=contact_id)
                existing = await self._find_open_card(contact_id, target_pipeline_id)
                if existing is None:
                    raise
                return await self._merge_interaction(existing, conversation_id, responsible_user_id, ctx)

            card = first_row(result) or new_card
            self._obs.info("cards.created", ctx=ctx, card_id=card.get("id"), contact_id=contact_id)
            if card.get("id"):
                await self._record_history(
                    card["id"],
                    "created",
                    {"column_id": column_id, "conversation_id": conversation_id},
                    changed_by=None,
                    ctx=ctx,
                )
            return CardResolution(card=card, action="created")

    async def move_card(
        self,
        card_id: str,
        column_id: str,
        pipeline_id: Optional[str] = None,
        *,
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Move a card to another column, optionally of another pipeline.

        Raises:
            NotFoundError: the card is missing or the column is not in the target pipeline.
            InvalidTransitionError: the contact already has an open card in the target pipeline.
        """
        card = await self._get_card(card_id)
        source_pipeline_id = card.get("pipeline_id")
        target_pipeline_id = pipeline_id or source_pipeline_id
        column = await self._get_column(column_id, target_pipeline_id)
        if column is None:
            raise NotFoundError("Coluna", column_id, message="Coluna não encontrada neste pipeline")
        if card.get("column_id") == column_id and target_pipeline_id == source_pipeline_id:
            return card

        ctx = LogContext(pipeline_id=target_pipeline_id)
        update_data: Dict[str, Any] = {"column_id": column_id, "updated_at": utc_now_iso()}
        if target_pipeline_id == source_pipeline_id:
            updated = await self._update_card(card_id, update_data)
        else:
            update_data["pipeline_id"] = target_pipeline_id
            updated = await self._move_to_pipeline(card, target_pipeline_id, update_data)

        old_column = await self._get_column(card.get("column_id"), source_pipeline_id) if card.get("column_id") else None
        metadata = {
            "old_column_id": card.get("column_id"),
            "new_column_id": column_id,
            "old_column_name": (old_column or {}).get("name"),
            "new_column_name": column.get("name"),
        }
        if target_pipeline_id != source_pipeline_id:
            metadata["old_pipeline_id"] = source_pipeline_id
            metadata["new_pipeline_id"] = target_pipeline_id
        await self._record_history(card_id, "column_changed", metadata, changed_by=changed_by, ctx=ctx)

        self._obs.info(
            "cards.moved",
            ctx=ctx,
            card_id=card_id,
            from_column=card.get("column_id"),
            to_column=column_id,
            from_pipeline=source_pipeline_id if target_pipeline_id != source_pipeline_id else None,
        )
        return updated

    async def close_card(self, card_id: str, status: str, *, changed_by: Optional[str] = None) -> Dict[str, Any]:
        """Close an open card as won or lost. Closed cards are never reopened here."""
        requested = (status or "").strip()
        card = await self._get_card(card_id)
        current = card.get("status")
        if requested not in self._settings.closed_card_statuses or current != self._settings.open_card_status:
            raise InvalidTransitionError(card_id, current=current, requested=requested)
        updated = await self._update_card(card_id, {"status": requested, "updated_at": utc_now_iso()})
        ctx = LogContext(pipeline_id=card.get("pipeline_id"))
        await self._record_history(
            card_id,
            "status_changed",
            {"old_status": current, "new_status": requested},
            changed_by=changed_by,
            ctx=ctx,
        )
        self._obs.info("cards.closed", ctx=ctx, card_id=card_id, status=requested)
        return updated

    async def set_card_responsible(
        self,
        card_id: str,
        user_id: Optional[str],
        *,
        changed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Set the card's responsible user and mirror it on the linked conversation."""
        card = await self._get_card(card_id)
        updated = await self._update_card(card_id, {"responsible_user_id": user_id, "updated_at": utc_now_iso()})

        conversation = None
        conversation_id = card.get("conversation_id")
        if conversation_id:
            try:
                conversation = await self._assignments.patch_conversation_assignment(
                    conversation_id,
                    {"assigned_user_id": user_id},
                    changed_by=changed_by,
                )
            except Exception as e:
                self._obs.warning(
                    "cards.responsible_sync_failed",
                    ctx=LogContext(pipeline_id=card.get("pipeline_id"), conversation_id=conversation_id),
                    card_id=card_id,
                    error=str(e),
                )
        return {"card": updated, "conversation": conversation}

    # ==================== internals ====================

    def _timestamp(self) -> str:
        return self._clock().strftime(NOTE_TIMESTAMP_FORMAT)

    async def _merge_interaction(
        self,
        existing: Dict[str, Any],
        conversation_id: Optional[str],
        responsible_user_id: Optional[str],
        ctx: LogContext,
    ) -> CardResolution:
        timestamp = self._timestamp()
        description = existing.get("description")
        if description:
            new_description = f"{description}\n\n[{timestamp}] Nova interação registrada"
        else:
            new_description = f"[{timestamp}] Card atualizado automaticamente"

        update_data: Dict[str, Any] = {
            "description": new_description,
            "responsible_user_id": responsible_user_id or existing.get("responsible_user_id"),
            "updated_at": utc_now_iso(),
        }
        if conversation_id:
            update_data["conversation_id"] = conversation_id

        card = await self._update_card(existing["id"], update_data)
        self._obs.info("cards.updated", ctx=ctx, card_id=existing["id"])
        return CardResolution(card=card, action="updated")

    async def _move_to_pipeline(
        self,
        card: Dict[str, Any],
        target_pipeline_id: str,
        update_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        contact_id = card.get("contact_id")
        is_open = card.get("status") == self._settings.open_card_status
        if not (is_open and contact_id):
            return await self._update_card(card["id"], update_data)

        async with self._locks.acquire((contact_id, target_pipeline_id)):
            if await self._find_open_card(contact_id, target_pipeline_id) is not None:
                raise self._pipeline_taken(card, target_pipeline_id)
            try:
                return await self._update_card(card["id"], update_data)
            except Exception as e:
                if is_unique_violation_error(e):
                    raise self._pipeline_taken(card, target_pipeline_id)
                raise

    @staticmethod
    def _pipeline_taken(card: Dict[str, Any], target_pipeline_id: str) -> InvalidTransitionError:
        return InvalidTransitionError(
            card["id"],
            current=card.get("pipeline_id"),
            requested=target_pipeline_id,
            message="Contato já possui um card aberto no pipeline de destino",
        )

    async def _record_history(
        self,
        card_id: str,
        action: str,
        metadata: Dict[str, Any],
        *,
        changed_by: Optional[str],
        ctx: LogContext,
    ) -> None:
        outbox = AuditOutbox(self._client, obs=self._obs, ctx=ctx)
        outbox.append(
            CARD_HISTORY_TABLE,
            {
                "card_id": card_id,
                "action": action,
                "changed_by": changed_by,
                "changed_at": utc_now_iso(),
                "metadata": metadata,
            },
        )
        await asyncio.to_thread(outbox.flush)

    async def _get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return first_row(
            await db_call_in_thread(
                "contacts.get",
                lambda: self._client.table("contacts").select("id, name, phone, email").eq("id", contact_id).limit(1).execute(),
            )
        )

    async def _get_card(self, card_id: str) -> Dict[str, Any]:
        card = first_row(
            await db_call_in_thread(
                "pipeline_cards.get",
                lambda: self._client.table("pipeline_cards").select("*").eq("id", card_id).limit(1).execute(),
            )
        )
        if card is None:
            raise NotFoundError("Card", card_id, message="Card não encontrado")
        return card

    async def _get_column(self, column_id: str, pipeline_id: Optional[str]) -> Optional[Dict[str, Any]]:
        return first_row(
            await db_call_in_thread(
                "pipeline_columns.get",
                lambda: self._client.table("pipeline_columns")
                .select("id, name, pipeline_id")
                .eq("id", column_id)
                .eq("pipeline_id", pipeline_id)
                .limit(1)
                .execute(),
            )
        )

    async def _update_card(self, card_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        result = await db_call_in_thread(
            "pipeline_cards.update",
            lambda: self._client.table("pipeline_cards").update(data).eq("id", card_id).execute(),
        )
        card = first_row(result)
        if card is None:
            raise NotFoundError("Card", card_id, message="Card não encontrado")
        return card

    async def _first_active_pipeline_id(self, workspace_id: Optional[str]) -> Optional[str]:
        if not workspace_id:
            return None
        pipeline = first_row(
            await db_call_in_thread(
                "pipelines.first_active",
                lambda: self._client.table("pipelines")
                .select("id")
                .eq("workspace_id", workspace_id)
                .eq("is_active", True)
                .order("created_at")
                .limit(1)
                .execute(),
            )
        )
        return pipeline.get("id") if pipeline else None

    async def _find_open_card(self, contact_id: str, pipeline_id: str) -> Optional[Dict[str, Any]]:
        return first_row(
            await db_call_in_thread(
                "pipeline_cards.find_open",
                lambda: self._client.table("pipeline_cards")
                .select("id, title, description, responsible_user_id, conversation_id, updated_at")
                .eq("contact_id", contact_id)
                .eq("pipeline_id", pipeline_id)
                .eq("status", self._settings.open_card_status)
                .order("created_at")
                .limit(1)
                .execute(),
            )
        )

    async def _first_column_id(self, pipeline_id: str) -> Optional[str]:
        column = first_row(
            await db_call_in_thread(
                "pipeline_columns.first",
                lambda: self._client.table("pipeline_columns")
                .select("id")
                .eq("pipeline_id", pipeline_id)
                .order("order_position")
                .limit(1)
                .execute(),
            )
        )
        return column.get("id") if column else None

    async def _conversation_assignee(self, conversation_id: Optional[str]) -> Optional[str]:
        if not conversation_id:
            return None
        conversation = first_row(
            await db_call_in_thread(
                "conversations.assignee",
                lambda: self._client.table("conversations")
                .select("assigned_user_id")
                .eq("id", conversation_id)
                .limit(1)
                .execute(),
            )
        )
        return conversation.get("assigned_user_id") if conversation else None
