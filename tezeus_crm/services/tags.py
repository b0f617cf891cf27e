"""Conversation and contact tags."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..errors import NotFoundError
from ..observability import LogContext, Observability
from ..utils.db_helpers import db_call_with_retry, first_row, is_unique_violation_error, rows


class TagService:
    def __init__(self, client: Any, *, obs: Observability):
        self._client = client
        self._obs = obs

    async def list_workspace_tags(self, workspace_id: str) -> List[Dict[str, Any]]:
        result = db_call_with_retry(
            "tags.list",
            lambda: self._client.table("tags")
            .select("id, name, color")
            .eq("workspace_id", workspace_id)
            .order("name")
            .execute(),
        )
        return rows(result)

    async def list_conversation_tags(self, conversation_id: str) -> List[Dict[str, Any]]:
        result = db_call_with_retry(
            "conversation_tags.list",
            lambda: self._client.table("conversation_tags")
            .select("id, conversation_id, tag_id, tag:tags(id, name, color)")
            .eq("conversation_id", conversation_id)
            .execute(),
        )
        return rows(result)

    async def add_tag_to_conversation(self, conversation_id: str, tag_id: str) -> Dict[str, Any]:
        """Tag a conversation and, best-effort, its contact.

        Adding a tag the conversation already has is a no-op.
        """
        ctx = LogContext(conversation_id=conversation_id)
        conversation = first_row(
            db_call_with_retry(
                "conversations.get_contact",
                lambda: self._client.table("conversations").select("id, contact_id").eq("id", conversation_id).limit(1).execute(),
            )
        )
        if conversation is None:
            raise NotFoundError("Conversa", conversation_id, message="Conversa não encontrada")

        existing = self._find_conversation_tag(conversation_id, tag_id)
        if existing is not None:
            link = existing
        else:
            try:
                result = db_call_with_retry(
                    "conversation_tags.insert",
                    lambda: self._client.table("conversation_tags")
                    .insert({"conversation_id": conversation_id, "tag_id": tag_id})
                    .execute(),
                )
            except Exception as e:
                if not is_unique_violation_error(e):
                    raise
                # a concurrent request attached the same tag first
                self._obs.debug("tags.conversation_insert_conflict", ctx=ctx, tag_id=tag_id)
                result = None
            link = (
                first_row(result)
                or self._find_conversation_tag(conversation_id, tag_id)
                or {"conversation_id": conversation_id, "tag_id": tag_id}
            )

        contact_id = conversation.get("contact_id")
        contact_tagged = False
        if contact_id:
            contact_tagged = self._propagate_to_contact(contact_id, tag_id, ctx)

        self._obs.info("tags.conversation_added", ctx=ctx, tag_id=tag_id, contact_tagged=contact_tagged)
        return {"conversationTag": link, "contactId": contact_id, "contactTagged": contact_tagged}

    async def remove_tag_from_conversation(self, conversation_id: str, tag_id: str) -> bool:
        db_call_with_retry(
            "conversation_tags.delete",
            lambda: self._client.table("conversation_tags")
            .delete()
            .eq("conversation_id", conversation_id)
            .eq("tag_id", tag_id)
            .execute(),
        )
        return True

    async def add_tag_to_contact(self, contact_id: str, tag_id: str) -> Optional[Dict[str, Any]]:
        return first_row(self._upsert_contact_tag(contact_id, tag_id))

    async def remove_tag_from_contact(self, contact_id: str, tag_id: str) -> bool:
        db_call_with_retry(
            "contact_tags.delete",
            lambda: self._client.table("contact_tags").delete().eq("contact_id", contact_id).eq("tag_id", tag_id).execute(),
        )
        return True

    def _find_conversation_tag(self, conversation_id: str, tag_id: str) -> Optional[Dict[str, Any]]:
        return first_row(
            db_call_with_retry(
                "conversation_tags.find",
                lambda: self._client.table("conversation_tags")
                .select("id, conversation_id, tag_id")
                .eq("conversation_id", conversation_id)
                .eq("tag_id", tag_id)
                .limit(1)
                .execute(),
            )
        )

    def _upsert_contact_tag(self, contact_id: str, tag_id: str) -> Any:
        return db_call_with_retry(
            "contact_tags.upsert",
            lambda: self._client.table("contact_tags")
            .upsert(
                {"contact_id": contact_id, "tag_id": tag_id},
                on_conflict="contact_id,tag_id",
                ignore_duplicates=True,
            )
            .execute(),
        )

    def _propagate_to_contact(self, contact_id: str, tag_id: str, ctx: LogContext) -> bool:
        try:
            self._upsert_contact_tag(contact_id, tag_id)
        except Exception as e:
            self._obs.warning("tags.contact_propagation_failed", ctx=ctx, contact_id=contact_id, tag_id=tag_id, error=str(e))
            return False
        return True
