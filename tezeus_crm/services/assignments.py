"""Conversation queue / responsible-user assignment.

A patch is partial: only keys present in it change. ``None`` clears the
relation. History rows are appended only for actual transitions and are
written best-effort after the conversation update.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ..errors import NotFoundError
from ..observability import LogContext, Observability
from ..utils.db_helpers import db_call_with_retry, first_row, rows, utc_now_iso
from .audit import AuditOutbox


ASSIGNMENT_FIELDS = ("queue_id", "assigned_user_id")
CONVERSATION_COLUMNS = "id, workspace_id, contact_id, queue_id, assigned_user_id, assigned_at, agent_active_id, agente_ativo"

ACTION_ASSIGN = "assign"
ACTION_TRANSFER = "transfer"
ACTION_QUEUE_TRANSFER = "queue_transfer"


class ConversationAssignmentService:
    def __init__(self, client: Any, *, obs: Observability):
        self._client = client
        self._obs = obs

    async def patch_conversation_assignment(
        self,
        conversation_id: str,
        patch: Mapping[str, Any],
        force_history: bool = False,
        *,
        changed_by: Optional[str] = None,
        activate_queue_agent: bool = True,
    ) -> Dict[str, Any]:
        """Apply a queue/user patch to a conversation and log the transitions.

        Raises:
            NotFoundError: the conversation does not exist.
        """
        ctx = LogContext(conversation_id=conversation_id)
        previous = self._get_conversation(conversation_id)
        if previous is None:
            raise NotFoundError("Conversa", conversation_id, message="Conversa não encontrada")

        present = {k: patch[k] for k in ASSIGNMENT_FIELDS if k in patch}
        update_data: Dict[str, Any] = {}

        if "queue_id" in present:
            queue_id = present["queue_id"]
            update_data["queue_id"] = queue_id
            if queue_id:
                if activate_queue_agent:
                    update_data.update(self._queue_agent_fields(queue_id, ctx))
            else:
                update_data["agent_active_id"] = None
                update_data["agente_ativo"] = False

        if "assigned_user_id" in present:
            user_id = present["assigned_user_id"]
            update_data["assigned_user_id"] = user_id
            if user_id:
                update_data["assigned_at"] = utc_now_iso()

        if not update_data:
            self._obs.debug("assignment.noop", ctx=ctx)
            return previous

        result = db_call_with_retry(
            "conversations.update_assignment",
            lambda: self._client.table("conversations").update(update_data).eq("id", conversation_id).execute(),
        )
        updated = first_row(result)
        if updated is None:
            raise NotFoundError("Conversa", conversation_id, message="Conversa não encontrada")

        self._obs.info(
            "assignment.updated",
            ctx=ctx,
            queue_id=update_data.get("queue_id"),
            assigned_user_id=update_data.get("assigned_user_id"),
            agent_active_id=update_data.get("agent_active_id"),
        )

        outbox = AuditOutbox(self._client, obs=self._obs, ctx=ctx)
        now = utc_now_iso()

        if "queue_id" in present and (force_history or present["queue_id"] != previous.get("queue_id")):
            outbox.append(
                "conversation_assignments",
                {
                    "conversation_id": conversation_id,
                    "action": ACTION_QUEUE_TRANSFER,
                    "from_queue_id": previous.get("queue_id"),
                    "to_queue_id": present["queue_id"],
                    "changed_by": changed_by,
                    "changed_at": now,
                },
            )

        if "assigned_user_id" in present and (
            force_history or present["assigned_user_id"] != previous.get("assigned_user_id")
        ):
            outbox.append(
                "conversation_assignments",
                {
                    "conversation_id": conversation_id,
                    "action": ACTION_ASSIGN if previous.get("assigned_user_id") is None else ACTION_TRANSFER,
                    "from_assigned_user_id": previous.get("assigned_user_id"),
                    "to_assigned_user_id": present["assigned_user_id"],
                    "changed_by": changed_by,
                    "changed_at": now,
                },
            )

        if update_data.get("agent_active_id"):
            outbox.append(
                "conversation_agent_history",
                {
                    "conversation_id": conversation_id,
                    "agent_id": update_data["agent_active_id"],
                    "agent_name": "Agente da Fila",
                    "action": "activated",
                    "changed_by": changed_by or present.get("assigned_user_id"),
                    "metadata": {
                        "queue_id": present.get("queue_id"),
                        "reason": "Transferência de negócio com mudança de fila",
                    },
                },
            )

        outbox.flush()
        return updated

    async def list_assignment_history(self, conversation_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        limit = max(1, min(limit, 500))
        result = db_call_with_retry(
            "conversation_assignments.list",
            lambda: self._client.table("conversation_assignments")
            .select("*")
            .eq("conversation_id", conversation_id)
            .order("changed_at", desc=True)
            .limit(limit)
            .execute(),
        )
        return rows(result)

    def _get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        result = db_call_with_retry(
            "conversations.get",
            lambda: self._client.table("conversations")
            .select(CONVERSATION_COLUMNS)
            .eq("id", conversation_id)
            .limit(1)
            .execute(),
        )
        return first_row(result)

    def _queue_agent_fields(self, queue_id: str, ctx: LogContext) -> Dict[str, Any]:
        """Agent fields implied by moving into ``queue_id``; empty if the queue can't be read."""
        try:
            result = db_call_with_retry(
                "queues.get",
                lambda: self._client.table("queues").select("id, name, ai_agent_id").eq("id", queue_id).limit(1).execute(),
            )
        except Exception as e:
            self._obs.warning("assignment.queue_lookup_failed", ctx=ctx, queue_id=queue_id, error=str(e))
            return {}
        queue = first_row(result)
        if queue is None:
            self._obs.warning("assignment.queue_not_found", ctx=ctx, queue_id=queue_id)
            return {}
        agent_id = queue.get("ai_agent_id")
        if agent_id:
            return {"agent_active_id": agent_id, "agente_ativo": True}
        return {"agent_active_id": None, "agente_ativo": False}
