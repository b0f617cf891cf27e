"""
Conversation routes.

This module contains the conversation assignment and tag endpoints:
- PATCH /conversations/{id}/assignment - Change queue and/or responsible user
- GET /conversations/{id}/assignments - Assignment history
- GET /conversations/{id}/tags - List tags
- POST /conversations/{id}/tags/{tag_id} - Add tag (also tags the contact)
- DELETE /conversations/{id}/tags/{tag_id} - Remove tag
"""

from fastapi import APIRouter, Depends

from ..container import CrmContainer
from ..models import ConversationAssignmentPatch
from ..utils.auth_helpers import verify_token
from ..utils.http_errors import to_http_exception
from .deps import get_container

router = APIRouter(prefix="/conversations", tags=["Conversations"])


def _format_conversation(c: dict) -> dict:
    """Format conversation for API response."""
    return {
        'id': c.get('id'),
        'workspaceId': c.get('workspace_id'),
        'contactId': c.get('contact_id'),
        'queueId': c.get('queue_id'),
        'assignedUserId': c.get('assigned_user_id'),
        'assignedAt': c.get('assigned_at'),
        'agentActiveId': c.get('agent_active_id'),
        'agenteAtivo': bool(c.get('agente_ativo')),
    }


@router.patch("/{conversation_id}/assignment")
async def update_conversation_assignment(
    conversation_id: str,
    data: ConversationAssignmentPatch,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Change queue and/or responsible user of a conversation."""
    try:
        conversation = await container.assignments.patch_conversation_assignment(
            conversation_id,
            data.assignment_changes(),
            data.force_history,
            changed_by=payload.get('user_id'),
            activate_queue_agent=data.activate_queue_agent,
        )
    except Exception as e:
        raise to_http_exception(e, op_name="conversations.assignment")
    return {"success": True, "conversation": _format_conversation(conversation)}


@router.get("/{conversation_id}/assignments")
async def list_conversation_assignments(
    conversation_id: str,
    limit: int = 100,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """List assignment history, newest first."""
    try:
        items = await container.assignments.list_assignment_history(conversation_id, limit=limit)
    except Exception as e:
        raise to_http_exception(e, op_name="conversations.assignments")
    return {"success": True, "items": items}


@router.get("/{conversation_id}/tags")
async def list_conversation_tags(
    conversation_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """List tags attached to a conversation."""
    try:
        return await container.tags.list_conversation_tags(conversation_id)
    except Exception as e:
        raise to_http_exception(e, op_name="conversations.tags.list")


@router.post("/{conversation_id}/tags/{tag_id}")
async def add_conversation_tag(
    conversation_id: str,
    tag_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Add tag to conversation and to its contact."""
    try:
        result = await container.tags.add_tag_to_conversation(conversation_id, tag_id)
    except Exception as e:
        raise to_http_exception(e, op_name="conversations.tags.add")
    return {"success": True, **result}


@router.delete("/{conversation_id}/tags/{tag_id}")
async def remove_conversation_tag(
    conversation_id: str,
    tag_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Remove tag from conversation."""
    try:
        await container.tags.remove_tag_from_conversation(conversation_id, tag_id)
    except Exception as e:
        raise to_http_exception(e, op_name="conversations.tags.remove")
    return {"success": True}
