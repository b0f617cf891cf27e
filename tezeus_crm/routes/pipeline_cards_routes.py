"""
Pipeline card routes.

This module contains the kanban card endpoints:
- POST /pipeline-cards/resolve - Find the contact's open card or create it
- PATCH /pipeline-cards/{id}/column - Move card to another column (or pipeline)
- PATCH /pipeline-cards/{id}/status - Close card as won/lost
- PATCH /pipeline-cards/{id}/responsible - Change responsible user
- GET /pipeline-cards/{id}/history - Card timeline
"""

from fastapi import APIRouter, Depends, HTTPException

from ..container import CrmContainer
from ..models import CardMove, CardResolveRequest, CardResponsibleUpdate, CardStatusUpdate
from ..utils.auth_helpers import verify_token
from ..utils.http_errors import to_http_exception
from .deps import get_container

router = APIRouter(prefix="/pipeline-cards", tags=["Pipeline Cards"])


@router.post("/resolve")
async def resolve_card(
    data: CardResolveRequest,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Find the open card of a contact in a pipeline, or create it."""
    workspace_id = data.workspace_id or payload.get("workspace_id")
    if not data.pipeline_id and not workspace_id:
        raise HTTPException(status_code=400, detail="workspace_id ou pipeline_id é obrigatório")
    try:
        resolution = await container.cards.resolve_or_create_card(
            data.contact_id,
            conversation_id=data.conversation_id,
            workspace_id=workspace_id,
            pipeline_id=data.pipeline_id,
        )
    except Exception as e:
        raise to_http_exception(e, op_name="pipeline_cards.resolve")
    return {"card": resolution.card, "action": resolution.action, "message": resolution.message}


@router.patch("/{card_id}/column")
async def move_card(
    card_id: str,
    data: CardMove,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Move a card to another column, optionally of another pipeline."""
    try:
        return await container.cards.move_card(
            card_id,
            data.column_id,
            data.pipeline_id,
            changed_by=payload.get("user_id"),
        )
    except Exception as e:
        raise to_http_exception(e, op_name="pipeline_cards.move")


@router.patch("/{card_id}/status")
async def close_card(
    card_id: str,
    data: CardStatusUpdate,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Close an open card."""
    try:
        return await container.cards.close_card(card_id, data.status, changed_by=payload.get("user_id"))
    except Exception as e:
        raise to_http_exception(e, op_name="pipeline_cards.close")


@router.patch("/{card_id}/responsible")
async def set_card_responsible(
    card_id: str,
    data: CardResponsibleUpdate,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Change the card's responsible user and sync the linked conversation."""
    try:
        return await container.cards.set_card_responsible(
            card_id,
            data.responsible_user_id,
            changed_by=payload.get("user_id"),
        )
    except Exception as e:
        raise to_http_exception(e, op_name="pipeline_cards.responsible")


@router.get("/{card_id}/history")
async def card_history(
    card_id: str,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """Card timeline: column/status changes, agent, assignment and tag events, newest first."""
    try:
        items = await container.card_history.card_history(card_id)
    except Exception as e:
        raise to_http_exception(e, op_name="pipeline_cards.history")
    return {"success": True, "items": items}
