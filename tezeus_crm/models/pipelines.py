"""Modelos relacionados a pipelines e cards."""
from pydantic import BaseModel
from typing import Optional


# ==================== CARDS ====================

class CardResolveRequest(BaseModel):
    contact_id: str
    conversation_id: Optional[str] = None
    workspace_id: Optional[str] = None
    pipeline_id: Optional[str] = None


class CardMove(BaseModel):
    column_id: str
    pipeline_id: Optional[str] = None


class CardStatusUpdate(BaseModel):
    status: str


class CardResponsibleUpdate(BaseModel):
    responsible_user_id: Optional[str] = None
