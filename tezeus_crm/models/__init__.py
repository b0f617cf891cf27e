"""Modelos Pydantic do CRM.

Este módulo re-exporta todos os modelos para facilitar importações.
"""
from .conversations import ConversationAssignmentPatch
from .pipelines import (
    CardResolveRequest,
    CardMove,
    CardStatusUpdate,
    CardResponsibleUpdate,
)

__all__ = [
    # Conversations
    "ConversationAssignmentPatch",
    # Pipelines
    "CardResolveRequest",
    "CardMove",
    "CardStatusUpdate",
    "CardResponsibleUpdate",
]
