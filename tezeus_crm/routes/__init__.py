"""
Routes package for the Tezeus CRM backend.

Each router handles a specific domain of the API.
"""

from .pipeline_cards_routes import router as pipeline_cards_router
from .conversations_routes import router as conversations_router
from .contacts_routes import router as contacts_router
from .users_routes import router as users_router

__all__ = [
    "pipeline_cards_router",
    "conversations_router",
    "contacts_router",
    "users_router",
]
