"""Domain services of the CRM backend."""
from .assignments import ConversationAssignmentService
from .audit import AuditOutbox, FlushReport
from .card_history import CardHistoryService
from .card_manager import CardResolution, PipelineCardManager
from .tags import TagService
from .users_cache import TTLCache, UsersDirectory

__all__ = [
    "AuditOutbox",
    "CardHistoryService",
    "CardResolution",
    "ConversationAssignmentService",
    "FlushReport",
    "PipelineCardManager",
    "TagService",
    "TTLCache",
    "UsersDirectory",
]
