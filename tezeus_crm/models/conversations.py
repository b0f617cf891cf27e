"""Modelos relacionados a conversas."""
from pydantic import BaseModel
from typing import Any, Dict, Optional


# ==================== ASSIGNMENT ====================

class ConversationAssignmentPatch(BaseModel):
    """Partial patch: omitted fields stay untouched, ``null`` clears them."""
    queue_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    activate_queue_agent: bool = True
    force_history: bool = False

    def assignment_changes(self) -> Dict[str, Any]:
        fields = {"queue_id", "assigned_user_id"} & self.model_fields_set
        return {name: getattr(self, name) for name in fields}
