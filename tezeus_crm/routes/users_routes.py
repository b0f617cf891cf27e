"""
Users routes.

- GET /users - Active system users (cached), optionally filtered by profile
- GET /tags - Workspace tags
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..container import CrmContainer
from ..utils.auth_helpers import verify_token, require_workspace_id
from ..utils.http_errors import to_http_exception
from .deps import get_container

# Create router
router = APIRouter(tags=["Users"])


@router.get("/users")
async def list_users(
    profiles: Optional[str] = None,
    refresh: bool = False,
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """List active users. ``profiles`` is a comma-separated filter (user,admin,master)."""
    wanted = [p for p in (profiles or "").split(",") if p.strip()]
    try:
        return await container.users.list_users(wanted or None, refresh=refresh)
    except Exception as e:
        raise to_http_exception(e, op_name="users.list")


@router.get("/tags")
async def list_tags(
    payload: dict = Depends(verify_token),
    container: CrmContainer = Depends(get_container),
):
    """List tags of the caller's workspace."""
    workspace_id = require_workspace_id(payload)
    try:
        return await container.tags.list_workspace_tags(workspace_id)
    except Exception as e:
        raise to_http_exception(e, op_name="tags.list")
