"""
Authentication helper utilities.

Tokens are HS256 JWTs carrying ``user_id``, ``workspace_id`` and ``role``.
Only the identity is consumed here: it stamps ``changed_by`` on history rows
and scopes requests to a workspace.
"""

import os
import logging
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

logger = logging.getLogger(__name__)

# ==================== CONFIGURATION ====================
JWT_SECRET = (
    os.getenv("JWT_SECRET")
    or os.getenv("SUPABASE_JWT_SECRET")
    or "tezeus-crm-secret-key"
).strip()

# Security bearer for FastAPI
security = HTTPBearer(auto_error=False)


# ==================== TOKEN FUNCTIONS ====================
def create_token(user_id: str, role: str, workspace_id: Optional[str] = None, ttl_s: int = 86400 * 7) -> str:
    """
    Create a JWT token for a user.

    Args:
        user_id: The user's ID
        role: The user's profile (user/admin/master)
        workspace_id: Optional workspace the token is scoped to
        ttl_s: Lifetime in seconds

    Returns:
        JWT token string
    """
    payload = {
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc).timestamp() + ttl_s,
    }
    if workspace_id:
        payload["workspace_id"] = workspace_id
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def verify_token(http_request: Request, credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """
    Verify a JWT token from the request.

    A token without ``workspace_id`` may pick the workspace through the
    ``x-workspace-id`` header.

    Raises:
        HTTPException: If token is missing, expired, or invalid
    """
    token = credentials.credentials if credentials else None
    if not token:
        token = http_request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="Token não fornecido")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Token inválido")

    if not payload.get("workspace_id"):
        header_workspace = (http_request.headers.get("x-workspace-id") or "").strip()
        if header_workspace:
            payload["workspace_id"] = header_workspace
    return payload


def require_workspace_id(payload: dict) -> str:
    """Return the workspace the caller acts in or fail with 403."""
    workspace_id = payload.get("workspace_id")
    if not workspace_id:
        raise HTTPException(status_code=403, detail="Workspace não identificado")
    return workspace_id
