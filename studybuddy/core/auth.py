"""
Request identity for the StudyBuddy API.

- Users: X-User-Id header set by the upstream auth layer (sessions and
  tokens are handled before requests reach this service).
- Admins: X-Admin-Key shared secret compared in constant time.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request

from studybuddy.core.config import settings
from studybuddy.core.errors import PermissionError


logger = logging.getLogger("studybuddy")


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_id: str  # "admin-key:<hash>"
    auth_mechanism: str = "x_admin_key"


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, description="Authenticated user id"),
) -> str:
    """
    Extract current user ID from request headers.

    Raises:
        HTTPException 401: Missing identity
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/api/admin/config/refresh")
        def refresh(actor: AdminActor = Depends(require_admin)):
            ...
    """
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        raise HTTPException(status_code=503, detail="Admin authentication not configured")

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        logger.warning("[admin] rejected", extra={"path": request.url.path})
        raise PermissionError("Admin access required")

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(actor_id=f"admin-key:{key_hash}")
