# This project was developed with assistance from AI tools.
"""
Session authentication for FastAPI routes.

The session token arrives in the HttpOnly session cookie (browser clients)
or as ``Authorization: Bearer <token>`` (scripts). Its signature and expiry
are checked with PyJWT, then the ``user_sessions`` row it points at must
still exist, be unexpired, and belong to an active user.

Set AUTH_DISABLED=true to bypass validation (local dev only).
"""

import logging
from typing import Annotated

import jwt
from db import get_db_service
from db.enums import UserRole
from fastapi import Depends, HTTPException, Request, status

from ..core.auth import decode_session_token
from ..core.config import settings
from ..schemas.auth import UserContext
from ..services.user import get_active_session

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Token extraction
# ---------------------------------------------------------------------------


def _extract_token(request: Request) -> str | None:
    """Session cookie first, then Bearer header."""
    cookie = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if cookie:
        return cookie
    auth = request.headers.get("Authorization")
    if auth and auth.startswith("Bearer "):
        return auth[7:]
    return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

_DISABLED_USER = UserContext(
    user_id=0,
    role=UserRole.ADMIN,
    email="dev@permisos-digitales.local",
    name="Dev User",
    is_admin_portal=True,
)


async def get_current_user(request: Request) -> UserContext:
    """FastAPI dependency: validate the session and return UserContext.

    When AUTH_DISABLED=true, returns a dev admin user without touching the DB.
    """
    if settings.AUTH_DISABLED:
        return _DISABLED_USER

    token = _extract_token(request)
    if not token:
        raise _unauthorized("Missing authentication token")

    try:
        payload = decode_session_token(token, settings.SESSION_SECRET)
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized("Session has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise _unauthorized("Invalid token") from exc

    found = None
    async for session in get_db_service(request).session():
        found = await get_active_session(session, payload.sid)

    if found is None:
        logger.info("Rejected token for unknown or expired session (sub=%s)", payload.sub)
        raise _unauthorized("Session is no longer valid")

    user_session, user = found
    return UserContext(
        user_id=user.id,
        role=user.role,
        email=user.email,
        name=user.full_name,
        is_admin_portal=user.is_admin_portal,
        session_id=user_session.sid,
    )


# Type alias for use in route signatures
CurrentUser = Annotated[UserContext, Depends(get_current_user)]


def require_roles(*allowed_roles: UserRole):
    """Dependency factory: restrict a route to specific roles.

    Usage:
        @router.get("/admin-only", dependencies=[Depends(require_roles(UserRole.ADMIN))])
    """

    async def _check(user: CurrentUser) -> UserContext:
        if user.role not in allowed_roles:
            logger.warning(
                "RBAC denied: user=%s role=%s attempted route requiring %s",
                user.user_id,
                user.role.value,
                [r.value for r in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return _check
