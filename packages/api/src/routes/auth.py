# This project was developed with assistance from AI tools.
"""Registration, login/logout, session status and password changes."""

import logging

from db import DatabaseService, get_db_service
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from ..core.auth import encode_session_token
from ..core.config import settings
from ..middleware.auth import CurrentUser
from ..schemas.auth import (
    AuthStatusResponse,
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from ..services.audit import write_security_event
from ..services.user import (
    DuplicateEmailError,
    authenticate,
    change_password,
    create_session,
    delete_session,
    get_user,
    get_user_by_email,
    register_user,
    reset_password,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    request: Request,
    db_service: DatabaseService = Depends(get_db_service),
) -> UserResponse:
    """Create a client account. Duplicate emails answer 409."""
    client = _client_info(request)

    async def _register(session):
        user = await register_user(
            session,
            email=body.email,
            password=body.password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
        await write_security_event(session, action_type="registration", user_id=user.id, **client)
        return UserResponse.model_validate(user)

    try:
        return await db_service.with_transaction(_register, context="register")
    except DuplicateEmailError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db_service: DatabaseService = Depends(get_db_service),
) -> LoginResponse:
    """Verify credentials, open a server-side session and set the session cookie."""
    client = _client_info(request)

    async def _login(session):
        user = await authenticate(session, body.email, body.password)
        if user is None:
            known = await get_user_by_email(session, body.email)
            await write_security_event(
                session,
                action_type="login_failed",
                user_id=known.id if known else None,
                details={"admin_portal": body.admin_portal},
                **client,
            )
            return None, None, (status.HTTP_401_UNAUTHORIZED, "Invalid email or password")
        if body.admin_portal and not user.is_admin_portal:
            await write_security_event(
                session, action_type="admin_portal_denied", user_id=user.id, **client
            )
            return None, None, (status.HTTP_403_FORBIDDEN, "Admin portal access denied")

        user_session = await create_session(
            session, user, ttl_hours=settings.SESSION_TTL_HOURS, **client
        )
        await write_security_event(
            session,
            action_type="login_success",
            user_id=user.id,
            details={"admin_portal": body.admin_portal},
            **client,
        )
        return user, user_session, None

    user, user_session, error = await db_service.with_transaction(_login, context="login")
    if error is not None:
        # Failed attempts are committed above so the audit row survives.
        raise HTTPException(status_code=error[0], detail=error[1])

    token = encode_session_token(
        user_session.sid, user.id, settings.SESSION_SECRET, user_session.expire
    )
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )
    return LoginResponse(user=UserResponse.model_validate(user), expires_at=user_session.expire)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    user: CurrentUser,
    request: Request,
    response: Response,
    db_service: DatabaseService = Depends(get_db_service),
) -> Response:
    """Drop the server-side session and clear the cookie."""
    client = _client_info(request)

    async def _logout(session):
        if user.session_id:
            await delete_session(session, user.session_id)
        await write_security_event(session, action_type="logout", user_id=user.user_id, **client)

    await db_service.with_transaction(_logout, context="logout")
    response.status_code = status.HTTP_204_NO_CONTENT
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response


@router.get("/status", response_model=AuthStatusResponse)
async def auth_status(
    user: CurrentUser,
    db_service: DatabaseService = Depends(get_db_service),
) -> AuthStatusResponse:
    """Return the logged-in user. Unauthenticated requests get 401 from the dependency."""
    account = await db_service.with_transaction(
        lambda session: get_user(session, user.user_id), read_only=True, context="auth status"
    )
    if account is None:
        return AuthStatusResponse(is_logged_in=True, user=None)
    return AuthStatusResponse(is_logged_in=True, user=UserResponse.model_validate(account))


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password_route(
    body: ChangePasswordRequest,
    user: CurrentUser,
    request: Request,
    db_service: DatabaseService = Depends(get_db_service),
) -> Response:
    """Replace the password. Other sessions of the account are signed out."""
    client = _client_info(request)

    async def _change(session):
        changed = await change_password(
            session,
            user.user_id,
            body.current_password,
            body.new_password,
            keep_sid=user.session_id,
        )
        await write_security_event(
            session,
            action_type="password_changed" if changed else "password_change_failed",
            user_id=user.user_id,
            **client,
        )
        return changed

    if not await db_service.with_transaction(_change, context="change password"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/reset-password", status_code=status.HTTP_204_NO_CONTENT)
async def reset_password_route(
    body: ResetPasswordRequest,
    request: Request,
    db_service: DatabaseService = Depends(get_db_service),
) -> Response:
    """Set a new password with a single-use reset token."""
    client = _client_info(request)

    async def _reset(session):
        user = await reset_password(session, body.token, body.new_password)
        if user is None:
            await write_security_event(session, action_type="password_reset_failed", **client)
            return False
        await write_security_event(session, action_type="password_reset", user_id=user.id, **client)
        return True

    if not await db_service.with_transaction(_reset, context="reset password"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired reset token"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
