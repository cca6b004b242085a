# This project was developed with assistance from AI tools.
"""User accounts, login sessions and password changes.

Accounts are never deleted; disabling one (``is_active=False``) also
drops its open sessions so the change takes effect on the next request.
"""

import logging
from datetime import UTC, datetime, timedelta

from db import PasswordResetToken, User, UserSession
from db.enums import UserRole
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import (
    dummy_password_hash,
    hash_password,
    hash_reset_token,
    new_reset_token,
    new_session_id,
    session_expiry,
    verify_password,
)

logger = logging.getLogger(__name__)


class DuplicateEmailError(ValueError):
    """Raised when registering an email that already has an account."""


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == _normalize_email(email)))
    return result.unique().scalar_one_or_none()


async def get_user(session: AsyncSession, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.unique().scalar_one_or_none()


async def register_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: UserRole = UserRole.CLIENT,
    created_by: int | None = None,
) -> User:
    """Create a client account. Raises DuplicateEmailError if the email is taken."""
    if await get_user_by_email(session, email) is not None:
        raise DuplicateEmailError("An account with this email already exists.")

    user = User(
        email=_normalize_email(email),
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        role=role,
        account_type=role.value,
        is_admin_portal=role == UserRole.ADMIN,
        is_active=True,
        created_by=created_by,
    )
    session.add(user)
    await session.flush()
    logger.info("User %s registered (role=%s)", user.id, role.value)
    return user


async def authenticate(session: AsyncSession, email: str, password: str) -> User | None:
    """Return the user if the credentials are valid and the account is active."""
    user = await get_user_by_email(session, email)
    if user is None:
        verify_password(password, dummy_password_hash())
        return None
    if not verify_password(password, user.password_hash) or not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


async def create_session(
    session: AsyncSession,
    user: User,
    *,
    ttl_hours: int,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> UserSession:
    row = UserSession(
        sid=new_session_id(),
        user_id=user.id,
        sess={"ip_address": ip_address, "user_agent": user_agent, "role": user.role.value},
        expire=session_expiry(ttl_hours),
    )
    session.add(row)
    await session.flush()
    return row


async def get_active_session(session: AsyncSession, sid: str) -> tuple[UserSession, User] | None:
    """Return (session row, user) when the session is unexpired and the user active."""
    stmt = (
        select(UserSession, User)
        .join(User, User.id == UserSession.user_id)
        .where(
            UserSession.sid == sid,
            UserSession.expire > datetime.now(UTC),
            User.is_active.is_(True),
        )
    )
    result = await session.execute(stmt)
    row = result.first()
    if row is None:
        return None
    return row[0], row[1]


async def delete_session(session: AsyncSession, sid: str) -> None:
    await session.execute(delete(UserSession).where(UserSession.sid == sid))


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


async def list_users(
    session: AsyncSession,
    *,
    role: UserRole | None = None,
    search: str | None = None,
    offset: int = 0,
    limit: int = 20,
) -> tuple[list[User], int]:
    filters = []
    if role is not None:
        filters.append(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        filters.append(
            or_(User.email.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern))
        )

    total = (await session.execute(select(func.count(User.id)).where(*filters))).scalar() or 0
    stmt = select(User).where(*filters).order_by(User.created_at.desc(), User.id.desc())
    result = await session.execute(stmt.offset(offset).limit(limit))
    return list(result.unique().scalars().all()), total


async def set_user_active(session: AsyncSession, user_id: int, is_active: bool) -> User | None:
    user = await get_user(session, user_id)
    if user is None:
        return None
    user.is_active = is_active
    if not is_active:
        await session.execute(delete(UserSession).where(UserSession.user_id == user_id))
    await session.flush()
    logger.info("User %s %s", user_id, "enabled" if is_active else "disabled")
    return user


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


async def change_password(
    session: AsyncSession,
    user_id: int,
    current_password: str,
    new_password: str,
    *,
    keep_sid: str | None = None,
) -> bool:
    """Replace the password after checking the current one.

    Every other open session of the account is dropped; ``keep_sid`` (the
    caller's own session) survives. Returns False on a wrong current password.
    """
    user = await get_user(session, user_id)
    if user is None or not verify_password(current_password, user.password_hash):
        return False
    user.password_hash = hash_password(new_password)
    stmt = delete(UserSession).where(UserSession.user_id == user_id)
    if keep_sid is not None:
        stmt = stmt.where(UserSession.sid != keep_sid)
    await session.execute(stmt)
    await session.flush()
    logger.info("User %s changed password", user_id)
    return True


async def create_password_reset(
    session: AsyncSession,
    user_id: int,
    *,
    ttl_minutes: int,
) -> tuple[str, PasswordResetToken] | None:
    """Issue a single-use reset token for an active account.

    Earlier unused tokens for the account are retired. Only the digest is
    stored; the raw token is returned once for hand-off to the user.
    """
    user = await get_user(session, user_id)
    if user is None or not user.is_active:
        return None

    await session.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.user_id == user_id, PasswordResetToken.used.is_(False))
        .values(used=True)
    )
    raw = new_reset_token()
    row = PasswordResetToken(
        user_id=user_id,
        token=hash_reset_token(raw),
        expires_at=datetime.now(UTC) + timedelta(minutes=ttl_minutes),
        used=False,
    )
    session.add(row)
    await session.flush()
    logger.info("Password reset token issued for user %s", user_id)
    return raw, row


async def reset_password(session: AsyncSession, token: str, new_password: str) -> User | None:
    """Consume a reset token and set a new password.

    Returns None for unknown, used or expired tokens. All open sessions of
    the account are dropped.
    """
    stmt = (
        select(PasswordResetToken, User)
        .join(User, User.id == PasswordResetToken.user_id)
        .where(
            PasswordResetToken.token == hash_reset_token(token),
            PasswordResetToken.used.is_(False),
            PasswordResetToken.expires_at > datetime.now(UTC),
            User.is_active.is_(True),
        )
        .with_for_update()
    )
    row = (await session.execute(stmt)).first()
    if row is None:
        return None
    reset, user = row[0], row[1]

    reset.used = True
    user.password_hash = hash_password(new_password)
    await session.execute(delete(UserSession).where(UserSession.user_id == user.id))
    await session.flush()
    logger.info("User %s reset password", user.id)
    return user
