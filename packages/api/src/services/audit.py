# This project was developed with assistance from AI tools.
"""Append-only audit writers and readers.

Two trails live here: the payment verification log (every status change
of a permit application, whoever made it) and the security audit log
(logins, registrations, admin actions). Writers only ``add`` + ``flush``;
the caller's transaction decides whether the row is committed together
with the change it describes.
"""

import logging

from db import PaymentVerificationLog, SecurityAuditLog
from db.enums import PermitStatus, VerificationAction
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Payment verification log
# ---------------------------------------------------------------------------


async def write_verification_log(
    session: AsyncSession,
    *,
    application_id: int,
    action: VerificationAction,
    from_status: PermitStatus | None = None,
    to_status: PermitStatus | None = None,
    verified_by: int | None = None,
    notes: str | None = None,
) -> PaymentVerificationLog:
    """Append one verification row. ``verified_by`` is None when the provider verified."""
    entry = PaymentVerificationLog(
        application_id=application_id,
        verified_by=verified_by,
        action=action.value,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value if to_status else None,
        notes=notes,
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_verification_history(
    session: AsyncSession,
    application_id: int,
) -> list[PaymentVerificationLog]:
    """Return every verification row for an application, oldest first."""
    stmt = (
        select(PaymentVerificationLog)
        .where(PaymentVerificationLog.application_id == application_id)
        .order_by(PaymentVerificationLog.created_at.asc(), PaymentVerificationLog.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Security audit log
# ---------------------------------------------------------------------------


async def write_security_event(
    session: AsyncSession,
    *,
    action_type: str,
    user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    details: dict | None = None,
) -> SecurityAuditLog:
    """Append one security event.

    Args:
        action_type: Event category (e.g. 'login_success', 'login_failed').
        user_id: Subject user, if known.
        ip_address: Client address as seen by the server.
        user_agent: Raw User-Agent header.
        details: JSON-serializable extras. Never pass passwords or hashes.
    """
    event = SecurityAuditLog(
        user_id=user_id,
        action_type=action_type,
        ip_address=ip_address,
        user_agent=user_agent,
        details=details,
    )
    session.add(event)
    await session.flush()
    logger.info("Security event %s (user_id=%s, ip=%s)", action_type, user_id, ip_address)
    return event


async def search_security_events(
    session: AsyncSession,
    *,
    action_type: str | None = None,
    user_id: int | None = None,
    offset: int = 0,
    limit: int = 50,
) -> tuple[list[SecurityAuditLog], int]:
    """Return (page, total) of security events, newest first."""
    filters = []
    if action_type:
        filters.append(SecurityAuditLog.action_type == action_type)
    if user_id is not None:
        filters.append(SecurityAuditLog.user_id == user_id)

    count_stmt = select(func.count(SecurityAuditLog.id)).where(*filters)
    total = (await session.execute(count_stmt)).scalar() or 0

    stmt = (
        select(SecurityAuditLog)
        .where(*filters)
        .order_by(SecurityAuditLog.created_at.desc(), SecurityAuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all()), total
