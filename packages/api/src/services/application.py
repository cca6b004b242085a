# This project was developed with assistance from AI tools.
"""Permit application repository and status transitions.

Clients only ever see their own applications; admins see all. Out-of-scope
rows come back as ``None`` (mapped to 404 by routes) rather than 403, so
the existence of other users' applications is never revealed.

``transition_status`` is the only code path that writes ``status``.
"""

import logging
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import NamedTuple

from db import PermitApplication
from db.enums import PermitStatus, UserRole, VerificationAction
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..schemas.auth import UserContext
from .audit import write_verification_log

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """Raised when a permit status transition is not allowed."""

    def __init__(self, current: PermitStatus, target: PermitStatus):
        allowed = PermitStatus.valid_transitions().get(current, frozenset())
        super().__init__(
            f"Cannot transition from '{current.value}' to '{target.value}'. "
            f"Allowed: {sorted(s.value for s in allowed) if allowed else 'none (terminal status)'}."
        )
        self.current = current
        self.target = target


class ApplicationLockedError(ValueError):
    """Raised when applicant/vehicle data is edited after payment started."""


class RenewalNotAllowedError(ValueError):
    """Raised when a permit is outside its renewal window or already renewed."""


class TransitionResult(NamedTuple):
    application: PermitApplication
    previous: PermitStatus
    changed: bool


# Milestone column stamped when an application enters each status.
STATUS_TIMESTAMP_COLUMNS: dict[PermitStatus, str] = {
    PermitStatus.PAYMENT_RECEIVED: "payment_verified_at",
    PermitStatus.PAYMENT_FAILED: "payment_failed_at",
    PermitStatus.GENERATING_PERMIT: "permit_generation_started_at",
    PermitStatus.PERMIT_READY: "permit_ready_at",
    PermitStatus.COMPLETED: "completed_at",
    PermitStatus.CANCELLED: "cancelled_at",
    PermitStatus.EXPIRED: "expired_at",
}

EDITABLE_STATUSES = frozenset({PermitStatus.AWAITING_PAYMENT, PermitStatus.PAYMENT_FAILED})
RENEWABLE_STATUSES = frozenset({PermitStatus.PERMIT_READY, PermitStatus.COMPLETED})

_UPDATABLE_FIELDS = {
    "nombre_completo",
    "domicilio",
    "marca",
    "linea",
    "color",
    "numero_serie",
    "numero_motor",
    "ano_modelo",
}

# Columns a transition may set alongside the status.
_TRANSITION_FIELDS = {
    "payment_processor_order_id",
    "payment_reference",
    "folio",
    "fecha_expedicion",
    "fecha_vencimiento",
    "permit_file_path",
    "recibo_file_path",
    "certificado_file_path",
    "placas_file_path",
}

_COPIED_ON_RENEWAL = (
    "nombre_completo",
    "curp_rfc",
    "domicilio",
    "marca",
    "linea",
    "color",
    "numero_serie",
    "numero_motor",
    "ano_modelo",
)


def _scoped(stmt, user: UserContext):
    if user.role == UserRole.ADMIN:
        return stmt
    return stmt.where(PermitApplication.user_id == user.user_id)


def _apply_filters(stmt, filter_status: PermitStatus | None, search: str | None):
    if filter_status is not None:
        stmt = stmt.where(PermitApplication.status == filter_status)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                PermitApplication.nombre_completo.ilike(pattern),
                PermitApplication.curp_rfc.ilike(pattern),
                PermitApplication.numero_serie.ilike(pattern),
                PermitApplication.folio.ilike(pattern),
            )
        )
    return stmt


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_applications(
    session: AsyncSession,
    user: UserContext,
    *,
    offset: int = 0,
    limit: int = 20,
    filter_status: PermitStatus | None = None,
    search: str | None = None,
) -> tuple[list[PermitApplication], int]:
    """Return (page, total) of applications visible to the current user, newest first."""
    count_stmt = select(func.count(PermitApplication.id))
    count_stmt = _apply_filters(_scoped(count_stmt, user), filter_status, search)
    total = (await session.execute(count_stmt)).scalar() or 0

    stmt = (
        select(PermitApplication)
        .order_by(PermitApplication.created_at.desc(), PermitApplication.id.desc())
        .offset(offset)
        .limit(limit)
    )
    stmt = _apply_filters(_scoped(stmt, user), filter_status, search)
    result = await session.execute(stmt)
    return list(result.unique().scalars().all()), total


async def get_application(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
) -> PermitApplication | None:
    """Return a single application if visible to the current user."""
    stmt = select(PermitApplication).where(PermitApplication.id == application_id)
    result = await session.execute(_scoped(stmt, user))
    return result.unique().scalar_one_or_none()


async def find_by_payment_intent(
    session: AsyncSession,
    payment_intent_id: str,
    *,
    for_update: bool = False,
) -> PermitApplication | None:
    stmt = select(PermitApplication).where(
        PermitApplication.payment_processor_order_id == payment_intent_id
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.unique().scalar_one_or_none()


async def count_by_status(session: AsyncSession) -> dict[str, int]:
    """Application counts keyed by status value (statuses with no rows are 0)."""
    stmt = select(PermitApplication.status, func.count(PermitApplication.id)).group_by(
        PermitApplication.status
    )
    result = await session.execute(stmt)
    counts = {s.value: 0 for s in PermitStatus}
    for status, count in result.all():
        counts[PermitStatus(status).value] = count
    return counts


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


async def create_application(
    session: AsyncSession,
    user: UserContext,
    fields: dict,
    *,
    payment_method: str = "card",
    fee: Decimal | None = None,
) -> PermitApplication:
    """Insert a new application in its initial payment status.

    Flushes but does not commit; the caller's transaction owns the commit.
    """
    initial = (
        PermitStatus.AWAITING_OXXO_PAYMENT if payment_method == "oxxo" else PermitStatus.AWAITING_PAYMENT
    )
    application = PermitApplication(
        user_id=user.user_id,
        status=initial,
        importe=fee if fee is not None else settings.PERMIT_FEE,
        renewal_count=0,
        **{k: v for k, v in fields.items() if k in _UPDATABLE_FIELDS or k == "curp_rfc"},
    )
    session.add(application)
    await session.flush()
    logger.info(
        "Application %s created (user_id=%s, status=%s)", application.id, user.user_id, initial.value
    )
    return application


async def update_application(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    **updates,
) -> PermitApplication | None:
    """Update applicant/vehicle data while the application is still unpaid.

    Status changes must use ``transition_status()``; unknown fields are ignored.
    Raises ApplicationLockedError once payment has moved past the editable statuses.
    """
    app = await get_application(session, user, application_id)
    if app is None:
        return None

    if PermitStatus(app.status) not in EDITABLE_STATUSES:
        raise ApplicationLockedError(
            f"Application {application_id} cannot be edited in status '{PermitStatus(app.status).value}'."
        )

    for field, value in updates.items():
        if field not in _UPDATABLE_FIELDS or value is None:
            continue
        setattr(app, field, value)

    await session.flush()
    return app


def build_folio(application_id: int, issued: date) -> str:
    return f"HZ-{issued.year}-{application_id:06d}"


def _apply_transition_fields(app: PermitApplication, updates: dict) -> bool:
    """Set the payment/permit columns in ``updates``; True if any value changed."""
    changed = False
    for field, value in updates.items():
        if field in _TRANSITION_FIELDS and value is not None and getattr(app, field) != value:
            setattr(app, field, value)
            changed = True
    return changed


async def transition_status(
    session: AsyncSession,
    application_id: int,
    new_status: PermitStatus,
    *,
    actor_id: int | None = None,
    action: VerificationAction = VerificationAction.STATUS_CHANGE,
    notes: str | None = None,
    **updates,
) -> TransitionResult | None:
    """Move an application to ``new_status`` and stamp the milestone column.

    The row is locked ``FOR UPDATE`` for the rest of the caller's transaction.
    Same-status leaves the status alone (``changed=False``, no log row). A
    move not in the adjacency table raises InvalidTransitionError. Returns
    None when the application does not exist.

    Extra keyword arguments set payment/permit columns in the same write,
    including on a same-status call (an OXXO voucher for an application
    that already awaits OXXO payment).
    """
    stmt = (
        select(PermitApplication).where(PermitApplication.id == application_id).with_for_update()
    )
    result = await session.execute(stmt)
    app = result.unique().scalar_one_or_none()
    if app is None:
        return None

    current = PermitStatus(app.status)
    if current == new_status:
        if _apply_transition_fields(app, updates):
            await session.flush()
        return TransitionResult(app, current, False)

    if not current.can_transition_to(new_status):
        raise InvalidTransitionError(current, new_status)

    now = datetime.now(UTC)
    app.status = new_status
    column = STATUS_TIMESTAMP_COLUMNS.get(new_status)
    if column is not None:
        setattr(app, column, now)

    _apply_transition_fields(app, updates)

    if new_status == PermitStatus.PERMIT_READY:
        if app.fecha_expedicion is None:
            app.fecha_expedicion = now.date()
            app.fecha_vencimiento = now.date() + timedelta(days=settings.PERMIT_VALIDITY_DAYS)
        if app.folio is None:
            app.folio = build_folio(app.id, app.fecha_expedicion)

    await write_verification_log(
        session,
        application_id=app.id,
        action=action,
        from_status=current,
        to_status=new_status,
        verified_by=actor_id,
        notes=notes,
    )
    await session.flush()

    logger.info(
        "Application %s status %s -> %s (actor=%s, action=%s)",
        app.id,
        current.value,
        new_status.value,
        actor_id if actor_id is not None else "provider",
        action.value,
    )
    return TransitionResult(app, current, True)


# ---------------------------------------------------------------------------
# Renewal
# ---------------------------------------------------------------------------


def check_renewal_eligibility(
    app: PermitApplication,
    today: date | None = None,
) -> tuple[bool, str, int | None]:
    """Return (eligible, reason, days_until_expiration).

    A permit can be renewed from 7 days before until 15 days after its
    expiration date, and only once it has actually been issued.
    """
    status = PermitStatus(app.status)
    if status not in RENEWABLE_STATUSES:
        return False, f"Permits in status '{status.value}' cannot be renewed.", None
    if app.fecha_vencimiento is None:
        return False, "Permit has no expiration date.", None

    today = today or datetime.now(UTC).date()
    days = (app.fecha_vencimiento - today).days
    if days > settings.RENEWAL_WINDOW_DAYS_BEFORE:
        return (
            False,
            f"Renewal opens {settings.RENEWAL_WINDOW_DAYS_BEFORE} days before expiration.",
            days,
        )
    if days < -settings.RENEWAL_WINDOW_DAYS_AFTER:
        return (
            False,
            f"Renewal closed {settings.RENEWAL_WINDOW_DAYS_AFTER} days after expiration.",
            days,
        )
    return True, "Permit is eligible for renewal.", days


async def create_renewal(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    *,
    today: date | None = None,
) -> PermitApplication | None:
    """Create a new RENEWAL_PENDING application linked to an issued permit.

    Returns None if the original is not visible to the user. Raises
    RenewalNotAllowedError when outside the window or when a renewal that
    is still in flight already exists.
    """
    original = await get_application(session, user, application_id)
    if original is None:
        return None

    eligible, reason, _ = check_renewal_eligibility(original, today)
    if not eligible:
        raise RenewalNotAllowedError(reason)

    dead_ends = PermitStatus.terminal_statuses() | {PermitStatus.RENEWAL_REJECTED}
    existing_stmt = select(func.count(PermitApplication.id)).where(
        PermitApplication.renewed_from_id == original.id,
        PermitApplication.status.notin_([s.value for s in dead_ends]),
    )
    if ((await session.execute(existing_stmt)).scalar() or 0) > 0:
        raise RenewalNotAllowedError(f"Application {application_id} already has a renewal in progress.")

    renewal = PermitApplication(
        user_id=original.user_id,
        status=PermitStatus.RENEWAL_PENDING,
        importe=settings.PERMIT_FEE,
        renewed_from_id=original.id,
        renewal_count=(original.renewal_count or 0) + 1,
        **{field: getattr(original, field) for field in _COPIED_ON_RENEWAL},
    )
    session.add(renewal)
    await session.flush()
    logger.info("Renewal %s created from application %s", renewal.id, original.id)
    return renewal
