# This project was developed with assistance from AI tools.
"""Admin portal endpoints: dashboard, applications, permit files, audit trails, users."""

import logging

from db import DatabaseService, get_db, get_db_service
from db.enums import PermitFileType, PermitStatus, UserRole
from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..middleware.auth import require_roles
from ..schemas import Pagination
from ..schemas.admin import (
    DashboardStats,
    PasswordResetIssued,
    SecurityAuditItem,
    SecurityAuditResponse,
    StatusChangeRequest,
    UserListResponse,
    UserStatusRequest,
    VerificationHistoryResponse,
    VerificationLogItem,
)
from ..schemas.application import ApplicationListResponse, ApplicationResponse, PermitUploadResponse
from ..schemas.auth import UserContext, UserResponse
from ..services import application as app_service
from ..services import permit_file as permit_file_service
from ..services import user as user_service
from ..services.application import InvalidTransitionError
from ..services.audit import (
    get_verification_history,
    search_security_events,
    write_security_event,
)
from ..services.permit_file import PermitFileNotAllowedError, PermitUploadError
from ..services.storage import get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter()

require_admin = require_roles(UserRole.ADMIN)

_PENDING_PAYMENT = (
    PermitStatus.AWAITING_PAYMENT,
    PermitStatus.AWAITING_OXXO_PAYMENT,
    PermitStatus.PAYMENT_PROCESSING,
)


def _not_found(what: str = "Application") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/dashboard-stats", response_model=DashboardStats, dependencies=[Depends(require_admin)])
async def dashboard_stats(session: AsyncSession = Depends(get_db)) -> DashboardStats:
    """Application counts per status plus a few rollups for the dashboard cards."""
    counts = await app_service.count_by_status(session)
    return DashboardStats(
        total_applications=sum(counts.values()),
        status_counts=counts,
        pending_payment=sum(counts[s.value] for s in _PENDING_PAYMENT),
        paid=sum(counts[s.value] for s in PermitStatus.paid_statuses()),
        permits_ready=counts[PermitStatus.PERMIT_READY.value],
    )


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@router.get("/applications", response_model=ApplicationListResponse)
async def list_applications(
    admin: UserContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    filter_status: PermitStatus | None = None,
    search: str | None = Query(default=None, max_length=100),
) -> ApplicationListResponse:
    """All applications, filterable by status and free-text search."""
    applications, total = await app_service.list_applications(
        session, admin, offset=offset, limit=limit, filter_status=filter_status, search=search
    )
    return ApplicationListResponse(
        data=[ApplicationResponse.model_validate(a) for a in applications],
        pagination=Pagination.of(total, offset, limit),
    )


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: int,
    admin: UserContext = Depends(require_admin),
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    app = await app_service.get_application(session, admin, application_id)
    if app is None:
        raise _not_found()
    return ApplicationResponse.model_validate(app)


@router.patch("/applications/{application_id}/status", response_model=ApplicationResponse)
async def change_status(
    application_id: int,
    body: StatusChangeRequest,
    request: Request,
    admin: UserContext = Depends(require_admin),
    db_service: DatabaseService = Depends(get_db_service),
) -> ApplicationResponse:
    """Move an application through the lifecycle. Moves outside the table answer 409."""

    async def _change(session):
        result = await app_service.transition_status(
            session,
            application_id,
            body.status,
            actor_id=admin.user_id,
            notes=body.notes,
        )
        if result is None:
            return None
        if result.changed:
            await write_security_event(
                session,
                action_type="admin_status_change",
                user_id=admin.user_id,
                ip_address=request.client.host if request.client else None,
                details={
                    "application_id": application_id,
                    "from": result.previous.value,
                    "to": body.status.value,
                },
            )
        return ApplicationResponse.model_validate(result.application)

    try:
        app = await db_service.with_transaction(_change, context="admin status change")
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if app is None:
        raise _not_found()
    return app


@router.get(
    "/applications/{application_id}/verification-history",
    response_model=VerificationHistoryResponse,
    dependencies=[Depends(require_admin)],
)
async def verification_history(
    application_id: int,
    session: AsyncSession = Depends(get_db),
) -> VerificationHistoryResponse:
    """Every recorded status change for one application, oldest first."""
    events = await get_verification_history(session, application_id)
    return VerificationHistoryResponse(
        application_id=application_id,
        count=len(events),
        events=[VerificationLogItem.model_validate(e) for e in events],
    )


# ---------------------------------------------------------------------------
# Security audit log
# ---------------------------------------------------------------------------


@router.get("/security-audit", response_model=SecurityAuditResponse, dependencies=[Depends(require_admin)])
async def security_audit(
    session: AsyncSession = Depends(get_db),
    action_type: str | None = None,
    user_id: int | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
) -> SecurityAuditResponse:
    events, total = await search_security_events(
        session, action_type=action_type, user_id=user_id, offset=offset, limit=limit
    )
    return SecurityAuditResponse(
        data=[SecurityAuditItem.model_validate(e) for e in events],
        pagination=Pagination.of(total, offset, limit),
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse, dependencies=[Depends(require_admin)])
async def list_users(
    session: AsyncSession = Depends(get_db),
    role: UserRole | None = None,
    search: str | None = Query(default=None, max_length=100),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
) -> UserListResponse:
    users, total = await user_service.list_users(
        session, role=role, search=search, offset=offset, limit=limit
    )
    return UserListResponse(
        data=[UserResponse.model_validate(u) for u in users],
        pagination=Pagination.of(total, offset, limit),
    )


@router.get("/users/{user_id}", response_model=UserResponse, dependencies=[Depends(require_admin)])
async def get_user(user_id: int, session: AsyncSession = Depends(get_db)) -> UserResponse:
    user = await user_service.get_user(session, user_id)
    if user is None:
        raise _not_found("User")
    return UserResponse.model_validate(user)


@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def set_user_status(
    user_id: int,
    body: UserStatusRequest,
    request: Request,
    admin: UserContext = Depends(require_admin),
    db_service: DatabaseService = Depends(get_db_service),
) -> UserResponse:
    """Enable or disable an account. Disabling also ends its sessions."""
    if user_id == admin.user_id and not body.is_active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Admins cannot disable their own account"
        )

    async def _set(session):
        user = await user_service.set_user_active(session, user_id, body.is_active)
        if user is None:
            return None
        await write_security_event(
            session,
            action_type="user_enabled" if body.is_active else "user_disabled",
            user_id=admin.user_id,
            ip_address=request.client.host if request.client else None,
            details={"target_user_id": user_id},
        )
        return UserResponse.model_validate(user)

    result = await db_service.with_transaction(_set, context="set user status")
    if result is None:
        raise _not_found("User")
    return result


@router.post(
    "/users/{user_id}/password-reset",
    response_model=PasswordResetIssued,
    status_code=status.HTTP_201_CREATED,
)
async def issue_password_reset(
    user_id: int,
    request: Request,
    admin: UserContext = Depends(require_admin),
    db_service: DatabaseService = Depends(get_db_service),
) -> PasswordResetIssued:
    """Issue a single-use reset token for an active account. The raw token is shown once."""

    async def _issue(session):
        issued = await user_service.create_password_reset(
            session, user_id, ttl_minutes=settings.PASSWORD_RESET_TTL_MINUTES
        )
        if issued is None:
            return None
        token, row = issued
        await write_security_event(
            session,
            action_type="password_reset_issued",
            user_id=admin.user_id,
            ip_address=request.client.host if request.client else None,
            details={"target_user_id": user_id},
        )
        return PasswordResetIssued(user_id=user_id, token=token, expires_at=row.expires_at)

    result = await db_service.with_transaction(_issue, context="issue password reset")
    if result is None:
        raise _not_found("User")
    return result


# ---------------------------------------------------------------------------
# Permit files
# ---------------------------------------------------------------------------


@router.post(
    "/applications/{application_id}/permits/{file_type}",
    response_model=PermitUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_permit_file(
    application_id: int,
    file_type: PermitFileType,
    request: Request,
    admin: UserContext = Depends(require_admin),
    file: UploadFile = File(...),
    db_service: DatabaseService = Depends(get_db_service),
) -> PermitUploadResponse:
    """Attach a generated permit document. Replaces any earlier file of that type."""
    content_type = file.content_type or ""
    if content_type not in permit_file_service.ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=422,
            detail=f"Unsupported file type: {content_type}. "
            f"Allowed: {', '.join(sorted(permit_file_service.ALLOWED_CONTENT_TYPES))}",
        )

    file_data = await file.read()

    try:
        attached = await permit_file_service.upload_permit_file(
            db_service,
            get_storage_service(),
            application_id=application_id,
            file_type=file_type,
            filename=file.filename or f"{file_type.value}.pdf",
            content_type=content_type,
            file_data=file_data,
            actor_id=admin.user_id,
            ip_address=request.client.host if request.client else None,
        )
    except PermitUploadError as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except PermitFileNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    if attached is None:
        raise _not_found()
    return PermitUploadResponse(
        application_id=application_id,
        file_type=file_type.value,
        object_key=attached.object_key,
        status=PermitStatus(attached.application.status),
    )
