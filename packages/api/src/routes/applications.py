# This project was developed with assistance from AI tools.
"""Client permit application and payment routes.

Reads use the request-scoped session; writes run inside
``DatabaseService.with_transaction`` so each request commits or rolls back
as one unit.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal

from db import DatabaseService, get_db, get_db_service
from db.enums import PermitFileType, PermitStatus, UserRole
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..middleware.auth import CurrentUser, require_roles
from ..schemas import Pagination
from ..schemas.application import (
    ApplicationCreate,
    ApplicationListResponse,
    ApplicationResponse,
    ApplicationStatusResponse,
    ApplicationUpdate,
    PermitDownloadResponse,
    RenewalEligibilityResponse,
)
from ..schemas.payment import PaymentIntentResponse, PaymentStartRequest, PaymentStatusResponse
from ..services import application as app_service
from ..services import payment as payment_service
from ..services.application import ApplicationLockedError, RenewalNotAllowedError
from ..services.payment import PaymentNotAllowedError, PaymentProviderError
from ..services.permit_file import FILE_COLUMNS
from ..services.status import get_application_status
from ..services.storage import get_storage_service

logger = logging.getLogger(__name__)

router = APIRouter()

_ANY_ROLE = [Depends(require_roles(UserRole.CLIENT, UserRole.ADMIN))]

_DOWNLOADABLE_STATUSES = frozenset({PermitStatus.PERMIT_READY, PermitStatus.COMPLETED})


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")


@router.get("/", response_model=ApplicationListResponse, dependencies=_ANY_ROLE)
async def list_applications(
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=100),
    filter_status: PermitStatus | None = None,
) -> ApplicationListResponse:
    """List the current user's applications, newest first."""
    applications, total = await app_service.list_applications(
        session, user, offset=offset, limit=limit, filter_status=filter_status
    )
    return ApplicationListResponse(
        data=[ApplicationResponse.model_validate(a) for a in applications],
        pagination=Pagination.of(total, offset, limit),
    )


@router.post(
    "/",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=_ANY_ROLE,
)
async def create_application(
    body: ApplicationCreate,
    user: CurrentUser,
    db_service: DatabaseService = Depends(get_db_service),
) -> ApplicationResponse:
    """Submit a new application. It starts awaiting card or OXXO payment."""

    async def _create(session):
        app = await app_service.create_application(
            session,
            user,
            body.model_dump(exclude={"payment_method"}),
            payment_method=body.payment_method,
        )
        return ApplicationResponse.model_validate(app)

    return await db_service.with_transaction(_create, context="create application")


@router.get("/{application_id}", response_model=ApplicationResponse, dependencies=_ANY_ROLE)
async def get_application(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationResponse:
    """Get a single application. Returns 404 for applications owned by someone else."""
    app = await app_service.get_application(session, user, application_id)
    if app is None:
        raise _not_found()
    return ApplicationResponse.model_validate(app)


@router.patch("/{application_id}", response_model=ApplicationResponse, dependencies=_ANY_ROLE)
async def update_application(
    application_id: int,
    body: ApplicationUpdate,
    user: CurrentUser,
    db_service: DatabaseService = Depends(get_db_service),
) -> ApplicationResponse:
    """Edit applicant/vehicle data. Only allowed before payment succeeds."""

    async def _update(session):
        app = await app_service.update_application(
            session, user, application_id, **body.model_dump(exclude_unset=True)
        )
        return ApplicationResponse.model_validate(app) if app is not None else None

    try:
        result = await db_service.with_transaction(_update, context="update application")
    except ApplicationLockedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if result is None:
        raise _not_found()
    return result


@router.get(
    "/{application_id}/status",
    response_model=ApplicationStatusResponse,
    dependencies=_ANY_ROLE,
)
async def get_status(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> ApplicationStatusResponse:
    """Status summary with a human-readable next step."""
    result = await get_application_status(session, user, application_id)
    if result is None:
        raise _not_found()
    return result


@router.get(
    "/{application_id}/renewal-eligibility",
    response_model=RenewalEligibilityResponse,
    dependencies=_ANY_ROLE,
)
async def renewal_eligibility(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> RenewalEligibilityResponse:
    app = await app_service.get_application(session, user, application_id)
    if app is None:
        raise _not_found()
    eligible, reason, days = app_service.check_renewal_eligibility(app)
    return RenewalEligibilityResponse(
        application_id=app.id,
        eligible=eligible,
        reason=reason,
        days_until_expiration=days,
        fecha_vencimiento=app.fecha_vencimiento,
    )


@router.post(
    "/{application_id}/renew",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=_ANY_ROLE,
)
async def renew_application(
    application_id: int,
    user: CurrentUser,
    db_service: DatabaseService = Depends(get_db_service),
) -> ApplicationResponse:
    """Open a renewal for an issued permit inside its renewal window."""

    async def _renew(session):
        renewal = await app_service.create_renewal(session, user, application_id)
        return ApplicationResponse.model_validate(renewal) if renewal is not None else None

    try:
        result = await db_service.with_transaction(_renew, context="renew application")
    except RenewalNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if result is None:
        raise _not_found()
    return result


@router.get(
    "/{application_id}/permits/{file_type}",
    response_model=PermitDownloadResponse,
    dependencies=_ANY_ROLE,
)
async def permit_download_url(
    application_id: int,
    file_type: PermitFileType,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> PermitDownloadResponse:
    """Presigned download URL for one generated permit document."""
    app = await app_service.get_application(session, user, application_id)
    if app is None:
        raise _not_found()

    if PermitStatus(app.status) not in _DOWNLOADABLE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Permit is not ready (status '{PermitStatus(app.status).value}').",
        )

    object_key = getattr(app, FILE_COLUMNS[file_type])
    storage = get_storage_service()
    if not object_key or not await storage.file_exists(object_key):
        logger.warning(
            "Permit file %s missing for application %s (key=%s)",
            file_type.value,
            application_id,
            object_key,
        )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Permit file not found")

    url = await storage.get_download_url(object_key, expires_in=settings.PERMIT_URL_EXPIRES_SECONDS)
    return PermitDownloadResponse(
        application_id=app.id,
        file_type=file_type.value,
        url=url,
        expires_in=settings.PERMIT_URL_EXPIRES_SECONDS,
    )


def _require_provider_key() -> str:
    if not settings.STRIPE_API_KEY:
        logger.error("Payment requested but STRIPE_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payments are not configured",
        )
    return settings.STRIPE_API_KEY


def _provider_unavailable(exc: PaymentProviderError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


@router.post(
    "/{application_id}/payment",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=_ANY_ROLE,
)
async def start_payment(
    application_id: int,
    body: PaymentStartRequest,
    user: CurrentUser,
    db_service: DatabaseService = Depends(get_db_service),
) -> PaymentIntentResponse:
    """Create a card or OXXO payment intent for an unpaid application."""
    api_key = _require_provider_key()

    async def _start(session):
        started = await payment_service.start_payment(
            session,
            user,
            application_id,
            body.payment_method,
            api_key=api_key,
            amount=settings.PERMIT_FEE,
            oxxo_expires_after_days=settings.OXXO_EXPIRES_AFTER_DAYS,
        )
        if started is None:
            return None
        app, intent = started
        voucher = payment_service.oxxo_details(intent)
        expires_after = voucher.get("expires_after")
        return PaymentIntentResponse(
            application_id=app.id,
            payment_intent_id=intent["id"],
            payment_method=body.payment_method,
            provider_status=intent.get("status", "unknown"),
            client_secret=intent.get("client_secret"),
            amount=Decimal(intent["amount"]) / 100,
            currency=intent.get("currency", "mxn"),
            status=PermitStatus(app.status),
            oxxo_reference=voucher.get("number"),
            voucher_url=voucher.get("hosted_voucher_url"),
            expires_at=datetime.fromtimestamp(expires_after, UTC) if expires_after else None,
        )

    try:
        result = await db_service.with_transaction(_start, context="start payment")
    except PaymentNotAllowedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise _provider_unavailable(exc) from exc
    if result is None:
        raise _not_found()
    return result


@router.get(
    "/{application_id}/payment",
    response_model=PaymentStatusResponse,
    dependencies=_ANY_ROLE,
)
async def payment_status(
    application_id: int,
    user: CurrentUser,
    session: AsyncSession = Depends(get_db),
) -> PaymentStatusResponse:
    """Provider-side state of the application's payment intent."""
    api_key = _require_provider_key()
    try:
        found = await payment_service.get_payment_status(
            session, user, application_id, api_key=api_key
        )
    except PaymentProviderError as exc:
        raise _provider_unavailable(exc) from exc
    if found is None:
        raise _not_found()
    app, intent = found
    return PaymentStatusResponse(
        application_id=app.id,
        status=PermitStatus(app.status),
        payment_intent_id=app.payment_processor_order_id,
        provider_status=intent.get("status") if intent else None,
        payment_reference=app.payment_reference,
        payment_verified_at=app.payment_verified_at,
    )
