# This project was developed with assistance from AI tools.
"""Application status summary service.

Turns the raw status of a permit application into a summary the client
portal can show directly: label, explanation, next step, and which
statuses it may move to.
"""

from db.enums import PermitStatus
from sqlalchemy.ext.asyncio import AsyncSession

from ..schemas.application import ApplicationStatusResponse, StatusInfo
from ..schemas.auth import UserContext
from .application import get_application

STATUS_INFO: dict[PermitStatus, StatusInfo] = {
    PermitStatus.AWAITING_PAYMENT: StatusInfo(
        label="Pago pendiente",
        description="Your application was received and is waiting for payment.",
        next_step="Pay the permit fee by card to continue.",
    ),
    PermitStatus.AWAITING_OXXO_PAYMENT: StatusInfo(
        label="Pago OXXO pendiente",
        description="An OXXO voucher was issued for this application.",
        next_step="Pay the voucher at any OXXO store before it expires.",
    ),
    PermitStatus.PAYMENT_PROCESSING: StatusInfo(
        label="Procesando pago",
        description="The payment provider is confirming your payment.",
        next_step="No action needed; this usually takes a few minutes.",
    ),
    PermitStatus.PAYMENT_FAILED: StatusInfo(
        label="Pago rechazado",
        description="The payment could not be completed.",
        next_step="Review your payment details and try again.",
    ),
    PermitStatus.PAYMENT_RECEIVED: StatusInfo(
        label="Pago recibido",
        description="Your payment was confirmed.",
        next_step="Your permit will be generated shortly.",
    ),
    PermitStatus.GENERATING_PERMIT: StatusInfo(
        label="Generando permiso",
        description="Your permit documents are being generated.",
        next_step="No action needed.",
    ),
    PermitStatus.ERROR_GENERATING_PERMIT: StatusInfo(
        label="Error al generar",
        description="Permit generation failed; staff have been notified.",
        next_step="No action needed; generation will be retried.",
    ),
    PermitStatus.PERMIT_READY: StatusInfo(
        label="Permiso listo",
        description="Your permit is ready to download.",
        next_step="Download and print your permit documents.",
    ),
    PermitStatus.COMPLETED: StatusInfo(
        label="Completado",
        description="The permit was delivered.",
        next_step="Renew it up to 7 days before it expires.",
    ),
    PermitStatus.CANCELLED: StatusInfo(
        label="Cancelado",
        description="This application was cancelled.",
        next_step="Start a new application if you still need a permit.",
    ),
    PermitStatus.EXPIRED: StatusInfo(
        label="Vencido",
        description="This permit or payment voucher has expired.",
        next_step="Start a new application or request a renewal.",
    ),
    PermitStatus.RENEWAL_PENDING: StatusInfo(
        label="Renovación pendiente",
        description="Your renewal request is being reviewed.",
        next_step="You will be asked to pay once it is approved.",
    ),
    PermitStatus.RENEWAL_APPROVED: StatusInfo(
        label="Renovación aprobada",
        description="Your renewal was approved.",
        next_step="Pay the permit fee to receive the renewed permit.",
    ),
    PermitStatus.RENEWAL_REJECTED: StatusInfo(
        label="Renovación rechazada",
        description="Your renewal request was not approved.",
        next_step="Start a new application.",
    ),
}


async def get_application_status(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
) -> ApplicationStatusResponse | None:
    """Return the status summary, or None if the application is not visible."""
    app = await get_application(session, user, application_id)
    if app is None:
        return None

    status = PermitStatus(app.status)
    allowed = PermitStatus.valid_transitions().get(status, frozenset())
    return ApplicationStatusResponse(
        application_id=app.id,
        status=status,
        status_info=STATUS_INFO[status],
        is_terminal=status in PermitStatus.terminal_statuses(),
        is_paid=status in PermitStatus.paid_statuses(),
        allowed_transitions=sorted(allowed, key=lambda s: s.value),
        updated_at=app.updated_at,
    )
