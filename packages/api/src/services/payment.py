# This project was developed with assistance from AI tools.
"""Payment intent creation and provider webhook processing.

A verified provider event is mapped to a target permit status and applied
through ``transition_status`` inside one ``DatabaseService`` transaction,
together with the replay-protection row in ``webhook_events`` and the
verification log entry. Either all of it is committed or none of it is.

Deduplication:
  - an ``event_id`` already in ``webhook_events`` changes nothing (DUPLICATE)
  - a target equal to the current status is a no-op (UNCHANGED)
  - a target not reachable from the current status is recorded and skipped
    (IGNORED), so a late success never regresses an issued permit
"""

import asyncio
import json
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from functools import partial
from typing import Any, NamedTuple

import stripe
from db import DatabaseService, PermitApplication, WebhookEvent
from db.enums import PermitStatus, VerificationAction, WebhookOutcome
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..schemas.auth import UserContext
from ..schemas.payment import WebhookAck
from .application import (
    InvalidTransitionError,
    find_by_payment_intent,
    get_application,
    transition_status,
)

logger = logging.getLogger(__name__)

OXXO_NEXT_ACTION = "oxxo_display_details"


class WebhookSignatureError(Exception):
    """Signature header missing, malformed, stale or not matching the secret."""


class WebhookPayloadError(Exception):
    """Body verified but is not a well-formed provider event."""


class StatusMapping(NamedTuple):
    target: PermitStatus
    action: VerificationAction
    updates: dict[str, Any]


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_event(
    payload: bytes,
    signature: str | None,
    secret: str,
    tolerance: int = 300,
) -> dict:
    """Verify the provider signature over the raw body and return the parsed event."""
    if not signature:
        raise WebhookSignatureError("Missing signature header")

    try:
        text_payload = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise WebhookPayloadError("Webhook body is not valid UTF-8") from exc

    try:
        stripe.WebhookSignature.verify_header(text_payload, signature, secret, tolerance)
    except stripe.SignatureVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc

    try:
        event = json.loads(text_payload)
    except ValueError as exc:
        raise WebhookPayloadError("Webhook body is not valid JSON") from exc

    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise WebhookPayloadError("Webhook event is missing id or type")
    data = event.get("data")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise WebhookPayloadError("Webhook event has no data.object")
    return event


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def map_event(event_type: str, intent: dict) -> StatusMapping | None:
    """Return the status a payment intent event moves an application to, or None."""
    if event_type == "payment_intent.succeeded":
        return StatusMapping(PermitStatus.PAYMENT_RECEIVED, VerificationAction.PROVIDER_CONFIRMED, {})

    if event_type == "payment_intent.processing":
        return StatusMapping(PermitStatus.PAYMENT_PROCESSING, VerificationAction.PROVIDER_PENDING, {})

    if event_type == "payment_intent.requires_action":
        next_action = intent.get("next_action") or {}
        if next_action.get("type") == OXXO_NEXT_ACTION:
            voucher = (next_action.get(OXXO_NEXT_ACTION) or {}).get("number")
            return StatusMapping(
                PermitStatus.AWAITING_OXXO_PAYMENT,
                VerificationAction.PROVIDER_PENDING,
                {"payment_reference": voucher},
            )
        return StatusMapping(PermitStatus.PAYMENT_PROCESSING, VerificationAction.PROVIDER_PENDING, {})

    if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
        return StatusMapping(PermitStatus.PAYMENT_FAILED, VerificationAction.PROVIDER_FAILED, {})

    return None


def _metadata_application_id(intent: dict) -> int | None:
    raw = (intent.get("metadata") or {}).get("application_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric metadata.application_id=%r", raw)
        return None


async def _find_application(session: AsyncSession, intent: dict) -> PermitApplication | None:
    application_id = _metadata_application_id(intent)
    if application_id is not None:
        result = await session.execute(
            select(PermitApplication).where(PermitApplication.id == application_id)
        )
        app = result.unique().scalar_one_or_none()
        if app is not None:
            return app
    intent_id = intent.get("id")
    if not intent_id:
        return None
    return await find_by_payment_intent(session, intent_id)


async def _already_processed(session: AsyncSession, event_id: str) -> bool:
    result = await session.execute(select(WebhookEvent.id).where(WebhookEvent.event_id == event_id))
    return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


async def apply_event(session: AsyncSession, event: dict) -> WebhookAck:
    """Apply one verified event using the caller's transaction."""
    event_id = event["id"]
    event_type = event["type"]
    intent = event["data"]["object"]

    if await _already_processed(session, event_id):
        logger.info("Webhook %s (%s) already processed", event_id, event_type)
        return WebhookAck(event_id=event_id, event_type=event_type, outcome=WebhookOutcome.DUPLICATE)

    application_id: int | None = None
    mapping = map_event(event_type, intent)
    if mapping is None:
        outcome = WebhookOutcome.UNHANDLED
        logger.info("Webhook %s: no handler for event type %s", event_id, event_type)
    else:
        app = await _find_application(session, intent)
        if app is None:
            outcome = WebhookOutcome.NOT_FOUND
            logger.warning(
                "Webhook %s (%s): no application for payment intent %s",
                event_id,
                event_type,
                intent.get("id"),
            )
        else:
            application_id = app.id
            outcome = await _transition(session, app.id, mapping, event_id, event_type, intent)

    session.add(
        WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            application_id=application_id,
            outcome=outcome.value,
        )
    )
    await session.flush()
    return WebhookAck(
        event_id=event_id,
        event_type=event_type,
        outcome=outcome,
        application_id=application_id,
    )


async def _transition(
    session: AsyncSession,
    application_id: int,
    mapping: StatusMapping,
    event_id: str,
    event_type: str,
    intent: dict,
) -> WebhookOutcome:
    try:
        result = await transition_status(
            session,
            application_id,
            mapping.target,
            action=mapping.action,
            notes=f"{event_type} ({event_id})",
            payment_processor_order_id=intent.get("id"),
            **mapping.updates,
        )
    except InvalidTransitionError as exc:
        logger.warning(
            "Webhook %s (%s) ignored for application %s: %s",
            event_id,
            event_type,
            application_id,
            exc,
        )
        return WebhookOutcome.IGNORED

    if result is None:
        return WebhookOutcome.NOT_FOUND
    return WebhookOutcome.APPLIED if result.changed else WebhookOutcome.UNCHANGED


async def process_webhook_event(db_service: DatabaseService, event: dict) -> WebhookAck:
    """Apply a verified event in its own transaction.

    Any database failure rolls the whole event back and raises
    ``DatabaseError``; the provider will redeliver it.
    """
    ack = await db_service.with_transaction(
        lambda session: apply_event(session, event),
        context=f"webhook {event['type']} {event['id']}",
    )
    logger.info(
        "Webhook %s (%s) processed: outcome=%s application=%s",
        ack.event_id,
        ack.event_type,
        ack.outcome.value,
        ack.application_id,
    )
    return ack


# ---------------------------------------------------------------------------
# Payment creation
# ---------------------------------------------------------------------------

PAYABLE_STATUSES = frozenset(
    {PermitStatus.AWAITING_PAYMENT, PermitStatus.AWAITING_OXXO_PAYMENT, PermitStatus.PAYMENT_FAILED}
)


class PaymentProviderError(Exception):
    """The provider rejected a request or could not be reached."""


class PaymentNotAllowedError(ValueError):
    """Application is not in a status that accepts a new payment attempt."""


class StartedPayment(NamedTuple):
    application: PermitApplication
    intent: dict


def _as_dict(obj) -> dict:
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


async def _call_provider(operation: str, fn, **params) -> dict:
    loop = asyncio.get_running_loop()
    try:
        result = await loop.run_in_executor(None, partial(fn, **params))
    except stripe.StripeError as exc:
        logger.error("Payment provider %s failed: %s", operation, exc)
        raise PaymentProviderError(f"Payment provider {operation} failed") from exc
    return _as_dict(result)


def to_centavos(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def oxxo_details(intent: dict) -> dict:
    """Voucher details of an OXXO intent (number, expires_after, hosted_voucher_url)."""
    next_action = intent.get("next_action") or {}
    if next_action.get("type") != OXXO_NEXT_ACTION:
        return {}
    return next_action.get(OXXO_NEXT_ACTION) or {}


async def create_payment_intent(
    application: PermitApplication,
    method: str,
    *,
    api_key: str,
    amount: Decimal,
    customer_email: str,
    oxxo_expires_after_days: int = 3,
) -> dict:
    """Create a provider payment intent for one application.

    Card intents are confirmed later by the browser with the returned
    ``client_secret``. OXXO intents are confirmed here so the voucher number
    exists before the response; one without a voucher raises
    PaymentProviderError.
    """
    params = {
        "api_key": api_key,
        "amount": to_centavos(amount),
        "currency": "mxn",
        "description": (
            f"Permiso de Circulación - {application.marca} {application.linea} {application.ano_modelo}"
        ),
        "payment_method_types": [method],
        "metadata": {
            "application_id": str(application.id),
            "reference_id": f"APP-{application.id}",
        },
        "idempotency_key": f"pi-{method}-{uuid.uuid4()}",
    }
    if method == "oxxo":
        params.update(
            confirm=True,
            payment_method_data={
                "type": "oxxo",
                "billing_details": {"name": application.nombre_completo, "email": customer_email},
            },
            payment_method_options={"oxxo": {"expires_after_days": oxxo_expires_after_days}},
        )

    intent = await _call_provider("create", stripe.PaymentIntent.create, **params)
    if method == "oxxo" and not oxxo_details(intent).get("number"):
        logger.error(
            "OXXO intent %s for application %s has no voucher (status=%s)",
            intent.get("id"),
            application.id,
            intent.get("status"),
        )
        raise PaymentProviderError("Payment provider did not return an OXXO voucher")
    logger.info(
        "Payment intent %s created for application %s (method=%s, status=%s)",
        intent.get("id"),
        application.id,
        method,
        intent.get("status"),
    )
    return intent


def _payment_target(current: PermitStatus, method: str) -> PermitStatus:
    if method == "oxxo":
        return PermitStatus.AWAITING_OXXO_PAYMENT
    if current == PermitStatus.PAYMENT_FAILED:
        return PermitStatus.AWAITING_PAYMENT
    return current


async def start_payment(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    method: str,
    *,
    api_key: str,
    amount: Decimal,
    oxxo_expires_after_days: int = 3,
) -> StartedPayment | None:
    """Create a payment intent and record it on the application.

    Returns None when the application is not visible to ``user``. Raises
    PaymentNotAllowedError once the application is paid, cancelled or
    otherwise past the payment stage.
    """
    app = await get_application(session, user, application_id)
    if app is None:
        return None
    current = PermitStatus(app.status)
    if current not in PAYABLE_STATUSES:
        raise PaymentNotAllowedError(f"Application in status '{current.value}' cannot be paid.")

    intent = await create_payment_intent(
        app,
        method,
        api_key=api_key,
        amount=app.importe or amount,
        customer_email=user.email,
        oxxo_expires_after_days=oxxo_expires_after_days,
    )
    result = await transition_status(
        session,
        app.id,
        _payment_target(current, method),
        actor_id=user.user_id,
        notes=f"Payment intent {intent['id']} created ({method})",
        payment_processor_order_id=intent["id"],
        payment_reference=oxxo_details(intent).get("number"),
    )
    if result is None:
        return None
    return StartedPayment(result.application, intent)


async def get_payment_status(
    session: AsyncSession,
    user: UserContext,
    application_id: int,
    *,
    api_key: str,
) -> tuple[PermitApplication, dict | None] | None:
    """Application plus its current provider intent, if one was created.

    Read-only: the permit status only moves on verified webhook events.
    """
    app = await get_application(session, user, application_id)
    if app is None:
        return None
    if not app.payment_processor_order_id:
        return app, None
    intent = await _call_provider(
        "retrieve",
        stripe.PaymentIntent.retrieve,
        id=app.payment_processor_order_id,
        api_key=api_key,
    )
    return app, intent
