# This project was developed with assistance from AI tools.
"""Payment provider webhook endpoint.

Unauthenticated: trust comes from the signature over the raw body. A 500
tells the provider to redeliver, so it is only returned when the event
could not be committed.
"""

import logging

from db import DatabaseError, DatabaseService, get_db_service
from db.enums import WebhookOutcome
from fastapi import APIRouter, Depends, HTTPException, Request, status

from ..core.config import settings
from ..schemas.payment import WebhookAck
from ..services.payment import (
    WebhookPayloadError,
    WebhookSignatureError,
    process_webhook_event,
    verify_event,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "Stripe-Signature"
_UNIQUE_VIOLATION = "23505"


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db_service: DatabaseService = Depends(get_db_service),
) -> WebhookAck:
    """Verify, deduplicate and apply one payment provider event."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook verification is not configured",
        )

    payload = await request.body()
    try:
        event = verify_event(
            payload,
            request.headers.get(SIGNATURE_HEADER),
            settings.STRIPE_WEBHOOK_SECRET,
            settings.STRIPE_WEBHOOK_TOLERANCE,
        )
    except WebhookSignatureError as exc:
        logger.warning("Webhook signature rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc
    except WebhookPayloadError as exc:
        logger.warning("Webhook payload rejected: %s", exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    try:
        return await process_webhook_event(db_service, event)
    except DatabaseError as exc:
        if exc.code == _UNIQUE_VIOLATION:
            # A concurrent delivery of the same event committed first.
            logger.info("Webhook %s lost the race to a concurrent delivery", event["id"])
            return WebhookAck(
                event_id=event["id"], event_type=event["type"], outcome=WebhookOutcome.DUPLICATE
            )
        logger.error("Webhook %s (%s) not applied: %s", event["id"], event["type"], exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Event could not be processed; it will be retried.",
        ) from exc
