# This project was developed with assistance from AI tools.
"""Payment schemas: intent creation, status lookup and webhook acknowledgement."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from db.enums import PermitStatus, WebhookOutcome
from pydantic import BaseModel


class PaymentStartRequest(BaseModel):
    payment_method: Literal["card", "oxxo"] = "card"


class PaymentIntentResponse(BaseModel):
    """Intent created for an application.

    ``client_secret`` lets the browser confirm a card payment. OXXO intents
    carry the voucher number and the hosted voucher page instead.
    """

    application_id: int
    payment_intent_id: str
    payment_method: str
    provider_status: str
    client_secret: str | None = None
    amount: Decimal
    currency: str
    status: PermitStatus
    oxxo_reference: str | None = None
    voucher_url: str | None = None
    expires_at: datetime | None = None


class PaymentStatusResponse(BaseModel):
    application_id: int
    status: PermitStatus
    payment_intent_id: str | None = None
    provider_status: str | None = None
    payment_reference: str | None = None
    payment_verified_at: datetime | None = None


class WebhookAck(BaseModel):
    """Body returned to the payment provider for every verified event."""

    received: bool = True
    event_id: str
    event_type: str
    outcome: WebhookOutcome
    application_id: int | None = None
