# This project was developed with assistance from AI tools.
"""
Domain enums for the permit application lifecycle.

Shared domain types used by both SQLAlchemy models (db package)
and Pydantic schemas (api package).
"""

import enum


class PermitStatus(str, enum.Enum):
    AWAITING_PAYMENT = "AWAITING_PAYMENT"
    AWAITING_OXXO_PAYMENT = "AWAITING_OXXO_PAYMENT"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    GENERATING_PERMIT = "GENERATING_PERMIT"
    ERROR_GENERATING_PERMIT = "ERROR_GENERATING_PERMIT"
    PERMIT_READY = "PERMIT_READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    RENEWAL_PENDING = "RENEWAL_PENDING"
    RENEWAL_APPROVED = "RENEWAL_APPROVED"
    RENEWAL_REJECTED = "RENEWAL_REJECTED"

    @classmethod
    def initial_statuses(cls) -> frozenset["PermitStatus"]:
        """Statuses a brand new (non-renewal) application may start in."""
        return frozenset({cls.AWAITING_PAYMENT, cls.AWAITING_OXXO_PAYMENT})

    @classmethod
    def terminal_statuses(cls) -> frozenset["PermitStatus"]:
        """Statuses where an application's lifecycle is finished."""
        return frozenset({cls.COMPLETED, cls.CANCELLED, cls.EXPIRED})

    @classmethod
    def paid_statuses(cls) -> frozenset["PermitStatus"]:
        """Statuses that imply the fee has been collected."""
        return frozenset(
            {
                cls.PAYMENT_RECEIVED,
                cls.GENERATING_PERMIT,
                cls.ERROR_GENERATING_PERMIT,
                cls.PERMIT_READY,
                cls.COMPLETED,
            }
        )

    @classmethod
    def valid_transitions(cls) -> dict["PermitStatus", frozenset["PermitStatus"]]:
        """Allowed status transitions in the permit lifecycle."""
        return {
            cls.AWAITING_PAYMENT: frozenset(
                {
                    cls.PAYMENT_PROCESSING,
                    cls.PAYMENT_RECEIVED,
                    cls.PAYMENT_FAILED,
                    cls.AWAITING_OXXO_PAYMENT,
                    cls.CANCELLED,
                }
            ),
            cls.AWAITING_OXXO_PAYMENT: frozenset(
                {
                    cls.PAYMENT_PROCESSING,
                    cls.PAYMENT_RECEIVED,
                    cls.PAYMENT_FAILED,
                    cls.CANCELLED,
                    cls.EXPIRED,
                }
            ),
            cls.PAYMENT_PROCESSING: frozenset(
                {
                    cls.PAYMENT_RECEIVED,
                    cls.PAYMENT_FAILED,
                    cls.AWAITING_OXXO_PAYMENT,
                    cls.CANCELLED,
                }
            ),
            # The provider allows retrying on the same payment intent.
            cls.PAYMENT_FAILED: frozenset(
                {
                    cls.AWAITING_PAYMENT,
                    cls.AWAITING_OXXO_PAYMENT,
                    cls.PAYMENT_PROCESSING,
                    cls.PAYMENT_RECEIVED,
                    cls.CANCELLED,
                }
            ),
            cls.PAYMENT_RECEIVED: frozenset(
                {cls.GENERATING_PERMIT, cls.ERROR_GENERATING_PERMIT}
            ),
            cls.GENERATING_PERMIT: frozenset(
                {cls.PERMIT_READY, cls.ERROR_GENERATING_PERMIT}
            ),
            cls.ERROR_GENERATING_PERMIT: frozenset({cls.GENERATING_PERMIT, cls.CANCELLED}),
            cls.PERMIT_READY: frozenset({cls.COMPLETED, cls.EXPIRED}),
            cls.COMPLETED: frozenset(),
            cls.CANCELLED: frozenset(),
            cls.EXPIRED: frozenset(),
            cls.RENEWAL_PENDING: frozenset(
                {cls.RENEWAL_APPROVED, cls.RENEWAL_REJECTED, cls.AWAITING_PAYMENT}
            ),
            cls.RENEWAL_APPROVED: frozenset({cls.AWAITING_PAYMENT}),
            cls.RENEWAL_REJECTED: frozenset(),
        }

    def can_transition_to(self, target: "PermitStatus") -> bool:
        """True if ``target`` is reachable in one step. Same-state is not a move."""
        return target in self.valid_transitions().get(self, frozenset())


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CLIENT = "client"


class VerificationAction(str, enum.Enum):
    """Actions recorded in the payment verification log."""

    STATUS_CHANGE = "status_change"
    PROVIDER_CONFIRMED = "provider_confirmed"
    PROVIDER_FAILED = "provider_failed"
    PROVIDER_PENDING = "provider_pending"


class WebhookOutcome(str, enum.Enum):
    """What a provider webhook event did to the application."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNHANDLED = "unhandled"
    NOT_FOUND = "not_found"


class PermitFileType(str, enum.Enum):
    PERMIT = "permiso"
    RECIBO = "recibo"
    CERTIFICADO = "certificado"
    PLACAS = "placas"
