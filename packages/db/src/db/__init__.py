# This project was developed with assistance from AI tools.
__version__ = "0.1.0"

from .database import Base, DatabaseError, DatabaseService, get_db, get_db_service
from .enums import (
    PermitFileType,
    PermitStatus,
    UserRole,
    VerificationAction,
    WebhookOutcome,
)
from .models import (
    PasswordResetToken,
    PaymentVerificationLog,
    PermitApplication,
    SecurityAuditLog,
    User,
    UserSession,
    WebhookEvent,
)

__all__ = [
    "Base",
    "DatabaseError",
    "DatabaseService",
    "get_db",
    "get_db_service",
    "__version__",
    # Enums
    "PermitStatus",
    "PermitFileType",
    "UserRole",
    "VerificationAction",
    "WebhookOutcome",
    # Models
    "PasswordResetToken",
    "PaymentVerificationLog",
    "PermitApplication",
    "SecurityAuditLog",
    "User",
    "UserSession",
    "WebhookEvent",
]
