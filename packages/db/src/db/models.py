# This project was developed with assistance from AI tools.
"""
Permisos Digitales -- domain models

Users, permit applications and the append-only logs that record what
happened to them (payment verification, security events, provider
webhooks), plus server-side login sessions.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import relationship

from .database import Base
from .enums import PermitStatus, UserRole


class User(Base):
    """Citizen or staff account. Never hard-deleted; ``is_active`` is the soft state."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(
        Enum(UserRole, name="user_role", native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.CLIENT,
    )
    account_type = Column(String(50), nullable=False, default="client")
    is_admin_portal = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    applications = relationship("PermitApplication", back_populates="user")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or self.email

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


class PermitApplication(Base):
    """Vehicle circulation permit application.

    ``status`` only changes through the transition service; each milestone
    status stamps its own ``*_at`` column.
    """

    __tablename__ = "permit_applications"
    __table_args__ = (
        CheckConstraint("ano_modelo >= 1900", name="ck_permit_applications_ano_modelo"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = Column(
        Enum(PermitStatus, name="permit_status", native_enum=False, length=50),
        nullable=False,
        default=PermitStatus.AWAITING_PAYMENT,
        index=True,
    )

    # Applicant
    nombre_completo = Column(String(255), nullable=False)
    curp_rfc = Column(String(50), nullable=False)
    domicilio = Column(Text, nullable=False)

    # Vehicle
    marca = Column(String(100), nullable=False)
    linea = Column(String(100), nullable=False)
    color = Column(String(100), nullable=False)
    numero_serie = Column(String(50), nullable=False, index=True)
    numero_motor = Column(String(50), nullable=False)
    ano_modelo = Column(Integer, nullable=False)

    # Payment
    importe = Column(Numeric(10, 2), nullable=True)
    payment_processor_order_id = Column(String(255), nullable=True, index=True)
    payment_reference = Column(String(100), nullable=True)

    # Permit (populated after generation)
    folio = Column(String(50), unique=True, nullable=True)
    fecha_expedicion = Column(Date, nullable=True)
    fecha_vencimiento = Column(Date, nullable=True)
    permit_file_path = Column(String(512), nullable=True)
    recibo_file_path = Column(Text, nullable=True)
    certificado_file_path = Column(Text, nullable=True)
    placas_file_path = Column(Text, nullable=True)

    # Renewal
    renewed_from_id = Column(
        Integer, ForeignKey("permit_applications.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    renewal_count = Column(Integer, nullable=False, default=0)

    # Lifecycle milestones
    payment_verified_at = Column(DateTime(timezone=True), nullable=True)
    payment_failed_at = Column(DateTime(timezone=True), nullable=True)
    permit_generation_started_at = Column(DateTime(timezone=True), nullable=True)
    permit_ready_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="applications")
    renewed_from = relationship("PermitApplication", remote_side=[id])

    def __repr__(self):
        return f"<PermitApplication(id={self.id}, status='{self.status}')>"


class PaymentVerificationLog(Base):
    """Append-only record of every status change touching payment. INSERT + SELECT only."""

    __tablename__ = "payment_verification_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(
        Integer, ForeignKey("permit_applications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    verified_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(50), nullable=False)
    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<PaymentVerificationLog(app_id={self.application_id}, action='{self.action}')>"


class SecurityAuditLog(Base):
    """Append-only security event trail (logins, registrations, admin actions)."""

    __tablename__ = "security_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action_type = Column(String(100), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<SecurityAuditLog(id={self.id}, action='{self.action_type}')>"


class WebhookEvent(Base):
    """Provider event ids already processed -- the unique key blocks replays."""

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), unique=True, nullable=False)
    event_type = Column(String(100), nullable=False)
    application_id = Column(Integer, nullable=True, index=True)
    outcome = Column(String(20), nullable=False)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<WebhookEvent(event_id='{self.event_id}', outcome='{self.outcome}')>"


class UserSession(Base):
    """Server-side login session; the cookie token only carries ``sid``."""

    __tablename__ = "user_sessions"

    sid = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sess = Column(JSON, nullable=False, default=dict)
    expire = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<UserSession(sid='{self.sid}', user_id={self.user_id})>"


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(255), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
