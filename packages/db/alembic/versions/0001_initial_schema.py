# This project was developed with assistance from AI tools.
"""initial permit schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-14

"""

import sqlalchemy as sa
from alembic import op

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

VERIFICATION_LOG_GUARD = """
CREATE OR REPLACE FUNCTION payment_verification_log_prevent_mutation()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'payment_verification_log is append-only: % denied for row %', TG_OP, OLD.id;
    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

VERIFICATION_LOG_NO_UPDATE = """
CREATE TRIGGER payment_verification_log_no_update
    BEFORE UPDATE ON payment_verification_log
    FOR EACH ROW
    EXECUTE FUNCTION payment_verification_log_prevent_mutation();
"""

VERIFICATION_LOG_NO_DELETE = """
CREATE TRIGGER payment_verification_log_no_delete
    BEFORE DELETE ON payment_verification_log
    FOR EACH ROW
    EXECUTE FUNCTION payment_verification_log_prevent_mutation();
"""


def _timestamps():
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("role", sa.String(6), nullable=False, server_default="client"),
        sa.Column("account_type", sa.String(50), nullable=False, server_default="client"),
        sa.Column("is_admin_portal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "permit_applications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="AWAITING_PAYMENT"),
        sa.Column("nombre_completo", sa.String(255), nullable=False),
        sa.Column("curp_rfc", sa.String(50), nullable=False),
        sa.Column("domicilio", sa.Text(), nullable=False),
        sa.Column("marca", sa.String(100), nullable=False),
        sa.Column("linea", sa.String(100), nullable=False),
        sa.Column("color", sa.String(100), nullable=False),
        sa.Column("numero_serie", sa.String(50), nullable=False),
        sa.Column("numero_motor", sa.String(50), nullable=False),
        sa.Column("ano_modelo", sa.Integer(), nullable=False),
        sa.Column("importe", sa.Numeric(10, 2), nullable=True),
        sa.Column("payment_processor_order_id", sa.String(255), nullable=True),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("folio", sa.String(50), nullable=True),
        sa.Column("fecha_expedicion", sa.Date(), nullable=True),
        sa.Column("fecha_vencimiento", sa.Date(), nullable=True),
        sa.Column("permit_file_path", sa.String(512), nullable=True),
        sa.Column("recibo_file_path", sa.Text(), nullable=True),
        sa.Column("certificado_file_path", sa.Text(), nullable=True),
        sa.Column("placas_file_path", sa.Text(), nullable=True),
        sa.Column("renewed_from_id", sa.Integer(), nullable=True),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("permit_generation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("permit_ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("ano_modelo >= 1900", name="ck_permit_applications_ano_modelo"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["renewed_from_id"], ["permit_applications.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("folio"),
    )
    op.create_index("ix_permit_applications_user_id", "permit_applications", ["user_id"])
    op.create_index("ix_permit_applications_status", "permit_applications", ["status"])
    op.create_index("ix_permit_applications_numero_serie", "permit_applications", ["numero_serie"])
    op.create_index(
        "ix_permit_applications_payment_processor_order_id",
        "permit_applications",
        ["payment_processor_order_id"],
    )
    op.create_index(
        "ix_permit_applications_renewed_from_id", "permit_applications", ["renewed_from_id"]
    )

    op.create_table(
        "payment_verification_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("verified_by", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("from_status", sa.String(50), nullable=True),
        sa.Column("to_status", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(
            ["application_id"], ["permit_applications.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["verified_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_payment_verification_log_application_id",
        "payment_verification_log",
        ["application_id"],
    )
    op.create_index(
        "ix_payment_verification_log_created_at", "payment_verification_log", ["created_at"]
    )

    op.create_table(
        "security_audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("action_type", sa.String(100), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_security_audit_log_user_id", "security_audit_log", ["user_id"])
    op.create_index("ix_security_audit_log_action_type", "security_audit_log", ["action_type"])
    op.create_index("ix_security_audit_log_created_at", "security_audit_log", ["created_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_webhook_events_application_id", "webhook_events", ["application_id"])

    op.create_table(
        "user_sessions",
        sa.Column("sid", sa.String(64), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("sess", sa.JSON(), nullable=False),
        sa.Column("expire", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("sid"),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])
    op.create_index("ix_user_sessions_expire", "user_sessions", ["expire"])

    op.create_table(
        "password_reset_tokens",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_password_reset_tokens_user_id", "password_reset_tokens", ["user_id"])
    op.create_index("ix_password_reset_tokens_token", "password_reset_tokens", ["token"])

    op.execute(VERIFICATION_LOG_GUARD)
    op.execute(VERIFICATION_LOG_NO_UPDATE)
    op.execute(VERIFICATION_LOG_NO_DELETE)


def downgrade() -> None:
    op.execute(
        "DROP TRIGGER IF EXISTS payment_verification_log_no_delete ON payment_verification_log"
    )
    op.execute(
        "DROP TRIGGER IF EXISTS payment_verification_log_no_update ON payment_verification_log"
    )
    op.execute("DROP FUNCTION IF EXISTS payment_verification_log_prevent_mutation()")
    op.drop_table("password_reset_tokens")
    op.drop_table("user_sessions")
    op.drop_table("webhook_events")
    op.drop_table("security_audit_log")
    op.drop_table("payment_verification_log")
    op.drop_table("permit_applications")
    op.drop_table("users")
