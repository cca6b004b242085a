# This project was developed with assistance from AI tools.
"""Pydantic response models for admin endpoints."""

from datetime import datetime

from db.enums import PermitStatus
from pydantic import BaseModel, ConfigDict, Field

from . import Pagination
from .auth import UserResponse


class DashboardStats(BaseModel):
    """Response for GET /api/admin/dashboard-stats."""

    total_applications: int
    status_counts: dict[str, int]
    pending_payment: int
    paid: int
    permits_ready: int


class StatusChangeRequest(BaseModel):
    status: PermitStatus
    notes: str | None = Field(default=None, max_length=1000)


class VerificationLogItem(BaseModel):
    """Single payment verification log row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    application_id: int
    verified_by: int | None = None
    action: str
    from_status: str | None = None
    to_status: str | None = None
    notes: str | None = None
    created_at: datetime


class VerificationHistoryResponse(BaseModel):
    application_id: int
    count: int
    events: list[VerificationLogItem]


class SecurityAuditItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None = None
    action_type: str
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict | None = None
    created_at: datetime


class SecurityAuditResponse(BaseModel):
    data: list[SecurityAuditItem]
    pagination: Pagination


class UserListResponse(BaseModel):
    data: list[UserResponse]
    pagination: Pagination


class UserStatusRequest(BaseModel):
    is_active: bool


class PasswordResetIssued(BaseModel):
    """Single-use reset token for an admin to hand to the account holder."""

    user_id: int
    token: str
    expires_at: datetime
