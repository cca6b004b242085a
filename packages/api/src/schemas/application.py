# This project was developed with assistance from AI tools.
"""Permit application request/response schemas."""

import re
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Literal

from db.enums import PermitStatus
from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import Pagination

_CURP_RE = re.compile(r"^[A-Z]{4}\d{6}[HM][A-Z]{5}[A-Z0-9]\d$")
_RFC_RE = re.compile(r"^[A-ZÑ&]{3,4}\d{6}[A-Z0-9]{3}$")


class _PermitFields(BaseModel):
    """Applicant and vehicle fields shared by create and update."""

    nombre_completo: str = Field(min_length=2, max_length=255)
    curp_rfc: str = Field(min_length=12, max_length=18)
    domicilio: str = Field(min_length=3, max_length=500)
    marca: str = Field(min_length=1, max_length=100)
    linea: str = Field(min_length=1, max_length=100)
    color: str = Field(min_length=1, max_length=100)
    numero_serie: str = Field(min_length=5, max_length=50)
    numero_motor: str = Field(min_length=2, max_length=50)
    ano_modelo: int = Field(ge=1900)

    @field_validator("nombre_completo", "domicilio", "marca", "linea", "color", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("curp_rfc", "numero_serie", "numero_motor", mode="before")
    @classmethod
    def _normalize_identifier(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("curp_rfc")
    @classmethod
    def _check_curp_rfc(cls, v: str) -> str:
        if not (_CURP_RE.match(v) or _RFC_RE.match(v)):
            raise ValueError("must be a valid CURP (18 characters) or RFC (12-13 characters)")
        return v

    @field_validator("ano_modelo")
    @classmethod
    def _check_model_year(cls, v: int) -> int:
        if v > datetime.now(UTC).year + 1:
            raise ValueError("model year cannot be more than one year in the future")
        return v


class ApplicationCreate(_PermitFields):
    """Submit a new permit application."""

    payment_method: Literal["card", "oxxo"] = "card"


class ApplicationUpdate(BaseModel):
    """Partial update of applicant/vehicle data before payment."""

    nombre_completo: str | None = Field(default=None, min_length=2, max_length=255)
    domicilio: str | None = Field(default=None, min_length=3, max_length=500)
    marca: str | None = Field(default=None, min_length=1, max_length=100)
    linea: str | None = Field(default=None, min_length=1, max_length=100)
    color: str | None = Field(default=None, min_length=1, max_length=100)
    numero_serie: str | None = Field(default=None, min_length=5, max_length=50)
    numero_motor: str | None = Field(default=None, min_length=2, max_length=50)
    ano_modelo: int | None = Field(default=None, ge=1900)


class ApplicationResponse(BaseModel):
    """Single application response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    status: PermitStatus
    nombre_completo: str
    curp_rfc: str
    domicilio: str
    marca: str
    linea: str
    color: str
    numero_serie: str
    numero_motor: str
    ano_modelo: int
    importe: Decimal | None = None
    payment_reference: str | None = None
    folio: str | None = None
    fecha_expedicion: date | None = None
    fecha_vencimiento: date | None = None
    renewed_from_id: int | None = None
    renewal_count: int = 0
    payment_verified_at: datetime | None = None
    permit_ready_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ApplicationListResponse(BaseModel):
    """Paginated list of applications."""

    data: list[ApplicationResponse]
    pagination: Pagination


class StatusInfo(BaseModel):
    """Human-readable info about a permit status."""

    label: str
    description: str
    next_step: str


class ApplicationStatusResponse(BaseModel):
    """Status summary for one application."""

    application_id: int
    status: PermitStatus
    status_info: StatusInfo
    is_terminal: bool
    is_paid: bool
    allowed_transitions: list[PermitStatus]
    updated_at: datetime | None = None


class RenewalEligibilityResponse(BaseModel):
    application_id: int
    eligible: bool
    reason: str
    days_until_expiration: int | None = None
    fecha_vencimiento: date | None = None


class PermitDownloadResponse(BaseModel):
    application_id: int
    file_type: str
    url: str
    expires_in: int


class PermitUploadResponse(BaseModel):
    application_id: int
    file_type: str
    object_key: str
    status: PermitStatus
