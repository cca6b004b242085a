# This project was developed with assistance from AI tools.
"""Generated permit documents attached to an application by staff.

The object is written to storage first and the column updated in the same
transaction that writes the audit event. A replaced object is removed only
after that transaction commits.
"""

import logging
from typing import NamedTuple

from db import DatabaseService, PermitApplication
from db.enums import PermitFileType, PermitStatus
from sqlalchemy import select

from ..core.config import settings
from .audit import write_security_event
from .storage import FileSystemError, StorageService

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"application/pdf", "image/png", "image/jpeg"})

FILE_COLUMNS = {
    PermitFileType.PERMIT: "permit_file_path",
    PermitFileType.RECIBO: "recibo_file_path",
    PermitFileType.CERTIFICADO: "certificado_file_path",
    PermitFileType.PLACAS: "placas_file_path",
}


class PermitUploadError(Exception):
    """Raised when an upload fails size validation."""


class PermitFileNotAllowedError(ValueError):
    """Raised when the application has not been paid for."""


class AttachedFile(NamedTuple):
    application: PermitApplication
    object_key: str
    previous_key: str | None


def check_upload_size(file_data: bytes) -> None:
    max_bytes = settings.PERMIT_UPLOAD_MAX_MB * 1024 * 1024
    if len(file_data) > max_bytes:
        raise PermitUploadError(
            f"File size {len(file_data)} exceeds maximum of {settings.PERMIT_UPLOAD_MAX_MB}MB"
        )


async def upload_permit_file(
    db_service: DatabaseService,
    storage: StorageService,
    *,
    application_id: int,
    file_type: PermitFileType,
    filename: str,
    content_type: str,
    file_data: bytes,
    actor_id: int,
    ip_address: str | None = None,
) -> AttachedFile | None:
    """Store one permit document and point the application at it.

    Returns None when the application does not exist. Raises
    PermitFileNotAllowedError before anything is stored if the fee has not
    been collected.
    """
    check_upload_size(file_data)
    column = FILE_COLUMNS[file_type]

    async def _attach(session):
        result = await session.execute(
            select(PermitApplication).where(PermitApplication.id == application_id).with_for_update()
        )
        app = result.unique().scalar_one_or_none()
        if app is None:
            return None
        current = PermitStatus(app.status)
        if current not in PermitStatus.paid_statuses():
            raise PermitFileNotAllowedError(
                f"Permit files need a paid application (status '{current.value}')."
            )

        object_key = StorageService.build_permit_key(application_id, file_type, filename)
        await storage.upload_file(file_data, object_key, content_type)

        previous_key = getattr(app, column)
        setattr(app, column, object_key)
        await write_security_event(
            session,
            action_type="permit_file_uploaded",
            user_id=actor_id,
            ip_address=ip_address,
            details={
                "application_id": application_id,
                "file_type": file_type.value,
                "object_key": object_key,
            },
        )
        await session.flush()
        return AttachedFile(app, object_key, previous_key)

    attached = await db_service.with_transaction(_attach, context="upload permit file")
    if attached is None:
        return None

    if attached.previous_key and attached.previous_key != attached.object_key:
        try:
            await storage.delete_file(attached.previous_key)
        except FileSystemError as exc:
            logger.warning(
                "Replaced permit file %s for application %s was not removed: %s",
                attached.previous_key,
                application_id,
                exc,
            )
    logger.info(
        "Permit file %s stored for application %s (key=%s)",
        file_type.value,
        application_id,
        attached.object_key,
    )
    return attached
