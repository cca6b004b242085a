# This project was developed with assistance from AI tools.
"""S3-compatible object storage for generated permit documents.

Uses a boto3 synchronous client run in a thread-pool executor for async
compatibility. The module exposes a singleton initialised at app startup
via ``init_storage_service()``.

Every boto3 failure is re-raised as ``FileSystemError`` so routes only
have one storage exception to translate.
"""

import asyncio
import logging
import os
from functools import partial

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from db.enums import PermitFileType

from ..core.config import Settings

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class FileSystemError(Exception):
    """A storage operation failed for a reason other than a missing object."""

    def __init__(self, message: str, *, key: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.key = key
        self.operation = operation


def _is_not_found(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return str(error.get("Code", "")) in _NOT_FOUND_CODES or status == 404


class StorageService:
    """Thin wrapper around a boto3 S3 client."""

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: str = "us-east-1",
        *,
        client=None,
    ):
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
            ),
        )
        if client is None:
            self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        """Create the bucket if it doesn't already exist (dev convenience)."""
        try:
            self._client.head_bucket(Bucket=self._bucket)
        except ClientError:
            logger.info("Creating S3 bucket: %s", self._bucket)
            self._client.create_bucket(Bucket=self._bucket)

    async def _run(self, operation: str, key: str, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
        except (ClientError, BotoCoreError) as exc:
            logger.error("Storage %s failed for key=%s: %s", operation, key, exc)
            raise FileSystemError(
                f"Storage {operation} failed for {key}", key=key, operation=operation
            ) from exc

    async def upload_file(self, file_data: bytes, object_key: str, content_type: str) -> str:
        """Upload bytes to S3 and return the object key."""
        await self._run(
            "upload",
            object_key,
            self._client.put_object,
            Bucket=self._bucket,
            Key=object_key,
            Body=file_data,
            ContentType=content_type,
        )
        return object_key

    async def delete_file(self, object_key: str) -> None:
        await self._run(
            "delete", object_key, self._client.delete_object, Bucket=self._bucket, Key=object_key
        )

    async def file_exists(self, object_key: str) -> bool:
        """Return True if the object exists, False if the store reports not-found.

        Any other failure (permissions, network, throttling) raises
        ``FileSystemError``; it is never reported as a missing file.
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, partial(self._client.head_object, Bucket=self._bucket, Key=object_key)
            )
        except ClientError as exc:
            if _is_not_found(exc):
                return False
            logger.error("Storage exists-check failed for key=%s: %s", object_key, exc)
            raise FileSystemError(
                f"Could not check existence of {object_key}", key=object_key, operation="exists"
            ) from exc
        except BotoCoreError as exc:
            logger.error("Storage exists-check failed for key=%s: %s", object_key, exc)
            raise FileSystemError(
                f"Could not check existence of {object_key}", key=object_key, operation="exists"
            ) from exc
        return True

    async def get_download_url(self, object_key: str, expires_in: int = 3600) -> str:
        """Return a presigned GET URL for the given object key."""
        url: str = await self._run(
            "presign",
            object_key,
            self._client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self._bucket, "Key": object_key},
            ExpiresIn=expires_in,
        )
        return url

    @staticmethod
    def build_permit_key(application_id: int, file_type: PermitFileType, filename: str) -> str:
        """Build the S3 object key: permits/{application_id}/{file_type}/{filename}.

        Strips path components from filename to prevent path traversal attacks.
        """
        safe_name = os.path.basename(filename) or f"{file_type.value}.pdf"
        return f"permits/{application_id}/{file_type.value}/{safe_name}"


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_service: StorageService | None = None


def init_storage_service(cfg: Settings) -> StorageService:
    """Initialise the singleton (called once from app lifespan)."""
    global _service  # noqa: PLW0603
    _service = StorageService(
        endpoint=cfg.S3_ENDPOINT,
        access_key=cfg.S3_ACCESS_KEY,
        secret_key=cfg.S3_SECRET_KEY,
        bucket=cfg.S3_BUCKET,
        region=cfg.S3_REGION,
    )
    logger.info("StorageService initialised (bucket=%s)", cfg.S3_BUCKET)
    return _service


def get_storage_service() -> StorageService:
    """Return the initialised StorageService singleton."""
    if _service is None:
        raise RuntimeError("StorageService not initialised -- call init_storage_service() first")
    return _service
