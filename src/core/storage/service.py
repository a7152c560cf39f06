"""Blob storage: local folder in development, S3/R2 bucket in production."""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from src.core.config import settings
from src.core.exceptions import StorageError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._/-]+")


@dataclass(frozen=True)
class StoredObject:
    """Where an uploaded blob ended up."""

    url: str
    provider_id: str
    size: int


def _safe_key(key: str) -> str:
    key = _UNSAFE.sub("_", key.strip()).replace("..", "").lstrip("/")
    if not key:
        raise StorageError("Storage key is empty")
    return key


def _s3_client():
    import aioboto3

    session = aioboto3.Session()
    return session.client(
        "s3",
        endpoint_url=settings.s3_endpoint_url,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        region_name=settings.s3_region,
    )


async def _upload_to_s3(key: str, content: bytes, content_type: str) -> None:
    """Upload bytes to S3/R2 bucket."""
    async with _s3_client() as s3:
        await s3.put_object(
            Bucket=settings.s3_bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
        )


async def _download_from_s3(key: str) -> bytes:
    """Download object from S3/R2 bucket."""
    async with _s3_client() as s3:
        response = await s3.get_object(Bucket=settings.s3_bucket, Key=key)
        async with response["Body"] as stream:
            return await stream.read()


def _public_url(key: str) -> str:
    if settings.s3_public_url:
        return f"{settings.s3_public_url.rstrip('/')}/{key}"
    return f"{settings.s3_endpoint_url.rstrip('/')}/{settings.s3_bucket}/{key}"


async def upload(content: bytes, key: str, content_type: str = "application/octet-stream") -> StoredObject:
    """
    Store ``content`` under ``key`` and return its URL and provider id.

    The provider id is the key inside the bucket (S3/R2) or the path relative
    to ``settings.storage_path`` (local).
    """
    key = _safe_key(key)
    if settings.use_s3:
        try:
            await _upload_to_s3(key, content, content_type)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload to bucket failed: {e}") from e
        logger.info("Uploaded %s (%d bytes) to bucket %s", key, len(content), settings.s3_bucket)
        return StoredObject(url=_public_url(key), provider_id=key, size=len(content))

    full_path = Path(settings.storage_path) / key
    try:
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(content)
    except OSError as e:
        raise StorageError(f"Could not write {key}: {e}") from e
    logger.info("Stored %s (%d bytes) in %s", key, len(content), settings.storage_path)
    return StoredObject(url=f"/uploads/{key}", provider_id=key, size=len(content))


async def download(provider_id: str) -> bytes:
    """Read blob bytes from storage (local or S3/R2)."""
    if settings.use_s3:
        try:
            return await _download_from_s3(provider_id)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Download from bucket failed: {e}") from e
    full_path = Path(settings.storage_path) / provider_id
    try:
        return full_path.read_bytes()
    except OSError as e:
        raise StorageError(f"Could not read {provider_id}: {e}") from e
