"""
shared/utils/storage.py
Receipt object storage. Production uses an S3-compatible bucket (AWS S3 or
Cloudflare R2) through boto3; calls run in a worker thread behind a circuit
breaker so a dead store fails fast instead of tying up requests.
"""

import asyncio
import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from pybreaker import CircuitBreaker, CircuitBreakerError

from config.settings import settings
from shared.exceptions import ReceiptStoreFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    url: str
    handle: str


class ObjectStore:
    """Interface: upload returns a public URL plus a handle usable for delete."""

    async def upload(self, data: bytes, content_type: str, folder: str) -> StoredObject:
        raise NotImplementedError

    async def delete(self, handle: str) -> None:
        raise NotImplementedError


def build_object_key(folder: str, content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type) or ""
    if ext == ".jpe":
        ext = ".jpg"
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{folder}/{stamp}_{uuid.uuid4().hex[:12]}{ext}"


class S3ObjectStore(ObjectStore):
    def __init__(self, client=None, bucket: str = settings.S3_BUCKET_RECEIPTS, breaker: Optional[CircuitBreaker] = None):
        self.client = client or boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY or None,
            config=Config(
                signature_version="s3v4",
                connect_timeout=10,
                read_timeout=int(settings.RECEIPT_UPLOAD_TIMEOUT_SECONDS),
                retries={"max_attempts": 2},
            ),
            region_name=settings.S3_REGION,
        )
        self.bucket = bucket
        self.breaker = breaker or CircuitBreaker(fail_max=5, reset_timeout=60, name="receipt-store")

    def _public_url(self, key: str) -> str:
        if settings.S3_PUBLIC_BASE_URL:
            return f"{settings.S3_PUBLIC_BASE_URL.rstrip('/')}/{key}"
        base = settings.S3_ENDPOINT_URL.rstrip("/") if settings.S3_ENDPOINT_URL else "https://s3.amazonaws.com"
        return f"{base}/{self.bucket}/{key}"

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)

    async def upload(self, data: bytes, content_type: str, folder: str) -> StoredObject:
        key = build_object_key(folder, content_type)
        try:
            await asyncio.to_thread(self.breaker.call, self._put, key, data, content_type)
        except CircuitBreakerError as e:
            logger.error(f"Receipt store circuit open, rejecting upload {key}")
            raise ReceiptStoreFailure("Receipt storage is temporarily unavailable") from e
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Receipt upload failed for {key}: {e}")
            raise ReceiptStoreFailure() from e
        logger.info(f"Receipt stored at {key} ({len(data)} bytes)")
        return StoredObject(url=self._public_url(key), handle=key)

    async def delete(self, handle: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=handle)
        logger.info(f"Receipt object {handle} deleted")


@lru_cache()
def _default_store() -> S3ObjectStore:
    return S3ObjectStore()


def get_object_store() -> ObjectStore:
    """FastAPI dependency for the receipt store."""
    return _default_store()
