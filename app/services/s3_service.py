"""
MediaHost Backend — S3-Compatible Object Storage Service
==========================================================

What:  ObjectStorage implementation on top of boto3. Works against AWS S3,
       Cloudflare R2 and MinIO (set S3_ENDPOINT_URL for the latter two).
How:   boto3 is blocking, so every call runs in Starlette's threadpool.
       Transient failures are retried with tenacity (exponential backoff +
       jitter); when retries are exhausted the error is wrapped in StorageError.

URL strategy:
    S3_PUBLIC_URL set   → "<S3_PUBLIC_URL>/<key>"  (bucket served through a CDN)
    S3_PUBLIC_URL empty → presigned GET URL valid for S3_PRESIGN_EXPIRES seconds
"""

import logging
import time
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from app.config import settings
from app.exceptions import StorageError
from app.services.storage_base import ObjectStorage

logger = logging.getLogger(__name__)

# Errors worth retrying: network failures, throttling and 5xx from the store
TRANSIENT_ERRORS = (BotoCoreError, ClientError, S3UploadFailedError, ConnectionError)


def build_storage_retry():
    """Retry decorator for object storage calls: exponential backoff plus up to 0.5s of jitter."""
    return retry(
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=(
            wait_exponential(multiplier=settings.retry_min_wait, max=settings.retry_max_wait)
            + wait_random(0, min(0.5, settings.retry_max_wait))
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


_storage_retry = build_storage_retry()


class S3ObjectStorage(ObjectStorage):
    """
    boto3-backed object store.

    The client is created lazily on first use so importing this module (and
    the test suite) never needs credentials or network access.
    """

    def __init__(self, client: Optional[Any] = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.s3_bucket

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                region_name=settings.s3_region,
                aws_access_key_id=settings.s3_access_key_id or None,
                aws_secret_access_key=settings.s3_secret_access_key or None,
                config=Config(signature_version="s3v4", retries={"max_attempts": 1}),
            )
            logger.info(
                "S3 client initialized (endpoint=%s, bucket=%s)",
                settings.s3_endpoint_url or "aws",
                self.bucket,
            )
        return self._client

    # ── URL helpers ───────────────────────────────────────────────────────

    async def object_url(self, key: str) -> str:
        """Public URL when a public base is configured, otherwise a presigned URL."""
        if settings.s3_public_url:
            return f"{settings.s3_public_url.rstrip('/')}/{quote(key)}"
        return await run_in_threadpool(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=settings.s3_presign_expires,
        )

    # ── Writes ────────────────────────────────────────────────────────────

    async def put_file(
        self, local_path: Union[str, Path], key: str, content_type: str
    ) -> str:
        start = time.perf_counter()
        try:
            await self._upload_file_with_retry(str(local_path), key, content_type)
            url = await self.object_url(key)
        except TRANSIENT_ERRORS as e:
            logger.error("Upload of %s to bucket %s failed: %s", key, self.bucket, e)
            raise StorageError(
                message="Failed to store the file in object storage. Please retry later.",
                context={"key": key, "error_type": type(e).__name__, "error": str(e)},
            ) from e

        logger.info(
            "Stored object %s (%s) in %.0fms",
            key,
            content_type,
            (time.perf_counter() - start) * 1000,
        )
        return url

    async def put_bytes(self, content: bytes, key: str, content_type: str) -> str:
        try:
            await self._put_object_with_retry(content, key, content_type)
            url = await self.object_url(key)
        except TRANSIENT_ERRORS as e:
            logger.error("Upload of %s to bucket %s failed: %s", key, self.bucket, e)
            raise StorageError(
                message="Failed to store the file in object storage. Please retry later.",
                context={"key": key, "error_type": type(e).__name__, "error": str(e)},
            ) from e

        logger.info("Stored object %s (%d bytes)", key, len(content))
        return url

    async def delete_object(self, key: str) -> None:
        try:
            await self._delete_with_retry(key)
        except TRANSIENT_ERRORS as e:
            logger.error("Delete of %s from bucket %s failed: %s", key, self.bucket, e)
            raise StorageError(
                message="Failed to delete the file from object storage.",
                context={"key": key, "error_type": type(e).__name__, "error": str(e)},
            ) from e
        logger.info("Deleted object %s", key)

    async def health_check(self) -> bool:
        if not self.bucket:
            return False
        try:
            await run_in_threadpool(self.client.head_bucket, Bucket=self.bucket)
            return True
        except TRANSIENT_ERRORS as e:
            logger.warning("Object storage health check failed: %s", e)
            return False

    # ── Retried primitives ────────────────────────────────────────────────

    @_storage_retry
    async def _upload_file_with_retry(self, path: str, key: str, content_type: str) -> None:
        # upload_file switches to multipart transparently for large merged videos
        await run_in_threadpool(
            self.client.upload_file,
            path,
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
        )

    @_storage_retry
    async def _put_object_with_retry(self, content: bytes, key: str, content_type: str) -> None:
        await run_in_threadpool(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
        )

    @_storage_retry
    async def _delete_with_retry(self, key: str) -> None:
        await run_in_threadpool(self.client.delete_object, Bucket=self.bucket, Key=key)


# ── Singleton Instance ────────────────────────────────────────────────────
object_storage = S3ObjectStorage()
