"""
R2 Object Store Gateway

Cloudflare R2 speaks the S3 API, so this is an aioboto3 S3 client pointed at
the account's R2 endpoint. Three operations, no internal retries — the caller
decides what a failure means:

    download(key)                      -> bytes   (DownloadError)
    upload(key, body, content_type)    -> None    (UploadError)
    public_url(key)                    -> str

Key layout:
    uploads/<user_id>/<file>                        raw client uploads
    generated/<user_id>/<ms>-<hex>-<basename>.png   magic-diagram output
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from note_companion.core.config import Settings, settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ObjectStoreError(Exception):
    """Base class for gateway failures; carries the object key."""

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class DownloadError(ObjectStoreError):
    """Key absent or the backing store failed while reading."""


class UploadError(ObjectStoreError):
    """The backing store rejected or failed a write."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class R2Config:
    bucket:            str
    endpoint_url:      str
    access_key_id:     str
    secret_access_key: str
    public_base_url:   str
    region:            str = "auto"

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "R2Config":
        return cls(
            bucket=cfg.r2_bucket,
            endpoint_url=cfg.r2_endpoint,
            access_key_id=cfg.r2_access_key_id,
            secret_access_key=cfg.r2_secret_access_key,
            public_base_url=cfg.r2_public_url,
            region=cfg.r2_region,
        )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class R2StorageService:
    """
    Async R2 operations for the processing pipeline.

    The aioboto3 session is created once per service; a client is opened per
    call, which keeps the object safe to share across sequential records.
    """

    def __init__(self, config: R2Config, session: aioboto3.Session | None = None) -> None:
        self._cfg = config
        self._session = session or aioboto3.Session()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self):
        """Return a scoped async S3 client context manager bound to R2."""
        return self._session.client(
            "s3",
            endpoint_url=self._cfg.endpoint_url or None,
            region_name=self._cfg.region,
            aws_access_key_id=self._cfg.access_key_id or None,
            aws_secret_access_key=self._cfg.secret_access_key or None,
        )

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def download(self, key: str) -> bytes:
        """Read the full object body. Raises DownloadError on any failure."""
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._cfg.bucket, Key=key)
                stream = resp.get("Body")
                if stream is None:
                    raise DownloadError(f"Empty response body for key: {key}", key)
                body = await stream.read()
            except ClientError as exc:
                code = exc.response.get("Error", {}).get("Code", "")
                if code in ("NoSuchKey", "404"):
                    raise DownloadError(f"Object not found: {key}", key) from exc
                raise DownloadError(f"Failed to download {key}: {code or exc}", key) from exc
            except BotoCoreError as exc:
                raise DownloadError(f"Failed to download {key}: {exc}", key) from exc

        logger.debug("R2 download ok | key=%s size=%d", key, len(body))
        return body

    async def upload(self, key: str, body: bytes, content_type: str) -> None:
        """Write an object. Raises UploadError on any failure."""
        async with self._client() as s3:
            try:
                await s3.put_object(
                    Bucket=self._cfg.bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                )
            except (ClientError, BotoCoreError) as exc:
                raise UploadError(f"Failed to upload {key}: {exc}", key) from exc

        logger.info(
            "R2 upload ok | key=%s size=%d content_type=%s",
            key, len(body), content_type,
        )

    def public_url(self, key: str) -> str:
        return f"{self._cfg.public_base_url.rstrip('/')}/{key}"
