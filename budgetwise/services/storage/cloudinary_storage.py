"""
Backup Object Storage using Cloudinary

DESIGN DECISION: Backup blobs are stored as Cloudinary raw resources.
- A "bucket" is a folder under the configured root folder
- An object path is the public_id below that folder
- Uploads are authenticated (not publicly readable) and never overwrite
  unless asked to

Cloudinary has no per-folder size or MIME limits, so the limits passed
to create_bucket are recorded here and checked before every upload.

The Cloudinary SDK is synchronous, so its calls run in a worker thread.
Downloads use an httpx.AsyncClient opened per request, since the
Streamlit page runs each call on a fresh event loop.
"""

import asyncio
from typing import Any, Optional

import cloudinary
import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx
import structlog

from budgetwise.config import CloudinarySettings, get_settings
from budgetwise.services.storage.interface import (
    DuplicateError,
    NotFoundError,
    ObjectStorageInterface,
    StorageError,
)
from budgetwise.services.storage.payload import normalize_payload
from budgetwise.services.storage.retrying import remote_retry


logger = structlog.get_logger("budgetwise.storage.cloudinary")


class CloudinaryObjectStorage(ObjectStorageInterface):
    """
    Object storage on Cloudinary raw resources.

    Flow for an upload:
    1. Check the bucket's recorded size and MIME limits
    2. Upload as an authenticated raw resource with overwrite disabled
    3. Treat an "existing" response as a collision
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._http = http_client
        self._bucket_limits: dict[str, dict[str, Any]] = {}
        self._configured = False

    def _configure(self) -> None:
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _folder(self, bucket: str) -> str:
        return f"{self._settings.root_folder}/{bucket}"

    def _public_id(self, bucket: str, path: str) -> str:
        return f"{self._folder(bucket)}/{path}"

    async def _get(self, url: str) -> httpx.Response:
        if self._http is not None:
            return await self._http.get(url)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.get(url)

    @remote_retry
    async def list_buckets(self) -> list[str]:
        self._configure()
        try:
            result = await asyncio.to_thread(
                cloudinary.api.subfolders, self._settings.root_folder
            )
        except cloudinary.exceptions.NotFound:
            return []
        except Exception as e:
            raise StorageError(f"Failed to list backup folders: {e}")
        return [folder["name"] for folder in result.get("folders", [])]

    @remote_retry
    async def create_bucket(
        self,
        name: str,
        public: bool = False,
        size_limit_bytes: Optional[int] = None,
        allowed_mime_types: Optional[list[str]] = None,
    ) -> None:
        self._configure()
        try:
            await asyncio.to_thread(cloudinary.api.create_folder, self._folder(name))
        except cloudinary.exceptions.AlreadyExists:
            raise DuplicateError(f"Bucket already exists: {name}")
        except Exception as e:
            raise StorageError(f"Failed to create backup folder {name}: {e}")

        self._bucket_limits[name] = {
            "size_limit_bytes": size_limit_bytes,
            "allowed_mime_types": allowed_mime_types,
        }
        logger.info("bucket_created", bucket=name, public=public)

    def _check_limits(self, bucket: str, data: bytes, content_type: str) -> None:
        limits = self._bucket_limits.get(bucket)
        if not limits:
            return
        size_limit = limits.get("size_limit_bytes")
        if size_limit is not None and len(data) > size_limit:
            error = StorageError(
                f"Object of {len(data)} bytes exceeds the {size_limit} byte limit of {bucket}"
            )
            error.retryable = False
            raise error
        allowed = limits.get("allowed_mime_types")
        if allowed and content_type not in allowed:
            error = StorageError(f"Content type {content_type} not allowed in {bucket}")
            error.retryable = False
            raise error

    @remote_retry
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = False,
    ) -> str:
        self._configure()
        self._check_limits(bucket, data, content_type)

        try:
            result = await asyncio.to_thread(
                cloudinary.uploader.upload,
                data,
                public_id=self._public_id(bucket, path),
                resource_type="raw",
                type="authenticated",
                overwrite=upsert,
                invalidate=upsert,
            )
        except Exception as e:
            raise StorageError(f"Failed to upload {bucket}/{path}: {e}")

        # With overwrite disabled Cloudinary returns the old resource
        if result.get("existing") and not upsert:
            raise DuplicateError(f"Object already exists: {bucket}/{path}")

        logger.info(
            "object_uploaded",
            bucket=bucket,
            path=path,
            bytes=result.get("bytes", len(data)),
        )
        return path

    @remote_retry
    async def download(self, bucket: str, path: str) -> bytes:
        self._configure()
        url, _ = cloudinary.utils.cloudinary_url(
            self._public_id(bucket, path),
            resource_type="raw",
            type="authenticated",
            sign_url=True,
            secure=True,
        )

        try:
            response = await self._get(url)
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to download {bucket}/{path}: {e}")

        if response.status_code == 404:
            raise NotFoundError(f"Object not found: {bucket}/{path}")
        if response.is_error:
            raise StorageError(
                f"Failed to download {bucket}/{path}: HTTP {response.status_code}"
            )

        return normalize_payload(response.content)
