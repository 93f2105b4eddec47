"""
Backup Snapshotter

Reads a user's records into one envelope and uploads it.

Flow:
1. Make sure the backup bucket exists (failures here are not fatal)
2. Fetch every included category concurrently, scoped to the user
3. Estimate the size from the serialized categories
4. Encode (optionally encrypt and tag) and upload under a fresh key

Any fetch or upload error propagates and aborts the whole backup.
Nothing is written to the source tables.
"""

import asyncio
from typing import Any, Optional

import structlog

from budgetwise.backup.categories import BackupCategory, RestoreMode, included_categories
from budgetwise.backup.codec import BackupCodec, compact_json
from budgetwise.clock import Clock, unix_millis, utc_now
from budgetwise.config import BackupConfig, get_settings
from budgetwise.models.backup import BackupEnvelope, BackupMetadata, BackupResult
from budgetwise.models.settings import BackupSettings
from budgetwise.services.storage import (
    DuplicateError,
    ObjectStorageInterface,
    StorageError,
    TableStoreInterface,
)


logger = structlog.get_logger("budgetwise.backup.snapshot")

BACKUP_CONTENT_TYPE = "application/json"
BYTES_PER_MB = 1024 * 1024


def backup_path(user_id: str, millis: int) -> str:
    return f"{user_id}/backup_{millis}.json"


def estimate_size_mb(data: dict[str, Any]) -> float:
    """Display estimate: serialized length of every category, in MB."""
    return sum(len(compact_json(value)) for value in data.values()) / BYTES_PER_MB


class BackupSnapshotter:
    def __init__(
        self,
        tables: TableStoreInterface,
        objects: ObjectStorageInterface,
        codec: BackupCodec,
        config: Optional[BackupConfig] = None,
        clock: Clock = utc_now,
    ):
        self._tables = tables
        self._objects = objects
        self._codec = codec
        self._config = config or get_settings().backup
        self._clock = clock

    @property
    def bucket(self) -> str:
        return self._config.bucket_name

    async def ensure_bucket(self) -> None:
        """Create the backup bucket if it is missing. Errors are logged and ignored."""
        try:
            if self.bucket in await self._objects.list_buckets():
                return
            await self._objects.create_bucket(
                self.bucket,
                public=False,
                size_limit_bytes=self._config.bucket_size_limit_bytes,
                allowed_mime_types=[BACKUP_CONTENT_TYPE],
            )
            logger.info("backup_bucket_created", bucket=self.bucket)
        except DuplicateError:
            # Created concurrently
            pass
        except StorageError as e:
            logger.warning("backup_bucket_check_failed", bucket=self.bucket, error=str(e))

    async def _select_first(self, table: str, column: str, user_id: str) -> Optional[dict]:
        rows = await self._tables.select(table, {column: user_id}, limit=1)
        return rows[0] if rows else None

    async def fetch_category(self, category: BackupCategory, user_id: str) -> Any:
        """One category's records in their backup shape."""
        if category.restore_mode == RestoreMode.SETTINGS:
            rows = await asyncio.gather(*(
                self._select_first(table, category.owner_column, user_id)
                for table in category.tables
            ))
            return dict(zip(category.tables, rows))

        table = category.tables[0]
        if category.restore_mode == RestoreMode.SINGLETON:
            return await self._select_first(table, category.owner_column, user_id)

        return await self._tables.select(table, {category.owner_column: user_id})

    async def collect(self, user_id: str, settings: BackupSettings) -> dict[str, Any]:
        """Fetch every included category concurrently. The first error aborts."""
        categories = included_categories(settings)
        results = await asyncio.gather(*(
            self.fetch_category(category, user_id) for category in categories
        ))
        return {category.name: result for category, result in zip(categories, results)}

    async def perform_backup(self, user_id: str, settings: BackupSettings) -> BackupResult:
        """
        Snapshot and upload one backup.

        Raises:
            StorageError: Any fetch or upload failure (DuplicateError if the key exists)
        """
        await self.ensure_bucket()

        data = await self.collect(user_id, settings)
        size_mb = estimate_size_mb(data)

        now = self._clock()
        envelope = BackupEnvelope(
            user_id=user_id,
            backup_date=now.isoformat(),
            data=data,
            metadata=BackupMetadata(
                version=self._config.format_version,
                encryption=settings.encryption_enabled,
            ),
        )
        envelope, blob = await self._codec.encode(envelope)

        path = await self._objects.upload(
            self.bucket,
            backup_path(user_id, unix_millis(now)),
            blob,
            content_type=BACKUP_CONTENT_TYPE,
            upsert=False,
        )
        logger.info(
            "backup_uploaded",
            user_id=user_id,
            path=path,
            categories=list(data),
            encrypted=bool(envelope.metadata.encrypted),
        )

        # Hand back the decoded map, not the transformed text
        return BackupResult(
            file_path=path,
            size_mb=size_mb,
            backup_data=envelope.model_copy(update={"data": data}),
        )
