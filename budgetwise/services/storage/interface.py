"""
Abstract Storage Interfaces

DESIGN DECISION: Backup, restore and the security services only see these
ABCs. Google Sheets, Cloudinary, the JSON file and the in-memory stores
are interchangeable behind them, and blob payload shapes are normalized
before anything above this layer sees them.

Four stores are involved:
- Remote relational tables, scoped by user_id
- Remote object storage for backup blobs
- The device-local key-value store (flags, keys, credentials, counters)
- The audit log

Failures raise StorageError subclasses; callers decide whether to
surface them or turn them into an in-band failure.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from budgetwise.models.audit import AuditEvent


Row = dict[str, Any]


class TableStoreInterface(ABC):
    """
    Abstract interface for the remote relational store.

    Every operation is table-scoped and filtered by column equality.
    Each call is its own remote transaction; nothing here spans tables.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        """
        Read rows matching every filter.

        Returns:
            Matching rows (possibly empty)

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def insert(self, table: str, rows: list[Row]) -> list[Row]:
        """
        Insert rows.

        Returns:
            The inserted rows, with any server-assigned columns (e.g. id)

        Raises:
            DuplicateError: If a row's id already exists
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str = "id",
    ) -> list[Row]:
        """
        Insert rows, replacing any row with the same `on_conflict` value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        """
        Update every row matching the filters.

        Returns:
            The updated rows

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        """
        Delete every row matching the filters.

        Returns:
            Number of rows deleted

        Raises:
            StorageError: If the delete fails
        """
        pass


class ObjectStorageInterface(ABC):
    """
    Abstract interface for remote object storage.

    Objects live in named buckets and are addressed by path.
    """

    @abstractmethod
    async def list_buckets(self) -> list[str]:
        """List bucket names."""
        pass

    @abstractmethod
    async def create_bucket(
        self,
        name: str,
        public: bool = False,
        size_limit_bytes: Optional[int] = None,
        allowed_mime_types: Optional[list[str]] = None,
    ) -> None:
        """
        Create a bucket.

        Raises:
            DuplicateError: If the bucket already exists
            StorageError: If creation fails (e.g. permissions)
        """
        pass

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = False,
    ) -> str:
        """
        Upload an object.

        Returns:
            The stored path

        Raises:
            DuplicateError: If upsert is False and the path exists
            StorageError: If the upload fails
        """
        pass

    @abstractmethod
    async def download(self, bucket: str, path: str) -> bytes:
        """
        Download an object as an owned byte buffer.

        Implementations pass the transport's payload through
        normalize_payload before returning it.

        Raises:
            NotFoundError: If the object doesn't exist
            StorageError: If the download fails
        """
        pass


class KeyValueStoreInterface(ABC):
    """
    Abstract interface for the device-local key-value store.

    String keys, string values, durable across restarts.
    """

    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    async def get_all_keys(self) -> list[str]:
        pass

    @abstractmethod
    async def multi_remove(self, keys: list[str]) -> None:
        pass


class AuditStorageInterface(ABC):
    """Append-only store for AuditEvents."""

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Returns False when the event could not be persisted."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """At most `limit` events, newest first."""
        pass


class StorageError(Exception):
    """A remote or local store call failed. Retried by remote_retry unless retryable is False."""
    retryable = True


class NotFoundError(StorageError):
    """No such object, bucket or row."""
    retryable = False


class DuplicateError(StorageError):
    """The id or object path already exists."""
    retryable = False


class ConnectionError(StorageError):
    """Credentials or network prevented reaching the backend."""


class PayloadDecodeError(StorageError):
    """A downloaded payload had a shape we cannot turn into bytes."""
    retryable = False
