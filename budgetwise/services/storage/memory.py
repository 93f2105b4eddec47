"""
In-Memory Storage

Process-local implementations of every storage interface. Used by the
test suite and when the app runs without remote credentials.

Rows and objects are deep-copied on the way in and out, so callers can
never mutate stored state through a returned reference.
"""

import copy
from typing import Any, Optional
from uuid import uuid4

from budgetwise.models.audit import AuditEvent
from budgetwise.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    KeyValueStoreInterface,
    NotFoundError,
    ObjectStorageInterface,
    Row,
    TableStoreInterface,
)
from budgetwise.services.storage.payload import normalize_payload
from budgetwise.services.storage.query import apply_query, matches_filters


class InMemoryTableStore(TableStoreInterface):
    """Remote relational store kept in a dict of table name -> rows."""

    def __init__(self, tables: Optional[dict[str, list[Row]]] = None):
        self._tables: dict[str, list[Row]] = {
            name: copy.deepcopy(rows) for name, rows in (tables or {}).items()
        }

    def rows(self, table: str) -> list[Row]:
        """Snapshot of a table, for inspection."""
        return copy.deepcopy(self._tables.get(table, []))

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]:
        rows = apply_query(
            self._tables.get(table, []), filters, order_by, descending, limit
        )
        return copy.deepcopy(rows)

    async def insert(self, table: str, rows: list[Row]) -> list[Row]:
        existing = self._tables.setdefault(table, [])
        existing_ids = {row.get("id") for row in existing if "id" in row}

        prepared = []
        for row in rows:
            new_row = copy.deepcopy(row)
            new_row.setdefault("id", str(uuid4()))
            if new_row["id"] in existing_ids:
                raise DuplicateError(
                    f"Duplicate id {new_row['id']} in table {table}"
                )
            existing_ids.add(new_row["id"])
            prepared.append(new_row)

        existing.extend(prepared)
        return copy.deepcopy(prepared)

    async def upsert(
        self,
        table: str,
        rows: list[Row],
        on_conflict: str = "id",
    ) -> list[Row]:
        existing = self._tables.setdefault(table, [])
        written = []
        for row in rows:
            new_row = copy.deepcopy(row)
            key = new_row.get(on_conflict)
            for idx, current in enumerate(existing):
                if key is not None and current.get(on_conflict) == key:
                    merged = {**current, **new_row}
                    existing[idx] = merged
                    written.append(merged)
                    break
            else:
                new_row.setdefault("id", str(uuid4()))
                existing.append(new_row)
                written.append(new_row)
        return copy.deepcopy(written)

    async def update(
        self,
        table: str,
        values: Row,
        filters: dict[str, Any],
    ) -> list[Row]:
        updated = []
        for row in self._tables.get(table, []):
            if matches_filters(row, filters):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        rows = self._tables.get(table, [])
        kept = [row for row in rows if not matches_filters(row, filters)]
        self._tables[table] = kept
        return len(rows) - len(kept)


class InMemoryObjectStorage(ObjectStorageInterface):
    """Object storage kept in a dict of bucket -> {path: bytes}."""

    def __init__(self):
        self._buckets: dict[str, dict[str, bytes]] = {}
        self.bucket_options: dict[str, dict[str, Any]] = {}

    async def list_buckets(self) -> list[str]:
        return sorted(self._buckets)

    async def create_bucket(
        self,
        name: str,
        public: bool = False,
        size_limit_bytes: Optional[int] = None,
        allowed_mime_types: Optional[list[str]] = None,
    ) -> None:
        if name in self._buckets:
            raise DuplicateError(f"Bucket already exists: {name}")
        self._buckets[name] = {}
        self.bucket_options[name] = {
            "public": public,
            "size_limit_bytes": size_limit_bytes,
            "allowed_mime_types": allowed_mime_types,
        }

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/json",
        upsert: bool = False,
    ) -> str:
        objects = self._buckets.get(bucket)
        if objects is None:
            raise NotFoundError(f"Bucket not found: {bucket}")
        if path in objects and not upsert:
            raise DuplicateError(f"Object already exists: {bucket}/{path}")
        objects[path] = bytes(data)
        return path

    async def download(self, bucket: str, path: str) -> bytes:
        objects = self._buckets.get(bucket, {})
        if path not in objects:
            raise NotFoundError(f"Object not found: {bucket}/{path}")
        return normalize_payload(objects[path])

    def put_raw(self, bucket: str, path: str, data: bytes) -> None:
        """Place an object directly, bypassing upload checks."""
        self._buckets.setdefault(bucket, {})[path] = bytes(data)

    def paths(self, bucket: str) -> list[str]:
        return sorted(self._buckets.get(bucket, {}))


class InMemoryKeyValueStore(KeyValueStoreInterface):
    """Key-value store kept in a dict. Not durable."""

    def __init__(self, items: Optional[dict[str, str]] = None):
        self._items: dict[str, str] = dict(items or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def get_all_keys(self) -> list[str]:
        return list(self._items)

    async def multi_remove(self, keys: list[str]) -> None:
        for key in keys:
            self._items.pop(key, None)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
