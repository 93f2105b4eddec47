"""
Device-Local Key-Value Store

A durable string -> string store backed by one JSON file. Every write
rewrites the whole file through a temporary sibling and an atomic
rename, so a crash mid-write leaves the previous contents intact.
"""

import json
from pathlib import Path
from typing import Optional, Union

import structlog

from budgetwise.services.storage.interface import KeyValueStoreInterface, StorageError


logger = structlog.get_logger("budgetwise.storage.local")


class JsonFileKeyValueStore(KeyValueStoreInterface):
    """Key-value store persisted to a JSON object on disk."""

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._items: Optional[dict[str, str]] = None

    def _load(self) -> dict[str, str]:
        if self._items is None:
            if self._path.exists():
                try:
                    raw = json.loads(self._path.read_text(encoding="utf-8"))
                except (OSError, ValueError) as e:
                    raise StorageError(f"Failed to read local store {self._path}: {e}")
                if not isinstance(raw, dict):
                    raise StorageError(f"Local store {self._path} is not a JSON object")
                self._items = {str(k): str(v) for k, v in raw.items()}
            else:
                self._items = {}
        return self._items

    def _flush(self) -> None:
        items = self._load()
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(items, indent=2, sort_keys=True), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as e:
            logger.error("local_store_write_failed", path=str(self._path), error=str(e))
            raise StorageError(f"Failed to write local store {self._path}: {e}")

    async def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._load()[key] = value
        self._flush()

    async def remove_item(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            self._flush()

    async def get_all_keys(self) -> list[str]:
        return list(self._load())

    async def multi_remove(self, keys: list[str]) -> None:
        items = self._load()
        removed = [key for key in keys if items.pop(key, None) is not None]
        if removed:
            self._flush()
