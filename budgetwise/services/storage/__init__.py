"""
Storage package for BudgetWise.

Remote backends (Google Sheets, Cloudinary) are imported from their own
modules so the in-memory stores work without credentials.
"""

from budgetwise.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    KeyValueStoreInterface,
    NotFoundError,
    ObjectStorageInterface,
    PayloadDecodeError,
    Row,
    StorageError,
    TableStoreInterface,
)
from budgetwise.services.storage.local import JsonFileKeyValueStore
from budgetwise.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    InMemoryObjectStorage,
    InMemoryTableStore,
)
from budgetwise.services.storage.payload import normalize_payload, payload_to_text

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "KeyValueStoreInterface",
    "ObjectStorageInterface",
    "Row",
    "TableStoreInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "PayloadDecodeError",
    "StorageError",
    # Implementations
    "InMemoryAuditStorage",
    "InMemoryKeyValueStore",
    "InMemoryObjectStorage",
    "InMemoryTableStore",
    "JsonFileKeyValueStore",
    # Payloads
    "normalize_payload",
    "payload_to_text",
]
