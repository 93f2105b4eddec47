"""Services package."""

from budgetwise.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    KeyValueStoreInterface,
    NotFoundError,
    ObjectStorageInterface,
    StorageError,
    TableStoreInterface,
)
from budgetwise.services.user_settings import UserSettingsService
from budgetwise.services.visits import (
    DayPeriod,
    GreetingType,
    VisitCounterService,
    consistent_message_index,
    greeting_type,
)

__all__ = [
    # Settings
    "UserSettingsService",
    # Visits
    "DayPeriod",
    "GreetingType",
    "VisitCounterService",
    "consistent_message_index",
    "greeting_type",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "KeyValueStoreInterface",
    "NotFoundError",
    "ObjectStorageInterface",
    "StorageError",
    "TableStoreInterface",
]
