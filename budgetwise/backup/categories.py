"""
Backup categories.

Which remote tables make up a backup, which column scopes them to the
user, which BackupSettings flag gates them, and how they are restored.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from budgetwise.models.settings import BackupSettings


class RestoreMode(str, Enum):
    # Delete every row of the user, then insert the backed-up rows
    REPLACE = "replace"
    # One row per user: upsert it
    SINGLETON = "singleton"
    # {"user_settings": row, "security_settings": row}, each upserted
    SETTINGS = "settings"


class BackupCategory(BaseModel):
    name: str
    tables: tuple[str, ...]
    owner_column: str = "user_id"
    # BackupSettings flag; None means always included
    gate: Optional[str] = None
    restore_mode: RestoreMode = RestoreMode.REPLACE

    def is_included(self, settings: BackupSettings) -> bool:
        return self.gate is None or bool(getattr(settings, self.gate))


SETTINGS_TABLES = ("user_settings", "security_settings")

BACKUP_CATEGORIES: tuple[BackupCategory, ...] = (
    BackupCategory(name="transactions", tables=("transactions",), gate="include_transactions"),
    BackupCategory(name="budgets", tables=("budgets",), gate="include_budgets"),
    BackupCategory(name="challenges", tables=("user_challenges",), gate="include_challenges"),
    BackupCategory(name="saving_goals", tables=("saving_goals",)),
    BackupCategory(
        name="profile",
        tables=("profiles",),
        owner_column="id",
        restore_mode=RestoreMode.SINGLETON,
    ),
    BackupCategory(name="categories", tables=("categories",)),
    BackupCategory(
        name="settings",
        tables=SETTINGS_TABLES,
        gate="include_settings",
        restore_mode=RestoreMode.SETTINGS,
    ),
)

CATEGORIES_BY_NAME = {category.name: category for category in BACKUP_CATEGORIES}


def included_categories(settings: BackupSettings) -> list[BackupCategory]:
    """Categories a backup under these settings contains, in backup order."""
    return [category for category in BACKUP_CATEGORIES if category.is_included(settings)]
