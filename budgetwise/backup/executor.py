"""
Restore Executor

Overwrites the current user's remote records with a decoded envelope.

DESIGN DECISION: Ownership always comes from the session, never from the
envelope. Every restored row has its owner column rewritten to the
current user before it is written.

Categories are restored one by one in backup order. For list categories
the user's rows are deleted before the backed-up rows are inserted.
There is no cross-category atomicity: the first failure stops the
restore, categories before it stay overwritten and categories after it
stay untouched.
"""

from typing import Any

import structlog

from budgetwise.backup.categories import (
    BACKUP_CATEGORIES,
    CATEGORIES_BY_NAME,
    BackupCategory,
    RestoreMode,
)
from budgetwise.models.backup import BackupEnvelope, CategoryRestoreOutcome, RestoreResult
from budgetwise.services.storage import Row, StorageError, TableStoreInterface


logger = structlog.get_logger("budgetwise.backup.executor")


class InvalidCategoryDataError(ValueError):
    """A category's records do not have the shape its restore mode needs."""
    pass


def count_rows(category: BackupCategory, value: Any) -> int:
    """Number of records a category holds, for previews and outcomes."""
    if value is None:
        return 0
    if category.restore_mode == RestoreMode.REPLACE:
        return len(value) if isinstance(value, list) else 0
    if category.restore_mode == RestoreMode.SETTINGS:
        if not isinstance(value, dict):
            return 0
        return sum(1 for table in category.tables if value.get(table))
    return 1 if value else 0


def row_counts(envelope: BackupEnvelope) -> dict[str, int]:
    data = envelope.data if isinstance(envelope.data, dict) else {}
    return {
        category.name: count_rows(category, data[category.name])
        for category in BACKUP_CATEGORIES
        if category.name in data
    }


class RestoreExecutor:
    def __init__(self, tables: TableStoreInterface):
        self._tables = tables

    @staticmethod
    def _owned(row: Any, column: str, user_id: str) -> Row:
        if not isinstance(row, dict):
            raise InvalidCategoryDataError(f"Expected a record, got {type(row).__name__}")
        return {**row, column: user_id}

    async def _replace(self, category: BackupCategory, value: Any, user_id: str) -> int:
        if value is None:
            value = []
        if not isinstance(value, list):
            raise InvalidCategoryDataError(f"{category.name} must be a list of records")

        table = category.tables[0]
        rows = [self._owned(row, category.owner_column, user_id) for row in value]

        # Deletion completes before any insert starts
        deleted = await self._tables.delete(table, {category.owner_column: user_id})
        if rows:
            await self._tables.insert(table, rows)

        logger.info(
            "category_replaced",
            category=category.name,
            table=table,
            deleted=deleted,
            inserted=len(rows),
        )
        return len(rows)

    async def _singleton(self, category: BackupCategory, value: Any, user_id: str) -> int:
        if not value:
            return 0
        row = self._owned(value, category.owner_column, user_id)
        await self._tables.upsert(category.tables[0], [row], on_conflict=category.owner_column)
        return 1

    async def _settings(self, category: BackupCategory, value: Any, user_id: str) -> int:
        if value is None:
            return 0
        if not isinstance(value, dict):
            raise InvalidCategoryDataError("settings must map table name to record")

        restored = 0
        for table in category.tables:
            row = value.get(table)
            if not row:
                continue
            row = self._owned(row, "user_id", user_id)
            # Keep the existing row's id
            row.pop("id", None)
            await self._tables.upsert(table, [row], on_conflict="user_id")
            restored += 1
        return restored

    async def restore_category(self, category: BackupCategory, value: Any, user_id: str) -> int:
        if category.restore_mode == RestoreMode.SETTINGS:
            return await self._settings(category, value, user_id)
        if category.restore_mode == RestoreMode.SINGLETON:
            return await self._singleton(category, value, user_id)
        return await self._replace(category, value, user_id)

    async def execute_restore(
        self,
        envelope: BackupEnvelope,
        user_id: str,
        source_path: str,
    ) -> RestoreResult:
        """
        Restore every known category present in the envelope.

        Never raises for a category failure; the result says which
        categories were restored and which one failed.
        """
        if not isinstance(envelope.data, dict):
            raise InvalidCategoryDataError("Envelope data must be decoded before restoring")

        unknown = [name for name in envelope.data if name not in CATEGORIES_BY_NAME]
        if unknown:
            logger.warning("unknown_categories_skipped", categories=unknown)

        outcomes: list[CategoryRestoreOutcome] = []
        for category in BACKUP_CATEGORIES:
            if category.name not in envelope.data:
                continue
            try:
                restored = await self.restore_category(
                    category, envelope.data[category.name], user_id
                )
            except (StorageError, InvalidCategoryDataError) as e:
                logger.error(
                    "category_restore_failed",
                    category=category.name,
                    user_id=user_id,
                    error=str(e),
                )
                outcomes.append(CategoryRestoreOutcome(
                    category=category.name,
                    table=",".join(category.tables),
                    success=False,
                    error_message=str(e),
                ))
                return RestoreResult(
                    success=False,
                    source_path=source_path,
                    outcomes=outcomes,
                    error_message=f"Restoring {category.name} failed: {e}",
                )

            outcomes.append(CategoryRestoreOutcome(
                category=category.name,
                table=",".join(category.tables),
                rows_restored=restored,
            ))

        return RestoreResult(success=True, source_path=source_path, outcomes=outcomes)
