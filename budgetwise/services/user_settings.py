"""
Settings Repository

Reads and writes the per-user settings rows and the backup history.

DESIGN DECISION: Every method here catches StorageError, logs it and
returns an in-band failure (None, False or an empty list). Callers that
must tell "absent" from "failed" (the backup flow) check for None and
raise their own error.

Settings rows are created lazily with model defaults on first read.
find_security_settings is the one read that never creates a row: the
security policy must see "no settings" as "no settings".
"""

from typing import Any, Optional, Type, TypeVar
from uuid import uuid4

import structlog
from pydantic import BaseModel, ValidationError

from budgetwise.clock import Clock, utc_now
from budgetwise.config import BackupConfig, get_settings
from budgetwise.models.backup import BackupHistory, BackupStatus, BackupType
from budgetwise.models.settings import BackupSettings, SecuritySettings, UserSettings
from budgetwise.services.storage import StorageError, TableStoreInterface


logger = structlog.get_logger("budgetwise.services.user_settings")

USER_SETTINGS_TABLE = "user_settings"
SECURITY_SETTINGS_TABLE = "security_settings"
BACKUP_SETTINGS_TABLE = "backup_settings"
BACKUP_HISTORY_TABLE = "backup_history"

SettingsModel = TypeVar("SettingsModel", bound=BaseModel)


class UserSettingsService:
    """Repository for user_settings, security_settings, backup_settings and backup_history."""

    def __init__(
        self,
        tables: TableStoreInterface,
        backup_config: Optional[BackupConfig] = None,
        clock: Clock = utc_now,
    ):
        self._tables = tables
        self._backup_config = backup_config or get_settings().backup
        self._clock = clock

    # -------------------------------------------------------------------------
    # Generic per-user settings rows
    # -------------------------------------------------------------------------

    async def _find(
        self,
        table: str,
        model: Type[SettingsModel],
        user_id: str,
    ) -> Optional[SettingsModel]:
        try:
            rows = await self._tables.select(table, {"user_id": user_id}, limit=1)
        except StorageError as e:
            logger.error("settings_read_failed", table=table, user_id=user_id, error=str(e))
            return None
        if not rows:
            return None
        try:
            return model.model_validate(rows[0])
        except ValidationError as e:
            logger.error("settings_row_invalid", table=table, user_id=user_id, error=str(e))
            return None

    async def _get_or_create(
        self,
        table: str,
        model: Type[SettingsModel],
        user_id: str,
    ) -> Optional[SettingsModel]:
        try:
            rows = await self._tables.select(table, {"user_id": user_id}, limit=1)
            if rows:
                return model.model_validate(rows[0])

            defaults = model()
            now = self._clock().isoformat()
            await self._tables.insert(table, [{
                "user_id": user_id,
                **defaults.model_dump(mode="json"),
                "created_at": now,
                "updated_at": now,
            }])
            logger.info("settings_created", table=table, user_id=user_id)
            return defaults
        except StorageError as e:
            logger.error("settings_load_failed", table=table, user_id=user_id, error=str(e))
            return None
        except ValidationError as e:
            logger.error("settings_row_invalid", table=table, user_id=user_id, error=str(e))
            return None

    async def _update(
        self,
        table: str,
        model: Type[SettingsModel],
        user_id: str,
        updates: dict[str, Any],
    ) -> bool:
        current = await self._get_or_create(table, model, user_id)
        if current is None:
            return False

        # Validate the merged row before anything is written
        try:
            merged = model.model_validate({**current.model_dump(), **updates})
        except ValidationError as e:
            logger.warning(
                "settings_update_rejected",
                table=table,
                user_id=user_id,
                fields=sorted(updates),
                error_count=e.error_count(),
            )
            return False
        values = {
            key: value
            for key, value in merged.model_dump(mode="json").items()
            if key in updates
        }
        values["updated_at"] = self._clock().isoformat()

        try:
            await self._tables.update(table, values, {"user_id": user_id})
            return True
        except StorageError as e:
            logger.error("settings_update_failed", table=table, user_id=user_id, error=str(e))
            return False

    # -------------------------------------------------------------------------
    # user_settings
    # -------------------------------------------------------------------------

    async def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        return await self._get_or_create(USER_SETTINGS_TABLE, UserSettings, user_id)

    async def update_user_settings(self, user_id: str, updates: dict[str, Any]) -> bool:
        return await self._update(USER_SETTINGS_TABLE, UserSettings, user_id, updates)

    # -------------------------------------------------------------------------
    # security_settings
    # -------------------------------------------------------------------------

    async def find_security_settings(self, user_id: str) -> Optional[SecuritySettings]:
        """Read the security settings row without creating it."""
        return await self._find(SECURITY_SETTINGS_TABLE, SecuritySettings, user_id)

    async def get_security_settings(self, user_id: str) -> Optional[SecuritySettings]:
        """Read the security settings row, creating it with defaults if absent."""
        return await self._get_or_create(SECURITY_SETTINGS_TABLE, SecuritySettings, user_id)

    async def update_security_settings(self, user_id: str, updates: dict[str, Any]) -> bool:
        return await self._update(SECURITY_SETTINGS_TABLE, SecuritySettings, user_id, updates)

    # -------------------------------------------------------------------------
    # backup_settings
    # -------------------------------------------------------------------------

    async def get_backup_settings(self, user_id: str) -> Optional[BackupSettings]:
        return await self._get_or_create(BACKUP_SETTINGS_TABLE, BackupSettings, user_id)

    async def update_backup_settings(self, user_id: str, updates: dict[str, Any]) -> bool:
        return await self._update(BACKUP_SETTINGS_TABLE, BackupSettings, user_id, updates)

    # -------------------------------------------------------------------------
    # backup_history
    # -------------------------------------------------------------------------

    async def get_backup_history(self, user_id: str) -> list[BackupHistory]:
        """Most recent history rows, newest first."""
        try:
            rows = await self._tables.select(
                BACKUP_HISTORY_TABLE,
                {"user_id": user_id},
                order_by="created_at",
                descending=True,
                limit=self._backup_config.history_limit,
            )
        except StorageError as e:
            logger.error("backup_history_read_failed", user_id=user_id, error=str(e))
            return []

        history = []
        for row in rows:
            try:
                history.append(BackupHistory.model_validate(row))
            except ValidationError:
                logger.warning("backup_history_row_skipped", row_id=row.get("id"))
        return history

    async def create_backup_record(
        self,
        user_id: str,
        backup_type: BackupType,
    ) -> Optional[str]:
        """Create a pending history row. Returns its id, or None on failure."""
        now = self._clock().isoformat()
        record_id = str(uuid4())
        try:
            await self._tables.insert(BACKUP_HISTORY_TABLE, [{
                "id": record_id,
                "user_id": user_id,
                "backup_type": backup_type.value,
                "backup_status": BackupStatus.PENDING.value,
                "started_at": now,
                "created_at": now,
            }])
        except StorageError as e:
            logger.error("backup_record_create_failed", user_id=user_id, error=str(e))
            return None
        return record_id

    async def update_backup_record(self, record_id: str, updates: dict[str, Any]) -> bool:
        values = {
            key: value.value if hasattr(value, "value") else value
            for key, value in updates.items()
        }
        try:
            updated = await self._tables.update(
                BACKUP_HISTORY_TABLE, values, {"id": record_id}
            )
        except StorageError as e:
            logger.error("backup_record_update_failed", record_id=record_id, error=str(e))
            return False
        return bool(updated)
