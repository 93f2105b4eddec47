"""
Automatic Backup Scheduler

Checked whenever the app comes to the foreground. Runs an automatic
backup when the user's next-due time has passed.

Per-user keys in the local key-value store:
- {prefix}auto_backup_checked:{user}  ISO date of the last check
- {prefix}next_backup_due:{user}      ISO datetime of the next backup

DESIGN DECISION: The check is debounced to once per calendar day, and the
debounce key is written before any remote call, so a crash or a failed
backup does not cause a retry storm on every foreground event.
"""

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from budgetwise.audit import AuditLogger, create_correlation_id
from budgetwise.backup.errors import BackupError
from budgetwise.clock import Clock, utc_now
from budgetwise.config import SecurityConfig, get_settings
from budgetwise.models.backup import BackupResult, BackupType
from budgetwise.models.settings import BackupSettings
from budgetwise.services.storage import KeyValueStoreInterface, StorageError
from budgetwise.services.user_settings import UserSettingsService
from budgetwise.session import CurrentUserProvider


logger = structlog.get_logger("budgetwise.backup.scheduler")

BackupRunner = Callable[[BackupType, UUID], Awaitable[BackupResult]]


def _parse_datetime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AutoBackupScheduler:
    def __init__(
        self,
        store: KeyValueStoreInterface,
        settings_service: UserSettingsService,
        user_provider: CurrentUserProvider,
        run_backup: BackupRunner,
        config: Optional[SecurityConfig] = None,
        clock: Clock = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings_service
        self._users = user_provider
        self._run_backup = run_backup
        self._prefix = (config or get_settings().security).storage_key_prefix
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

    def _checked_key(self, user_id: str) -> str:
        return f"{self._prefix}auto_backup_checked:{user_id}"

    def _next_due_key(self, user_id: str) -> str:
        return f"{self._prefix}next_backup_due:{user_id}"

    async def get_next_due(
        self,
        user_id: str,
        settings: BackupSettings,
        now: datetime,
    ) -> datetime:
        """
        When the next automatic backup is due.

        Falls back to last_backup_at + interval, or now for a user who
        never backed up.
        """
        stored = await self._store.get_item(self._next_due_key(user_id))
        if stored:
            parsed = _parse_datetime(stored)
            if parsed is not None:
                return parsed
            logger.warning("next_due_unparseable", user_id=user_id, value=stored)

        if settings.last_backup_at is not None:
            last = settings.last_backup_at
            if last.tzinfo is None:
                last = last.replace(tzinfo=timezone.utc)
            return last + timedelta(days=settings.backup_frequency.interval_days)
        return now

    async def check_and_run(self, now: Optional[datetime] = None) -> Optional[BackupResult]:
        """
        Run an automatic backup if one is due.

        Returns the backup result, or None if nothing ran (signed out,
        already checked today, disabled, not due, or the backup failed).
        """
        now = now or self._clock()
        user_id = self._users.get_current_user_id()
        if not user_id:
            return None

        today = now.date().isoformat()
        try:
            if await self._store.get_item(self._checked_key(user_id)) == today:
                return None
            await self._store.set_item(self._checked_key(user_id), today)
        except StorageError as e:
            logger.error("auto_backup_debounce_failed", user_id=user_id, error=str(e))
            return None

        settings = await self._settings.get_backup_settings(user_id)
        if settings is None:
            await self._audit.log_auto_backup_skipped(user_id, "settings unavailable")
            return None
        if not settings.auto_backup_enabled:
            await self._audit.log_auto_backup_skipped(user_id, "auto backup disabled")
            return None

        try:
            due_at = await self.get_next_due(user_id, settings, now)
        except StorageError as e:
            logger.error("next_due_read_failed", user_id=user_id, error=str(e))
            return None

        if now < due_at:
            await self._audit.log_auto_backup_skipped(user_id, "not due")
            return None

        correlation_id = create_correlation_id()
        await self._audit.log_auto_backup_triggered(user_id, due_at, correlation_id)

        try:
            result = await self._run_backup(BackupType.AUTOMATIC, correlation_id)
        except BackupError as e:
            # next_due stays put; tomorrow's check tries again
            logger.warning("auto_backup_failed", user_id=user_id, error=str(e))
            return None

        next_due = now + timedelta(days=settings.backup_frequency.interval_days)
        try:
            await self._store.set_item(self._next_due_key(user_id), next_due.isoformat())
        except StorageError as e:
            logger.error("next_due_write_failed", user_id=user_id, error=str(e))

        return result
