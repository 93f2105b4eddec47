"""Tests for the automatic backup schedule."""

import asyncio
from datetime import datetime, timedelta, timezone

from budgetwise.backup import AutoBackupScheduler, BackupFailedError
from budgetwise.models.audit import AuditEventType
from budgetwise.models.backup import BackupType
from budgetwise.session import SessionUserProvider


USER_ID = "user-1"
NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)
CHECKED_KEY = "@budgetwise:auto_backup_checked:user-1"
NEXT_DUE_KEY = "@budgetwise:next_backup_due:user-1"


class FakeRunner:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def __call__(self, backup_type, correlation_id):
        self.calls.append(backup_type)
        if self.error:
            raise self.error
        return {"backup_type": backup_type}


def make_scheduler(local_store, settings_service, security_config, audit_logger, runner, user_id=USER_ID):
    return AutoBackupScheduler(
        local_store,
        settings_service,
        SessionUserProvider(user_id),
        runner,
        security_config,
        audit_logger=audit_logger,
    )


class TestAutoBackupScheduler:
    def test_first_check_runs_and_schedules_next(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        result = asyncio.run(scheduler.check_and_run(NOW))

        assert result == {"backup_type": BackupType.AUTOMATIC}
        assert runner.calls == [BackupType.AUTOMATIC]
        assert asyncio.run(local_store.get_item(CHECKED_KEY)) == "2024-03-15"
        next_due = datetime.fromisoformat(asyncio.run(local_store.get_item(NEXT_DUE_KEY)))
        assert next_due == NOW + timedelta(days=7)

    def test_checked_once_per_day(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        async def scenario():
            await scheduler.check_and_run(NOW)
            await local_store.remove_item(NEXT_DUE_KEY)
            return await scheduler.check_and_run(NOW + timedelta(hours=5))

        assert asyncio.run(scenario()) is None
        assert len(runner.calls) == 1

    def test_not_due_yet(self, local_store, settings_service, security_config, audit_logger, audit_storage):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        async def scenario():
            await scheduler.check_and_run(NOW)
            return await scheduler.check_and_run(NOW + timedelta(days=3))

        assert asyncio.run(scenario()) is None
        assert len(runner.calls) == 1
        assert audit_storage.events[-1].event_type == AuditEventType.AUTO_BACKUP_SKIPPED

    def test_runs_again_once_due(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        async def scenario():
            await settings_service.update_backup_settings(USER_ID, {"backup_frequency": "daily"})
            await scheduler.check_and_run(NOW)
            await scheduler.check_and_run(NOW + timedelta(days=1))
            return await local_store.get_item(NEXT_DUE_KEY)

        next_due = asyncio.run(scenario())
        assert len(runner.calls) == 2
        assert datetime.fromisoformat(next_due) == NOW + timedelta(days=2)

    def test_disabled_auto_backup(self, local_store, settings_service, security_config, audit_logger, audit_storage):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        async def scenario():
            await settings_service.update_backup_settings(USER_ID, {"auto_backup_enabled": False})
            return await scheduler.check_and_run(NOW)

        assert asyncio.run(scenario()) is None
        assert runner.calls == []
        skipped = audit_storage.events[-1]
        assert skipped.event_type == AuditEventType.AUTO_BACKUP_SKIPPED

    def test_failed_backup_keeps_due_time(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner(error=BackupFailedError("offline"))
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        result = asyncio.run(scheduler.check_and_run(NOW))

        assert result is None
        assert runner.calls == [BackupType.AUTOMATIC]
        assert asyncio.run(local_store.get_item(NEXT_DUE_KEY)) is None
        # Still debounced for today
        assert asyncio.run(local_store.get_item(CHECKED_KEY)) == "2024-03-15"

    def test_due_time_falls_back_to_last_backup(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner)

        async def scenario():
            await settings_service.update_backup_settings(
                USER_ID, {"last_backup_at": NOW - timedelta(days=3)}
            )
            return await scheduler.check_and_run(NOW)

        assert asyncio.run(scenario()) is None
        assert runner.calls == []

    def test_signed_out_does_nothing(self, local_store, settings_service, security_config, audit_logger):
        runner = FakeRunner()
        scheduler = make_scheduler(local_store, settings_service, security_config, audit_logger, runner, user_id=None)

        assert asyncio.run(scheduler.check_and_run(NOW)) is None
        assert asyncio.run(local_store.get_all_keys()) == []

    def test_drives_backup_flow(self, local_store, settings_service, security_config, audit_logger, backup_flow):
        scheduler = make_scheduler(
            local_store, settings_service, security_config, audit_logger, backup_flow.run_backup
        )

        result = asyncio.run(scheduler.check_and_run(NOW))

        history = asyncio.run(settings_service.get_backup_history(USER_ID))
        assert history[0].backup_type == BackupType.AUTOMATIC
        assert history[0].id == result.history_id
