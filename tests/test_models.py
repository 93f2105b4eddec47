"""
Tests for BudgetWise

Test strategy:
1. Unit tests for individual components (models, encryption, policy)
2. Flow tests against the in-memory stores
3. No real API calls in tests
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from budgetwise.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    BackupEnvelope,
    BackupFrequency,
    BackupHistory,
    BackupMetadata,
    BackupSettings,
    BackupStatus,
    BackupType,
    CategoryRestoreOutcome,
    DataCategory,
    RestoreResult,
    SecuritySettings,
    StoredCredentials,
)


class TestSettingsModels:
    """Tests for the per-user settings rows."""

    def test_backup_settings_defaults(self):
        """New users back up everything weekly, encrypted."""
        settings = BackupSettings()
        assert settings.auto_backup_enabled
        assert settings.backup_frequency == BackupFrequency.WEEKLY
        assert settings.include_transactions
        assert settings.include_settings
        assert settings.encryption_enabled
        assert settings.last_backup_at is None

    def test_frequency_intervals(self):
        assert BackupFrequency.DAILY.interval_days == 1
        assert BackupFrequency.WEEKLY.interval_days == 7
        assert BackupFrequency.MONTHLY.interval_days == 30

    def test_backup_settings_rejects_negative_size(self):
        with pytest.raises(ValidationError):
            BackupSettings(backup_size_mb=-1)

    def test_backup_settings_ignores_row_columns(self):
        """Rows carry id/user_id/timestamps that the model does not declare."""
        settings = BackupSettings.model_validate({
            "id": "row-1",
            "user_id": "user-1",
            "created_at": "2024-01-01T00:00:00+00:00",
            "backup_frequency": "daily",
        })
        assert settings.backup_frequency == BackupFrequency.DAILY

    def test_security_settings_hides(self):
        settings = SecuritySettings(hide_balances=True)
        assert settings.hides(DataCategory.BALANCES)
        assert not settings.hides(DataCategory.TRANSACTIONS)
        assert not settings.hides(DataCategory.BUDGETS)


class TestBackupModels:
    """Tests for history rows, envelopes and results."""

    def test_history_restorable_only_when_completed_with_path(self):
        completed = BackupHistory(
            id="h1",
            backup_type=BackupType.MANUAL,
            backup_status=BackupStatus.COMPLETED,
            backup_file_path="user-1/backup_1.json",
        )
        failed = completed.model_copy(update={"backup_status": BackupStatus.FAILED})
        no_path = completed.model_copy(update={"backup_file_path": None})

        assert completed.is_restorable
        assert not failed.is_restorable
        assert not no_path.is_restorable

    def test_envelope_requires_user_id(self):
        with pytest.raises(ValidationError):
            BackupEnvelope.model_validate({
                "backup_date": "2024-01-01T00:00:00",
                "data": {},
                "metadata": {"version": "1.0"},
            })

    def test_envelope_requires_metadata(self):
        with pytest.raises(ValidationError):
            BackupEnvelope.model_validate({
                "user_id": "user-1",
                "backup_date": "2024-01-01T00:00:00",
                "data": {},
            })

    def test_envelope_rejects_empty_user_id(self):
        with pytest.raises(ValidationError):
            BackupEnvelope(
                user_id="",
                backup_date="2024-01-01",
                data={},
                metadata=BackupMetadata(),
            )

    def test_envelope_coerces_datetime_backup_date(self):
        moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        envelope = BackupEnvelope(
            user_id="user-1",
            backup_date=moment,
            data={"transactions": []},
            metadata=BackupMetadata(),
        )
        assert envelope.backup_date == moment.isoformat()
        assert envelope.categories == ["transactions"]

    def test_envelope_json_omits_unset_encrypted_flag(self):
        envelope = BackupEnvelope(
            user_id="user-1",
            backup_date="2024-01-01",
            data={},
            metadata=BackupMetadata(encryption=False),
        )
        assert "encrypted" not in envelope.to_json_dict()["metadata"]

    def test_restore_result_reports_partial_progress(self):
        result = RestoreResult(
            success=False,
            outcomes=[
                CategoryRestoreOutcome(category="transactions", table="transactions", rows_restored=3),
                CategoryRestoreOutcome(category="budgets", table="budgets", success=False, error_message="boom"),
            ],
        )
        assert result.restored_categories == ["transactions"]
        assert result.failed_category == "budgets"


class TestCredentialModels:
    def test_stored_credentials_use_device_field_names(self):
        record = StoredCredentials(
            email="a@example.com",
            encrypted_password="secret",
            last_login_time=1700000000000,
            user_id="user-1",
        )
        stored = json.loads(record.to_storage_json())
        assert stored == {
            "email": "a@example.com",
            "encryptedPassword": "secret",
            "lastLoginTime": 1700000000000,
            "userId": "user-1",
        }
        assert StoredCredentials.model_validate(stored) == record


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.BACKUP_STARTED,
            description="Manual backup started",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_sheets_row(self):
        event = AuditEvent(
            event_type=AuditEventType.RESTORE_FAILED,
            user_id="user-1",
            description="Restore failed",
            details={"restored_categories": ["transactions"]},
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "restore_failed"
        assert row[4] == "user-1"
        assert json.loads(row[9]) == {"restored_categories": ["transactions"]}

    def test_builder_backup_failed_is_error(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.backup_failed(
            user_id="user-1",
            backup_id="h1",
            error_message="upload failed",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.BACKUP_FAILED
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "upload failed"
        assert event.correlation_id == correlation_id

    def test_builder_manual_backup_is_user_action(self):
        manual = AuditEventBuilder.backup_started("user-1", "h1", "manual")
        automatic = AuditEventBuilder.backup_started("user-1", "h2", "automatic")
        assert manual.is_user_action
        assert not automatic.is_user_action
