"""
Audit Models for BudgetWise

One AuditEvent per backup, restore, device-security change or
authentication challenge. The restore events matter most: a restore is a
destructive overwrite, and these rows are the only record of which blob
replaced which categories.

DESIGN DECISION: The audit trail is append-only. Nothing in this package
updates or removes an event once written.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


# Column order of the audit worksheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class AuditEventType(str, Enum):
    # Backup
    BACKUP_STARTED = "backup_started"
    BACKUP_COMPLETED = "backup_completed"
    BACKUP_FAILED = "backup_failed"
    AUTO_BACKUP_TRIGGERED = "auto_backup_triggered"
    AUTO_BACKUP_SKIPPED = "auto_backup_skipped"

    # Restore
    RESTORE_REQUESTED = "restore_requested"
    RESTORE_CONFIRMED = "restore_confirmed"
    RESTORE_CANCELLED = "restore_cancelled"
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_FAILED = "restore_failed"

    # Device security
    ENCRYPTION_ENABLED = "encryption_enabled"
    ENCRYPTION_DISABLED = "encryption_disabled"
    CREDENTIALS_STORED = "credentials_stored"
    CREDENTIALS_EXPIRED = "credentials_expired"
    CREDENTIALS_CLEARED = "credentials_cleared"
    BIOMETRIC_LOGIN_ENABLED = "biometric_login_enabled"
    BIOMETRIC_LOGIN_DISABLED = "biometric_login_disabled"

    # Authentication challenges
    AUTH_CHALLENGE_REQUIRED = "auth_challenge_required"
    AUTH_CHALLENGE_PASSED = "auth_challenge_passed"
    AUTH_CHALLENGE_FAILED = "auth_challenge_failed"

    # Failures outside a flow
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One row of the audit trail."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    user_id: Optional[str] = None
    entity_type: Optional[str] = Field(
        default=None,
        description="'backup', 'restore', 'credentials', 'action', ..."
    )
    entity_id: Optional[str] = None

    # Shared by every event of one backup or restore
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """JSON-safe fields for structlog."""
        return self.model_dump(mode="json")

    def to_sheets_row(self) -> list:
        """Cells in AUDIT_COLUMNS order, with None written as an empty cell."""
        values = self.to_log_dict()
        values["details_json"] = json.dumps(self.details, default=str) if self.details else ""
        values["is_user_action"] = str(self.is_user_action)
        return ["" if values.get(column) is None else values[column] for column in AUDIT_COLUMNS]


class AuditEventBuilder:
    """
    Constructors for the events the flows emit, so descriptions and
    severities stay consistent between callers.
    """

    @staticmethod
    def backup_started(
        user_id: str,
        backup_id: str,
        backup_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_STARTED,
            user_id=user_id,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"{backup_type.capitalize()} backup started",
            details={"backup_type": backup_type},
            is_user_action=backup_type == "manual",
        )

    @staticmethod
    def backup_completed(
        user_id: str,
        backup_id: str,
        file_path: str,
        size_mb: float,
        encrypted: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_COMPLETED,
            user_id=user_id,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description=f"Backup stored at {file_path}",
            details={
                "file_path": file_path,
                "size_mb": size_mb,
                "encrypted": encrypted,
            },
        )

    @staticmethod
    def backup_failed(
        user_id: str,
        backup_id: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="backup",
            entity_id=backup_id,
            correlation_id=correlation_id,
            description="Backup failed",
            error_message=error_message,
        )

    @staticmethod
    def auto_backup_triggered(
        user_id: str,
        due_at: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_BACKUP_TRIGGERED,
            user_id=user_id,
            entity_type="backup",
            correlation_id=correlation_id,
            description="Automatic backup is due",
            details={"due_at": due_at.isoformat()},
        )

    @staticmethod
    def auto_backup_skipped(
        user_id: str,
        reason: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTO_BACKUP_SKIPPED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="backup",
            description=f"Automatic backup skipped: {reason}",
            details={"reason": reason},
        )

    @staticmethod
    def restore_requested(
        user_id: str,
        source_path: str,
        categories: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_REQUESTED,
            user_id=user_id,
            entity_type="backup",
            entity_id=source_path,
            correlation_id=correlation_id,
            description="Backup downloaded and validated for restore",
            details={"categories": categories},
            is_user_action=True,
        )

    @staticmethod
    def restore_confirmed(
        user_id: str,
        source_path: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_CONFIRMED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="backup",
            entity_id=source_path,
            correlation_id=correlation_id,
            description="User confirmed destructive restore",
            is_user_action=True,
        )

    @staticmethod
    def restore_cancelled(
        user_id: str,
        source_path: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_CANCELLED,
            user_id=user_id,
            entity_type="backup",
            entity_id=source_path,
            correlation_id=correlation_id,
            description="User declined the restore",
            is_user_action=True,
        )

    @staticmethod
    def restore_completed(
        user_id: str,
        source_path: str,
        row_counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            user_id=user_id,
            entity_type="backup",
            entity_id=source_path,
            correlation_id=correlation_id,
            description=f"Restored {len(row_counts)} categories",
            details={"row_counts": row_counts},
        )

    @staticmethod
    def restore_failed(
        user_id: str,
        source_path: Optional[str],
        error_message: str,
        restored_categories: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_FAILED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            entity_type="backup",
            entity_id=source_path,
            correlation_id=correlation_id,
            description="Restore failed",
            details={"restored_categories": restored_categories or []},
            error_message=error_message,
        )

    @staticmethod
    def device_security_changed(
        event_type: AuditEventType,
        user_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="device",
            description=description or event_type.value.replace("_", " ").capitalize(),
            is_user_action=True,
        )

    @staticmethod
    def auth_challenge(
        event_type: AuditEventType,
        user_id: Optional[str],
        action: str,
    ) -> AuditEvent:
        severity = (
            AuditSeverity.WARNING
            if event_type == AuditEventType.AUTH_CHALLENGE_FAILED
            else AuditSeverity.INFO
        )
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            user_id=user_id,
            entity_type="action",
            entity_id=action,
            description=f"Authentication challenge for {action}",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
