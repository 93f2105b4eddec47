"""
Data Models Package

This package contains all Pydantic models used by BudgetWise.
Rows read from the remote store and blobs read back from backups
are validated against these schemas before they are trusted.
"""

from budgetwise.models.settings import (
    BackupFrequency,
    BackupLocation,
    BackupSettings,
    DataCategory,
    PrivacyMode,
    SecurityLevel,
    SecuritySettings,
    UserSettings,
)
from budgetwise.models.backup import (
    BackupEnvelope,
    BackupHistory,
    BackupMetadata,
    BackupResult,
    BackupStatus,
    BackupType,
    CategoryRestoreOutcome,
    RestorePreview,
    RestoreResult,
)
from budgetwise.models.credentials import (
    BiometricCredentials,
    StoredCredentials,
)
from budgetwise.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Settings models
    "BackupFrequency",
    "BackupLocation",
    "BackupSettings",
    "DataCategory",
    "PrivacyMode",
    "SecurityLevel",
    "SecuritySettings",
    "UserSettings",
    # Backup models
    "BackupEnvelope",
    "BackupHistory",
    "BackupMetadata",
    "BackupResult",
    "BackupStatus",
    "BackupType",
    "CategoryRestoreOutcome",
    "RestorePreview",
    "RestoreResult",
    # Credentials
    "BiometricCredentials",
    "StoredCredentials",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
