"""
Backup package.

Snapshotting a user's records into one blob, decoding it again,
overwriting the user's records from it, and the automatic schedule.
"""

from budgetwise.backup.categories import (
    BACKUP_CATEGORIES,
    BackupCategory,
    RestoreMode,
    included_categories,
)
from budgetwise.backup.codec import BackupCodec
from budgetwise.backup.errors import (
    BackupError,
    BackupFailedError,
    CorruptBackupError,
    EncryptionKeyMissingError,
    NoBackupAvailableError,
    NotAuthenticatedError,
    OperationInProgressError,
    RestoreIncompleteError,
)
from budgetwise.backup.executor import RestoreExecutor, row_counts
from budgetwise.backup.scheduler import AutoBackupScheduler
from budgetwise.backup.snapshot import BackupSnapshotter, backup_path

__all__ = [
    # Categories
    "BACKUP_CATEGORIES",
    "BackupCategory",
    "RestoreMode",
    "included_categories",
    # Backup and restore
    "AutoBackupScheduler",
    "BackupCodec",
    "BackupSnapshotter",
    "RestoreExecutor",
    "backup_path",
    "row_counts",
    # Errors
    "BackupError",
    "BackupFailedError",
    "CorruptBackupError",
    "EncryptionKeyMissingError",
    "NoBackupAvailableError",
    "NotAuthenticatedError",
    "OperationInProgressError",
    "RestoreIncompleteError",
]
