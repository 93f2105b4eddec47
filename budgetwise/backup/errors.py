"""
Backup and restore errors.

Four kinds, each with a different UI treatment:
- transient (BackupFailedError): retry the same operation
- integrity (CorruptBackupError): pick another backup
- precondition (NoBackupAvailable, NotAuthenticated, EncryptionKeyMissing,
  OperationInProgress): guide the user
- partial success (RestoreIncompleteError): some categories were already
  overwritten and are not rolled back
"""

from typing import Optional

from budgetwise.models.backup import RestoreResult


class BackupError(Exception):
    """Base exception for backup and restore."""
    retryable = False
    user_message = "Something went wrong with your backup."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)


class BackupFailedError(BackupError):
    """A remote call failed. Re-running the operation may succeed."""
    retryable = True
    user_message = "The backup service could not be reached. Please try again."


class CorruptBackupError(BackupError):
    """The blob failed its integrity check, did not parse, or is missing envelope fields."""
    user_message = "This backup is corrupt or invalid."


class NoBackupAvailableError(BackupError):
    user_message = "No backup is available. Create a backup first."


class NotAuthenticatedError(BackupError):
    user_message = "Please sign in first."


class EncryptionKeyMissingError(BackupError):
    """The backup is encrypted but this device has no encryption key."""
    user_message = "This backup is encrypted and this device has no key to read it."


class OperationInProgressError(BackupError):
    user_message = "A backup or restore is already running."


class RestoreIncompleteError(BackupError):
    """
    Restore stopped partway.

    `result.restored_categories` were overwritten before the failure.
    """
    retryable = True
    user_message = "The restore did not finish. Some data may already have been replaced."

    def __init__(self, result: RestoreResult, message: Optional[str] = None):
        super().__init__(message or result.error_message)
        self.result = result
