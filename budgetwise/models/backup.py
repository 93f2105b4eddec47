"""
Backup Models

Three kinds of data live here:
1. BackupHistory - the per-user history rows (backup_history table)
2. BackupEnvelope - the serialized artifact stored as an object-storage blob
3. Results handed back to the UI after a backup or restore

DESIGN DECISION: The envelope is validated with Pydantic on restore.
A blob that passes the integrity check but lacks user_id, data or metadata
is still rejected before any destructive write happens.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BackupType(str, Enum):
    """What triggered a backup."""
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    SCHEDULED = "scheduled"


class BackupStatus(str, Enum):
    """
    Backup lifecycle.

    PENDING -> IN_PROGRESS -> COMPLETED | FAILED
    History rows are never deleted by this package.
    """
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class BackupHistory(BaseModel):
    """One row of the backup_history table."""
    model_config = ConfigDict(extra="ignore")

    id: str
    backup_type: BackupType
    backup_status: BackupStatus
    backup_size_mb: Optional[float] = None
    backup_location: Optional[str] = None
    backup_file_path: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    completed_at: Optional[datetime] = None

    @property
    def is_restorable(self) -> bool:
        """A history row can be restored from once its blob was uploaded."""
        return (
            self.backup_status == BackupStatus.COMPLETED
            and bool(self.backup_file_path)
        )


# =============================================================================
# ENVELOPE
# =============================================================================

class BackupMetadata(BaseModel):
    """Envelope metadata."""
    model_config = ConfigDict(extra="allow")

    version: str = "1.0"
    # The user's encryption_enabled setting at backup time
    encryption: bool = False
    # True only when the data map was actually transformed
    encrypted: Optional[bool] = None


class BackupEnvelope(BaseModel):
    """
    One full backup snapshot.

    `data` maps category name to records. When metadata.encrypted is set,
    `data` holds the transformed JSON text instead of the map.
    """
    model_config = ConfigDict(extra="allow")

    user_id: str = Field(..., min_length=1)
    backup_date: str
    data: Union[dict[str, Any], str]
    metadata: BackupMetadata

    @field_validator("backup_date", mode="before")
    @classmethod
    def coerce_backup_date(cls, v: Any) -> str:
        if isinstance(v, datetime):
            return v.isoformat()
        return v

    @property
    def categories(self) -> list[str]:
        """Category names present in a decoded envelope."""
        if isinstance(self.data, dict):
            return list(self.data.keys())
        return []

    def to_json_dict(self) -> dict[str, Any]:
        """Envelope as a JSON-ready dict, without unset optional metadata."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# RESULTS
# =============================================================================

class BackupResult(BaseModel):
    """What a completed backup hands back to its caller."""

    file_path: str
    size_mb: float = Field(ge=0)
    backup_data: BackupEnvelope
    history_id: Optional[str] = None


class CategoryRestoreOutcome(BaseModel):
    """How one category fared during a restore."""

    category: str
    table: str
    rows_restored: int = 0
    success: bool = True
    error_message: Optional[str] = None


class RestorePreview(BaseModel):
    """What the confirm dialog shows before a destructive restore."""

    source_path: str
    backup_date: str
    row_counts: dict[str, int] = Field(default_factory=dict)
    encrypted: bool = False


class RestoreResult(BaseModel):
    """
    Result of a restore.

    A failed restore may still list restored categories: those were
    overwritten before the failure and are not rolled back.
    """

    success: bool
    cancelled: bool = False
    source_path: Optional[str] = None
    outcomes: list[CategoryRestoreOutcome] = Field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def restored_categories(self) -> list[str]:
        return [o.category for o in self.outcomes if o.success]

    @property
    def failed_category(self) -> Optional[str]:
        for outcome in self.outcomes:
            if not outcome.success:
                return outcome.category
        return None
