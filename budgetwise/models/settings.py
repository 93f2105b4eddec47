"""
Per-User Settings Models

One row of each exists per user id in the remote store. Rows are created
lazily with the defaults below on first read, so every field must have one.

DESIGN DECISION: Enums are str-valued so rows round-trip through the
remote store (and through backups) as plain JSON without conversion.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS
# =============================================================================

class SecurityLevel(str, Enum):
    """How aggressively sensitive actions are gated."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PrivacyMode(str, Enum):
    """
    Privacy mode.

    MAXIMUM requires authentication for every action, whatever
    the security level says.
    """
    STANDARD = "standard"
    ENHANCED = "enhanced"
    MAXIMUM = "maximum"


class BackupFrequency(str, Enum):
    """Auto-backup cadence."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def interval_days(self) -> int:
        """Days between two automatic backups."""
        return {
            BackupFrequency.DAILY: 1,
            BackupFrequency.WEEKLY: 7,
            BackupFrequency.MONTHLY: 30,
        }[self]


class BackupLocation(str, Enum):
    """Where backups are kept."""
    CLOUD = "cloud"
    LOCAL = "local"
    BOTH = "both"


class DataCategory(str, Enum):
    """Data categories that can be masked on screen."""
    BALANCES = "balances"
    TRANSACTIONS = "transactions"
    BUDGETS = "budgets"


# =============================================================================
# SETTINGS ROWS
# =============================================================================

class UserSettings(BaseModel):
    """General app preferences (user_settings table)."""
    model_config = ConfigDict(extra="ignore")

    notification_enabled: bool = True
    biometric_enabled: bool = False
    budget_alert_threshold: int = Field(default=80, ge=0, le=100)
    daily_reminder_enabled: bool = True
    weekly_summary_enabled: bool = True
    saving_goal_alerts: bool = True
    transaction_reminders: bool = True


class SecuritySettings(BaseModel):
    """
    Security and privacy preferences (security_settings table).

    Defaults: medium level, standard privacy, nothing hidden,
    authentication required for sensitive actions.
    """
    model_config = ConfigDict(extra="ignore")

    security_level: SecurityLevel = SecurityLevel.MEDIUM
    privacy_mode: PrivacyMode = PrivacyMode.STANDARD

    hide_balances: bool = False
    hide_transactions: bool = False
    hide_budgets: bool = False

    require_auth_for_sensitive_actions: bool = True
    require_auth_for_edit: bool = False
    require_auth_for_delete: bool = False

    auto_lock_timeout: int = Field(
        default=5,
        ge=0,
        description="Minutes of inactivity before the app locks"
    )
    failed_attempts_limit: int = Field(
        default=5,
        ge=1,
        description="Failed unlock attempts tolerated before lockout"
    )
    session_timeout: int = Field(
        default=30,
        ge=0,
        description="Session lifetime in minutes"
    )

    def hides(self, category: DataCategory) -> bool:
        """Get the hide flag for a data category."""
        return {
            DataCategory.BALANCES: self.hide_balances,
            DataCategory.TRANSACTIONS: self.hide_transactions,
            DataCategory.BUDGETS: self.hide_budgets,
        }[category]


class BackupSettings(BaseModel):
    """
    Backup preferences (backup_settings table).

    The include_* flags decide which optional categories go into a backup.
    Saving goals, profile and categories are always included.
    """
    model_config = ConfigDict(extra="ignore")

    auto_backup_enabled: bool = True
    backup_frequency: BackupFrequency = BackupFrequency.WEEKLY
    backup_location: BackupLocation = BackupLocation.CLOUD

    include_transactions: bool = True
    include_budgets: bool = True
    include_challenges: bool = True
    include_settings: bool = True

    encryption_enabled: bool = True

    last_backup_at: Optional[datetime] = None
    backup_size_mb: Optional[float] = Field(default=None, ge=0)
