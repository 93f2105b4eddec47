"""
Configuration Management for BudgetWise

One pydantic-settings class per concern, each read from its own env prefix
(and .env for the app-wide values).

DESIGN DECISION: Remote backends (Google Sheets, Cloudinary) need
credentials and are only loaded when used. Security and backup tunables
all have defaults, so the services run against in-memory stores without
any environment set up.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog


logger = structlog.get_logger("budgetwise.config")


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets configuration (remote tables and audit log)."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Service account key file used to open the spreadsheet"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the spreadsheet holding one worksheet per table"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Worksheet that receives one audit event per row"
    )

    @field_validator("credentials_path")
    @classmethod
    def check_credentials_file(cls, path: str) -> str:
        # The key file may be mounted after startup, so a missing file is only logged
        if not Path(path).is_file():
            logger.warning("google_credentials_missing", path=path)
        return path


class CloudinarySettings(BaseSettings):
    """Cloudinary configuration (backup object storage)."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary account (cloud) name"
    )
    api_key: str = Field(
        ...,
        description="API key of the upload credentials"
    )
    api_secret: str = Field(
        ...,
        description="API secret paired with api_key"
    )
    root_folder: str = Field(
        default="budgetwise",
        description="Folder under which backup buckets are created"
    )


class SecurityConfig(BaseSettings):
    """Local security tunables."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETWISE_SECURITY_",
        extra="ignore"
    )

    storage_key_prefix: str = Field(
        default="@budgetwise:",
        description="Prefix for every key written to the local key-value store"
    )
    # Tamper evidence only - the backup plaintext stays readable in the blob
    integrity_salt: str = Field(
        default="budgetwise_backup_integrity_v1",
        min_length=1,
        description="Fixed salt mixed into the backup integrity tag"
    )
    credential_ttl_days: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Days of inactivity after which stored credentials expire"
    )


class BackupConfig(BaseSettings):
    """Backup object storage and history settings."""

    model_config = SettingsConfigDict(
        env_prefix="BUDGETWISE_BACKUP_",
        extra="ignore"
    )

    bucket_name: str = Field(
        default="backups",
        description="Object storage container for backup blobs"
    )
    bucket_size_limit_mb: int = Field(
        default=50,
        ge=1,
        le=1024,
        description="Size limit requested when the container is created"
    )
    format_version: str = Field(
        default="1.0",
        description="Envelope format version written to metadata.version"
    )
    history_limit: int = Field(
        default=10,
        ge=1,
        le=100,
        description="How many backup history rows the history query returns"
    )

    @property
    def bucket_size_limit_bytes(self) -> int:
        return self.bucket_size_limit_mb * 1024 * 1024


class AppSettings(BaseSettings):
    """App-wide settings read from the environment and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="development, staging or production"
    )
    debug_mode: bool = Field(
        default=False,
        description="Show tracebacks on the Streamlit page"
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level for structured logging"
    )
    local_store_path: str = Field(
        default=".budgetwise/local_store.json",
        description="File backing the device-local key-value store"
    )


class Settings(BaseSettings):
    """Entry point to every settings group."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Each group is built on access, so missing remote credentials only fail where used

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def security(self) -> SecurityConfig:
        return SecurityConfig()

    @property
    def backup(self) -> BackupConfig:
        return BackupConfig()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; tests call get_settings.cache_clear() after changing env."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Try to build every settings group.

    Returns {group: ok} plus a {group}_error message for each failure,
    for the startup check on the Streamlit page.
    """
    results = {}
    settings = get_settings()
    for name in ("google_sheets", "cloudinary", "security", "backup", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
