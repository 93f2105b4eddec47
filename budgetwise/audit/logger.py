"""
Audit Logger

DESIGN DECISION: Backups, restores and device-security changes each leave
an audit event. A restore overwrites user data, so the trail is the only
way to reconstruct what was replaced, from which blob, and after whose
confirmation.

Writing an audit event never raises. A failed storage append is logged
and reported as False; the flow that triggered it carries on.
Every event of one user action shares a correlation id.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from budgetwise.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from budgetwise.services.storage import AuditStorageInterface


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# AuditSeverity value -> bound logger method
_LOG_METHODS = {
    "debug": "debug",
    "info": "info",
    "warning": "warning",
    "error": "error",
    "critical": "error",
}


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", level=level.upper())


class AuditLogger:
    """
    Writes audit events to the JSON log and, when given one, to an
    audit store (the AuditLog worksheet in production).
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("budgetwise.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when the audit store rejected the append.
        """
        method = _LOG_METHODS.get(event.severity.value, "info")
        getattr(self._logger, method)("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_backup_started(
        self,
        user_id: str,
        backup_id: str,
        backup_type: str,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a backup run."""
        await self.log(AuditEventBuilder.backup_started(
            user_id=user_id,
            backup_id=backup_id,
            backup_type=backup_type,
            correlation_id=correlation_id,
        ))

    async def log_backup_completed(
        self,
        user_id: str,
        backup_id: str,
        file_path: str,
        size_mb: float,
        encrypted: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.backup_completed(
            user_id=user_id,
            backup_id=backup_id,
            file_path=file_path,
            size_mb=size_mb,
            encrypted=encrypted,
            correlation_id=correlation_id,
        ))

    async def log_backup_failed(
        self,
        user_id: str,
        backup_id: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.backup_failed(
            user_id=user_id,
            backup_id=backup_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_auto_backup_triggered(
        self,
        user_id: str,
        due_at: datetime,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.auto_backup_triggered(
            user_id=user_id,
            due_at=due_at,
            correlation_id=correlation_id,
        ))

    async def log_auto_backup_skipped(self, user_id: str, reason: str) -> None:
        await self.log(AuditEventBuilder.auto_backup_skipped(user_id, reason))

    async def log_restore_requested(
        self,
        user_id: str,
        source_path: str,
        categories: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.restore_requested(
            user_id=user_id,
            source_path=source_path,
            categories=categories,
            correlation_id=correlation_id,
        ))

    async def log_restore_decision(
        self,
        user_id: str,
        source_path: str,
        confirmed: bool,
        correlation_id: UUID,
    ) -> None:
        """Log whether the user accepted the destructive restore."""
        if confirmed:
            event = AuditEventBuilder.restore_confirmed(user_id, source_path, correlation_id)
        else:
            event = AuditEventBuilder.restore_cancelled(user_id, source_path, correlation_id)
        await self.log(event)

    async def log_restore_completed(
        self,
        user_id: str,
        source_path: str,
        row_counts: dict[str, int],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.restore_completed(
            user_id=user_id,
            source_path=source_path,
            row_counts=row_counts,
            correlation_id=correlation_id,
        ))

    async def log_restore_failed(
        self,
        user_id: str,
        source_path: Optional[str],
        error_message: str,
        restored_categories: Optional[list[str]],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.restore_failed(
            user_id=user_id,
            source_path=source_path,
            error_message=error_message,
            restored_categories=restored_categories,
            correlation_id=correlation_id,
        ))

    async def log_device_security_changed(
        self,
        event_type: AuditEventType,
        user_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """Log a change to encryption, stored credentials or biometric login."""
        await self.log(AuditEventBuilder.device_security_changed(
            event_type=event_type,
            user_id=user_id,
            description=description,
        ))

    async def log_auth_challenge(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        action: str,
    ) -> None:
        await self.log(AuditEventBuilder.auth_challenge(event_type, user_id, action))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record an unexpected failure outside the storage layer."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Record a failure reported by Google Sheets, Cloudinary or another remote."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """New id for one user action; every audit event of that action carries it."""
    return uuid4()
