"""
Main Orchestrator for BudgetWise

This module ties together all the components and defines the
end-to-end flows for:
1. Backup (settings -> history row -> snapshot -> upload -> history/settings)
2. Restore (history -> download -> decode -> confirm -> overwrite)
3. Automatic backup (foreground check -> due? -> backup flow)

DESIGN DECISION: The orchestrator enforces the boundaries:
- No restore writes before the blob is fully decoded and validated
- No restore writes without explicit user confirmation
- Ownership of restored rows always comes from the session
- One backup or restore per user at a time
- Every step is audited

Errors surface as BackupError subclasses so the UI can pick the
right treatment (retry, pick another backup, sign in, ...).
"""

from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, Optional
from uuid import UUID

import structlog

from budgetwise.audit import AuditLogger, configure_logging, create_correlation_id
from budgetwise.backup import (
    AutoBackupScheduler,
    BackupCodec,
    BackupFailedError,
    BackupSnapshotter,
    CorruptBackupError,
    NoBackupAvailableError,
    NotAuthenticatedError,
    OperationInProgressError,
    RestoreExecutor,
    RestoreIncompleteError,
    row_counts,
)
from budgetwise.backup.executor import InvalidCategoryDataError
from budgetwise.clock import Clock, utc_now
from budgetwise.config import get_settings, validate_all_settings
from budgetwise.models.backup import (
    BackupEnvelope,
    BackupResult,
    BackupStatus,
    BackupType,
    RestorePreview,
    RestoreResult,
)
from budgetwise.security import (
    CredentialStore,
    EncryptionService,
    IntegrityTag,
    SecurityControls,
    SecurityPolicyEvaluator,
)
from budgetwise.services.storage import (
    InMemoryKeyValueStore,
    InMemoryObjectStorage,
    InMemoryTableStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
    NotFoundError,
    ObjectStorageInterface,
    StorageError,
    TableStoreInterface,
)
from budgetwise.services.user_settings import UserSettingsService
from budgetwise.services.visits import VisitCounterService
from budgetwise.session import CurrentUserProvider, SessionUserProvider


logger = structlog.get_logger("budgetwise.orchestrator")

ProgressCallback = Callable[[str], None]
ConfirmCallback = Callable[[RestorePreview], Awaitable[bool]]


def _no_progress(stage: str) -> None:
    pass


class OperationGuard:
    """
    In-flight guard shared by the backup and restore flows.

    Re-entry for the same user is refused instead of queued; nothing
    already running is ever cancelled.
    """

    def __init__(self):
        self._active: set[str] = set()

    def is_busy(self, user_id: str) -> bool:
        return user_id in self._active

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        if user_id in self._active:
            raise OperationInProgressError()
        self._active.add(user_id)
        try:
            yield
        finally:
            self._active.discard(user_id)


def _require_user(user_provider: CurrentUserProvider) -> str:
    user_id = user_provider.get_current_user_id()
    if not user_id:
        raise NotAuthenticatedError()
    return user_id


class BackupFlow:
    """
    Orchestrates a backup.

    Flow:
    1. Resolve the session user, take the in-flight guard
    2. Load BackupSettings (lazily created with defaults)
    3. Create the history row (pending), advance it to in_progress
    4. Snapshot and upload
    5. History row -> completed, BackupSettings.last_backup_at / backup_size_mb
    On any failure in step 4 the history row goes to failed and a
    retryable BackupFailedError is raised. Source tables are never written.
    """

    def __init__(
        self,
        user_provider: CurrentUserProvider,
        settings_service: UserSettingsService,
        snapshotter: BackupSnapshotter,
        audit_logger: Optional[AuditLogger] = None,
        guard: Optional[OperationGuard] = None,
        clock: Clock = utc_now,
    ):
        self._users = user_provider
        self._settings = settings_service
        self._snapshotter = snapshotter
        self._audit_logger = audit_logger or AuditLogger()
        self._guard = guard or OperationGuard()
        self._clock = clock

    async def run_backup(
        self,
        backup_type: BackupType = BackupType.MANUAL,
        correlation_id: Optional[UUID] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> BackupResult:
        """
        Back up the current user's records.

        Raises:
            NotAuthenticatedError: No session user
            OperationInProgressError: A backup or restore is already running
            BackupFailedError: Settings could not be loaded, or any
                collect/encode/upload step failed (retryable)
        """
        correlation_id = correlation_id or create_correlation_id()
        report = progress or _no_progress
        user_id = _require_user(self._users)

        with self._guard.hold(user_id):
            return await self._run(user_id, backup_type, correlation_id, report)

    async def _run(
        self,
        user_id: str,
        backup_type: BackupType,
        correlation_id: UUID,
        report: ProgressCallback,
    ) -> BackupResult:
        report("Preparing backup...")
        settings = await self._settings.get_backup_settings(user_id)
        if settings is None:
            await self._audit_logger.log_backup_failed(
                user_id, None, "Backup settings unavailable", correlation_id
            )
            raise BackupFailedError("Could not load your backup settings.")

        record_id = await self._settings.create_backup_record(user_id, backup_type)
        await self._audit_logger.log_backup_started(
            user_id=user_id,
            backup_id=record_id or "",
            backup_type=backup_type.value,
            correlation_id=correlation_id,
        )
        if record_id:
            await self._settings.update_backup_record(
                record_id, {"backup_status": BackupStatus.IN_PROGRESS}
            )

        report("Collecting your data...")
        try:
            result = await self._snapshotter.perform_backup(user_id, settings)
        except Exception as e:
            # Any failed step leaves a failed history row, never one stuck in progress
            message = str(e) or type(e).__name__
            logger.error(
                "backup_failed", user_id=user_id, error=message, error_type=type(e).__name__
            )
            if record_id:
                await self._settings.update_backup_record(record_id, {
                    "backup_status": BackupStatus.FAILED,
                    "error_message": message,
                    "completed_at": self._clock().isoformat(),
                })
            await self._audit_logger.log_backup_failed(
                user_id, record_id, message, correlation_id
            )
            raise BackupFailedError(f"Backup failed: {message}") from e

        report("Saving backup details...")
        completed_at = self._clock()
        if record_id:
            await self._settings.update_backup_record(record_id, {
                "backup_status": BackupStatus.COMPLETED,
                "backup_size_mb": result.size_mb,
                "backup_location": settings.backup_location,
                "backup_file_path": result.file_path,
                "completed_at": completed_at.isoformat(),
            })
        await self._settings.update_backup_settings(user_id, {
            "last_backup_at": completed_at,
            "backup_size_mb": result.size_mb,
        })

        await self._audit_logger.log_backup_completed(
            user_id=user_id,
            backup_id=record_id or "",
            file_path=result.file_path,
            size_mb=result.size_mb,
            encrypted=bool(result.backup_data.metadata.encrypted),
            correlation_id=correlation_id,
        )
        report("Backup complete")
        return result.model_copy(update={"history_id": record_id})


class PendingRestore:
    """A downloaded, decoded backup waiting for the user's confirmation."""

    def __init__(self, envelope: BackupEnvelope, source_path: str, correlation_id: UUID):
        self.envelope = envelope
        self.source_path = source_path
        self.correlation_id = correlation_id
        self.preview = RestorePreview(
            source_path=source_path,
            backup_date=envelope.backup_date,
            row_counts=row_counts(envelope),
            encrypted=bool(envelope.metadata.encrypted),
        )


class RestoreFlow:
    """
    Orchestrates a restore.

    Flow:
    1. Pick the backup (explicit path, or the newest restorable history row)
    2. Download and decode it completely (no writes yet)
    3. PAUSE - the user confirms the destructive overwrite
    4. Overwrite category by category, owner rewritten to the session user

    Restore is always a replace, never a merge. There is no rollback:
    a failure in step 4 leaves earlier categories overwritten.
    """

    def __init__(
        self,
        user_provider: CurrentUserProvider,
        settings_service: UserSettingsService,
        objects: ObjectStorageInterface,
        codec: BackupCodec,
        executor: RestoreExecutor,
        bucket: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
        guard: Optional[OperationGuard] = None,
    ):
        self._users = user_provider
        self._settings = settings_service
        self._objects = objects
        self._codec = codec
        self._executor = executor
        self._bucket = bucket or get_settings().backup.bucket_name
        self._audit_logger = audit_logger or AuditLogger()
        self._guard = guard or OperationGuard()

    async def _latest_backup_path(self, user_id: str) -> str:
        for entry in await self._settings.get_backup_history(user_id):
            if entry.is_restorable:
                return entry.backup_file_path
        raise NoBackupAvailableError()

    async def load_backup(
        self,
        backup_ref: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> PendingRestore:
        """
        Download and decode a backup without writing anything.

        Args:
            backup_ref: Object path of the backup; newest restorable
                history entry when omitted

        Raises:
            NotAuthenticatedError, NoBackupAvailableError,
            BackupFailedError (download failed, retryable),
            CorruptBackupError, EncryptionKeyMissingError
        """
        correlation_id = correlation_id or create_correlation_id()
        report = progress or _no_progress
        user_id = _require_user(self._users)

        source_path = backup_ref or await self._latest_backup_path(user_id)

        report("Downloading backup...")
        try:
            payload = await self._objects.download(self._bucket, source_path)
        except NotFoundError as e:
            await self._audit_logger.log_restore_failed(
                user_id, source_path, str(e), None, correlation_id
            )
            raise NoBackupAvailableError(f"Backup not found: {source_path}") from e
        except StorageError as e:
            await self._audit_logger.log_external_service_error(
                service="object_storage",
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise BackupFailedError(f"Could not download backup: {e}") from e

        report("Reading backup...")
        try:
            envelope = await self._codec.decode(payload)
        except CorruptBackupError as e:
            await self._audit_logger.log_restore_failed(
                user_id, source_path, str(e), None, correlation_id
            )
            raise

        pending = PendingRestore(envelope, source_path, correlation_id)
        await self._audit_logger.log_restore_requested(
            user_id=user_id,
            source_path=source_path,
            categories=envelope.categories,
            correlation_id=correlation_id,
        )
        return pending

    async def confirm_and_restore(
        self,
        pending: PendingRestore,
        progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Overwrite the session user's records with a loaded backup.

        CRITICAL: Called ONLY after explicit user confirmation.

        Raises:
            RestoreIncompleteError: A category failed; earlier ones stay replaced
        """
        report = progress or _no_progress
        user_id = _require_user(self._users)
        correlation_id = pending.correlation_id

        with self._guard.hold(user_id):
            report("Restoring your data...")
            try:
                result = await self._executor.execute_restore(
                    pending.envelope, user_id, pending.source_path
                )
            except InvalidCategoryDataError as e:
                result = RestoreResult(
                    success=False,
                    source_path=pending.source_path,
                    error_message=str(e),
                )

            if not result.success:
                await self._audit_logger.log_restore_failed(
                    user_id=user_id,
                    source_path=pending.source_path,
                    error_message=result.error_message or "Restore failed",
                    restored_categories=result.restored_categories,
                    correlation_id=correlation_id,
                )
                raise RestoreIncompleteError(result)

            await self._audit_logger.log_restore_completed(
                user_id=user_id,
                source_path=pending.source_path,
                row_counts={o.category: o.rows_restored for o in result.outcomes},
                correlation_id=correlation_id,
            )
            report("Restore complete")
            return result

    async def perform_restore(
        self,
        confirm: ConfirmCallback,
        backup_ref: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> RestoreResult:
        """
        Load, ask, restore.

        A declined confirmation returns a cancelled result and writes nothing.
        """
        correlation_id = create_correlation_id()
        pending = await self.load_backup(backup_ref, correlation_id, progress)

        confirmed = bool(await confirm(pending.preview))
        await self._audit_logger.log_restore_decision(
            user_id=_require_user(self._users),
            source_path=pending.source_path,
            confirmed=confirmed,
            correlation_id=correlation_id,
        )
        if not confirmed:
            return RestoreResult(
                success=False,
                cancelled=True,
                source_path=pending.source_path,
            )

        return await self.confirm_and_restore(pending, progress)


# =============================================================================
# WIRING
# =============================================================================

class AppComponents:
    """Everything the UI needs, wired against one set of stores."""

    def __init__(
        self,
        tables: TableStoreInterface,
        objects: ObjectStorageInterface,
        local_store: KeyValueStoreInterface,
        audit_logger: AuditLogger,
        user_provider: Optional[CurrentUserProvider] = None,
        clock: Clock = utc_now,
    ):
        settings = get_settings()
        security_config = settings.security
        backup_config = settings.backup

        self.user_provider = user_provider or SessionUserProvider()
        self.audit_logger = audit_logger
        self.tables = tables
        self.objects = objects
        self.local_store = local_store

        self.settings_service = UserSettingsService(tables, backup_config, clock)
        self.encryption = EncryptionService(local_store, security_config)
        self.integrity = IntegrityTag.from_config(security_config)
        self.codec = BackupCodec(self.encryption, self.integrity)
        self.credentials = CredentialStore(
            local_store, self.encryption, security_config, clock, audit_logger
        )
        self.policy = SecurityPolicyEvaluator(self.user_provider, self.settings_service)
        self.security_controls = SecurityControls(
            self.settings_service, self.encryption, audit_logger
        )
        self.visits = VisitCounterService(local_store)

        guard = OperationGuard()
        snapshotter = BackupSnapshotter(tables, objects, self.codec, backup_config, clock)
        self.backup_flow = BackupFlow(
            self.user_provider,
            self.settings_service,
            snapshotter,
            audit_logger,
            guard,
            clock,
        )
        self.restore_flow = RestoreFlow(
            self.user_provider,
            self.settings_service,
            objects,
            self.codec,
            RestoreExecutor(tables),
            backup_config.bucket_name,
            audit_logger,
            guard,
        )
        self.scheduler = AutoBackupScheduler(
            local_store,
            self.settings_service,
            self.user_provider,
            self.backup_flow.run_backup,
            security_config,
            clock,
            audit_logger,
        )


def create_app_components(use_remote: bool = True) -> AppComponents:
    """
    Wire the app against Google Sheets and Cloudinary, or in memory.

    use_remote=False forces the in-memory stores. Remote stores are also
    skipped when their settings groups fail validation.
    """
    app_settings = get_settings().app
    configure_logging(app_settings.log_level)

    if use_remote:
        checks = validate_all_settings()
        missing = [name for name in ("google_sheets", "cloudinary") if not checks[name]]
        if missing:
            logger.warning("remote_storage_not_configured", groups=missing)
            use_remote = False

    if use_remote:
        try:
            # Imported here so the in-memory setup needs no credentials
            from budgetwise.services.storage.cloudinary_storage import CloudinaryObjectStorage
            from budgetwise.services.storage.google_sheets import (
                GoogleSheetsAuditStorage,
                GoogleSheetsClient,
                GoogleSheetsTableStore,
            )

            sheets_client = GoogleSheetsClient()
            return AppComponents(
                tables=GoogleSheetsTableStore(sheets_client),
                objects=CloudinaryObjectStorage(),
                local_store=JsonFileKeyValueStore(app_settings.local_store_path),
                audit_logger=AuditLogger(GoogleSheetsAuditStorage(sheets_client)),
            )
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("remote_storage_unavailable", error=str(e))

    return AppComponents(
        tables=InMemoryTableStore(),
        objects=InMemoryObjectStorage(),
        local_store=InMemoryKeyValueStore(),
        audit_logger=AuditLogger(),
    )
