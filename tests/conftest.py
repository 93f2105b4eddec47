"""
Shared fixtures.

Everything runs against the in-memory stores with explicit config
objects, so no environment variables or credentials are needed.
"""

from datetime import datetime, timedelta, timezone

import pytest

from budgetwise.audit import AuditLogger
from budgetwise.backup import BackupCodec, BackupSnapshotter, RestoreExecutor
from budgetwise.config import BackupConfig, SecurityConfig
from budgetwise.orchestrator import BackupFlow, OperationGuard, RestoreFlow
from budgetwise.security import EncryptionService, IntegrityTag
from budgetwise.services.storage import (
    InMemoryAuditStorage,
    InMemoryKeyValueStore,
    InMemoryObjectStorage,
    InMemoryTableStore,
)
from budgetwise.services.user_settings import UserSettingsService
from budgetwise.session import SessionUserProvider


USER_ID = "user-1"
FIXED_NOW = datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc)


class SteppingClock:
    """Returns a later time on every call."""

    def __init__(self, start: datetime = FIXED_NOW, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value


@pytest.fixture
def security_config():
    return SecurityConfig()


@pytest.fixture
def backup_config():
    return BackupConfig()


@pytest.fixture
def tables():
    return InMemoryTableStore()


@pytest.fixture
def objects():
    return InMemoryObjectStorage()


@pytest.fixture
def local_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def users():
    return SessionUserProvider(USER_ID)


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def settings_service(tables, backup_config, clock):
    return UserSettingsService(tables, backup_config, clock)


@pytest.fixture
def encryption(local_store, security_config):
    return EncryptionService(local_store, security_config)


@pytest.fixture
def integrity(security_config):
    return IntegrityTag.from_config(security_config)


@pytest.fixture
def codec(encryption, integrity):
    return BackupCodec(encryption, integrity)


@pytest.fixture
def snapshotter(tables, objects, codec, backup_config, clock):
    return BackupSnapshotter(tables, objects, codec, backup_config, clock)


@pytest.fixture
def guard():
    return OperationGuard()


@pytest.fixture
def backup_flow(users, settings_service, snapshotter, audit_logger, guard, clock):
    return BackupFlow(users, settings_service, snapshotter, audit_logger, guard, clock)


@pytest.fixture
def restore_flow(users, settings_service, objects, codec, tables, backup_config, audit_logger, guard):
    return RestoreFlow(
        users,
        settings_service,
        objects,
        codec,
        RestoreExecutor(tables),
        backup_config.bucket_name,
        audit_logger,
        guard,
    )
