"""
Credential Store

Keeps the last-used login on the device so biometric login can replay it.

- One record per device, overwritten on every successful login
- The password goes through the encryption utility first
- Records expire after credential_ttl_days without a login
- Biometric login is a separate flag that needs a stored record

Every operation degrades to "absent" / False. The caller falls back to
manual login; nothing here is surfaced to the end user as an error.
"""

import json
from datetime import timedelta
from typing import Optional

import structlog
from pydantic import ValidationError

from budgetwise.audit import AuditLogger
from budgetwise.clock import Clock, unix_millis, utc_now
from budgetwise.config import SecurityConfig, get_settings
from budgetwise.models.audit import AuditEventType
from budgetwise.models.credentials import BiometricCredentials, StoredCredentials
from budgetwise.security.encryption import EncryptionService
from budgetwise.services.storage import KeyValueStoreInterface, StorageError


logger = structlog.get_logger("budgetwise.security.credentials")


class CredentialStore:
    """Stored login record plus the biometric-login flag."""

    def __init__(
        self,
        store: KeyValueStoreInterface,
        encryption: EncryptionService,
        config: Optional[SecurityConfig] = None,
        clock: Clock = utc_now,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._encryption = encryption
        config = config or get_settings().security
        self._credentials_key = f"{config.storage_key_prefix}stored_credentials"
        self._biometric_key = f"{config.storage_key_prefix}biometric_login_enabled"
        self._ttl = timedelta(days=config.credential_ttl_days)
        self._clock = clock
        self._audit = audit_logger or AuditLogger()

    async def store_credentials(self, email: str, password: str, user_id: str) -> bool:
        """Persist the login after a successful sign-in."""
        encrypted_password = await self._encryption.encrypt_data(password)
        if encrypted_password is None:
            logger.warning("credential_encryption_failed", user_id=user_id)
            return False

        record = StoredCredentials(
            email=email,
            encrypted_password=encrypted_password,
            last_login_time=unix_millis(self._clock()),
            user_id=user_id,
        )
        try:
            await self._store.set_item(self._credentials_key, record.to_storage_json())
        except StorageError as e:
            logger.error("credential_write_failed", error=str(e))
            return False

        await self._audit.log_device_security_changed(
            AuditEventType.CREDENTIALS_STORED, user_id=user_id
        )
        return True

    async def get_stored_credentials(self) -> Optional[StoredCredentials]:
        """The stored record, or None if absent, unreadable or expired (expired ones are purged)."""
        try:
            raw = await self._store.get_item(self._credentials_key)
        except StorageError as e:
            logger.error("credential_read_failed", error=str(e))
            return None
        if not raw:
            return None

        try:
            record = StoredCredentials.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("credential_record_invalid", error=str(e))
            return None

        age_ms = unix_millis(self._clock()) - record.last_login_time
        if age_ms > self._ttl.total_seconds() * 1000:
            await self.clear_stored_credentials()
            await self._audit.log_device_security_changed(
                AuditEventType.CREDENTIALS_EXPIRED,
                user_id=record.user_id,
                description="Stored credentials expired and were purged",
            )
            return None

        return record

    async def decrypt_stored_password(self, record: StoredCredentials) -> Optional[str]:
        return await self._encryption.decrypt_data(record.encrypted_password)

    async def clear_stored_credentials(self) -> bool:
        """Remove the record and the biometric flag with it."""
        try:
            await self._store.remove_item(self._credentials_key)
            await self._store.remove_item(self._biometric_key)
        except StorageError as e:
            logger.error("credential_clear_failed", error=str(e))
            return False

        await self._audit.log_device_security_changed(AuditEventType.CREDENTIALS_CLEARED)
        return True

    async def enable_biometric_login(self) -> bool:
        """Only possible while a valid record is stored."""
        record = await self.get_stored_credentials()
        if record is None:
            return False
        try:
            await self._store.set_item(self._biometric_key, "true")
        except StorageError as e:
            logger.error("biometric_flag_write_failed", error=str(e))
            return False

        await self._audit.log_device_security_changed(
            AuditEventType.BIOMETRIC_LOGIN_ENABLED, user_id=record.user_id
        )
        return True

    async def disable_biometric_login(self) -> bool:
        try:
            await self._store.remove_item(self._biometric_key)
        except StorageError as e:
            logger.error("biometric_flag_write_failed", error=str(e))
            return False

        await self._audit.log_device_security_changed(AuditEventType.BIOMETRIC_LOGIN_DISABLED)
        return True

    async def is_biometric_login_enabled(self) -> bool:
        try:
            return await self._store.get_item(self._biometric_key) == "true"
        except StorageError as e:
            logger.error("biometric_flag_read_failed", error=str(e))
            return False

    async def get_biometric_login_credentials(self) -> Optional[BiometricCredentials]:
        """
        Email and password for a biometric login.

        Requires the flag, a stored unexpired record and a password that
        decrypts. Any missing piece means manual login.
        """
        if not await self.is_biometric_login_enabled():
            return None

        record = await self.get_stored_credentials()
        if record is None:
            return None

        password = await self.decrypt_stored_password(record)
        if not password:
            return None

        return BiometricCredentials(email=record.email, password=password)
