"""
Security Controls

Write side of the security settings. Raising the security level to high,
or the privacy mode to enhanced or maximum, also turns on device
encryption. Lowering them never turns it off.
"""

from typing import Optional, Union

import structlog

from budgetwise.audit import AuditLogger
from budgetwise.models.audit import AuditEventType
from budgetwise.models.settings import PrivacyMode, SecurityLevel
from budgetwise.security.encryption import EncryptionService
from budgetwise.services.user_settings import UserSettingsService


logger = structlog.get_logger("budgetwise.security.controls")

ENCRYPTING_PRIVACY_MODES = (PrivacyMode.ENHANCED, PrivacyMode.MAXIMUM)


class SecurityControls:
    def __init__(
        self,
        settings_service: UserSettingsService,
        encryption: EncryptionService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._settings = settings_service
        self._encryption = encryption
        self._audit = audit_logger or AuditLogger()

    async def _ensure_encryption(self, user_id: str, reason: str) -> None:
        if await self._encryption.is_encryption_enabled():
            return
        if await self._encryption.enable_encryption():
            await self._audit.log_device_security_changed(
                AuditEventType.ENCRYPTION_ENABLED,
                user_id=user_id,
                description=f"Device encryption enabled by {reason}",
            )
        else:
            logger.warning("encryption_enable_failed", user_id=user_id, reason=reason)

    async def set_security_level(
        self,
        user_id: str,
        level: Union[SecurityLevel, str],
    ) -> bool:
        level = SecurityLevel(level)
        if not await self._settings.update_security_settings(
            user_id, {"security_level": level}
        ):
            return False

        if level == SecurityLevel.HIGH:
            await self._ensure_encryption(user_id, "high security level")
        return True

    async def set_privacy_mode(
        self,
        user_id: str,
        mode: Union[PrivacyMode, str],
    ) -> bool:
        mode = PrivacyMode(mode)
        if not await self._settings.update_security_settings(
            user_id, {"privacy_mode": mode}
        ):
            return False

        if mode in ENCRYPTING_PRIVACY_MODES:
            await self._ensure_encryption(user_id, f"{mode.value} privacy mode")
        return True

    async def set_sensitive_data(
        self,
        user_id: str,
        hide_balances: Optional[bool] = None,
        hide_transactions: Optional[bool] = None,
        hide_budgets: Optional[bool] = None,
        require_auth_for_sensitive_actions: Optional[bool] = None,
    ) -> bool:
        """Update the masking flags and the sensitive-action flag. None leaves a flag as is."""
        updates = {
            key: value
            for key, value in {
                "hide_balances": hide_balances,
                "hide_transactions": hide_transactions,
                "hide_budgets": hide_budgets,
                "require_auth_for_sensitive_actions": require_auth_for_sensitive_actions,
            }.items()
            if value is not None
        }
        if not updates:
            return True
        return await self._settings.update_security_settings(user_id, updates)

    async def disable_encryption(self, user_id: Optional[str] = None) -> bool:
        """Turn device encryption off and delete its key."""
        if not await self._encryption.disable_encryption():
            return False
        await self._audit.log_device_security_changed(
            AuditEventType.ENCRYPTION_DISABLED, user_id=user_id
        )
        return True
