"""
Sensitive Action Authentication

Puts a biometric prompt in front of actions the security policy gates.
The prompt itself is a device API; it is consumed through BiometricPrompt.

Any prompt error is treated as a failed authentication. Every challenge
outcome is audited.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from pydantic import BaseModel

from budgetwise.audit import AuditLogger
from budgetwise.models.audit import AuditEventType
from budgetwise.security.policy import SecurityPolicyEvaluator
from budgetwise.session import CurrentUserProvider


logger = structlog.get_logger("budgetwise.security.auth")

FALLBACK_LABEL = "Use PIN"
CANCEL_LABEL = "Cancel"


class BiometricResult(BaseModel):
    success: bool
    error: Optional[str] = None


class BiometricPrompt(ABC):
    """Device biometric prompt (with PIN fallback)."""

    @abstractmethod
    async def authenticate(
        self,
        prompt_message: str,
        fallback_label: str = FALLBACK_LABEL,
        cancel_label: str = CANCEL_LABEL,
    ) -> BiometricResult:
        pass


def authentication_message(action: str) -> str:
    """Prompt text for an action name, e.g. delete_transaction -> "Authenticate to delete transaction"."""
    for prefix, verb in (
        ("edit_", "edit"),
        ("delete_", "delete"),
        ("view_", "view"),
        ("add_", "add"),
    ):
        if action.startswith(prefix):
            subject = action[len(prefix):].replace("_", " ")
            return f"Authenticate to {verb} {subject}"
    return "Authenticate to continue"


class SensitiveActionAuthenticator:
    """
    Gate for sensitive actions.

    Usage:
        if await authenticator.authenticate_action("delete_budget"):
            await delete_budget(...)
    """

    def __init__(
        self,
        policy: SecurityPolicyEvaluator,
        prompt: BiometricPrompt,
        user_provider: CurrentUserProvider,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._policy = policy
        self._prompt = prompt
        self._users = user_provider
        self._audit = audit_logger or AuditLogger()

    async def _challenge(self, action: str) -> bool:
        user_id = self._users.get_current_user_id()
        await self._audit.log_auth_challenge(
            AuditEventType.AUTH_CHALLENGE_REQUIRED, user_id, action
        )

        try:
            result = await self._prompt.authenticate(
                prompt_message=authentication_message(action),
                fallback_label=FALLBACK_LABEL,
                cancel_label=CANCEL_LABEL,
            )
            passed = result.success
        except Exception as e:
            logger.warning("biometric_prompt_failed", action=action, error=str(e))
            passed = False

        await self._audit.log_auth_challenge(
            AuditEventType.AUTH_CHALLENGE_PASSED if passed else AuditEventType.AUTH_CHALLENGE_FAILED,
            user_id,
            action,
        )
        return passed

    async def authenticate_action(self, action: str) -> bool:
        """True if the action may proceed (not gated, or the challenge passed)."""
        if not await self._policy.requires_authentication(action):
            return True
        return await self._challenge(action)

    async def authenticate_edit(self, item_type: str) -> bool:
        """Challenge an edit only when the user asked for edit authentication."""
        if not await self._policy.requires_auth_for_edit():
            return True
        return await self._challenge(f"edit_{item_type}")

    async def authenticate_delete(self, item_type: str) -> bool:
        """Challenge a delete only when the user asked for delete authentication."""
        if not await self._policy.requires_auth_for_delete():
            return True
        return await self._challenge(f"delete_{item_type}")
