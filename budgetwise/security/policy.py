"""
Security Policy Evaluator

Answers two questions for the signed-in user:
1. Must this action be (re)authenticated before it proceeds?
2. Should this data category render masked?

DESIGN DECISION: The two answers default in opposite directions when the
user's security settings cannot be read. Authentication fails closed
(require it), masking fails open (show the data). Keep them apart.
"""

from typing import Optional, Union

import structlog

from budgetwise.models.settings import (
    DataCategory,
    PrivacyMode,
    SecurityLevel,
    SecuritySettings,
)
from budgetwise.services.user_settings import UserSettingsService
from budgetwise.session import CurrentUserProvider


logger = structlog.get_logger("budgetwise.security.policy")

HIDDEN_TEXT_MASK = "••••••"

# Gated only at the high security level
HIGH_SECURITY_ACTIONS = frozenset({
    "delete_account",
    "change_password",
    "export_data",
    "change_security_settings",
})

# Gated at medium and high
MEDIUM_SECURITY_ACTIONS = frozenset({
    "add_payment_method",
    "delete_transaction",
    "delete_budget",
    "change_privacy_settings",
})

# Gated by require_auth_for_sensitive_actions
SENSITIVE_ACTIONS = frozenset({
    "view_balance",
    "view_transactions",
    "view_budgets",
    "add_transaction",
    "edit_transaction",
    "add_budget",
    "edit_budget",
})


def action_requires_authentication(action: str, settings: SecuritySettings) -> bool:
    """
    Pure policy decision for one action.

    Checked in order, first match wins: high-level actions, medium-level
    actions, sensitive actions, then maximum privacy mode (which gates
    every action).
    """
    if settings.security_level == SecurityLevel.HIGH and action in HIGH_SECURITY_ACTIONS:
        return True

    if (
        settings.security_level in (SecurityLevel.MEDIUM, SecurityLevel.HIGH)
        and action in MEDIUM_SECURITY_ACTIONS
    ):
        return True

    if settings.require_auth_for_sensitive_actions and action in SENSITIVE_ACTIONS:
        return True

    if settings.privacy_mode == PrivacyMode.MAXIMUM:
        return True

    return False


class SecurityPolicyEvaluator:
    """Reads the current user's security settings fresh on every question."""

    def __init__(
        self,
        user_provider: CurrentUserProvider,
        settings_service: UserSettingsService,
    ):
        self._users = user_provider
        self._settings = settings_service

    async def _load(self) -> tuple[Optional[str], Optional[SecuritySettings]]:
        user_id = self._users.get_current_user_id()
        if not user_id:
            return None, None
        return user_id, await self._settings.find_security_settings(user_id)

    async def requires_authentication(self, action: str) -> bool:
        """
        Whether the action needs an authentication challenge.

        No user means nothing to enforce (False). Unreadable or missing
        settings require authentication (True).
        """
        try:
            user_id, settings = await self._load()
        except Exception as e:
            logger.error("security_settings_unavailable", action=action, error=str(e))
            return True

        if user_id is None:
            return False
        if settings is None:
            logger.info("security_settings_missing", user_id=user_id, action=action)
            return True

        return action_requires_authentication(action, settings)

    async def should_hide_data(self, category: Union[DataCategory, str]) -> bool:
        """Whether the category renders masked. False when anything is unknown."""
        try:
            category = DataCategory(category)
            _, settings = await self._load()
        except Exception as e:
            logger.warning("hide_data_check_failed", category=str(category), error=str(e))
            return False

        if settings is None:
            return False
        return settings.hides(category)

    async def requires_auth_for_edit(self) -> bool:
        """The user's require_auth_for_edit flag. False when unknown."""
        try:
            _, settings = await self._load()
        except Exception as e:
            logger.warning("edit_auth_check_failed", error=str(e))
            return False
        return bool(settings and settings.require_auth_for_edit)

    async def requires_auth_for_delete(self) -> bool:
        """The user's require_auth_for_delete flag. False when unknown."""
        try:
            _, settings = await self._load()
        except Exception as e:
            logger.warning("delete_auth_check_failed", error=str(e))
            return False
        return bool(settings and settings.require_auth_for_delete)


async def protect_text(
    policy: SecurityPolicyEvaluator,
    value: str,
    category: Union[DataCategory, str],
    mask: str = HIDDEN_TEXT_MASK,
) -> str:
    """The value itself, or the mask if the category is hidden."""
    if await policy.should_hide_data(category):
        return mask
    return value
