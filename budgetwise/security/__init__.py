"""
Device security package.

Encryption utility, backup integrity tag, stored credentials, the
security policy evaluator and the sensitive-action gate.
"""

from budgetwise.security.auth import (
    BiometricPrompt,
    BiometricResult,
    SensitiveActionAuthenticator,
    authentication_message,
)
from budgetwise.security.controls import SecurityControls
from budgetwise.security.credentials import CredentialStore
from budgetwise.security.encryption import EncryptionService
from budgetwise.security.integrity import IntegrityTag
from budgetwise.security.policy import (
    HIDDEN_TEXT_MASK,
    SecurityPolicyEvaluator,
    action_requires_authentication,
    protect_text,
)

__all__ = [
    # Encryption and integrity
    "EncryptionService",
    "IntegrityTag",
    # Credentials
    "CredentialStore",
    # Policy
    "HIDDEN_TEXT_MASK",
    "SecurityPolicyEvaluator",
    "action_requires_authentication",
    "protect_text",
    # Authentication
    "BiometricPrompt",
    "BiometricResult",
    "SensitiveActionAuthenticator",
    "authentication_message",
    # Settings
    "SecurityControls",
]
