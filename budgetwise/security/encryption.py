"""
Device Encryption Utility

DESIGN DECISION: Encryption is optional and toggle-driven. The same
stored value may be plaintext or encrypted depending on when the
flag was flipped, so every caller checks the flag before deciding how
to read a value. Nothing here is ever applied silently.

Values are sealed with AES-SIV from `cryptography`, keyed with the
stored 32-byte key, and rendered as urlsafe base64 behind a "bw1:"
marker. AES-SIV is deterministic (the same text and key give the same
token) and authenticated, so a token sealed under another key never
opens.

None of the public methods raise. Failures come back as False or None.
"""

import base64
import binascii
import hashlib
import json
import secrets
from typing import Any, Callable, Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESSIV

from budgetwise.config import SecurityConfig, get_settings
from budgetwise.services.storage import KeyValueStoreInterface, StorageError


logger = structlog.get_logger("budgetwise.security.encryption")

CIPHERTEXT_MARKER = "bw1:"
KEY_BYTES = 32


def _cipher(key: str) -> AESSIV:
    """AES-SIV keyed from the stored hex key."""
    try:
        material = bytes.fromhex(key)
    except ValueError:
        material = b""
    if len(material) not in (32, 48, 64):
        # Keys written by hand or by older installs are stretched to 32 bytes
        material = hashlib.sha256(key.encode("utf-8")).digest()
    return AESSIV(material)


def transform(text: str, key: str) -> str:
    """
    Encrypt text with key.

    Raises:
        ValueError: If text is empty (AES-SIV seals at least one byte)
    """
    sealed = _cipher(key).encrypt(text.encode("utf-8"), None)
    return CIPHERTEXT_MARKER + base64.urlsafe_b64encode(sealed).decode("ascii")


def invert(token: str, key: str) -> Optional[str]:
    """Undo transform(). Returns None if token was not sealed with this key."""
    if not token.startswith(CIPHERTEXT_MARKER):
        return None
    try:
        sealed = base64.urlsafe_b64decode(token[len(CIPHERTEXT_MARKER):].encode("ascii"))
        return _cipher(key).decrypt(sealed, None).decode("utf-8")
    except (InvalidTag, binascii.Error, ValueError):
        return None


class EncryptionService:
    """
    Enable/disable flag plus a per-install key in the local key-value store.

    Keys:
    - {prefix}encryption_enabled  "true" / "false"
    - {prefix}encryption_key      64 hex characters
    """

    def __init__(
        self,
        store: KeyValueStoreInterface,
        config: Optional[SecurityConfig] = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ):
        self._store = store
        config = config or get_settings().security
        self._enabled_key = f"{config.storage_key_prefix}encryption_enabled"
        self._key_key = f"{config.storage_key_prefix}encryption_key"
        self._random_bytes = random_bytes

    def generate_key(self) -> str:
        """New random key as hex."""
        return self._random_bytes(KEY_BYTES).hex()

    async def get_encryption_key(self) -> Optional[str]:
        try:
            return await self._store.get_item(self._key_key)
        except StorageError as e:
            logger.error("encryption_key_read_failed", error=str(e))
            return None

    async def is_encryption_enabled(self) -> bool:
        try:
            return await self._store.get_item(self._enabled_key) == "true"
        except StorageError as e:
            logger.error("encryption_flag_read_failed", error=str(e))
            return False

    async def enable_encryption(self) -> bool:
        """
        Turn encryption on. Idempotent.

        A new key is generated and persisted before the flag, so the flag
        never claims encryption without a key behind it.
        """
        if await self.is_encryption_enabled():
            return True

        try:
            await self._store.set_item(self._key_key, self.generate_key())
        except StorageError as e:
            logger.error("encryption_key_write_failed", error=str(e))
            return False

        try:
            await self._store.set_item(self._enabled_key, "true")
        except StorageError as e:
            logger.error("encryption_flag_write_failed", error=str(e))
            return False

        logger.info("encryption_enabled")
        return True

    async def disable_encryption(self) -> bool:
        """Delete the key and clear the flag."""
        try:
            await self._store.remove_item(self._key_key)
            await self._store.set_item(self._enabled_key, "false")
        except StorageError as e:
            logger.error("encryption_disable_failed", error=str(e))
            return False

        logger.info("encryption_disabled")
        return True

    async def encrypt_data(self, text: str) -> Optional[str]:
        """
        Transform text with the stored key.

        Returns the input unchanged while encryption is disabled, and None
        if encryption is enabled but the key is missing.
        """
        if not await self.is_encryption_enabled():
            return text

        key = await self.get_encryption_key()
        if not key:
            logger.warning("encryption_key_missing")
            return None

        try:
            return transform(text, key)
        except ValueError as e:
            logger.error("encrypt_failed", error=str(e))
            return None

    async def decrypt_data(self, text: str) -> Optional[str]:
        """
        Inverse of encrypt_data.

        Passes text through while encryption is disabled. Text that does
        not invert with the current key is returned as-is.
        """
        if not await self.is_encryption_enabled():
            return text

        key = await self.get_encryption_key()
        if not key:
            logger.warning("encryption_key_missing")
            return None

        plain = invert(text, key)
        if plain is None:
            return text
        return plain

    async def encrypt_object(self, obj: Any) -> Optional[str]:
        try:
            text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False, default=str)
        except (TypeError, ValueError) as e:
            logger.error("encrypt_object_failed", error=str(e))
            return None
        return await self.encrypt_data(text)

    async def decrypt_object(self, text: str) -> Optional[Any]:
        plain = await self.decrypt_data(text)
        if plain is None:
            return None
        try:
            return json.loads(plain)
        except ValueError:
            return None
