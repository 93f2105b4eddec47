"""
Backup Blob Codec

Turns a BackupEnvelope into the bytes that get uploaded, and back.

Wire formats read, newest first:
1. JSON + "::" + integrity tag (written when the backup encryption setting
   is on); the data is encrypted only if device encryption is on as well
2. Plain JSON envelope (written when the setting is off)
3. Legacy: base64 of the JSON envelope, or an envelope whose `data`
   is base64 of the category map

DESIGN DECISION: decode() does all parsing and validation before the
restore touches a single row. Anything it cannot read becomes a
CorruptBackupError.
"""

import base64
import binascii
import json
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from budgetwise.backup.errors import CorruptBackupError, EncryptionKeyMissingError
from budgetwise.models.backup import BackupEnvelope
from budgetwise.security.encryption import CIPHERTEXT_MARKER, EncryptionService
from budgetwise.security.integrity import IntegrityTag
from budgetwise.services.storage import PayloadDecodeError, payload_to_text


logger = structlog.get_logger("budgetwise.backup.codec")


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _parse_json_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _parse_base64_json(text: str) -> Optional[Any]:
    try:
        decoded = base64.b64decode(text.strip(), validate=True).decode("utf-8")
        return json.loads(decoded)
    except (binascii.Error, ValueError):
        return None


class BackupCodec:
    def __init__(self, encryption: EncryptionService, integrity: IntegrityTag):
        self._encryption = encryption
        self._integrity = integrity

    # -------------------------------------------------------------------------
    # Encode
    # -------------------------------------------------------------------------

    async def encode(self, envelope: BackupEnvelope) -> tuple[BackupEnvelope, bytes]:
        """
        Serialize an envelope for upload.

        When metadata.encryption is set, the blob gets an integrity tag, and
        the data map is encrypted if device encryption is already on. The
        device flag is never changed here. metadata.encrypted is only set
        once the data was actually encrypted.

        Returns the envelope as written and the blob bytes.
        """
        if envelope.metadata.encryption and isinstance(envelope.data, dict):
            if await self._encryption.is_encryption_enabled():
                token = await self._encryption.encrypt_object(envelope.data)
                if token is not None and token.startswith(CIPHERTEXT_MARKER):
                    envelope = envelope.model_copy(update={
                        "data": token,
                        "metadata": envelope.metadata.model_copy(update={"encrypted": True}),
                    })
                else:
                    logger.warning("backup_encryption_skipped", user_id=envelope.user_id)
            else:
                logger.info("backup_stored_unencrypted", user_id=envelope.user_id, reason="device_encryption_off")

        text = compact_json(envelope.to_json_dict())
        if envelope.metadata.encryption:
            text = self._integrity.wrap(text)
        return envelope, text.encode("utf-8")

    # -------------------------------------------------------------------------
    # Decode
    # -------------------------------------------------------------------------

    def parse_blob(self, text: str) -> dict:
        """
        Recover the raw envelope dict from blob text.

        Raises:
            CorruptBackupError: If no known format matches
        """
        if self._integrity.has_tag(text):
            data, verified = self._integrity.verify(text)
            if verified:
                parsed = _parse_json_object(data)
                if parsed is None:
                    raise CorruptBackupError("Backup passed its integrity check but is not a JSON object")
                return parsed
            # "::" can also occur inside an untagged plain JSON backup
            parsed = _parse_json_object(text)
            if parsed is None:
                raise CorruptBackupError("Backup integrity check failed")
            return parsed

        parsed = _parse_json_object(text)
        if parsed is not None:
            return parsed

        legacy = _parse_base64_json(text)
        if isinstance(legacy, dict):
            logger.info("legacy_backup_format", format="base64_envelope")
            return legacy

        raise CorruptBackupError("Backup is not valid JSON")

    async def _decode_data(self, envelope: BackupEnvelope) -> dict:
        token = envelope.data
        if token.startswith(CIPHERTEXT_MARKER):
            if not await self._encryption.is_encryption_enabled():
                raise EncryptionKeyMissingError()
            if not await self._encryption.get_encryption_key():
                raise EncryptionKeyMissingError()

            data = await self._encryption.decrypt_object(token)
            if isinstance(data, dict):
                return data
            raise CorruptBackupError("Backup data could not be decrypted with this device's key")

        legacy = _parse_base64_json(token)
        if isinstance(legacy, dict):
            logger.info("legacy_backup_format", format="base64_data")
            return legacy

        raise CorruptBackupError("Backup data is neither a category map nor readable encrypted text")

    async def decode(self, payload: Any) -> BackupEnvelope:
        """
        Turn a downloaded payload into a validated envelope with a category map.

        Raises:
            CorruptBackupError: Unreadable, tampered or incomplete backup
            EncryptionKeyMissingError: Encrypted backup, no key on this device
        """
        try:
            text = payload_to_text(payload)
        except PayloadDecodeError as e:
            raise CorruptBackupError(str(e))

        raw = self.parse_blob(text)
        try:
            envelope = BackupEnvelope.model_validate(raw)
        except ValidationError as e:
            raise CorruptBackupError(f"Backup envelope is incomplete: {e.error_count()} invalid field(s)")

        if isinstance(envelope.data, str):
            envelope = envelope.model_copy(update={"data": await self._decode_data(envelope)})
        return envelope
