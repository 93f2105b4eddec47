"""
Backup-blob integrity tag.

    tag(data)  = sha256(data + salt) as hex
    wire(data) = data + "::" + tag(data)

Tamper evidence only. The plaintext stays readable in the blob.
"""

import hashlib
from typing import Optional

from budgetwise.config import SecurityConfig, get_settings


SEPARATOR = "::"


class IntegrityTag:
    def __init__(self, salt: Optional[str] = None):
        self._salt = salt if salt is not None else get_settings().security.integrity_salt

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "IntegrityTag":
        return cls(config.integrity_salt)

    def tag(self, data: str) -> str:
        return hashlib.sha256((data + self._salt).encode("utf-8")).hexdigest()

    def wrap(self, data: str) -> str:
        return f"{data}{SEPARATOR}{self.tag(data)}"

    @staticmethod
    def has_tag(blob: str) -> bool:
        return SEPARATOR in blob

    def verify(self, blob: str) -> tuple[str, bool]:
        """
        Split off and check the tag.

        Returns (data, True) on a match. On a mismatch, or when no tag is
        present, returns (blob, False) so the caller treats the whole blob
        as plaintext.
        """
        # Tags are hex, so the last separator is the tag's
        data, separator, tag = blob.rpartition(SEPARATOR)
        if separator and tag == self.tag(data):
            return data, True
        return blob, False
