"""
Stored Login Credentials

At most one identity is stored per device. The password goes through
the encryption utility before it is written, which is a pass-through
while device encryption is disabled.
"""

from pydantic import BaseModel, ConfigDict, Field


class StoredCredentials(BaseModel):
    """The single credentials record kept in the local key-value store."""
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=1)
    encrypted_password: str = Field(..., alias="encryptedPassword")
    # Unix milliseconds
    last_login_time: int = Field(..., ge=0, alias="lastLoginTime")
    user_id: str = Field(..., alias="userId")

    def to_storage_json(self) -> str:
        """Serialize using the on-device field names."""
        return self.model_dump_json(by_alias=True)


class BiometricCredentials(BaseModel):
    """Email and plaintext password released after a biometric unlock."""

    email: str
    password: str
