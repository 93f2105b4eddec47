"""Tests for the device encryption utility and the backup integrity tag."""

import asyncio

import pytest

from budgetwise.security import EncryptionService, IntegrityTag
from budgetwise.security.encryption import CIPHERTEXT_MARKER, invert, transform
from budgetwise.services.storage import InMemoryKeyValueStore, StorageError


class FailingStore(InMemoryKeyValueStore):
    async def get_item(self, key):
        raise StorageError("disk unavailable")

    async def set_item(self, key, value):
        raise StorageError("disk unavailable")


class TestTransform:
    def test_round_trip(self):
        key = "ab" * 32
        token = transform("hello, wörld", key)
        assert token.startswith(CIPHERTEXT_MARKER)
        assert "hello" not in token
        assert invert(token, key) == "hello, wörld"

    def test_deterministic(self):
        key = "cd" * 32
        assert transform("same", key) == transform("same", key)

    def test_different_keys_differ(self):
        assert transform("same", "00" * 32) != transform("same", "11" * 32)

    def test_invert_rejects_unmarked_text(self):
        assert invert("plain text", "00" * 32) is None

    def test_wrong_key_does_not_open(self):
        token = transform("secret", "00" * 32)
        assert invert(token, "11" * 32) is None

    def test_tampered_token_does_not_open(self):
        key = "00" * 32
        token = transform("secret", key)
        index = len(CIPHERTEXT_MARKER) + 5
        flipped = "A" if token[index] != "A" else "B"
        assert invert(token[:index] + flipped + token[index + 1:], key) is None

    def test_non_hex_key_still_works(self):
        token = transform("secret", "not-a-hex-key")
        assert invert(token, "not-a-hex-key") == "secret"

    def test_empty_text_is_rejected(self):
        with pytest.raises(ValueError):
            transform("", "00" * 32)


class TestEncryptionService:
    def test_disabled_by_default_and_passes_through(self, encryption):
        async def scenario():
            assert not await encryption.is_encryption_enabled()
            assert await encryption.encrypt_data("plain") == "plain"
            assert await encryption.decrypt_data("plain") == "plain"

        asyncio.run(scenario())

    def test_enable_writes_key_and_flag(self, encryption, local_store):
        async def scenario():
            assert await encryption.enable_encryption()
            key = await local_store.get_item("@budgetwise:encryption_key")
            flag = await local_store.get_item("@budgetwise:encryption_enabled")
            return key, flag

        key, flag = asyncio.run(scenario())
        assert flag == "true"
        assert len(key) == 64
        int(key, 16)

    def test_enable_is_idempotent(self, encryption):
        async def scenario():
            await encryption.enable_encryption()
            first = await encryption.get_encryption_key()
            await encryption.enable_encryption()
            return first, await encryption.get_encryption_key()

        first, second = asyncio.run(scenario())
        assert first == second

    def test_encrypt_decrypt_round_trip(self, encryption):
        async def scenario():
            await encryption.enable_encryption()
            token = await encryption.encrypt_data("s3cret")
            return token, await encryption.decrypt_data(token)

        token, plain = asyncio.run(scenario())
        assert token != "s3cret"
        assert plain == "s3cret"

    def test_object_round_trip(self, encryption):
        payload = {"transactions": [{"id": "t1", "amount": 12.5, "note": "café"}]}

        async def scenario():
            await encryption.enable_encryption()
            token = await encryption.encrypt_object(payload)
            return await encryption.decrypt_object(token)

        assert asyncio.run(scenario()) == payload

    def test_decrypt_returns_unreadable_text_as_is(self, encryption):
        async def scenario():
            await encryption.enable_encryption()
            return await encryption.decrypt_data("never encrypted")

        assert asyncio.run(scenario()) == "never encrypted"

    def test_missing_key_yields_none(self, local_store, security_config):
        async def scenario():
            await local_store.set_item("@budgetwise:encryption_enabled", "true")
            service = EncryptionService(local_store, security_config)
            return await service.encrypt_data("x"), await service.decrypt_data("x")

        assert asyncio.run(scenario()) == (None, None)

    def test_disable_removes_key(self, encryption):
        async def scenario():
            await encryption.enable_encryption()
            token = await encryption.encrypt_data("s3cret")
            await encryption.disable_encryption()
            return (
                token,
                await encryption.is_encryption_enabled(),
                await encryption.get_encryption_key(),
                await encryption.decrypt_data(token),
            )

        token, enabled, key, after = asyncio.run(scenario())
        assert not enabled
        assert key is None
        # Data encrypted before the toggle can no longer be read
        assert after == token

    def test_storage_failures_do_not_raise(self, security_config):
        service = EncryptionService(FailingStore(), security_config)

        async def scenario():
            return (
                await service.is_encryption_enabled(),
                await service.enable_encryption(),
                await service.get_encryption_key(),
            )

        assert asyncio.run(scenario()) == (False, False, None)

    def test_injected_randomness_controls_key(self, local_store, security_config):
        service = EncryptionService(local_store, security_config, random_bytes=lambda n: b"\x01" * n)
        assert service.generate_key() == "01" * 32


class TestIntegrityTag:
    def test_wrap_and_verify(self, integrity):
        blob = integrity.wrap('{"a":1}')
        assert IntegrityTag.has_tag(blob)
        assert integrity.verify(blob) == ('{"a":1}', True)

    def test_tag_is_hex_sha256(self, integrity):
        tag = integrity.tag("data")
        assert len(tag) == 64
        int(tag, 16)

    def test_salt_changes_tag(self):
        assert IntegrityTag("one").tag("data") != IntegrityTag("two").tag("data")

    def test_data_containing_separator(self, integrity):
        data = '{"note":"a::b"}'
        assert integrity.verify(integrity.wrap(data)) == (data, True)

    def test_untagged_blob_is_not_verified(self, integrity):
        assert integrity.verify("plain") == ("plain", False)

    @pytest.mark.parametrize("position", [0, 5, 10, -1, -30])
    def test_any_single_character_change_is_detected(self, integrity, position):
        blob = integrity.wrap('{"user_id":"user-1","data":{}}')
        index = position % len(blob)
        replacement = "0" if blob[index] != "0" else "1"
        tampered = blob[:index] + replacement + blob[index + 1:]

        _, verified = integrity.verify(tampered)
        assert not verified
