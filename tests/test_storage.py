"""Tests for the storage layer and the settings repository."""

import asyncio
import io
import json

import pytest

from budgetwise.models.backup import BackupStatus, BackupType
from budgetwise.models.settings import BackupFrequency, SecurityLevel
from budgetwise.services.storage import (
    DuplicateError,
    InMemoryObjectStorage,
    InMemoryTableStore,
    JsonFileKeyValueStore,
    NotFoundError,
    PayloadDecodeError,
    StorageError,
    normalize_payload,
    payload_to_text,
)
from budgetwise.services.storage.query import apply_query
from budgetwise.services.user_settings import UserSettingsService


USER_ID = "user-1"


class BrokenTableStore(InMemoryTableStore):
    async def select(self, table, filters=None, order_by=None, descending=False, limit=None):
        raise StorageError("table store offline")


class TestPayloadNormalization:
    @pytest.mark.parametrize("payload", [
        b"hello",
        bytearray(b"hello"),
        memoryview(b"hello"),
        "hello",
        io.BytesIO(b"hello"),
        [b"he", b"llo"],
        [b"he", "l", bytearray(b"lo")],
        list(b"hello"),
    ])
    def test_supported_shapes(self, payload):
        assert normalize_payload(payload) == b"hello"

    def test_text_is_utf8_encoded(self):
        assert normalize_payload("élan") == "élan".encode("utf-8")

    @pytest.mark.parametrize("payload", [None, 42, 3.5, [b"ok", 1.5], [300]])
    def test_unsupported_shapes(self, payload):
        with pytest.raises(PayloadDecodeError):
            normalize_payload(payload)

    def test_invalid_utf8(self):
        with pytest.raises(PayloadDecodeError):
            payload_to_text(b"\xff\xfe")

    def test_decode_error_is_storage_error(self):
        assert issubclass(PayloadDecodeError, StorageError)


class TestApplyQuery:
    ROWS = [
        {"id": "a", "user_id": "u1", "created_at": "2024-03-02"},
        {"id": "b", "user_id": "u2", "created_at": "2024-03-01"},
        {"id": "c", "user_id": "u1", "created_at": None},
        {"id": "d", "user_id": "u1", "created_at": "2024-03-03"},
    ]

    def test_filter_order_limit(self):
        rows = apply_query(self.ROWS, {"user_id": "u1"}, order_by="created_at", descending=True, limit=2)
        assert [row["id"] for row in rows] == ["d", "a"]

    def test_none_sorts_first_ascending(self):
        rows = apply_query(self.ROWS, order_by="created_at")
        assert [row["id"] for row in rows] == ["c", "b", "a", "d"]

    def test_no_filters_returns_everything(self):
        assert len(apply_query(self.ROWS)) == 4


class TestInMemoryTableStore:
    def test_insert_assigns_ids_and_rejects_duplicates(self):
        store = InMemoryTableStore()

        async def scenario():
            inserted = await store.insert("budgets", [{"user_id": USER_ID}])
            await store.insert("budgets", [{"id": "b1", "user_id": USER_ID}])
            with pytest.raises(DuplicateError):
                await store.insert("budgets", [{"id": "b1", "user_id": USER_ID}])
            return inserted

        inserted = asyncio.run(scenario())
        assert inserted[0]["id"]
        assert len(store.rows("budgets")) == 2

    def test_upsert_merges_on_conflict_column(self):
        store = InMemoryTableStore({"user_settings": [
            {"id": "us-1", "user_id": USER_ID, "theme": "light", "language": "id"},
        ]})

        asyncio.run(store.upsert("user_settings", [{"user_id": USER_ID, "theme": "dark"}], on_conflict="user_id"))

        assert store.rows("user_settings") == [
            {"id": "us-1", "user_id": USER_ID, "theme": "dark", "language": "id"},
        ]

    def test_update_and_delete(self):
        store = InMemoryTableStore({"transactions": [
            {"id": "t1", "user_id": USER_ID},
            {"id": "t2", "user_id": USER_ID},
            {"id": "t3", "user_id": "other"},
        ]})

        async def scenario():
            updated = await store.update("transactions", {"amount": 5}, {"user_id": USER_ID})
            deleted = await store.delete("transactions", {"user_id": USER_ID})
            return len(updated), deleted

        assert asyncio.run(scenario()) == (2, 2)
        assert store.rows("transactions") == [{"id": "t3", "user_id": "other"}]

    def test_returned_rows_are_copies(self):
        store = InMemoryTableStore({"budgets": [{"id": "b1", "limit": 10}]})
        rows = asyncio.run(store.select("budgets"))
        rows[0]["limit"] = 999
        assert store.rows("budgets")[0]["limit"] == 10


class TestInMemoryObjectStorage:
    def test_upload_and_download(self):
        storage = InMemoryObjectStorage()

        async def scenario():
            await storage.create_bucket("backups")
            await storage.upload("backups", "user-1/backup_1.json", b"{}")
            return await storage.download("backups", "user-1/backup_1.json")

        assert asyncio.run(scenario()) == b"{}"

    def test_upload_never_overwrites_by_default(self):
        storage = InMemoryObjectStorage()

        async def scenario():
            await storage.create_bucket("backups")
            await storage.upload("backups", "a.json", b"1")
            with pytest.raises(DuplicateError):
                await storage.upload("backups", "a.json", b"2")
            return await storage.download("backups", "a.json")

        assert asyncio.run(scenario()) == b"1"

    def test_missing_bucket_and_object(self):
        storage = InMemoryObjectStorage()

        with pytest.raises(NotFoundError):
            asyncio.run(storage.upload("nope", "a.json", b"1"))
        with pytest.raises(NotFoundError):
            asyncio.run(storage.download("nope", "a.json"))

    def test_duplicate_bucket(self):
        storage = InMemoryObjectStorage()

        async def scenario():
            await storage.create_bucket("backups")
            await storage.create_bucket("backups")

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())


class TestJsonFileKeyValueStore:
    def test_values_survive_a_new_instance(self, tmp_path):
        path = tmp_path / "device" / "store.json"

        async def write():
            store = JsonFileKeyValueStore(path)
            await store.set_item("@budgetwise:encryption_enabled", "true")
            await store.set_item("temp", "1")
            await store.multi_remove(["temp", "missing"])

        asyncio.run(write())

        reopened = JsonFileKeyValueStore(path)
        assert asyncio.run(reopened.get_all_keys()) == ["@budgetwise:encryption_enabled"]
        assert json.loads(path.read_text(encoding="utf-8")) == {"@budgetwise:encryption_enabled": "true"}

    def test_remove_item(self, tmp_path):
        store = JsonFileKeyValueStore(tmp_path / "store.json")

        async def scenario():
            await store.set_item("a", "1")
            await store.remove_item("a")
            await store.remove_item("never-set")
            return await store.get_item("a")

        assert asyncio.run(scenario()) is None

    def test_unreadable_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(StorageError):
            asyncio.run(JsonFileKeyValueStore(path).get_item("a"))


class TestUserSettingsService:
    def test_settings_created_lazily_with_defaults(self, settings_service, tables):
        settings = asyncio.run(settings_service.get_backup_settings(USER_ID))

        assert settings.auto_backup_enabled
        assert settings.backup_frequency == BackupFrequency.WEEKLY
        rows = tables.rows("backup_settings")
        assert len(rows) == 1
        assert rows[0]["user_id"] == USER_ID
        assert rows[0]["created_at"] == rows[0]["updated_at"]

    def test_find_does_not_create(self, settings_service, tables):
        assert asyncio.run(settings_service.find_security_settings(USER_ID)) is None
        assert tables.rows("security_settings") == []

    def test_update_merges_and_validates(self, settings_service):
        async def scenario():
            assert await settings_service.update_security_settings(USER_ID, {"security_level": "high"})
            return await settings_service.find_security_settings(USER_ID)

        settings = asyncio.run(scenario())
        assert settings.security_level == SecurityLevel.HIGH
        assert settings.require_auth_for_sensitive_actions

    def test_update_with_invalid_value_is_rejected(self, settings_service):
        async def scenario():
            saved = await settings_service.update_security_settings(USER_ID, {"security_level": "extreme"})
            return saved, await settings_service.find_security_settings(USER_ID)

        saved, settings = asyncio.run(scenario())
        assert saved is False
        assert settings.security_level == SecurityLevel.MEDIUM

    def test_read_failure_is_in_band(self, backup_config, clock):
        service = UserSettingsService(BrokenTableStore(), backup_config, clock)

        async def scenario():
            return (
                await service.get_backup_settings(USER_ID),
                await service.update_backup_settings(USER_ID, {"auto_backup_enabled": False}),
                await service.get_backup_history(USER_ID),
            )

        assert asyncio.run(scenario()) == (None, False, [])

    def test_history_is_newest_first_and_limited(self, settings_service):
        async def scenario():
            ids = []
            for _ in range(12):
                ids.append(await settings_service.create_backup_record(USER_ID, BackupType.MANUAL))
            return ids, await settings_service.get_backup_history(USER_ID)

        ids, history = asyncio.run(scenario())
        assert len(history) == 10
        assert [entry.id for entry in history] == list(reversed(ids))[:10]
        assert all(entry.backup_status == BackupStatus.PENDING for entry in history)

    def test_update_backup_record(self, settings_service):
        async def scenario():
            record_id = await settings_service.create_backup_record(USER_ID, BackupType.AUTOMATIC)
            ok = await settings_service.update_backup_record(record_id, {
                "backup_status": BackupStatus.COMPLETED,
                "backup_file_path": "user-1/backup_1.json",
            })
            missing = await settings_service.update_backup_record("no-such-id", {"backup_status": "failed"})
            return ok, missing, await settings_service.get_backup_history(USER_ID)

        ok, missing, history = asyncio.run(scenario())
        assert ok is True
        assert missing is False
        assert history[0].is_restorable
        assert history[0].backup_type == BackupType.AUTOMATIC
