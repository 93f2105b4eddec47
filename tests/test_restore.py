"""Tests for decoding backups and the restore flow."""

import asyncio
import base64
import json

import pytest

from budgetwise.backup import (
    CorruptBackupError,
    EncryptionKeyMissingError,
    NoBackupAvailableError,
    OperationInProgressError,
    RestoreExecutor,
    RestoreIncompleteError,
)
from budgetwise.models.audit import AuditEventType
from budgetwise.orchestrator import RestoreFlow
from budgetwise.services.storage import InMemoryObjectStorage, InMemoryTableStore, StorageError


USER_ID = "user-1"
BUCKET = "backups"


def run(coro):
    return asyncio.run(coro)


async def confirm_yes(preview):
    return True


async def confirm_no(preview):
    return False


def seed_transactions(tables, user_id=USER_ID, count=3):
    run(tables.insert("transactions", [
        {"id": f"{user_id}-t{i}", "user_id": user_id, "amount": 1000 * i}
        for i in range(1, count + 1)
    ]))


def envelope_dict(user_id, data, **metadata):
    return {
        "user_id": user_id,
        "backup_date": "2024-03-15T09:30:00+00:00",
        "data": data,
        "metadata": {"version": "1.0", "encryption": False, **metadata},
    }


def put_object(objects, path, payload):
    objects.put_raw(BUCKET, path, payload)


def user_rows(tables, table, column="user_id", user_id=USER_ID):
    return [row for row in tables.rows(table) if row.get(column) == user_id]


class ChunkedObjectStorage(InMemoryObjectStorage):
    """Hands payloads back as a list of small chunks."""

    async def download(self, bucket, path):
        data = await super().download(bucket, path)
        return [data[i:i + 7] for i in range(0, len(data), 7)]


class FailingInsertStore(InMemoryTableStore):
    def __init__(self, failing_table):
        super().__init__()
        self.failing_table = failing_table
        self.armed = False

    async def insert(self, table, rows):
        if self.armed and table == self.failing_table:
            raise StorageError(f"insert into {table} failed")
        return await super().insert(table, rows)


class TestCodecDecode:
    def test_plain_json(self, codec):
        raw = json.dumps(envelope_dict(USER_ID, {"transactions": []})).encode()
        envelope = run(codec.decode(raw))
        assert envelope.data == {"transactions": []}

    def test_plain_json_containing_separator(self, codec):
        raw = json.dumps(envelope_dict(USER_ID, {"categories": [{"id": "c1", "name": "a::b"}]}))
        envelope = run(codec.decode(raw))
        assert envelope.data["categories"][0]["name"] == "a::b"

    def test_legacy_base64_envelope(self, codec):
        raw = base64.b64encode(json.dumps(envelope_dict(USER_ID, {"budgets": []})).encode())
        envelope = run(codec.decode(raw))
        assert envelope.data == {"budgets": []}

    def test_legacy_base64_data(self, codec):
        data = base64.b64encode(json.dumps({"budgets": [{"id": "b1"}]}).encode()).decode()
        raw = json.dumps(envelope_dict(USER_ID, data))
        envelope = run(codec.decode(raw))
        assert envelope.data == {"budgets": [{"id": "b1"}]}

    @pytest.mark.parametrize("raw", [
        b"not a backup",
        b"\xff\xfe\x00",
        b"[1, 2, 3]",
        b'{"user_id": "user-1"}',
    ])
    def test_unreadable_payloads_are_corrupt(self, codec, raw):
        with pytest.raises(CorruptBackupError):
            run(codec.decode(raw))

    def test_tampered_tagged_blob_is_corrupt(self, codec, integrity):
        blob = integrity.wrap(json.dumps(envelope_dict(USER_ID, {"transactions": []})))
        tampered = blob.replace("user-1", "user-2")
        with pytest.raises(CorruptBackupError):
            run(codec.decode(tampered))

    def test_encrypted_data_needs_key(self, codec, encryption):
        async def scenario():
            await encryption.enable_encryption()
            token = await encryption.encrypt_object({"transactions": []})
            await encryption.disable_encryption()
            return await codec.decode(json.dumps(envelope_dict(USER_ID, token, encrypted=True)))

        with pytest.raises(EncryptionKeyMissingError):
            run(scenario())


class TestRestoreFlow:
    def test_end_to_end_round_trip(self, tables, backup_flow, restore_flow):
        seed_transactions(tables)
        run(backup_flow.run_backup())
        original = sorted(row["id"] for row in user_rows(tables, "transactions"))

        run(tables.insert("transactions", [{"id": "extra", "user_id": USER_ID, "amount": 1}]))
        result = run(restore_flow.perform_restore(confirm_yes))

        restored = user_rows(tables, "transactions")
        assert result.success
        assert sorted(row["id"] for row in restored) == original
        assert len(restored) == 3
        assert "transactions" in result.restored_categories

    def test_restore_uses_session_user_not_backup_owner(self, tables, objects, restore_flow):
        seed_transactions(tables, user_id="attacker", count=1)
        data = {
            "transactions": [{"id": "evil-1", "user_id": "attacker", "amount": 1}],
            "profile": {"id": "attacker", "full_name": "Mallory"},
        }
        put_object(objects, "attacker/backup_1.json", json.dumps(envelope_dict("attacker", data)).encode())

        run(restore_flow.perform_restore(confirm_yes, backup_ref="attacker/backup_1.json"))

        restored = user_rows(tables, "transactions")
        assert [row["id"] for row in restored] == ["evil-1"]
        assert user_rows(tables, "profiles", column="id")[0]["full_name"] == "Mallory"
        # The other account is untouched
        assert [row["id"] for row in user_rows(tables, "transactions", user_id="attacker")] == ["attacker-t1"]
        assert user_rows(tables, "profiles", column="id", user_id="attacker") == []

    def test_declined_confirmation_writes_nothing(self, tables, backup_flow, restore_flow, audit_storage):
        seed_transactions(tables)
        run(backup_flow.run_backup())
        run(tables.insert("transactions", [{"id": "extra", "user_id": USER_ID, "amount": 1}]))
        before = tables.rows("transactions")

        result = run(restore_flow.perform_restore(confirm_no))

        assert result.cancelled
        assert not result.success
        assert tables.rows("transactions") == before
        assert audit_storage.events[-1].event_type == AuditEventType.RESTORE_CANCELLED

    def test_confirm_sees_preview(self, tables, backup_flow, restore_flow, encryption):
        seed_transactions(tables)
        run(encryption.enable_encryption())
        run(backup_flow.run_backup())
        previews = []

        async def confirm(preview):
            previews.append(preview)
            return False

        run(restore_flow.perform_restore(confirm))

        assert previews[0].row_counts["transactions"] == 3
        assert previews[0].encrypted is True

    def test_no_backup_available(self, restore_flow):
        with pytest.raises(NoBackupAvailableError):
            run(restore_flow.load_backup())

    def test_missing_object_is_no_backup(self, restore_flow):
        with pytest.raises(NoBackupAvailableError):
            run(restore_flow.load_backup("user-1/backup_404.json"))

    def test_newest_backup_is_used(self, tables, backup_flow, restore_flow):
        seed_transactions(tables, count=1)
        run(backup_flow.run_backup())
        seed_transactions(tables, user_id=USER_ID + "x", count=1)
        run(tables.insert("transactions", [{"id": "second", "user_id": USER_ID}]))
        newest = run(backup_flow.run_backup())

        pending = run(restore_flow.load_backup())

        assert pending.source_path == newest.file_path
        assert pending.preview.row_counts["transactions"] == 2

    def test_corrupt_blob_aborts_before_writes(self, tables, objects, backup_flow, restore_flow):
        seed_transactions(tables)
        result = run(backup_flow.run_backup())
        blob = run(objects.download(BUCKET, result.file_path))
        objects.put_raw(BUCKET, result.file_path, blob[:20] + b"X" + blob[21:])
        run(tables.insert("transactions", [{"id": "extra", "user_id": USER_ID, "amount": 1}]))
        before = tables.rows("transactions")

        with pytest.raises(CorruptBackupError):
            run(restore_flow.perform_restore(confirm_yes))
        assert tables.rows("transactions") == before

    def test_key_lost_after_backup(self, tables, backup_flow, restore_flow, encryption):
        seed_transactions(tables)
        run(encryption.enable_encryption())
        run(backup_flow.run_backup())
        run(encryption.disable_encryption())

        with pytest.raises(EncryptionKeyMissingError):
            run(restore_flow.perform_restore(confirm_yes))
        assert len(user_rows(tables, "transactions")) == 3

    def test_chunked_download(self, tables, settings_service, codec, users, audit_logger):
        objects = ChunkedObjectStorage()
        put_object(objects, "user-1/backup_1.json", json.dumps(
            envelope_dict(USER_ID, {"budgets": [{"id": "b9", "user_id": USER_ID, "note": "élan"}]})
        ).encode("utf-8"))
        flow = RestoreFlow(users, settings_service, objects, codec, RestoreExecutor(tables), BUCKET, audit_logger)

        run(flow.perform_restore(confirm_yes, backup_ref="user-1/backup_1.json"))

        assert user_rows(tables, "budgets")[0]["note"] == "élan"

    def test_settings_restore_keeps_row_identity(self, tables, objects, restore_flow):
        run(tables.insert("user_settings", [
            {"id": "us-1", "user_id": USER_ID, "notification_enabled": True},
        ]))
        data = {"settings": {
            "user_settings": {"id": "foreign", "user_id": "someone", "notification_enabled": False},
            "security_settings": None,
        }}
        put_object(objects, "user-1/backup_1.json", json.dumps(envelope_dict(USER_ID, data)).encode())

        run(restore_flow.perform_restore(confirm_yes, backup_ref="user-1/backup_1.json"))

        rows = tables.rows("user_settings")
        assert rows == [{"id": "us-1", "user_id": USER_ID, "notification_enabled": False}]
        assert tables.rows("security_settings") == []

    def test_partial_failure_keeps_earlier_categories(self, settings_service, objects, codec, users, audit_logger, audit_storage):
        tables = FailingInsertStore("budgets")
        seed_transactions(tables, count=1)
        run(tables.insert("budgets", [{"id": "b-old", "user_id": USER_ID}]))
        run(tables.insert("saving_goals", [{"id": "g-old", "user_id": USER_ID}]))
        data = {
            "transactions": [{"id": "t-new", "user_id": USER_ID}],
            "budgets": [{"id": "b-new", "user_id": USER_ID}],
            "saving_goals": [{"id": "g-new", "user_id": USER_ID}],
        }
        put_object(objects, "user-1/backup_1.json", json.dumps(envelope_dict(USER_ID, data)).encode())
        flow = RestoreFlow(users, settings_service, objects, codec, RestoreExecutor(tables), BUCKET, audit_logger)
        tables.armed = True

        with pytest.raises(RestoreIncompleteError) as exc_info:
            run(flow.perform_restore(confirm_yes, backup_ref="user-1/backup_1.json"))

        result = exc_info.value.result
        assert result.restored_categories == ["transactions"]
        assert result.failed_category == "budgets"
        assert exc_info.value.retryable
        assert [row["id"] for row in tables.rows("transactions")] == ["t-new"]
        assert [row["id"] for row in tables.rows("saving_goals")] == ["g-old"]
        assert audit_storage.events[-1].event_type == AuditEventType.RESTORE_FAILED

    def test_restore_refused_while_busy(self, tables, backup_flow, restore_flow, guard):
        seed_transactions(tables)
        run(backup_flow.run_backup())
        pending = run(restore_flow.load_backup())

        with guard.hold(USER_ID):
            with pytest.raises(OperationInProgressError):
                run(restore_flow.confirm_and_restore(pending))

    def test_successful_restore_is_audited(self, tables, backup_flow, restore_flow, audit_storage):
        seed_transactions(tables)
        run(backup_flow.run_backup())
        run(restore_flow.perform_restore(confirm_yes))

        restore_events = [
            e.event_type for e in audit_storage.events
            if e.event_type.value.startswith("restore_")
        ]
        assert restore_events == [
            AuditEventType.RESTORE_REQUESTED,
            AuditEventType.RESTORE_CONFIRMED,
            AuditEventType.RESTORE_COMPLETED,
        ]
