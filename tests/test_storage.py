"""Tests for the encrypted local store and the storage services."""

from __future__ import annotations

import os
import stat
from datetime import timedelta
from decimal import Decimal

import pytest

from dinero.storage.encrypted_store import (
    EncryptedKeyValueStore,
    StorageKeys,
    StoreNamespace,
    derive_machine_key,
)
from dinero.storage.transaction_storage import TransactionStorageService
from dinero.utils.general import parse_timestamp

from conftest import T0, make_transaction, make_wallet


class TestEncryptedKeyValueStore:
    """AES-GCM encrypted key-value rows in ``kv_store``."""

    def test_round_trip(self, db, logger):
        store = EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger)
        assert store.set_json("greeting", {"text": "olá", "n": [1, 2]})
        assert store.get_json("greeting") == {"text": "olá", "n": [1, 2]}

    def test_values_are_not_stored_in_plaintext(self, db, logger):
        store = EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger)
        store.set_json("secret", "hunter2-hunter2")
        blob = db.sqlite.execute("SELECT ciphertext FROM kv_store WHERE key = 'secret'").fetchone()[0]
        assert b"hunter2" not in bytes(blob)

    def test_wrong_key_reads_back_as_missing(self, db, logger):
        EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger).set_json("k", 1)
        other = EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger)
        assert other.get_json("k") is None

    def test_namespaces_are_isolated(self, db, logger):
        key = os.urandom(32)
        main = EncryptedKeyValueStore(db, StoreNamespace.MAIN, key, logger)
        secure = EncryptedKeyValueStore(db, StoreNamespace.SECURE, key, logger)
        main.set_json("k", "main")
        assert secure.get_json("k") is None

    def test_delete(self, db, logger):
        store = EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger)
        store.set_json("k", 1)
        assert store.delete("k")
        assert store.get_json("k") is None
        assert store.delete("never-written")

    def test_short_key_is_rejected(self, db, logger):
        with pytest.raises(ValueError):
            EncryptedKeyValueStore(db, StoreNamespace.MAIN, b"short", logger)

    def test_closed_database_degrades_to_fallbacks(self, db, logger):
        store = EncryptedKeyValueStore(db, StoreNamespace.MAIN, os.urandom(32), logger)
        db.close()
        assert store.get_json("k") is None
        assert store.set_json("k", 1) is False


class TestDeriveMachineKey:
    def test_deterministic_per_namespace(self, tmp_path, logger):
        salt = tmp_path / "salt"
        main_a = derive_machine_key(StoreNamespace.MAIN, salt, 1_000, logger)
        main_b = derive_machine_key(StoreNamespace.MAIN, salt, 1_000, logger)
        secure = derive_machine_key(StoreNamespace.SECURE, salt, 1_000, logger)
        assert main_a == main_b
        assert main_a != secure
        assert len(main_a) == 32

    def test_salt_file_is_private(self, tmp_path, logger):
        salt = tmp_path / "salt"
        derive_machine_key(StoreNamespace.MAIN, salt, 1_000, logger)
        assert salt.stat().st_size == 32
        if os.name == "posix":
            assert stat.S_IMODE(salt.stat().st_mode) == 0o600


class TestWalletStorage:
    def test_save_marks_dirty_and_stamps(self, wallet_storage, clock):
        clock.advance(60)
        saved = wallet_storage.save_wallet(make_wallet(is_default=True))
        assert saved.needs_sync is True
        assert saved.updated_at == clock.now
        assert saved.created_at == clock.now
        assert wallet_storage.get_all_wallets() == [saved]

    def test_save_existing_keeps_created_at(self, wallet_storage, clock):
        first = wallet_storage.save_wallet(make_wallet())
        clock.advance(10)
        second = wallet_storage.save_wallet(first.model_copy(update={"name": "Casa"}))
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert [w.name for w in wallet_storage.get_all_wallets()] == ["Casa"]

    def test_soft_delete_hides_wallet(self, wallet_storage, clock):
        wallet_storage.save_wallet(make_wallet())
        clock.advance()
        assert wallet_storage.soft_delete_wallet("wallet-1")
        assert wallet_storage.get_wallet("wallet-1") is None
        tombstone = wallet_storage.get_wallet("wallet-1", include_deleted=True)
        assert tombstone.deleted_at == clock.now
        assert wallet_storage.get_all_wallets() == []
        assert wallet_storage.soft_delete_wallet("missing") is False

    def test_mark_as_synced_respects_newer_edit(self, wallet_storage, clock):
        pushed = wallet_storage.save_wallet(make_wallet())
        clock.advance()
        wallet_storage.save_wallet(pushed.model_copy(update={"name": "Editado"}))
        assert wallet_storage.mark_as_synced("wallet-1", pushed.updated_at) is False
        assert wallet_storage.get_wallet("wallet-1").needs_sync is True

    def test_mark_as_synced_clears_flag(self, wallet_storage):
        saved = wallet_storage.save_wallet(make_wallet())
        assert wallet_storage.mark_as_synced("wallet-1", saved.updated_at)
        assert wallet_storage.get_wallets_needing_sync() == []

    def test_apply_remote_wallet_is_clean_and_verbatim(self, wallet_storage):
        remote = make_wallet(updated_at=T0 + timedelta(days=1), name="Remota")
        wallet_storage.apply_remote_wallet(remote)
        stored = wallet_storage.get_wallet("wallet-1")
        assert stored.name == "Remota"
        assert stored.updated_at == remote.updated_at
        assert stored.needs_sync is False

    def test_current_wallet_selection(self, wallet_storage):
        assert wallet_storage.get_current_wallet_id() is None
        wallet_storage.set_current_wallet_id("wallet-1")
        assert wallet_storage.get_current_wallet_id() == "wallet-1"
        wallet_storage.clear_current_wallet_id()
        assert wallet_storage.get_current_wallet_id() is None

    def test_malformed_record_is_skipped(self, wallet_storage, services):
        good = make_wallet().model_dump(mode="json")
        store = wallet_storage._store
        store.set_json(StorageKeys.WALLETS, [good, {"id": "broken"}])
        assert [w.id for w in wallet_storage.get_all_wallets()] == ["wallet-1"]


class TestTransactionStorage:
    def test_round_trip(self, transaction_storage):
        """save then get returns the same record."""
        original = make_transaction(notes="feira", tags=["casa"], metadata={"receiptNo": 7})
        saved = transaction_storage.save_transaction("wallet-1", original)
        loaded = transaction_storage.get_transaction("wallet-1", "tx-1")
        assert loaded == saved
        assert loaded.amount == original.amount
        assert loaded.metadata == {"receiptNo": 7}

    def test_create_then_read_is_dirty(self, transaction_storage):
        transaction_storage.save_transaction("wallet-1", make_transaction())
        assert transaction_storage.get_transaction("wallet-1", "tx-1").needs_sync is True

    def test_wallet_id_forced_to_partition(self, transaction_storage):
        saved = transaction_storage.save_transaction("wallet-2", make_transaction(wallet_id="wallet-1"))
        assert saved.wallet_id == "wallet-2"
        assert transaction_storage.get_all_transactions("wallet-1") == []

    def test_tombstone_durability(self, transaction_storage):
        transaction_storage.save_transaction("wallet-1", make_transaction())
        assert transaction_storage.soft_delete_transaction("wallet-1", "tx-1")

        assert transaction_storage.get_transaction("wallet-1", "tx-1") is None
        everything = transaction_storage.get_all_transactions("wallet-1", include_deleted=True)
        assert len(everything) == 1
        assert everything[0].deleted_at is not None
        assert transaction_storage.get_all_transactions("wallet-1") == []

    def test_needing_sync_includes_tombstones(self, transaction_storage):
        transaction_storage.save_transaction("wallet-1", make_transaction("tx-1"))
        transaction_storage.save_transaction("wallet-1", make_transaction("tx-2"))
        transaction_storage.soft_delete_transaction("wallet-1", "tx-2")
        assert {t.id for t in transaction_storage.get_transactions_needing_sync("wallet-1")} == {"tx-1", "tx-2"}

    def test_mark_as_synced_respects_newer_edit(self, transaction_storage, clock):
        pushed = transaction_storage.save_transaction("wallet-1", make_transaction())
        clock.advance()
        transaction_storage.save_transaction("wallet-1", pushed.model_copy(update={"amount": Decimal("75")}))
        assert transaction_storage.mark_as_synced("wallet-1", "tx-1", pushed.updated_at) is False
        assert transaction_storage.get_transaction("wallet-1", "tx-1").needs_sync is True

    def test_mark_unknown_transaction(self, transaction_storage):
        assert transaction_storage.mark_as_synced("wallet-1", "nope") is False


class TestBulkSaveLastWriterWins:
    """Remote wins when newer or equal; local wins when strictly newer."""

    def test_newer_remote_replaces_local(self, transaction_storage, clock):
        transaction_storage.save_transaction("wallet-1", make_transaction())
        remote = make_transaction(updated_at=clock.now + timedelta(hours=1), amount="99")
        assert transaction_storage.bulk_save("wallet-1", [remote]) == 1
        stored = transaction_storage.get_transaction("wallet-1", "tx-1")
        assert stored.amount == 99
        assert stored.needs_sync is False

    def test_newer_local_is_kept(self, transaction_storage, clock):
        clock.advance(3600)
        transaction_storage.save_transaction("wallet-1", make_transaction(amount="10"))
        remote = make_transaction(updated_at=T0, amount="99")
        assert transaction_storage.bulk_save("wallet-1", [remote]) == 0
        stored = transaction_storage.get_transaction("wallet-1", "tx-1")
        assert stored.amount == 10
        assert stored.needs_sync is True

    def test_tie_resolves_to_remote(self, transaction_storage, clock):
        local = transaction_storage.save_transaction("wallet-1", make_transaction(description="local"))
        remote = make_transaction(updated_at=local.updated_at, description="remote")
        transaction_storage.bulk_save("wallet-1", [remote])
        assert transaction_storage.get_transaction("wallet-1", "tx-1").description == "remote"

    def test_unknown_records_are_added(self, transaction_storage):
        written = transaction_storage.bulk_save(
            "wallet-1", [make_transaction("tx-a"), make_transaction("tx-b")],
        )
        assert written == 2
        assert {t.id for t in transaction_storage.get_all_transactions("wallet-1")} == {"tx-a", "tx-b"}

    def test_remote_tombstone_hides_local_record(self, transaction_storage):
        transaction_storage.save_transaction("wallet-1", make_transaction())
        tombstone = make_transaction(
            updated_at=T0 + timedelta(days=1), deleted_at=T0 + timedelta(days=1),
        )
        transaction_storage.bulk_save("wallet-1", [tombstone])
        assert transaction_storage.get_transaction("wallet-1", "tx-1") is None


class TestFailedWrites:
    """A write the store refuses is reported, never passed off as stored."""

    def test_save_transaction_returns_none(self, transaction_storage, rejected_keys):
        rejected_keys.append("transactions:")
        assert transaction_storage.save_transaction("wallet-1", make_transaction()) is None
        assert transaction_storage.get_all_transactions("wallet-1") == []

    def test_soft_delete_transaction_reports_failure(self, transaction_storage, rejected_keys):
        transaction_storage.save_transaction("wallet-1", make_transaction())
        rejected_keys.append("transactions:")
        assert transaction_storage.soft_delete_transaction("wallet-1", "tx-1") is False
        assert transaction_storage.get_transaction("wallet-1", "tx-1") is not None

    def test_bulk_save_returns_none(self, transaction_storage, rejected_keys):
        rejected_keys.append("transactions:")
        assert transaction_storage.bulk_save("wallet-1", [make_transaction()]) is None

    def test_bulk_save_with_nothing_newer_still_counts_zero(self, transaction_storage, rejected_keys):
        transaction_storage.bulk_save("wallet-1", [make_transaction(updated_at=T0 + timedelta(hours=1))])
        rejected_keys.append("transactions:")
        assert transaction_storage.bulk_save("wallet-1", [make_transaction()]) == 0

    def test_mark_as_synced_keeps_flag(self, transaction_storage, rejected_keys):
        saved = transaction_storage.save_transaction("wallet-1", make_transaction())
        rejected_keys.append("transactions:")
        assert transaction_storage.mark_as_synced("wallet-1", "tx-1", saved.updated_at) is False

    def test_watermark_unchanged(self, transaction_storage, rejected_keys):
        rejected_keys.append("sync:")
        assert transaction_storage.set_last_sync_timestamp("wallet-1", T0) is False
        assert transaction_storage.get_last_sync_timestamp("wallet-1") is None

    def test_save_wallet_returns_none(self, wallet_storage, rejected_keys):
        rejected_keys.append("wallets:")
        assert wallet_storage.save_wallet(make_wallet()) is None
        assert wallet_storage.get_all_wallets() == []

    def test_apply_remote_wallet_reports_failure(self, wallet_storage, rejected_keys):
        rejected_keys.append("wallets:")
        assert wallet_storage.apply_remote_wallet(make_wallet()) is False


class TestWatermark:
    def test_unset_before_first_pull(self, transaction_storage):
        assert transaction_storage.get_last_sync_timestamp("wallet-1") is None

    def test_never_moves_backwards(self, transaction_storage):
        later = T0 + timedelta(days=2)
        assert transaction_storage.set_last_sync_timestamp("wallet-1", later)
        assert transaction_storage.set_last_sync_timestamp("wallet-1", T0) is False
        assert parse_timestamp(transaction_storage.get_last_sync_timestamp("wallet-1")) == later

    def test_accepts_iso_strings(self, transaction_storage):
        assert transaction_storage.set_last_sync_timestamp("wallet-1", "2026-03-01T00:00:00Z")
        assert transaction_storage.set_last_sync_timestamp("wallet-1", "garbage") is False

    def test_watermarks_are_per_wallet(self, transaction_storage):
        transaction_storage.set_last_sync_timestamp("wallet-1", T0)
        assert transaction_storage.get_last_sync_timestamp("wallet-2") is None


class TestAuthStorage:
    def test_session_round_trip(self, auth_storage, user):
        from dinero.models.auth_models import UserSession

        session = UserSession(user=user, access_token="a", refresh_token="r", expires_at=2_000_000_000)
        assert auth_storage.persist_session(session)
        assert auth_storage.get_session() == session
        auth_storage.clear_session()
        assert auth_storage.get_session() is None

    def test_user_round_trip(self, auth_storage, user):
        auth_storage.persist_user(user)
        assert auth_storage.get_user() == user
        auth_storage.clear_user()
        assert auth_storage.get_user() is None

    def test_session_lives_in_secure_namespace(self, auth_storage, db, user):
        from dinero.models.auth_models import UserSession

        auth_storage.persist_session(
            UserSession(user=user, access_token="a", refresh_token="r", expires_at=1)
        )
        row = db.sqlite.execute(
            "SELECT namespace FROM kv_store WHERE key = ?", (StorageKeys.AUTH_SESSION,),
        ).fetchone()
        assert row["namespace"] == "secure"


def test_storage_uses_injected_clock(services, logger, clock):
    storage = TransactionStorageService(services["wallet_storage"]._store, logger, clock=clock)
    clock.advance(42)
    saved = storage.save_transaction("wallet-1", make_transaction())
    assert saved.updated_at == T0 + timedelta(seconds=42)
