"""
Transaction Storage Service.

Local persistence for each wallet's transactions
(``transactions:<walletId>``) and its pull watermark
(``sync:<walletId>:last``).

Merge rule for records pulled from the remote (:meth:`bulk_save`):
last-writer-wins on ``updated_at``, ties go to the remote version.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Optional, Union

from dinero.models.transaction import Transaction
from dinero.storage.base_storage import BaseRecordStorage
from dinero.storage.encrypted_store import StorageKeys
from dinero.utils.general import ensure_utc, parse_timestamp, to_iso


class TransactionStorageService(BaseRecordStorage[Transaction]):
    """Per-wallet transaction persistence backed by the ``main`` namespace."""

    _model = Transaction

    def save_transaction(self, wallet_id: str, transaction: Transaction) -> Optional[Transaction]:
        """Upsert *transaction* into *wallet_id*'s list and mark it dirty.

        ``wallet_id`` on the record is forced to the list it lives in.
        Returns the record as stored, or ``None`` if the write failed.
        """
        key = StorageKeys.transactions(wallet_id)
        with self.lock:
            transactions = self._load(key)
            now = self._now()
            stored = transaction.model_copy(
                update={"wallet_id": wallet_id, "updated_at": now, "needs_sync": True}
            )
            index = self._index_of(transactions, transaction.id)
            if index >= 0:
                transactions[index] = stored
            else:
                stored = stored.model_copy(update={"created_at": now})
                transactions.append(stored)
            if not self._dump(key, transactions):
                return None

        self._logger.info(
            "Transaction saved locally.",
            extra={"wallet_id": wallet_id, "transaction_id": stored.id},
        )
        return stored

    def get_transaction(self, wallet_id: str, transaction_id: str) -> Optional[Transaction]:
        """Return the transaction, or ``None`` if unknown or tombstoned."""
        for tx in self._load(StorageKeys.transactions(wallet_id)):
            if tx.id == transaction_id:
                return None if tx.is_deleted else tx
        return None

    def get_all_transactions(
        self,
        wallet_id: str,
        include_deleted: bool = False,
    ) -> list[Transaction]:
        transactions = self._load(StorageKeys.transactions(wallet_id))
        if include_deleted:
            return transactions
        return [t for t in transactions if not t.is_deleted]

    def soft_delete_transaction(self, wallet_id: str, transaction_id: str) -> bool:
        """Tombstone the transaction.  Returns ``False`` if it is unknown or the write failed."""
        key = StorageKeys.transactions(wallet_id)
        with self.lock:
            transactions = self._load(key)
            index = self._index_of(transactions, transaction_id)
            if index < 0:
                return False
            now = self._now()
            transactions[index] = transactions[index].model_copy(
                update={"deleted_at": now, "updated_at": now, "needs_sync": True}
            )
            if not self._dump(key, transactions):
                return False

        self._logger.info(
            "Transaction soft-deleted locally.",
            extra={"wallet_id": wallet_id, "transaction_id": transaction_id},
        )
        return True

    def get_transactions_needing_sync(self, wallet_id: str) -> list[Transaction]:
        """Dirty transactions of *wallet_id*, tombstones included."""
        return [t for t in self._load(StorageKeys.transactions(wallet_id)) if t.needs_sync]

    def mark_as_synced(
        self,
        wallet_id: str,
        transaction_id: str,
        pushed_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Clear the dirty flag unless the record changed after the push.

        Returns ``True`` if the stored record is clean afterwards.
        """
        key = StorageKeys.transactions(wallet_id)
        with self.lock:
            transactions = self._load(key)
            index = self._index_of(transactions, transaction_id)
            if index < 0:
                return False
            current = transactions[index]
            if pushed_updated_at is not None and current.updated_at > pushed_updated_at:
                self._logger.info(
                    "Transaction changed during push; keeping dirty flag.",
                    extra={"wallet_id": wallet_id, "transaction_id": transaction_id},
                )
                return False
            if current.needs_sync:
                transactions[index] = current.model_copy(update={"needs_sync": False})
                return self._dump(key, transactions)
        return True

    def bulk_save(self, wallet_id: str, records: Iterable[Transaction]) -> Optional[int]:
        """Merge remote *records* into the local list.

        A remote record replaces the local copy when its ``updated_at``
        is greater than or equal to the local one.  Written records are
        marked clean.  Returns the number of records written, or ``None``
        when the merged list could not be stored.
        """
        key = StorageKeys.transactions(wallet_id)
        written = 0
        with self.lock:
            by_id: dict[str, Transaction] = {t.id: t for t in self._load(key)}
            for remote in records:
                existing = by_id.get(remote.id)
                if existing is not None and remote.updated_at < existing.updated_at:
                    continue
                by_id[remote.id] = remote.model_copy(
                    update={"wallet_id": wallet_id, "needs_sync": False}
                )
                written += 1
            if written and not self._dump(key, list(by_id.values())):
                return None

        self._logger.info(
            "Remote transactions merged.",
            extra={"wallet_id": wallet_id, "written": written},
        )
        return written

    # ------------------------------------------------------------------
    # Watermark
    # ------------------------------------------------------------------

    def get_last_sync_timestamp(self, wallet_id: str) -> Optional[str]:
        """ISO-8601 pull watermark of *wallet_id*, or ``None`` before the first pull."""
        value = self._store.get_json(StorageKeys.last_sync(wallet_id))
        if not isinstance(value, str) or parse_timestamp(value) is None:
            return None
        return value

    def set_last_sync_timestamp(
        self,
        wallet_id: str,
        timestamp: Union[datetime, str],
    ) -> bool:
        """Advance the watermark to *timestamp*.

        The watermark never moves backwards: an older *timestamp* is
        ignored.  Returns ``True`` if the stored value changed.
        """
        new_ts = ensure_utc(timestamp) if isinstance(timestamp, datetime) else parse_timestamp(timestamp)
        if new_ts is None:
            self._logger.warning(
                "Ignoring unparseable watermark %r.", timestamp,
                extra={"wallet_id": wallet_id},
            )
            return False

        with self.lock:
            current = parse_timestamp(self.get_last_sync_timestamp(wallet_id))
            if current is not None and new_ts <= current:
                return False
            if not self._store.set_json(StorageKeys.last_sync(wallet_id), to_iso(new_ts)):
                return False

        self._logger.info(
            "Watermark advanced.",
            extra={"wallet_id": wallet_id, "last_sync_at": to_iso(new_ts)},
        )
        return True
