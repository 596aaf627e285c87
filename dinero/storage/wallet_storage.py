"""
Wallet Storage Service.

Local persistence for the user's wallets (``wallets:all``) and the
active wallet selection (``wallet:current``).  Every local mutation
marks the wallet dirty; only the sync service clears the flag.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from dinero.models.wallet import Wallet
from dinero.storage.base_storage import BaseRecordStorage
from dinero.storage.encrypted_store import StorageKeys


class WalletStorageService(BaseRecordStorage[Wallet]):
    """Wallet list persistence backed by the encrypted ``main`` namespace."""

    _model = Wallet

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_wallet(self, wallet: Wallet) -> Optional[Wallet]:
        """Upsert *wallet* by id, stamping ``updated_at`` and the dirty flag.

        ``created_at`` is also stamped when the wallet is new on this
        device.  Returns the record as stored, or ``None`` if the write
        failed.
        """
        with self.lock:
            wallets = self._load(StorageKeys.WALLETS)
            now = self._now()
            stored = wallet.model_copy(
                update={"updated_at": now, "needs_sync": True, "wallet_id": wallet.id}
            )
            index = self._index_of(wallets, wallet.id)
            if index >= 0:
                wallets[index] = stored
            else:
                stored = stored.model_copy(update={"created_at": now})
                wallets.append(stored)
            if not self._dump(StorageKeys.WALLETS, wallets):
                return None

        self._logger.info(
            "Wallet saved locally.",
            extra={"wallet_id": stored.id, "is_new": index < 0},
        )
        return stored

    def soft_delete_wallet(self, wallet_id: str) -> bool:
        """Tombstone the wallet.  Returns ``False`` if it is unknown or the write failed."""
        with self.lock:
            wallets = self._load(StorageKeys.WALLETS)
            index = self._index_of(wallets, wallet_id)
            if index < 0:
                return False
            now = self._now()
            wallets[index] = wallets[index].model_copy(
                update={"deleted_at": now, "updated_at": now, "needs_sync": True}
            )
            if not self._dump(StorageKeys.WALLETS, wallets):
                return False

        self._logger.info("Wallet soft-deleted locally.", extra={"wallet_id": wallet_id})
        return True

    def mark_as_synced(
        self,
        wallet_id: str,
        pushed_updated_at: Optional[datetime] = None,
    ) -> bool:
        """Clear the dirty flag of *wallet_id*.

        When *pushed_updated_at* is given the flag is cleared only if the
        stored ``updated_at`` is not newer, so an edit made while the
        push was in flight stays dirty.  Returns ``True`` if cleared.
        """
        with self.lock:
            wallets = self._load(StorageKeys.WALLETS)
            index = self._index_of(wallets, wallet_id)
            if index < 0:
                return False
            current = wallets[index]
            if pushed_updated_at is not None and current.updated_at > pushed_updated_at:
                self._logger.info(
                    "Wallet changed during push; keeping dirty flag.",
                    extra={"wallet_id": wallet_id},
                )
                return False
            if current.needs_sync:
                wallets[index] = current.model_copy(update={"needs_sync": False})
                return self._dump(StorageKeys.WALLETS, wallets)
        return True

    def apply_remote_wallet(self, wallet: Wallet) -> bool:
        """Store the remote version of *wallet* verbatim, marked clean.

        Returns ``False`` if the write failed.
        """
        with self.lock:
            wallets = self._load(StorageKeys.WALLETS)
            clean = wallet.model_copy(update={"needs_sync": False})
            index = self._index_of(wallets, wallet.id)
            if index >= 0:
                wallets[index] = clean
            else:
                wallets.append(clean)
            return self._dump(StorageKeys.WALLETS, wallets)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_wallet(self, wallet_id: str, include_deleted: bool = False) -> Optional[Wallet]:
        """Return the wallet, or ``None`` if unknown or tombstoned."""
        for wallet in self._load(StorageKeys.WALLETS):
            if wallet.id == wallet_id:
                if wallet.is_deleted and not include_deleted:
                    return None
                return wallet
        return None

    def get_all_wallets(self, include_deleted: bool = False) -> list[Wallet]:
        wallets = self._load(StorageKeys.WALLETS)
        if include_deleted:
            return wallets
        return [w for w in wallets if not w.is_deleted]

    def get_wallets_needing_sync(self) -> list[Wallet]:
        """Dirty wallets, tombstones included."""
        return [w for w in self._load(StorageKeys.WALLETS) if w.needs_sync]

    # ------------------------------------------------------------------
    # Current wallet selection
    # ------------------------------------------------------------------

    def get_current_wallet_id(self) -> Optional[str]:
        value = self._store.get_json(StorageKeys.CURRENT_WALLET)
        return value if isinstance(value, str) and value else None

    def set_current_wallet_id(self, wallet_id: str) -> None:
        self._store.set_json(StorageKeys.CURRENT_WALLET, wallet_id)
        self._logger.info("Current wallet selected.", extra={"wallet_id": wallet_id})

    def clear_current_wallet_id(self) -> None:
        self._store.delete(StorageKeys.CURRENT_WALLET)
