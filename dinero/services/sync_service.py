"""
Sync Service.

The only component that reads ``needs_sync`` flags.  Reconciles the
local store with the remote repositories:

1. **Push** dirty local records (tombstones included).  A record's flag
   is cleared only for records the remote acknowledged, and only if
   the record was not edited again while the push was in flight.
2. **Pull** remote changes and merge them last-writer-wins on
   ``updated_at``.  For transactions the per-wallet watermark advances
   to the newest ``updated_at`` pulled and stored, never to "now".

Failures never raise: they leave dirty flags untouched and are reported
in the returned ``SyncReport``.  The service has no retry loop of its
own; ``SyncWorkerService`` or a user action re-invokes it.
"""

from __future__ import annotations

import threading
from typing import Optional

from dinero.logger import StructuredLogger
from dinero.models.common import ApiResponse, ServiceError, SyncReport, SyncStatus
from dinero.models.enums import ErrorCode
from dinero.models.wallet import UpdateWalletDTO, Wallet
from dinero.repositories.transaction_repository import TransactionRepository
from dinero.repositories.wallet_repository import WalletRepository
from dinero.services.base_service import BaseService
from dinero.storage.transaction_storage import TransactionStorageService
from dinero.storage.wallet_storage import WalletStorageService


class SyncService(BaseService):
    """Bidirectional wallet/transaction reconciliation.

    Parameters
    ----------
    wallet_storage, transaction_storage:
        The local store.
    wallet_repo, transaction_repo:
        The remote repositories.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        wallet_storage: WalletStorageService,
        transaction_storage: TransactionStorageService,
        wallet_repo: WalletRepository,
        transaction_repo: TransactionRepository,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._wallet_storage = wallet_storage
        self._transaction_storage = transaction_storage
        self._wallet_repo = wallet_repo
        self._transaction_repo = transaction_repo
        self._in_flight: threading.Lock = threading.Lock()

    @property
    def is_syncing(self) -> bool:
        """``True`` while a ``sync_all`` cycle is running."""
        return self._in_flight.locked()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_transactions(self, wallet_id: str) -> SyncReport:
        """Push then pull the transactions of *wallet_id*."""
        report = SyncReport(scope=f"transactions:{wallet_id}")
        self._push_transactions(wallet_id, report)
        self._pull_transactions(wallet_id, report)
        return report

    def _push_transactions(self, wallet_id: str, report: SyncReport) -> None:
        pending = self._transaction_storage.get_transactions_needing_sync(wallet_id)
        if not pending:
            return

        report.pushed = len(pending)
        result = self._transaction_repo.sync_to_remote(pending)
        if not result.success:
            self._record_failure(report, result, "push", wallet_id=wallet_id)
            return

        pushed_versions = {t.id: t.updated_at for t in pending}
        for acknowledged in result.data or []:
            pushed_at = pushed_versions.get(acknowledged.id)
            if pushed_at is None:
                continue
            if self._transaction_storage.mark_as_synced(wallet_id, acknowledged.id, pushed_at):
                report.acknowledged += 1

        self._logger.info(
            "Transactions pushed.",
            extra={
                "wallet_id": wallet_id,
                "pushed": report.pushed,
                "acknowledged": report.acknowledged,
            },
        )

    def _pull_transactions(self, wallet_id: str, report: SyncReport) -> None:
        last_sync = self._transaction_storage.get_last_sync_timestamp(wallet_id)
        result = self._transaction_repo.fetch_from_remote(last_sync, wallet_id=wallet_id)
        if not result.success:
            self._record_failure(report, result, "pull", wallet_id=wallet_id)
            return

        remote = result.data or []
        if not remote:
            return

        if self._transaction_storage.bulk_save(wallet_id, remote) is None:
            # Watermark stays put so the next pull asks for these records again.
            self._record_local_failure(report, "pulled transactions", wallet_id=wallet_id)
            return
        report.pulled += len(remote)
        newest = max(t.updated_at for t in remote)
        self._transaction_storage.set_last_sync_timestamp(wallet_id, newest)

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def sync_wallets(self) -> SyncReport:
        """Push dirty wallets, then reconcile against the full remote set."""
        report = SyncReport(scope="wallets")
        self._push_wallets(report)
        self._pull_wallets(report)
        return report

    def _push_wallet(self, wallet: Wallet) -> ApiResponse[object]:
        if wallet.is_deleted:
            return self._wallet_repo.delete(wallet.id, deleted_at=wallet.deleted_at)

        changes = UpdateWalletDTO(
            name=wallet.name,
            type=wallet.type,
            icon=wallet.icon,
            color=wallet.color,
            is_default=wallet.is_default,
        )
        result = self._wallet_repo.update(wallet.id, changes, updated_at=wallet.updated_at)
        if not result.success and result.error and result.error.code == ErrorCode.NOT_FOUND:
            # Created offline: the remote has never seen this wallet.
            result = self._wallet_repo.upsert(wallet)
        return result

    def _push_wallets(self, report: SyncReport) -> None:
        for wallet in self._wallet_storage.get_wallets_needing_sync():
            report.pushed += 1
            result = self._push_wallet(wallet)
            if not result.success:
                self._record_failure(report, result, "wallet push", wallet_id=wallet.id)
                continue
            if self._wallet_storage.mark_as_synced(wallet.id, wallet.updated_at):
                report.acknowledged += 1

    def _pull_wallets(self, report: SyncReport) -> None:
        result = self._wallet_repo.get_all(include_deleted=True)
        if not result.success:
            self._record_failure(report, result, "wallet pull")
            return

        for remote in result.data or []:
            local = self._wallet_storage.get_wallet(remote.id, include_deleted=True)
            if local is None or remote.updated_at > local.updated_at:
                if not self._wallet_storage.apply_remote_wallet(remote):
                    self._record_local_failure(report, "pulled wallet", wallet_id=remote.id)
                    continue
                report.pulled += 1

        if report.pulled:
            self._logger.info("Remote wallets applied.", extra={"pulled": report.pulled})

    # ------------------------------------------------------------------
    # Everything
    # ------------------------------------------------------------------

    def sync_all(self) -> SyncReport:
        """Sync wallets, then the transactions of every active wallet.

        Overlapping calls do not queue: a call made while another cycle
        is running returns at once with ``skipped=True``.
        """
        if not self._in_flight.acquire(blocking=False):
            self._logger.info("Sync already in progress; skipping.")
            return SyncReport(scope="all", skipped=True)

        try:
            report = SyncReport(scope="all")
            report.merge(self.sync_wallets())
            for wallet in self._wallet_storage.get_all_wallets():
                report.merge(self.sync_transactions(wallet.id))

            self._logger.info(
                "Sync cycle finished.",
                extra={
                    "pushed": report.pushed,
                    "acknowledged": report.acknowledged,
                    "pulled": report.pulled,
                    "errors": len(report.errors),
                },
            )
            return report
        finally:
            self._in_flight.release()

    def get_sync_status(self, wallet_id: str) -> SyncStatus:
        """Pending counts and watermark of *wallet_id*, for display."""
        pending = self._transaction_storage.get_transactions_needing_sync(wallet_id)
        return SyncStatus(
            last_sync_at=self._transaction_storage.get_last_sync_timestamp(wallet_id),
            pending_uploads=sum(1 for t in pending if not t.is_deleted),
            pending_deletes=sum(1 for t in pending if t.is_deleted),
            is_syncing=self.is_syncing,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_failure(
        self,
        report: SyncReport,
        result: ApiResponse[object],
        stage: str,
        wallet_id: Optional[str] = None,
    ) -> None:
        error = result.error or ServiceError(
            code=str(ErrorCode.UNEXPECTED_ERROR), message="Unknown failure",
        )
        report.errors.append(error)
        self._logger.warning(
            "Sync %s failed: %s", stage, error.message,
            extra={"code": error.code, "wallet_id": wallet_id or ""},
        )

    def _record_local_failure(
        self,
        report: SyncReport,
        what: str,
        wallet_id: Optional[str] = None,
    ) -> None:
        error = ServiceError(
            code=str(ErrorCode.SYNC_ERROR),
            message=f"Could not store {what} on this device",
        )
        report.errors.append(error)
        self._logger.error(
            "Local write failed during pull: %s", what,
            extra={"code": error.code, "wallet_id": wallet_id or ""},
        )
