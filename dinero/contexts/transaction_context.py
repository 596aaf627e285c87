"""
Transaction Context.

Reactive view of one wallet's transactions.  Mutations go to the local
store first and are reflected in state immediately; the sync worker (or
an explicit :meth:`TransactionContext.sync`) carries them to the remote.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union

from pydantic import ValidationError

from dinero.auth import SessionManager
from dinero.contexts.store import Store
from dinero.logger import StructuredLogger
from dinero.models.common import SyncStatus
from dinero.models.transaction import (
    CreateTransactionDTO,
    Transaction,
    TransactionState,
    TransactionSummary,
    UpdateTransactionDTO,
)
from dinero.services.summary import summarize_transactions
from dinero.services.sync_service import SyncService
from dinero.storage.transaction_storage import TransactionStorageService
from dinero.utils.general import ensure_utc, new_id, utc_now

if TYPE_CHECKING:
    from dinero.contexts.wallet_context import WalletContext


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetTransactions:
    wallet_id: Optional[str]
    transactions: list[Transaction]


@dataclass(frozen=True)
class AddTransaction:
    transaction: Transaction


@dataclass(frozen=True)
class UpdateTransaction:
    transaction: Transaction


@dataclass(frozen=True)
class RemoveTransaction:
    transaction_id: str


@dataclass(frozen=True)
class SetSyncStatus:
    status: SyncStatus


@dataclass(frozen=True)
class SetError:
    message: Optional[str]


TransactionAction = Union[
    SetLoading,
    SetTransactions,
    AddTransaction,
    UpdateTransaction,
    RemoveTransaction,
    SetSyncStatus,
    SetError,
]


def _newest_first(transactions: list[Transaction]) -> list[Transaction]:
    return sorted(transactions, key=lambda t: t.date, reverse=True)


def transaction_reducer(state: TransactionState, action: TransactionAction) -> TransactionState:
    if isinstance(action, SetLoading):
        return state.model_copy(update={"is_loading": action.is_loading})

    if isinstance(action, SetTransactions):
        return state.model_copy(update={
            "wallet_id": action.wallet_id,
            "transactions": _newest_first(action.transactions),
            "is_loading": False,
            "error": None,
        })

    if isinstance(action, AddTransaction):
        return state.model_copy(update={
            "transactions": _newest_first([*state.transactions, action.transaction]),
        })

    if isinstance(action, UpdateTransaction):
        updated = [
            action.transaction if t.id == action.transaction.id else t
            for t in state.transactions
        ]
        return state.model_copy(update={"transactions": _newest_first(updated)})

    if isinstance(action, RemoveTransaction):
        remaining = [t for t in state.transactions if t.id != action.transaction_id]
        return state.model_copy(update={"transactions": remaining})

    if isinstance(action, SetSyncStatus):
        return state.model_copy(update={
            "is_syncing": action.status.is_syncing,
            "last_sync_at": action.status.last_sync_at,
            "pending_uploads": action.status.pending_uploads,
            "pending_deletes": action.status.pending_deletes,
        })

    if isinstance(action, SetError):
        return state.model_copy(update={"error": action.message, "is_loading": False})

    return state


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TransactionContext:
    """Reactive transaction state for the wallet it is bound to.

    Parameters
    ----------
    transaction_storage:
        The local transaction store.
    sync_service:
        Used by :meth:`sync` and for the pending-count snapshot.
    session:
        Supplies the user id stamped on new transactions.
    logger:
        Structured JSON logger.
    sync_trigger:
        Optional callable invoked after each local mutation, usually
        ``SyncWorkerService.trigger``.
    """

    def __init__(
        self,
        transaction_storage: TransactionStorageService,
        sync_service: SyncService,
        session: SessionManager,
        logger: StructuredLogger,
        sync_trigger: Optional[Callable[[], None]] = None,
    ) -> None:
        self._storage = transaction_storage
        self._sync_service = sync_service
        self._session = session
        self._logger = logger
        self._sync_trigger = sync_trigger
        self.store: Store[TransactionState, TransactionAction] = Store(
            transaction_reducer, TransactionState(), logger,
        )

    @property
    def state(self) -> TransactionState:
        return self.store.state

    @property
    def wallet_id(self) -> Optional[str]:
        return self.store.state.wallet_id

    def subscribe(self, listener: Callable[[TransactionState], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def bind_to(self, wallet_context: "WalletContext") -> Callable[[], None]:
        """Follow *wallet_context*'s current wallet.  Returns an unsubscribe callable."""

        def on_wallet_state(wallet_state) -> None:
            if wallet_state.current_wallet_id != self.wallet_id:
                self.load_transactions(wallet_state.current_wallet_id)

        unsubscribe = wallet_context.subscribe(on_wallet_state)
        on_wallet_state(wallet_context.state)
        return unsubscribe

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def load_transactions(self, wallet_id: Optional[str] = None) -> list[Transaction]:
        """(Re)load from the local store, switching wallet when *wallet_id* is given."""
        target = wallet_id if wallet_id is not None else self.wallet_id
        if target is None:
            self.store.dispatch(SetTransactions(None, []))
            return []

        self.store.dispatch(SetLoading(True))
        transactions = self._storage.get_all_transactions(target)
        self.store.dispatch(SetTransactions(target, transactions))
        self._refresh_sync_status()
        return transactions

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return next((t for t in self.store.state.transactions if t.id == transaction_id), None)

    def get_summary(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> TransactionSummary:
        """Aggregate the loaded transactions, optionally within ``[start, end]``."""
        start = ensure_utc(start_date) if start_date else None
        end = ensure_utc(end_date) if end_date else None
        selected = [
            t for t in self.store.state.transactions
            if (start is None or t.date >= start) and (end is None or t.date <= end)
        ]
        return summarize_transactions(selected)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_transaction(self, dto: CreateTransactionDTO) -> Optional[Transaction]:
        user_id = self._session.current_user_id
        if user_id is None:
            self.store.dispatch(SetError("User not authenticated"))
            return None

        now = utc_now()
        try:
            transaction = Transaction(
                id=new_id(),
                user_id=user_id,
                created_at=now,
                updated_at=now,
                needs_sync=True,
                **dto.model_dump(),
            )
        except ValidationError as exc:
            self.store.dispatch(SetError(str(exc)))
            return None

        saved = self._storage.save_transaction(dto.wallet_id, transaction)
        if saved is None:
            self.store.dispatch(SetError("Could not save the transaction on this device"))
            return None
        if dto.wallet_id == self.wallet_id:
            self.store.dispatch(AddTransaction(saved))
        self._after_mutation()
        return saved

    def update_transaction(self, transaction_id: str, dto: UpdateTransactionDTO) -> bool:
        wallet_id = self.wallet_id
        existing = self._storage.get_transaction(wallet_id, transaction_id) if wallet_id else None
        if existing is None:
            self.store.dispatch(SetError(f"Transaction {transaction_id} not found"))
            return False

        try:
            candidate = Transaction.model_validate(
                {**existing.model_dump(), **dto.changes()}
            )
        except ValidationError as exc:
            self.store.dispatch(SetError(str(exc)))
            return False

        saved = self._storage.save_transaction(wallet_id, candidate)
        if saved is None:
            self.store.dispatch(SetError(f"Could not save transaction {transaction_id} on this device"))
            return False
        self.store.dispatch(UpdateTransaction(saved))
        self._after_mutation()
        return True

    def delete_transaction(self, transaction_id: str) -> bool:
        wallet_id = self.wallet_id
        if wallet_id is None or self._storage.get_transaction(wallet_id, transaction_id) is None:
            self.store.dispatch(SetError(f"Transaction {transaction_id} not found"))
            return False
        if not self._storage.soft_delete_transaction(wallet_id, transaction_id):
            self.store.dispatch(SetError(f"Could not delete transaction {transaction_id} on this device"))
            return False

        self.store.dispatch(RemoveTransaction(transaction_id))
        self._after_mutation()
        return True

    def sync(self) -> bool:
        """Sync the bound wallet now and reload.  Returns ``True`` on a clean run."""
        wallet_id = self.wallet_id
        if wallet_id is None:
            return False

        self.store.dispatch(SetSyncStatus(
            self._sync_service.get_sync_status(wallet_id).model_copy(update={"is_syncing": True})
        ))
        report = self._sync_service.sync_transactions(wallet_id)
        self.load_transactions(wallet_id)
        if report.errors:
            self.store.dispatch(SetError(report.errors[0].message))
        return report.ok

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh_sync_status(self) -> None:
        if self.wallet_id is not None:
            self.store.dispatch(SetSyncStatus(self._sync_service.get_sync_status(self.wallet_id)))

    def _after_mutation(self) -> None:
        self._refresh_sync_status()
        if self._sync_trigger is not None:
            self._sync_trigger()
