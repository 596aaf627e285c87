"""
Wallet Context.

Projects the locally stored wallets into a reactive ``WalletState`` and
routes every wallet mutation through the local store first.  Remote
calls are fired on the background runner and never block the caller;
if they fail, the wallet simply stays dirty for the next sync cycle.

Current wallet rule: the stored selection if it still exists, else the
most recently updated default wallet, else the first wallet, else none.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Union

from pydantic import ValidationError

from dinero.auth import SessionManager
from dinero.contexts.store import BackgroundRunner, Store, run_in_daemon_thread
from dinero.logger import StructuredLogger
from dinero.models.enums import MemberRole
from dinero.models.wallet import (
    CreateWalletDTO,
    UpdateWalletDTO,
    Wallet,
    WalletMember,
    WalletState,
)
from dinero.repositories.wallet_repository import WalletRepository
from dinero.storage.wallet_storage import WalletStorageService
from dinero.utils.general import new_id, utc_now


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetWallets:
    wallets: list[Wallet]


@dataclass(frozen=True)
class AddWallet:
    wallet: Wallet


@dataclass(frozen=True)
class UpdateWallet:
    wallet: Wallet


@dataclass(frozen=True)
class RemoveWallet:
    wallet_id: str


@dataclass(frozen=True)
class SetCurrent:
    wallet_id: Optional[str]


@dataclass(frozen=True)
class SetError:
    message: Optional[str]


WalletAction = Union[SetLoading, SetWallets, AddWallet, UpdateWallet, RemoveWallet, SetCurrent, SetError]


def select_fallback_wallet(wallets: list[Wallet]) -> Optional[str]:
    """Most recently flagged default wallet, else the first, else ``None``."""
    defaults = [w for w in wallets if w.is_default]
    if defaults:
        return max(defaults, key=lambda w: w.updated_at).id
    return wallets[0].id if wallets else None


def wallet_reducer(state: WalletState, action: WalletAction) -> WalletState:
    """Pure state transition for the wallet context."""
    if isinstance(action, SetLoading):
        return state.model_copy(update={"is_loading": action.is_loading})

    if isinstance(action, SetWallets):
        return state.model_copy(update={"wallets": list(action.wallets), "is_loading": False})

    if isinstance(action, AddWallet):
        return state.model_copy(update={"wallets": [*state.wallets, action.wallet]})

    if isinstance(action, UpdateWallet):
        wallets = [action.wallet if w.id == action.wallet.id else w for w in state.wallets]
        return state.model_copy(update={"wallets": wallets})

    if isinstance(action, RemoveWallet):
        remaining = [w for w in state.wallets if w.id != action.wallet_id]
        current = state.current_wallet_id
        if current == action.wallet_id:
            current = select_fallback_wallet(remaining)
        return state.model_copy(update={"wallets": remaining, "current_wallet_id": current})

    if isinstance(action, SetCurrent):
        return state.model_copy(update={"current_wallet_id": action.wallet_id})

    if isinstance(action, SetError):
        return state.model_copy(update={"error": action.message, "is_loading": False})

    return state


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class WalletContext:
    """Reactive wallet state plus the wallet mutation API.

    Parameters
    ----------
    wallet_storage:
        The local wallet store (system of record).
    wallet_repo:
        Remote repository, called in the background only.
    session:
        Supplies the signed-in user id for new wallets.
    logger:
        Structured JSON logger.
    runner:
        Executes background remote calls.  Defaults to a daemon thread;
        tests pass a synchronous runner.
    """

    def __init__(
        self,
        wallet_storage: WalletStorageService,
        wallet_repo: WalletRepository,
        session: SessionManager,
        logger: StructuredLogger,
        runner: Optional[BackgroundRunner] = None,
    ) -> None:
        self._storage = wallet_storage
        self._repo = wallet_repo
        self._session = session
        self._logger = logger
        self._run = runner or run_in_daemon_thread
        self.store: Store[WalletState, WalletAction] = Store(
            wallet_reducer, WalletState(), logger,
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> WalletState:
        return self.store.state

    @property
    def current_wallet(self) -> Optional[Wallet]:
        state = self.store.state
        if state.current_wallet_id is None:
            return None
        return next((w for w in state.wallets if w.id == state.current_wallet_id), None)

    def subscribe(self, listener: Callable[[WalletState], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    def load_wallets(self) -> list[Wallet]:
        """Reload the wallet list from the local store and settle the selection."""
        wallets = self._storage.get_all_wallets()
        stored_current = self._storage.get_current_wallet_id()
        self.store.dispatch(SetWallets(wallets))

        if stored_current and any(w.id == stored_current for w in wallets):
            self.store.dispatch(SetCurrent(stored_current))
        else:
            fallback = select_fallback_wallet(wallets)
            self._persist_current(fallback)
            self.store.dispatch(SetCurrent(fallback))
        return wallets

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_wallet(self, dto: CreateWalletDTO) -> Optional[Wallet]:
        """Create a wallet locally with a client-side id, then push it in the background."""
        user_id = self._session.current_user_id
        if user_id is None:
            self.store.dispatch(SetError("User not authenticated"))
            return None

        now = utc_now()
        try:
            wallet = Wallet(
                id=new_id(),
                user_id=user_id,
                created_at=now,
                updated_at=now,
                needs_sync=True,
                members=[WalletMember(user_id=user_id, role=MemberRole.OWNER, joined_at=now)],
                **dto.model_dump(),
            )
        except ValidationError as exc:
            self.store.dispatch(SetError(str(exc)))
            return None

        saved = self._storage.save_wallet(wallet)
        if saved is None:
            self.store.dispatch(SetError("Could not save the wallet on this device"))
            return None
        self.store.dispatch(AddWallet(saved))
        if saved.is_default:
            self._clear_other_defaults(saved.id)
        if self.store.state.current_wallet_id is None:
            self._persist_current(saved.id)
            self.store.dispatch(SetCurrent(saved.id))

        def push() -> None:
            result = self._repo.create(dto, wallet_id=saved.id)
            if result.success:
                self._storage.mark_as_synced(saved.id, saved.updated_at)
            else:
                self._logger.info(
                    "Wallet create deferred to next sync.",
                    extra={"wallet_id": saved.id, "code": result.error.code if result.error else ""},
                )

        self._run(self._background(push, "create"))
        return saved

    def update_wallet(self, wallet_id: str, dto: UpdateWalletDTO) -> bool:
        existing = self._storage.get_wallet(wallet_id)
        if existing is None:
            self.store.dispatch(SetError(f"Wallet {wallet_id} not found"))
            return False

        saved = self._storage.save_wallet(existing.model_copy(update=dto.changes()))
        if saved is None:
            self.store.dispatch(SetError(f"Could not save wallet {wallet_id} on this device"))
            return False
        self.store.dispatch(UpdateWallet(saved))
        if dto.is_default:
            self._clear_other_defaults(wallet_id)

        def push() -> None:
            result = self._repo.update(wallet_id, dto, updated_at=saved.updated_at)
            if result.success:
                self._storage.mark_as_synced(wallet_id, saved.updated_at)

        self._run(self._background(push, "update"))
        return True

    def delete_wallet(self, wallet_id: str) -> bool:
        """Tombstone the wallet and re-select if it was current."""
        if self._storage.get_wallet(wallet_id) is None:
            self.store.dispatch(SetError(f"Wallet {wallet_id} not found"))
            return False
        if not self._storage.soft_delete_wallet(wallet_id):
            self.store.dispatch(SetError(f"Could not delete wallet {wallet_id} on this device"))
            return False

        was_current = self.store.state.current_wallet_id == wallet_id
        self.store.dispatch(RemoveWallet(wallet_id))
        if was_current:
            self._persist_current(self.store.state.current_wallet_id)

        tombstone = self._storage.get_wallet(wallet_id, include_deleted=True)

        def push() -> None:
            if tombstone is None:
                return
            result = self._repo.delete(wallet_id, deleted_at=tombstone.deleted_at)
            if result.success:
                self._storage.mark_as_synced(wallet_id, tombstone.updated_at)

        self._run(self._background(push, "delete"))
        return True

    def switch_wallet(self, wallet_id: str) -> bool:
        """Select *wallet_id* as current.  Purely local."""
        if not any(w.id == wallet_id for w in self.store.state.wallets):
            self.store.dispatch(SetError(f"Wallet {wallet_id} not found"))
            return False
        self._persist_current(wallet_id)
        self.store.dispatch(SetCurrent(wallet_id))
        return True

    def set_default_wallet(self, wallet_id: str) -> bool:
        """Flag *wallet_id* as the only default wallet."""
        existing = self._storage.get_wallet(wallet_id)
        if existing is None:
            self.store.dispatch(SetError(f"Wallet {wallet_id} not found"))
            return False

        changed: list[Wallet] = []
        if not existing.is_default:
            saved = self._storage.save_wallet(existing.model_copy(update={"is_default": True}))
            if saved is None:
                self.store.dispatch(SetError(f"Could not save wallet {wallet_id} on this device"))
                return False
            self.store.dispatch(UpdateWallet(saved))
            changed.append(saved)
        changed.extend(self._clear_other_defaults(wallet_id))

        def push() -> None:
            result = self._repo.set_default(wallet_id)
            if result.success:
                for wallet in changed:
                    self._storage.mark_as_synced(wallet.id, wallet.updated_at)

        self._run(self._background(push, "set_default"))
        return True

    def refresh_wallets(self) -> list[Wallet]:
        """Merge the remote wallet set (remote wins only when newer) and reload."""
        self.store.dispatch(SetLoading(True))
        result = self._repo.get_all(include_deleted=True)
        if result.success:
            for remote in result.data or []:
                local = self._storage.get_wallet(remote.id, include_deleted=True)
                if local is None or remote.updated_at > local.updated_at:
                    self._storage.apply_remote_wallet(remote)
        elif result.error is not None:
            self.store.dispatch(SetError(result.error.message))
        return self.load_wallets()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _clear_other_defaults(self, keep_id: str) -> list[Wallet]:
        cleared: list[Wallet] = []
        for wallet in self._storage.get_all_wallets():
            if wallet.id != keep_id and wallet.is_default:
                saved = self._storage.save_wallet(wallet.model_copy(update={"is_default": False}))
                if saved is None:
                    continue
                self.store.dispatch(UpdateWallet(saved))
                cleared.append(saved)
        return cleared

    def _persist_current(self, wallet_id: Optional[str]) -> None:
        if wallet_id is None:
            self._storage.clear_current_wallet_id()
        else:
            self._storage.set_current_wallet_id(wallet_id)

    def _background(self, task: Callable[[], None], operation: str) -> Callable[[], None]:
        def guarded() -> None:
            try:
                task()
            except Exception:
                self._logger.error(
                    "Background wallet %s failed.", operation, exc_info=True,
                )

        return guarded
