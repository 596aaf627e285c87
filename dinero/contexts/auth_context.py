"""
Auth Context.

Reactive authentication state.  Keeps three things in step: the
``AuthState`` the UI reads, the process-wide ``SessionManager`` the
repositories read, and the persisted session in the secure namespace.

On the first sign-in on a device with no wallets, a default wallet is
created locally and selected, so the user can record transactions before
the first sync.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Union

from dinero.auth import SessionManager
from dinero.config import AppConfig
from dinero.contexts.store import Store
from dinero.logger import StructuredLogger
from dinero.models.auth_models import AuthState, User, UserSession
from dinero.models.enums import MemberRole, WalletType
from dinero.models.wallet import Wallet, WalletMember
from dinero.services.auth_service import SupabaseAuthService
from dinero.storage.auth_storage import AuthStorageService
from dinero.storage.wallet_storage import WalletStorageService
from dinero.utils.general import new_id, utc_now


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetSession:
    session: UserSession


@dataclass(frozen=True)
class ClearSession:
    pass


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class ClearError:
    pass


AuthAction = Union[SetLoading, SetSession, ClearSession, SetError, ClearError]


def auth_reducer(state: AuthState, action: AuthAction) -> AuthState:
    if isinstance(action, SetLoading):
        return state.model_copy(update={"is_loading": action.is_loading})
    if isinstance(action, SetSession):
        return AuthState(
            user=action.session.user,
            session=action.session,
            is_authenticated=True,
            is_loading=False,
        )
    if isinstance(action, ClearSession):
        return AuthState(is_loading=False, error=state.error)
    if isinstance(action, SetError):
        return state.model_copy(update={"error": action.message, "is_loading": False})
    if isinstance(action, ClearError):
        return state.model_copy(update={"error": None})
    return state


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class AuthContext:
    """Sign-in lifecycle and session persistence.

    Parameters
    ----------
    auth_service:
        Supabase Auth wrapper.
    auth_storage:
        Persisted session and user.
    wallet_storage:
        Used to seed the default wallet on first sign-in.
    session:
        Shared ``SessionManager``.
    config:
        Supplies the ``DEFAULT_WALLET_*`` values.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        auth_service: SupabaseAuthService,
        auth_storage: AuthStorageService,
        wallet_storage: WalletStorageService,
        session: SessionManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        self._auth_service = auth_service
        self._auth_storage = auth_storage
        self._wallet_storage = wallet_storage
        self._session = session
        self._config = config
        self._logger = logger
        self.store: Store[AuthState, AuthAction] = Store(auth_reducer, AuthState(), logger)

    @property
    def state(self) -> AuthState:
        return self.store.state

    @property
    def user(self) -> Optional[User]:
        return self.store.state.user

    @property
    def is_authenticated(self) -> bool:
        return self.store.state.is_authenticated

    def subscribe(self, listener: Callable[[AuthState], None]) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def restore_session(self) -> bool:
        """Adopt the persisted session, refreshing it first if it has expired.

        Any refresh failure ends signed out.  Returns ``True`` when a
        session is active afterwards.
        """
        self.store.dispatch(SetLoading(True))
        stored = self._auth_storage.get_session()
        if stored is None:
            self.store.dispatch(ClearSession())
            return False

        if not stored.is_expired():
            self._session.start(stored)
            self.store.dispatch(SetSession(stored))
            self._logger.info("Session restored.", extra={"user_id": stored.user.id})
            return True

        result = self._auth_service.refresh_session(stored.refresh_token)
        if not result.success or result.data is None:
            self._logger.warning(
                "Stored session could not be refreshed; signing out.",
                extra={"code": result.error.code if result.error else ""},
            )
            self._clear_local_session()
            return False

        self._adopt(result.data)
        return True

    def sign_in(self, id_token: str, provider: str = "google") -> bool:
        self.store.dispatch(ClearError())
        self.store.dispatch(SetLoading(True))
        result = self._auth_service.sign_in_with_id_token(id_token, provider)
        if not result.success or result.data is None:
            message = result.error.message if result.error else "Sign-in failed"
            self.store.dispatch(SetError(message))
            return False

        self._adopt(result.data)
        self._ensure_default_wallet(result.data.user.id)
        return True

    def sign_out(self) -> None:
        """Sign out remotely (best effort) and always clear the local session."""
        self.store.dispatch(SetLoading(True))
        result = self._auth_service.sign_out()
        if not result.success and result.error is not None:
            self._logger.warning(
                "Remote sign-out failed; clearing local session anyway.",
                extra={"code": result.error.code},
            )
        self._clear_local_session()

    def refresh_session(self) -> bool:
        refresh_token = self._session.refresh_token
        if refresh_token is None:
            stored = self._auth_storage.get_session()
            refresh_token = stored.refresh_token if stored else None
        if refresh_token is None:
            self.store.dispatch(SetError("No session to refresh"))
            return False

        result = self._auth_service.refresh_session(refresh_token)
        if not result.success or result.data is None:
            self.store.dispatch(SetError(result.error.message if result.error else "Refresh failed"))
            return False

        self._adopt(result.data)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _adopt(self, user_session: UserSession) -> None:
        self._session.start(user_session)
        self._auth_storage.persist_session(user_session)
        self._auth_storage.persist_user(user_session.user)
        self.store.dispatch(SetSession(user_session))

    def _clear_local_session(self) -> None:
        self._session.clear()
        self._auth_storage.clear_session()
        self._auth_storage.clear_user()
        self.store.dispatch(ClearSession())

    def _ensure_default_wallet(self, user_id: str) -> Optional[Wallet]:
        if self._wallet_storage.get_all_wallets(include_deleted=True):
            return None

        now = utc_now()
        wallet = Wallet(
            id=new_id(),
            user_id=user_id,
            name=self._config.DEFAULT_WALLET_NAME,
            type=WalletType.PERSONAL,
            currency=self._config.DEFAULT_WALLET_CURRENCY,
            icon=self._config.DEFAULT_WALLET_ICON,
            color=self._config.DEFAULT_WALLET_COLOR,
            is_default=True,
            members=[WalletMember(user_id=user_id, role=MemberRole.OWNER, joined_at=now)],
            created_at=now,
            updated_at=now,
            needs_sync=True,
        )
        saved = self._wallet_storage.save_wallet(wallet)
        if saved is None:
            self._logger.warning("Default wallet could not be stored; will retry on next sign-in.")
            return None
        self._wallet_storage.set_current_wallet_id(saved.id)
        self._logger.info("Default wallet created.", extra={"wallet_id": saved.id})
        return saved
