"""
Session State.

``SessionManager`` is the process-wide answer to "who is signed in on
this device".  Repositories stamp ``user_id`` from here and never trust
a record payload; the sync worker checks it before every cycle.

User and tokens are kept as one ``UserSession`` snapshot so they always
change together.  A user set without tokens is still signed in locally;
they just cannot refresh until the next sign-in.

Usage::

    session = SessionManager()
    session.start(user_session)          # after Supabase sign-in
    session.current_user_id              # "abc-123"
"""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional

from dinero.models.auth_models import User, UserSession
from dinero.utils.general import utc_now


class SessionManager:
    """Thread-safe holder of the signed-in user and their Supabase tokens.

    Share one instance through the composition root.
    """

    # Tokens this close to expiry are treated as already expired.
    EXPIRY_MARGIN = timedelta(seconds=30)

    def __init__(self) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._user: Optional[User] = None
        self._session: Optional[UserSession] = None

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def start(self, session: UserSession) -> None:
        """Adopt a full ``UserSession`` (user and tokens) in one step."""
        with self._lock:
            self._user = session.user
            self._session = session

    def set_current_user(self, user: User) -> None:
        """Sign *user* in locally.  Tokens of a different user are dropped."""
        with self._lock:
            if self._session is not None and self._session.user.id != user.id:
                self._session = None
            self._user = user

    def get_current_user(self) -> User:
        """Return the signed-in user.

        Raises:
            RuntimeError: If nobody is signed in.
        """
        with self._lock:
            if self._user is None:
                raise RuntimeError("No user is signed in on this device.")
            return self._user

    @property
    def current_user_id(self) -> Optional[str]:
        with self._lock:
            return self._user.id if self._user else None

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._user is not None

    def clear(self) -> None:
        """Forget the user and tokens."""
        with self._lock:
            self._user = None
            self._session = None

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def set_tokens(self, access_token: str, refresh_token: str, expires_at: int) -> None:
        """Replace the tokens of the signed-in user.

        *expires_at* is a Unix timestamp in seconds.

        Raises:
            RuntimeError: If nobody is signed in.
        """
        with self._lock:
            self._session = UserSession(
                user=self.get_current_user(),
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )

    @property
    def session(self) -> Optional[UserSession]:
        with self._lock:
            return self._session

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._session.access_token if self._session else None

    @property
    def refresh_token(self) -> Optional[str]:
        with self._lock:
            return self._session.refresh_token if self._session else None

    @property
    def is_token_expired(self) -> bool:
        """``True`` when there are no tokens or they expire within the margin."""
        with self._lock:
            if self._session is None:
                return True
            return self._session.is_expired(now=utc_now() + self.EXPIRY_MARGIN)
