"""
Authentication Service.

Wraps Supabase Auth for the sync layer: ID-token sign-in (Google and
other OIDC providers), sign-out, token refresh and the current-user
lookup.  On success the shared ``SessionManager`` is updated so that
repositories immediately see the identity.

All methods return ``ApiResponse`` values; callers never inspect raw
exceptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from dinero.auth import SessionManager
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger
from dinero.models.auth_models import User, UserSession
from dinero.models.common import ApiResponse
from dinero.models.enums import ErrorCode
from dinero.services.base_service import BaseService
from dinero.utils.general import utc_now

# Substrings of Supabase Auth error text -> (code, human message).
_AUTH_ERROR_MAP: dict[str, tuple[ErrorCode, str]] = {
    "invalid_grant": (
        ErrorCode.INVALID_CREDENTIALS,
        "The sign-in token was rejected.",
    ),
    "invalid_credentials": (
        ErrorCode.INVALID_CREDENTIALS,
        "The sign-in token was rejected.",
    ),
    "refresh_token_not_found": (
        ErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
    "refresh token": (
        ErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
    "session_not_found": (
        ErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
}


def _metadata_value(metadata: dict[str, object], *keys: str) -> Optional[str]:
    for key in keys:
        value = metadata.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _map_user(supabase_user: object) -> User:
    """Convert a Supabase Auth user object into a ``User``."""
    metadata: dict[str, object] = getattr(supabase_user, "user_metadata", None) or {}
    created_at: Optional[datetime] = getattr(supabase_user, "created_at", None)
    last_sign_in: Optional[datetime] = getattr(supabase_user, "last_sign_in_at", None)
    return User(
        id=getattr(supabase_user, "id"),
        email=getattr(supabase_user, "email", None) or "",
        display_name=_metadata_value(metadata, "full_name", "name"),
        avatar_url=_metadata_value(metadata, "avatar_url", "picture"),
        created_at=created_at or utc_now(),
        last_login_at=last_sign_in or utc_now(),
    )


def _map_session(supabase_session: object) -> UserSession:
    return UserSession(
        user=_map_user(getattr(supabase_session, "user")),
        access_token=getattr(supabase_session, "access_token"),
        refresh_token=getattr(supabase_session, "refresh_token"),
        expires_at=getattr(supabase_session, "expires_at", None) or 0,
    )


class SupabaseAuthService(BaseService):
    """Supabase Auth operations returning ``ApiResponse`` envelopes.

    Parameters
    ----------
    db:
        ``DatabaseManager`` supplying the Supabase client.
    session:
        The shared ``SessionManager``, updated on every successful
        sign-in or refresh and cleared on sign-out.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        db: DatabaseManager,
        session: SessionManager,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._session = session

    def sign_in_with_id_token(
        self,
        id_token: str,
        provider: str = "google",
    ) -> ApiResponse[UserSession]:
        """Exchange an OIDC *id_token* for a Supabase session."""
        try:
            response = self._db.supabase.auth.sign_in_with_id_token(
                {"provider": provider, "token": id_token}
            )
        except Exception as exc:
            return self._classify_error(exc, "sign-in")

        if response is None or response.session is None:
            return ApiResponse.fail(
                ErrorCode.UNAUTHORIZED,
                "Authentication succeeded but no session was created",
            )

        user_session = _map_session(response.session)
        self._session.start(user_session)
        self._logger.info(
            "User signed in.",
            extra={"event": "LOGIN", "user_id": user_session.user.id, "provider": provider},
        )
        return ApiResponse.ok(user_session)

    def sign_out(self) -> ApiResponse[None]:
        """Revoke the server session (best effort) and clear local identity."""
        user_id = self._session.current_user_id or "unknown"
        result: ApiResponse[None] = ApiResponse.ok(None)
        try:
            self._db.supabase.auth.sign_out()
        except RuntimeError:
            self._logger.debug("Offline; skipping server-side sign_out.")
        except Exception as exc:
            result = self._classify_error(exc, "sign-out")

        self._session.clear()
        self._logger.info("User signed out.", extra={"event": "LOGOUT", "user_id": user_id})
        return result

    def refresh_session(self, refresh_token: str) -> ApiResponse[UserSession]:
        """Obtain a fresh session from *refresh_token*."""
        try:
            response = self._db.supabase.auth.refresh_session(refresh_token)
        except Exception as exc:
            return self._classify_error(exc, "refresh")

        if response is None or response.session is None:
            return ApiResponse.fail(
                ErrorCode.SESSION_EXPIRED,
                "Session refresh succeeded but no session was returned",
            )

        user_session = _map_session(response.session)
        self._session.start(user_session)
        self._logger.info("Session refreshed.", extra={"user_id": user_session.user.id})
        return ApiResponse.ok(user_session)

    def get_current_user(self) -> ApiResponse[User]:
        """Ask Supabase who the current access token belongs to."""
        try:
            response = self._db.supabase.auth.get_user()
        except Exception as exc:
            return self._classify_error(exc, "get_user")

        if response is None or response.user is None:
            return ApiResponse.fail(ErrorCode.UNAUTHORIZED, "No authenticated user found")
        return ApiResponse.ok(_map_user(response.user))

    # ------------------------------------------------------------------
    # Error classification
    # ------------------------------------------------------------------

    def _classify_error(self, exc: Exception, operation: str) -> ApiResponse[object]:
        """Map a Supabase Auth or network exception to a failure envelope."""
        if isinstance(exc, RuntimeError):
            return ApiResponse.fail(ErrorCode.OFFLINE, "Remote backend is not configured.")

        if isinstance(exc, (ConnectionError, TimeoutError)):
            self._logger.warning("Network error during %s: %s", operation, exc)
            return ApiResponse.fail(
                ErrorCode.NETWORK_ERROR,
                "Cannot reach the server. Check your internet connection.",
            )

        error_str = f"{getattr(exc, 'code', '') or ''} {exc}".lower()
        for code_key, (error_code, human_message) in _AUTH_ERROR_MAP.items():
            if code_key in error_str:
                self._logger.warning(
                    "Auth error during %s (%s): %s", operation, code_key, exc,
                    extra={"error_code": code_key},
                )
                return ApiResponse.fail(error_code, human_message, str(exc))

        self._logger.warning("Unknown auth error during %s: %s", operation, exc)
        return ApiResponse.fail(ErrorCode.UNEXPECTED_ERROR, str(exc))
