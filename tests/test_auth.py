"""Tests for the session holder and the Supabase Auth wrapper."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from dinero.auth import SessionManager
from dinero.models.auth_models import User, UserSession
from dinero.models.enums import ErrorCode
from dinero.services.auth_service import SupabaseAuthService

from conftest import USER_ID


class AuthApiError(Exception):
    """Mimics the ``code`` attribute carried by Supabase Auth errors."""

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.code = code


@pytest.fixture
def signed_out() -> SessionManager:
    return SessionManager()


@pytest.fixture
def auth_service(db, signed_out, logger) -> SupabaseAuthService:
    return SupabaseAuthService(db, signed_out, logger)


class TestSessionManager:
    def test_requires_login(self, signed_out):
        assert not signed_out.is_authenticated
        assert signed_out.current_user_id is None
        with pytest.raises(RuntimeError):
            signed_out.get_current_user()

    def test_start_adopts_user_and_tokens(self, signed_out):
        expires_at = int((datetime.now(timezone.utc) + timedelta(hours=1)).timestamp())
        signed_out.start(UserSession(
            user=User(id="u", email="u@example.com"),
            access_token="a",
            refresh_token="r",
            expires_at=expires_at,
        ))
        assert signed_out.current_user_id == "u"
        assert signed_out.access_token == "a"
        assert signed_out.refresh_token == "r"
        assert not signed_out.is_token_expired

    def test_token_expiry_has_a_margin(self, session):
        assert session.is_token_expired
        soon = int((datetime.now(timezone.utc) + timedelta(seconds=10)).timestamp())
        session.set_tokens("a", "r", soon)
        assert session.is_token_expired

    def test_tokens_need_a_user(self, signed_out):
        with pytest.raises(RuntimeError):
            signed_out.set_tokens("a", "r", 0)

    def test_switching_user_drops_tokens(self, session):
        session.set_tokens("a", "r", 0)
        session.set_current_user(User(id="someone-else", email="x@example.com"))
        assert session.access_token is None
        assert session.current_user_id == "someone-else"

    def test_clear(self, session):
        session.set_tokens("a", "r", 0)
        session.clear()
        assert not session.is_authenticated
        assert session.access_token is None


class TestSignIn:
    def test_success_starts_the_session(self, auth_service, signed_out):
        result = auth_service.sign_in_with_id_token("google-id-token")
        assert result.success
        assert result.data.user.id == USER_ID
        assert result.data.user.display_name == "Ana Souza"
        assert result.data.user.avatar_url == "https://img/ana.png"
        assert signed_out.current_user_id == USER_ID
        assert signed_out.access_token == "access-1"

    def test_rejected_token(self, auth_service, fake_supabase, signed_out):
        fake_supabase.auth.error = AuthApiError("Invalid grant", code="invalid_grant")
        result = auth_service.sign_in_with_id_token("bad")
        assert not result.success
        assert result.error.code == ErrorCode.INVALID_CREDENTIALS
        assert not signed_out.is_authenticated

    @pytest.mark.parametrize("error", [
        ConnectionError("refused"),
        TimeoutError("slow"),
    ])
    def test_network_errors(self, auth_service, fake_supabase, error):
        fake_supabase.auth.error = error
        result = auth_service.sign_in_with_id_token("token")
        assert result.error.code == ErrorCode.NETWORK_ERROR

    def test_offline(self, offline_db, signed_out, logger):
        result = SupabaseAuthService(offline_db, signed_out, logger).sign_in_with_id_token("t")
        assert result.error.code == ErrorCode.OFFLINE

    def test_unknown_error(self, auth_service, fake_supabase):
        fake_supabase.auth.error = httpx.HTTPError("teapot")
        result = auth_service.sign_in_with_id_token("token")
        assert result.error.code == ErrorCode.UNEXPECTED_ERROR


class TestRefreshAndSignOut:
    def test_refresh_replaces_tokens(self, auth_service, signed_out):
        auth_service.sign_in_with_id_token("token")
        result = auth_service.refresh_session(signed_out.refresh_token)
        assert result.success
        assert signed_out.access_token == "access-2"

    def test_refresh_with_revoked_token(self, auth_service, fake_supabase):
        fake_supabase.auth.error = AuthApiError("Invalid Refresh Token: Not Found", code="refresh_token_not_found")
        result = auth_service.refresh_session("stale")
        assert result.error.code == ErrorCode.SESSION_EXPIRED

    def test_sign_out_clears_local_identity(self, auth_service, fake_supabase, signed_out):
        auth_service.sign_in_with_id_token("token")
        result = auth_service.sign_out()
        assert result.success
        assert fake_supabase.auth.signed_out
        assert not signed_out.is_authenticated

    def test_sign_out_clears_even_when_server_fails(self, auth_service, fake_supabase, signed_out):
        auth_service.sign_in_with_id_token("token")
        fake_supabase.auth.error = ConnectionError("refused")
        result = auth_service.sign_out()
        assert result.error.code == ErrorCode.NETWORK_ERROR
        assert not signed_out.is_authenticated

    def test_sign_out_offline_succeeds(self, offline_db, signed_out, logger, user):
        signed_out.set_current_user(user)
        result = SupabaseAuthService(offline_db, signed_out, logger).sign_out()
        assert result.success
        assert not signed_out.is_authenticated

    def test_get_current_user(self, auth_service):
        result = auth_service.get_current_user()
        assert result.success
        assert result.data.email == "ana@example.com"
