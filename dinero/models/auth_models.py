"""
Authentication Models.

The signed-in user and their token bundle, as persisted in the secure
partition of the local store and held by ``SessionManager``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel


class User(BaseModel):
    """Represents the authenticated account."""

    id: str  # Supabase UUID
    email: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class UserSession(BaseModel):
    """Access/refresh token pair for ``user``.

    ``expires_at`` is a Unix timestamp in seconds, as issued by Supabase.
    """

    user: User
    access_token: str
    refresh_token: str
    expires_at: int

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        current = (now or datetime.now(timezone.utc)).timestamp()
        return self.expires_at < current


class AuthState(BaseModel):
    """Reactive state projected by ``AuthContext``."""

    user: Optional[User] = None
    session: Optional[UserSession] = None
    is_authenticated: bool = False
    is_loading: bool = True
    error: Optional[str] = None
