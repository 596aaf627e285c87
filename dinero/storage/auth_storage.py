"""
Auth Storage Service.

Persists the signed-in user's session (``auth:session``) and profile
(``auth:user``) in the encrypted ``secure`` namespace so a restart can
restore the session without a round-trip.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from dinero.logger import StructuredLogger
from dinero.models.auth_models import User, UserSession
from dinero.storage.encrypted_store import EncryptedKeyValueStore, StorageKeys


class AuthStorageService:
    """Session and user persistence.

    Parameters
    ----------
    store:
        The encrypted ``secure`` namespace.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(self, store: EncryptedKeyValueStore, logger: StructuredLogger) -> None:
        self._store = store
        self._logger = logger

    def persist_session(self, session: UserSession) -> bool:
        return self._store.set_json(StorageKeys.AUTH_SESSION, session.model_dump(mode="json"))

    def get_session(self) -> Optional[UserSession]:
        raw = self._store.get_json(StorageKeys.AUTH_SESSION)
        if raw is None:
            return None
        try:
            return UserSession.model_validate(raw)
        except ValidationError as exc:
            self._logger.warning("Stored session is malformed; ignoring it: %s", exc)
            return None

    def clear_session(self) -> None:
        self._store.delete(StorageKeys.AUTH_SESSION)

    def persist_user(self, user: User) -> bool:
        return self._store.set_json(StorageKeys.AUTH_USER, user.model_dump(mode="json"))

    def get_user(self) -> Optional[User]:
        raw = self._store.get_json(StorageKeys.AUTH_USER)
        if raw is None:
            return None
        try:
            return User.model_validate(raw)
        except ValidationError as exc:
            self._logger.warning("Stored user is malformed; ignoring it: %s", exc)
            return None

    def clear_user(self) -> None:
        self._store.delete(StorageKeys.AUTH_USER)
