"""
Base Repository.

Provides shared infrastructure for the remote (Supabase) repositories:
- DatabaseManager reference (injected Supabase client)
- SessionManager reference (the authenticated identity)
- Mapping of every exception raised by a remote call into an
  ``ApiResponse`` failure envelope.  Repositories never raise.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, TypeVar

import httpx
from postgrest.exceptions import APIError
from pydantic import BaseModel, JsonValue, ValidationError
from supabase import Client as SupabaseClient

from dinero.auth import SessionManager
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger
from dinero.models.common import ApiResponse, SyncableEntity
from dinero.models.enums import ErrorCode
from dinero.utils.general import to_iso, utc_now

T = TypeVar("T")
E = TypeVar("E", bound=SyncableEntity)

Row = dict[str, JsonValue]

# Local-only bookkeeping, never written to the remote tables.
_LOCAL_ONLY_FIELDS: frozenset[str] = frozenset({"needs_sync"})


class BaseRepository:
    """Base class for all remote repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(
        self,
        db: DatabaseManager,
        session: SessionManager,
        logger: StructuredLogger,
    ) -> None:
        self._db = db
        self._session = session
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client.  Raises ``RuntimeError`` offline."""
        return self._db.supabase

    def _table(self):
        return self.supabase.table(self.TABLE)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def _require_user(self) -> Optional[str]:
        """Return the session user id, or ``None`` when signed out."""
        return self._session.current_user_id

    def _unauthorized(self) -> ApiResponse[T]:
        return ApiResponse.fail(ErrorCode.UNAUTHORIZED, "User not authenticated")

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(entity: BaseModel) -> Row:
        return entity.model_dump(mode="json", exclude=set(_LOCAL_ONLY_FIELDS))

    @staticmethod
    def _now() -> datetime:
        return utc_now()

    @staticmethod
    def _stamp(value: Optional[datetime]) -> str:
        return to_iso(value or utc_now())

    def _parse_rows(self, model: type[E], rows: Optional[list[Row]]) -> list[E]:
        """Validate remote rows, skipping (and logging) malformed ones."""
        parsed: list[E] = []
        for row in rows or []:
            try:
                parsed.append(model.model_validate(row))
            except ValidationError as exc:
                self._logger.warning(
                    "Skipping malformed %s row from remote: %s",
                    self.TABLE,
                    exc,
                    extra={"row_id": str(row.get("id")) if isinstance(row, dict) else ""},
                )
        return parsed

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    def _failure(
        self,
        exc: Exception,
        code: ErrorCode,
        operation: str,
    ) -> ApiResponse[T]:
        """Translate *exc* raised by a remote call into a failure envelope.

        - ``RuntimeError`` (no Supabase client) -> ``OFFLINE``
        - connection / timeout errors -> ``NETWORK_ERROR``
        - PostgREST API errors -> *code*, server message in ``details``
        - anything else -> ``UNEXPECTED_ERROR``
        """
        if isinstance(exc, RuntimeError):
            self._logger.info("%s skipped: offline.", operation)
            return ApiResponse.fail(ErrorCode.OFFLINE, "Remote backend is not configured.")

        if isinstance(exc, (ConnectionError, TimeoutError, httpx.TransportError)):
            self._logger.warning("Network failure during %s: %s", operation, exc)
            return ApiResponse.fail(ErrorCode.NETWORK_ERROR, str(exc) or "Network unavailable")

        if isinstance(exc, APIError):
            self._logger.warning(
                "Remote rejected %s: %s", operation, exc.message,
                extra={"table": self.TABLE, "pg_code": exc.code or ""},
            )
            details = exc.details or exc.hint or exc.code
            return ApiResponse.fail(code, exc.message or str(exc), str(details) if details else None)

        self._logger.error(
            "Unexpected error during %s: %s", operation, exc, exc_info=True,
        )
        return ApiResponse.fail(ErrorCode.UNEXPECTED_ERROR, str(exc))
