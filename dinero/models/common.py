"""
Shared Record Base and Response Envelopes.

``SyncableEntity`` carries the fields every persisted record needs for
local-first sync: a client-generated id, timestamps, the soft-delete
tombstone, the dirty flag and the ownership keys.

``ApiResponse`` / ``PaginatedResponse`` are the uniform envelopes every
remote call returns.  Remote failures are values, never exceptions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

from dinero.models.enums import ErrorCode
from dinero.utils.general import ensure_utc
from dinero.utils.string_helpers import normalize_keys

T = TypeVar("T")


class SyncableEntity(BaseModel):
    """Base fields shared by wallets and transactions.

    ``updated_at`` is the authority for last-writer-wins conflict
    resolution.  ``needs_sync`` is ``True`` while a local mutation has
    not been acknowledged by the remote.
    """

    id: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    needs_sync: bool = False
    user_id: str = ""
    wallet_id: str = ""

    model_config = {"from_attributes": True}

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: object) -> object:
        # Accept camelCase payloads from older clients.
        if isinstance(data, dict):
            return normalize_keys(data)
        return data

    @field_validator("created_at", "updated_at", "deleted_at", mode="after")
    @classmethod
    def _as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @property
    def is_deleted(self) -> bool:
        """``True`` for tombstoned records."""
        return self.deleted_at is not None


class ServiceError(BaseModel):
    """Structured failure carried inside an ``ApiResponse``."""

    code: str
    message: str
    details: Optional[str] = None


class ApiResponse(BaseModel, Generic[T]):
    """Uniform ``{success, data, error}`` envelope for remote calls."""

    success: bool
    data: Optional[T] = None
    error: Optional[ServiceError] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ApiResponse[T]":
        return cls(success=True, data=data, error=None)

    @classmethod
    def fail(
        cls,
        code: ErrorCode | str,
        message: str,
        details: Optional[str] = None,
    ) -> "ApiResponse[T]":
        return cls(
            success=False,
            data=None,
            error=ServiceError(code=str(code), message=message, details=details),
        )


class PaginationParams(BaseModel):
    """1-based page number and page size."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResponse(BaseModel, Generic[T]):
    """``{data[], total, page, has_more}`` list envelope."""

    data: list[T] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    has_more: bool = False

    @classmethod
    def empty(cls, page: int = 1) -> "PaginatedResponse[T]":
        return cls(data=[], total=0, page=page, has_more=False)


class SyncStatus(BaseModel):
    """Read-only snapshot of a wallet's sync state, for display."""

    last_sync_at: Optional[str] = None
    pending_uploads: int = 0
    pending_deletes: int = 0
    is_syncing: bool = False


class SyncReport(BaseModel):
    """Outcome of one ``sync_*`` call."""

    scope: str
    pushed: int = 0
    acknowledged: int = 0
    pulled: int = 0
    skipped: bool = False
    errors: list[ServiceError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors and not self.skipped

    def merge(self, other: "SyncReport") -> None:
        """Fold a child report (one wallet's transactions) into this one."""
        self.pushed += other.pushed
        self.acknowledged += other.acknowledged
        self.pulled += other.pulled
        self.errors.extend(other.errors)
