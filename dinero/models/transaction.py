"""
Transaction Model.

``amount`` is always a non-negative magnitude; direction comes from
``type``.  Recurring templates link their generated instances through
``parent_transaction_id``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, JsonValue, field_validator

from dinero.models.common import SyncableEntity
from dinero.models.enums import RecurrenceType, TransactionStatus, TransactionType
from dinero.utils.general import ensure_utc


class TransactionLocation(BaseModel):
    """Where a transaction happened."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None


class Transaction(SyncableEntity):
    """Represents a transaction record, local or remote."""

    amount: Decimal = Field(ge=0)
    type: TransactionType
    status: TransactionStatus = TransactionStatus.COMPLETED
    category_id: str
    description: str = ""
    notes: Optional[str] = None
    date: datetime

    # Recurrence
    is_recurring: bool = False
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrence_end_date: Optional[datetime] = None
    parent_transaction_id: Optional[str] = None

    attachments: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    location: Optional[TransactionLocation] = None
    metadata: dict[str, JsonValue] = Field(default_factory=dict)

    @field_validator("date", "recurrence_end_date", mode="after")
    @classmethod
    def _dates_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None


class CreateTransactionDTO(BaseModel):
    """Fields a caller supplies to create a transaction."""

    wallet_id: str
    amount: Decimal = Field(ge=0)
    type: TransactionType
    category_id: str
    description: str = ""
    notes: Optional[str] = None
    date: datetime
    status: TransactionStatus = TransactionStatus.COMPLETED
    is_recurring: bool = False
    recurrence: RecurrenceType = RecurrenceType.NONE
    recurrence_end_date: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    location: Optional[TransactionLocation] = None
    metadata: dict[str, JsonValue] = Field(default_factory=dict)


class UpdateTransactionDTO(BaseModel):
    """Partial transaction update.  Only fields explicitly set are applied."""

    amount: Optional[Decimal] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    category_id: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[datetime] = None
    tags: Optional[list[str]] = None
    location: Optional[TransactionLocation] = None
    metadata: Optional[dict[str, JsonValue]] = None

    def changes(self) -> dict[str, object]:
        """Return the explicitly-set fields as a plain dict."""
        return self.model_dump(exclude_unset=True)


class TransactionFilters(BaseModel):
    """Filters accepted by ``TransactionRepository.get_all``."""

    wallet_id: Optional[str] = None
    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    category_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    tags: Optional[list[str]] = None
    search_query: Optional[str] = None
    include_deleted: bool = False


class CategorySummary(BaseModel):
    category_id: str
    total: Decimal
    count: int
    percentage: float


class DateSummary(BaseModel):
    date: str  # YYYY-MM-DD
    income: Decimal
    expenses: Decimal
    balance: Decimal


class TransactionSummary(BaseModel):
    """Aggregated totals over a set of non-deleted transactions."""

    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    transaction_count: int = 0
    by_category: list[CategorySummary] = Field(default_factory=list)
    by_date: list[DateSummary] = Field(default_factory=list)


class TransactionState(BaseModel):
    """Reactive state projected by ``TransactionContext``."""

    wallet_id: Optional[str] = None
    transactions: list[Transaction] = Field(default_factory=list)
    is_loading: bool = False
    is_syncing: bool = False
    last_sync_at: Optional[str] = None
    pending_uploads: int = 0
    pending_deletes: int = 0
    error: Optional[str] = None
