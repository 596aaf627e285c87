"""
Shared Enumerations for Dinero Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents, so records
read back from JSON (``"expense"``) compare equal to
``TransactionType.EXPENSE``.
"""

from __future__ import annotations
from enum import StrEnum


class WalletType(StrEnum):
    """Kinds of wallet a user can own."""

    PERSONAL = "personal"
    BUSINESS = "business"
    FAMILY = "family"
    SHARED = "shared"


class MemberRole(StrEnum):
    """Role of a user inside a wallet's member list."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class TransactionType(StrEnum):
    """Direction of a transaction.  ``amount`` is always a magnitude."""

    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class TransactionStatus(StrEnum):
    """Settlement state of a transaction.

    ``CANCELLED`` is a business state, not a deletion.  Deleted records
    carry a ``deleted_at`` tombstone instead.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecurrenceType(StrEnum):
    """Repeat cadence of a recurring transaction template."""

    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ErrorCode(StrEnum):
    """Codes carried by ``ServiceError`` inside failed ``ApiResponse`` envelopes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INSERT_ERROR = "INSERT_ERROR"
    UPDATE_ERROR = "UPDATE_ERROR"
    DELETE_ERROR = "DELETE_ERROR"
    FETCH_ERROR = "FETCH_ERROR"
    SYNC_ERROR = "SYNC_ERROR"
    SUMMARY_ERROR = "SUMMARY_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    OFFLINE = "OFFLINE"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"
