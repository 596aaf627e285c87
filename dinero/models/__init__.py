"""
Data Models Package.

Re-exports all Pydantic models:
    from dinero.models import Wallet, Transaction, ApiResponse, SyncStatus
    from dinero.models import WalletType, TransactionType, ErrorCode
"""

from __future__ import annotations

from dinero.models.auth_models import AuthState, User, UserSession
from dinero.models.common import (
    ApiResponse,
    PaginatedResponse,
    PaginationParams,
    ServiceError,
    SyncableEntity,
    SyncReport,
    SyncStatus,
)
from dinero.models.enums import (
    ErrorCode,
    MemberRole,
    RecurrenceType,
    TransactionStatus,
    TransactionType,
    WalletType,
)
from dinero.models.transaction import (
    CategorySummary,
    CreateTransactionDTO,
    DateSummary,
    Transaction,
    TransactionFilters,
    TransactionLocation,
    TransactionState,
    TransactionSummary,
    UpdateTransactionDTO,
)
from dinero.models.wallet import (
    CreateWalletDTO,
    UpdateWalletDTO,
    Wallet,
    WalletMember,
    WalletState,
)

__all__ = [
    "ApiResponse",
    "AuthState",
    "CategorySummary",
    "CreateTransactionDTO",
    "CreateWalletDTO",
    "DateSummary",
    "ErrorCode",
    "MemberRole",
    "PaginatedResponse",
    "PaginationParams",
    "RecurrenceType",
    "ServiceError",
    "SyncableEntity",
    "SyncReport",
    "SyncStatus",
    "Transaction",
    "TransactionFilters",
    "TransactionLocation",
    "TransactionState",
    "TransactionStatus",
    "TransactionSummary",
    "TransactionType",
    "UpdateTransactionDTO",
    "UpdateWalletDTO",
    "User",
    "UserSession",
    "Wallet",
    "WalletMember",
    "WalletState",
]
