"""
Repository Layer Package.

The remote side of the sync layer: data-access abstractions over
Supabase.  Every call returns an ``ApiResponse`` envelope; only the sync
service and the contexts talk to repositories.

Usage:
    from dinero.repositories import TransactionRepository, WalletRepository
"""

from dinero.repositories.base_repository import BaseRepository
from dinero.repositories.transaction_repository import TransactionRepository
from dinero.repositories.wallet_repository import WalletRepository

__all__ = [
    "BaseRepository",
    "TransactionRepository",
    "WalletRepository",
]
