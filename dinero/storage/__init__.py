"""
Local Store Package.

The encrypted, device-local system of record::

    from dinero.storage import WalletStorageService, TransactionStorageService
"""

from dinero.storage.auth_storage import AuthStorageService
from dinero.storage.encrypted_store import (
    EncryptedKeyValueStore,
    StorageKeys,
    StoreNamespace,
    derive_machine_key,
)
from dinero.storage.transaction_storage import TransactionStorageService
from dinero.storage.wallet_storage import WalletStorageService

__all__ = [
    "AuthStorageService",
    "EncryptedKeyValueStore",
    "StorageKeys",
    "StoreNamespace",
    "TransactionStorageService",
    "WalletStorageService",
    "derive_machine_key",
]
