"""
Reactive Contexts Package.

Reducer-driven state holders the UI subscribes to::

    from dinero.contexts import AuthContext, WalletContext, TransactionContext
"""

from dinero.contexts.auth_context import AuthContext, auth_reducer
from dinero.contexts.store import Store, run_in_daemon_thread
from dinero.contexts.transaction_context import TransactionContext, transaction_reducer
from dinero.contexts.wallet_context import WalletContext, wallet_reducer

__all__ = [
    "AuthContext",
    "Store",
    "TransactionContext",
    "WalletContext",
    "auth_reducer",
    "run_in_daemon_thread",
    "transaction_reducer",
    "wallet_reducer",
]
