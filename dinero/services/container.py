"""
Service Composition Root.

The ``create_services()`` factory wires the local store, the remote
repositories and the sync/auth services together, returning a typed
dict that the entry point and the contexts consume without knowing the
internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from dinero.auth import SessionManager
from dinero.config import AppConfig
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger, get_logger
from dinero.repositories.transaction_repository import TransactionRepository
from dinero.repositories.wallet_repository import WalletRepository
from dinero.services.auth_service import SupabaseAuthService
from dinero.services.sync_service import SyncService
from dinero.services.sync_worker import SyncWorkerService
from dinero.storage.auth_storage import AuthStorageService
from dinero.storage.base_storage import Clock
from dinero.storage.encrypted_store import (
    EncryptedKeyValueStore,
    StoreNamespace,
    derive_machine_key,
)
from dinero.storage.transaction_storage import TransactionStorageService
from dinero.storage.wallet_storage import WalletStorageService


class ServiceContainer(TypedDict):
    """Typed container for every wired component."""

    # --- Local store ---
    wallet_storage: WalletStorageService
    transaction_storage: TransactionStorageService
    auth_storage: AuthStorageService

    # --- Remote ---
    wallet_repository: WalletRepository
    transaction_repository: TransactionRepository

    # --- Services ---
    sync_service: SyncService
    sync_worker: SyncWorkerService
    auth_service: SupabaseAuthService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    session: SessionManager,
    logger: Optional[StructuredLogger] = None,
    store_keys: Optional[dict[StoreNamespace, bytes]] = None,
    clock: Optional[Clock] = None,
) -> ServiceContainer:
    """
    Wire all storage, repositories and services together.

    Args:
        db: Initialised DatabaseManager (schema already applied).
        config: Application configuration.
        session: The shared SessionManager.
        logger: Base logger; each component gets it bound to a
            ``component`` field.  Defaults to ``get_logger("services")``.
        store_keys: Per-namespace AES keys.  When omitted, keys are
            derived from machine identity and the salt file.
        clock: Time source for local ``updated_at`` stamps.

    Returns:
        ServiceContainer mapping component names to wired instances.
    """
    logger = logger or get_logger("services")

    # ------------------------------------------------------------------
    # 1. Local store (encrypted namespaces)
    # ------------------------------------------------------------------
    def key_for(namespace: StoreNamespace) -> bytes:
        if store_keys is not None:
            return store_keys[namespace]
        return derive_machine_key(
            namespace,
            config.STORE_SALT_PATH,
            config.STORE_KDF_ITERATIONS,
            logger.bind(component="keys"),
        )

    store_log = logger.bind(component="storage")
    main_store = EncryptedKeyValueStore(
        db, StoreNamespace.MAIN, key_for(StoreNamespace.MAIN), store_log,
    )
    secure_store = EncryptedKeyValueStore(
        db, StoreNamespace.SECURE, key_for(StoreNamespace.SECURE), store_log,
    )

    wallet_storage = WalletStorageService(main_store, store_log, clock=clock)
    transaction_storage = TransactionStorageService(main_store, store_log, clock=clock)
    auth_storage = AuthStorageService(secure_store, store_log)

    # ------------------------------------------------------------------
    # 2. Repositories (remote data-access layer)
    # ------------------------------------------------------------------
    remote_log = logger.bind(component="remote")
    wallet_repo = WalletRepository(db=db, session=session, logger=remote_log)
    transaction_repo = TransactionRepository(
        db=db,
        session=session,
        logger=remote_log,
        page_size=config.TRANSACTION_PAGE_SIZE,
        summary_limit=config.SUMMARY_FETCH_LIMIT,
    )

    # ------------------------------------------------------------------
    # 3. Services
    # ------------------------------------------------------------------
    sync_service = SyncService(
        wallet_storage=wallet_storage,
        transaction_storage=transaction_storage,
        wallet_repo=wallet_repo,
        transaction_repo=transaction_repo,
        logger=logger.bind(component="sync"),
    )
    sync_worker = SyncWorkerService(
        sync_service=sync_service,
        db=db,
        session=session,
        config=config,
        logger=logger.bind(component="sync_worker"),
    )
    auth_service = SupabaseAuthService(
        db=db, session=session, logger=logger.bind(component="auth"),
    )

    return ServiceContainer(
        wallet_storage=wallet_storage,
        transaction_storage=transaction_storage,
        auth_storage=auth_storage,
        wallet_repository=wallet_repo,
        transaction_repository=transaction_repo,
        sync_service=sync_service,
        sync_worker=sync_worker,
        auth_service=auth_service,
    )
