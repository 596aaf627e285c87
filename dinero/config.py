"""
Settings.

Every tunable of the sync layer (Supabase credentials, the local store,
sync timing, first-run wallet defaults and logging) comes from the
environment or a ``.env`` file in the working directory.  Components
receive an ``AppConfig`` from the composition root.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Environment-backed settings.  Field names are the variable names."""

    # --- Supabase ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Local store ---
    LOCAL_DB_PATH: str = "dinero_local.db"
    STORE_SALT_PATH: str = str(Path.home() / ".dinero_store_salt")
    STORE_KDF_ITERATIONS: int = 600_000

    # --- Sync worker ---
    SYNC_INTERVAL_S: float = 30.0
    SYNC_MAX_INTERVAL_S: float = 300.0  # 5-minute cap

    # --- First sign-in wallet ---
    DEFAULT_WALLET_NAME: str = "Pessoal"
    DEFAULT_WALLET_CURRENCY: str = "BRL"
    DEFAULT_WALLET_ICON: str = "wallet"
    DEFAULT_WALLET_COLOR: str = "#6366F1"

    # --- Remote reads ---
    TRANSACTION_PAGE_SIZE: int = 50
    SUMMARY_FETCH_LIMIT: int = 1000

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "dinero.log"
    LOG_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_BACKUP_COUNT: int = 3

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @model_validator(mode="after")
    def _check_settings(self) -> "AppConfig":
        """Reject an inverted backoff window; log a missing ``.env`` and a missing backend."""
        log = logging.getLogger("dinero.config")

        if not Path(".env").is_file():
            log.warning("No .env file in %s; using environment and defaults.", Path.cwd())

        if self.SYNC_MAX_INTERVAL_S < self.SYNC_INTERVAL_S:
            raise ValueError(
                f"SYNC_MAX_INTERVAL_S ({self.SYNC_MAX_INTERVAL_S}) must not be "
                f"below SYNC_INTERVAL_S ({self.SYNC_INTERVAL_S})"
            )

        if not self.SUPABASE_URL:
            log.warning(
                "SUPABASE_URL is empty; remote sync is disabled. "
                "Wallets and transactions stay on this device."
            )

        return self

    @property
    def log_level(self) -> int:
        """``LOG_LEVEL`` as a ``logging`` level number (INFO when unknown)."""
        return logging.getLevelNamesMapping().get(self.LOG_LEVEL.upper(), logging.INFO)

    @property
    def has_remote(self) -> bool:
        """``True`` when both Supabase credentials are configured."""
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


_config_instance: Optional[AppConfig] = None
_config_lock = threading.Lock()


def get_config() -> AppConfig:
    """Process-wide ``AppConfig``, built from the environment on first use.

    Only the entry point and the logger defaults should reach for this;
    everything else is handed its config.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
