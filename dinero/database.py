"""
Connection Management.

``DatabaseManager`` owns the two connections of the sync layer:

- the local SQLite file that backs the encrypted key-value store, the
  device's system of record (always present);
- the Supabase client used by the remote repositories (optional).

With no Supabase credentials the manager runs *local-only*: reads and
writes keep working and the sync worker simply skips its cycles.  The
``supabase`` property raises ``RuntimeError`` in that mode, which the
repositories report as an ``OFFLINE`` failure.

No query logic lives here.

Usage::

    db = DatabaseManager.from_config(get_config(), StructuredLogger(name="database"))
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Union

from supabase import create_client, Client as SupabaseClient

from dinero.config import AppConfig
from dinero.logger import StructuredLogger

# Seconds SQLite waits on a locked database file before failing.
_BUSY_TIMEOUT_S = 5.0


class DatabaseManager:
    """Local SQLite connection plus optional Supabase client.

    Parameters
    ----------
    supabase_url, supabase_key:
        Supabase project URL and anon key.  Either may be empty to run
        local-only.
    sqlite_path:
        Path of the local database file, or ``":memory:"``.
    logger:
        Structured JSON logger.
    supabase_client:
        A ready client, used instead of the URL/key pair.  Tests inject
        an in-memory fake here.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
        supabase_client: Optional[SupabaseClient] = None,
    ) -> None:
        self._logger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._closed = False
        self._supabase: Optional[SupabaseClient] = (
            supabase_client if supabase_client is not None
            else self._create_remote(supabase_url, supabase_key)
        )
        self._sqlite_conn: sqlite3.Connection = self._open_local(sqlite_path)

    @classmethod
    def from_config(cls, config: AppConfig, logger: StructuredLogger) -> "DatabaseManager":
        return cls(
            supabase_url=config.SUPABASE_URL,
            supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
            sqlite_path=config.LOCAL_DB_PATH,
            logger=logger,
        )

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> SupabaseClient:
        """The Supabase client.

        Raises
        ------
        RuntimeError
            When running local-only.
        """
        if self._supabase is None:
            raise RuntimeError("No remote backend configured; running local-only.")
        return self._supabase

    @property
    def is_online(self) -> bool:
        """``True`` when a Supabase client is available."""
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Serialises every read-modify-write of a store key.

        The caller thread and the sync worker both mutate the same
        record lists, so storage services hold this lock from the read
        of a key until its write::

            with db.write_lock:
                records = store.get_json(key)
                ...
                store.set_json(key, records)
        """
        return self._write_lock

    def commit(self) -> None:
        with self._write_lock:
            self._sqlite_conn.commit()

    def close(self) -> None:
        """Close the SQLite connection.  Later calls are no-ops."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._sqlite_conn.close()
            except sqlite3.ProgrammingError:
                self._logger.debug("SQLite connection was already closed.")
                return
        self._logger.info("Local database closed.")

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _create_remote(self, url: str, key: str) -> Optional[SupabaseClient]:
        if not (url and key):
            self._logger.warning("Supabase credentials not set; running local-only.")
            return None
        try:
            client = create_client(url, key)
        except Exception as exc:
            # Bad URL or key format: keep the device usable and log why.
            self._logger.error(
                "Could not create the Supabase client (%s); running local-only.",
                exc,
                exc_info=True,
            )
            return None
        self._logger.info("Supabase client ready.", extra={"url": url})
        return client

    def _open_local(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open the local database, creating it on first run.

        Raises
        ------
        PermissionError
            When the file cannot be opened (read-only or locked).
        """
        location = str(path)
        try:
            conn = sqlite3.connect(location, timeout=_BUSY_TIMEOUT_S, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if location != ":memory:":
                Path(location).parent.mkdir(parents=True, exist_ok=True)
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
        except (OSError, sqlite3.OperationalError) as exc:
            message = (
                f"Cannot open the local database at '{location}'. "
                "Check that the file is writable and not locked by another process."
            )
            self._logger.error(message)
            raise PermissionError(message) from exc

        self._logger.info("Local database opened.", extra={"path": location})
        return conn
