"""
Local Database Schema.

The local database is deliberately schema-light: wallets, transactions,
sync watermarks and the saved auth session are all encrypted JSON values
in ``kv_store``, addressed by the keys in
:class:`dinero.storage.encrypted_store.StorageKeys`.

Schema changes are numbered steps in :data:`_MIGRATIONS`.  The applied
version is kept in SQLite's ``user_version`` header, and each step runs
in its own transaction together with the version bump, so a failed
upgrade leaves the file at the last good version and the next start
retries.

Usage::

    initialize_schema(db.sqlite, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3

from dinero.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema", "schema_version"]

# Step N upgrades a database from version N - 1 to N.
_MIGRATIONS: dict[int, tuple[str, ...]] = {
    1: (
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            namespace TEXT NOT NULL CHECK (namespace IN ('main', 'secure')),
            key TEXT NOT NULL,
            ciphertext BLOB NOT NULL,
            nonce BLOB NOT NULL,
            tag BLOB NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (namespace, key)
        )
        """,
    ),
}

CURRENT_SCHEMA_VERSION: int = max(_MIGRATIONS)


def schema_version(conn: sqlite3.Connection) -> int:
    """Version recorded in the database header (``0`` for a new file)."""
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _apply(conn: sqlite3.Connection, version: int) -> None:
    # sqlite3 does not open a transaction for DDL on its own.
    conn.execute("BEGIN")
    try:
        for statement in _MIGRATIONS[version]:
            conn.execute(statement)
        # PRAGMA does not accept bound parameters; version is an int key.
        conn.execute(f"PRAGMA user_version = {int(version)}")
    except sqlite3.Error:
        conn.rollback()
        raise
    conn.commit()


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Bring the local database up to :data:`CURRENT_SCHEMA_VERSION`.

    Runs on every start and does nothing when the file is current.  A
    file written by a newer build is left untouched.

    Raises:
        sqlite3.Error: If a step fails.  Earlier steps stay applied.
    """
    current = schema_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Local schema is current.", extra={"schema_version": current})
        return

    for version in range(current + 1, CURRENT_SCHEMA_VERSION + 1):
        try:
            _apply(conn, version)
        except sqlite3.Error:
            logger.error(
                "Schema step %d failed; database stays at version %d.",
                version,
                version - 1,
                exc_info=True,
            )
            raise
        logger.info("Applied schema step.", extra={"schema_version": version})
