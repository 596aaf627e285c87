"""
Encrypted Key-Value Store.

The device-local system of record.  Every logical key (wallet list,
per-wallet transaction list, sync watermark, auth session) is stored as
one AES-256-GCM encrypted JSON value in the SQLite ``kv_store`` table.

Security model
--------------
- Each namespace (``main`` / ``secure``) is encrypted with its own
  256-bit key.  :func:`derive_machine_key` derives it at runtime from
  machine identity (hostname + OS username + namespace) via
  PBKDF2-HMAC-SHA256 with a per-machine random salt.  The key is
  **never** persisted to disk.
- GCM gives both confidentiality and integrity: a tampered or
  corrupted row fails authentication and reads back as missing.

Storage layout::

    kv_store
    ├── namespace   TEXT  ('main' | 'secure')
    ├── key         TEXT  (logical key, see StorageKeys)
    ├── ciphertext  BLOB
    ├── nonce       BLOB
    ├── tag         BLOB
    └── updated_at  TIMESTAMP
"""

from __future__ import annotations

import getpass
import json
import os
import socket
import sqlite3
import stat
from enum import StrEnum
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2
from pydantic import JsonValue

from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger

__all__ = [
    "EncryptedKeyValueStore",
    "StorageKeys",
    "StoreNamespace",
    "derive_machine_key",
]

_KEY_LENGTH: int = 32  # 256 bits
_SALT_LENGTH: int = 32


class StoreNamespace(StrEnum):
    """Partition of ``kv_store``; each has its own encryption key."""

    MAIN = "main"
    SECURE = "secure"


class StorageKeys:
    """Logical keys of the local store."""

    AUTH_SESSION: str = "auth:session"
    AUTH_USER: str = "auth:user"
    CURRENT_WALLET: str = "wallet:current"
    WALLETS: str = "wallets:all"

    @staticmethod
    def last_sync(wallet_id: str) -> str:
        return f"sync:{wallet_id}:last"

    @staticmethod
    def transactions(wallet_id: str) -> str:
        return f"transactions:{wallet_id}"


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------


def _get_or_create_salt(salt_path: Path, logger: StructuredLogger) -> bytes:
    """Return the per-machine random salt, creating it on first run.

    Raises
    ------
    OSError
        If the salt file cannot be read or written.  The store refuses
        to start rather than fall back to a weak static salt.
    """
    if salt_path.exists():
        data: bytes = salt_path.read_bytes()
        if len(data) == _SALT_LENGTH:
            return data
        # Wrong length: previously stored values become unreadable.
        logger.warning(
            "Salt file has unexpected length (%d); regenerating.", len(data),
        )
    salt: bytes = os.urandom(_SALT_LENGTH)
    salt_path.parent.mkdir(parents=True, exist_ok=True)
    salt_path.write_bytes(salt)
    salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
    logger.info("Per-machine store salt created at %s.", salt_path)
    return salt


def derive_machine_key(
    namespace: StoreNamespace | str,
    salt_path: Path | str,
    iterations: int,
    logger: StructuredLogger,
) -> bytes:
    """Derive the AES-256 key for *namespace* from machine identity.

    The key is deterministic for a given (hostname, OS username,
    namespace, salt) tuple.  If the machine identity changes, values
    written before become undecryptable and read back as missing.

    Parameters
    ----------
    namespace:
        ``main`` or ``secure``.  Mixed into the password so the two
        partitions never share a key.
    salt_path:
        Location of the 32-byte per-machine salt file.
    iterations:
        PBKDF2 iteration count.
    logger:
        Logger used when the salt file is created or regenerated.

    Returns
    -------
    bytes
        A 32-byte key suitable for AES-256-GCM.
    """
    password: str = f"{socket.gethostname()}:{getpass.getuser()}:{namespace}"
    salt: bytes = _get_or_create_salt(Path(salt_path).expanduser(), logger)
    return PBKDF2(
        password=password,
        salt=salt,
        dkLen=_KEY_LENGTH,
        count=iterations,
        hmac_hash_module=SHA256,
    )


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class EncryptedKeyValueStore:
    """One encrypted namespace of the local ``kv_store`` table.

    Read failures (missing row, SQLite error, failed authentication,
    malformed JSON) all degrade to ``None``; write failures return
    ``False``.  Nothing here raises to the caller.

    Parameters
    ----------
    db:
        The ``DatabaseManager`` owning the SQLite connection.
    namespace:
        Which partition of ``kv_store`` this instance reads and writes.
    key:
        32-byte AES key for the namespace.  Production code passes
        :func:`derive_machine_key`; tests pass random bytes.
    logger:
        A ``StructuredLogger`` instance.
    """

    def __init__(
        self,
        db: DatabaseManager,
        namespace: StoreNamespace | str,
        key: bytes,
        logger: StructuredLogger,
    ) -> None:
        if len(key) != _KEY_LENGTH:
            raise ValueError(f"Store key must be {_KEY_LENGTH} bytes, got {len(key)}.")
        self._db: DatabaseManager = db
        self._namespace: StoreNamespace = StoreNamespace(namespace)
        self._key: bytes = key
        self._logger: StructuredLogger = logger

    @property
    def namespace(self) -> StoreNamespace:
        return self._namespace

    @property
    def write_lock(self):
        """The database write lock, for read-modify-write of one key."""
        return self._db.write_lock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_json(self, key: str) -> Optional[JsonValue]:
        """Return the decoded value stored under *key*, or ``None``."""
        try:
            row = self._db.sqlite.execute(
                "SELECT ciphertext, nonce, tag FROM kv_store "
                "WHERE namespace = ? AND key = ?",
                (str(self._namespace), key),
            ).fetchone()
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to read '%s' from local store: %s", key, exc,
                extra={"namespace": str(self._namespace)},
            )
            return None

        if row is None:
            return None

        try:
            cipher = AES.new(self._key, AES.MODE_GCM, nonce=row["nonce"])
            plaintext: bytes = cipher.decrypt_and_verify(row["ciphertext"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of '%s' failed (corrupted data or key changed): %s",
                key,
                exc,
                extra={"namespace": str(self._namespace)},
            )
            return None

        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._logger.warning("Stored value for '%s' is malformed: %s", key, exc)
            return None

    def set_json(self, key: str, value: JsonValue) -> bool:
        """Encrypt and upsert *value* under *key*.

        Returns
        -------
        bool
            ``True`` when the row was written.
        """
        try:
            plaintext: bytes = json.dumps(value, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            self._logger.error("Value for '%s' is not JSON-serialisable: %s", key, exc)
            return False

        cipher = AES.new(self._key, AES.MODE_GCM)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)

        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    """
                    INSERT INTO kv_store (namespace, key, ciphertext, nonce, tag)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, key) DO UPDATE SET
                        ciphertext = excluded.ciphertext,
                        nonce      = excluded.nonce,
                        tag        = excluded.tag,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (str(self._namespace), key, ciphertext, cipher.nonce, tag),
                )
                self._db.commit()
            return True
        except sqlite3.Error as exc:
            self._logger.error(
                "Failed to write '%s' to local store: %s", key, exc,
                extra={"namespace": str(self._namespace)},
            )
            return False

    def delete(self, key: str) -> bool:
        """Remove *key*.  Safe to call when the key does not exist."""
        try:
            with self._db.write_lock:
                self._db.sqlite.execute(
                    "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                    (str(self._namespace), key),
                )
                self._db.commit()
            return True
        except sqlite3.Error as exc:
            self._logger.error("Failed to delete '%s' from local store: %s", key, exc)
            return False

