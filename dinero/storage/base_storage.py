"""
Base Record Storage.

Shared plumbing for the storage services that keep a list of syncable
records under one logical key: load-and-validate, serialise-and-write,
and the injectable clock.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import ValidationError

from dinero.logger import StructuredLogger
from dinero.models.common import SyncableEntity
from dinero.storage.encrypted_store import EncryptedKeyValueStore
from dinero.utils.general import utc_now

E = TypeVar("E", bound=SyncableEntity)

Clock = Callable[[], datetime]


class BaseRecordStorage(Generic[E]):
    """Read/write a JSON list of ``E`` records stored under a single key.

    Subclasses set ``_model`` and hold ``self.lock`` around every
    read-modify-write so a sync thread and a caller thread never
    interleave on the same list.

    Parameters
    ----------
    store:
        The encrypted ``main`` namespace.
    logger:
        A ``StructuredLogger`` instance.
    clock:
        Returns the current time.  Defaults to timezone-aware UTC now.
    """

    _model: type[E]

    def __init__(
        self,
        store: EncryptedKeyValueStore,
        logger: StructuredLogger,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store: EncryptedKeyValueStore = store
        self._logger: StructuredLogger = logger
        self._clock: Clock = clock or utc_now

    @property
    def lock(self):
        return self._store.write_lock

    def _now(self) -> datetime:
        return self._clock()

    def _load(self, key: str) -> list[E]:
        """Decode every valid record under *key*; malformed ones are skipped."""
        raw = self._store.get_json(key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            self._logger.warning(
                "Expected a list under '%s', found %s; treating as empty.",
                key,
                type(raw).__name__,
            )
            return []

        records: list[E] = []
        for item in raw:
            try:
                records.append(self._model.model_validate(item))
            except ValidationError as exc:
                self._logger.warning(
                    "Skipping malformed %s record under '%s': %s",
                    self._model.__name__,
                    key,
                    exc.errors()[0]["msg"] if exc.errors() else exc,
                )
        return records

    def _dump(self, key: str, records: list[E]) -> bool:
        return self._store.set_json(key, [r.model_dump(mode="json") for r in records])

    @staticmethod
    def _index_of(records: list[E], record_id: str) -> int:
        for i, record in enumerate(records):
            if record.id == record_id:
                return i
        return -1
