"""Common base for the sync and auth services."""

from __future__ import annotations

from dinero.logger import StructuredLogger


class BaseService:
    """Holds the component logger handed in by the container."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger = logger
