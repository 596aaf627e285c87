"""
Background Sync.

``SyncWorkerService`` runs :meth:`SyncService.sync_all` on a daemon
thread.  Between cycles it waits ``SYNC_INTERVAL_S``; every cycle that
ends with errors doubles the wait, up to ``SYNC_MAX_INTERVAL_S``, and a
clean cycle brings it back to the base interval.

Nothing is attempted while the device is offline or nobody is signed
in.  Dirty records keep their ``needs_sync`` flag and go out with the
first cycle that can reach the server.
"""

from __future__ import annotations

import threading
from typing import Optional

from dinero.auth import SessionManager
from dinero.config import AppConfig
from dinero.database import DatabaseManager
from dinero.logger import StructuredLogger
from dinero.models.common import SyncReport
from dinero.services.base_service import BaseService
from dinero.services.sync_service import SyncService

# Seconds stop() waits for the thread before giving up on it.
_JOIN_TIMEOUT_S = 10.0


class SyncWorkerService(BaseService):
    """Periodic driver for ``SyncService.sync_all``.

    :meth:`trigger` cuts the current wait short, which is how a "sync
    now" action reaches the worker.  Overlap with a sync started from
    elsewhere is handled by ``sync_all`` itself, which skips when a pass
    is already running.
    """

    def __init__(
        self,
        sync_service: SyncService,
        db: DatabaseManager,
        session: SessionManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._sync_service = sync_service
        self._db = db
        self._session = session
        self._interval_s = float(config.SYNC_INTERVAL_S)
        self._max_interval_s = float(config.SYNC_MAX_INTERVAL_S)
        self._failed_cycles = 0
        self._last_report: Optional[SyncReport] = None
        self._thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._wakeup = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_report(self) -> Optional[SyncReport]:
        """The last cycle that actually ran, or ``None``."""
        return self._last_report

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._wakeup.clear()
        self._failed_cycles = 0
        self._thread = threading.Thread(target=self._loop, name="dinero-sync", daemon=True)
        self._thread.start()
        self._logger.info("Sync worker started.", extra={"interval_s": self._interval_s})

    def stop(self) -> None:
        thread, self._thread = self._thread, None
        if thread is None:
            return
        self._stopping.set()
        self._wakeup.set()
        thread.join(timeout=_JOIN_TIMEOUT_S)
        if thread.is_alive():
            self._logger.warning("Sync worker did not exit within %.0f s.", _JOIN_TIMEOUT_S)
        else:
            self._logger.info("Sync worker stopped.")

    def trigger(self) -> None:
        self._wakeup.set()

    def run_cycle(self) -> Optional[SyncReport]:
        """Run one sync pass on the calling thread.

        Returns the pass's report, or ``None`` when it was not attempted
        or raised.  Only passes that ran count toward the backoff.
        """
        if not (self._db.is_online and self._session.is_authenticated):
            self._logger.debug("Sync cycle skipped (offline or signed out).")
            return None

        try:
            report = self._sync_service.sync_all()
        except Exception:
            self._failed_cycles += 1
            self._logger.warning(
                "Sync cycle raised.",
                exc_info=True,
                extra={"failed_cycles": self._failed_cycles},
            )
            return None

        if report.skipped:
            return report

        self._last_report = report
        if report.ok:
            self._failed_cycles = 0
        else:
            self._failed_cycles += 1
            self._logger.warning(
                "Sync cycle finished with %d error(s).",
                len(report.errors),
                extra={"failed_cycles": self._failed_cycles},
            )
        return report

    def _calculate_backoff_interval(self) -> float:
        """Wait before the next cycle: base interval doubled per failed cycle, capped."""
        # The exponent cap only keeps the multiplication small.
        factor = 2 ** min(self._failed_cycles, 16)
        return min(self._interval_s * factor, self._max_interval_s)

    def _loop(self) -> None:
        try:
            while not self._stopping.is_set():
                self._wakeup.wait(self._calculate_backoff_interval())
                self._wakeup.clear()
                if self._stopping.is_set():
                    return
                self.run_cycle()
        except Exception:
            self._logger.critical("Sync worker thread died.", exc_info=True)
