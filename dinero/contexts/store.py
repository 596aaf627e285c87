"""
Reducer Store.

A minimal observable state container: state changes only through
``dispatch(action)``, which runs a pure reducer and then notifies
subscribers with the new state.  Framework-agnostic; a UI layer
subscribes and re-renders.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, Optional, TypeVar

from dinero.logger import StructuredLogger

S = TypeVar("S")
A = TypeVar("A")

Listener = Callable[[S], None]


class Store(Generic[S, A]):
    """Holds state ``S`` and applies ``reducer(state, action) -> state``.

    Parameters
    ----------
    reducer:
        Pure function returning the next state.  Must not mutate its
        input.
    initial_state:
        State before the first dispatch.
    logger:
        Optional logger; a failing listener is logged and skipped so
        one subscriber cannot break the others.
    """

    def __init__(
        self,
        reducer: Callable[[S, A], S],
        initial_state: S,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._reducer = reducer
        self._state: S = initial_state
        self._listeners: list[Listener[S]] = []
        self._lock: threading.RLock = threading.RLock()
        self._logger = logger

    @property
    def state(self) -> S:
        with self._lock:
            return self._state

    def dispatch(self, action: A) -> S:
        """Apply *action* and notify listeners.  Returns the new state."""
        with self._lock:
            self._state = self._reducer(self._state, action)
            state = self._state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(state)
            except Exception:
                if self._logger is None:
                    raise
                self._logger.error(
                    "State listener failed after %s.", type(action).__name__, exc_info=True,
                )
        return state

    def subscribe(self, listener: Listener[S]) -> Callable[[], None]:
        """Register *listener*; the returned callable unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe


BackgroundRunner = Callable[[Callable[[], None]], None]


def run_in_daemon_thread(task: Callable[[], None]) -> None:
    """Default background runner: fire-and-forget on a daemon thread."""
    threading.Thread(target=task, name="ContextBackground", daemon=True).start()
