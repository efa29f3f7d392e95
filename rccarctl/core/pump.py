"""Background thread that keeps draining a single-consumer queue."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

LOGGER = logging.getLogger(__name__)

_POLL_INTERVAL_S = 0.1


class QueuePump:
    """Calls ``drain(timeout)`` in a daemon thread until stopped.

    ``drain`` blocks for at most ``timeout`` seconds waiting for the first
    item and returns the number of items handled.
    """

    def __init__(self, name: str, drain: Callable[[float], int]) -> None:
        self._name = name
        self._drain = drain
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        LOGGER.debug("%s started", self._name)

    def stop(self, timeout: float = 2.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stopping.set()
        if thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        LOGGER.debug("%s stopped", self._name)

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                self._drain(_POLL_INTERVAL_S)
            except Exception:
                LOGGER.exception("%s failed draining its queue", self._name)
