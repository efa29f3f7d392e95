"""Move/sound command channel and its dispatch to the peripheral."""

from __future__ import annotations

import logging
import queue

from rccarctl.core.connection import ConnectionManager
from rccarctl.core.model import Command, DispatchOutcome
from rccarctl.core.pump import QueuePump

LOGGER = logging.getLogger(__name__)


class CommandDispatcher:
    """Reads commands from its channel and writes them to the RC car.

    Commands arriving while the connection is not ready are dropped, not
    deferred. Writes are never retried.
    """

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager
        self._channel: queue.Queue[Command] = queue.Queue()
        self._pump = QueuePump("rccar-dispatch", self.process_commands)

    def submit(self, command: Command) -> None:
        self._channel.put(command)

    def process_commands(self, timeout: float = 0.0) -> int:
        handled = 0
        wait = timeout
        while True:
            try:
                command = self._channel.get(timeout=wait) if wait > 0 else self._channel.get_nowait()
            except queue.Empty:
                return handled
            self.dispatch(command)
            handled += 1
            wait = 0.0

    def dispatch(self, command: Command) -> DispatchOutcome:
        kind = command.kind.value
        with self._manager.lock:
            if not self._manager.is_ready:
                LOGGER.info("GATT not discovered, ignoring %s command", kind)
                return DispatchOutcome.NOT_READY

            characteristic = self._manager.profile.characteristic_for(command.kind)
            if characteristic is None:
                LOGGER.error("RC car %s characteristic unavailable, disconnecting", kind)
                self._manager.disconnect()
                return DispatchOutcome.MISSING_CHARACTERISTIC

            LOGGER.debug("car %s data: %s", kind, command.payload.hex())
            if not self._manager.write_characteristic(characteristic, command.payload):
                LOGGER.error("Write %s data %s failed", kind, command.payload.hex())
                return DispatchOutcome.REJECTED
        return DispatchOutcome.WRITTEN

    def start(self) -> None:
        self._pump.start()

    def stop(self) -> None:
        self._pump.stop()
