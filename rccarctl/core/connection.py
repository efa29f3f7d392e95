"""Connection lifecycle for a single RC car peripheral."""

from __future__ import annotations

import functools
import logging
import queue
import threading

from rccarctl.core.errors import ConnectFailedError, NotInitializedError, ProfileError, TransportError
from rccarctl.core.events import EventBroadcaster
from rccarctl.core.model import (
    CharacteristicValue,
    CharacteristicWritten,
    ConnectionState,
    ConnectionStateChanged,
    Event,
    EventKind,
    ServicesDiscovered,
    TransportEvent,
)
from rccarctl.core.profile import GattProfile, resolve_profile
from rccarctl.core.pump import QueuePump
from rccarctl.transports.base import GattCharacteristic, GattService, Session, Transport

LOGGER = logging.getLogger(__name__)


class ConnectionManager:
    """Owns the session, connection state, and resolved profile.

    Transport callbacks are queued and applied by ``process_events`` (or the
    background pump started with ``start``). State, profile, and session are
    only touched while holding ``lock``; readiness is derived from them.
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        broadcaster: EventBroadcaster | None = None,
        report_discovery_failures: bool = False,
    ) -> None:
        self.lock = threading.RLock()
        self.broadcaster = broadcaster or EventBroadcaster()
        self.report_discovery_failures = report_discovery_failures
        self._transport = transport
        self._inbox: queue.Queue[tuple[int, TransportEvent]] = queue.Queue()
        self._pump = QueuePump("rccar-connection", self.process_events)
        self._session: Session | None = None
        self._session_id = 0
        self._address: str | None = None
        self._state = ConnectionState.DISCONNECTED
        self._profile: GattProfile | None = None

    @property
    def state(self) -> ConnectionState:
        with self.lock:
            return self._state

    @property
    def address(self) -> str | None:
        with self.lock:
            return self._address

    @property
    def profile(self) -> GattProfile | None:
        with self.lock:
            return self._profile

    @property
    def is_ready(self) -> bool:
        with self.lock:
            return self._state is ConnectionState.CONNECTED and self._profile is not None

    def connect(self, address: str) -> None:
        """Start connecting to ``address``; the result arrives as events.

        Raises:
            NotInitializedError: no transport was provided.
            ConnectFailedError: the session could not be opened or resumed.
        """
        with self.lock:
            self._profile = None
            if self._transport is None:
                LOGGER.warning("Bluetooth transport not initialized")
                raise NotInitializedError("Bluetooth transport is not initialized")
            if not address:
                LOGGER.warning("Unspecified peripheral address")
                raise ConnectFailedError("Unspecified peripheral address")

            if self._session is not None and address == self._address:
                LOGGER.debug("Trying to reuse existing session for %s", address)
                if not self._session.reconnect():
                    LOGGER.warning("Could not resume session for %s", address)
                    raise ConnectFailedError(f"Could not resume session for {address}")
                self._state = ConnectionState.CONNECTING
                return

            if self._session is not None:
                LOGGER.info("Releasing session for %s in favour of %s", self._address, address)
                self._release_session().close(wait=False)
                self._state = ConnectionState.DISCONNECTED

            self._session_id += 1
            on_event = functools.partial(self._enqueue, self._session_id)
            try:
                session = self._transport.open_session(address, on_event)
            except TransportError as exc:
                LOGGER.warning("Could not open session for %s: %s", address, exc)
                raise ConnectFailedError(f"Could not open session for {address}: {exc}") from exc

            LOGGER.debug("Trying to create a new connection to %s", address)
            self._session = session
            self._address = address
            self._state = ConnectionState.CONNECTING

    def disconnect(self) -> None:
        """Request a disconnect; the state change arrives as an event."""
        with self.lock:
            self._profile = None
            if self._transport is None or self._session is None:
                LOGGER.warning("No open session to disconnect")
                return
            self._session.disconnect()

    def close(self) -> None:
        """Release the current session, if any, waiting for the link to drop."""
        with self.lock:
            if self._session is None:
                return
            session = self._release_session()
            self._state = ConnectionState.DISCONNECTED
        session.close()

    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        with self.lock:
            if self._transport is None or self._session is None:
                LOGGER.warning("No open session to read from")
                return False
            return self._session.read_characteristic(characteristic)

    def set_characteristic_notification(self, characteristic: GattCharacteristic, enabled: bool) -> bool:
        with self.lock:
            if self._transport is None or self._session is None:
                LOGGER.warning("No open session to configure notifications on")
                return False
            return self._session.set_notify(characteristic, enabled)

    def write_characteristic(self, characteristic: GattCharacteristic, payload: bytes) -> bool:
        with self.lock:
            if self._session is None:
                return False
            return self._session.write_characteristic(characteristic, payload)

    def supported_services(self) -> list[GattService] | None:
        """Services discovered on the open session; call after discovery completes."""
        with self.lock:
            if self._session is None:
                return None
            return list(self._session.services)

    def process_events(self, timeout: float = 0.0) -> int:
        """Apply queued transport events, waiting up to ``timeout`` for the first one."""
        handled = 0
        wait = timeout
        while True:
            try:
                if wait > 0:
                    session_id, event = self._inbox.get(timeout=wait)
                else:
                    session_id, event = self._inbox.get_nowait()
            except queue.Empty:
                return handled
            self._handle(session_id, event)
            handled += 1
            wait = 0.0

    def start(self) -> None:
        self._pump.start()

    def stop(self) -> None:
        self._pump.stop()

    def _enqueue(self, session_id: int, event: TransportEvent) -> None:
        self._inbox.put((session_id, event))

    def _release_session(self) -> Session:
        session = self._session
        self._session = None
        self._profile = None
        return session

    def _handle(self, session_id: int, event: TransportEvent) -> None:
        with self.lock:
            if self._session is None or session_id != self._session_id:
                LOGGER.debug("Ignoring %s from stale session %d", event, session_id)
                return
            if isinstance(event, ConnectionStateChanged):
                self._on_connection_state_changed(event.state)
            elif isinstance(event, ServicesDiscovered):
                self._on_services_discovered(event.success)
            elif isinstance(event, CharacteristicWritten):
                if event.success:
                    self.broadcaster.publish(Event(EventKind.WRITE_COMPLETED))
                else:
                    LOGGER.error("Write to characteristic %s was rejected", event.uuid)
                    self.broadcaster.publish(Event(EventKind.WRITE_FAILED))
            elif isinstance(event, CharacteristicValue):
                self.broadcaster.publish(Event(EventKind.DATA_AVAILABLE, data=event.data))

    def _on_connection_state_changed(self, state: ConnectionState) -> None:
        if state is ConnectionState.CONNECTED:
            self._state = ConnectionState.CONNECTED
            self._profile = None
            LOGGER.info("Connected to GATT server at %s", self._address)
            self.broadcaster.publish(Event(EventKind.CONNECTED))
            requested = self._session.discover_services()
            LOGGER.info("Attempting to start service discovery: %s", requested)
        elif state is ConnectionState.DISCONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self._profile = None
            LOGGER.info("Disconnected from GATT server at %s", self._address)
            self.broadcaster.publish(Event(EventKind.DISCONNECTED))
        else:
            self._state = state

    def _on_services_discovered(self, success: bool) -> None:
        if self._state is not ConnectionState.CONNECTED:
            LOGGER.debug("Ignoring service discovery result while %s", self._state.value)
            return
        if not success:
            LOGGER.warning("Service discovery failed for %s", self._address)
            self._report_discovery_failure()
            return

        try:
            profile = resolve_profile(self._session)
        except ProfileError as exc:
            LOGGER.error("This BLE device is not compatible: %s", exc)
            self._report_discovery_failure()
            return

        self._profile = profile
        LOGGER.info("RC car profile resolved for %s", self._address)
        self.broadcaster.publish(Event(EventKind.SERVICES_DISCOVERED))

    def _report_discovery_failure(self) -> None:
        if self.report_discovery_failures:
            self.broadcaster.publish(Event(EventKind.DISCOVERY_FAILED))
