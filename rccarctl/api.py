"""Stable public API for building tooling on top of rccarctl.

This module is the supported integration surface for third-party callers
(GUIs, gamepad bridges, scripts). Avoid importing from internal modules
unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Iterator
from types import TracebackType

from rccarctl.core.connection import ConnectionManager
from rccarctl.core.dispatcher import CommandDispatcher
from rccarctl.core.errors import (
    CharacteristicNotFoundError,
    ConfigLoadError,
    ConfigValidationError,
    ConnectFailedError,
    NotInitializedError,
    PresetResolutionError,
    ProfileError,
    RCCarError,
    ServiceNotFoundError,
    TransportConnectError,
    TransportError,
    WriteRejectedError,
)
from rccarctl.core.events import EventBroadcaster
from rccarctl.core.model import (
    Command,
    CommandKind,
    ConnectionState,
    DispatchOutcome,
    Event,
    EventKind,
)
from rccarctl.core.profile import (
    RCCAR_MOVE_CHARACTERISTIC_UUID,
    RCCAR_SERVICE_UUID,
    RCCAR_SOUND_CHARACTERISTIC_UUID,
    GattProfile,
)
from rccarctl.core.settings import Settings, load_settings, normalize_hex
from rccarctl.transports.base import GattService, Transport
from rccarctl.transports.ble_gatt import BLEGATTTransport

__all__ = [
    "RCCarError",
    "NotInitializedError",
    "ConnectFailedError",
    "ProfileError",
    "ServiceNotFoundError",
    "CharacteristicNotFoundError",
    "WriteRejectedError",
    "ConfigLoadError",
    "ConfigValidationError",
    "PresetResolutionError",
    "TransportError",
    "TransportConnectError",
    "Command",
    "CommandKind",
    "ConnectionState",
    "DispatchOutcome",
    "Event",
    "EventKind",
    "GattProfile",
    "RCCAR_SERVICE_UUID",
    "RCCAR_MOVE_CHARACTERISTIC_UUID",
    "RCCAR_SOUND_CHARACTERISTIC_UUID",
    "Settings",
    "BLEGATTTransport",
    "Client",
]

_WAIT_SLICE_S = 0.05


class Client:
    """Public client driving one RC car connection.

    A `Client` wires configuration, the event broadcaster, the connection
    manager, and the command dispatcher. Use it as a context manager so the
    BLE session is always released::

        with Client() as client:
            client.connect("AA:BB:CC:DD:EE:FF")
            if client.wait_until_ready():
                client.send(CommandKind.MOVE, "forward")
    """

    def __init__(
        self,
        *,
        transport: Transport | None = None,
        settings: Settings | None = None,
    ) -> None:
        if settings is None:
            loaded = load_settings()
            settings = loaded.settings
            self.load_warnings: tuple[str, ...] = loaded.warnings
        else:
            self.load_warnings = ()
        self.settings = settings
        self._owns_transport = transport is None
        self._transport = transport or BLEGATTTransport(
            timeout_s=settings.connect_timeout_s,
            write_with_response=settings.write_with_response,
        )
        self.events = EventBroadcaster()
        self.manager = ConnectionManager(
            transport=self._transport,
            broadcaster=self.events,
            report_discovery_failures=settings.report_discovery_failures,
        )
        self.dispatcher = CommandDispatcher(self.manager)
        self._running = False

    def __enter__(self) -> Client:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def state(self) -> ConnectionState:
        return self.manager.state

    @property
    def is_ready(self) -> bool:
        return self.manager.is_ready

    def connect(self, address: str | None = None) -> None:
        target = address or self.settings.address
        if not target:
            raise ConnectFailedError("No peripheral address given and none configured")
        self.manager.connect(target)

    def disconnect(self) -> None:
        self.manager.disconnect()

    def close(self) -> None:
        self.stop()
        self.manager.close()
        if self._owns_transport:
            shutdown = getattr(self._transport, "shutdown", None)
            if shutdown is not None:
                shutdown()

    def start(self) -> None:
        """Apply transport events and queued commands in background threads."""
        self.manager.start()
        self.dispatcher.start()
        self._running = True

    def stop(self) -> None:
        self.dispatcher.stop()
        self.manager.stop()
        self._running = False

    def wait_for(self, *kinds: EventKind, timeout: float) -> Event | None:
        """Return the first event of one of ``kinds`` published within ``timeout``."""
        with self._collect(*kinds) as seen:
            return self._first(seen, timeout)

    @contextlib.contextmanager
    def _collect(self, *kinds: EventKind) -> Iterator[list[Event]]:
        seen: list[Event] = []
        unsubscribe = self.events.subscribe(lambda event: seen.append(event) if event.kind in kinds else None)
        try:
            yield seen
        finally:
            unsubscribe()

    def _first(self, seen: list[Event], timeout: float) -> Event | None:
        deadline = time.monotonic() + timeout
        while not seen:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            if self._running:
                time.sleep(min(remaining, _WAIT_SLICE_S))
            else:
                self.manager.process_events(timeout=min(remaining, _WAIT_SLICE_S))
        return seen[0]

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        if self.is_ready:
            return True
        self.wait_for(
            EventKind.SERVICES_DISCOVERED,
            EventKind.DISCOVERY_FAILED,
            EventKind.DISCONNECTED,
            timeout=self.settings.ready_timeout_s if timeout is None else timeout,
        )
        return self.is_ready

    def list_presets(self) -> dict[CommandKind, tuple[str, ...]]:
        return {kind: tuple(sorted(self.settings.presets_for(kind))) for kind in CommandKind}

    def payload_for(self, kind: CommandKind, value: str, *, raw: bool = False) -> bytes:
        if raw:
            try:
                return normalize_hex(value, context=f"{kind.value} payload")
            except ConfigValidationError as exc:
                raise PresetResolutionError(str(exc)) from exc

        presets = self.settings.presets_for(kind)
        payload = presets.get(value)
        if payload is None:
            available = ", ".join(sorted(presets)) or "<none>"
            raise PresetResolutionError(
                f"Unknown {kind.value} preset '{value}'. Available: {available}"
            )
        return payload

    def submit(self, kind: CommandKind, payload: bytes) -> None:
        """Queue a command; it is dropped if the car is not ready when dispatched."""
        self.dispatcher.submit(Command(kind=kind, payload=bytes(payload)))

    def flush(self) -> int:
        return self.dispatcher.process_commands()

    def send(self, kind: CommandKind, value: str, *, raw: bool = False) -> DispatchOutcome:
        payload = self.payload_for(kind, value, raw=raw)
        return self.dispatcher.dispatch(Command(kind=kind, payload=payload))

    def send_confirmed(
        self,
        kind: CommandKind,
        value: str,
        *,
        raw: bool = False,
        timeout: float | None = None,
    ) -> DispatchOutcome:
        """Send a command and wait until the peripheral acknowledges the write.

        Returns ``REJECTED`` when the write fails on the link and ``UNCONFIRMED``
        when no acknowledgement arrives before ``timeout`` or a disconnect.
        """
        payload = self.payload_for(kind, value, raw=raw)
        if timeout is None:
            timeout = self.settings.connect_timeout_s
        with self._collect(EventKind.WRITE_COMPLETED, EventKind.WRITE_FAILED, EventKind.DISCONNECTED) as seen:
            outcome = self.dispatcher.dispatch(Command(kind=kind, payload=payload))
            if outcome is not DispatchOutcome.WRITTEN:
                return outcome
            event = self._first(seen, timeout)
        if event is None or event.kind is EventKind.DISCONNECTED:
            return DispatchOutcome.UNCONFIRMED
        if event.kind is EventKind.WRITE_FAILED:
            return DispatchOutcome.REJECTED
        return DispatchOutcome.WRITTEN

    def supported_services(self) -> list[GattService] | None:
        return self.manager.supported_services()
