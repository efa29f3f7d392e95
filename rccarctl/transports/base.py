"""Transport interfaces.

A transport opens one session per peripheral address. Sessions report
asynchronous outcomes by calling the ``on_event`` callback they were opened
with, from whatever thread the BLE stack uses.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from rccarctl.core.model import TransportEvent

EventCallback = Callable[[TransportEvent], None]


class GattCharacteristic(Protocol):
    uuid: str


class GattService(Protocol):
    uuid: str

    @property
    def characteristics(self) -> Sequence[Any]: ...

    def get_characteristic(self, specifier: str) -> GattCharacteristic | None:
        """Return the characteristic with the given UUID, if present."""


class Session(Protocol):
    address: str

    @property
    def services(self) -> Sequence[GattService]: ...

    def reconnect(self) -> bool:
        """Resume the connection; False if the stack refuses immediately."""

    def disconnect(self) -> None:
        """Request a disconnect; the outcome arrives as an event."""

    def close(self, *, wait: bool = True) -> None:
        """Release the session; with ``wait=False`` only schedule the release."""

    def discover_services(self) -> bool:
        """Request service discovery; the outcome arrives as an event."""

    def get_service(self, uuid: str) -> GattService | None:
        """Look up a discovered service."""

    def write_characteristic(self, characteristic: GattCharacteristic, payload: bytes) -> bool:
        """Queue a write; False if the stack rejects it."""

    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        """Queue a read; the value arrives as an event."""

    def set_notify(self, characteristic: GattCharacteristic, enabled: bool) -> bool:
        """Enable or disable value notifications."""


class Transport(Protocol):
    def open_session(self, address: str, on_event: EventCallback) -> Session:
        """Open a session to ``address`` and start connecting."""
