"""Core data models shared by the connection manager, dispatcher, and transports."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class CommandKind(Enum):
    MOVE = "move"
    SOUND = "sound"


class EventKind(Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SERVICES_DISCOVERED = "services_discovered"
    DISCOVERY_FAILED = "discovery_failed"
    DATA_AVAILABLE = "data_available"
    WRITE_COMPLETED = "write_completed"
    WRITE_FAILED = "write_failed"


class DispatchOutcome(Enum):
    WRITTEN = "written"
    NOT_READY = "not_ready"
    MISSING_CHARACTERISTIC = "missing_characteristic"
    REJECTED = "rejected"
    UNCONFIRMED = "unconfirmed"


@dataclass(frozen=True)
class Command:
    kind: CommandKind
    payload: bytes

    @classmethod
    def move(cls, payload: bytes) -> Command:
        return cls(kind=CommandKind.MOVE, payload=bytes(payload))

    @classmethod
    def sound(cls, payload: bytes) -> Command:
        return cls(kind=CommandKind.SOUND, payload=bytes(payload))


@dataclass(frozen=True)
class Event:
    """Notification published to observers of the connection lifecycle."""

    kind: EventKind
    data: bytes | None = None


# Events posted by a transport session. They are queued and applied by the
# connection manager, never on the transport's own thread.


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: ConnectionState


@dataclass(frozen=True)
class ServicesDiscovered:
    success: bool


@dataclass(frozen=True)
class CharacteristicWritten:
    uuid: str
    success: bool


@dataclass(frozen=True)
class CharacteristicValue:
    uuid: str
    data: bytes


TransportEvent = Union[
    ConnectionStateChanged,
    ServicesDiscovered,
    CharacteristicWritten,
    CharacteristicValue,
]
