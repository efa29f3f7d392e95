from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from rccarctl.core.connection import ConnectionManager
from rccarctl.core.events import EventBroadcaster
from rccarctl.core.model import (
    CharacteristicWritten,
    ConnectionState,
    ConnectionStateChanged,
    Event,
    ServicesDiscovered,
)
from rccarctl.core.profile import (
    RCCAR_MOVE_CHARACTERISTIC_UUID,
    RCCAR_SERVICE_UUID,
    RCCAR_SOUND_CHARACTERISTIC_UUID,
)


@dataclass(frozen=True)
class FakeCharacteristic:
    uuid: str


@dataclass
class FakeService:
    uuid: str
    characteristics: list[FakeCharacteristic] = field(default_factory=list)

    def get_characteristic(self, specifier: str) -> FakeCharacteristic | None:
        for characteristic in self.characteristics:
            if characteristic.uuid == specifier:
                return characteristic
        return None


def rccar_services(*, service: bool = True, move: bool = True, sound: bool = True) -> list[FakeService]:
    if not service:
        return [FakeService(uuid="0000180f-0000-1000-8000-00805f9b34fb")]
    characteristics = []
    if move:
        characteristics.append(FakeCharacteristic(RCCAR_MOVE_CHARACTERISTIC_UUID))
    if sound:
        characteristics.append(FakeCharacteristic(RCCAR_SOUND_CHARACTERISTIC_UUID))
    return [FakeService(uuid=RCCAR_SERVICE_UUID, characteristics=characteristics)]


class FakeSession:
    def __init__(self, address, on_event, services) -> None:
        self.address = address
        self.on_event = on_event
        self.services = services
        self.reconnect_result = True
        self.write_result = True
        # When set, writes are acknowledged immediately with this success flag.
        self.write_ack: bool | None = None
        self.reconnects = 0
        self.disconnects = 0
        self.closes = 0
        self.close_waits: list[bool] = []
        self.discovery_requests = 0
        self.writes: list[tuple[str, bytes]] = []
        self.reads: list[str] = []
        self.notify: list[tuple[str, bool]] = []

    def reconnect(self) -> bool:
        self.reconnects += 1
        return self.reconnect_result

    def disconnect(self) -> None:
        self.disconnects += 1

    def close(self, *, wait: bool = True) -> None:
        self.closes += 1
        self.close_waits.append(wait)

    def discover_services(self) -> bool:
        self.discovery_requests += 1
        return True

    def get_service(self, uuid):
        for service in self.services:
            if service.uuid == uuid:
                return service
        return None

    def write_characteristic(self, characteristic, payload: bytes) -> bool:
        self.writes.append((characteristic.uuid, payload))
        if self.write_result and self.write_ack is not None:
            self.on_event(CharacteristicWritten(uuid=characteristic.uuid, success=self.write_ack))
        return self.write_result

    def read_characteristic(self, characteristic) -> bool:
        self.reads.append(characteristic.uuid)
        return True

    def set_notify(self, characteristic, enabled: bool) -> bool:
        self.notify.append((characteristic.uuid, enabled))
        return True

    # Helpers simulating the BLE stack calling back.
    def connected(self) -> None:
        self.on_event(ConnectionStateChanged(ConnectionState.CONNECTED))

    def disconnected(self) -> None:
        self.on_event(ConnectionStateChanged(ConnectionState.DISCONNECTED))

    def discovered(self, success: bool = True) -> None:
        self.on_event(ServicesDiscovered(success=success))


class FakeTransport:
    def __init__(self) -> None:
        self.sessions: list[FakeSession] = []
        self.services = rccar_services()

    def open_session(self, address, on_event) -> FakeSession:
        session = FakeSession(address, on_event, self.services)
        self.sessions.append(session)
        return session


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list:
        return [event.kind for event in self.events]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def manager(transport: FakeTransport, recorder: EventRecorder) -> ConnectionManager:
    broadcaster = EventBroadcaster()
    broadcaster.subscribe(recorder)
    return ConnectionManager(transport=transport, broadcaster=broadcaster)


@pytest.fixture
def ready_manager(manager: ConnectionManager, transport: FakeTransport) -> ConnectionManager:
    manager.connect("AA:BB")
    session = transport.sessions[-1]
    session.connected()
    manager.process_events()
    session.discovered(True)
    manager.process_events()
    assert manager.is_ready
    return manager
