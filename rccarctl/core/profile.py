"""RC car GATT profile: fixed identifiers and resolution from a session."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rccarctl.core.errors import CharacteristicNotFoundError, ServiceNotFoundError
from rccarctl.core.model import CommandKind
from rccarctl.transports.base import GattCharacteristic, GattService, Session

# Shared with the car firmware.
RCCAR_SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
RCCAR_MOVE_CHARACTERISTIC_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"
RCCAR_SOUND_CHARACTERISTIC_UUID = "0000ffe2-0000-1000-8000-00805f9b34fb"

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class GattProfile:
    move: GattCharacteristic
    sound: GattCharacteristic | None = None

    def characteristic_for(self, kind: CommandKind) -> GattCharacteristic | None:
        if kind is CommandKind.MOVE:
            return self.move
        return self.sound


def _lookup(service: GattService, uuid: str, label: str) -> GattCharacteristic:
    characteristic = service.get_characteristic(uuid)
    if characteristic is None:
        raise CharacteristicNotFoundError(f"RC car {label} characteristic {uuid} not found")
    return characteristic


def resolve_profile(session: Session) -> GattProfile:
    """Resolve the move and sound characteristics of the RC car service.

    Only the move characteristic gates readiness. A missing sound
    characteristic is logged and leaves ``GattProfile.sound`` unset.

    Raises:
        ServiceNotFoundError: the RC car service was not discovered.
        CharacteristicNotFoundError: the move characteristic is missing.
    """
    service = session.get_service(RCCAR_SERVICE_UUID)
    if service is None:
        LOGGER.error("RC car service %s not found", RCCAR_SERVICE_UUID)
        raise ServiceNotFoundError(f"RC car service {RCCAR_SERVICE_UUID} not found")

    move_error: CharacteristicNotFoundError | None = None
    move: GattCharacteristic | None = None
    try:
        move = _lookup(service, RCCAR_MOVE_CHARACTERISTIC_UUID, "move")
    except CharacteristicNotFoundError as exc:
        LOGGER.error("%s", exc)
        move_error = exc

    sound: GattCharacteristic | None = None
    try:
        sound = _lookup(service, RCCAR_SOUND_CHARACTERISTIC_UUID, "sound")
    except CharacteristicNotFoundError as exc:
        LOGGER.error("%s", exc)

    if move_error is not None:
        raise move_error
    return GattProfile(move=move, sound=sound)
