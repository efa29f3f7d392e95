from __future__ import annotations

import logging

import pytest
from conftest import FakeTransport, rccar_services

from rccarctl.core.connection import ConnectionManager
from rccarctl.core.dispatcher import CommandDispatcher
from rccarctl.core.model import Command, ConnectionState, DispatchOutcome
from rccarctl.core.profile import RCCAR_MOVE_CHARACTERISTIC_UUID, RCCAR_SOUND_CHARACTERISTIC_UUID


def test_move_command_writes_to_move_characteristic(ready_manager: ConnectionManager, transport: FakeTransport) -> None:
    dispatcher = CommandDispatcher(ready_manager)

    outcome = dispatcher.dispatch(Command.move(bytes([0x01, 0x02])))

    assert outcome is DispatchOutcome.WRITTEN
    assert transport.sessions[0].writes == [(RCCAR_MOVE_CHARACTERISTIC_UUID, b"\x01\x02")]


def test_sound_command_writes_to_sound_characteristic(
    ready_manager: ConnectionManager, transport: FakeTransport
) -> None:
    dispatcher = CommandDispatcher(ready_manager)

    dispatcher.dispatch(Command.sound(b"\x01"))

    assert transport.sessions[0].writes == [(RCCAR_SOUND_CHARACTERISTIC_UUID, b"\x01")]


def test_commands_dropped_when_not_ready(manager: ConnectionManager, transport: FakeTransport) -> None:
    dispatcher = CommandDispatcher(manager)
    manager.connect("AA:BB")

    assert dispatcher.dispatch(Command.move(b"\x01")) is DispatchOutcome.NOT_READY
    assert dispatcher.dispatch(Command.sound(b"\x01")) is DispatchOutcome.NOT_READY

    session = transport.sessions[0]
    assert session.writes == []
    assert session.disconnects == 0
    assert manager.state is ConnectionState.CONNECTING


def test_missing_sound_characteristic_disconnects_once(manager: ConnectionManager, transport: FakeTransport) -> None:
    transport.services = rccar_services(sound=False)
    manager.connect("AA:BB")
    session = transport.sessions[0]
    session.connected()
    manager.process_events()
    session.discovered(True)
    manager.process_events()
    assert manager.is_ready

    dispatcher = CommandDispatcher(manager)
    outcome = dispatcher.dispatch(Command.sound(b"\x01"))

    assert outcome is DispatchOutcome.MISSING_CHARACTERISTIC
    assert session.disconnects == 1
    assert session.writes == []
    assert not manager.is_ready

    # Readiness is gone, so the follow-up command is simply dropped.
    assert dispatcher.dispatch(Command.move(b"\x01")) is DispatchOutcome.NOT_READY
    assert session.disconnects == 1


def test_rejected_write_is_logged_without_disconnect(
    ready_manager: ConnectionManager, transport: FakeTransport, caplog: pytest.LogCaptureFixture
) -> None:
    session = transport.sessions[0]
    session.write_result = False
    dispatcher = CommandDispatcher(ready_manager)

    with caplog.at_level(logging.ERROR, logger="rccarctl.core.dispatcher"):
        outcome = dispatcher.dispatch(Command.move(b"\xab\xcd"))

    assert outcome is DispatchOutcome.REJECTED
    assert len(session.writes) == 1
    assert session.disconnects == 0
    assert ready_manager.is_ready
    assert any("abcd" in record.getMessage() for record in caplog.records)


def test_channel_drains_in_order(ready_manager: ConnectionManager, transport: FakeTransport) -> None:
    dispatcher = CommandDispatcher(ready_manager)
    dispatcher.submit(Command.move(b"\x01"))
    dispatcher.submit(Command.sound(b"\x02"))
    dispatcher.submit(Command.move(b"\x03"))

    assert dispatcher.process_commands() == 3
    assert [payload for _, payload in transport.sessions[0].writes] == [b"\x01", b"\x02", b"\x03"]
    assert dispatcher.process_commands() == 0


def test_commands_submitted_before_ready_are_lost(manager: ConnectionManager, transport: FakeTransport) -> None:
    dispatcher = CommandDispatcher(manager)
    manager.connect("AA:BB")
    dispatcher.submit(Command.move(b"\x01"))
    dispatcher.process_commands()

    session = transport.sessions[0]
    session.connected()
    manager.process_events()
    session.discovered(True)
    manager.process_events()
    dispatcher.process_commands()

    assert manager.is_ready
    assert session.writes == []
