"""BLE GATT transport implementation backed by bleak.

bleak is asyncio based while the connection manager is not, so every
transport owns one event loop running in a daemon thread. Session methods
schedule coroutines on that loop and return immediately; outcomes are
reported through the session's ``on_event`` callback from the loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine, Sequence
from typing import Any

from rccarctl.core.errors import TransportConnectError
from rccarctl.core.model import (
    CharacteristicValue,
    CharacteristicWritten,
    ConnectionState,
    ConnectionStateChanged,
    ServicesDiscovered,
)
from rccarctl.transports.base import EventCallback, GattCharacteristic, GattService

LOGGER = logging.getLogger(__name__)

_LOOP_START_TIMEOUT_S = 5.0


async def _drain() -> None:
    current = asyncio.current_task()
    pending = [task for task in asyncio.all_tasks() if task is not current]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


class BleakSession:
    def __init__(
        self,
        address: str,
        client_cls: Any,
        loop: asyncio.AbstractEventLoop,
        on_event: EventCallback,
        *,
        timeout_s: float,
        write_with_response: bool,
    ) -> None:
        self.address = address
        self._loop = loop
        self._on_event = on_event
        self._timeout_s = timeout_s
        self._write_with_response = write_with_response
        self._closed = False
        self._link_up = False
        self._services: Any = None
        self._client = client_cls(
            address,
            disconnected_callback=self._handle_disconnected,
            timeout=timeout_s,
        )

    @property
    def services(self) -> Sequence[GattService]:
        if self._services is None:
            return []
        return list(self._services)

    def reconnect(self) -> bool:
        return self._schedule(self._connect())

    def disconnect(self) -> None:
        self._schedule(self._disconnect())

    def close(self, *, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            future = asyncio.run_coroutine_threadsafe(self._release(), self._loop)
        except RuntimeError as exc:
            LOGGER.warning("BLE event loop gone while closing %s: %s", self.address, exc)
            return
        if not wait:
            return
        try:
            future.result(timeout=self._timeout_s)
        except Exception as exc:
            LOGGER.warning("Error releasing BLE session for %s: %s", self.address, exc)

    def discover_services(self) -> bool:
        return self._schedule(self._discover())

    def get_service(self, uuid: str) -> GattService | None:
        if self._services is None:
            return None
        return self._services.get_service(uuid)

    def write_characteristic(self, characteristic: GattCharacteristic, payload: bytes) -> bool:
        if not self._link_up:
            return False
        return self._schedule(self._write(characteristic, bytes(payload)))

    def read_characteristic(self, characteristic: GattCharacteristic) -> bool:
        if not self._link_up:
            return False
        return self._schedule(self._read(characteristic))

    def set_notify(self, characteristic: GattCharacteristic, enabled: bool) -> bool:
        if not self._link_up:
            return False
        return self._schedule(self._set_notify(characteristic, enabled))

    def _schedule(self, coro: Coroutine[Any, Any, None]) -> bool:
        if self._closed:
            coro.close()
            return False
        try:
            asyncio.run_coroutine_threadsafe(coro, self._loop)
        except RuntimeError as exc:
            coro.close()
            LOGGER.warning("BLE event loop unavailable for %s: %s", self.address, exc)
            return False
        return True

    def _handle_disconnected(self, _client: Any) -> None:
        self._mark_disconnected()

    def _mark_disconnected(self) -> None:
        if not self._link_up:
            return
        self._link_up = False
        self._services = None
        self._on_event(ConnectionStateChanged(ConnectionState.DISCONNECTED))

    async def _connect(self) -> None:
        if self._client.is_connected:
            # Link kept up after a failed discovery; bleak refuses a second connect.
            self._link_up = True
            self._on_event(ConnectionStateChanged(ConnectionState.CONNECTED))
            return
        try:
            await self._client.connect()
        except Exception as exc:
            LOGGER.warning("BLE connect failed for %s: %s", self.address, exc)
            self._on_event(ConnectionStateChanged(ConnectionState.DISCONNECTED))
            return
        self._link_up = True
        self._on_event(ConnectionStateChanged(ConnectionState.CONNECTED))

    async def _disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except Exception as exc:
            LOGGER.warning("BLE disconnect failed for %s: %s", self.address, exc)
        self._mark_disconnected()

    async def _release(self) -> None:
        if self._client.is_connected:
            await self._client.disconnect()
        self._link_up = False
        self._services = None

    async def _discover(self) -> None:
        # bleak resolves the service tree while connecting.
        try:
            services = self._client.services
        except Exception as exc:
            LOGGER.warning("Service discovery failed for %s: %s", self.address, exc)
            self._on_event(ServicesDiscovered(success=False))
            return
        self._services = services
        self._on_event(ServicesDiscovered(success=services is not None))

    async def _write(self, characteristic: GattCharacteristic, payload: bytes) -> None:
        try:
            await self._client.write_gatt_char(
                characteristic,
                payload,
                response=self._write_with_response,
            )
        except Exception as exc:
            LOGGER.warning("Write to %s failed: %s (payload=%s)", characteristic.uuid, exc, payload.hex())
            self._on_event(CharacteristicWritten(uuid=characteristic.uuid, success=False))
            return
        self._on_event(CharacteristicWritten(uuid=characteristic.uuid, success=True))

    async def _read(self, characteristic: GattCharacteristic) -> None:
        try:
            data = await self._client.read_gatt_char(characteristic)
        except Exception as exc:
            LOGGER.warning("Read of %s failed: %s", characteristic.uuid, exc)
            return
        self._on_event(CharacteristicValue(uuid=characteristic.uuid, data=bytes(data)))

    async def _set_notify(self, characteristic: GattCharacteristic, enabled: bool) -> None:
        uuid = characteristic.uuid

        def _notify_handler(_: Any, data: bytearray) -> None:
            self._on_event(CharacteristicValue(uuid=uuid, data=bytes(data)))

        try:
            if enabled:
                await self._client.start_notify(characteristic, _notify_handler)
            else:
                await self._client.stop_notify(characteristic)
        except Exception as exc:
            LOGGER.warning("Changing notifications on %s failed: %s", uuid, exc)


class BLEGATTTransport:
    def __init__(self, *, timeout_s: float = 10.0, write_with_response: bool = True) -> None:
        self.timeout_s = timeout_s
        self.write_with_response = write_with_response
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def open_session(self, address: str, on_event: EventCallback) -> BleakSession:
        try:
            from bleak import BleakClient  # type: ignore
        except Exception as exc:  # pragma: no cover - import failure path
            raise TransportConnectError(
                "BLE transport requires 'bleak'. Install dependency and retry."
            ) from exc

        loop = self._ensure_loop()
        try:
            session = BleakSession(
                address,
                BleakClient,
                loop,
                on_event,
                timeout_s=self.timeout_s,
                write_with_response=self.write_with_response,
            )
        except Exception as exc:
            raise TransportConnectError(f"Could not create BLE client for {address}: {exc}") from exc

        if not session.reconnect():
            raise TransportConnectError(f"Could not schedule BLE connect for {address}")
        return session

    def shutdown(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop, self._thread = None, None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(_drain(), loop).result(timeout=self.timeout_s)
        except Exception as exc:
            LOGGER.warning("Pending BLE operations did not finish: %s", exc)
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(_LOOP_START_TIMEOUT_S)

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(loop, ready),
                daemon=True,
                name="rccar-ble-loop",
            )
            thread.start()
            if not ready.wait(_LOOP_START_TIMEOUT_S):
                raise TransportConnectError("BLE event loop failed to start")
            self._loop, self._thread = loop, thread
            return loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        LOGGER.debug("BLE event loop started")
        loop.run_forever()
        loop.close()
        LOGGER.debug("BLE event loop stopped")
