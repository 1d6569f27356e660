"""GATT client notification sources feeding an EventBridge.

A notification source plays the role of the BLE stack: it owns the link,
subscribes to a characteristic, and invokes ``bridge.on_notify`` for every
value-changed notification. The bridge does not care which source drives it.

Sources:
- BleNotificationSource: real device over bleak (discovery, connect,
  ``start_notify``), one connection handle per link.
- MockNotificationSource: synthetic payloads on a timer, for exercising the
  pipe and its consumer without hardware.
"""

from __future__ import annotations

import asyncio
import logging
import random
import struct
import time
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .config import DEVICE_NAME, NUS_SERVICE, NUS_TX_CHAR
from .event_bridge import EventBridge

logger = logging.getLogger(__name__)

HEALTH_LOG_INTERVAL = 10.0


async def _discover(timeout: float) -> list[tuple[BLEDevice, AdvertisementData]]:
    """Run one scan and return ``(device, advertisement)`` pairs.

    Raises:
        RuntimeError: If the Bluetooth adapter cannot be used for scanning.
    """
    try:
        found = await BleakScanner.discover(timeout=timeout, return_adv=True)
    except BleakError as e:
        raise RuntimeError(
            f"Cannot scan for BLE devices ({e}); check that the Bluetooth adapter "
            "is powered and this process is allowed to use it"
        ) from e
    logger.debug("Scan saw %d advertisers", len(found))
    return list(found.values())


def _advertises(adv: AdvertisementData, service_uuid: str) -> bool:
    wanted = service_uuid.lower()
    advertised: Iterable[str] = adv.service_uuids or []
    return any(u.lower() == wanted for u in advertised)


async def find_device(
    *,
    device_name: str = DEVICE_NAME,
    service_uuid: str = NUS_SERVICE,
    timeout: float = 10.0,
) -> Optional[BLEDevice]:
    """Scan once and pick the device to connect to.

    A device advertising ``device_name`` is preferred over one that merely
    advertises ``service_uuid``, regardless of the order the scan reported
    them in. Returns ``None`` when neither is seen.
    """
    logger.info("Scanning %.1fs for %r or service %s", timeout, device_name, service_uuid)
    candidates = await _discover(timeout)

    by_service: Optional[BLEDevice] = None
    for dev, adv in candidates:
        if dev.name == device_name:
            logger.info("Found %s at %s by name", dev.name, dev.address)
            return dev
        if by_service is None and _advertises(adv, service_uuid):
            by_service = dev

    if by_service is not None:
        logger.info("Found %s at %s by service UUID", by_service.name, by_service.address)
    return by_service


class NotificationSource(ABC):
    """Something that delivers characteristic notifications to a bridge."""

    @abstractmethod
    async def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Ask a running ``run()`` to return. Idempotent."""
        pass

    @abstractmethod
    async def run(self, bridge: EventBridge) -> None:
        """Deliver notifications to ``bridge.on_notify`` until stopped.

        Raises:
            RuntimeError: If the link is lost before ``stop()`` was called.
        """
        pass


class BleNotificationSource(NotificationSource):
    """Subscribe to one characteristic of one device with bleak.

    Args:
        address: Device address. Discovered by name/service when None.
        connection_handle: Identifier stamped into every frame from this link.
        device_name: Name to look for during discovery.
        service_uuid: Service UUID fallback for discovery.
        char_uuid: Characteristic to subscribe to.
        scan_timeout: Discovery timeout in seconds.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        *,
        connection_handle: int = 1,
        device_name: str = DEVICE_NAME,
        service_uuid: str = NUS_SERVICE,
        char_uuid: str = NUS_TX_CHAR,
        scan_timeout: float = 10.0,
    ) -> None:
        self._address = address
        self._connection_handle = connection_handle
        self._device_name = device_name
        self._service_uuid = service_uuid
        self._char_uuid = char_uuid
        self._scan_timeout = scan_timeout
        self._connected = False
        self._stop_event = asyncio.Event()

    @property
    def connection_handle(self) -> int:
        return self._connection_handle

    async def is_connected(self) -> bool:
        return self._connected

    async def start(self) -> None:
        self._stop_event.clear()

    async def stop(self) -> None:
        self._stop_event.set()

    async def _resolve_address(self) -> str:
        if self._address is not None:
            return self._address

        dev = await find_device(
            device_name=self._device_name,
            service_uuid=self._service_uuid,
            timeout=self._scan_timeout,
        )
        if not dev:
            raise RuntimeError(
                "Target device not found. Please check scan conditions and device proximity."
            )
        logger.info(
            "Connection target address: %s (name=%s)",
            dev.address,
            getattr(dev, "name", None),
        )
        return dev.address

    async def run(self, bridge: EventBridge) -> None:
        address = await self._resolve_address()
        handle = self._connection_handle
        disconnected = asyncio.Event()

        def on_disconnect(_: BleakClient) -> None:
            logger.warning("BLE connection lost (callback)")
            disconnected.set()

        def on_notification(_: BleakGATTCharacteristic, data: bytearray) -> None:
            bridge.on_notify(handle, data)

        logger.info("BLE connection starting: %s", address)
        async with BleakClient(address, disconnected_callback=on_disconnect) as client:
            if not client.is_connected:
                raise RuntimeError("BLE connection failed.")
            self._connected = True
            logger.info("BLE connection established: %s (handle=%d)", address, handle)

            logger.info("Starting notification subscription: char=%s", self._char_uuid)
            await client.start_notify(self._char_uuid, on_notification)
            try:
                await self._wait_until_done(bridge, disconnected)
            finally:
                self._connected = False
                if client.is_connected:
                    logger.info("Stopping notification subscription")
                    await client.stop_notify(self._char_uuid)

        if disconnected.is_set() and not self._stop_event.is_set():
            raise RuntimeError("BLE connection lost.")

    async def _wait_until_done(self, bridge: EventBridge, disconnected: asyncio.Event) -> None:
        stop_task = asyncio.create_task(self._stop_event.wait())
        disc_task = asyncio.create_task(disconnected.wait())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {stop_task, disc_task},
                    timeout=HEALTH_LOG_INTERVAL,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if done:
                    return
                stats = bridge.stats
                logger.info(
                    "Bridge healthy: %d frames, %d bytes, %d dropped",
                    stats.frames_written,
                    stats.bytes_written,
                    stats.dropped,
                )
        finally:
            stop_task.cancel()
            disc_task.cancel()


class MockNotificationSource(NotificationSource):
    """Synthetic notifications for testing without a device.

    Each payload starts with a little-endian u32 sequence number followed by
    random filler, so a consumer can check ordering and loss.

    Args:
        interval: Seconds between notifications.
        payload_size: Bytes per payload (at least 4).
        count: Stop after this many notifications; None runs until stopped.
        connection_handle: Identifier stamped into every frame.
    """

    def __init__(
        self,
        interval: float = 0.04,
        *,
        payload_size: int = 20,
        count: Optional[int] = None,
        connection_handle: int = 1,
    ) -> None:
        if payload_size < 4:
            raise ValueError("payload_size must be at least 4 bytes")
        self._interval = interval
        self._payload_size = payload_size
        self._count = count
        self._connection_handle = connection_handle
        self._running = False
        self.sent = 0

    async def is_connected(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    def make_payload(self, seq: int) -> bytes:
        filler = bytes(random.getrandbits(8) for _ in range(self._payload_size - 4))
        return struct.pack("<I", seq & 0xFFFFFFFF) + filler

    async def run(self, bridge: EventBridge) -> None:
        self._running = True
        started = time.monotonic()
        try:
            while self._running:
                if self._count is not None and self.sent >= self._count:
                    break
                bridge.on_notify(self._connection_handle, self.make_payload(self.sent))
                self.sent += 1
                await asyncio.sleep(self._interval)
        finally:
            self._running = False
            logger.info(
                "Mock source finished: %d notifications in %.1fs",
                self.sent,
                time.monotonic() - started,
            )


async def serve(source: NotificationSource, bridge: EventBridge) -> None:
    """Run ``source`` into ``bridge`` and log the final statistics."""
    await source.start()
    try:
        await source.run(bridge)
    finally:
        await source.stop()
        stats = bridge.stats
        logger.info(
            "Bridge stopped: %d frames written, %d oversize dropped, %d write errors",
            stats.frames_written,
            stats.dropped_oversize,
            stats.dropped_write_error,
        )


def run(source: NotificationSource, bridge: EventBridge) -> int:
    """Blocking wrapper around ``serve`` for CLI use.

    Returns:
        int: Exit code. 0 on normal completion, 130 on Ctrl+C, 1 on error.
    """
    try:
        asyncio.run(serve(source, bridge))
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
