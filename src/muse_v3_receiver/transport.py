"""BLE transport for Muse v3 devices.

The protocol engine only needs two things from the link: a way to write a
command frame, and the notifications arriving on the command and data
characteristics. :class:`Transport` captures that contract so the engine can
run against real hardware (:class:`BleakTransport`), the simulator in
:mod:`muse_v3_receiver.mock`, or test doubles.

Architecture:
- Command-channel notifications are pushed to a handler (the engine)
- Data-channel notifications are pulled as an async iterator, one per
  connection; a ``None`` sentinel in the queue ends it on disconnect
- Discovery matches by device name first, then by service UUID

Requirements:
- bleak: Cross-platform BLE library for device communication
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Iterable, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .codec import hex_dump
from .errors import TransportUnavailableError

logger = logging.getLogger(__name__)

MUSE_SERVICE = "c8c0a708-e361-4b5e-a365-98fa6b0a836f"
MUSE_COMMAND_CHAR = "d5913036-2d8a-41ee-85b9-4e361aa5c8a7"
# The vendor documentation gives two UUIDs for the same data characteristic
MUSE_DATA_CHAR_ALIASES = (
    "04d05b73-e46e-4dad-86c4-467ee8209e3c",
    "09bf2c52-d1d9-c0b7-4145-475964544307",
)

DEVICE_NAME_PREFIX = "Muse"

ResponseHandler = Callable[[bytes], None]
DisconnectHandler = Callable[[], None]


class Transport(ABC):
    """Link-layer collaborator of the protocol engine.

    Implementations own connection setup and characteristic discovery. They
    must route every command-channel notification to the registered response
    handler, call the disconnect handler when the link drops, and end the
    iterator returned by :meth:`data_frames` when the connection ends.
    """

    def __init__(self) -> None:
        self._on_response: Optional[ResponseHandler] = None
        self._on_disconnect: Optional[DisconnectHandler] = None

    def set_handlers(
        self,
        on_response: Optional[ResponseHandler] = None,
        on_disconnect: Optional[DisconnectHandler] = None,
    ) -> None:
        """Register the command-response and disconnect callbacks."""
        self._on_response = on_response
        self._on_disconnect = on_disconnect

    def _deliver_response(self, data: bytes) -> None:
        if self._on_response is not None:
            self._on_response(bytes(data))

    def _notify_disconnect(self) -> None:
        if self._on_disconnect is not None:
            self._on_disconnect()

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the link and both characteristics are usable."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the link and subscribe to both characteristics.

        Raises:
            TransportUnavailableError: If the device or its characteristics
                cannot be reached.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the link. Safe to call when already disconnected."""

    @abstractmethod
    async def write_command(self, data: bytes) -> None:
        """Write one command frame to the command characteristic."""

    @abstractmethod
    def data_frames(self) -> AsyncIterator[bytes]:
        """Raw data-channel notifications of the current connection.

        The iterator ends when the connection ends. A new connection gives a
        new iterator.
        """


async def _scan_ble_devices(
    timeout: float,
) -> dict[str, tuple[BLEDevice, AdvertisementData]]:
    """Scan for BLE devices and retrieve advertisement data.

    Raises:
        TransportUnavailableError: If BLE scanning cannot be initialized.
    """
    try:
        devices_adv = await BleakScanner.discover(timeout=timeout, return_adv=True)
        logger.debug("Scan completed: %d devices found", len(devices_adv))
        return devices_adv
    except BleakError as e:
        raise TransportUnavailableError(
            "BLE scanner initialization failed. Please verify:\n"
            "- Bluetooth is enabled\n"
            "- Location Services are enabled (required for BLE scanning on Windows)\n"
            "- The Bluetooth adapter/drivers are properly installed\n"
        ) from e


def _match_device(
    dev: BLEDevice, adv: AdvertisementData, name_prefix: str, service_uuid: str
) -> bool:
    """Check if a discovered device is a Muse unit.

    Name matching takes precedence; the service UUID is the fallback for
    units that advertise without a local name.
    """
    logger.debug(
        "Device discovered: addr=%s name=%s rssi=%s uuids=%s",
        getattr(dev, "address", "?"),
        getattr(dev, "name", None),
        getattr(adv, "rssi", None),
        getattr(adv, "service_uuids", None),
    )

    name = dev.name or getattr(adv, "local_name", None) or ""
    if name_prefix and name.startswith(name_prefix):
        logger.info("Device selected by name match: %s (%s)", name, dev.address)
        return True

    uuids: Iterable[str] = adv.service_uuids or []
    if any(u.lower() == service_uuid.lower() for u in uuids):
        logger.info("Device selected by service UUID match: %s (%s)", name, dev.address)
        return True

    return False


async def find_device(
    *,
    name_prefix: str = DEVICE_NAME_PREFIX,
    service_uuid: str = MUSE_SERVICE,
    timeout: float = 10.0,
) -> Optional[BLEDevice]:
    """Return the first advertising Muse unit, or ``None`` if none was seen."""
    logger.info(
        "BLE device discovery started: name='%s*' service='%s' timeout=%.1fs",
        name_prefix,
        service_uuid,
        timeout,
    )
    devices_adv = await _scan_ble_devices(timeout)
    for dev, adv in devices_adv.values():
        if _match_device(dev, adv, name_prefix, service_uuid):
            return dev
    return None


def is_data_characteristic(uuid: str) -> bool:
    return uuid.lower() in MUSE_DATA_CHAR_ALIASES


class BleakTransport(Transport):
    """Muse v3 link over bleak.

    Args:
        address: BLE address to connect to. If None, the first device found
            by :func:`find_device` is used.
        name_prefix: Advertised name prefix used during discovery.
        scan_timeout: Seconds to scan when no address is given.
        connect_timeout: Seconds allowed for the GATT connection.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        *,
        name_prefix: str = DEVICE_NAME_PREFIX,
        scan_timeout: float = 10.0,
        connect_timeout: float = 15.0,
    ) -> None:
        super().__init__()
        self._address = address
        self._name_prefix = name_prefix
        self._scan_timeout = scan_timeout
        self._connect_timeout = connect_timeout
        self._client: Optional[BleakClient] = None
        self._data_char: Optional[BleakGATTCharacteristic] = None
        self._queue: Optional[asyncio.Queue[Optional[bytes]]] = None

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected and self._data_char)

    async def _resolve_address(self) -> str:
        if self._address is not None:
            return self._address
        dev = await find_device(name_prefix=self._name_prefix, timeout=self._scan_timeout)
        if dev is None:
            raise TransportUnavailableError(
                "Muse device not found. Please check that it is powered on and advertising."
            )
        logger.info("Connection target address: %s (name=%s)", dev.address, dev.name)
        self._address = dev.address
        return dev.address

    def _on_bleak_disconnect(self, _: BleakClient) -> None:
        logger.warning("BLE connection lost (callback)")
        if self._queue is not None:
            self._queue.put_nowait(None)
        self._notify_disconnect()

    def _handle_command_notification(self, _: BleakGATTCharacteristic, data: bytearray) -> None:
        if data:
            logger.debug("Command notification: %s", hex_dump(data))
            self._deliver_response(bytes(data))

    def _handle_data_notification(self, _: BleakGATTCharacteristic, data: bytearray) -> None:
        if data and self._queue is not None:
            self._queue.put_nowait(bytes(data))

    async def connect(self) -> None:
        address = await self._resolve_address()
        self._queue = asyncio.Queue()
        client = BleakClient(
            address,
            disconnected_callback=self._on_bleak_disconnect,
            timeout=self._connect_timeout,
        )
        logger.info("BLE connection starting: %s", address)
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError) as e:
            raise TransportUnavailableError(f"BLE connection to {address} failed: {e}") from e
        self._client = client

        try:
            service = client.services.get_service(MUSE_SERVICE)
            if service is None:
                raise TransportUnavailableError(
                    f"Muse service {MUSE_SERVICE} not found on {address}"
                )
            command_char = service.get_characteristic(MUSE_COMMAND_CHAR)
            data_char = next(
                (c for c in service.characteristics if is_data_characteristic(c.uuid)),
                None,
            )
            if command_char is None or data_char is None:
                raise TransportUnavailableError(
                    "Muse command or data characteristic not found. "
                    "The device may not be compatible."
                )
            await client.start_notify(command_char, self._handle_command_notification)
            await client.start_notify(data_char, self._handle_data_notification)
        except BleakError as e:
            await self.disconnect()
            raise TransportUnavailableError(f"Notification setup failed: {e}") from e
        except TransportUnavailableError:
            await self.disconnect()
            raise

        self._data_char = data_char
        logger.info("BLE connection established: %s (data char %s)", address, data_char.uuid)

    async def disconnect(self) -> None:
        client = self._client
        self._client = None
        self._data_char = None
        if self._queue is not None:
            self._queue.put_nowait(None)
        if client is None:
            return
        try:
            if client.is_connected:
                await client.disconnect()
                logger.info("BLE disconnected: %s", self._address)
        except BleakError as e:
            logger.warning("BLE disconnect failed: %s", e)

    async def write_command(self, data: bytes) -> None:
        if self._client is None or not self._client.is_connected:
            raise TransportUnavailableError("Not connected to a Muse device")
        try:
            await self._client.write_gatt_char(MUSE_COMMAND_CHAR, data, response=True)
        except BleakError as e:
            raise TransportUnavailableError(f"Command write failed: {e}") from e

    async def data_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if queue is None:
            raise TransportUnavailableError("Not connected to a Muse device")
        while True:
            item = await queue.get()
            if item is None:
                logger.info("Data channel closed")
                return
            yield item


__all__ = [
    "MUSE_SERVICE",
    "MUSE_COMMAND_CHAR",
    "MUSE_DATA_CHAR_ALIASES",
    "DEVICE_NAME_PREFIX",
    "Transport",
    "BleakTransport",
    "find_device",
    "is_data_characteristic",
]
