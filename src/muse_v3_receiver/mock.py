"""Simulated Muse v3 unit for development without hardware.

:class:`MockTransport` answers the commands of the protocol the way the
firmware does and, while in a streaming state, produces telemetry
notifications packed exactly like the device: whole frames only, as many as
fit into the 120 usable bytes in buffered mode, one per notification in
direct mode.

Generated data characteristics:
- Gyroscope/accelerometer/magnetometer: sinusoids with Gaussian noise, 1 g
  on the accelerometer Z axis
- Orientation: slow rotation about Z
- Environment: slowly drifting temperature, humidity, pressure and light
- Timestamp: wall clock relative to the device reference epoch
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import struct
import time
from typing import AsyncIterator, Optional

from . import commands
from .acquisition import frame_size, is_valid_frame_size
from .codec import hex_dump
from .decoder import REFERENCE_EPOCH_S
from .errors import TransportUnavailableError
from .models import (
    SLOT_ORDER,
    AcquisitionFrequency,
    DeviceState,
    HardwareCapability,
    SensorKind,
)
from .splitter import MAX_NOTIFICATION_PAYLOAD
from .transport import Transport

logger = logging.getLogger(__name__)

MOCK_CAPABILITIES = (
    HardwareCapability.GYROSCOPE
    | HardwareCapability.ACCELEROMETER
    | HardwareCapability.MAGNETOMETER
    | HardwareCapability.HDR_ACCELEROMETER
    | HardwareCapability.TEMPERATURE
    | HardwareCapability.HUMIDITY
    | HardwareCapability.PRESSURE
    | HardwareCapability.VISIBLE_LIGHT
    | HardwareCapability.IR_LIGHT
    | HardwareCapability.RANGE
)

_INT16_MAX = 32767


def _clip16(value: float) -> int:
    return max(-_INT16_MAX - 1, min(_INT16_MAX, int(round(value))))


def _vector_slot(x: float, y: float, z: float) -> bytes:
    return struct.pack("<hhh", _clip16(x), _clip16(y), _clip16(z))


def synth_slot(kind: SensorKind, elapsed: float, now: float) -> bytes:
    """Raw 6-byte slot for ``kind`` at ``elapsed`` seconds into the stream."""
    w = 2 * math.pi
    if kind == SensorKind.GYROSCOPE:
        return _vector_slot(
            (10 * math.sin(w * 0.8 * elapsed) + random.gauss(0, 2)) / 0.035,
            (15 * math.cos(w * 0.6 * elapsed) + random.gauss(0, 2)) / 0.035,
            (5 * math.sin(w * 0.4 * elapsed) + random.gauss(0, 1)) / 0.035,
        )
    if kind == SensorKind.ACCELEROMETER:
        return _vector_slot(
            (500 * math.sin(w * 0.5 * elapsed) + random.gauss(0, 100)) / 0.244,
            (300 * math.cos(w * 0.3 * elapsed) + random.gauss(0, 100)) / 0.244,
            (1000 + 200 * math.sin(w * 0.1 * elapsed) + random.gauss(0, 50)) / 0.244,
        )
    if kind == SensorKind.MAGNETOMETER:
        return _vector_slot(
            200 / 0.146156088 * math.cos(w * 0.05 * elapsed),
            200 / 0.146156088 * math.sin(w * 0.05 * elapsed),
            -400 / 0.146156088,
        )
    if kind == SensorKind.HDR_ACCELEROMETER:
        return _vector_slot(0, 0, 1000 / 49.0 * 16)
    if kind == SensorKind.ORIENTATION:
        half = w * 0.05 * elapsed / 2
        return _vector_slot(0, 0, math.sin(half) * _INT16_MAX)
    if kind == SensorKind.TIMESTAMP:
        raw = int(now * 1000) - REFERENCE_EPOCH_S * 1000
        return raw.to_bytes(6, "little")
    if kind == SensorKind.TEMP_HUMIDITY:
        temp = 25.0 + 3.0 * math.sin(w * 0.01 * elapsed)
        hum = 45.0 + 5.0 * math.cos(w * 0.01 * elapsed)
        return struct.pack("<HHH", int((temp + 45) / 0.002670), int((hum + 6) / 0.001907), 0)
    if kind == SensorKind.TEMP_PRESSURE:
        pressure = int((1013.25 + math.sin(w * 0.005 * elapsed)) * 4096)
        temp = int((25.0 + random.gauss(0, 0.1)) * 100)
        return pressure.to_bytes(3, "little") + struct.pack("<HB", temp, 0)
    if kind == SensorKind.RANGE_LIGHT:
        distance = int(500 + 200 * math.sin(w * 0.2 * elapsed))
        return struct.pack("<HHH", distance, 1000, 50)
    if kind == SensorKind.FALL_ALERT:
        return bytes([0, 1, 0, 0, 0, 0])
    if kind == SensorKind.CO2:
        return struct.pack("<HHH", 420, 0, 0)
    if kind == SensorKind.VOC:
        return bytes([1]) + struct.pack("<HHB", 120, 0, 0)
    if kind == SensorKind.PARTICULATE:
        return struct.pack("<HHH", 3, 5, 8)
    if kind == SensorKind.CO_GAS:
        return struct.pack("<fH", 0.5, 0)
    return bytes(6)


def synth_frame(mask: int, elapsed: float, now: Optional[float] = None) -> bytes:
    """A complete raw frame for ``mask``, slots in layout order."""
    now = time.time() if now is None else now
    return b"".join(synth_slot(k, elapsed, now) for k in SLOT_ORDER if mask & k)


class MockTransport(Transport):
    """In-process stand-in for a Muse v3 unit.

    Args:
        battery: Battery percentage reported by the read-battery command.
        response_delay: Seconds between a command write and its response.
        drop_responses: Number of upcoming commands to leave unanswered,
            to exercise timeout handling.
        max_payload: Bytes available per data notification.
    """

    def __init__(
        self,
        *,
        battery: int = 87,
        response_delay: float = 0.01,
        drop_responses: int = 0,
        max_payload: int = MAX_NOTIFICATION_PAYLOAD,
    ) -> None:
        super().__init__()
        self._connected = False
        self._battery = battery
        self._response_delay = response_delay
        self.drop_responses = drop_responses
        self._max_payload = max_payload
        self.state = DeviceState.IDLE
        self._mask = 0
        self._frequency = AcquisitionFrequency.HZ_25
        self._start_time = time.time()
        self._queue: Optional[asyncio.Queue[Optional[bytes]]] = None
        self._producer: Optional[asyncio.Task[None]] = None
        self.written: list[bytes] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        self._queue = asyncio.Queue()
        logger.info("Mock Muse device connected")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        self._stop_producer()
        if self._queue is not None:
            self._queue.put_nowait(None)
        logger.info("Mock Muse device disconnected")

    async def write_command(self, data: bytes) -> None:
        if not self._connected:
            raise TransportUnavailableError("Mock device is not connected")
        self.written.append(bytes(data))
        response = self._execute(bytes(data))
        if self.drop_responses > 0:
            self.drop_responses -= 1
            logger.debug("Mock dropping response to %s", hex_dump(data))
            return
        loop = asyncio.get_running_loop()
        loop.call_later(self._response_delay, self._deliver_response, response)

    def _envelope(self, code: int, payload: bytes = b"", error: int = 0) -> bytes:
        return bytes([commands.ACK, len(payload) + 2, code, error]) + payload

    def _execute(self, data: bytes) -> bytes:
        code = data[0]
        if code == commands.read_code(commands.CMD_BATTERY_CHARGE):
            return self._envelope(code, bytes([self._battery]))
        if code == commands.read_code(commands.CMD_FW_VERSION):
            payload = b"1.0.3\x00" + bytes([2, 4, 1, 0, 0, 0, 0]) + bytes([5, 1])
            return self._envelope(code, payload)
        if code == commands.read_code(commands.CMD_STATE):
            return self._envelope(code, bytes([int(self.state)]))
        if code == commands.read_code(commands.CMD_SENSORS_FULLSCALE):
            return self._envelope(code, int(MOCK_CAPABILITIES).to_bytes(4, "little"))
        if code == commands.CMD_STATE and len(data) >= 3:
            return self._set_state(data)
        return self._envelope(code, error=0x01)

    def _set_state(self, data: bytes) -> bytes:
        state = DeviceState(data[2])
        if state.is_streaming:
            if self.state is not DeviceState.IDLE or len(data) < 7:
                return self._envelope(commands.CMD_STATE, error=0x02)
            mask = int.from_bytes(data[3:6], "little")
            if not is_valid_frame_size(frame_size(mask)):
                return self._envelope(commands.CMD_STATE, error=0x03)
            try:
                frequency = AcquisitionFrequency(data[6])
            except ValueError:
                logger.debug("Mock rejecting unknown frequency code 0x%02X", data[6])
                return self._envelope(commands.CMD_STATE, error=0x03)
            self._mask = mask
            self._frequency = frequency
            self.state = state
            self._start_producer()
        else:
            self._stop_producer()
            self.state = state
        return self._envelope(commands.CMD_STATE)

    def _start_producer(self) -> None:
        self._stop_producer()
        self._start_time = time.time()
        self._producer = asyncio.get_running_loop().create_task(self._produce())

    def _stop_producer(self) -> None:
        if self._producer is not None:
            self._producer.cancel()
            self._producer = None

    async def _produce(self) -> None:
        size = frame_size(self._mask)
        per_notification = self._max_payload // size
        if self.state is DeviceState.STREAMING_DIRECT:
            per_notification = 1
        interval = per_notification / self._frequency.hz
        try:
            while self._connected and self._queue is not None:
                now = time.time()
                frames = []
                for n in range(per_notification):
                    # Oldest frame first, one sample period apart
                    sample_time = now - (per_notification - 1 - n) / self._frequency.hz
                    frames.append(
                        synth_frame(self._mask, sample_time - self._start_time, sample_time)
                    )
                self._queue.put_nowait(b"".join(frames))
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            pass

    async def data_frames(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if queue is None:
            raise TransportUnavailableError("Mock device is not connected")
        while True:
            item = await queue.get()
            if item is None:
                return
            yield item


__all__ = ["MOCK_CAPABILITIES", "MockTransport", "synth_frame", "synth_slot"]
