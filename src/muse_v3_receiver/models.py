"""Data model for Muse v3 acquisition settings and decoded telemetry.

The Muse v3 firmware multiplexes several sensors into one fixed-size frame.
Which sensors are present is selected with a 24-bit acquisition mode mask;
the frame itself carries no markers, so everything downstream of the stream
start needs the mode that was requested. This module holds the flag
definitions, the device state codes and the decoded record types.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional


class SensorKind(enum.IntFlag):
    """Acquisition mode flags, one bit per sensor slot in a telemetry frame.

    Each flag contributes a 6-byte slot to the frame, laid out in increasing
    bit order. ``IMU`` and ``DOF9`` are composite aliases; ``IMU`` occupies a
    single 12-byte unit (gyroscope slot followed by accelerometer slot).
    """

    GYROSCOPE = 0x000001
    ACCELEROMETER = 0x000002
    MAGNETOMETER = 0x000004
    HDR_ACCELEROMETER = 0x000008
    ORIENTATION = 0x000010
    TIMESTAMP = 0x000020
    TEMP_HUMIDITY = 0x000040
    TEMP_PRESSURE = 0x000080
    RANGE_LIGHT = 0x000100
    FALL_ALERT = 0x000200
    SOUND = 0x000400

    # AQI expansion board
    CO2 = 0x010000
    TEMP_HUMIDITY_AQI = 0x020000
    VOC = 0x040000
    PARTICULATE = 0x080000
    VOC_INDEX = 0x100000
    CO_GAS = 0x200000
    AMBIENT_TEMP = 0x400000

    IMU = GYROSCOPE | ACCELEROMETER
    DOF9 = GYROSCOPE | ACCELEROMETER | MAGNETOMETER


#: Single-bit kinds in frame layout order.
SLOT_ORDER: tuple[SensorKind, ...] = tuple(
    sorted(
        (k for k in SensorKind if k.value and k.value & (k.value - 1) == 0),
        key=lambda k: k.value,
    )
)

SLOT_SIZE = 6


class AcquisitionFrequency(enum.IntEnum):
    """Sampling frequency codes sent in the start-stream command."""

    HZ_25 = 0x01
    HZ_50 = 0x02
    HZ_100 = 0x04
    HZ_200 = 0x08
    HZ_400 = 0x10
    HZ_800 = 0x20
    HZ_1600 = 0x40

    @property
    def hz(self) -> int:
        return 25 << (self.value.bit_length() - 1)

    @classmethod
    def from_hz(cls, hz: int) -> "AcquisitionFrequency":
        for member in cls:
            if member.hz == hz:
                return member
        raise ValueError(
            f"Unsupported frequency {hz} Hz (expected one of "
            f"{', '.join(str(m.hz) for m in cls)})"
        )


class DeviceState(enum.IntEnum):
    """System state codes reported by the read-state command.

    Codes outside the documented set do not raise; they resolve to an
    ``UNKNOWN_0xNN`` pseudo-member whose :attr:`is_known` is False.
    """

    IDLE = 0x02
    STANDBY = 0x03
    LOG = 0x04
    READOUT = 0x05
    STREAMING_BUFFERED = 0x06
    CALIBRATION = 0x07
    STREAMING_DIRECT = 0x08

    @classmethod
    def _missing_(cls, value: object) -> Optional["DeviceState"]:
        if not isinstance(value, int) or not 0 <= value <= 0xFF:
            return None
        member = int.__new__(cls, value)
        member._name_ = f"UNKNOWN_0x{value:02X}"
        member._value_ = value
        return member

    @property
    def is_known(self) -> bool:
        return self._name_ in type(self).__members__

    @property
    def is_streaming(self) -> bool:
        return self in (DeviceState.STREAMING_BUFFERED, DeviceState.STREAMING_DIRECT)


class HardwareCapability(enum.IntFlag):
    """Sensors fitted on a unit, as reported by the capability bitmap."""

    GYROSCOPE = 1 << 0
    ACCELEROMETER = 1 << 1
    MAGNETOMETER = 1 << 2
    HDR_ACCELEROMETER = 1 << 3
    TEMPERATURE = 1 << 4
    HUMIDITY = 1 << 5
    PRESSURE = 1 << 6
    VISIBLE_LIGHT = 1 << 7
    IR_LIGHT = 1 << 8
    RANGE = 1 << 9
    MICROPHONE = 1 << 10


class AlertLevel(enum.IntEnum):
    """Fall/impact ("man down") alert level."""

    NONE = 0
    LEVEL1 = 1
    LEVEL2 = 2
    LEVEL3 = 3

    @classmethod
    def from_code(cls, code: int) -> "AlertLevel":
        try:
            return cls(code)
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class AcquisitionMode:
    """A validated acquisition mode mask and the frame size it produces.

    Attributes:
        kinds: OR-ed sensor flags sent to the device.
        frame_size: Bytes per telemetry frame for this mask. Always one of
            the sizes the firmware accepts.
    """

    kinds: SensorKind
    frame_size: int

    @property
    def mask(self) -> int:
        return int(self.kinds)

    def mask_bytes(self) -> bytes:
        """Mode mask as the 3 little-endian bytes of the start command."""
        return self.mask.to_bytes(3, "little")

    def slots(self) -> list[SensorKind]:
        """Enabled single-bit kinds in frame layout order."""
        return [k for k in SLOT_ORDER if self.kinds & k]


@dataclass(frozen=True)
class StreamConfig:
    """Acquisition parameters of an active stream."""

    mode: AcquisitionMode
    frequency: AcquisitionFrequency = AcquisitionFrequency.HZ_25
    buffered: bool = True

    @property
    def state(self) -> DeviceState:
        if self.buffered:
            return DeviceState.STREAMING_BUFFERED
        return DeviceState.STREAMING_DIRECT


@dataclass(frozen=True)
class Vector3:
    x: float
    y: float
    z: float


@dataclass(frozen=True)
class Quaternion:
    """Unit orientation quaternion; ``w`` is the real part."""

    w: float
    i: float
    j: float
    k: float


@dataclass(frozen=True)
class FirmwareVersion:
    bootloader: str
    application: tuple[int, int, int]
    bluetooth: Optional[tuple[int, int]] = None

    @property
    def application_str(self) -> str:
        return ".".join(str(v) for v in self.application)

    @property
    def bluetooth_str(self) -> str:
        if self.bluetooth is None:
            return ""
        return ".".join(str(v) for v in self.bluetooth)


@dataclass(frozen=True)
class SensorRecord:
    """One decoded telemetry frame.

    Only the fields belonging to kinds enabled in the acquisition mode are
    populated; everything else stays ``None``. A missing field is therefore
    a property of the requested mode, not a decoding failure.

    Units:
        gyroscope: dps. accelerometer, hdr_accelerometer: mg.
        magnetometer: mGauss. temperature: degC. humidity: %RH.
        pressure: hPa. light_lux: lux. range_mm: mm. co2_ppm, co_ppm: ppm.
        voc_ppb: ppb. pm1_0, pm2_5, pm10: ug/m3.
    """

    gyroscope: Optional[Vector3] = None
    accelerometer: Optional[Vector3] = None
    magnetometer: Optional[Vector3] = None
    hdr_accelerometer: Optional[Vector3] = None
    orientation: Optional[Quaternion] = None
    timestamp: Optional[datetime] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    light_lux: Optional[float] = None
    range_mm: Optional[float] = None
    alert_level: Optional[AlertLevel] = None
    alert_armed: Optional[bool] = None
    co2_ppm: Optional[int] = None
    voc_aqi: Optional[int] = None
    voc_ppb: Optional[int] = None
    pm1_0: Optional[int] = None
    pm2_5: Optional[int] = None
    pm10: Optional[int] = None
    co_ppm: Optional[float] = None

    def fields_present(self) -> list[str]:
        """Names of the populated fields, in declaration order."""
        return [f.name for f in fields(self) if getattr(self, f.name) is not None]


__all__ = [
    "SensorKind",
    "SLOT_ORDER",
    "SLOT_SIZE",
    "AcquisitionFrequency",
    "DeviceState",
    "HardwareCapability",
    "AlertLevel",
    "AcquisitionMode",
    "StreamConfig",
    "Vector3",
    "Quaternion",
    "FirmwareVersion",
    "SensorRecord",
]
