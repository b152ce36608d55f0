"""Conversion of raw Muse v3 telemetry frames into physical units.

A frame is a concatenation of 6-byte slots, one per kind enabled in the
acquisition mode, in increasing flag order. :func:`decode_frame` walks the
enabled kinds, reads each slot with the fixed-offset readers from
:mod:`codec` and applies the per-sensor scale factors of the default full
scale settings (gyroscope 1000 dps, accelerometer 8 g, magnetometer 4 G,
HDR accelerometer 100 g).
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .codec import (
    read_float32,
    read_int16,
    read_uint8,
    read_uint16,
    read_uint24,
    read_uint48,
)
from .errors import FrameCorruptionError
from .models import (
    SLOT_SIZE,
    AcquisitionMode,
    AlertLevel,
    Quaternion,
    SensorKind,
    SensorRecord,
    Vector3,
)

logger = logging.getLogger(__name__)

GYRO_SENSITIVITY = 0.035  # dps/LSB
ACCEL_SENSITIVITY = 0.244  # mg/LSB
MAG_SENSITIVITY = 0.146156088  # mGauss/LSB
HDR_SENSITIVITY = 49.0  # mg/LSB after dropping the 4 padding bits

QUATERNION_SCALE = 32767.0

#: 2020-01-26T00:53:20Z, the zero of the device clock.
REFERENCE_EPOCH_S = 1_580_000_000
REFERENCE_EPOCH = datetime.fromtimestamp(REFERENCE_EPOCH_S, tz=timezone.utc)


def _vector(data: bytes, offset: int, scale: float) -> Vector3:
    return Vector3(
        read_int16(data, offset) * scale,
        read_int16(data, offset + 2) * scale,
        read_int16(data, offset + 4) * scale,
    )


def decode_gyroscope(data: bytes, offset: int) -> dict[str, Any]:
    return {"gyroscope": _vector(data, offset, GYRO_SENSITIVITY)}


def decode_accelerometer(data: bytes, offset: int) -> dict[str, Any]:
    return {"accelerometer": _vector(data, offset, ACCEL_SENSITIVITY)}


def decode_magnetometer(data: bytes, offset: int) -> dict[str, Any]:
    return {"magnetometer": _vector(data, offset, MAG_SENSITIVITY)}


def decode_hdr_accelerometer(data: bytes, offset: int) -> dict[str, Any]:
    # 12-bit samples, left-justified in 16 bits
    return {
        "hdr_accelerometer": Vector3(
            read_int16(data, offset) / 16 * HDR_SENSITIVITY,
            read_int16(data, offset + 2) / 16 * HDR_SENSITIVITY,
            read_int16(data, offset + 4) / 16 * HDR_SENSITIVITY,
        )
    }


def quaternion_from_imaginary(i: float, j: float, k: float) -> Quaternion:
    """Rebuild a unit quaternion from its imaginary components.

    The real part is ``sqrt(1 - i^2 - j^2 - k^2)``. Quantisation can push the
    radicand slightly below zero; it is clamped to 0 instead of failing.
    """
    w = math.sqrt(max(0.0, 1.0 - (i * i + j * j + k * k)))
    return Quaternion(w, i, j, k)


def decode_orientation(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "orientation": quaternion_from_imaginary(
            read_int16(data, offset) / QUATERNION_SCALE,
            read_int16(data, offset + 2) / QUATERNION_SCALE,
            read_int16(data, offset + 4) / QUATERNION_SCALE,
        )
    }


def timestamp_from_raw(raw_ms: int) -> datetime:
    """Convert a 48-bit device clock value (ms since the reference epoch)."""
    try:
        return REFERENCE_EPOCH + timedelta(milliseconds=raw_ms)
    except OverflowError as e:
        raise FrameCorruptionError(f"Timestamp out of range: {raw_ms} ms") from e


def decode_timestamp(data: bytes, offset: int) -> dict[str, Any]:
    return {"timestamp": timestamp_from_raw(read_uint48(data, offset))}


def decode_temp_humidity(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "temperature": read_uint16(data, offset) * 0.002670 - 45,
        "humidity": read_uint16(data, offset + 2) * 0.001907 - 6,
    }


def decode_temp_pressure(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "pressure": read_uint24(data, offset) / 4096.0,
        "temperature": read_uint16(data, offset + 3) / 100.0,
    }


def compute_lux(visible: int, infrared: int) -> float:
    """Estimate illuminance from the visible and IR channel counts.

    The coefficients depend on the IR/visible ratio, which identifies the
    light source type. With no IR reading the ratio is undefined and the
    result is 0.
    """
    if infrared == 0:
        return 0.0
    ratio = infrared / visible if visible else math.inf
    if ratio < 0.109:
        return 1.534 * visible - 3.759 * infrared
    if ratio < 0.429:
        return 1.339 * visible - 1.972 * infrared
    if ratio < 0.95 * 1.45:
        return 0.701 * visible - 0.483 * infrared
    if ratio < 1.5 * 1.45:
        return 2 * 0.701 * visible - 1.18 * 0.483 * infrared
    if ratio < 2.5 * 1.45:
        return 4 * 0.701 * visible - 1.33 * 0.483 * infrared
    return 8 * 0.701 * visible


def decode_range_light(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "range_mm": float(read_uint16(data, offset)),
        "light_lux": compute_lux(
            read_uint16(data, offset + 2), read_uint16(data, offset + 4)
        ),
    }


def decode_fall_alert(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "alert_level": AlertLevel.from_code(read_uint8(data, offset)),
        "alert_armed": read_uint8(data, offset + 1) == 1,
    }


def decode_co2(data: bytes, offset: int) -> dict[str, Any]:
    return {"co2_ppm": read_uint16(data, offset)}


def decode_voc(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "voc_aqi": read_uint8(data, offset),
        "voc_ppb": read_uint16(data, offset + 1),
    }


def decode_particulate(data: bytes, offset: int) -> dict[str, Any]:
    return {
        "pm1_0": read_uint16(data, offset),
        "pm2_5": read_uint16(data, offset + 2),
        "pm10": read_uint16(data, offset + 4),
    }


def decode_co(data: bytes, offset: int) -> dict[str, Any]:
    return {"co_ppm": read_float32(data, offset)}


SlotDecoder = Callable[[bytes, int], dict[str, Any]]

#: Kinds missing from this table occupy a slot but yield no fields.
SLOT_DECODERS: dict[SensorKind, SlotDecoder] = {
    SensorKind.GYROSCOPE: decode_gyroscope,
    SensorKind.ACCELEROMETER: decode_accelerometer,
    SensorKind.MAGNETOMETER: decode_magnetometer,
    SensorKind.HDR_ACCELEROMETER: decode_hdr_accelerometer,
    SensorKind.ORIENTATION: decode_orientation,
    SensorKind.TIMESTAMP: decode_timestamp,
    SensorKind.TEMP_HUMIDITY: decode_temp_humidity,
    SensorKind.TEMP_PRESSURE: decode_temp_pressure,
    SensorKind.RANGE_LIGHT: decode_range_light,
    SensorKind.FALL_ALERT: decode_fall_alert,
    SensorKind.CO2: decode_co2,
    SensorKind.VOC: decode_voc,
    SensorKind.PARTICULATE: decode_particulate,
    SensorKind.CO_GAS: decode_co,
}


def decode_frame(frame: bytes, mode: AcquisitionMode) -> SensorRecord:
    """Decode one telemetry frame laid out according to ``mode``.

    Args:
        frame: Raw frame bytes. Bytes beyond ``mode.frame_size`` are ignored.
        mode: The acquisition mode the stream was started with.

    Returns:
        SensorRecord: Record with exactly the fields of the enabled kinds.

    Raises:
        FrameCorruptionError: If the frame is shorter than the layout implied
            by the mode, or a field cannot be represented.
    """
    if len(frame) < mode.frame_size:
        raise FrameCorruptionError(
            f"Frame of {len(frame)} bytes is shorter than the {mode.frame_size} "
            f"bytes required by mode 0x{mode.mask:06X}"
        )

    values: dict[str, Any] = {}
    offset = 0
    for kind in mode.slots():
        slot_decoder = SLOT_DECODERS.get(kind)
        if slot_decoder is None:
            logger.debug("No decoder for %s, skipping slot at offset %d", kind.name, offset)
        else:
            values.update(slot_decoder(frame, offset))
        offset += SLOT_SIZE
    return SensorRecord(**values)


__all__ = [
    "GYRO_SENSITIVITY",
    "ACCEL_SENSITIVITY",
    "MAG_SENSITIVITY",
    "HDR_SENSITIVITY",
    "REFERENCE_EPOCH",
    "REFERENCE_EPOCH_S",
    "SLOT_DECODERS",
    "compute_lux",
    "quaternion_from_imaginary",
    "timestamp_from_raw",
    "decode_frame",
]
