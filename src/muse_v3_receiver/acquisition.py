"""Acquisition mode encoding and frame size validation.

The firmware only accepts frame layouts of a few fixed sizes. A start command
with any other layout can leave the unit streaming garbage that it will not
leave without a power cycle, so the size is validated here, before anything
is written to the device.
"""

from __future__ import annotations

import logging
from typing import Iterable, Union

from .errors import InvalidConfigurationError
from .models import SLOT_ORDER, SLOT_SIZE, AcquisitionMode, SensorKind

logger = logging.getLogger(__name__)

VALID_FRAME_SIZES = frozenset({6, 12, 18, 24, 30, 60})

#: Named modes used by the streaming front-ends.
PRESETS: dict[str, SensorKind] = {
    "dof9": SensorKind.DOF9,
    "imu_orientation": SensorKind.IMU | SensorKind.ORIENTATION,
    "imu_timestamp": SensorKind.IMU | SensorKind.TIMESTAMP,
    "dof9_timestamp": SensorKind.DOF9 | SensorKind.TIMESTAMP,
    "environmental": (
        SensorKind.TEMP_HUMIDITY
        | SensorKind.TEMP_PRESSURE
        | SensorKind.RANGE_LIGHT
        | SensorKind.TIMESTAMP
    ),
    "imu_hdr_timestamp": (
        SensorKind.IMU | SensorKind.HDR_ACCELEROMETER | SensorKind.TIMESTAMP
    ),
    "dof9_orientation_timestamp": (
        SensorKind.DOF9 | SensorKind.ORIENTATION | SensorKind.TIMESTAMP
    ),
    "comprehensive": (
        SensorKind.IMU
        | SensorKind.MAGNETOMETER
        | SensorKind.HDR_ACCELEROMETER
        | SensorKind.ORIENTATION
        | SensorKind.TIMESTAMP
        | SensorKind.TEMP_HUMIDITY
        | SensorKind.TEMP_PRESSURE
        | SensorKind.RANGE_LIGHT
        | SensorKind.FALL_ALERT
    ),
}


def combine_kinds(kinds: Union[SensorKind, Iterable[SensorKind]]) -> SensorKind:
    """OR a collection of sensor kinds into a single mask."""
    if isinstance(kinds, SensorKind):
        return kinds
    mask = SensorKind(0)
    for kind in kinds:
        mask |= SensorKind(kind)
    return mask


def frame_size(kinds: Union[SensorKind, int]) -> int:
    """Bytes per frame for a mode mask.

    The size is derived from the OR-ed mask, so overlapping requests (for
    example ``IMU`` together with ``GYROSCOPE``) are counted once: the IMU
    pair is a single 12-byte unit, never 12 + 6.
    """
    mask = int(kinds)
    return sum(SLOT_SIZE for kind in SLOT_ORDER if mask & kind)


def is_valid_frame_size(size: int) -> bool:
    return size in VALID_FRAME_SIZES


def encode_mode(kinds: Union[SensorKind, Iterable[SensorKind]]) -> AcquisitionMode:
    """Build a validated :class:`AcquisitionMode` from requested sensor kinds.

    Args:
        kinds: A mask or an iterable of :class:`SensorKind` values.

    Returns:
        AcquisitionMode: The mask and its frame size.

    Raises:
        InvalidConfigurationError: If the selection is empty, contains bits
            outside the known flags, or adds up to a frame size the firmware
            does not accept.
    """
    mask = combine_kinds(kinds)
    known = sum(int(kind) for kind in SLOT_ORDER)
    if int(mask) & ~known:
        raise InvalidConfigurationError(
            f"Unknown acquisition mode bits: 0x{int(mask) & ~known:06X}"
        )
    size = frame_size(mask)
    if not is_valid_frame_size(size):
        raise InvalidConfigurationError(
            f"Frame size {size} bytes for mode 0x{int(mask):06X} is not supported "
            f"(must be one of {sorted(VALID_FRAME_SIZES)})"
        )
    logger.debug("Acquisition mode 0x%06X -> %d byte frames", int(mask), size)
    return AcquisitionMode(kinds=mask, frame_size=size)


def preset(name: str) -> AcquisitionMode:
    """Look up and validate a named mode from :data:`PRESETS`."""
    try:
        kinds = PRESETS[name]
    except KeyError:
        raise InvalidConfigurationError(
            f"Unknown preset '{name}' (choose from {', '.join(sorted(PRESETS))})"
        ) from None
    return encode_mode(kinds)


def parse_kinds(text: str) -> SensorKind:
    """Parse a comma separated list of kind names, e.g. ``"imu,timestamp"``."""
    mask = SensorKind(0)
    for part in text.split(","):
        name = part.strip().upper().replace("-", "_")
        if not name:
            continue
        try:
            mask |= SensorKind[name]
        except KeyError:
            raise InvalidConfigurationError(f"Unknown sensor kind '{part.strip()}'") from None
    return mask


__all__ = [
    "VALID_FRAME_SIZES",
    "PRESETS",
    "combine_kinds",
    "frame_size",
    "is_valid_frame_size",
    "encode_mode",
    "preset",
    "parse_kinds",
]
