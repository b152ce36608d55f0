"""Little-endian fixed-offset readers for Muse v3 telemetry and responses.

All readers take the whole buffer plus an offset and never truncate: a read
that does not fit raises :class:`OutOfBoundsError`, which callers handle as
frame corruption.
"""

from __future__ import annotations

import struct

from .errors import OutOfBoundsError

_INT16 = struct.Struct("<h")
_UINT16 = struct.Struct("<H")
_UINT32 = struct.Struct("<I")
_FLOAT32 = struct.Struct("<f")


def _check(data: bytes, offset: int, size: int) -> None:
    if offset < 0 or offset + size > len(data):
        raise OutOfBoundsError(
            f"read of {size} bytes at offset {offset} exceeds buffer of {len(data)} bytes"
        )


def read_uint8(data: bytes, offset: int) -> int:
    _check(data, offset, 1)
    return data[offset]


def read_int16(data: bytes, offset: int) -> int:
    _check(data, offset, 2)
    return _INT16.unpack_from(data, offset)[0]


def read_uint16(data: bytes, offset: int) -> int:
    _check(data, offset, 2)
    return _UINT16.unpack_from(data, offset)[0]


def read_uint24(data: bytes, offset: int) -> int:
    _check(data, offset, 3)
    return int.from_bytes(data[offset : offset + 3], "little")


def read_uint32(data: bytes, offset: int) -> int:
    _check(data, offset, 4)
    return _UINT32.unpack_from(data, offset)[0]


def read_uint48(data: bytes, offset: int) -> int:
    _check(data, offset, 6)
    return int.from_bytes(data[offset : offset + 6], "little")


def read_float32(data: bytes, offset: int) -> float:
    """Read an IEEE-754 single precision float."""
    _check(data, offset, 4)
    return _FLOAT32.unpack_from(data, offset)[0]


def hex_dump(data: bytes) -> str:
    """Format bytes as space separated hex for debug logs."""
    return " ".join(f"{b:02X}" for b in data)


__all__ = [
    "read_uint8",
    "read_int16",
    "read_uint16",
    "read_uint24",
    "read_uint32",
    "read_uint48",
    "read_float32",
    "hex_dump",
]
