from __future__ import annotations

import struct

import pytest

from muse_v3_receiver.codec import (
    hex_dump,
    read_float32,
    read_int16,
    read_uint8,
    read_uint16,
    read_uint24,
    read_uint32,
    read_uint48,
)
from muse_v3_receiver.errors import FrameCorruptionError, OutOfBoundsError


def test_little_endian_readers() -> None:
    data = bytes([0x01, 0x02, 0x03, 0x04, 0x05, 0x06])
    assert read_uint8(data, 5) == 0x06
    assert read_uint16(data, 0) == 0x0201
    assert read_uint24(data, 1) == 0x040302
    assert read_uint32(data, 2) == 0x06050403
    assert read_uint48(data, 0) == 0x060504030201


def test_int16_is_signed() -> None:
    assert read_int16(b"\xff\xff", 0) == -1
    assert read_int16(b"\x00\x80", 0) == -32768
    assert read_int16(b"\xff\x7f", 0) == 32767


def test_float32() -> None:
    data = b"\x00\x00" + struct.pack("<f", 1.5)
    assert read_float32(data, 2) == 1.5


@pytest.mark.parametrize(
    "reader,offset",
    [
        (read_uint8, 4),
        (read_int16, 3),
        (read_uint24, 2),
        (read_uint32, 1),
        (read_uint48, 0),
        (read_uint16, -1),
    ],
)
def test_reads_past_the_buffer_raise(reader, offset) -> None:
    with pytest.raises(OutOfBoundsError):
        reader(bytes(4), offset)


def test_out_of_bounds_is_frame_corruption() -> None:
    with pytest.raises(FrameCorruptionError):
        read_uint16(b"\x01", 0)


def test_hex_dump() -> None:
    assert hex_dump(b"\x02\x01\x0a") == "02 01 0A"
    assert hex_dump(b"") == ""
