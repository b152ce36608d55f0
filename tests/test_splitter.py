from __future__ import annotations

import struct

import pytest

from muse_v3_receiver.acquisition import encode_mode
from muse_v3_receiver.errors import FrameCorruptionError
from muse_v3_receiver.models import SensorKind
from muse_v3_receiver.splitter import decode_notification, split_notification


def test_trailing_bytes_are_dropped() -> None:
    frames = split_notification(bytes(range(100)), 24)
    assert len(frames) == 4
    assert frames[0] == bytes(range(24))
    assert frames[3] == bytes(range(72, 96))


def test_only_first_120_bytes_are_used() -> None:
    assert len(split_notification(bytes(130), 30)) == 4
    assert len(split_notification(bytes(244), 6)) == 20


def test_direct_mode_yields_one_frame() -> None:
    frames = split_notification(bytes(range(36)), 18, buffered=False)
    assert frames == [bytes(range(18))]


def test_notification_without_a_whole_frame() -> None:
    with pytest.raises(FrameCorruptionError):
        split_notification(bytes(10), 12)


def test_invalid_frame_size() -> None:
    with pytest.raises(ValueError):
        split_notification(bytes(12), 0)


def test_decoded_in_packing_order() -> None:
    mode = encode_mode(SensorKind.IMU)
    data = b"".join(struct.pack("<hhhhhh", n, 0, 0, 0, 0, 0) for n in (1, 2, 3))
    records = decode_notification(data, mode)
    assert [round(r.gyroscope.x / 0.035) for r in records] == [1, 2, 3]


def test_corrupt_sub_frame_rejects_whole_notification() -> None:
    mode = encode_mode(SensorKind.IMU | SensorKind.TIMESTAMP)
    good = bytes(12) + (1000).to_bytes(6, "little")
    bad = bytes(12) + b"\xff" * 6
    with pytest.raises(FrameCorruptionError):
        decode_notification(good + bad + good, mode)
