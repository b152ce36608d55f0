from __future__ import annotations

import pytest

from muse_v3_receiver.acquisition import (
    PRESETS,
    encode_mode,
    frame_size,
    parse_kinds,
    preset,
)
from muse_v3_receiver.errors import InvalidConfigurationError
from muse_v3_receiver.models import SLOT_ORDER, SensorKind


def test_imu_is_one_twelve_byte_unit() -> None:
    assert encode_mode(SensorKind.IMU).frame_size == 12
    # Overlapping requests are counted once
    assert encode_mode(SensorKind.IMU | SensorKind.GYROSCOPE).frame_size == 12
    assert encode_mode([SensorKind.IMU, SensorKind.ACCELEROMETER]).frame_size == 12


def test_common_sizes() -> None:
    assert encode_mode(SensorKind.DOF9).frame_size == 18
    assert encode_mode(SensorKind.IMU | SensorKind.TIMESTAMP).frame_size == 18
    assert encode_mode(SensorKind.ORIENTATION).frame_size == 6
    assert encode_mode(SensorKind.DOF9 | SensorKind.TIMESTAMP).frame_size == 24


def test_unsupported_size_is_rejected() -> None:
    kinds = (
        SensorKind.IMU
        | SensorKind.MAGNETOMETER
        | SensorKind.TIMESTAMP
        | SensorKind.TEMP_HUMIDITY
        | SensorKind.RANGE_LIGHT
    )
    assert frame_size(kinds) == 36
    with pytest.raises(InvalidConfigurationError):
        encode_mode(kinds)


def test_empty_selection_is_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        encode_mode([])


def test_unknown_bits_are_rejected() -> None:
    with pytest.raises(InvalidConfigurationError):
        encode_mode(SensorKind.IMU | 0x800000)


@pytest.mark.parametrize(
    "name,size",
    [
        ("dof9", 18),
        ("imu_orientation", 18),
        ("imu_timestamp", 18),
        ("dof9_timestamp", 24),
        ("environmental", 24),
        ("imu_hdr_timestamp", 24),
        ("dof9_orientation_timestamp", 30),
        ("comprehensive", 60),
    ],
)
def test_presets(name, size) -> None:
    assert preset(name).frame_size == size


def test_every_preset_is_listed() -> None:
    assert len(PRESETS) == 8


def test_unknown_preset() -> None:
    with pytest.raises(InvalidConfigurationError):
        preset("everything")


def test_mask_bytes_and_slot_order() -> None:
    mode = encode_mode(SensorKind.TIMESTAMP | SensorKind.DOF9)
    assert mode.mask == 0x27
    assert mode.mask_bytes() == b"\x27\x00\x00"
    assert mode.slots() == [
        SensorKind.GYROSCOPE,
        SensorKind.ACCELEROMETER,
        SensorKind.MAGNETOMETER,
        SensorKind.TIMESTAMP,
    ]


def test_aqi_bits_land_in_the_third_mask_byte() -> None:
    mode = encode_mode(SensorKind.CO2 | SensorKind.PARTICULATE)
    assert mode.frame_size == 12
    assert mode.mask_bytes() == b"\x00\x00\x09"


def test_parse_kinds() -> None:
    assert parse_kinds("imu, timestamp") == SensorKind.IMU | SensorKind.TIMESTAMP
    assert parse_kinds("dof9,hdr-accelerometer") == SensorKind.DOF9 | SensorKind.HDR_ACCELEROMETER
    with pytest.raises(InvalidConfigurationError):
        parse_kinds("imu,barometer")


def test_every_core_subset_is_sized_and_validated_by_slot_count() -> None:
    core = SLOT_ORDER[:11]
    assert [int(k) for k in core] == [1 << bit for bit in range(11)]
    accepted = 0
    for subset in range(1 << len(core)):
        kinds = SensorKind(subset)
        expected = 6 * bin(subset).count("1")
        assert frame_size(kinds) == expected
        if expected in {6, 12, 18, 24, 30, 60}:
            assert encode_mode(kinds).frame_size == expected
            accepted += 1
        else:
            with pytest.raises(InvalidConfigurationError):
                encode_mode(kinds)
    # C(11,1) + C(11,2) + C(11,3) + C(11,4) + C(11,5) + C(11,10)
    assert accepted == 11 + 55 + 165 + 330 + 462 + 11
