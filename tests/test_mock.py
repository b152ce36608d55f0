from __future__ import annotations

import asyncio

import pytest

from muse_v3_receiver import commands
from muse_v3_receiver.acquisition import PRESETS, VALID_FRAME_SIZES, encode_mode, frame_size, preset
from muse_v3_receiver.decoder import decode_frame
from muse_v3_receiver.mock import MOCK_CAPABILITIES, MockTransport, synth_frame
from muse_v3_receiver.models import SLOT_ORDER, AcquisitionFrequency, DeviceState, SensorKind
from muse_v3_receiver.session import MuseSession


@pytest.mark.parametrize("name", sorted(PRESETS))
def test_synth_frame_matches_layout(name) -> None:
    kinds = PRESETS[name]
    assert len(synth_frame(int(kinds), elapsed=1.0)) == frame_size(kinds)


FIELDS_BY_KIND = {
    SensorKind.GYROSCOPE: {"gyroscope"},
    SensorKind.ACCELEROMETER: {"accelerometer"},
    SensorKind.MAGNETOMETER: {"magnetometer"},
    SensorKind.HDR_ACCELEROMETER: {"hdr_accelerometer"},
    SensorKind.ORIENTATION: {"orientation"},
    SensorKind.TIMESTAMP: {"timestamp"},
    SensorKind.TEMP_HUMIDITY: {"temperature", "humidity"},
    SensorKind.TEMP_PRESSURE: {"temperature", "pressure"},
    SensorKind.RANGE_LIGHT: {"range_mm", "light_lux"},
    SensorKind.FALL_ALERT: {"alert_level", "alert_armed"},
    SensorKind.CO2: {"co2_ppm"},
    SensorKind.VOC: {"voc_aqi", "voc_ppb"},
    SensorKind.PARTICULATE: {"pm1_0", "pm2_5", "pm10"},
    SensorKind.CO_GAS: {"co_ppm"},
}


def _accepted_subsets(kinds) -> list[int]:
    masks = []
    for subset in range(1, 1 << len(kinds)):
        mask = sum(int(k) for n, k in enumerate(kinds) if subset >> n & 1)
        if frame_size(mask) in VALID_FRAME_SIZES:
            masks.append(mask)
    return masks


def test_synth_frames_decode_to_the_fields_of_their_mode() -> None:
    masks = set(_accepted_subsets(SLOT_ORDER[:11]))
    masks |= set(_accepted_subsets(SLOT_ORDER[11:]))
    masks |= {int(kinds) for kinds in PRESETS.values()}
    assert len(masks) > 1034

    for mask in sorted(masks):
        mode = encode_mode(SensorKind(mask))
        frame = synth_frame(mask, elapsed=2.5)
        assert len(frame) == mode.frame_size
        expected = set()
        for kind in mode.slots():
            expected |= FIELDS_BY_KIND.get(kind, set())
        record = decode_frame(frame, mode)
        assert set(record.fields_present()) == expected, hex(mask)


def test_device_info_over_mock() -> None:
    async def scenario():
        async with MuseSession(MockTransport(battery=55), settle_delay=0) as session:
            return (
                await session.read_battery(),
                await session.read_firmware(),
                await session.read_state(),
                await session.read_capabilities(),
            )

    battery, firmware, state, caps = asyncio.run(scenario())
    assert battery == 55
    assert firmware.bootloader == "1.0.3"
    assert firmware.application == (2, 4, 1)
    assert firmware.bluetooth == (5, 1)
    assert state is DeviceState.IDLE
    assert caps == MOCK_CAPABILITIES


def test_buffered_stream_over_mock() -> None:
    transport = MockTransport()

    async def scenario():
        async with MuseSession(transport, settle_delay=0) as session:
            await session.start_streaming(preset("imu_timestamp"), AcquisitionFrequency.HZ_100)
            records = []
            async for record in session.telemetry():
                records.append(record)
                if len(records) >= 12:
                    break
            return records, session.stats

    records, stats = asyncio.run(scenario())
    assert len(records) == 12
    # 120 // 18 frames per notification
    assert stats.notifications == 2
    assert stats.corrupted == 0
    stamps = [r.timestamp for r in records]
    assert stamps == sorted(stamps)
    assert all(r.accelerometer is not None and r.magnetometer is None for r in records)
    assert transport.state is DeviceState.IDLE


def test_direct_stream_over_mock() -> None:
    async def scenario():
        async with MuseSession(MockTransport(), settle_delay=0) as session:
            await session.start_streaming(
                encode_mode(SensorKind.DOF9), AcquisitionFrequency.HZ_200, buffered=False
            )
            count = 0
            async for _ in session.telemetry():
                count += 1
                if count >= 3:
                    break
            return count, session.stats.notifications

    assert asyncio.run(scenario()) == (3, 3)


def test_dropped_idle_ack_does_not_block_streaming() -> None:
    transport = MockTransport(drop_responses=1)

    async def scenario():
        async with MuseSession(transport, command_timeout=0.1, settle_delay=0) as session:
            await session.start_streaming(preset("dof9"))
            return session.is_streaming

    assert asyncio.run(scenario()) is True
    assert transport.written[0] == commands.build_set_state(DeviceState.IDLE)


def test_mock_refuses_start_outside_idle() -> None:
    transport = MockTransport()
    mode = preset("dof9")

    async def scenario():
        session = MuseSession(transport, settle_delay=0)
        await session.connect()
        start = commands.build_start_stream(mode, AcquisitionFrequency.HZ_25)
        first = await session.engine.send(start)
        second = await session.engine.send(start)
        await session.disconnect()
        return first, second

    first, second = asyncio.run(scenario())
    assert commands.is_acknowledged(first)
    assert not commands.is_acknowledged(second)
    assert second[3] == 0x02


def test_mock_rejects_unknown_frequency_code() -> None:
    transport = MockTransport()
    # dof9 start command with frequency byte 0x03, which names no rate
    start = commands.build_start_stream(preset("dof9"), AcquisitionFrequency.HZ_25)[:-1] + b"\x03"

    async def scenario():
        session = MuseSession(transport, settle_delay=0)
        await session.connect()
        reply = await session.engine.send(start)
        await session.disconnect()
        return reply

    reply = asyncio.run(scenario())
    assert not commands.is_acknowledged(reply)
    assert reply[2] == commands.CMD_STATE
    assert reply[3] == 0x03
    assert transport.state is DeviceState.IDLE
