from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from muse_v3_receiver.acquisition import encode_mode, preset
from muse_v3_receiver.data_recorder import (
    RecordFileWriter,
    csv_columns,
    format_csv_row,
    session_path,
)
from muse_v3_receiver.models import (
    AcquisitionFrequency,
    SensorKind,
    SensorRecord,
    StreamConfig,
    Vector3,
)


def test_columns_follow_frame_layout() -> None:
    assert csv_columns(SensorKind.IMU | SensorKind.TIMESTAMP) == [
        "gx", "gy", "gz", "ax", "ay", "az", "timestamp",
    ]


def test_shared_temperature_column_appears_once() -> None:
    columns = csv_columns(preset("environmental").kinds)
    assert columns == [
        "timestamp", "temperature", "humidity", "pressure", "range_mm", "light_lux",
    ]


def test_format_row() -> None:
    record = SensorRecord(
        gyroscope=Vector3(1.0, -2.5, 0.0),
        timestamp=datetime(2020, 1, 26, 0, 53, 20, 500000, tzinfo=timezone.utc),
    )
    columns = ["gx", "gy", "gz", "ax", "timestamp"]
    assert format_csv_row(record, columns) == (
        "1.000000,-2.500000,0.000000,,2020-01-26T00:53:20.500+00:00"
    )


def test_writer_creates_csv_and_metadata(tmp_path: Path) -> None:
    config = StreamConfig(
        mode=encode_mode(SensorKind.IMU),
        frequency=AcquisitionFrequency.HZ_50,
        buffered=True,
    )
    path = tmp_path / "run" / "session.csv"
    writer = RecordFileWriter(path, config, buffer_size=2, device_info={"address": "AA:BB"})
    writer.open()
    records = [
        SensorRecord(gyroscope=Vector3(i, 0, 0), accelerometer=Vector3(0, 0, 1000.0))
        for i in range(3)
    ]
    writer.append_rows(records)
    info = writer.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "gx,gy,gz,ax,ay,az"
    assert len(lines) == 4
    assert lines[3].startswith("2,")
    assert info.total_samples == 3

    meta = json.loads(path.with_suffix(".meta.json").read_text(encoding="utf-8"))
    assert meta["total_samples"] == 3
    assert meta["stream_config"]["frequency_hz"] == 50
    assert meta["stream_config"]["frame_size"] == 12
    assert meta["stream_config"]["sensors"] == ["GYROSCOPE", "ACCELEROMETER"]
    assert meta["device_info"]["address"] == "AA:BB"


def test_append_requires_open_file(tmp_path: Path) -> None:
    config = StreamConfig(mode=encode_mode(SensorKind.IMU))
    writer = RecordFileWriter(tmp_path / "x.csv", config)
    with pytest.raises(RuntimeError):
        writer.append_rows([SensorRecord()])


def test_session_path_layout(tmp_path: Path) -> None:
    path = session_path(tmp_path, prefix="walk")
    assert path.parent.parent == tmp_path
    assert path.name.startswith("walk_")
    assert path.suffix == ".csv"
