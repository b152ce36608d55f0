from __future__ import annotations

import asyncio
from pathlib import Path

from muse_v3_receiver import streaming
from muse_v3_receiver.acquisition import preset
from muse_v3_receiver.errors import TransportUnavailableError
from muse_v3_receiver.mock import MockTransport


def test_print_stream_writes_csv_and_recording(tmp_path: Path, capsys) -> None:
    asyncio.run(
        streaming.print_stream(
            MockTransport(),
            preset("imu_timestamp"),
            record_dir=tmp_path,
            duration=0.8,
        )
    )
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "gx,gy,gz,ax,ay,az,timestamp"
    assert len(lines) > 1
    assert all(len(line.split(",")) == 7 for line in lines[1:])

    recordings = list(tmp_path.rglob("*.csv"))
    assert len(recordings) == 1
    assert recordings[0].with_suffix(".meta.json").exists()


def test_print_device_info(capsys) -> None:
    asyncio.run(
        streaming.print_stream(MockTransport(battery=42), preset("dof9"), show_info=True)
    )
    out = capsys.readouterr().out
    assert "battery: 42%" in out
    assert "application: 2.4.1" in out
    assert "state: IDLE" in out


def test_run_exit_codes(monkeypatch) -> None:
    async def failing_stream(*args, **kwargs):
        raise TransportUnavailableError("Muse device not found")

    monkeypatch.setattr(streaming, "print_stream", failing_stream)
    assert streaming.run(preset("dof9"), mock=True) == 1

    async def interrupted_stream(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(streaming, "print_stream", interrupted_stream)
    assert streaming.run(preset("dof9"), mock=True) == 130


def test_run_with_mock_device(capsys) -> None:
    assert streaming.run(preset("dof9"), mock=True, duration=0.5, show_header=False) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines
    assert all(len(line.split(",")) == 9 for line in lines)
