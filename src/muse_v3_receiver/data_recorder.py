"""CSV recording of decoded Muse v3 telemetry.

The column set depends on the acquisition mode, so the header is derived from
the mode the stream was started with. Each recording gets a ``.meta.json``
sidecar describing the session and the stream configuration.

Design principle: simple synchronous I/O with an internal row buffer, so the
telemetry loop only pays for a file write every ``buffer_size`` rows.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, TextIO

from .models import SensorKind, SensorRecord, StreamConfig

logger = logging.getLogger(__name__)

_KIND_COLUMNS: list[tuple[SensorKind, tuple[str, ...]]] = [
    (SensorKind.GYROSCOPE, ("gx", "gy", "gz")),
    (SensorKind.ACCELEROMETER, ("ax", "ay", "az")),
    (SensorKind.MAGNETOMETER, ("mx", "my", "mz")),
    (SensorKind.HDR_ACCELEROMETER, ("hx", "hy", "hz")),
    (SensorKind.ORIENTATION, ("qw", "qi", "qj", "qk")),
    (SensorKind.TIMESTAMP, ("timestamp",)),
    (SensorKind.TEMP_HUMIDITY, ("temperature", "humidity")),
    (SensorKind.TEMP_PRESSURE, ("temperature", "pressure")),
    (SensorKind.RANGE_LIGHT, ("range_mm", "light_lux")),
    (SensorKind.FALL_ALERT, ("alert_level", "alert_armed")),
    (SensorKind.CO2, ("co2_ppm",)),
    (SensorKind.VOC, ("voc_aqi", "voc_ppb")),
    (SensorKind.PARTICULATE, ("pm1_0", "pm2_5", "pm10")),
    (SensorKind.CO_GAS, ("co_ppm",)),
]


def csv_columns(kinds: SensorKind) -> list[str]:
    """Column names for a mode, in frame layout order, without duplicates."""
    columns: list[str] = []
    for kind, names in _KIND_COLUMNS:
        if kinds & kind:
            columns.extend(n for n in names if n not in columns)
    return columns


def flatten_record(record: SensorRecord) -> dict[str, Any]:
    """Map a record onto the flat column names used by :func:`csv_columns`."""
    values: dict[str, Any] = {}
    for prefix, vector in (
        ("g", record.gyroscope),
        ("a", record.accelerometer),
        ("m", record.magnetometer),
        ("h", record.hdr_accelerometer),
    ):
        if vector is not None:
            values[f"{prefix}x"], values[f"{prefix}y"], values[f"{prefix}z"] = (
                vector.x,
                vector.y,
                vector.z,
            )
    if record.orientation is not None:
        q = record.orientation
        values.update(qw=q.w, qi=q.i, qj=q.j, qk=q.k)
    if record.alert_level is not None:
        values["alert_level"] = int(record.alert_level)
    if record.alert_armed is not None:
        values["alert_armed"] = int(record.alert_armed)
    for name in (
        "timestamp",
        "temperature",
        "humidity",
        "pressure",
        "range_mm",
        "light_lux",
        "co2_ppm",
        "voc_aqi",
        "voc_ppb",
        "pm1_0",
        "pm2_5",
        "pm10",
        "co_ppm",
    ):
        value = getattr(record, name)
        if value is not None:
            values[name] = value
    return values


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat(timespec="milliseconds")
    if isinstance(value, float):
        return f"{value:.6f}"
    return str(value)


def format_csv_row(record: SensorRecord, columns: Iterable[str]) -> str:
    values = flatten_record(record)
    return ",".join(_format_value(values.get(c)) for c in columns)


@dataclass
class SessionInfo:
    """Information about a finished recording session."""

    session_id: str
    start_time: datetime
    end_time: Optional[datetime]
    duration_seconds: float
    total_samples: int
    file_path: Path
    file_size_bytes: int


class RecordFileWriter:
    """Buffered CSV writer for one recording session.

    Args:
        filepath: Target CSV path; parent directories are created.
        config: Stream configuration, used for the header and metadata.
        buffer_size: Rows kept in memory between flushes.
        device_info: Extra device description stored in the metadata.
    """

    def __init__(
        self,
        filepath: Path,
        config: StreamConfig,
        buffer_size: int = 100,
        device_info: Optional[dict[str, Any]] = None,
    ):
        self._filepath = filepath
        self._config = config
        self._columns = csv_columns(config.mode.kinds)
        self._buffer_size = buffer_size
        self._device_info = device_info or {}
        self._write_buffer: List[str] = []
        self._file_handle: Optional[TextIO] = None
        self._sample_count = 0
        self._start_time = datetime.now(timezone.utc)

    @property
    def filepath(self) -> Path:
        return self._filepath

    @property
    def columns(self) -> list[str]:
        return list(self._columns)

    def open(self) -> None:
        """Open file for writing with CSV header."""
        try:
            self._filepath.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self._filepath, "w", newline="", encoding="utf-8")
            self._file_handle.write(",".join(self._columns) + "\n")
            self._file_handle.flush()
            logger.info("Opened recording file: %s", self._filepath)
        except OSError as e:
            logger.error("Failed to open recording file %s: %s", self._filepath, e)
            raise

    def append_rows(self, records: Iterable[SensorRecord]) -> None:
        """Add records to the write buffer, flushing when it is full."""
        if not self._file_handle:
            raise RuntimeError("File not open for writing")

        for record in records:
            self._write_buffer.append(format_csv_row(record, self._columns) + "\n")
            self._sample_count += 1

        if len(self._write_buffer) >= self._buffer_size:
            self._flush_internal()

    def _flush_internal(self) -> None:
        if not self._write_buffer or not self._file_handle:
            return
        self._file_handle.writelines(self._write_buffer)
        self._write_buffer.clear()
        self._file_handle.flush()

    def flush(self, force_fsync: bool = False) -> None:
        """Write buffered rows to disk."""
        self._flush_internal()
        if force_fsync and self._file_handle:
            try:
                os.fsync(self._file_handle.fileno())
            except OSError as e:
                logger.warning("fsync failed: %s", e)

    def close(self) -> SessionInfo:
        """Flush, close the file and write the metadata sidecar."""
        if not self._file_handle:
            raise RuntimeError("File not open")

        try:
            self._flush_internal()
            self._file_handle.close()

            end_time = datetime.now(timezone.utc)
            duration = (end_time - self._start_time).total_seconds()
            file_size = self._filepath.stat().st_size
            self._write_metadata_file(end_time, duration, file_size)

            logger.info(
                "Closed recording: %d samples, %.1fs, %d bytes",
                self._sample_count,
                duration,
                file_size,
            )
            return SessionInfo(
                session_id=self._filepath.stem,
                start_time=self._start_time,
                end_time=end_time,
                duration_seconds=duration,
                total_samples=self._sample_count,
                file_path=self._filepath,
                file_size_bytes=file_size,
            )
        finally:
            self._file_handle = None

    def _write_metadata_file(self, end_time: datetime, duration: float, file_size: int) -> None:
        metadata_path = self._filepath.with_suffix(".meta.json")
        metadata = {
            "session_id": self._filepath.stem,
            "start_time": self._start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "duration_seconds": duration,
            "total_samples": self._sample_count,
            "average_sample_rate_hz": self._sample_count / duration if duration > 0 else 0,
            "file_path": str(self._filepath),
            "file_size_bytes": file_size,
            "columns": self._columns,
            "device_info": {"connection_type": "BLE", **self._device_info},
            "stream_config": {
                "mode": f"0x{self._config.mode.mask:06X}",
                "sensors": [k.name for k in self._config.mode.slots()],
                "frame_size": self._config.mode.frame_size,
                "frequency_hz": self._config.frequency.hz,
                "buffered": self._config.buffered,
            },
            "recording_settings": {"buffer_size": self._buffer_size},
        }
        try:
            with open(metadata_path, "w", encoding="utf-8") as f:
                json.dump(metadata, f, indent=2)
        except OSError as e:
            logger.warning("Failed to write metadata file: %s", e)

    @property
    def samples_written(self) -> int:
        return self._sample_count


def session_path(output_dir: Path, prefix: Optional[str] = None) -> Path:
    """``output_dir/YYYY-MM-DD/<prefix>_YYYYmmdd_HHMMSS.csv``."""
    now = datetime.now()
    filename = f"{prefix or 'muse_data'}_{now.strftime('%Y%m%d_%H%M%S')}.csv"
    return output_dir / now.strftime("%Y-%m-%d") / filename


__all__ = [
    "csv_columns",
    "flatten_record",
    "format_csv_row",
    "SessionInfo",
    "RecordFileWriter",
    "session_path",
]
