"""Command-line front-ends: device information and CSV telemetry streaming.

The CSV layout follows the acquisition mode: one column group per sensor in
frame order (see :func:`data_recorder.csv_columns`). Telemetry goes to
stdout and logs go to stderr, so the output can be piped straight into other
tools. Optionally every record is also written to a recording file.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from .data_recorder import RecordFileWriter, csv_columns, format_csv_row, session_path
from .engine import DEFAULT_COMMAND_TIMEOUT
from .mock import MockTransport
from .models import AcquisitionFrequency, AcquisitionMode, HardwareCapability, StreamConfig
from .session import MuseSession
from .transport import DEVICE_NAME_PREFIX, BleakTransport, Transport

logger = logging.getLogger(__name__)

HEALTH_REPORT_INTERVAL = 10.0


def make_transport(
    *,
    mock: bool = False,
    address: Optional[str] = None,
    device_name: str = DEVICE_NAME_PREFIX,
    scan_timeout: float = 10.0,
) -> Transport:
    if mock:
        logger.info("Using mock Muse device (no BLE hardware required)")
        return MockTransport()
    return BleakTransport(address, name_prefix=device_name, scan_timeout=scan_timeout)


async def print_device_info(session: MuseSession) -> None:
    """Print battery, firmware, state and capabilities of the connected unit."""
    battery = await session.read_battery()
    firmware = await session.read_firmware()
    state = await session.read_state()
    capabilities = await session.read_capabilities()

    print(f"battery: {battery}%")
    print(f"bootloader: {firmware.bootloader}")
    print(f"application: {firmware.application_str}")
    if firmware.bluetooth is not None:
        print(f"bluetooth: {firmware.bluetooth_str}")
    print(f"state: {state.name}")
    names = [c.name for c in HardwareCapability if c in capabilities]
    print(f"capabilities: 0x{int(capabilities):08X} ({', '.join(names) or 'none'})")


async def _consume(
    session: MuseSession,
    config: StreamConfig,
    show_header: bool,
    writer: Optional[RecordFileWriter],
) -> int:
    columns = csv_columns(config.mode.kinds)
    header = ",".join(columns)
    if show_header:
        logger.info("CSV header: %s", header)
        print(header, flush=True)

    count = 0
    started = last_report = time.monotonic()
    async for record in session.telemetry():
        csv_line = format_csv_row(record, columns)
        logger.debug("CSV output: %s", csv_line)
        print(csv_line)
        if writer is not None:
            writer.append_rows([record])
        count += 1

        now = time.monotonic()
        if now - last_report >= HEALTH_REPORT_INTERVAL:
            stats = session.stats
            logger.info(
                "Stream healthy: %d records, %.1f Hz avg, %d corrupt, %d discarded",
                count,
                count / (now - started),
                stats.corrupted,
                stats.discarded,
            )
            last_report = now
    logger.warning("Telemetry stream ended after %d records", count)
    return count


async def print_stream(
    transport: Transport,
    mode: AcquisitionMode,
    *,
    frequency: AcquisitionFrequency = AcquisitionFrequency.HZ_25,
    buffered: bool = True,
    show_header: bool = True,
    show_info: bool = False,
    record_dir: Optional[Path] = None,
    duration: Optional[float] = None,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> None:
    """Connect, start streaming ``mode`` and print decoded records as CSV.

    The whole lifecycle runs inside one :class:`MuseSession`: connect, start
    the stream, print one CSV line per decoded record, then stop the stream
    and disconnect on the way out, including on cancellation or Ctrl+C.
    Corrupt notifications are skipped by the session and only show up in the
    periodic health log.

    Args:
        transport: Link to the device (BLE or mock).
        mode: Validated acquisition mode. It also determines the CSV
            columns, one group per sensor in frame order.
        frequency: Sampling frequency.
        buffered: Request packed notifications instead of one frame each.
            Buffered mode carries up to 120 bytes of frames per
            notification and is the better choice above 50 Hz.
        show_header: Print the CSV column header first. Disable it when
            appending to an existing file or feeding a pipeline.
        show_info: Print battery, firmware, state and capabilities, then
            return without starting a stream.
        record_dir: If set, also record the stream to
            ``record_dir/YYYY-MM-DD/muse_data_<timestamp>.csv`` with a
            ``.meta.json`` sidecar.
        duration: Seconds to stream before stopping; unlimited if None.
        command_timeout: Seconds to wait for each command response.

    Raises:
        MuseError: Any connection, command or configuration failure is
            propagated; :func:`run` maps it to an exit code.

    Note:
        Without ``duration`` the function runs until the link drops or the
        task is cancelled. Output precision is fixed (6 decimal places for
        floats, millisecond ISO timestamps) so downstream parsing does not
        depend on the sensor values.
    """
    async with MuseSession(transport, command_timeout=command_timeout) as session:
        if show_info:
            await print_device_info(session)
            return

        config = await session.start_streaming(mode, frequency, buffered)

        writer: Optional[RecordFileWriter] = None
        if record_dir is not None:
            writer = RecordFileWriter(session_path(record_dir), config)
            writer.open()
        try:
            consume = _consume(session, config, show_header, writer)
            if duration is None:
                await consume
            else:
                try:
                    await asyncio.wait_for(consume, timeout=duration)
                except asyncio.TimeoutError:
                    logger.info("Requested duration of %.1fs reached", duration)
        finally:
            if writer is not None:
                info = writer.close()
                logger.info("Recording saved: %s", info.file_path)


def run(
    mode: AcquisitionMode,
    *,
    mock: bool = False,
    address: Optional[str] = None,
    device_name: str = DEVICE_NAME_PREFIX,
    scan_timeout: float = 10.0,
    frequency: AcquisitionFrequency = AcquisitionFrequency.HZ_25,
    buffered: bool = True,
    show_header: bool = True,
    show_info: bool = False,
    record_dir: Optional[Path] = None,
    duration: Optional[float] = None,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> int:
    """Blocking CLI wrapper around :func:`print_stream`.

    Builds the transport (BLE or simulated), runs the streaming session in
    a fresh event loop and turns the outcome into a process exit code. Any
    failure is logged with its traceback before returning.

    Args:
        mode: Validated acquisition mode.
        mock: Use :class:`MockTransport` instead of BLE hardware.
        address: BLE address to connect to. If None, the first device whose
            name starts with ``device_name`` (or that advertises the Muse
            service) is used.
        device_name: Advertised name prefix used during discovery.
        scan_timeout: Seconds to scan when no address is given.
        frequency: Sampling frequency.
        buffered: Request packed notifications instead of one frame each.
        show_header: Print the CSV column header first.
        show_info: Print device information instead of streaming.
        record_dir: If set, also record the stream below this directory.
        duration: Seconds to stream before stopping; unlimited if None.
        command_timeout: Seconds to wait for each command response.

    Returns:
        int: Exit code.
            0: Normal completion
            1: Error termination (scan/connection failures, rejected commands)
            130: Keyboard interrupt (SIGINT/Ctrl+C)
    """
    transport = make_transport(
        mock=mock, address=address, device_name=device_name, scan_timeout=scan_timeout
    )
    try:
        asyncio.run(
            print_stream(
                transport,
                mode,
                frequency=frequency,
                buffered=buffered,
                show_header=show_header,
                show_info=show_info,
                record_dir=record_dir,
                duration=duration,
                command_timeout=command_timeout,
            )
        )
        return 0
    except KeyboardInterrupt:
        # SIGINT: Return 130 by convention
        return 130
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1


__all__ = ["HEALTH_REPORT_INTERVAL", "make_transport", "print_device_info", "print_stream", "run"]
