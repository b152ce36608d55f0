from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .acquisition import PRESETS, encode_mode, parse_kinds, preset
from .errors import MuseError
from .models import AcquisitionFrequency
from .session import MuseSession
from .streaming import run
from .transport import DEVICE_NAME_PREFIX

logger = logging.getLogger(__name__)

__all__ = ["MuseSession", "main"]


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="muse-v3-receiver",
        description="Receive Muse v3 telemetry over BLE and stream it as CSV to stdout.",
    )
    parser.add_argument("--address", help="BLE address of the device (auto-discovered if omitted)")
    parser.add_argument(
        "--device-name",
        default=DEVICE_NAME_PREFIX,
        help="Advertised name prefix to look for during scanning",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=10.0,
        help="Scan timeout in seconds",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=3.0,
        help="Seconds to wait for each command response (default: 3)",
    )
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--preset",
        default="imu_timestamp",
        choices=sorted(PRESETS),
        help="Named acquisition mode (default: imu_timestamp)",
    )
    mode_group.add_argument(
        "--sensors",
        default=None,
        help="Comma separated sensor kinds, e.g. 'imu,magnetometer,timestamp'",
    )
    parser.add_argument(
        "--frequency",
        type=int,
        default=25,
        choices=[f.hz for f in AcquisitionFrequency],
        help="Sampling frequency in Hz (default: 25)",
    )
    parser.add_argument(
        "--direct",
        action="store_true",
        help="Request one frame per notification instead of buffered packing",
    )
    parser.add_argument(
        "--info",
        action="store_true",
        help="Print battery, firmware, state and capabilities, then exit",
    )
    parser.add_argument(
        "--record",
        type=Path,
        default=None,
        metavar="DIR",
        help="Also record the stream to a CSV file below DIR",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop streaming after this many seconds (default: unlimited)",
    )
    parser.add_argument(
        "--no-header",
        action="store_true",
        help="Do not print the CSV header line",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use a simulated device (no BLE hardware required)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
            "NOTSET",
        ],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (default: stderr only)",
    )

    args = parser.parse_args()

    # CSV goes to stdout, logs to stderr and the optional file
    level = getattr(logging, str(args.log_level).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if args.log_file:
        try:
            handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {args.log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    try:
        if args.sensors:
            mode = encode_mode(parse_kinds(args.sensors))
        else:
            mode = preset(args.preset)
    except MuseError as e:
        parser.error(str(e))

    code = run(
        mode,
        mock=args.mock,
        address=args.address,
        device_name=args.device_name,
        scan_timeout=args.scan_timeout,
        frequency=AcquisitionFrequency.from_hz(args.frequency),
        buffered=not args.direct,
        show_header=not args.no_header,
        show_info=args.info,
        record_dir=args.record,
        duration=args.duration,
        command_timeout=args.command_timeout,
    )
    raise SystemExit(code)
