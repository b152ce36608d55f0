"""Command frames and response envelopes of the Muse v3 command channel.

Commands are written as ``[code, argc, arg0, ...]``. Reads set the top bit of
the code (``0x80``). Every response starts with the same 4-byte envelope::

    byte 0  acknowledge code (0x00 = ACK)
    byte 1  payload length
    byte 2  echoed command code
    byte 3  error code (0x00 = no error)
    byte 4+ payload
"""

from __future__ import annotations

import logging
from typing import Optional

from .codec import hex_dump, read_uint32
from .errors import CommandRejectedError
from .models import (
    AcquisitionFrequency,
    AcquisitionMode,
    DeviceState,
    FirmwareVersion,
    HardwareCapability,
)

logger = logging.getLogger(__name__)

READ_FLAG = 0x80

CMD_STATE = 0x02
CMD_BATTERY_CHARGE = 0x07
CMD_FW_VERSION = 0x0A
CMD_SENSORS_FULLSCALE = 0x0F

ACK = 0x00
NO_ERROR = 0x00

ENVELOPE_SIZE = 4

# Application version block following the bootloader string
_APP_VERSION_BLOCK = 7


def read_code(command: int) -> int:
    return command | READ_FLAG


def build_read_battery() -> bytes:
    return bytes([read_code(CMD_BATTERY_CHARGE), 0x00])


def build_read_firmware() -> bytes:
    return bytes([read_code(CMD_FW_VERSION), 0x00])


def build_read_state() -> bytes:
    return bytes([read_code(CMD_STATE), 0x00])


def build_read_capabilities() -> bytes:
    return bytes([read_code(CMD_SENSORS_FULLSCALE), 0x01, 0x00])


def build_set_state(state: DeviceState) -> bytes:
    return bytes([CMD_STATE, 0x01, int(state)])


def build_start_stream(
    mode: AcquisitionMode, frequency: AcquisitionFrequency, buffered: bool = True
) -> bytes:
    """Set-state command that switches the unit into a streaming state."""
    state = DeviceState.STREAMING_BUFFERED if buffered else DeviceState.STREAMING_DIRECT
    return bytes([CMD_STATE, 0x05, int(state)]) + mode.mask_bytes() + bytes([int(frequency)])


def is_acknowledged(response: Optional[bytes], command_code: Optional[int] = None) -> bool:
    """True for a response of at least envelope size with ACK and no error.

    With ``command_code`` the response must also echo that code, so a late
    reply to a different command is not taken for this one.
    """
    return (
        response is not None
        and len(response) >= ENVELOPE_SIZE
        and response[0] == ACK
        and (command_code is None or response[2] == command_code)
        and response[3] == NO_ERROR
    )


def check_response(response: bytes, command_code: int, min_payload: int = 0) -> bytes:
    """Validate a response envelope and return its payload.

    Raises:
        CommandRejectedError: On a short response, non-ACK, a different
            echoed command code, a firmware error code, or a payload shorter
            than ``min_payload``.
    """
    if len(response) < ENVELOPE_SIZE:
        raise CommandRejectedError(
            f"Response to 0x{command_code:02X} too short: {hex_dump(response)}",
            response=response,
        )
    ack, echoed, error_code = response[0], response[2], response[3]
    if ack != ACK or echoed != command_code or error_code != NO_ERROR:
        raise CommandRejectedError(
            f"Command 0x{command_code:02X} rejected: ack=0x{ack:02X} "
            f"echo=0x{echoed:02X} error=0x{error_code:02X}",
            ack=ack,
            error_code=error_code,
            response=response,
        )
    payload = response[ENVELOPE_SIZE:]
    if len(payload) < min_payload:
        raise CommandRejectedError(
            f"Response to 0x{command_code:02X} carries {len(payload)} payload bytes, "
            f"expected at least {min_payload}",
            ack=ack,
            error_code=error_code,
            response=response,
        )
    return payload


def parse_battery(response: bytes) -> int:
    """Battery charge in percent."""
    return check_response(response, read_code(CMD_BATTERY_CHARGE), 1)[0]


def parse_state(response: bytes) -> DeviceState:
    return DeviceState(check_response(response, read_code(CMD_STATE), 1)[0])


def parse_capabilities(response: bytes) -> HardwareCapability:
    payload = check_response(response, read_code(CMD_SENSORS_FULLSCALE), 4)
    return HardwareCapability(read_uint32(payload, 0))


def parse_firmware(response: bytes) -> FirmwareVersion:
    """Parse the firmware version response.

    Payload layout: NUL-terminated ASCII bootloader version, then a 7-byte
    application block starting with major, minor, patch, then an optional
    Bluetooth stack major, minor.
    """
    payload = check_response(response, read_code(CMD_FW_VERSION))
    end = payload.find(b"\x00")
    if end < 0:
        raise CommandRejectedError(
            "Firmware response has no bootloader terminator", response=response
        )
    bootloader = payload[:end].decode("ascii", errors="replace")

    app_start = end + 1
    if app_start + _APP_VERSION_BLOCK > len(payload):
        raise CommandRejectedError(
            "Firmware response truncated before the application version",
            response=response,
        )
    application = (payload[app_start], payload[app_start + 1], payload[app_start + 2])

    bluetooth: Optional[tuple[int, int]] = None
    bt_start = app_start + _APP_VERSION_BLOCK
    if bt_start + 2 <= len(payload):
        bluetooth = (payload[bt_start], payload[bt_start + 1])

    return FirmwareVersion(bootloader=bootloader, application=application, bluetooth=bluetooth)


__all__ = [
    "READ_FLAG",
    "CMD_STATE",
    "CMD_BATTERY_CHARGE",
    "CMD_FW_VERSION",
    "CMD_SENSORS_FULLSCALE",
    "ACK",
    "NO_ERROR",
    "read_code",
    "build_read_battery",
    "build_read_firmware",
    "build_read_state",
    "build_read_capabilities",
    "build_set_state",
    "build_start_stream",
    "is_acknowledged",
    "check_response",
    "parse_battery",
    "parse_state",
    "parse_capabilities",
    "parse_firmware",
]
