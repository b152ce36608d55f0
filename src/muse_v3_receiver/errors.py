"""Exception types raised by the Muse v3 protocol engine and decoder."""

from __future__ import annotations

from typing import Optional


class MuseError(Exception):
    """Base class for every error reported by this package."""


class TransportUnavailableError(MuseError):
    """No connection, missing characteristics, or the link dropped."""


class CommandTimeoutError(MuseError):
    """No correlated response arrived before the deadline."""


class CommandInProgressError(MuseError):
    """A command was sent while another one was still awaiting its response."""


class CommandRejectedError(MuseError):
    """The firmware answered with a non-zero ack or error code."""

    def __init__(
        self,
        message: str,
        *,
        ack: Optional[int] = None,
        error_code: Optional[int] = None,
        response: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.ack = ack
        self.error_code = error_code
        self.response = response


class InvalidConfigurationError(MuseError):
    """The requested acquisition mode produces a frame size the firmware rejects."""


class FrameCorruptionError(MuseError):
    """A telemetry frame does not match the layout implied by its mode."""


class OutOfBoundsError(FrameCorruptionError):
    """A fixed-offset read ran past the end of the buffer."""


__all__ = [
    "MuseError",
    "TransportUnavailableError",
    "CommandTimeoutError",
    "CommandInProgressError",
    "CommandRejectedError",
    "InvalidConfigurationError",
    "FrameCorruptionError",
    "OutOfBoundsError",
]
