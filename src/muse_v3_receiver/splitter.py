"""Demultiplexing of data-channel notifications into telemetry frames.

In buffered mode the firmware packs as many whole frames as fit into one
notification. Only the first 120 bytes of a notification are usable even when
the negotiated MTU is larger. Each notification is processed on its own:
trailing bytes that do not form a whole frame are dropped, never carried over
to the next notification.
"""

from __future__ import annotations

import logging

from .codec import hex_dump
from .decoder import decode_frame
from .errors import FrameCorruptionError
from .models import AcquisitionMode, SensorRecord

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_PAYLOAD = 120


def split_notification(
    data: bytes,
    frame_size: int,
    *,
    buffered: bool = True,
    max_payload: int = MAX_NOTIFICATION_PAYLOAD,
) -> list[bytes]:
    """Cut one notification into fixed-size frames in packing order.

    Args:
        data: Raw notification payload.
        frame_size: Bytes per frame for the active acquisition mode.
        buffered: False for direct mode, where a notification holds one frame.
        max_payload: Usable notification length; bytes past it are ignored.

    Returns:
        list[bytes]: ``floor(min(len(data), max_payload) / frame_size)``
        frames in buffered mode, exactly one in direct mode.

    Raises:
        FrameCorruptionError: If the notification does not hold one whole frame.
    """
    if frame_size <= 0:
        raise ValueError(f"frame_size must be positive, got {frame_size}")

    usable = min(len(data), max_payload)
    if usable < frame_size:
        raise FrameCorruptionError(
            f"Notification of {len(data)} bytes holds no complete {frame_size}-byte frame"
        )

    count = usable // frame_size if buffered else 1
    trailing = usable - count * frame_size
    if trailing:
        logger.debug("Discarding %d trailing bytes of notification", trailing)
    return [bytes(data[i * frame_size : (i + 1) * frame_size]) for i in range(count)]


def decode_notification(
    data: bytes,
    mode: AcquisitionMode,
    *,
    buffered: bool = True,
    max_payload: int = MAX_NOTIFICATION_PAYLOAD,
) -> list[SensorRecord]:
    """Split and decode a notification.

    Decoding is all-or-nothing: if any sub-frame is corrupt the whole
    notification is rejected with :class:`FrameCorruptionError`.
    """
    frames = split_notification(
        data, mode.frame_size, buffered=buffered, max_payload=max_payload
    )
    try:
        return [decode_frame(frame, mode) for frame in frames]
    except FrameCorruptionError:
        logger.debug("Corrupt notification: %s", hex_dump(data))
        raise


__all__ = ["MAX_NOTIFICATION_PAYLOAD", "split_notification", "decode_notification"]
