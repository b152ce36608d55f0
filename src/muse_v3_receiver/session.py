"""Device control for one Muse v3 connection.

:class:`MuseSession` owns everything that is mutable for the lifetime of a
connection: the command engine, the active stream configuration and the
streaming flag. Frame splitting and decoding only read that state.

Starting a stream follows the sequence the firmware requires:

1. force the unit to IDLE (best effort: a missed acknowledgement is logged
   and tolerated, the firmware still accepts the configure command),
2. wait a settle delay, because the unit is not ready for a new command
   right after acknowledging one,
3. send the streaming state with mode mask and frequency,
4. accept only an ACK with no error code.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from . import commands
from .acquisition import encode_mode
from .codec import hex_dump
from .engine import DEFAULT_COMMAND_TIMEOUT, CommandEngine
from .errors import (
    CommandRejectedError,
    CommandTimeoutError,
    FrameCorruptionError,
    InvalidConfigurationError,
    TransportUnavailableError,
)
from .models import (
    AcquisitionFrequency,
    AcquisitionMode,
    DeviceState,
    FirmwareVersion,
    HardwareCapability,
    SensorRecord,
    StreamConfig,
)
from .splitter import MAX_NOTIFICATION_PAYLOAD, decode_notification
from .transport import Transport

logger = logging.getLogger(__name__)

SETTLE_DELAY = 0.3


@dataclass
class SessionStats:
    """Telemetry counters for health monitoring."""

    notifications: int = 0
    records: int = 0
    discarded: int = 0
    corrupted: int = 0


class MuseSession:
    """Command and streaming control for a single connected Muse v3 unit.

    Construct one session per connection. The session registers itself as
    the transport's response and disconnect handler, so command replies go
    straight to its :class:`CommandEngine` and a dropped link fails the
    pending command immediately instead of waiting for the timeout.

    It is also an async context manager that connects the transport on
    entry and, on exit, stops an active stream (best effort, a failure is
    logged) and disconnects.

    Typical use::

        async with MuseSession(BleakTransport()) as session:
            await session.start_streaming(preset("imu_timestamp"))
            async for record in session.telemetry():
                ...

    Args:
        transport: Link-layer collaborator (BLE, mock or a test double).
        command_timeout: Seconds to wait for each command response. The
            protocol default is 3 s.
        settle_delay: Seconds to wait between the idle transition and the
            start command. The unit is not ready for a new command right
            after acknowledging one.
        max_payload: Usable bytes per data notification. The firmware fills
            at most 120 bytes even when the negotiated MTU is larger.

    Attributes:
        stats: Notification, record, discard and corruption counters of the
            current connection, for health logging.

    Note:
        The session holds no retry policy. Only the idle step before a
        stream start tolerates a missing acknowledgement; every other
        command reports its failure to the caller.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        settle_delay: float = SETTLE_DELAY,
        max_payload: int = MAX_NOTIFICATION_PAYLOAD,
    ) -> None:
        self._transport = transport
        self._engine = CommandEngine(transport.write_command, command_timeout)
        self._settle_delay = settle_delay
        self._max_payload = max_payload
        self._config: Optional[StreamConfig] = None
        self._streaming = False
        self.stats = SessionStats()
        transport.set_handlers(
            on_response=self._engine.handle_response,
            on_disconnect=self._on_disconnect,
        )

    async def __aenter__(self) -> "MuseSession":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        try:
            if self._streaming and self._transport.is_connected:
                await self.stop_streaming()
        except Exception as e:
            logger.warning("Could not stop streaming before disconnect: %s", e)
        finally:
            await self.disconnect()

    @property
    def engine(self) -> CommandEngine:
        return self._engine

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def stream_config(self) -> Optional[StreamConfig]:
        return self._config

    async def connect(self) -> None:
        await self._transport.connect()
        self._engine.reopen()

    async def disconnect(self) -> None:
        self._on_disconnect()
        await self._transport.disconnect()

    def _on_disconnect(self) -> None:
        self._engine.close()
        self._streaming = False

    def _require_connection(self) -> None:
        if not self._transport.is_connected:
            raise TransportUnavailableError("Not connected to a Muse device")

    async def _request(self, command: bytes) -> bytes:
        self._require_connection()
        response = await self._engine.send(command)
        if response is None:
            raise CommandTimeoutError(f"No response to command {hex_dump(command)}")
        return response

    async def read_battery(self) -> int:
        """Battery charge in percent."""
        return commands.parse_battery(await self._request(commands.build_read_battery()))

    async def read_firmware(self) -> FirmwareVersion:
        return commands.parse_firmware(await self._request(commands.build_read_firmware()))

    async def read_state(self) -> DeviceState:
        return commands.parse_state(await self._request(commands.build_read_state()))

    async def read_capabilities(self) -> HardwareCapability:
        return commands.parse_capabilities(
            await self._request(commands.build_read_capabilities())
        )

    async def set_idle(self) -> bool:
        """Send the IDLE transition; True if it was acknowledged."""
        self._require_connection()
        response = await self._engine.send(commands.build_set_state(DeviceState.IDLE))
        return commands.is_acknowledged(response, commands.CMD_STATE)

    async def start_streaming(
        self,
        mode: AcquisitionMode,
        frequency: AcquisitionFrequency = AcquisitionFrequency.HZ_25,
        buffered: bool = True,
    ) -> StreamConfig:
        """Put the unit into a streaming state for ``mode``.

        Args:
            mode: Validated acquisition mode (see :func:`acquisition.encode_mode`).
            frequency: Sampling frequency code.
            buffered: Pack several frames per notification when True,
                one frame per notification otherwise.

        Returns:
            StreamConfig: The configuration now recorded as active.

        Raises:
            InvalidConfigurationError: If the layout implied by the mode's
                mask is not accepted by the firmware, or disagrees with
                ``mode.frame_size``. Nothing is written in that case.
            TransportUnavailableError: If not connected. Nothing is written.
            CommandTimeoutError: If the start command got no response.
            CommandRejectedError: If the firmware refused the start command,
                or the reply echoes a different command code.

        Note:
            The frame size is re-derived from ``mode.kinds`` here rather than
            trusted from the dataclass, because the splitter cuts frames by
            ``mode.frame_size`` and the device lays them out by the mask.
        """
        checked = encode_mode(mode.kinds)
        if checked.frame_size != mode.frame_size:
            raise InvalidConfigurationError(
                f"Mode 0x{mode.mask:06X} lays out {checked.frame_size} byte frames, "
                f"not the declared {mode.frame_size}"
            )
        self._require_connection()
        config = StreamConfig(mode=mode, frequency=AcquisitionFrequency(frequency), buffered=buffered)

        logger.info("Setting device to IDLE before streaming")
        if await self.set_idle():
            logger.info("Device set to IDLE")
        else:
            logger.warning("Could not confirm IDLE state, continuing with stream start")
        await asyncio.sleep(self._settle_delay)

        command = commands.build_start_stream(mode, config.frequency, buffered)
        logger.info(
            "Starting stream: mode=0x%06X (%d bytes) state=%s freq=%d Hz",
            mode.mask,
            mode.frame_size,
            config.state.name,
            config.frequency.hz,
        )
        response = await self._engine.send(command)
        if response is None:
            raise CommandTimeoutError("No response to start-stream command")
        if not commands.is_acknowledged(response, commands.CMD_STATE):
            raise CommandRejectedError(
                f"Start-stream command rejected: {hex_dump(response)}",
                ack=response[0] if response else None,
                error_code=response[3] if len(response) > 3 else None,
                response=response,
            )

        self._config = config
        self._streaming = True
        logger.info("Streaming started")
        return config

    async def stop_streaming(self) -> None:
        """Return the unit to IDLE and forget the active mode.

        Raises:
            CommandTimeoutError: If the unit did not answer; streaming stays
                marked active.
            CommandRejectedError: If the answer is shorter than an envelope
                or echoes a different command code; streaming stays marked
                active.

        Note:
            A non-zero error code in an otherwise well-formed reply still
            counts as stopped: the firmware reports one when it is already
            idle.
        """
        self._require_connection()
        response = await self._engine.send(commands.build_set_state(DeviceState.IDLE))
        if response is None:
            raise CommandTimeoutError("No response to stop-stream command")
        if len(response) < commands.ENVELOPE_SIZE or response[2] != commands.CMD_STATE:
            raise CommandRejectedError(
                f"Malformed stop-stream response: {hex_dump(response)}", response=response
            )
        self._streaming = False
        self._config = None
        logger.info("Streaming stopped")

    def process_notification(self, data: bytes) -> list[SensorRecord]:
        """Decode one data notification against the active configuration.

        Notifications received while no stream is active are discarded, as
        the link may still deliver frames after a stop request.

        Raises:
            FrameCorruptionError: If the notification does not match the
                active frame layout.
        """
        self.stats.notifications += 1
        config = self._config
        if not self._streaming or config is None:
            self.stats.discarded += 1
            logger.debug("Discarding %d byte notification, not streaming", len(data))
            return []
        records = decode_notification(
            data, config.mode, buffered=config.buffered, max_payload=self._max_payload
        )
        self.stats.records += len(records)
        return records

    async def telemetry(self) -> AsyncIterator[SensorRecord]:
        """Decoded records of the current connection, in arrival order.

        A corrupt notification is logged and skipped; the stream continues.
        The iterator ends when the transport's data sequence ends.
        """
        async for notification in self._transport.data_frames():
            try:
                records = self.process_notification(notification)
            except FrameCorruptionError as e:
                self.stats.corrupted += 1
                logger.warning("Skipping corrupt notification: %s", e)
                continue
            for record in records:
                yield record


__all__ = ["SETTLE_DELAY", "SessionStats", "MuseSession"]
