"""Single-flight command/response correlation for the Muse v3 command channel.

The protocol has no correlation identifier: the response to a command is
simply the next notification on the command characteristic after the write.
The engine therefore allows exactly one command in flight and drops any
notification that arrives while nothing is pending.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .codec import hex_dump
from .errors import CommandInProgressError, TransportUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 3.0

WriteFn = Callable[[bytes], Awaitable[None]]


class CommandEngine:
    """Serialize commands and match each one with the next inbound response.

    A timeout is a normal outcome and is reported as ``None`` so callers can
    decide whether to retry. Concurrent use is refused with
    :class:`CommandInProgressError` rather than queued, which surfaces
    misuse immediately.

    Attributes:
        _write: Coroutine that writes raw bytes to the command channel.
        _default_timeout: Seconds to wait when ``send`` gets no timeout.
        _pending: Future of the single in-flight command, if any.
        _closed: Set once the connection is gone; later sends fail fast.
    """

    def __init__(self, write: WriteFn, default_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self._write = write
        self._default_timeout = default_timeout
        self._pending: Optional[asyncio.Future[bytes]] = None
        self._closed = False
        self.stray_responses = 0

    @property
    def busy(self) -> bool:
        return self._pending is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, command: bytes, timeout: Optional[float] = None) -> Optional[bytes]:
        """Write ``command`` and wait for the correlated response.

        The pending future is armed before the write, so a response that
        the transport delivers while the write is still completing is not
        lost. Whatever the outcome, the engine is free for the next command
        when this returns or raises.

        Args:
            command: Complete command frame, ``[code, argc, args...]``.
            timeout: Seconds to wait for the response. Defaults to the
                engine's default timeout (3 s, the protocol default).

        Returns:
            Optional[bytes]: The raw response, envelope included, or ``None``
            if no response arrived in time. The envelope is not validated
            here; see :mod:`muse_v3_receiver.commands`.

        Raises:
            CommandInProgressError: If another command is still pending.
                Nothing is written in that case.
            TransportUnavailableError: If the engine is closed, the link
                dropped while waiting, or the write itself failed.

        Note:
            A response that arrives after the timeout is not matched to the
            next command; it is dropped as unsolicited and counted in
            :attr:`stray_responses`.
        """
        if self._closed:
            raise TransportUnavailableError("Command channel is not connected")
        if self._pending is not None:
            raise CommandInProgressError(
                f"Cannot send {hex_dump(command)}: a command is already awaiting its response"
            )

        wait = self._default_timeout if timeout is None else timeout
        future: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
        # Armed before the write so an immediate response is not lost
        self._pending = future
        try:
            logger.debug("Command sent: %s", hex_dump(command))
            await self._write(command)
            response = await asyncio.wait_for(future, timeout=wait)
            logger.debug("Response received: %s", hex_dump(response))
            return response
        except asyncio.TimeoutError:
            logger.warning("No response to %s within %.1fs", hex_dump(command), wait)
            return None
        finally:
            self._pending = None

    def handle_response(self, data: bytes) -> None:
        """Deliver a command-channel notification (transport callback)."""
        future = self._pending
        if future is None or future.done():
            self.stray_responses += 1
            logger.debug("Dropping unsolicited response: %s", hex_dump(data))
            return
        future.set_result(bytes(data))

    def fail_pending(self, exc: BaseException) -> None:
        """Fail the in-flight command now instead of letting it time out."""
        future = self._pending
        if future is not None and not future.done():
            future.set_exception(exc)

    def close(self) -> None:
        """Mark the channel gone and fail any pending command."""
        self._closed = True
        self.fail_pending(TransportUnavailableError("Connection lost while awaiting response"))

    def reopen(self) -> None:
        self._closed = False


__all__ = ["DEFAULT_COMMAND_TIMEOUT", "CommandEngine"]
