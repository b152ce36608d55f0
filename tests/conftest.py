from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional

import pytest

from muse_v3_receiver.transport import Transport

Responder = Callable[[bytes], Optional[bytes]]


def ack_everything(command: bytes) -> Optional[bytes]:
    return bytes([0x00, 0x02, command[0], 0x00])


class FakeTransport(Transport):
    """Scripted link: answers each write via ``responder`` and replays
    ``notifications`` as the data channel."""

    def __init__(self, responder: Responder = ack_everything, notifications=None):
        super().__init__()
        self.responder = responder
        self.notifications: list[bytes] = list(notifications or [])
        self.written: list[bytes] = []
        self.connect_calls = 0
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.connect_calls += 1
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def drop_link(self) -> None:
        self._connected = False
        self._notify_disconnect()

    async def write_command(self, data: bytes) -> None:
        self.written.append(bytes(data))
        response = self.responder(bytes(data))
        if response is not None:
            asyncio.get_running_loop().call_soon(self._deliver_response, response)

    async def data_frames(self) -> AsyncIterator[bytes]:
        for notification in self.notifications:
            yield notification


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()
