from __future__ import annotations

import json
from typing import Any, Callable

import pytest
from starlette.websockets import WebSocketState

from partyroom.runtime import PartyRuntime
from partyroom.runtime_types import ClientConnection, RoomRuntime


class MockWebSocket:
    """Stand-in for fastapi.WebSocket that records every frame sent to it."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.close_code: int | None = None

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("socket is gone")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> list[str]:
        return [message.get("type") for message in self.sent]

    def last(self, message_type: str) -> dict[str, Any] | None:
        for message in reversed(self.sent):
            if message.get("type") == message_type:
                return message
        return None

    def all(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def runtime() -> PartyRuntime:
    return PartyRuntime(game_time_unit_ms=1)


@pytest.fixture
def room() -> RoomRuntime:
    return RoomRuntime(room_id="482913")


@pytest.fixture
def join(runtime: PartyRuntime) -> Callable[..., tuple[ClientConnection, MockWebSocket]]:
    """Register a client on a fresh mock socket, bypassing the transport."""

    def _join(
        room: RoomRuntime,
        nickname: str,
        is_host: bool = False,
        socket: MockWebSocket | None = None,
    ) -> tuple[ClientConnection, MockWebSocket]:
        ws = socket or MockWebSocket()
        client, _, _ = runtime._register_client(room, ws, nickname, is_host)
        return client, ws

    return _join
