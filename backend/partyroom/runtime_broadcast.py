from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

if TYPE_CHECKING:
    from .runtime import PartyRuntime
    from .runtime_types import RoomRuntime

logger = logging.getLogger(__name__)


def serialize_message(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def is_socket_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


async def send_text_safe(
    runtime: "PartyRuntime",
    websocket: WebSocket,
    text: str,
    room_id: str | None = None,
    nickname: str | None = None,
) -> bool:
    try:
        await websocket.send_text(text)
    except Exception as exc:
        # Connection may already be closed.
        runtime._increment_stat("sendFailures")
        logger.debug(
            "[SEND_FAIL] room=%s nickname=%s reason=%s ws_client_state=%s ws_application_state=%s",
            room_id or "-",
            nickname or "-",
            repr(exc),
            getattr(websocket, "client_state", None),
            getattr(websocket, "application_state", None),
        )
        return False
    return True


async def send_safe(
    runtime: "PartyRuntime",
    websocket: WebSocket,
    data: dict[str, Any],
    room_id: str | None = None,
    nickname: str | None = None,
) -> bool:
    return await send_text_safe(
        runtime,
        websocket,
        serialize_message(data),
        room_id=room_id,
        nickname=nickname,
    )


async def broadcast(runtime: "PartyRuntime", room: "RoomRuntime", data: dict[str, Any]) -> int:
    """Best-effort fan-out: no acknowledgement, no retry, and one failing socket
    never stops delivery to the others. Returns how many sends succeeded."""
    text = serialize_message(data)
    delivered = 0
    for client in room.all_clients():
        if not client.connected or not is_socket_open(client.websocket):
            continue
        if await send_text_safe(
            runtime,
            client.websocket,
            text,
            room_id=room.room_id,
            nickname=client.nickname,
        ):
            delivered += 1
    logger.debug(
        "[BROADCAST] room=%s type=%s delivered=%s",
        room.room_id,
        data.get("type"),
        delivered,
    )
    return delivered
