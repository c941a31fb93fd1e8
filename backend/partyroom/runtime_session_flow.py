from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .runtime_constants import (
    ERROR_GAME_ALREADY_ENDED,
    ERROR_GAME_IN_PROGRESS,
    ERROR_GAME_NOT_RUNNING,
    ERROR_HOST_ONLY_END,
    ERROR_HOST_ONLY_START,
    ERROR_INVALID_PARAMS,
    HOST_CLOSED_REASON,
    HOST_ENDED_REASON,
    TIME_UP_REASON,
)
from .runtime_games import build_game_data, parse_session_params
from .runtime_state_builders import build_final_results, build_game_data_message

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .runtime import PartyRuntime
    from .runtime_types import ClientConnection, RoomRuntime, SessionParams


class SessionError(Exception):
    """A rejected action; the message is sent back to the caller only."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_host(client: "ClientConnection", message: str) -> None:
    if not client.is_host:
        raise SessionError(message)


def validate_start_request(
    room: "RoomRuntime",
    client: "ClientConnection",
    data: dict[str, Any],
) -> "SessionParams":
    require_host(client, ERROR_HOST_ONLY_START)
    if room.session_state == "playing":
        raise SessionError(ERROR_GAME_IN_PROGRESS)
    if room.session_state == "ended":
        raise SessionError(ERROR_GAME_ALREADY_ENDED)

    params = parse_session_params(data)
    if params is None:
        raise SessionError(ERROR_INVALID_PARAMS)
    return params


async def start_session(runtime: "PartyRuntime", room: "RoomRuntime", params: "SessionParams") -> None:
    async def on_time_up(inner_room: "RoomRuntime") -> None:
        await end_session(runtime, inner_room, TIME_UP_REASON)

    # Armed first so a room never reaches playing without a timer. It cannot
    # fire before this coroutine releases the room lock.
    runtime._schedule_timer(room, params.game_time * runtime.game_time_unit_ms, on_time_up)

    room.session_params = params
    room.total_players = len(room.clients_by_nickname)
    room.game_data = build_game_data(params)
    room.end_reason = None
    room.final_results = []
    for client in room.all_clients():
        client.game_finished = False
    room.session_state = "playing"
    runtime._mark_state_changed(room)

    # Clients gate their UI on gameStarted and only then expect gameData.
    await runtime._broadcast(
        room,
        {
            "type": "gameStarted",
            "gameType": params.game_type,
            "gameTime": params.game_time,
            "totalPlayers": room.total_players,
        },
    )
    await runtime._broadcast(room, build_game_data_message(room))
    await runtime._broadcast_player_list(room)
    logger.info(
        "[SESSION] room=%s started game=%s time=%s pairs=%s players=%s",
        room.room_id,
        params.game_type,
        params.game_time,
        params.num_pairs,
        room.total_players,
    )
    runtime._log_ws_event(
        "session_started",
        roomId=room.room_id,
        gameType=params.game_type,
        gameTime=params.game_time,
        totalPlayers=room.total_players,
    )


async def end_session(runtime: "PartyRuntime", room: "RoomRuntime", reason: str) -> bool:
    if room.session_state != "playing":
        return False

    runtime._cancel_timer(room)
    room.session_state = "ended"
    room.end_reason = reason
    room.final_results = build_final_results(room)
    runtime._mark_state_changed(room)

    await runtime._broadcast(
        room,
        {
            "type": "gameEnded",
            "reason": reason,
            "finalResults": room.final_results,
        },
    )
    await runtime._broadcast_player_list(room)
    logger.info("[SESSION] room=%s ended reason=%s", room.room_id, reason)
    runtime._log_ws_event("session_ended", roomId=room.room_id, reason=reason)
    return True


async def end_session_by_host(runtime: "PartyRuntime", room: "RoomRuntime", client: "ClientConnection") -> None:
    require_host(client, ERROR_HOST_ONLY_END)
    if room.session_state != "playing":
        raise SessionError(ERROR_GAME_NOT_RUNNING)
    await end_session(runtime, room, HOST_ENDED_REASON)


async def close_room(runtime: "PartyRuntime", room: "RoomRuntime", reason: str = HOST_CLOSED_REASON) -> None:
    await end_session(runtime, room, reason)
    await runtime._broadcast(room, {"type": "roomClosed", "reason": reason})
    await runtime.registry.remove(room.room_id)
    runtime._log_ws_event("room_closed", roomId=room.room_id, reason=reason)
