from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .runtime_constants import (
    ERROR_GAME_ALREADY_ENDED,
    ERROR_HOST_ONLY_CLOSE,
    ERROR_HOST_ONLY_NOTIFY,
    ERROR_INVALID_SCORE,
    GAME_COMPLETED_REASON,
    WAITING_MESSAGE,
)
from .runtime_games import forwarded_message_types, resolve_game_type
from .runtime_session_flow import (
    SessionError,
    close_room,
    end_session,
    end_session_by_host,
    require_host,
    start_session,
    validate_start_request,
)
from .runtime_state_builders import build_game_state_for_viewer
from .runtime_utils import message_field, now_ms, parse_int

if TYPE_CHECKING:
    from .runtime import PartyRuntime
    from .runtime_types import ClientConnection, RoomRuntime

logger = logging.getLogger(__name__)

FORWARDED_TYPES = forwarded_message_types()
SCORE_REPORT_TYPES = frozenset({"flipCard", "scoreUpdate"})


async def handle_message(
    runtime: "PartyRuntime",
    room: "RoomRuntime",
    client: "ClientConnection",
    data: dict[str, Any],
) -> None:
    message_type = data.get("type")
    try:
        await _dispatch(runtime, room, client, message_type, data)
    except SessionError as exc:
        runtime._increment_stat("rejectedActions")
        logger.info(
            "[REJECTED] room=%s nickname=%s type=%s reason=%s",
            room.room_id,
            client.nickname,
            message_type,
            exc.message,
        )
        await runtime._send(client, {"type": "error", "message": exc.message})


async def _dispatch(
    runtime: "PartyRuntime",
    room: "RoomRuntime",
    client: "ClientConnection",
    message_type: Any,
    data: dict[str, Any],
) -> None:
    if message_type == "ping":
        await runtime._send(client, {"type": "pong", "serverTime": now_ms()})
        return

    if message_type == "join":
        await _handle_join(runtime, room, client)
        return

    if message_type == "hostStartGame":
        params = validate_start_request(room, client, data)
        await start_session(runtime, room, params)
        return

    if message_type == "startGameWithNotification":
        params = validate_start_request(room, client, data)
        notice = str(data.get("message") or "")
        await runtime._broadcast(room, _platform_notification(room, params.game_type, notice))
        await runtime._broadcast(
            room,
            {
                "type": "platformGameStarted",
                "data": {"gameType": params.game_type, "roomId": room.room_id, "message": notice},
            },
        )
        await start_session(runtime, room, params)
        return

    if message_type == "notifyPlatformPlayers":
        require_host(client, ERROR_HOST_ONLY_NOTIFY)
        await runtime._broadcast(
            room,
            _platform_notification(room, resolve_game_type(data), str(data.get("message") or "")),
        )
        return

    if message_type in SCORE_REPORT_TYPES:
        await _handle_score_report(runtime, room, client, data)
        return

    if message_type == "gameOver":
        await _handle_game_over(runtime, room, client, data)
        return

    if message_type == "hostEndGame":
        await end_session_by_host(runtime, room, client)
        return

    if message_type == "hostCloseGame":
        require_host(client, ERROR_HOST_ONLY_CLOSE)
        logger.info("[ROOM] room=%s host=%s closing room", room.room_id, client.nickname)
        await close_room(runtime, room)
        return

    if message_type in FORWARDED_TYPES:
        if room.session_state != "playing":
            logger.debug("[FORWARD] room=%s type=%s ignored, game not running", room.room_id, message_type)
            return
        await runtime._broadcast(room, {**data, "nickname": client.nickname})
        return

    runtime._increment_stat("droppedMessages")
    logger.info(
        "[UNHANDLED] room=%s nickname=%s type=%s",
        room.room_id,
        client.nickname,
        message_type,
    )


def _platform_notification(room: "RoomRuntime", game_type: str, message: str) -> dict[str, Any]:
    return {
        "type": "platformNotification",
        "data": {"message": message, "gameType": game_type, "roomId": room.room_id},
    }


async def _handle_join(runtime: "PartyRuntime", room: "RoomRuntime", client: "ClientConnection") -> None:
    logger.info(
        "[JOIN] room=%s nickname=%s is_host=%s confirmed",
        room.room_id,
        client.nickname,
        client.is_host,
    )
    if room.session_state == "waiting":
        await runtime._send(client, {"type": "waiting", "data": {"message": WAITING_MESSAGE}})
    elif room.session_state == "playing":
        await runtime._send(client, build_game_state_for_viewer(room, client))
    else:
        await runtime._send(
            client,
            {"type": "gameEnded", "reason": room.end_reason, "finalResults": room.final_results},
        )
    await runtime._broadcast_player_list(room)


async def _handle_score_report(
    runtime: "PartyRuntime",
    room: "RoomRuntime",
    client: "ClientConnection",
    data: dict[str, Any],
) -> None:
    raw_score = message_field(data, "score")
    if raw_score is None:
        raw_score = message_field(data, "totalScore")
    score = parse_int(raw_score)
    if score is None:
        raise SessionError(ERROR_INVALID_SCORE)
    if room.session_state == "ended":
        raise SessionError(ERROR_GAME_ALREADY_ENDED)

    client.score = score
    runtime._mark_state_changed(room)
    logger.info("[SCORE] room=%s nickname=%s score=%s", room.room_id, client.nickname, score)
    await runtime._broadcast(room, {"type": "scoreUpdate", "nickname": client.nickname, "score": score})
    await runtime._broadcast_player_list(room)

    if room.session_state == "playing" and message_field(data, "allPairsFound") is True:
        client.game_finished = True
        await end_session(runtime, room, GAME_COMPLETED_REASON)


async def _handle_game_over(
    runtime: "PartyRuntime",
    room: "RoomRuntime",
    client: "ClientConnection",
    data: dict[str, Any],
) -> None:
    if room.session_state != "playing":
        logger.info("[SESSION] room=%s gameOver from %s ignored, game not active", room.room_id, client.nickname)
        return

    client.game_finished = True
    players = room.non_host_clients()
    all_finished = bool(players) and all(player.game_finished for player in players)
    if message_field(data, "allPairsFound") is True or all_finished:
        await end_session(runtime, room, GAME_COMPLETED_REASON)
        return
    await runtime._broadcast_player_list(room)
