from __future__ import annotations

from typing import Any

from .runtime_types import ClientConnection, RoomRuntime


def build_player_entry(client: ClientConnection) -> dict[str, Any]:
    return {
        "nickname": client.nickname,
        "id": client.nickname,
        "isHost": client.is_host,
        "score": client.score,
        "avatar": client.avatar,
        "connected": client.connected,
        "gameFinished": client.game_finished,
    }


def build_player_list(room: RoomRuntime) -> list[dict[str, Any]]:
    return [build_player_entry(client) for client in room.all_clients()]


def build_session_flags(room: RoomRuntime) -> dict[str, bool]:
    return {
        "waitingForPlayers": room.waiting_for_players,
        "gameStarted": room.game_started,
        "gameEnded": room.game_ended,
    }


def build_player_list_message(room: RoomRuntime) -> dict[str, Any]:
    return {
        "type": "playerListUpdate",
        "data": build_player_list(room),
        **build_session_flags(room),
    }


def build_final_results(room: RoomRuntime) -> list[dict[str, Any]]:
    players = sorted(
        room.non_host_clients(),
        key=lambda client: (-client.score, not client.game_finished),
    )
    total = len(players)
    return [
        {
            "nickname": client.nickname,
            "score": client.score,
            "finished": client.game_finished,
            "rank": index + 1,
            "totalPlayers": total,
        }
        for index, client in enumerate(players)
    ]


def build_game_data_message(room: RoomRuntime) -> dict[str, Any]:
    return {"type": "gameData", **room.game_data}


def build_game_state_for_viewer(room: RoomRuntime, viewer: ClientConnection) -> dict[str, Any]:
    params = room.session_params
    return {
        "type": "gameState",
        "gameType": params.game_type if params else None,
        "gameTime": params.game_time if params else 0,
        "totalPlayers": room.total_players,
        "score": viewer.score,
        "gameData": dict(room.game_data),
        "players": build_player_list(room),
        **build_session_flags(room),
    }


def build_room_info(room: RoomRuntime) -> dict[str, Any]:
    params = room.session_params
    return {
        "roomId": room.room_id,
        "totalPlayers": room.total_players if not room.waiting_for_players else len(room.clients_by_nickname),
        "connectedPlayers": room.connected_count(),
        "hasHost": room.host_client is not None,
        "gameType": params.game_type if params else None,
        **build_session_flags(room),
    }
