from __future__ import annotations

import asyncio

import pytest

from partyroom.runtime_constants import (
    ERROR_GAME_ALREADY_ENDED,
    ERROR_GAME_IN_PROGRESS,
    ERROR_HOST_ONLY_END,
    ERROR_HOST_ONLY_START,
    ERROR_INVALID_PARAMS,
    GAME_COMPLETED_REASON,
    HOST_CLOSED_REASON,
    HOST_ENDED_REASON,
    MAX_GAME_TIME,
    TIME_UP_REASON,
)
from partyroom.runtime_games import parse_session_params
from partyroom.runtime_message_handlers import handle_message
from partyroom.runtime_session_flow import close_room, end_session


def _seat_room(room, join):
    host, host_ws = join(room, "GM", is_host=True)
    ann, ann_ws = join(room, "Ann")
    ben, ben_ws = join(room, "Ben")
    return (host, host_ws), (ann, ann_ws), (ben, ben_ws)


START = {"type": "hostStartGame", "numPairs": 8, "gameTime": 60}


class TestStartSession:
    @pytest.mark.asyncio
    async def test_non_host_start_is_rejected_without_mutation(self, runtime, room, join):
        (_, host_ws), (ann, ann_ws), (_, ben_ws) = _seat_room(room, join)

        await handle_message(runtime, room, ann, START)

        assert room.session_state == "waiting"
        assert room.timer is None
        assert ann_ws.sent == [{"type": "error", "message": ERROR_HOST_ONLY_START}]
        assert host_ws.sent == []
        assert ben_ws.sent == []
        assert runtime.get_ws_stats()["stats"]["rejectedActions"] == 1

    @pytest.mark.asyncio
    async def test_started_is_broadcast_before_game_data(self, runtime, room, join):
        (host, host_ws), (_, ann_ws), (_, ben_ws) = _seat_room(room, join)

        await handle_message(runtime, room, host, START)

        for ws in (host_ws, ann_ws, ben_ws):
            assert ws.types() == ["gameStarted", "gameData", "playerListUpdate"]
        started = ann_ws.last("gameStarted")
        assert started == {"type": "gameStarted", "gameType": "memory", "gameTime": 60, "totalPlayers": 2}
        game_data = ann_ws.last("gameData")
        assert len(game_data["cards"]) == 16
        assert game_data["gameSettings"] == {"numPairs": 8, "gameDuration": 60}
        assert room.session_state == "playing"
        assert room.total_players == 2
        assert room.timer is not None
        runtime._cancel_timer(room)

    @pytest.mark.asyncio
    async def test_start_while_playing_is_rejected(self, runtime, room, join):
        (host, host_ws), _, _ = _seat_room(room, join)
        await handle_message(runtime, room, host, START)
        timer = room.timer
        host_ws.clear()

        await handle_message(runtime, room, host, START)

        assert host_ws.sent == [{"type": "error", "message": ERROR_GAME_IN_PROGRESS}]
        assert room.timer is timer
        runtime._cancel_timer(room)

    @pytest.mark.asyncio
    async def test_start_after_end_is_rejected(self, runtime, room, join):
        (host, host_ws), _, _ = _seat_room(room, join)
        await handle_message(runtime, room, host, START)
        await handle_message(runtime, room, host, {"type": "hostEndGame"})
        host_ws.clear()

        await handle_message(runtime, room, host, START)

        assert room.session_state == "ended"
        assert host_ws.sent == [{"type": "error", "message": ERROR_GAME_ALREADY_ENDED}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "hostStartGame", "numPairs": "eight", "gameTime": 60},
            {"type": "hostStartGame", "numPairs": 8},
            {"type": "hostStartGame", "numPairs": 0, "gameTime": 60},
            {"type": "hostStartGame", "numPairs": 53, "gameTime": 60},
            {"type": "hostStartGame", "gameType": "chess", "gameTime": 60},
            {"type": "hostStartGame", "numPairs": 2, "gameTime": MAX_GAME_TIME + 1},
        ],
    )
    async def test_invalid_parameters_are_rejected(self, runtime, room, join, payload):
        (host, host_ws), _, _ = _seat_room(room, join)

        await handle_message(runtime, room, host, payload)

        assert room.session_state == "waiting"
        assert host_ws.sent == [{"type": "error", "message": ERROR_INVALID_PARAMS}]

    @pytest.mark.asyncio
    async def test_oversized_game_time_leaves_room_waiting(self, runtime, room, join):
        (host, host_ws), (_, ann_ws), _ = _seat_room(room, join)

        await handle_message(runtime, room, host, {"type": "hostStartGame", "numPairs": 2, "gameTime": 10**400})

        assert room.session_state == "waiting"
        assert room.timer is None
        assert room.session_params is None
        assert host_ws.sent == [{"type": "error", "message": ERROR_INVALID_PARAMS}]
        assert ann_ws.sent == []

    def test_parameters_accept_nested_payload_and_duration_alias(self):
        params = parse_session_params({"type": "hostStartGame", "data": {"gameType": "whackmole", "duration": 30}})
        assert params is not None
        assert params.game_time == 30
        assert params.num_pairs is None
        assert params.settings == {"moleCount": 9, "spawnInterval": 1}


class TestEndSession:
    @pytest.mark.asyncio
    async def test_time_up_ends_game_once(self, runtime, room, join):
        (host, host_ws), (ann, ann_ws), _ = _seat_room(room, join)
        await handle_message(runtime, room, host, {"type": "hostStartGame", "numPairs": 2, "gameTime": 5})

        await asyncio.sleep(0.1)

        ended = ann_ws.all("gameEnded")
        assert len(ended) == 1
        assert ended[0]["reason"] == TIME_UP_REASON
        assert len(host_ws.all("gameEnded")) == 1
        assert room.session_state == "ended"
        assert room.timer is None

    @pytest.mark.asyncio
    async def test_host_end_cancels_pending_timer(self, runtime, room, join):
        (host, _), (_, ann_ws), _ = _seat_room(room, join)
        await handle_message(runtime, room, host, {"type": "hostStartGame", "numPairs": 2, "gameTime": 20})

        await handle_message(runtime, room, host, {"type": "hostEndGame"})
        await asyncio.sleep(0.06)

        ended = ann_ws.all("gameEnded")
        assert [message["reason"] for message in ended] == [HOST_ENDED_REASON]

    @pytest.mark.asyncio
    async def test_non_host_end_is_rejected(self, runtime, room, join):
        (host, _), (ann, ann_ws), _ = _seat_room(room, join)
        await handle_message(runtime, room, host, START)
        ann_ws.clear()

        await handle_message(runtime, room, ann, {"type": "hostEndGame"})

        assert room.session_state == "playing"
        assert ann_ws.sent == [{"type": "error", "message": ERROR_HOST_ONLY_END}]
        runtime._cancel_timer(room)

    @pytest.mark.asyncio
    async def test_end_session_is_idempotent(self, runtime, room, join):
        (host, _), (_, ann_ws), _ = _seat_room(room, join)
        await handle_message(runtime, room, host, START)

        assert await end_session(runtime, room, HOST_ENDED_REASON) is True
        assert await end_session(runtime, room, TIME_UP_REASON) is False
        assert len(ann_ws.all("gameEnded")) == 1

    @pytest.mark.asyncio
    async def test_close_racing_timer_yields_single_game_ended(self, runtime, join):
        registered = await runtime.registry.get_or_create("482913")
        (host, _), (_, ann_ws), _ = _seat_room(registered, join)
        await handle_message(runtime, registered, host, {"type": "hostStartGame", "numPairs": 2, "gameTime": 3})

        await close_room(runtime, registered)
        await asyncio.sleep(0.05)

        assert len(ann_ws.all("gameEnded")) == 1
        assert ann_ws.types()[-1] == "roomClosed"
        assert registered.closed is True
        assert runtime.registry.get("482913") is None

    @pytest.mark.asyncio
    async def test_close_after_timer_expired_yields_single_game_ended(self, runtime, join):
        registered = await runtime.registry.get_or_create("482913")
        (host, _), (_, ann_ws), _ = _seat_room(registered, join)
        await handle_message(runtime, registered, host, {"type": "hostStartGame", "numPairs": 2, "gameTime": 3})

        async with registered.lock:
            # The timer expires while the close holds the room lock.
            await asyncio.sleep(0.03)
            await close_room(runtime, registered)
        await asyncio.sleep(0.03)

        assert len(ann_ws.all("gameEnded")) == 1
        assert ann_ws.last("gameEnded")["reason"] == HOST_CLOSED_REASON
        assert ann_ws.types()[-1] == "roomClosed"
        assert registered.timer is None

    @pytest.mark.asyncio
    async def test_final_results_rank_players_by_score(self, runtime, room, join):
        (host, _), (ann, _), (ben, ben_ws) = _seat_room(room, join)
        await handle_message(runtime, room, host, START)
        await handle_message(runtime, room, ann, {"type": "scoreUpdate", "score": 4})
        await handle_message(runtime, room, ben, {"type": "scoreUpdate", "score": 9})

        await handle_message(runtime, room, host, {"type": "hostEndGame"})

        results = ben_ws.last("gameEnded")["finalResults"]
        assert [(entry["nickname"], entry["rank"]) for entry in results] == [("Ben", 1), ("Ann", 2)]
        assert all(entry["totalPlayers"] == 2 for entry in results)

    @pytest.mark.asyncio
    async def test_all_pairs_found_completes_game(self, runtime, room, join):
        (host, _), (ann, ann_ws), _ = _seat_room(room, join)
        await handle_message(runtime, room, host, START)

        await handle_message(runtime, room, ann, {"type": "flipCard", "score": 80, "allPairsFound": True})

        assert room.session_state == "ended"
        assert ann_ws.last("gameEnded")["reason"] == GAME_COMPLETED_REASON
        assert room.final_results[0]["finished"] is True

    @pytest.mark.asyncio
    async def test_game_over_from_every_player_completes_game(self, runtime, room, join):
        (host, _), (ann, _), (ben, ben_ws) = _seat_room(room, join)
        await handle_message(runtime, room, host, START)

        await handle_message(runtime, room, ann, {"type": "gameOver"})
        assert room.session_state == "playing"
        await handle_message(runtime, room, ben, {"type": "gameOver"})

        assert room.session_state == "ended"
        assert ben_ws.last("gameEnded")["reason"] == GAME_COMPLETED_REASON
