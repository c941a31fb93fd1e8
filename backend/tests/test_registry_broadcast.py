from __future__ import annotations

import asyncio

import pytest

from conftest import MockWebSocket
from partyroom.runtime_broadcast import broadcast, serialize_message
from partyroom.runtime_registry import RoomRegistry


class TestRoomRegistry:
    @pytest.mark.asyncio
    async def test_get_or_create_returns_same_room(self):
        registry = RoomRegistry()
        first = await registry.get_or_create("482913")
        second = await registry.get_or_create("482913")
        assert first is second
        assert len(registry) == 1
        assert "482913" in registry

    @pytest.mark.asyncio
    async def test_remove_closes_room_and_cancels_timer(self):
        registry = RoomRegistry()
        room = await registry.get_or_create("r1")
        room.timer = asyncio.create_task(asyncio.sleep(10))

        removed = await registry.remove("r1")
        await asyncio.sleep(0)

        assert removed is room
        assert room.closed is True
        assert room.timer is None
        assert registry.get("r1") is None

    @pytest.mark.asyncio
    async def test_remove_unknown_room_is_noop(self):
        registry = RoomRegistry()
        assert await registry.remove("missing") is None

    @pytest.mark.asyncio
    async def test_clear_returns_all_rooms(self):
        registry = RoomRegistry()
        await registry.get_or_create("a")
        await registry.get_or_create("b")
        rooms = await registry.clear()
        assert sorted(room.room_id for room in rooms) == ["a", "b"]
        assert len(registry) == 0


class TestBroadcast:
    def test_serialize_is_compact(self):
        assert serialize_message({"type": "pong", "n": 1}) == '{"type":"pong","n":1}'

    @pytest.mark.asyncio
    async def test_one_failing_socket_does_not_stop_delivery(self, runtime, room, join):
        _, host_ws = join(room, "GM", is_host=True)
        join(room, "Ann", socket=MockWebSocket(fail=True))
        _, ben_ws = join(room, "Ben")

        delivered = await broadcast(runtime, room, {"type": "ping"})

        assert delivered == 2
        assert host_ws.types() == ["ping"]
        assert ben_ws.types() == ["ping"]
        assert runtime.get_ws_stats()["stats"]["sendFailures"] == 1

    @pytest.mark.asyncio
    async def test_skips_disconnected_host(self, runtime, room, join):
        host, host_ws = join(room, "GM", is_host=True)
        _, ann_ws = join(room, "Ann")
        host.connected = False

        await broadcast(runtime, room, {"type": "scoreUpdate"})

        assert host_ws.sent == []
        assert ann_ws.types() == ["scoreUpdate"]
