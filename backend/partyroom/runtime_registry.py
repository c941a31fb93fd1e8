from __future__ import annotations

import asyncio
import logging

from .runtime_types import RoomRuntime

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Room id -> room state. Rooms are created on first connection and only
    leave the registry through an explicit host close (or shutdown)."""

    def __init__(self) -> None:
        self._rooms: dict[str, RoomRuntime] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    async def get_or_create(self, room_id: str) -> RoomRuntime:
        async with self._lock:
            existing = self._rooms.get(room_id)
            if existing is not None:
                return existing
            room = RoomRuntime(room_id=room_id)
            self._rooms[room_id] = room
            logger.info("[ROOM] room=%s created", room_id)
            return room

    def get(self, room_id: str) -> RoomRuntime | None:
        return self._rooms.get(room_id)

    async def remove(self, room_id: str) -> RoomRuntime | None:
        async with self._lock:
            room = self._rooms.pop(room_id, None)
        if room is None:
            return None
        if room.timer is not None and not room.timer.done() and room.timer is not asyncio.current_task():
            room.timer.cancel()
        room.timer = None
        room.closed = True
        logger.info("[ROOM] room=%s removed", room_id)
        return room

    def rooms(self) -> list[RoomRuntime]:
        return list(self._rooms.values())

    async def clear(self) -> list[RoomRuntime]:
        async with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()
        return rooms
