from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect

from .config import settings
from .runtime_broadcast import broadcast as broadcast_to_room
from .runtime_broadcast import send_safe
from .runtime_constants import ERROR_HOST_TAKEN, NORMAL_CLOSURE
from .runtime_message_handlers import handle_message as handle_room_message
from .runtime_registry import RoomRegistry
from .runtime_state_builders import (
    build_player_list,
    build_player_list_message,
    build_room_info,
    build_session_flags,
)
from .runtime_types import ClientConnection, RoomRuntime
from .runtime_utils import (
    now_ms,
    parse_bool_flag,
    random_avatar,
    sanitize_nickname,
    sanitize_room_id,
)

logger = logging.getLogger(__name__)

TimerCallback = Callable[[RoomRuntime], Awaitable[None]]


class PartyRuntime:
    def __init__(
        self,
        registry: RoomRegistry | None = None,
        *,
        game_time_unit_ms: int | None = None,
    ) -> None:
        self.registry = registry if registry is not None else RoomRegistry()
        self.game_time_unit_ms = max(1, int(game_time_unit_ms or settings.game_time_unit_ms))
        self._ws_stats: dict[str, int] = {
            "connectAttempts": 0,
            "connectSuccess": 0,
            "reconnects": 0,
            "hostTakeovers": 0,
            "hostRequestsDemoted": 0,
            "disconnects": 0,
            "staleDisconnects": 0,
            "sendFailures": 0,
            "messageReceived": 0,
            "malformedFrames": 0,
            "staleMessages": 0,
            "droppedMessages": 0,
            "rejectedActions": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    @property
    def active_rooms_count(self) -> int:
        return len(self.registry)

    def _increment_stat(self, key: str, amount: int = 1) -> None:
        self._ws_stats[key] = int(self._ws_stats.get(key, 0)) + amount

    def _on_connect(self) -> None:
        self._increment_stat("connectSuccess")
        active_connections = int(self._ws_stats.get("activeConnections", 0)) + 1
        self._ws_stats["activeConnections"] = active_connections
        if active_connections > int(self._ws_stats.get("peakConnections", 0)):
            self._ws_stats["peakConnections"] = active_connections

    def _on_disconnect(self) -> None:
        self._increment_stat("disconnects")
        active_connections = max(0, int(self._ws_stats.get("activeConnections", 0)) - 1)
        self._ws_stats["activeConnections"] = active_connections

    def _mark_state_changed(self, room: RoomRuntime) -> None:
        room.state_version += 1

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":")),
        )

    def get_ws_stats(self) -> dict[str, Any]:
        room_summaries = [
            {
                "roomId": room.room_id,
                "connections": room.connected_count(),
                "sessionState": room.session_state,
            }
            for room in self.registry.rooms()
        ]
        room_summaries.sort(key=lambda item: int(item.get("connections", 0)), reverse=True)
        return {
            "generatedAt": now_ms(),
            "activeRooms": len(room_summaries),
            "stats": dict(self._ws_stats),
            "rooms": room_summaries[:50],
        }

    def get_player_list(self, room_id: str) -> dict[str, Any] | None:
        room = self.registry.get(room_id)
        if room is None:
            return None
        return {"players": build_player_list(room), **build_session_flags(room)}

    def get_room_info(self, room_id: str) -> dict[str, Any] | None:
        room = self.registry.get(room_id)
        if room is None:
            return None
        return build_room_info(room)

    def list_rooms(self) -> list[dict[str, Any]]:
        return [build_room_info(room) for room in self.registry.rooms()]

    async def shutdown(self) -> None:
        rooms = await self.registry.clear()
        for room in rooms:
            async with room.lock:
                self._cancel_timer(room)
                room.closed = True
        self._ws_stats["activeConnections"] = 0

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()

        room_id = sanitize_room_id(websocket.query_params.get("roomId"), settings.default_room_id)
        nickname = sanitize_nickname(websocket.query_params.get("nickname"), settings.default_nickname)
        wants_host = parse_bool_flag(websocket.query_params.get("isHost"))
        self._increment_stat("connectAttempts")
        self._log_ws_event("connect_attempt", roomId=room_id, nickname=nickname, wantsHost=wants_host)

        room = await self.registry.get_or_create(room_id)
        async with room.lock:
            client, reconnected, notice = self._register_client(room, websocket, nickname, wants_host)
            self._on_connect()
            self._mark_state_changed(room)
            await self._send(
                client,
                {
                    "type": "connected",
                    "roomId": room_id,
                    "nickname": client.nickname,
                    "isHost": client.is_host,
                    "reconnected": reconnected,
                    "score": client.score,
                    "avatar": client.avatar,
                },
            )
            if notice:
                await self._send(client, {"type": "error", "message": notice})
            await self._broadcast_player_list(room)
        self._log_ws_event(
            "connect_success",
            roomId=room_id,
            nickname=client.nickname,
            isHost=client.is_host,
            reconnected=reconnected,
        )

        disconnect_code: int | None = None
        disconnect_reason = "unknown"

        try:
            while not room.closed:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", NORMAL_CLOSURE), message.get("reason"))
                raw = message.get("text")
                if raw is None:
                    self._increment_stat("malformedFrames")
                    logger.warning("[MALFORMED] room=%s nickname=%s binary frame dropped", room_id, nickname)
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    self._increment_stat("malformedFrames")
                    logger.warning("[MALFORMED] room=%s nickname=%s frame dropped", room_id, nickname)
                    continue
                if not isinstance(data, dict):
                    self._increment_stat("malformedFrames")
                    logger.warning("[MALFORMED] room=%s nickname=%s non-object frame dropped", room_id, nickname)
                    continue
                self._increment_stat("messageReceived")

                async with room.lock:
                    if room.closed:
                        break
                    sender = room.find_by_socket(websocket)
                    if sender is None:
                        # Superseded by a newer connection with the same nickname.
                        self._increment_stat("staleMessages")
                        continue
                    await self._handle_message(room, sender, data)
            disconnect_reason = "room_closed"
            await websocket.close(code=NORMAL_CLOSURE)
        except WebSocketDisconnect as exc:
            disconnect_code = exc.code
            disconnect_reason = "websocket_disconnect"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error for room %s nickname %s", room_id, nickname)
        finally:
            # Runs to completion even when the handler task itself is cancelled.
            await asyncio.shield(
                self._cleanup_connection(
                    room,
                    websocket,
                    reason=disconnect_reason,
                    close_code=disconnect_code,
                )
            )

    def _register_client(
        self,
        room: RoomRuntime,
        websocket: WebSocket,
        nickname: str,
        wants_host: bool,
    ) -> tuple[ClientConnection, bool, str | None]:
        host = room.host_client
        if host is not None and host.nickname == nickname:
            host.websocket = websocket
            host.connected = True
            self._increment_stat("reconnects")
            logger.info("[ROOM] room=%s host %s reconnected", room.room_id, nickname)
            return host, True, None

        existing = room.clients_by_nickname.get(nickname)
        if existing is not None:
            room.clients_by_socket.pop(existing.websocket, None)
            existing.websocket = websocket
            existing.connected = True
            room.clients_by_socket[websocket] = existing
            self._increment_stat("reconnects")
            logger.info("[ROOM] room=%s player %s reconnected score=%s", room.room_id, nickname, existing.score)
            return existing, True, None

        notice: str | None = None
        if wants_host:
            if host is None or not host.connected:
                client = ClientConnection(
                    nickname=nickname,
                    room_id=room.room_id,
                    is_host=True,
                    websocket=websocket,
                    avatar=random_avatar(),
                )
                if host is not None:
                    self._increment_stat("hostTakeovers")
                    logger.warning(
                        "[ROOM] room=%s host slot of disconnected %s taken by %s",
                        room.room_id,
                        host.nickname,
                        nickname,
                    )
                room.host_client = client
                logger.info("[ROOM] room=%s host %s registered", room.room_id, nickname)
                return client, False, None
            self._increment_stat("hostRequestsDemoted")
            logger.warning(
                "[ROOM] room=%s host request from %s refused, host %s is connected",
                room.room_id,
                nickname,
                host.nickname,
            )
            notice = ERROR_HOST_TAKEN

        returning = nickname in room.departed_scores
        client = ClientConnection(
            nickname=nickname,
            room_id=room.room_id,
            is_host=False,
            websocket=websocket,
            score=room.departed_scores.pop(nickname, 0),
            avatar=random_avatar(),
        )
        room.clients_by_socket[websocket] = client
        room.clients_by_nickname[nickname] = client
        if returning:
            self._increment_stat("reconnects")
        logger.info(
            "[ROOM] room=%s player %s registered score=%s returning=%s (players: %s)",
            room.room_id,
            nickname,
            client.score,
            returning,
            len(room.clients_by_nickname),
        )
        return client, returning, notice

    async def _cleanup_connection(
        self,
        room: RoomRuntime,
        websocket: WebSocket,
        reason: str = "unknown",
        close_code: int | None = None,
    ) -> None:
        async with room.lock:
            self._on_disconnect()
            if room.closed:
                return

            host = room.host_client
            if host is not None and host.websocket is websocket:
                # The host slot is only cleared by an explicit close.
                host.connected = False
                departed = host
            else:
                current = room.clients_by_socket.get(websocket)
                if current is None:
                    self._increment_stat("staleDisconnects")
                    self._log_ws_event(
                        "disconnect_stale_ignored",
                        roomId=room.room_id,
                        reason=reason,
                        closeCode=close_code,
                    )
                    return
                room.clients_by_socket.pop(websocket, None)
                if room.clients_by_nickname.get(current.nickname) is current:
                    room.clients_by_nickname.pop(current.nickname, None)
                room.departed_scores[current.nickname] = current.score
                current.connected = False
                departed = current

            self._mark_state_changed(room)
            await self._broadcast_player_list(room)
            logger.info(
                "[DISCONNECT] room=%s nickname=%s host=%s code=%s reason=%s",
                room.room_id,
                departed.nickname,
                departed.is_host,
                close_code,
                reason,
            )
            self._log_ws_event(
                "disconnect",
                roomId=room.room_id,
                nickname=departed.nickname,
                wasHost=departed.is_host,
                reason=reason,
                closeCode=close_code,
            )

    async def _handle_message(
        self,
        room: RoomRuntime,
        client: ClientConnection,
        data: dict[str, Any],
    ) -> None:
        await handle_room_message(self, room, client, data)

    async def _send(self, client: ClientConnection, data: dict[str, Any]) -> bool:
        return await send_safe(
            self,
            client.websocket,
            data,
            room_id=client.room_id,
            nickname=client.nickname,
        )

    async def _broadcast(self, room: RoomRuntime, data: dict[str, Any]) -> int:
        return await broadcast_to_room(self, room, data)

    async def _broadcast_player_list(self, room: RoomRuntime) -> int:
        return await self._broadcast(room, build_player_list_message(room))

    def _cancel_timer(self, room: RoomRuntime) -> None:
        task = room.timer
        # Never cancel the timer task from inside itself: it is still broadcasting.
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        room.timer = None

    def _schedule_timer(self, room: RoomRuntime, delay_ms: int, callback: TimerCallback) -> None:
        self._cancel_timer(room)
        delay_s = max(0.0, (delay_ms or 0) / 1000)

        async def runner() -> None:
            try:
                await asyncio.sleep(delay_s)
            except asyncio.CancelledError:
                return
            async with room.lock:
                if room.timer is not asyncio.current_task():
                    return
                await callback(room)

        room.timer = asyncio.create_task(runner(), name=f"{room.room_id}:session")
