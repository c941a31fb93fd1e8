"""One logical WebSocket per (room, nickname), shared by many subscribers.

Construct one ``ConnectionManager`` per application context and hand it to
every component that needs the room socket. ``connect`` either reuses the
open connection, joins an attempt already in flight, or opens a new one.
Abnormal closes are retried with exponential backoff; callers arriving during
a retry wait on the same future.
"""
from __future__ import annotations

import asyncio
import enum
import inspect
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Literal, Protocol, Union
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websockets_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from partyroom.client.message_filter import DuplicateFilter
from partyroom.config import settings

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

HandlerKind = Literal["platform", "game"]
MessageHandler = Callable[[dict[str, Any]], Any]

GAME_START_TYPES = frozenset({"platformGameStarted", "gameStarted"})
GAME_STOP_TYPES = frozenset({"gameEnded", "roomClosed"})


class Connection(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> Any: ...

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[Connection]]


class ConnectionManagerError(Exception):
    pass


class GameActiveError(ConnectionManagerError):
    pass


class ConnectError(ConnectionManagerError):
    pass


class ReconnectExhaustedError(ConnectionManagerError):
    pass


class ConnectionStatus(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionKey:
    room_id: str
    nickname: str


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Connecting:
    key: SessionKey
    future: asyncio.Future[Connection] = field(compare=False)


@dataclass(frozen=True)
class Open:
    key: SessionKey
    connection: Connection = field(compare=False)


@dataclass(frozen=True)
class Closed:
    key: SessionKey
    error: ConnectionManagerError | None = None


ConnectionState = Union[Idle, Connecting, Open, Closed]


@dataclass
class GameSessionState:
    is_game_active: bool = False
    game_type: str | None = None
    room_id: str | None = None
    player_nickname: str | None = None
    is_host: bool = False


async def _default_connector(url: str) -> Connection:
    return await websockets_connect(url, open_timeout=None)


def _settle(
    future: asyncio.Future[Connection],
    result: Connection | None = None,
    error: BaseException | None = None,
) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
        # Waiters are optional; an unobserved failure is not an error here.
        future.exception()
    else:
        future.set_result(result)


class ConnectionManager:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        connector: Connector | None = None,
        max_reconnect_attempts: int | None = None,
        reconnect_delay_ms: int | None = None,
        open_timeout_ms: int | None = None,
        duplicate_filter: DuplicateFilter | None = None,
    ) -> None:
        self.base_url = (base_url or settings.client_ws_base_url).rstrip("/")
        self.max_reconnect_attempts = (
            max_reconnect_attempts
            if max_reconnect_attempts is not None
            else settings.client_max_reconnect_attempts
        )
        self.reconnect_delay_ms = (
            reconnect_delay_ms if reconnect_delay_ms is not None else settings.client_reconnect_delay_ms
        )
        self.open_timeout_ms = open_timeout_ms if open_timeout_ms is not None else settings.client_open_timeout_ms
        self._connector: Connector = connector or _default_connector
        self._duplicate_filter = duplicate_filter or DuplicateFilter()

        self._state: ConnectionState = Idle()
        self._game = GameSessionState()
        self._platform_handlers: dict[str, MessageHandler] = {}
        self._game_handlers: dict[str, MessageHandler] = {}
        self._reconnect_attempts = 0
        self._generation = 0
        self._receive_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        if isinstance(self._state, Connecting):
            return ConnectionStatus.CONNECTING
        if isinstance(self._state, Open):
            return ConnectionStatus.OPEN
        if isinstance(self._state, Closed):
            return ConnectionStatus.CLOSED
        return ConnectionStatus.IDLE

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def build_url(self, room_id: str, nickname: str, is_host: bool) -> str:
        query = urlencode(
            {
                "roomId": room_id,
                "nickname": nickname,
                "isHost": "true" if is_host else "false",
            }
        )
        return f"{self.base_url}/ws?{query}"

    async def connect(self, room_id: str, nickname: str, is_host: bool = False) -> Connection:
        key = SessionKey(room_id=room_id, nickname=nickname)
        state = self._state

        if isinstance(state, Open) and state.key == key:
            # Same physical session; the role label may be refined by a later caller.
            self._game.is_host = is_host
            logger.info("[CLIENT] reusing connection room=%s nickname=%s", room_id, nickname)
            return state.connection

        if isinstance(state, Connecting) and state.key == key:
            self._game.is_host = is_host
            logger.info("[CLIENT] joining pending connect room=%s nickname=%s", room_id, nickname)
            return await asyncio.shield(state.future)

        if self._game.is_game_active and self._game.room_id != room_id:
            raise GameActiveError(
                f"Game is active in room {self._game.room_id}; refusing to switch to {room_id}"
            )

        await self._teardown(NORMAL_CLOSURE, "Switching session")
        self._game.room_id = room_id
        self._game.player_nickname = nickname
        self._game.is_host = is_host
        self._reconnect_attempts = 0

        future: asyncio.Future[Connection] = asyncio.get_running_loop().create_future()
        self._state = Connecting(key=key, future=future)
        generation = self._generation

        try:
            connection = await self._open(key, is_host, generation)
        except ConnectError as exc:
            if generation == self._generation:
                self._state = Closed(key=key, error=exc)
            _settle(future, error=exc)
            raise
        _settle(future, result=connection)
        return connection

    async def _open(self, key: SessionKey, is_host: bool, generation: int) -> Connection:
        url = self.build_url(key.room_id, key.nickname, is_host)
        logger.info("[CLIENT] connecting to %s", url)
        try:
            connection = await asyncio.wait_for(self._connector(url), timeout=self.open_timeout_ms / 1000)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ConnectError(f"Could not open connection to room {key.room_id}: {exc!r}") from exc

        if generation != self._generation:
            await self._close_quietly(connection, NORMAL_CLOSURE, "Superseded")
            raise ConnectError(f"Connection attempt to room {key.room_id} was superseded")

        self._state = Open(key=key, connection=connection)
        self._reconnect_attempts = 0
        try:
            await connection.send(
                json.dumps(
                    {
                        "type": "join",
                        "payload": {"roomId": key.room_id, "nickname": key.nickname, "isHost": is_host},
                    },
                    ensure_ascii=False,
                )
            )
        except ConnectionClosed:
            logger.warning("[CLIENT] connection closed before join was sent room=%s", key.room_id)

        self._receive_task = asyncio.create_task(
            self._receive_loop(key, connection, generation),
            name=f"partyroom-client:{key.room_id}:{key.nickname}",
        )
        logger.info("[CLIENT] connected room=%s nickname=%s host=%s", key.room_id, key.nickname, is_host)
        return connection

    async def _receive_loop(self, key: SessionKey, connection: Connection, generation: int) -> None:
        close_code = ABNORMAL_CLOSURE
        close_reason = ""
        try:
            while True:
                raw = await connection.recv()
                self._handle_raw(raw)
        except ConnectionClosed as exc:
            if exc.rcvd is not None:
                close_code = exc.rcvd.code
                close_reason = exc.rcvd.reason

        if generation != self._generation:
            return
        logger.info("[CLIENT] connection closed room=%s code=%s reason=%s", key.room_id, close_code, close_reason)
        if close_code == NORMAL_CLOSURE:
            self._state = Closed(key=key, error=None)
            return
        await self._reconnect(key, generation)

    async def _reconnect(self, key: SessionKey, generation: int) -> None:
        future: asyncio.Future[Connection] = asyncio.get_running_loop().create_future()
        self._state = Connecting(key=key, future=future)

        while self._reconnect_attempts < self.max_reconnect_attempts:
            delay_ms = self.reconnect_delay_ms * (2**self._reconnect_attempts)
            self._reconnect_attempts += 1
            logger.info(
                "[CLIENT] reconnecting room=%s attempt=%s/%s in %sms",
                key.room_id,
                self._reconnect_attempts,
                self.max_reconnect_attempts,
                delay_ms,
            )
            await asyncio.sleep(delay_ms / 1000)
            if generation != self._generation:
                return
            try:
                connection = await self._open(key, self._game.is_host, generation)
            except ConnectError as exc:
                logger.warning("[CLIENT] reconnect attempt failed room=%s error=%s", key.room_id, exc)
                continue
            _settle(future, result=connection)
            return

        error = ReconnectExhaustedError(
            f"Gave up reconnecting to room {key.room_id} after {self.max_reconnect_attempts} attempts"
        )
        logger.error("[CLIENT] %s", error)
        self._state = Closed(key=key, error=error)
        _settle(future, error=error)

    def _handle_raw(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("[CLIENT] dropped malformed frame")
            return
        if not isinstance(message, dict):
            logger.warning("[CLIENT] dropped non-object frame")
            return
        if self._duplicate_filter.is_duplicate(message):
            return
        self._track_game_state(message)
        self._dispatch(message)

    def _track_game_state(self, message: dict[str, Any]) -> None:
        message_type = message.get("type")
        if message_type in GAME_START_TYPES:
            data = message.get("data")
            game_type = data.get("gameType") if isinstance(data, dict) else None
            self._game.is_game_active = True
            self._game.game_type = game_type or message.get("gameType")
            logger.info("[CLIENT] game started, connection locked type=%s", self._game.game_type)
        elif message_type in GAME_STOP_TYPES:
            self._game.is_game_active = False
            self._game.game_type = None
            logger.info("[CLIENT] game stopped, connection unlocked")

    def _dispatch(self, message: dict[str, Any]) -> None:
        message_type = str(message.get("type") or "")
        if message_type.startswith("platform"):
            handlers = list(self._platform_handlers.items())
        elif message_type.startswith("game"):
            handlers = list(self._game_handlers.items())
        else:
            handlers = [*self._platform_handlers.items(), *self._game_handlers.items()]

        for key, handler in handlers:
            try:
                result = handler(message)
            except Exception:
                logger.exception("[CLIENT] handler %s failed on %s", key, message_type)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Future[Any]) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[CLIENT] async handler failed: %r", exc)

    async def send(self, message: dict[str, Any]) -> bool:
        state = self._state
        if not isinstance(state, Open):
            logger.warning("[CLIENT] cannot send %s, not connected", message.get("type"))
            return False
        try:
            await state.connection.send(json.dumps(message, ensure_ascii=False))
        except ConnectionClosed:
            logger.warning("[CLIENT] send of %s failed, connection closed", message.get("type"))
            return False
        return True

    def add_message_handler(self, key: str, handler: MessageHandler, kind: HandlerKind = "game") -> None:
        if kind == "platform":
            self._platform_handlers[key] = handler
        else:
            self._game_handlers[key] = handler

    def remove_message_handler(self, key: str, kind: HandlerKind | None = None) -> None:
        if kind != "game":
            self._platform_handlers.pop(key, None)
        if kind != "platform":
            self._game_handlers.pop(key, None)

    def remove_all_game_handlers(self) -> None:
        self._game_handlers.clear()

    async def disconnect(self) -> None:
        await self._reset(NORMAL_CLOSURE, "Normal closure")
        logger.info("[CLIENT] disconnected")

    async def disconnect_if_game_inactive(self) -> bool:
        if self._game.is_game_active:
            logger.warning("[CLIENT] refusing to disconnect while a game is active")
            return False
        await self.disconnect()
        return True

    async def force_disconnect(self) -> None:
        await self._reset(NORMAL_CLOSURE, "Game ended")
        logger.info("[CLIENT] force disconnected")

    def is_connected(self) -> bool:
        return isinstance(self._state, Open)

    def get_connection(self) -> Connection | None:
        state = self._state
        return state.connection if isinstance(state, Open) else None

    def is_game_active(self) -> bool:
        return self._game.is_game_active

    def get_game_state(self) -> GameSessionState:
        return replace(self._game)

    def set_game_active(self, active: bool) -> None:
        self._game.is_game_active = active
        logger.info("[CLIENT] game active set to %s", active)

    async def _reset(self, code: int, reason: str) -> None:
        await self._teardown(code, reason)
        self._game = GameSessionState()
        self._platform_handlers.clear()
        self._game_handlers.clear()
        self._duplicate_filter.clear()
        self._reconnect_attempts = 0

    async def _teardown(self, code: int, reason: str) -> None:
        self._generation += 1
        state = self._state
        self._state = Idle()

        task = self._receive_task
        self._receive_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if isinstance(state, Connecting):
            _settle(state.future, error=ConnectError(f"Connection attempt to room {state.key.room_id} cancelled"))
        elif isinstance(state, Open):
            await self._close_quietly(state.connection, code, reason)

    async def _close_quietly(self, connection: Connection, code: int, reason: str) -> None:
        try:
            await connection.close(code=code, reason=reason)
        except (ConnectionClosed, OSError) as exc:
            logger.debug("[CLIENT] close failed: %r", exc)
