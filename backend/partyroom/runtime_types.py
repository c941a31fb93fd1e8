from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

from fastapi import WebSocket

from .runtime_utils import now_ms

SessionState = Literal["waiting", "playing", "ended"]


@dataclass
class ClientConnection:
    nickname: str
    room_id: str
    is_host: bool
    websocket: WebSocket
    score: int = 0
    avatar: str = ""
    game_finished: bool = False
    connected: bool = True
    joined_at: int = field(default_factory=now_ms)


@dataclass
class SessionParams:
    game_type: str
    game_time: int
    num_pairs: int | None = None
    settings: dict[str, int] = field(default_factory=dict)


@dataclass
class RoomRuntime:
    room_id: str
    host_client: ClientConnection | None = None
    # Two indices over the same non-host records: socket for disconnect cleanup,
    # nickname for reconnection lookup.
    clients_by_socket: dict[WebSocket, ClientConnection] = field(default_factory=dict)
    clients_by_nickname: dict[str, ClientConnection] = field(default_factory=dict)
    departed_scores: dict[str, int] = field(default_factory=dict)
    session_state: SessionState = "waiting"
    session_params: SessionParams | None = None
    total_players: int = 0
    game_data: dict[str, Any] = field(default_factory=dict)
    end_reason: str | None = None
    final_results: list[dict[str, Any]] = field(default_factory=list)
    timer: asyncio.Task[None] | None = None
    closed: bool = False
    created_at: int = field(default_factory=now_ms)
    state_version: int = 1
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def waiting_for_players(self) -> bool:
        return self.session_state == "waiting"

    @property
    def game_started(self) -> bool:
        return self.session_state == "playing"

    @property
    def game_ended(self) -> bool:
        return self.session_state == "ended"

    def find_by_socket(self, websocket: WebSocket) -> ClientConnection | None:
        if self.host_client is not None and self.host_client.websocket is websocket:
            return self.host_client
        return self.clients_by_socket.get(websocket)

    def non_host_clients(self) -> list[ClientConnection]:
        return list(self.clients_by_nickname.values())

    def all_clients(self) -> list[ClientConnection]:
        clients = self.non_host_clients()
        if self.host_client is not None:
            clients.insert(0, self.host_client)
        return clients

    def connected_count(self) -> int:
        return sum(1 for client in self.all_clients() if client.connected)
