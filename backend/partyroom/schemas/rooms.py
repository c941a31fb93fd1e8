from __future__ import annotations

from pydantic import BaseModel, Field


class PlayerEntry(BaseModel):
    nickname: str
    id: str
    isHost: bool = False
    score: int = 0
    avatar: str = ""
    connected: bool = True
    gameFinished: bool = False


class PlayerListResponse(BaseModel):
    players: list[PlayerEntry] = Field(default_factory=list)
    waitingForPlayers: bool | None = None
    gameStarted: bool | None = None
    gameEnded: bool | None = None


class RoomInfoResponse(BaseModel):
    roomId: str
    totalPlayers: int = 0
    connectedPlayers: int = 0
    hasHost: bool = False
    gameType: str | None = None
    waitingForPlayers: bool = True
    gameStarted: bool = False
    gameEnded: bool = False


class RoomListResponse(BaseModel):
    rooms: list[RoomInfoResponse] = Field(default_factory=list)
    count: int = 0
