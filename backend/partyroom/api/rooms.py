from __future__ import annotations

from fastapi import APIRouter, HTTPException

from partyroom.api.deps import RuntimeDep
from partyroom.runtime import PartyRuntime
from partyroom.schemas.rooms import PlayerListResponse, RoomInfoResponse, RoomListResponse

router = APIRouter(tags=["rooms"])


def _player_list(runtime: PartyRuntime, room_id: str) -> PlayerListResponse:
    # Read-only mirror of what the websocket layer already broadcasts.
    payload = runtime.get_player_list(room_id)
    if payload is None:
        return PlayerListResponse()
    return PlayerListResponse(**payload)


@router.get("/api/room/{room_id}/players", response_model=PlayerListResponse)
async def room_players_compat(room_id: str, runtime: PartyRuntime = RuntimeDep) -> PlayerListResponse:
    return _player_list(runtime, room_id)


@router.get("/api/rooms/{room_id}/players", response_model=PlayerListResponse)
async def room_players(room_id: str, runtime: PartyRuntime = RuntimeDep) -> PlayerListResponse:
    return _player_list(runtime, room_id)


@router.get("/api/rooms/{room_id}/info", response_model=RoomInfoResponse)
async def room_info(room_id: str, runtime: PartyRuntime = RuntimeDep) -> RoomInfoResponse:
    info = runtime.get_room_info(room_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return RoomInfoResponse(**info)


@router.get("/api/rooms", response_model=RoomListResponse)
async def list_rooms(runtime: PartyRuntime = RuntimeDep) -> RoomListResponse:
    rooms = [RoomInfoResponse(**info) for info in runtime.list_rooms()]
    return RoomListResponse(rooms=rooms, count=len(rooms))
