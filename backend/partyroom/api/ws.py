from __future__ import annotations

from fastapi import APIRouter, WebSocket

from partyroom.api.deps import get_runtime

router = APIRouter(tags=["websocket"])


@router.websocket("/api/ws")
async def websocket_api(ws: WebSocket) -> None:
    await get_runtime(ws).handle_websocket(ws)


@router.websocket("/ws")
async def websocket_compat(ws: WebSocket) -> None:
    await get_runtime(ws).handle_websocket(ws)
