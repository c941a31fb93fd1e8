from __future__ import annotations

from fastapi import APIRouter

from partyroom.api.deps import RuntimeDep
from partyroom.runtime import PartyRuntime

router = APIRouter(tags=["system"])


def _health_payload(runtime: PartyRuntime) -> dict[str, object]:
    ws_stats = runtime.get_ws_stats()
    ws_summary = {
        "activeConnections": ws_stats["stats"].get("activeConnections", 0),
        "peakConnections": ws_stats["stats"].get("peakConnections", 0),
        "connectAttempts": ws_stats["stats"].get("connectAttempts", 0),
        "reconnects": ws_stats["stats"].get("reconnects", 0),
    }
    return {
        "ok": True,
        "activeRooms": runtime.active_rooms_count,
        "websocket": ws_summary,
    }


@router.get("/api/health")
async def health(runtime: PartyRuntime = RuntimeDep) -> dict[str, object]:
    return _health_payload(runtime)


@router.get("/health")
async def health_compat(runtime: PartyRuntime = RuntimeDep) -> dict[str, object]:
    return _health_payload(runtime)


@router.get("/api/ws-stats")
async def websocket_stats(runtime: PartyRuntime = RuntimeDep) -> dict[str, object]:
    return runtime.get_ws_stats()
