from __future__ import annotations

from fastapi import Depends
from starlette.requests import HTTPConnection

from partyroom.runtime import PartyRuntime


def get_runtime(connection: HTTPConnection) -> PartyRuntime:
    return connection.app.state.runtime


RuntimeDep = Depends(get_runtime)
