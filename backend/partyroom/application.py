from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from partyroom.api.router import api_router
from partyroom.config import settings
from partyroom.runtime import PartyRuntime

logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))


def create_app(runtime: PartyRuntime | None = None) -> FastAPI:
    app = FastAPI(title="Party Room Backend", version="1.0.0")
    app.state.runtime = runtime if runtime is not None else PartyRuntime()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.runtime.shutdown()

    return app


app = create_app()
