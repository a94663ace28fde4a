from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gamemaster.api import health as health_api
from gamemaster.api import memory as memory_api
from gamemaster.api import tools as tools_api
from gamemaster.api import turn as turn_api
from gamemaster.core.config import get_settings
from gamemaster.core.logging import setup_logging
from gamemaster.db.base import create_engine, create_sessionmaker, init_db
from gamemaster.services.container import build_services


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)
    services = build_services(settings, sessionmaker)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        yield
        await engine.dispose()

    app = FastAPI(title="Game Master", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.services = services
    app.state.memory_service = services.memory_service
    app.state.provider_service = services.provider_service
    app.state.game_tools = services.game_tools
    app.state.turn_orchestrator = services.turn_orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_api.router)
    app.include_router(turn_api.router)
    app.include_router(memory_api.router)
    app.include_router(tools_api.router)

    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "gamemaster.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
