"""
Session authority service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_exception_handlers, register_middleware
from auth.routes import router as auth_router
from auth.sweeper import TokenSweeper
from config.settings import config
from database.session import async_session_factory, create_tables

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "sqlalchemy.engine", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(sweeper: TokenSweeper | None = None) -> FastAPI:
    app = FastAPI(
        title="Session Authority",
        version="1.0.0",
        description="Multi-tenant session credential issuing and validation.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}

    token_sweeper = sweeper or TokenSweeper(
        async_session_factory,
        interval_seconds=config.token_sweep_interval_seconds,
    )
    app.state.token_sweeper = token_sweeper

    @app.on_event("startup")
    async def on_startup():
        await create_tables()
        token_sweeper.start()
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await token_sweeper.stop()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
