"""
Connect Portal — application entry point.
"""

from __future__ import annotations

import asyncio
import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_session_store
from api.middleware import register_middleware
from api.routes import router as connect_router
from api.sessions import router as sessions_router
from config.settings import config

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def _sweep_sessions() -> None:
    """Periodically close sessions abandoned by a page reload."""
    store = get_session_store()
    while True:
        await asyncio.sleep(config.session_sweep_interval_seconds)
        try:
            await store.evict_idle()
        except Exception as exc:
            logger.error("Session sweep failed: %s", exc)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Connect Portal",
        version="1.0.0",
        description="Link third-party accounts through short-lived connect tokens.",
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

    # Routes
    app.include_router(connect_router, prefix="/api/v1/connect")
    app.include_router(sessions_router, prefix="/api/v1/connect")

    @app.on_event("startup")
    async def on_startup():
        if config.broker_configured():
            logger.info(
                "Broker project %s (%s) configured",
                config.pipedream_project_id,
                config.pipedream_project_environment,
            )
        else:
            logger.warning(
                "Broker credentials missing — token and account routes will answer 500"
            )
        app.state.session_sweeper = asyncio.ensure_future(_sweep_sessions())
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        sweeper = getattr(app.state, "session_sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
            await asyncio.gather(sweeper, return_exceptions=True)

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
