"""FastAPI application for the call signaling relay."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .core.config import Settings, get_settings
from .core.errors import SignalingError
from .routers import calls as calls_router
from .routers import signaling as signaling_router
from .services.signaling import build_engine, run_sweeper

logger = logging.getLogger(__name__)


def _configure_logging(config: Settings) -> None:
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(config: Settings | None = None) -> FastAPI:
    """Build the API; the engine is wired on startup so missing RTC secrets fail the boot."""

    config = config or get_settings()
    _configure_logging(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.engine = build_engine(config)
        sweeper = asyncio.create_task(run_sweeper(app.state.engine, config.call_sweep_interval_seconds))
        logger.info("Call relay started (env=%s)", config.app_env)
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await app.state.engine.drain()
            app.state.engine = None

    app = FastAPI(title="Call Relay API", version="0.1.0", lifespan=lifespan)

    if config.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(SignalingError)
    async def signaling_error_handler(request: Request, exc: SignalingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.code, "detail": exc.detail},
        )

    @app.get("/", response_class=PlainTextResponse, tags=["meta"])
    async def index() -> PlainTextResponse:
        return PlainTextResponse("Call relay running")

    @app.head("/", tags=["meta"])
    async def index_head() -> Response:
        """Fast health checks issue HEAD /; answer with 200 to avoid noisy 405s."""

        return Response(status_code=200)

    @app.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness check."""

        return {"status": "ok"}

    @app.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        return Response(status_code=200)

    @app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
    async def robots() -> PlainTextResponse:
        """Serve a minimal robots.txt to avoid 404 noise."""

        return PlainTextResponse("User-agent: *\nDisallow:")

    app.include_router(calls_router.router, prefix="/api", tags=["calls"])
    app.include_router(signaling_router.router, tags=["signaling"])
    return app


app = create_app()
