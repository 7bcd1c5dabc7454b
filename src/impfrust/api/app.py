# src/impfrust/api/app.py
"""
FastAPI application wiring.

`create_app()` attaches a `Runtime` (cache + poller) to `app.state` and starts the poller
thread from the lifespan hook. Route logic lives in `impfrust.api.routes`.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from impfrust import __version__
from impfrust.config.settings import get_settings
from impfrust.core.logging import configure_logging
from impfrust.runtime import Runtime, build_runtime

from .routes import router

logger = logging.getLogger(__name__)


def create_app(runtime: Runtime | None = None, *, start_poller: bool = True) -> FastAPI:
    """Create the API app; without `runtime`, one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "runtime", None) is None:
            app.state.runtime = build_runtime(get_settings())
        rt: Runtime = app.state.runtime
        if start_poller:
            rt.scheduler.start()
        logger.info("API ready (poller %s)", "running" if start_poller else "disabled")
        try:
            yield
        finally:
            if start_poller:
                rt.scheduler.stop(timeout=5)

    app = FastAPI(title="impfrust API", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # Comma-separated list, e.g. IMPFRUST_CORS_ORIGINS="https://impf.example.org"
    cors_origins = [s.strip() for s in os.getenv("IMPFRUST_CORS_ORIGINS", "").split(",") if s.strip()]
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=False,
            allow_methods=["GET"],
            allow_headers=["*"],
        )

    app.include_router(router)
    return app


configure_logging()

app = create_app()
