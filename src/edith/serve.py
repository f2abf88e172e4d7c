"""HTTP server for the Mission Control resource manager.

Mounts the resources router under ``/api`` with CORS, plus a health probe.
The JSON shapes are the ones the dashboard front end already consumes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

# Local dashboard dev servers
_BUILTIN_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
]


@asynccontextmanager
async def _lifespan(app):
    from edith import lifecycle

    yield
    logger.info("Shutting down resource manager")
    await lifecycle.shutdown_all()


def create_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from edith import __version__
    from edith.config import get_settings
    from edith.resources.api import router as resources_router

    settings = get_settings()

    app = FastAPI(
        title="Edith Mission Control",
        description="Shared resources, bookings, spend and quotas for agent teams.",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    # --- CORS -----------------------------------------------------------
    origins = list(set(_BUILTIN_ORIGINS + settings.cors_allowed_origins))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.include_router(resources_router, prefix="/api")

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 3000,
    dev: bool = False,
) -> None:
    """Start the server with uvicorn."""
    import uvicorn

    print("\n" + "=" * 50)
    print("EDITH MISSION CONTROL")
    print("=" * 50)
    print(f"\nAPI docs: http://{'localhost' if host == '127.0.0.1' else host}:{port}/api/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "edith.serve:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_app()
        uvicorn.run(app, host=host, port=port)
