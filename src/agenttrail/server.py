"""FastAPI application exposing the session index and live event feeds."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .broadcasting import LiveStreamBroadcaster
from .config import ConfigStore
from .routes import config_router, sessions_router

logger = logging.getLogger(__name__)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors (including unknown routes) as {"error": ...}."""
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )


def create_app(store: ConfigStore | None = None) -> FastAPI:
    """Create the application for a configuration store.

    Args:
        store: Config store to read profiles, pins and tags from. Defaults to
            the store at the standard config path.
    """
    store = store or ConfigStore()
    broadcaster = LiveStreamBroadcaster(store.load())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Using config {store.path}")
        yield
        # Shutdown: stop all file watches
        await broadcaster.close()

    app = FastAPI(title="AgentTrail", lifespan=lifespan)
    app.state.store = store
    app.state.broadcaster = broadcaster

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(sessions_router)
    app.include_router(config_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {
            "status": "ok",
            "watchedSessions": len(broadcaster.watched_session_ids()),
        }

    return app
