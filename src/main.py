"""
PoliMusic API - Main Application

FastAPI application that serves:
- REST API endpoints for songs CRUD, play counting and popularity stats
- Health check endpoint reporting MongoDB readiness
- Request body size limit, enforced for declared and chunked bodies

The HTTP server starts accepting requests immediately; the MongoDB
connection is established (and retried) in the background, and ``/health``
reports 503 until it is up.
"""

import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from src.config import (
    APP_ENV,
    APP_HOST,
    APP_NAME,
    APP_PORT,
    APP_VERSION,
    DEBUG,
    IS_PRODUCTION,
    LOG_LEVEL,
    MAX_BODY_BYTES,
    MAX_BODY_MB,
)
from src.database import MongoConnectionManager
from src.errors import SongServiceError
from src.routes.api import router as api_router
from src.routes.health import router as health_router
from src.utils import error_envelope

# ---------------------------------------------------------------------------
# Logging setup (stdout only)
# ---------------------------------------------------------------------------
logger.remove()

logger.add(
    sys.stdout,
    level="DEBUG" if DEBUG else LOG_LEVEL,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    On startup:
        1. Start the MongoDB connect loop in the background

    On shutdown:
        2. Cancel a pending connect attempt and close the client
    """
    connection: MongoConnectionManager = app.state.connection

    # --- Startup ---
    logger.info("🚀 Starting {} v{}", APP_NAME, APP_VERSION)
    logger.info("📋 Environment: {} | Debug: {}", APP_ENV, DEBUG)

    connection.start()

    logger.success("✅ Application ready — listening on {}:{}", APP_HOST, APP_PORT)
    logger.info("🔗 Health check: http://localhost:{}/health", APP_PORT)

    yield

    # --- Shutdown ---
    logger.info("🛑 Shutting down {} …", APP_NAME)
    await connection.close()
    logger.info("👋 Shutdown complete")


# ---------------------------------------------------------------------------
# Body size limit
# ---------------------------------------------------------------------------
def _too_large_response(expose_errors: bool) -> JSONResponse:
    detail = f"Maximum body size is {MAX_BODY_MB}MB" if expose_errors else None
    return JSONResponse(
        status_code=413,
        content=error_envelope("Request entity too large", detail),
    )


class BodySizeLimitMiddleware:
    """
    Reject request bodies larger than ``MAX_BODY_BYTES``.

    A declared ``Content-Length`` over the limit is refused before the app
    runs.  Bodies without one (chunked uploads) are counted as they are
    received; once the running total passes the limit the read fails with a
    413 ``HTTPException``, which FastAPI lets through to the error handlers.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        limit = MAX_BODY_BYTES
        length = Headers(scope=scope).get("content-length")
        if length and length.isdigit() and int(length) > limit:
            response = _too_large_response(scope["app"].state.expose_errors)
            await response(scope, receive, send)
            return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > limit:
                    raise HTTPException(
                        status_code=413, detail=f"Maximum body size is {MAX_BODY_MB}MB"
                    )
            return message

        await self.app(scope, limited_receive, send)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    connection: Optional[MongoConnectionManager] = None,
    expose_errors: Optional[bool] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    *connection* defaults to a manager reading the connection string from
    the environment.  *expose_errors* controls whether failure envelopes
    carry the raw error text; by default it is on outside production.
    """

    app = FastAPI(
        title=APP_NAME,
        description="Song catalog with play statistics, backed by MongoDB.",
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
    )

    app.state.connection = connection or MongoConnectionManager()
    app.state.expose_errors = (not IS_PRODUCTION) if expose_errors is None else expose_errors

    def _detail(request: Request, detail: str) -> Optional[str]:
        return detail if request.app.state.expose_errors else None

    # ------------------------------------------------------------------
    # Body size limit
    # ------------------------------------------------------------------
    app.add_middleware(BodySizeLimitMiddleware)

    # ------------------------------------------------------------------
    # Request logging middleware
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every incoming HTTP request with timing information."""
        start = time.time()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = round(time.time() - start, 3)
            logger.error(
                "❌ {method} {path} — unhandled error after {duration}s: {exc}",
                method=request.method,
                path=request.url.path,
                duration=duration,
                exc=exc,
            )
            raise
        else:
            duration = round(time.time() - start, 3)
            status = response.status_code

            if status >= 500:
                logger.error(
                    "📤 {method} {path} — {status} [{duration}s]",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration=duration,
                )
            elif status >= 400:
                logger.warning(
                    "📤 {method} {path} — {status} [{duration}s]",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration=duration,
                )
            else:
                logger.info(
                    "📤 {method} {path} — {status} [{duration}s]",
                    method=request.method,
                    path=request.url.path,
                    status=status,
                    duration=duration,
                )

            return response

    # ------------------------------------------------------------------
    # Exception handlers: every failure is an envelope
    # ------------------------------------------------------------------
    @app.exception_handler(SongServiceError)
    async def song_service_error_handler(request: Request, exc: SongServiceError):
        detail = _detail(request, exc.detail) if exc.status_code >= 500 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(exc.message, detail),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=error_envelope(
                "Invalid request body", _detail(request, str(exc.errors()))
            ),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Unknown path and unsupported method on a known path look the same
        if exc.status_code in (404, 405):
            return JSONResponse(
                status_code=404, content=error_envelope("Route not found")
            )
        if exc.status_code == 413:
            return _too_large_response(request.app.state.expose_errors)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail)),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("❌ Unhandled error: {}", exc)
        return JSONResponse(
            status_code=500,
            content=error_envelope(
                "Internal server error", _detail(request, str(exc))
            ),
        )

    # ------------------------------------------------------------------
    # Register routers
    # ------------------------------------------------------------------
    app.include_router(health_router)  # /health
    app.include_router(api_router)  # /api/*  JSON endpoints

    return app


# ---------------------------------------------------------------------------
# Create the app instance (used by Uvicorn)
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Direct execution (development)
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info",
    )
