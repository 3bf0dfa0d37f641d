"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The realtime pieces (RoomRegistry + EventBroadcaster) are built
here, once, and parked on app.state; routes and the WebSocket endpoint
reach them through that handle instead of a module-level singleton.
Lifespan manages Redis and the database engine.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from pizzatrack import __version__
from pizzatrack.api import api_router
from pizzatrack.config import settings
from pizzatrack.log import configure_logging
from pizzatrack.realtime.broadcaster import EventBroadcaster
from pizzatrack.realtime.rooms import RoomRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "pizzatrack.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from pizzatrack.cache import close_redis, init_redis
    try:
        await init_redis()
        logger.info("pizzatrack.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("pizzatrack.redis_unavailable", error=str(e))
        # Redis is optional — only rate limiting depends on it

    yield

    logger.info(
        "pizzatrack.shutdown",
        open_connections=app.state.registry.connection_count(),
    )
    await close_redis()

    from pizzatrack.db.engine import engine
    await engine.dispose()


# ── Structured error bodies ─────────────────────────────────


def _error_body(request: Request, status_code: int, error: str, message: str) -> dict:
    return {
        "success": False,
        "error": error,
        "message": message,
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.url.path,
        "method": request.method,
    }


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = _error_body(request, exc.status_code, "HTTPException", str(exc.detail))
    # Keep FastAPI's "detail" so generic clients still work.
    body["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    body = _error_body(request, 422, "ValidationError", "Invalid input data")
    body["details"] = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=422, content=body)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    configure_logging(debug=settings.debug, json_logs=settings.log_json)

    app = FastAPI(
        title="Pizzatrack",
        description="Pizza order tracking — REST API and live WebSocket feed",
        version=__version__,
        lifespan=lifespan,
    )

    # One registry + broadcaster per process.
    registry = RoomRegistry()
    app.state.registry = registry
    app.state.broadcaster = EventBroadcaster(registry)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from pizzatrack.middleware.rate_limit import RateLimitMiddleware
    from pizzatrack.middleware.request_id import RequestIdMiddleware
    from pizzatrack.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RateLimitMiddleware, default_rpm=settings.rate_limit_rpm)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    from pizzatrack.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: pizzatrack.main:app)
app = create_app()
