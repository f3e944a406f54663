"""Subscriptions Backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

# configure_structlog MUST be called before all other app imports
# (structlog caches the processor chain on first use).
from app.core.logging import configure_structlog
from app.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api.routes import api_router
from app.core.config import Settings, get_settings
from app.db import close_db, create_session_factory, init_db
from app.integrations.stripe_gateway import StripeGateway
from app.middleware.correlation import get_correlation_id, setup_correlation_middleware
from app.services.auth_service import AuthService
from app.services.billing_service import BillingService

logger = structlog.get_logger(__name__)


def build_lifespan(settings: Settings, gateway: StripeGateway | None = None):
    """Return the lifespan handler that wires the database and services.

    This is the composition root: every service is constructed here from
    ``settings`` and stored on ``app.state`` for the route dependencies.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # SIGTERM flips this so the health check returns 503 while draining
        app.state.shutting_down = False

        def handle_sigterm(signum, frame):
            app.state.shutting_down = True
            logger.info("sigterm_received", action="health_check_503_draining_connections")

        try:
            signal.signal(signal.SIGTERM, handle_sigterm)
        except ValueError:
            # Not on the main thread (e.g. under the test client)
            pass

        logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

        engine = await init_db(settings.database_url, echo=settings.debug)
        session_factory = create_session_factory(engine)
        logger.info("db_initialized")

        if not settings.stripe_secret_key:
            logger.warning("stripe_secret_key_missing")
        if not settings.stripe_webhook_secret:
            logger.warning("stripe_webhook_secret_missing")

        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.auth_service = AuthService(session_factory, settings)
        app.state.billing_service = BillingService(
            gateway or StripeGateway.from_settings(settings),
            session_factory,
            settings,
        )

        yield

        logger.info("shutdown_begin")
        await close_db(engine)
        logger.info("shutdown_complete")

    return lifespan


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=getattr(exc, "headers", None),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Logs the full exception with traceback, returns a generic 500 to the client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(settings: Settings | None = None, gateway: StripeGateway | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: explicit configuration; defaults to the environment-backed ``get_settings()``
        gateway: Stripe gateway override; defaults to one built from ``settings``
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Accounts and Stripe subscription billing",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=build_lifespan(settings, gateway),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, *settings.cors_allowed_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router)

    videos_dir = Path(settings.static_videos_dir)
    if videos_dir.is_dir():
        app.mount("/videos", StaticFiles(directory=videos_dir), name="videos")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
