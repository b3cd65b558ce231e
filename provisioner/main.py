"""
Main FastAPI application entry point.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from provisioner import __version__
from provisioner.config import Settings, get_settings
from provisioner.database import close_admin_pool, create_admin_pool
from provisioner.exceptions import AppError
from provisioner.middleware.auth import AdminGuard
from provisioner.services.tenant_provisioner import TenantProvisioner
from provisioner.services.userlist_sync import UserlistSync

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Root logging setup; uvicorn configures its own loggers."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Syncs the PgBouncer userlist before serving requests, so the file exists
    by the time PgBouncer starts reading it, then discloses the admin key.
    """
    # Startup
    settings: Settings = app.state.settings
    print(f"Starting {settings.app_name} v{__version__}")
    print(f"PostgreSQL: {settings.postgres_host}:{settings.postgres_port}")
    print(f"PgBouncer: {settings.pgbouncer_host}:{settings.pgbouncer_port}")

    pool = await create_admin_pool(settings)
    userlist_sync = UserlistSync(settings, pool)

    app.state.pool = pool
    app.state.userlist_sync = userlist_sync
    app.state.provisioner = TenantProvisioner(settings, pool, userlist_sync)

    try:
        result = await userlist_sync.sync()
        print(f"Userlist {result.status}: {result.entries_written} users")
    except AppError as e:
        logger.warning("Initial userlist sync failed: %s", e.detail)

    print(f"ADMIN KEY: {app.state.admin_guard.token}", file=sys.stderr, flush=True)
    print("Keep this key secret. It's required for all mutating API requests.", file=sys.stderr)

    yield

    # Shutdown
    app.state.provisioner = None
    app.state.userlist_sync = None
    app.state.pool = None
    await close_admin_pool(pool)

    print(f"{settings.app_name} shutdown complete")


def create_app(settings: Settings | None = None, admin_guard: AdminGuard | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Provisions tenant databases and keeps the PgBouncer userlist in sync",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.admin_guard = admin_guard or AdminGuard.generate()
    app.state.pool = None
    app.state.userlist_sync = None
    app.state.provisioner = None

    # Include routers
    from provisioner.routers import health, provision, userlist

    app.include_router(health.router, tags=["Health"])
    app.include_router(provision.router, tags=["Provisioning"])
    app.include_router(userlist.router, tags=["Userlist"])

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        """Render application errors as {"error": message}."""
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Malformed JSON or wrongly typed fields."""
        return JSONResponse(status_code=400, content={"error": "invalid request body"})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions without leaking their text."""
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "internal server error"},
        )

    return app


def create_wrapped_app() -> FastAPI:
    """Create the app with logging configured from the environment."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)


# Create app instance
app = create_wrapped_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "provisioner.main:app",
        host="0.0.0.0",
        port=settings.listen_port,
        reload=settings.debug,
    )
