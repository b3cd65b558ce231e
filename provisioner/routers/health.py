"""
Health check endpoint.
"""

import logging

import asyncpg
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from provisioner.database import CONNECTION_ERRORS, admin_connection
from provisioner.exceptions import BackendUnavailableError
from provisioner.schemas import HealthResponse

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health_check(request: Request):
    """
    Health check endpoint.
    Returns 200 when the admin database answers, 503 otherwise.
    """
    settings = request.app.state.settings
    pool = getattr(request.app.state, "pool", None)

    try:
        if pool is None:
            raise BackendUnavailableError("database unavailable")
        async with admin_connection(pool, timeout=settings.db_connect_timeout) as conn:
            await conn.fetchval("SELECT 1", timeout=settings.db_command_timeout)
    except (*CONNECTION_ERRORS, asyncpg.PostgresError, BackendUnavailableError) as e:
        logger.warning("Health check failed: %r", e)
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="down", error="database unreachable").model_dump(),
        )

    return HealthResponse(status="ok")
