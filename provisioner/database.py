"""
Administrative PostgreSQL connection pool.
Uses asyncpg directly: provisioning is DDL, not ORM work.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import asyncpg

from provisioner.config import Settings
from provisioner.exceptions import BackendUnavailableError

logger = logging.getLogger(__name__)

# Errors meaning "could not reach or talk to the server in time"
CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    asyncpg.QueryCanceledError,
)


async def create_admin_pool(settings: Settings) -> asyncpg.Pool:
    """
    Create the pool of administrative connections.

    With db_pool_min_size=0 no connection is opened here, so startup does
    not fail while PostgreSQL is still coming up.
    """
    pool = await asyncpg.create_pool(
        host=settings.postgres_host,
        port=settings.postgres_port,
        user=settings.postgres_user,
        password=settings.postgres_password,
        database=settings.postgres_db,
        ssl=settings.postgres_sslmode,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        timeout=settings.db_connect_timeout,
        command_timeout=settings.db_command_timeout,
    )
    logger.info(
        "Admin pool created for %s:%s/%s",
        settings.postgres_host,
        settings.postgres_port,
        settings.postgres_db,
    )
    return pool


async def close_admin_pool(pool: asyncpg.Pool | None) -> None:
    """Close the admin pool on shutdown."""
    if pool is not None:
        await pool.close()
    logger.info("Admin pool closed")


@asynccontextmanager
async def admin_connection(
    pool: asyncpg.Pool, timeout: float | None = None
) -> AsyncGenerator[asyncpg.Connection, None]:
    """
    Acquire an admin connection, mapping connectivity failures to
    BackendUnavailableError.
    """
    try:
        conn = await pool.acquire(timeout=timeout)
    except CONNECTION_ERRORS as e:
        logger.warning("Could not acquire admin connection: %r", e)
        raise BackendUnavailableError("database unavailable") from e

    try:
        yield conn
    finally:
        await pool.release(conn)

