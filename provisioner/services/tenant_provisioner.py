"""
Tenant Database Provisioner.

Creates one login role and one database per tenant:

1. CREATE ROLE app_<name>_user (login, no superuser/createdb/createrole)
2. CREATE DATABASE app_<name> OWNER app_<name>_user
3. REVOKE ALL ON DATABASE ... FROM PUBLIC
4. GRANT ALL PRIVILEGES ON DATABASE ... TO app_<name>_user
5. Sync the PgBouncer userlist so the new role can log in through it

CREATE DATABASE cannot run inside a transaction, so the sequence is not
atomic. Each step that succeeded is undone (DROP DATABASE / DROP ROLE)
when a later step fails: callers see either a fully provisioned tenant or
nothing at all.
"""

import logging
from dataclasses import dataclass
from urllib.parse import quote

import asyncpg
from fastapi import Request

from provisioner.config import Settings
from provisioner.database import CONNECTION_ERRORS, admin_connection
from provisioner.exceptions import (
    AppError,
    BackendUnavailableError,
    ConflictError,
    ProvisionFailedError,
)
from provisioner.services.credentials import generate_password
from provisioner.services.tenant_names import TenantNames, quote_identifier, quote_literal
from provisioner.services.userlist_sync import UserlistSync

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# DDL builders (validated names only)
# ---------------------------------------------------------


def create_role_sql(names: TenantNames, password: str) -> str:
    return (
        f"CREATE ROLE {quote_identifier(names.role)} WITH LOGIN "
        f"PASSWORD {quote_literal(password)} "
        "NOSUPERUSER NOCREATEDB NOCREATEROLE"
    )


def create_database_sql(names: TenantNames) -> str:
    return (
        f"CREATE DATABASE {quote_identifier(names.database)} "
        f"OWNER {quote_identifier(names.role)}"
    )


def revoke_public_sql(names: TenantNames) -> str:
    return f"REVOKE ALL ON DATABASE {quote_identifier(names.database)} FROM PUBLIC"


def grant_owner_sql(names: TenantNames) -> str:
    return (
        f"GRANT ALL PRIVILEGES ON DATABASE {quote_identifier(names.database)} "
        f"TO {quote_identifier(names.role)}"
    )


def drop_database_sql(names: TenantNames) -> str:
    return f"DROP DATABASE IF EXISTS {quote_identifier(names.database)}"


def drop_role_sql(names: TenantNames) -> str:
    return f"DROP ROLE IF EXISTS {quote_identifier(names.role)}"


OWNED_DATABASE_QUERY = """
    SELECT EXISTS (
        SELECT 1
        FROM pg_database d
        JOIN pg_roles r ON r.oid = d.datdba
        WHERE d.datname = $1 AND r.rolname = $2
    )
"""


def build_connection_string(settings: Settings, names: TenantNames, password: str) -> str:
    """Connection string pointing at PgBouncer, credentials URL-encoded."""
    user = quote(names.role, safe="")
    secret = quote(password, safe="")
    return (
        f"{settings.tenant_connection_scheme}://{user}:{secret}"
        f"@{settings.pgbouncer_host}:{settings.pgbouncer_port}/{names.database}"
        f"?sslmode={settings.tenant_sslmode}"
    )


@dataclass(frozen=True)
class ProvisionResult:
    """A freshly provisioned tenant."""

    connection_string: str
    database: str
    role: str
    userlist_synced: bool


class TenantProvisioner:
    """Provisions tenant role/database pairs over the admin pool."""

    def __init__(self, settings: Settings, pool: asyncpg.Pool, userlist_sync: UserlistSync):
        self.settings = settings
        self.pool = pool
        self.userlist_sync = userlist_sync

    async def provision(self, tenant_name: str) -> ProvisionResult:
        """
        Provision a new tenant.

        Raises InvalidIdentifierError before touching the database,
        ConflictError if the role or database already exists,
        BackendUnavailableError on connectivity loss and
        ProvisionFailedError for any other DDL failure.
        """
        names = TenantNames.from_tenant(tenant_name)
        password = generate_password(self.settings.tenant_password_length)

        logger.info("Provisioning tenant database: %s", names.database)

        async with admin_connection(self.pool, timeout=self.settings.db_connect_timeout) as conn:
            await self._create_role(conn, names, password)
            try:
                await self._create_database(conn, names)
            except BackendUnavailableError:
                # The server may have created the database before the
                # connection dropped; it blocks DROP ROLE until removed.
                await self._compensate(
                    conn, names, [drop_role_sql(names)], check_orphan_database=True
                )
                raise
            except Exception:
                await self._compensate(conn, names, [drop_role_sql(names)])
                raise

            try:
                await self._restrict_access(conn, names)
            except Exception:
                await self._compensate(
                    conn, names, [drop_database_sql(names), drop_role_sql(names)]
                )
                raise

        # The tenant is committed and its password exists only in the
        # response, so sync failures are logged, never raised. PgBouncer
        # picks the role up on the next successful sync.
        userlist_synced = False
        try:
            await self.userlist_sync.sync()
            userlist_synced = True
        except AppError as e:
            logger.warning(
                "Userlist sync after provisioning %s failed: %s", names.database, e.detail
            )
        except Exception:
            logger.exception("Userlist sync after provisioning %s failed", names.database)

        logger.info("Provisioned: %s", names.database)

        return ProvisionResult(
            connection_string=build_connection_string(self.settings, names, password),
            database=names.database,
            role=names.role,
            userlist_synced=userlist_synced,
        )

    async def _execute(self, conn: asyncpg.Connection, sql: str, step: str) -> None:
        """Run one statement, translating backend errors."""
        try:
            await conn.execute(sql, timeout=self.settings.db_command_timeout)
        except CONNECTION_ERRORS as e:
            logger.warning("%s failed, backend unavailable: %r", step, e)
            raise BackendUnavailableError("database unavailable") from e
        except asyncpg.PostgresError as e:
            logger.error("%s failed: %s", step, e)
            raise ProvisionFailedError(f"{step} failed", cause=e) from e

    async def _create_role(
        self, conn: asyncpg.Connection, names: TenantNames, password: str
    ) -> None:
        try:
            await conn.execute(
                create_role_sql(names, password), timeout=self.settings.db_command_timeout
            )
        except (asyncpg.DuplicateObjectError, asyncpg.UniqueViolationError) as e:
            # UniqueViolation: a concurrent CREATE ROLE won the race on pg_authid
            raise ConflictError(f"app '{names.tenant}' already exists") from e
        except CONNECTION_ERRORS as e:
            logger.warning("Role creation failed, backend unavailable: %r", e)
            raise BackendUnavailableError("database unavailable") from e
        except asyncpg.PostgresError as e:
            # Never log the statement itself, it carries the password
            logger.error("Role creation failed for %s: %s", names.role, e)
            raise ProvisionFailedError("role creation failed", cause=e) from e
        logger.info("  Created role: %s", names.role)

    async def _create_database(self, conn: asyncpg.Connection, names: TenantNames) -> None:
        try:
            await conn.execute(create_database_sql(names), timeout=self.settings.db_command_timeout)
        except (asyncpg.DuplicateDatabaseError, asyncpg.UniqueViolationError) as e:
            raise ConflictError(f"app '{names.tenant}' already exists") from e
        except CONNECTION_ERRORS as e:
            logger.warning("Database creation failed, backend unavailable: %r", e)
            raise BackendUnavailableError("database unavailable") from e
        except asyncpg.PostgresError as e:
            logger.error("Database creation failed for %s: %s", names.database, e)
            raise ProvisionFailedError("database creation failed", cause=e) from e
        logger.info("  Created database: %s", names.database)

    async def _restrict_access(self, conn: asyncpg.Connection, names: TenantNames) -> None:
        # Unlike CREATE DATABASE, REVOKE and GRANT are transactional
        try:
            async with conn.transaction():
                await self._execute(conn, revoke_public_sql(names), "permission revoke")
                await self._execute(conn, grant_owner_sql(names), "permission grant")
        except CONNECTION_ERRORS as e:
            # Raised by BEGIN/COMMIT themselves
            raise BackendUnavailableError("database unavailable") from e
        except asyncpg.PostgresError as e:
            raise ProvisionFailedError("permission grant failed", cause=e) from e

    async def _compensate(
        self,
        conn: asyncpg.Connection,
        names: TenantNames,
        statements: list[str],
        check_orphan_database: bool = False,
    ) -> None:
        """
        Undo partially applied steps.

        Runs on the same connection when it is still open, otherwise on a
        fresh one. With check_orphan_database, a database owned by the
        tenant role is dropped first. Failures are logged; the caller
        re-raises the original error.
        """
        logger.warning("Rolling back partial provisioning of %s", names.database)
        try:
            if conn.is_closed():
                async with admin_connection(
                    self.pool, timeout=self.settings.db_connect_timeout
                ) as fresh:
                    await self._run_undo(fresh, names, statements, check_orphan_database)
            else:
                await self._run_undo(conn, names, statements, check_orphan_database)
        except (*CONNECTION_ERRORS, asyncpg.PostgresError, BackendUnavailableError):
            logger.exception("Rollback of %s failed, manual cleanup needed", names.database)

    async def _run_undo(
        self,
        conn: asyncpg.Connection,
        names: TenantNames,
        statements: list[str],
        check_orphan_database: bool = False,
    ) -> None:
        if check_orphan_database:
            owned = await conn.fetchval(
                OWNED_DATABASE_QUERY,
                names.database,
                names.role,
                timeout=self.settings.db_command_timeout,
            )
            if owned:
                statements = [drop_database_sql(names), *statements]
        for sql in statements:
            await conn.execute(sql, timeout=self.settings.db_command_timeout)
            logger.info("  %s", sql)


def get_tenant_provisioner(request: Request) -> TenantProvisioner:
    """The application's TenantProvisioner, or 503 before startup wired it."""
    provisioner = getattr(request.app.state, "provisioner", None)
    if provisioner is None:
        raise BackendUnavailableError("database unavailable")
    return provisioner
