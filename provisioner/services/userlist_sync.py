"""
PgBouncer userlist synchronisation.

Mirrors the SCRAM secrets of every login role from pg_authid into the
auth_file PgBouncer reads, then asks PgBouncer to RELOAD it.

File format, one role per line:
    "app_shop1_user" "SCRAM-SHA-256$4096:...$...:..."

The file is derived state. It is rewritten wholesale on every sync and
never diffed.
"""

import asyncio
import contextlib
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import asyncpg
from fastapi import Request

from provisioner.config import Settings
from provisioner.database import CONNECTION_ERRORS, admin_connection
from provisioner.exceptions import BackendUnavailableError, SyncFailedError

logger = logging.getLogger(__name__)

USERLIST_QUERY = """
    SELECT rolname, rolpassword
    FROM pg_authid
    WHERE rolcanlogin
      AND rolpassword IS NOT NULL
      AND starts_with(rolpassword, $1)
    ORDER BY rolname
"""


@dataclass(frozen=True)
class UserlistEntry:
    """A login role and its password secret."""

    login: str
    secret: str

    def render(self) -> str:
        return f"{_quote(self.login)} {_quote(self.secret)}"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a userlist sync."""

    status: str  # "synced" or "skipped"
    entries_written: int
    reloaded: bool = False


def _quote(value: str) -> str:
    # PgBouncer auth_file quoting: embedded double quotes are doubled
    return '"' + value.replace('"', '""') + '"'


def render_userlist(entries: list[UserlistEntry]) -> str:
    """Render auth_file content, newline-terminated."""
    return "".join(entry.render() + "\n" for entry in entries)


async def connect_pgbouncer_admin(settings: Settings) -> Any:
    """Open a connection to the PgBouncer admin console."""
    user, password = settings.pgbouncer_admin_credentials
    return await asyncpg.connect(
        host=settings.pgbouncer_host,
        port=settings.pgbouncer_port,
        user=user,
        password=password,
        database=settings.pgbouncer_admin_db,
        ssl=settings.pgbouncer_sslmode,
        timeout=settings.db_connect_timeout,
        command_timeout=settings.db_command_timeout,
        # The admin console only speaks the simple query protocol
        statement_cache_size=0,
    )


class UserlistSync:
    """
    Keeps the PgBouncer auth_file in sync with pg_authid.

    One instance is shared by the whole application so that the lock
    serialises concurrent syncs.
    """

    def __init__(
        self,
        settings: Settings,
        pool: asyncpg.Pool,
        proxy_connect: Callable[[Settings], Awaitable[Any]] | None = None,
    ):
        self.settings = settings
        self.pool = pool
        self._proxy_connect = proxy_connect or connect_pgbouncer_admin
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return Path(self.settings.userlist_path)

    async def sync(self, reload: bool = True) -> SyncResult:
        """
        Rewrite the userlist from pg_authid and reload PgBouncer.

        An empty query result leaves the existing file untouched.
        Raises SyncFailedError or BackendUnavailableError; a failed RELOAD
        is only logged.
        """
        async with self._lock:
            entries = await self.fetch_entries()

            if not entries:
                logger.warning(
                    "No %s login roles found in pg_authid, keeping %s as is",
                    self.settings.userlist_hash_scheme,
                    self.path,
                )
                return SyncResult(status="skipped", entries_written=0)

            self.write_userlist(render_userlist(entries))
            logger.info("%s synced with %d users", self.path, len(entries))

            reloaded = await self.reload_proxy() if reload else False
            return SyncResult(status="synced", entries_written=len(entries), reloaded=reloaded)

    async def fetch_entries(self) -> list[UserlistEntry]:
        """Read login roles with a secret in the configured scheme."""
        prefix = self.settings.userlist_hash_scheme + "$"
        async with admin_connection(self.pool, timeout=self.settings.db_connect_timeout) as conn:
            try:
                rows = await conn.fetch(
                    USERLIST_QUERY, prefix, timeout=self.settings.db_command_timeout
                )
            except CONNECTION_ERRORS as e:
                logger.warning("pg_authid query failed: %r", e)
                raise BackendUnavailableError("database unavailable") from e
            except asyncpg.PostgresError as e:
                logger.error("pg_authid query failed: %s", e)
                raise SyncFailedError("userlist sync failed", cause=e) from e

        return [UserlistEntry(row["rolname"], row["rolpassword"]) for row in rows]

    def write_userlist(self, content: str) -> None:
        """
        Atomically replace the userlist file.

        Writes to a temp file in the same directory and renames it over the
        target, so PgBouncer never sees a partial file.
        """
        path = self.path
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_path, self.settings.userlist_file_mode)
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            logger.error("Could not write %s: %s", path, e)
            raise SyncFailedError("userlist sync failed", cause=e) from e
        finally:
            if tmp_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_path)

    async def reload_proxy(self) -> bool:
        """
        Send RELOAD to the PgBouncer admin console.

        PgBouncer may not be running yet (first boot); it reads the file on
        its own startup, so any failure is logged and reported as False.
        The file is already in place, so no error from the console
        (asyncpg.ProtocolError included) propagates.
        """
        conn = None
        try:
            conn = await self._proxy_connect(self.settings)
            await conn.execute("RELOAD")
        except Exception as e:
            logger.warning("PgBouncer RELOAD failed: %r (may not be running yet)", e)
            return False
        finally:
            if conn is not None:
                with contextlib.suppress(Exception):
                    await conn.close()

        logger.info("PgBouncer reloaded")
        return True


def get_userlist_sync(request: Request) -> UserlistSync:
    """The application's shared UserlistSync, or 503 before startup wired it."""
    userlist_sync = getattr(request.app.state, "userlist_sync", None)
    if userlist_sync is None:
        raise BackendUnavailableError("database unavailable")
    return userlist_sync
