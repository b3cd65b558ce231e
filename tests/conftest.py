"""
Shared test fixtures for the provisioner test suite.

FakeCluster stands in for PostgreSQL: it understands the handful of
statements the provisioner issues, keeps roles/databases/grants in memory
and raises the same asyncpg exceptions a real server would.
"""

import hashlib
import re

import asyncpg
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from provisioner.config import Settings
from provisioner.middleware.auth import AdminGuard
from provisioner.services.tenant_provisioner import TenantProvisioner
from provisioner.services.userlist_sync import UserlistSync

TEST_ADMIN_KEY = "sk_test-admin-key"

_IDENT = r'"((?:[^"]|"")*)"'


def _unquote(ident: str) -> str:
    return ident.replace('""', '"')


def fake_scram(role: str, password: str) -> str:
    digest = hashlib.sha256(f"{role}:{password}".encode()).hexdigest()
    return f"SCRAM-SHA-256$4096:{digest[:24]}${digest[:32]}:{digest[32:]}"


class FakeCluster:
    """In-memory PostgreSQL catalog."""

    def __init__(self):
        self.roles: dict[str, dict] = {}
        self.databases: dict[str, dict] = {}
        self.statements: list[str] = []
        self.failures: dict[str, BaseException] = {}
        self.failures_after: dict[str, BaseException] = {}
        self.unreachable = False
        self.add_role("postgres", password_hash=fake_scram("postgres", "superadmin"))

    def add_role(
        self,
        name: str,
        login: bool = True,
        password_hash: str | None = None,
        plain: str | None = None,
    ):
        self.roles[name] = {"login": login, "password": password_hash, "plain": plain}

    def fail(self, prefix: str, exc: BaseException):
        """Make the next statement starting with `prefix` raise `exc`."""
        self.failures[prefix] = exc

    def fail_after(self, prefix: str, exc: BaseException):
        """Apply the next statement starting with `prefix`, then raise `exc`,
        as when the connection drops before the server's reply arrives."""
        self.failures_after[prefix] = exc

    @staticmethod
    def _pop_failure(failures: dict, sql: str):
        for prefix, exc in list(failures.items()):
            if sql.startswith(prefix):
                del failures[prefix]
                raise exc

    def _check_failure(self, sql: str):
        self._pop_failure(self.failures, sql)

    def execute(self, sql: str):
        sql = " ".join(sql.split())
        self.statements.append(sql)
        self._check_failure(sql)
        result = self._apply(sql)
        self._pop_failure(self.failures_after, sql)
        return result

    def _apply(self, sql: str):

        m = re.fullmatch(rf"CREATE ROLE {_IDENT} WITH LOGIN PASSWORD '((?:[^']|'')*)' .*", sql)
        if m:
            role = _unquote(m.group(1))
            if role in self.roles:
                raise asyncpg.DuplicateObjectError(f'role "{role}" already exists')
            password = m.group(2).replace("''", "'")
            self.add_role(role, password_hash=fake_scram(role, password), plain=password)
            return "CREATE ROLE"

        m = re.fullmatch(rf"CREATE DATABASE {_IDENT} OWNER {_IDENT}", sql)
        if m:
            db, owner = _unquote(m.group(1)), _unquote(m.group(2))
            if db in self.databases:
                raise asyncpg.DuplicateDatabaseError(f'database "{db}" already exists')
            self.databases[db] = {"owner": owner, "public": True, "grants": set()}
            return "CREATE DATABASE"

        m = re.fullmatch(rf"REVOKE ALL ON DATABASE {_IDENT} FROM PUBLIC", sql)
        if m:
            self.databases[_unquote(m.group(1))]["public"] = False
            return "REVOKE"

        m = re.fullmatch(rf"GRANT ALL PRIVILEGES ON DATABASE {_IDENT} TO {_IDENT}", sql)
        if m:
            self.databases[_unquote(m.group(1))]["grants"].add(_unquote(m.group(2)))
            return "GRANT"

        m = re.fullmatch(rf"DROP DATABASE IF EXISTS {_IDENT}", sql)
        if m:
            self.databases.pop(_unquote(m.group(1)), None)
            return "DROP DATABASE"

        m = re.fullmatch(rf"DROP ROLE IF EXISTS {_IDENT}", sql)
        if m:
            role = _unquote(m.group(1))
            if any(db["owner"] == role for db in self.databases.values()):
                raise asyncpg.DependentObjectsStillReferencedError(
                    f'role "{role}" cannot be dropped because some objects depend on it'
                )
            self.roles.pop(role, None)
            return "DROP ROLE"

        raise AssertionError(f"FakeCluster does not understand: {sql}")

    def owns_database(self, database: str, role: str) -> bool:
        self.statements.append("SELECT EXISTS (... pg_database ...)")
        self._check_failure("SELECT")
        return self.databases.get(database, {}).get("owner") == role

    def fetch_authid(self, prefix: str) -> list[dict]:
        self.statements.append("SELECT rolname, rolpassword FROM pg_authid")
        self._check_failure("SELECT")
        return [
            {"rolname": name, "rolpassword": role["password"]}
            for name, role in sorted(self.roles.items())
            if role["login"] and role["password"] and role["password"].startswith(prefix)
        ]


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeConnection:
    """The subset of asyncpg.Connection the provisioner uses."""

    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster
        self.closed = False

    async def execute(self, sql: str, *args, timeout=None):
        return self.cluster.execute(sql)

    async def fetch(self, sql: str, *args, timeout=None):
        assert "pg_authid" in sql
        return self.cluster.fetch_authid(args[0])

    async def fetchval(self, sql: str, *args, timeout=None):
        if "pg_database" in sql:
            return self.cluster.owns_database(*args)
        self.cluster._check_failure(sql)
        return 1

    def transaction(self):
        return FakeTransaction()

    def is_closed(self) -> bool:
        return self.closed

    async def close(self):
        self.closed = True


class FakePool:
    """The subset of asyncpg.Pool the provisioner uses."""

    def __init__(self, cluster: FakeCluster):
        self.cluster = cluster
        self.acquired = 0
        self.closed = False

    async def acquire(self, timeout=None):
        if self.cluster.unreachable:
            raise ConnectionRefusedError("connection refused")
        self.acquired += 1
        return FakeConnection(self.cluster)

    async def release(self, conn):
        pass

    async def close(self):
        self.closed = True


class FakeProxyConsole:
    """Records connections to the PgBouncer admin console."""

    def __init__(self):
        self.commands: list[str] = []
        self.down = False

    async def connect(self, settings):
        if self.down:
            raise ConnectionRefusedError("pgbouncer is not running")
        console = self

        class _Conn:
            async def execute(self, sql, *args, timeout=None):
                console.commands.append(sql)

            async def close(self):
                pass

        return _Conn()


@pytest.fixture
def test_settings(tmp_path):
    """Settings configured for testing (no real DB connection needed)."""
    return Settings(
        postgres_host="localhost",
        postgres_port=5432,
        postgres_user="postgres",
        postgres_password="superadmin",
        pgbouncer_host="pgbouncer",
        pgbouncer_port=6432,
        userlist_path=str(tmp_path / "pgbouncer" / "userlist.txt"),
        db_connect_timeout=1.0,
        db_command_timeout=1.0,
        debug=True,
    )


@pytest.fixture
def admin_key():
    return TEST_ADMIN_KEY


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def pool(cluster):
    return FakePool(cluster)


@pytest.fixture
def proxy_console():
    return FakeProxyConsole()


@pytest.fixture
def userlist_sync(test_settings, pool, proxy_console):
    return UserlistSync(test_settings, pool, proxy_connect=proxy_console.connect)


@pytest.fixture
def provisioner(test_settings, pool, userlist_sync):
    return TenantProvisioner(test_settings, pool, userlist_sync)


@pytest.fixture
def app(test_settings, pool, userlist_sync, provisioner):
    """Application wired to the fake cluster, as the lifespan would wire it."""
    from provisioner.main import create_app

    app = create_app(test_settings, admin_guard=AdminGuard(TEST_ADMIN_KEY))
    app.state.pool = pool
    app.state.userlist_sync = userlist_sync
    app.state.provisioner = provisioner
    return app


@pytest_asyncio.fixture
async def app_client(app):
    """Create a test client against the wired application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

