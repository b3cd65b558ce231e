"""
Application configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from functools import lru_cache
from typing import Optional
from urllib.parse import quote

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "DB Provisioner"
    debug: bool = False
    listen_port: int = 8080
    log_level: str = "INFO"

    # PostgreSQL admin principal
    # Needs CREATEROLE and CREATEDB, and read access to pg_authid for the userlist sync
    postgres_host: str = "postgres"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "postgres"
    postgres_sslmode: str = "disable"

    # Connection pool settings
    db_pool_min_size: int = 0  # Lazy: the service starts even if PostgreSQL is down
    db_pool_max_size: int = 10
    db_connect_timeout: float = 10.0
    db_command_timeout: float = 30.0

    # PgBouncer
    pgbouncer_host: str = "pgbouncer"
    pgbouncer_port: int = 6432
    pgbouncer_admin_db: str = "pgbouncer"
    pgbouncer_admin_user: Optional[str] = None
    pgbouncer_admin_password: Optional[str] = None
    pgbouncer_sslmode: str = "disable"

    # auth_file shared with PgBouncer
    userlist_path: str = "/etc/pgbouncer/userlist.txt"
    userlist_file_mode: int = 0o640
    userlist_hash_scheme: str = "SCRAM-SHA-256"

    # Connection strings handed out to tenants
    tenant_connection_scheme: str = "postgres"
    tenant_sslmode: str = "disable"
    tenant_password_length: int = 32

    @field_validator("userlist_file_mode", mode="before")
    @classmethod
    def parse_file_mode(cls, value):
        """Accept octal strings such as "0640" or "0o640"."""
        if isinstance(value, str):
            return int(value, 8)
        return value

    @property
    def admin_dsn(self) -> str:
        """Build the DSN of the administrative PostgreSQL connection."""
        user = quote(self.postgres_user, safe="")
        password = quote(self.postgres_password, safe="")
        return (
            f"postgresql://{user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            f"?sslmode={self.postgres_sslmode}"
        )

    @property
    def pgbouncer_admin_credentials(self) -> tuple[str, str]:
        """PgBouncer console credentials, falling back to the PostgreSQL admin."""
        user = self.pgbouncer_admin_user or self.postgres_user
        password = self.pgbouncer_admin_password or self.postgres_password
        return user, password


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
