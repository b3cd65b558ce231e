"""
Tenant name validation and PostgreSQL identifier helpers.

Role and database names end up interpolated into DDL (CREATE ROLE,
CREATE DATABASE, GRANT, ...), which PostgreSQL cannot parameterize.
TENANT_NAME_PATTERN is therefore the injection boundary: DDL builders only
accept a TenantNames instance, and the only way to get one is through
TenantNames.from_tenant().
"""

import re
from dataclasses import dataclass
from typing import NamedTuple

from provisioner.exceptions import InvalidIdentifierError

TENANT_NAME_PATTERN = re.compile(r"^[a-z0-9_]{3,32}$")
INVALID_NAME_REASON = "app_name must be 3-32 chars, lowercase alphanumeric + underscore"


class NameCheck(NamedTuple):
    """Outcome of validating a tenant name."""

    ok: bool
    reason: str | None = None


def validate_tenant_name(name: object) -> NameCheck:
    """Check a tenant name against TENANT_NAME_PATTERN."""
    # fullmatch: "$" alone would accept a trailing newline
    if not isinstance(name, str) or not TENANT_NAME_PATTERN.fullmatch(name):
        return NameCheck(False, INVALID_NAME_REASON)
    return NameCheck(True)


def derive_names(name: str) -> tuple[str, str]:
    """Return (database_name, role_name) for a tenant."""
    return f"app_{name}", f"app_{name}_user"


@dataclass(frozen=True)
class TenantNames:
    """Validated tenant name with its derived database and role names."""

    tenant: str
    database: str
    role: str

    @classmethod
    def from_tenant(cls, name: object) -> "TenantNames":
        check = validate_tenant_name(name)
        if not check.ok:
            raise InvalidIdentifierError(check.reason)
        database, role = derive_names(name)
        return cls(tenant=name, database=database, role=role)


def quote_identifier(ident: str) -> str:
    """Quote a PostgreSQL identifier, doubling embedded double quotes."""
    return '"' + ident.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a PostgreSQL string literal (standard_conforming_strings = on)."""
    if "\x00" in value:
        raise ValueError("NUL byte in SQL literal")
    return "'" + value.replace("'", "''") + "'"
