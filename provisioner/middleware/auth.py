"""
Admin key authentication.

Every mutating endpoint carries the admin key in its JSON body. The key is
generated once per application instance, printed at startup and never
rotated.
"""

import secrets

from fastapi import Request

from provisioner.exceptions import UnauthorizedError
from provisioner.services.credentials import generate_admin_token


class AdminGuard:
    """Holds the admin key and checks request-supplied keys against it."""

    def __init__(self, token: str):
        if not token:
            raise ValueError("admin token must not be empty")
        self._token = token

    @classmethod
    def generate(cls, nbytes: int = 32) -> "AdminGuard":
        """Create a guard with a fresh random key."""
        return cls(generate_admin_token(nbytes))

    @property
    def token(self) -> str:
        return self._token

    def authorize(self, supplied: str | None) -> bool:
        """Full equality check of the supplied key, in constant time."""
        if not isinstance(supplied, str) or not supplied:
            return False
        return secrets.compare_digest(supplied.encode("utf-8"), self._token.encode("utf-8"))


def get_admin_guard(request: Request) -> AdminGuard:
    """Dependency returning the guard attached to the application."""
    return request.app.state.admin_guard


def require_admin_key(guard: AdminGuard, supplied: str | None) -> None:
    """Raise UnauthorizedError unless the supplied key matches."""
    if not guard.authorize(supplied):
        raise UnauthorizedError("invalid admin key")
