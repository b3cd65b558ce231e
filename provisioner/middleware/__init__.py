"""
Request guards.
"""

from provisioner.middleware.auth import AdminGuard, get_admin_guard, require_admin_key

__all__ = [
    "AdminGuard",
    "get_admin_guard",
    "require_admin_key",
]
