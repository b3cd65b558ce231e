"""
API routers package.
"""

from provisioner.routers import (
    health,
    provision,
    userlist,
)

__all__ = [
    "health",
    "provision",
    "userlist",
]
