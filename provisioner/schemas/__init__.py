"""
Pydantic schemas for request/response validation.
"""

from provisioner.schemas.provision import (
    ErrorResponse,
    HealthResponse,
    ProvisionRequest,
    ProvisionResponse,
    SyncUserlistRequest,
    SyncUserlistResponse,
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "ProvisionRequest",
    "ProvisionResponse",
    "SyncUserlistRequest",
    "SyncUserlistResponse",
]
