"""
Schemas for the provisioning API.
"""

from pydantic import BaseModel


class ProvisionRequest(BaseModel):
    """Provision request. Fields default to empty so that a missing key is a
    401 and a missing name a 400, not a schema error."""

    app_name: str = ""
    admin_key: str = ""


class ProvisionResponse(BaseModel):
    """Provision response: the only place the tenant password is disclosed."""

    connection_string: str


class SyncUserlistRequest(BaseModel):
    """Userlist sync request."""

    admin_key: str = ""


class SyncUserlistResponse(BaseModel):
    """Userlist sync response."""

    status: str
    entries: int


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    error: str | None = None


class ErrorResponse(BaseModel):
    """Error body shared by all endpoints."""

    error: str
