"""
Tenant provisioning route.
"""

import logging

from fastapi import APIRouter, Depends, Request

from provisioner.middleware.auth import AdminGuard, get_admin_guard, require_admin_key
from provisioner.schemas import ErrorResponse, ProvisionRequest, ProvisionResponse
from provisioner.services.tenant_provisioner import get_tenant_provisioner

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/provision",
    status_code=201,
    response_model=ProvisionResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def provision(
    data: ProvisionRequest,
    request: Request,
    guard: AdminGuard = Depends(get_admin_guard),
):
    """
    Provision a tenant role and database.

    Returns the connection string (through PgBouncer) with the generated
    password. It is not stored anywhere and cannot be retrieved again.
    """
    require_admin_key(guard, data.admin_key)
    # Looked up after the key check so unauthenticated callers get 401
    # even before startup has wired the services.
    provisioner = get_tenant_provisioner(request)

    result = await provisioner.provision(data.app_name)

    return ProvisionResponse(connection_string=result.connection_string)
