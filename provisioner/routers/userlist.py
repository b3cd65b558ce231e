"""
PgBouncer userlist sync route.
"""

from fastapi import APIRouter, Depends, Request

from provisioner.middleware.auth import AdminGuard, get_admin_guard, require_admin_key
from provisioner.schemas import ErrorResponse, SyncUserlistRequest, SyncUserlistResponse
from provisioner.services.userlist_sync import get_userlist_sync

router = APIRouter()


@router.post(
    "/sync-userlist",
    response_model=SyncUserlistResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def sync_userlist(
    data: SyncUserlistRequest,
    request: Request,
    guard: AdminGuard = Depends(get_admin_guard),
):
    """Rewrite the PgBouncer userlist from pg_authid and reload PgBouncer."""
    require_admin_key(guard, data.admin_key)
    userlist_sync = get_userlist_sync(request)

    result = await userlist_sync.sync()

    return SyncUserlistResponse(status=result.status, entries=result.entries_written)
