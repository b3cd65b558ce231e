"""
Services package for business logic.
"""

from provisioner.services.tenant_provisioner import ProvisionResult, TenantProvisioner
from provisioner.services.userlist_sync import SyncResult, UserlistSync

__all__ = [
    "ProvisionResult",
    "SyncResult",
    "TenantProvisioner",
    "UserlistSync",
]
