"""
NFS share and share permission endpoints.

Creating a share and every permission change republish the dataset's
complete sharenfs policy. A 502 response means the change was saved but
the policy could not be republished; POST .../share/reconcile retries.
"""

from fastapi import APIRouter, Depends

from nas_agent.db.models import User, UserPublic
from nas_agent.deps import decode_dataset, get_share_service, require_admin
from nas_agent.models.pool import StatusResponse
from nas_agent.models.share import (
    AddPermissionRequest,
    PermissionChangeResponse,
    PermissionInfo,
    PermissionListData,
    PermissionListResponse,
    ShareInfo,
    ShareResponse,
)
from nas_agent.services.shares import ShareService

router = APIRouter(prefix="/api/v1/nas", tags=["nfs"])


def _permission_info(grant, user) -> PermissionInfo:
    return PermissionInfo(
        id=grant.id,
        permission=grant.permission,
        user=UserPublic.model_validate(user)
    )


@router.post("/pools/{pool}/datasets/{dataset}/share", response_model=ShareResponse)
def create_share(
    pool: str,
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    Share a dataset over NFS.

    The new share is published with only the admin client address.
    """
    share, result = shares.create_share(pool, name)
    return ShareResponse(data=ShareInfo.model_validate(share, from_attributes=True), result=result)


@router.delete("/pools/{pool}/datasets/{dataset}/share", response_model=StatusResponse)
def delete_share(
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    Stop sharing a dataset and delete all its permissions.
    """
    shares.delete_share(name)
    return StatusResponse()


@router.post("/pools/{pool}/datasets/{dataset}/share/reconcile", response_model=ShareResponse)
def reconcile_share(
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    Republish a share from its stored permissions.

    Clears the share's sync_error when publishing succeeds.
    """
    share, result = shares.reconcile_share(name)
    return ShareResponse(data=ShareInfo.model_validate(share, from_attributes=True), result=result)


@router.get("/pools/{pool}/datasets/{dataset}/share/permissions", response_model=PermissionListResponse)
def list_share_permissions(
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    List the users granted access to a share and the address lists it publishes.
    """
    shares.inventory.require_dataset(name)
    share, grants = shares.list_permissions(name)
    return PermissionListResponse(data=PermissionListData(
        share=ShareInfo.model_validate(share, from_attributes=True),
        permissions=[_permission_info(grant, user) for grant, user in grants],
        published=shares.reconciler.preview(share)
    ))


@router.post("/pools/{pool}/datasets/{dataset}/share/permissions", response_model=PermissionChangeResponse)
def add_share_permission(
    request: AddPermissionRequest,
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    Grant a user read-only ("r") or read-write ("rw") access to a share.

    A user holds at most one permission per share; adding a second one
    returns 409. Remove the existing permission first to change it.
    """
    grant, user, result = shares.add_permission(name, request.user_id, request.permission)
    return PermissionChangeResponse(data=_permission_info(grant, user), result=result)


@router.delete("/share/permissions/{permission_id}", response_model=PermissionChangeResponse)
def remove_share_permission(
    permission_id: int,
    admin: User = Depends(require_admin),
    shares: ShareService = Depends(get_share_service)
):
    """
    Revoke a permission and republish its share.
    """
    result = shares.remove_permission(permission_id)
    return PermissionChangeResponse(result=result)
