"""
Pool, dataset and dataset file-system endpoints.

Dataset names and paths travel as URL-safe base64 path segments
(see nas_agent.utils) so "naspool/data" does not read as two segments.
"""

import logging

from fastapi import APIRouter, Depends

from nas_agent.config import settings
from nas_agent.db.models import User
from nas_agent.deps import (
    decode_dataset,
    get_inventory,
    get_requester,
    get_share_service,
    get_zfs,
    require_admin,
)
from nas_agent.errors import ConflictError, NASAgentError, NotFoundError, ValidationError
from nas_agent.models.pool import (
    CreateDatasetRequest,
    DatasetListResponse,
    DatasetResponse,
    FileListResponse,
    PoolListResponse,
    PoolResponse,
    StatusResponse,
    UpdateQuotaRequest,
)
from nas_agent.services.browser import list_sorted, resolve_browse_path
from nas_agent.services.inventory import DatasetInventory
from nas_agent.services.shares import ShareService
from nas_agent.services.zfs import ZFSService
from nas_agent.utils import decode_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/nas", tags=["inventory"])


def _validate_child_name(name: str) -> str:
    name = name.strip().strip("/")
    if not name:
        raise ValidationError("dataset name is required")
    if any(part in ("", ".", "..") for part in name.split("/")) or "@" in name:
        raise ValidationError(f"invalid dataset name '{name}'")
    return name


@router.get("/pools", response_model=PoolListResponse)
def list_pools(
    requester: User = Depends(get_requester),
    zfs: ZFSService = Depends(get_zfs)
):
    """
    List all ZFS pools.

    Returns size, allocation, fragmentation and health as printed by zpool.
    """
    return PoolListResponse(data=zfs.list_pools())


@router.get("/pools/main", response_model=PoolResponse)
def get_main_pool(
    requester: User = Depends(get_requester),
    zfs: ZFSService = Depends(get_zfs)
):
    """
    Get the managed pool, or null when it does not exist.
    """
    for pool in zfs.list_pools():
        if pool.name == settings.default_pool:
            return PoolResponse(data=pool)
    return PoolResponse(data=None)


@router.get("/pools/{pool}/datasets", response_model=DatasetListResponse)
def list_datasets(
    pool: str,
    requester: User = Depends(get_requester),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    List the datasets of a pool with their share state.
    """
    return DatasetListResponse(data=inventory.list_datasets(pool))


@router.post("/pools/{pool}/datasets", response_model=DatasetResponse)
def create_dataset(
    pool: str,
    request: CreateDatasetRequest,
    admin: User = Depends(require_admin),
    zfs: ZFSService = Depends(get_zfs),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    Create a dataset under a pool, optionally with a quota.
    """
    pool = request.pool or pool or settings.default_pool
    name = f"{pool}/{_validate_child_name(request.dataset_name)}"

    if inventory.find_dataset(name) is not None:
        raise ConflictError(f"dataset '{name}' already exists")

    zfs.create_dataset(name, request.quota)
    return DatasetResponse(data=inventory.require_dataset(name))


@router.get("/pools/{pool}/datasets/{dataset}", response_model=DatasetResponse)
def get_dataset(
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    Get a dataset by its encoded name.
    """
    return DatasetResponse(data=inventory.require_dataset(name))


@router.patch("/pools/{pool}/datasets/{dataset}", response_model=DatasetResponse)
def update_dataset_quota(
    request: UpdateQuotaRequest,
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    zfs: ZFSService = Depends(get_zfs),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    Change the quota of a dataset.
    """
    inventory.require_dataset(name)
    zfs.update_quota(name, request.quota)
    return DatasetResponse(data=inventory.require_dataset(name))


@router.delete("/pools/{pool}/datasets/{dataset}", response_model=StatusResponse)
def delete_dataset(
    admin: User = Depends(require_admin),
    name: str = Depends(decode_dataset),
    zfs: ZFSService = Depends(get_zfs),
    shares: ShareService = Depends(get_share_service)
):
    """
    Destroy a dataset and drop its share and permission records.

    zfs refuses busy datasets or datasets with children; that error is
    returned as-is.
    """
    shares.inventory.require_dataset(name)
    zfs.delete_dataset(name)
    shares.delete_dataset_shares(name)
    return StatusResponse()


def _browse(zfs: ZFSService, inventory: DatasetInventory, name: str, relative_path: str):
    dataset = inventory.require_dataset(name)
    target = resolve_browse_path(zfs.mount_path(dataset.name), relative_path)
    try:
        entries = list_sorted(target)
    except FileNotFoundError:
        raise NotFoundError(f"path '{relative_path or '/'}' not found in '{name}'")
    except OSError as e:
        logger.error(f"Failed to list {target}: {e}")
        raise NASAgentError(f"failed to list '{relative_path or '/'}': {e.strerror or e}")
    return FileListResponse(data=entries)


@router.get("/pools/{pool}/datasets/{dataset}/file-system", response_model=FileListResponse)
def get_dataset_file_system(
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    zfs: ZFSService = Depends(get_zfs),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    List everything under the dataset mount path, directories first.
    """
    return _browse(zfs, inventory, name, "")


@router.get("/pools/{pool}/datasets/{dataset}/file-system/{path}", response_model=FileListResponse)
def get_dataset_file_system_path(
    path: str,
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    zfs: ZFSService = Depends(get_zfs),
    inventory: DatasetInventory = Depends(get_inventory)
):
    """
    List everything under an encoded path relative to the dataset mount path.
    """
    relative_path = decode_name(path)
    if not relative_path:
        raise ValidationError("invalid path")
    return _browse(zfs, inventory, name, relative_path)
