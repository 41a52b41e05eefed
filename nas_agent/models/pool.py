"""
Pydantic models for ZFS pools, datasets and dataset contents.
"""

from pydantic import BaseModel
from typing import Optional, List


class PoolInfo(BaseModel):
    """ZFS pool information as printed by zpool list."""
    name: str
    size: str
    allocated: str
    free: str
    fragmentation: str
    health: str  # ONLINE, DEGRADED, FAULTED, OFFLINE, UNAVAIL


class DatasetInfo(BaseModel):
    """ZFS filesystem dataset information."""
    id: str  # URL-safe token of name, usable as a path segment
    name: str
    quota: str = "-"
    used: str = "-"
    available: str = "-"
    share_enabled: bool = False


class FileEntry(BaseModel):
    """A file or directory beneath a dataset mount path."""
    name: str
    path: str
    size: int  # 0 for directories


class CreateDatasetRequest(BaseModel):
    """Request to create a dataset under a pool."""
    dataset_name: str
    quota: Optional[str] = None
    pool: Optional[str] = None


class UpdateQuotaRequest(BaseModel):
    """Request to change a dataset quota."""
    quota: str


class PoolListResponse(BaseModel):
    """Response for pool listing."""
    status: str = "success"
    data: List[PoolInfo]


class PoolResponse(BaseModel):
    """Response for the main pool."""
    status: str = "success"
    data: Optional[PoolInfo] = None


class DatasetListResponse(BaseModel):
    """Response for dataset listing."""
    status: str = "success"
    data: List[DatasetInfo]


class DatasetResponse(BaseModel):
    """Response for a single dataset."""
    status: str = "success"
    data: DatasetInfo


class FileListResponse(BaseModel):
    """Response for dataset file-system listing."""
    status: str = "success"
    data: List[FileEntry]


class StatusResponse(BaseModel):
    """Bare success response."""
    status: str = "success"
