"""
Pydantic models for NFS shares, permissions and users.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from nas_agent.db.models import PermissionType, UserPublic


class ReconcileResult(BaseModel):
    """Outcome of republishing one share."""
    dataset: str
    policy: str
    rw: List[str]
    ro: List[str]
    ownership_normalized: bool = True
    ownership_error: Optional[str] = None


class AccessList(BaseModel):
    """Address lists a share publishes (or would publish)."""
    rw: List[str]
    ro: List[str]


class ShareInfo(BaseModel):
    """NFS share record as returned by the API."""
    id: int
    pool: str
    dataset: str
    sync_error: Optional[str] = None
    sync_failed_at: Optional[datetime] = None


class PermissionInfo(BaseModel):
    """A user's grant on a share."""
    id: int
    permission: PermissionType
    user: UserPublic


class AddPermissionRequest(BaseModel):
    """Request to grant a user access to a share."""
    user_id: int
    permission: PermissionType


class CreateUserRequest(BaseModel):
    """Request to create a user."""
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    nas_client_ip: str
    role: str = "ROLE_USER"


class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str


class ShareResponse(BaseModel):
    """Response for share create / reconcile."""
    status: str = "success"
    data: ShareInfo
    result: Optional[ReconcileResult] = None


class PermissionChangeResponse(BaseModel):
    """Response for permission add / remove."""
    status: str = "success"
    data: Optional[PermissionInfo] = None
    # None when the dataset is gone and nothing was republished
    result: Optional[ReconcileResult] = None


class PermissionListData(BaseModel):
    share: ShareInfo
    permissions: List[PermissionInfo]
    published: AccessList


class PermissionListResponse(BaseModel):
    status: str = "success"
    data: PermissionListData


class UserResponse(BaseModel):
    status: str = "success"
    data: UserPublic


class UserListResponse(BaseModel):
    status: str = "success"
    data: List[UserPublic]
