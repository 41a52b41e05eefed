"""
User management endpoints.
"""

import logging

from fastapi import APIRouter, Depends

from nas_agent.db.models import ROLE_ADMIN, ROLE_USER, User, UserPublic
from nas_agent.db.repository import UserRepository
from nas_agent.deps import get_requester, get_share_service, get_user_repository, require_admin
from nas_agent.errors import ConflictError, NotFoundError, ValidationError
from nas_agent.models.pool import StatusResponse
from nas_agent.models.share import CreateUserRequest, UserListResponse, UserResponse
from nas_agent.services.auth import hash_password
from nas_agent.services.shares import ShareService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


@router.post("", response_model=UserResponse)
def create_user(
    request: CreateUserRequest,
    admin: User = Depends(require_admin),
    users: UserRepository = Depends(get_user_repository)
):
    """
    Create a user. Email and NFS client IP must both be unique.
    """
    if request.role not in (ROLE_ADMIN, ROLE_USER):
        raise ValidationError(f"invalid role '{request.role}'")
    if users.get_by_email(request.email) is not None:
        raise ConflictError(f"email '{request.email}' already in use")
    if users.get_by_client_ip(request.nas_client_ip) is not None:
        raise ConflictError(f"NFS client IP '{request.nas_client_ip}' already in use")

    user = users.insert(User(
        name=request.name,
        email=request.email,
        nas_client_ip=request.nas_client_ip,
        role=request.role,
        password_hash=hash_password(request.password)
    ))
    logger.info(f"Created user {user.id} ({user.email}, {user.nas_client_ip})")
    return UserResponse(data=UserPublic.model_validate(user))


@router.get("", response_model=UserListResponse)
def list_users(
    requester: User = Depends(get_requester),
    users: UserRepository = Depends(get_user_repository)
):
    """
    List all users.
    """
    return UserListResponse(data=[UserPublic.model_validate(u) for u in users.list_all()])


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    requester: User = Depends(get_requester),
    users: UserRepository = Depends(get_user_repository)
):
    """
    Get a user by id.
    """
    user = users.get(user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return UserResponse(data=UserPublic.model_validate(user))


@router.delete("/{user_id}", response_model=StatusResponse)
def delete_user(
    user_id: int,
    admin: User = Depends(require_admin),
    shares: ShareService = Depends(get_share_service)
):
    """
    Delete a user and their share permissions.

    Every share the user had access to is republished without them.
    """
    if user_id == admin.id:
        raise ValidationError("you cannot delete yourself")
    shares.remove_user(user_id)
    return StatusResponse()
