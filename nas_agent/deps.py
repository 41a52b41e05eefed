"""
FastAPI dependencies shared by the routers.
"""

import logging
from typing import Optional

from fastapi import Depends, Header
from sqlmodel import Session

from nas_agent.db.models import User
from nas_agent.db.repository import PermissionRepository, ShareRepository, UserRepository
from nas_agent.db.session import get_session
from nas_agent.errors import AuthenticationError, PermissionDeniedError, ValidationError
from nas_agent.services.auth import verify_token
from nas_agent.services.inventory import DatasetInventory
from nas_agent.services.shares import ShareService
from nas_agent.services.zfs import ZFSService, zfs_service
from nas_agent.utils import decode_name

logger = logging.getLogger(__name__)


def get_zfs() -> ZFSService:
    return zfs_service


def get_user_repository(session: Session = Depends(get_session)) -> UserRepository:
    return UserRepository(session)


def get_inventory(
    session: Session = Depends(get_session),
    zfs: ZFSService = Depends(get_zfs)
) -> DatasetInventory:
    return DatasetInventory(zfs, ShareRepository(session))


def get_share_service(
    session: Session = Depends(get_session),
    zfs: ZFSService = Depends(get_zfs)
) -> ShareService:
    return ShareService(
        zfs,
        ShareRepository(session),
        PermissionRepository(session),
        UserRepository(session)
    )


def get_requester(
    authorization: Optional[str] = Header(None),
    users: UserRepository = Depends(get_user_repository)
) -> User:
    """Resolve the user behind the Authorization header (raw token or "Bearer <token>")."""
    if not authorization:
        logger.debug("Access token not found in request header")
        raise AuthenticationError("unauthorized request")

    token = authorization
    if token.lower().startswith("bearer "):
        token = token[7:].strip()

    try:
        payload = verify_token(token)
    except AuthenticationError as e:
        logger.warning(f"Failed to validate token: {e.message}")
        raise AuthenticationError("unauthorized request")

    user = users.get(int(payload["sub"]))
    if user is None:
        raise AuthenticationError("unauthorized request")
    return user


def require_admin(requester: User = Depends(get_requester)) -> User:
    if not requester.is_admin:
        raise PermissionDeniedError("permission denied")
    return requester


def decode_dataset(dataset: str) -> str:
    """Decode a dataset path segment; an undecodable token is invalid input."""
    name = decode_name(dataset)
    if not name:
        raise ValidationError("invalid dataset")
    return name
