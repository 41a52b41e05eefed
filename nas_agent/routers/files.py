"""
Dataset file upload and delete endpoints.

Admins may always write. Other users need a read-write permission on the
dataset's NFS share.
"""

import logging
import os
import shutil

from fastapi import APIRouter, Depends, File, UploadFile

from nas_agent.db.models import User
from nas_agent.deps import decode_dataset, get_requester, get_share_service
from nas_agent.errors import NotFoundError, ValidationError
from nas_agent.models.pool import StatusResponse
from nas_agent.services.browser import resolve_browse_path, resolve_entry_path
from nas_agent.services.shares import ShareService
from nas_agent.utils import decode_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/nas", tags=["files"])


def _save_upload(shares: ShareService, requester: User, name: str, relative_dir: str, file: UploadFile):
    dataset = shares.inventory.require_dataset(name)
    shares.check_write_access(requester, dataset.name)

    filename = os.path.basename(file.filename or "")
    if not filename:
        raise ValidationError("file not found in the request")

    upload_dir = resolve_browse_path(shares.zfs.mount_path(dataset.name), relative_dir)
    os.makedirs(upload_dir, exist_ok=True)
    target = os.path.join(upload_dir, filename)

    if os.path.islink(target):
        raise ValidationError(f"'{filename}' is a symbolic link")
    if os.path.isdir(target):
        raise ValidationError(f"'{filename}' is a directory")

    # O_NOFOLLOW: a link created after the check above is refused, not followed
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_NOFOLLOW, 0o644)
    with os.fdopen(fd, "wb") as out:
        shutil.copyfileobj(file.file, out)
    logger.info(f"User {requester.id} uploaded {target}")
    return StatusResponse()


@router.post("/pools/{pool}/datasets/{dataset}/files", response_model=StatusResponse)
def upload_file(
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    file: UploadFile = File(...),
    shares: ShareService = Depends(get_share_service)
):
    """
    Upload a file to the root of a dataset.
    """
    return _save_upload(shares, requester, name, "", file)


@router.post("/pools/{pool}/datasets/{dataset}/files/{path}", response_model=StatusResponse)
def upload_file_to_path(
    path: str,
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    file: UploadFile = File(...),
    shares: ShareService = Depends(get_share_service)
):
    """
    Upload a file to an encoded directory path in a dataset; missing directories are created.
    """
    relative_dir = decode_name(path)
    if not relative_dir:
        raise ValidationError("invalid path")
    return _save_upload(shares, requester, name, relative_dir, file)


@router.delete("/pools/{pool}/datasets/{dataset}/files/{path}", response_model=StatusResponse)
def delete_file(
    path: str,
    requester: User = Depends(get_requester),
    name: str = Depends(decode_dataset),
    shares: ShareService = Depends(get_share_service)
):
    """
    Delete a file at an encoded path in a dataset.
    """
    relative_path = decode_name(path)
    if not relative_path:
        raise ValidationError("invalid path")

    dataset = shares.inventory.require_dataset(name)
    shares.check_write_access(requester, dataset.name)

    target = resolve_entry_path(shares.zfs.mount_path(dataset.name), relative_path)
    if not os.path.lexists(target):
        raise NotFoundError("file not found")
    if os.path.isdir(target) and not os.path.islink(target):
        raise ValidationError(f"'{relative_path}' is a directory")

    os.remove(target)
    logger.info(f"User {requester.id} deleted {target}")
    return StatusResponse()
