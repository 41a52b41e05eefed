"""
Dataset file browsing.
"""

import os
import logging
from typing import List

from nas_agent.errors import ValidationError
from nas_agent.models.pool import FileEntry

logger = logging.getLogger(__name__)


def _raise(error: OSError):
    raise error


def list_sorted(path: str) -> List[FileEntry]:
    """
    List everything beneath path, directories first, then files.

    Both groups are sorted by full path. The root itself is not listed,
    directories report size 0 and symlinks are listed but not followed.
    Any traversal error (permission denied, entry vanishing mid-walk)
    aborts the whole listing.
    """
    if not os.path.isdir(path):
        raise FileNotFoundError(f"Not a directory: {path}")

    folders: List[FileEntry] = []
    files: List[FileEntry] = []

    for root, dirnames, filenames in os.walk(path, onerror=_raise):
        for name in dirnames:
            full_path = os.path.join(root, name)
            if os.path.islink(full_path):
                files.append(FileEntry(name=name, path=full_path, size=os.lstat(full_path).st_size))
            else:
                folders.append(FileEntry(name=name, path=full_path, size=0))
        for name in filenames:
            full_path = os.path.join(root, name)
            files.append(FileEntry(name=name, path=full_path, size=os.lstat(full_path).st_size))

    folders.sort(key=lambda entry: entry.path)
    files.sort(key=lambda entry: entry.path)
    return folders + files


def _is_within(path: str, base: str) -> bool:
    return path == base or path.startswith(base.rstrip("/") + "/")


def resolve_browse_path(mount_path: str, relative_path: str = "") -> str:
    """
    Join a dataset mount path and a path relative to it.

    Symlinks are resolved, so the returned path is the real location.
    Raises ValidationError when it lies outside the mount path, whether
    through ".." or through a symlink pointing elsewhere.
    """
    base = os.path.realpath(mount_path)
    target = os.path.realpath(os.path.join(base, relative_path.lstrip("/")))
    if not _is_within(target, base):
        logger.warning(f"Rejected path {relative_path!r} resolving to {target}, outside {base}")
        raise ValidationError(f"Path '{relative_path}' is outside the dataset")
    return target


def resolve_entry_path(mount_path: str, relative_path: str) -> str:
    """
    Resolve the parent directory of an entry but keep its last component.

    Used for operations on the entry itself: deleting a symlink removes
    the link, never what it points to.
    """
    parent, name = os.path.split(relative_path.strip("/"))
    if name in ("", ".", ".."):
        raise ValidationError(f"invalid path '{relative_path}'")
    return os.path.join(resolve_browse_path(mount_path, parent), name)
