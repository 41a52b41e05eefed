"""
Share permission reconciliation.

ZFS sharenfs knows nothing about users, only client addresses. After every
permission change the complete policy of the affected share is rebuilt
from the stored grants and written back in one `zfs set sharenfs=...`:

    RW = {admin client IP} + IPs of users with an "rw" grant
    RO = IPs of users with an "r" grant

Reconciliations of the same dataset are serialized so two overlapping
rewrites can never publish a policy built from a stale read.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from nas_agent.config import settings
from nas_agent.db.models import NfsShare, PermissionType
from nas_agent.db.repository import PermissionRepository, ShareRepository
from nas_agent.errors import GatewayError, OwnershipError
from nas_agent.models.share import AccessList, ReconcileResult
from nas_agent.services.zfs import ZFSService

logger = logging.getLogger(__name__)


class DatasetLocks:
    """Per-dataset locks, created on demand."""

    def __init__(self):
        self.locks: Dict[str, threading.Lock] = {}
        self.lock_lock = threading.Lock()  # Lock for creating per-dataset locks

    def get(self, dataset: str) -> threading.Lock:
        with self.lock_lock:
            if dataset not in self.locks:
                self.locks[dataset] = threading.Lock()
            return self.locks[dataset]


# Shared by every request; reconcilers themselves are per-request
dataset_locks = DatasetLocks()


class PermissionReconciler:
    """Keeps a share's published sharenfs policy equal to its stored grants."""

    def __init__(
        self,
        zfs: ZFSService,
        permissions: PermissionRepository,
        shares: ShareRepository,
        admin_client_ip: Optional[str] = None,
        locks: Optional[DatasetLocks] = None
    ):
        self.zfs = zfs
        self.permissions = permissions
        self.shares = shares
        self.admin_client_ip = admin_client_ip or settings.admin_client_ip
        self.locks = locks or dataset_locks

    def compute_access_lists(self, share: NfsShare) -> Tuple[List[str], List[str]]:
        """
        Build (rw, ro) address lists from the share's current grants.

        The admin address always leads rw and is never listed as ro.
        Lists are de-duplicated and keep grant order, so an unchanged set
        of grants always yields the same policy.
        """
        rw = [self.admin_client_ip]
        ro: List[str] = []

        for permission, user in self.permissions.list_with_users(share.id):
            address = user.nas_client_ip
            if permission.permission == PermissionType.READ_WRITE:
                if address not in rw:
                    rw.append(address)
            elif permission.permission == PermissionType.READ_ONLY:
                if address not in ro and address != self.admin_client_ip:
                    ro.append(address)
            else:
                logger.warning(
                    f"Ignoring grant {permission.id} on {share.dataset} with unknown "
                    f"permission {permission.permission!r}"
                )

        return rw, ro

    def preview(self, share: NfsShare) -> AccessList:
        """Address lists reconcile() would publish right now."""
        rw, ro = self.compute_access_lists(share)
        return AccessList(rw=rw, ro=ro)

    def reconcile(self, share: NfsShare) -> ReconcileResult:
        """
        Republish the share's full access list, then normalize ownership.

        A failure reading grants aborts before anything is published.
        GatewayError from publishing flags the share with sync_error and is
        raised; a successful publish clears the flag. The flag is written
        under the dataset lock so it always describes the latest publish.
        OwnershipError is logged and reported in the result; the share
        stays published.
        """
        with self.locks.get(share.dataset):
            rw, ro = self.compute_access_lists(share)
            try:
                policy = self.zfs.publish_share(share.dataset, rw, ro)
            except GatewayError as e:
                self.shares.mark_sync_error(share, e.message)
                raise
            self.shares.clear_sync_error(share)

            result = ReconcileResult(dataset=share.dataset, policy=policy, rw=rw, ro=ro)
            try:
                self.zfs.normalize_ownership(self.zfs.mount_path(share.dataset))
            except OwnershipError as e:
                logger.error(f"Share {share.dataset} published but {e.message}")
                result.ownership_normalized = False
                result.ownership_error = e.message

        logger.info(f"Reconciled {share.dataset}: {len(rw)} rw, {len(ro)} ro address(es)")
        return result
