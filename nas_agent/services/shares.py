"""
NFS share and permission management.

Every permission insert/delete and every share creation is followed by a
full reconciliation of the owning share. There is no transaction spanning
the database write and `zfs set sharenfs`: when the write commits but the
publish fails, the share row is flagged with sync_error and
ShareOutOfSyncError is raised. The flag is cleared by the next successful
reconciliation (for example POST .../share/reconcile).
"""

import logging
from typing import List, Optional, Tuple

from nas_agent.db.models import NfsShare, NfsSharePermission, PermissionType, User
from nas_agent.db.repository import PermissionRepository, ShareRepository, UserRepository
from nas_agent.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    ShareOutOfSyncError,
)
from nas_agent.models.share import ReconcileResult
from nas_agent.services.inventory import DatasetInventory
from nas_agent.services.reconciler import PermissionReconciler
from nas_agent.services.zfs import ZFSService

logger = logging.getLogger(__name__)


class ShareService:
    """Share lifecycle and per-user permissions for datasets."""

    def __init__(
        self,
        zfs: ZFSService,
        shares: ShareRepository,
        permissions: PermissionRepository,
        users: UserRepository,
        reconciler: Optional[PermissionReconciler] = None
    ):
        self.zfs = zfs
        self.shares = shares
        self.permissions = permissions
        self.users = users
        self.inventory = DatasetInventory(zfs, shares)
        self.reconciler = reconciler or PermissionReconciler(zfs, permissions, shares)

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_share(self, dataset: str) -> NfsShare:
        share = self.shares.get_by_dataset(dataset)
        if share is None:
            raise NotFoundError(f"NFS share for '{dataset}' not found")
        return share

    def list_permissions(self, dataset: str) -> Tuple[NfsShare, List[Tuple[NfsSharePermission, User]]]:
        share = self.get_share(dataset)
        return share, self.permissions.list_with_users(share.id)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _reconcile_after_change(self, share: NfsShare) -> ReconcileResult:
        """Reconcile after a committed change; the reconciler flags the share if publishing fails."""
        try:
            return self.reconciler.reconcile(share)
        except GatewayError as e:
            logger.error(
                f"Share {share.dataset} is out of sync with stored permissions: {e.message}"
            )
            raise ShareOutOfSyncError(share.dataset, e) from e

    def reconcile_share(self, dataset: str) -> Tuple[NfsShare, ReconcileResult]:
        """Republish a share from its stored grants (retry after a failure)."""
        self.inventory.require_dataset(dataset)
        share = self.get_share(dataset)
        return share, self._reconcile_after_change(share)

    # =========================================================================
    # Shares
    # =========================================================================

    def create_share(self, pool: str, dataset: str) -> Tuple[NfsShare, ReconcileResult]:
        self.inventory.require_dataset(dataset)
        if self.shares.get_by_dataset(dataset) is not None:
            raise ConflictError(f"NFS share for '{dataset}' already exists")

        share = self.shares.insert(NfsShare(pool=pool, dataset=dataset))
        logger.info(f"Created NFS share record for {dataset}")
        return share, self._reconcile_after_change(share)

    def delete_share(self, dataset: str) -> None:
        """Unpublish and remove a share with all its permissions."""
        self.inventory.require_dataset(dataset)
        self.get_share(dataset)

        self.zfs.unpublish_share(dataset)
        self.shares.delete_by_dataset(dataset)
        logger.info(f"Deleted NFS share for {dataset}")

    def delete_dataset_shares(self, dataset: str) -> bool:
        """Drop share records for a dataset that no longer exists."""
        deleted = self.shares.delete_by_dataset(dataset)
        if deleted:
            logger.info(f"Removed NFS share records of deleted dataset {dataset}")
        return deleted

    # =========================================================================
    # Permissions
    # =========================================================================

    def add_permission(
        self,
        dataset: str,
        user_id: int,
        permission: PermissionType
    ) -> Tuple[NfsSharePermission, User, ReconcileResult]:
        self.inventory.require_dataset(dataset)
        share = self.get_share(dataset)

        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        if self.permissions.get_for_user(share.id, user_id) is not None:
            raise ConflictError(f"User {user_id} already has a permission on '{dataset}'")

        grant = self.permissions.insert(NfsSharePermission(
            share_id=share.id,
            user_id=user_id,
            permission=PermissionType(permission).value
        ))
        logger.info(f"Granted {grant.permission} on {dataset} to user {user_id} ({user.nas_client_ip})")
        return grant, user, self._reconcile_after_change(share)

    def remove_permission(self, permission_id: int) -> Optional[ReconcileResult]:
        """
        Revoke a grant and republish its share.

        Grants on a dataset that no longer exists are still revoked; there
        is nothing left to republish, so None is returned.
        """
        grant = self.permissions.get(permission_id)
        if grant is None:
            raise NotFoundError(f"NFS share permission {permission_id} not found")
        share = self.shares.get(grant.share_id)
        if share is None:
            raise NotFoundError(f"NFS share for permission {permission_id} not found")

        self.permissions.delete(permission_id)
        logger.info(f"Revoked permission {permission_id} on {share.dataset}")

        if self.inventory.find_dataset(share.dataset) is None:
            logger.warning(f"Dataset {share.dataset} no longer exists, skipping republish")
            return None
        return self._reconcile_after_change(share)

    def remove_user(self, user_id: int) -> List[ReconcileResult]:
        """Delete a user, their grants, and republish every share they had access to."""
        if self.users.get(user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        share_ids = {grant.share_id for grant in self.permissions.list_by_user(user_id)}
        self.permissions.delete_by_user(user_id)
        self.users.delete(user_id)

        results = []
        failures: List[Tuple[str, GatewayError]] = []
        for share_id in sorted(share_ids):
            share = self.shares.get(share_id)
            if share is None:
                continue
            # Keep going so every other share still drops the user's address
            try:
                results.append(self.reconciler.reconcile(share))
            except GatewayError as e:
                logger.error(f"Share {share.dataset} still publishes user {user_id}: {e.message}")
                failures.append((share.dataset, e))

        if failures:
            datasets = ", ".join(dataset for dataset, _ in failures)
            cause = GatewayError("; ".join(f"{dataset}: {e.message}" for dataset, e in failures))
            raise ShareOutOfSyncError(datasets, cause)
        return results

    def check_write_access(self, requester: User, dataset: str) -> None:
        """Admins may always write; other users need an rw grant on the dataset's share."""
        if requester.is_admin:
            return

        share = self.shares.get_by_dataset(dataset)
        if share is None:
            raise PermissionDeniedError(f"'{dataset}' is not shared")
        grant = self.permissions.get_for_user(share.id, requester.id)
        if grant is None:
            raise PermissionDeniedError(f"You don't have any permission on '{dataset}'")
        if grant.permission != PermissionType.READ_WRITE:
            raise PermissionDeniedError(f"You don't have write permission on '{dataset}'")
