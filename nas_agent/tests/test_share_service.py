import unittest
from unittest.mock import patch

from sqlmodel import Session

from nas_agent.db.models import ROLE_ADMIN, PermissionType
from nas_agent.db.repository import PermissionRepository, ShareRepository, UserRepository
from nas_agent.errors import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    ShareOutOfSyncError,
)
from nas_agent.services.reconciler import DatasetLocks, PermissionReconciler
from nas_agent.services.shares import ShareService
from nas_agent.tests.fakes import FakeZFS, add_user, memory_engine

ADMIN_IP = "10.0.0.1"


class ShareServiceTests(unittest.TestCase):
    def setUp(self):
        self.session = Session(memory_engine())
        self.zfs = FakeZFS(datasets=["naspool", "naspool/data", "naspool/media"], mount_root="/mnt")
        permissions = PermissionRepository(self.session)
        shares = ShareRepository(self.session)
        self.service = ShareService(
            self.zfs,
            shares,
            permissions,
            UserRepository(self.session),
            reconciler=PermissionReconciler(self.zfs, permissions, shares, admin_client_ip=ADMIN_IP, locks=DatasetLocks())
        )
        self.alice = add_user(self.session, "alice", "10.0.0.2")
        self.bob = add_user(self.session, "bob", "10.0.0.3")

    def tearDown(self):
        self.session.close()

    # Shares

    def test_create_share_publishes_admin_only(self):
        share, result = self.service.create_share("naspool", "naspool/data")

        self.assertEqual(share.dataset, "naspool/data")
        self.assertEqual(result.policy, "insecure,rw=10.0.0.1")
        self.assertTrue(self.service.inventory.find_dataset("naspool/data").share_enabled)

    def test_create_share_for_missing_dataset(self):
        with self.assertRaises(NotFoundError):
            self.service.create_share("naspool", "naspool/missing")
        self.assertIsNone(self.service.shares.get_by_dataset("naspool/missing"))

    def test_create_share_twice(self):
        self.service.create_share("naspool", "naspool/data")

        with self.assertRaises(ConflictError):
            self.service.create_share("naspool", "naspool/data")

    def test_delete_share_unpublishes_and_drops_grants(self):
        self.service.create_share("naspool", "naspool/data")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)

        self.service.delete_share("naspool/data")

        self.assertEqual(self.zfs.unpublished, ["naspool/data"])
        self.assertIsNone(self.service.shares.get_by_dataset("naspool/data"))
        self.assertEqual(self.service.permissions.list_by_user(self.alice.id), [])

    def test_delete_missing_share(self):
        with self.assertRaises(NotFoundError):
            self.service.delete_share("naspool/data")

    # Permissions

    def test_add_permissions_republishes_full_policy(self):
        self.service.create_share("naspool", "naspool/data")

        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)
        _, _, result = self.service.add_permission("naspool/data", self.bob.id, PermissionType.READ_ONLY)

        self.assertEqual(result.policy, "insecure,rw=10.0.0.1:10.0.0.2,ro=10.0.0.3")
        self.assertEqual(self.zfs.published["naspool/data"][2], result.policy)

    def test_duplicate_permission_is_rejected_without_republishing(self):
        self.service.create_share("naspool", "naspool/data")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_ONLY)
        calls = len(self.zfs.publish_calls)

        with self.assertRaises(ConflictError):
            self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)

        self.assertEqual(len(self.zfs.publish_calls), calls)
        _, grants = self.service.list_permissions("naspool/data")
        self.assertEqual([(g.permission, u.id) for g, u in grants], [("r", self.alice.id)])

    def test_add_permission_for_unknown_user(self):
        self.service.create_share("naspool", "naspool/data")

        with self.assertRaises(NotFoundError):
            self.service.add_permission("naspool/data", 999, PermissionType.READ_ONLY)

    def test_add_permission_on_unshared_dataset(self):
        with self.assertRaises(NotFoundError):
            self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_ONLY)
        self.assertEqual(self.zfs.publish_calls, [])

    def test_remove_last_permission(self):
        self.service.create_share("naspool", "naspool/data")
        grant, _, _ = self.service.add_permission("naspool/data", self.bob.id, PermissionType.READ_ONLY)

        result = self.service.remove_permission(grant.id)

        self.assertEqual(result.rw, [ADMIN_IP])
        self.assertEqual(result.ro, [])

    def test_remove_unknown_permission(self):
        with self.assertRaises(NotFoundError):
            self.service.remove_permission(42)

    def test_remove_user_republishes_their_shares(self):
        self.service.create_share("naspool", "naspool/data")
        self.service.create_share("naspool", "naspool/media")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)
        self.service.add_permission("naspool/media", self.alice.id, PermissionType.READ_ONLY)
        self.service.add_permission("naspool/media", self.bob.id, PermissionType.READ_ONLY)

        results = self.service.remove_user(self.alice.id)

        self.assertEqual([r.dataset for r in results], ["naspool/data", "naspool/media"])
        self.assertEqual(self.zfs.published["naspool/data"][2], "insecure,rw=10.0.0.1")
        self.assertEqual(self.zfs.published["naspool/media"][2], "insecure,rw=10.0.0.1,ro=10.0.0.3")
        self.assertIsNone(self.service.users.get(self.alice.id))

    def test_revoke_on_destroyed_dataset(self):
        """Grants stay revocable after the dataset vanished outside the API."""
        self.service.create_share("naspool", "naspool/data")
        grant, _, _ = self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)
        self.zfs.datasets.remove("naspool/data")
        calls = len(self.zfs.publish_calls)

        result = self.service.remove_permission(grant.id)

        self.assertIsNone(result)
        self.assertIsNone(self.service.permissions.get(grant.id))
        self.assertEqual(len(self.zfs.publish_calls), calls)

    # Consistency gap

    def test_publish_failure_flags_share(self):
        self.service.create_share("naspool", "naspool/data")
        self.zfs.fail_publish = "cannot set property for 'naspool/data': dataset is busy"

        with self.assertRaises(ShareOutOfSyncError) as ctx:
            self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertIn("dataset is busy", ctx.exception.message)
        share = self.service.shares.get_by_dataset("naspool/data")
        self.assertEqual(share.sync_error, "cannot set property for 'naspool/data': dataset is busy")
        self.assertIsNotNone(share.sync_failed_at)
        # the grant itself was committed
        self.assertIsNotNone(self.service.permissions.get_for_user(share.id, self.alice.id))

    def test_remove_user_republishes_every_share_despite_failure(self):
        self.service.create_share("naspool", "naspool/data")
        self.service.create_share("naspool", "naspool/media")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)
        self.service.add_permission("naspool/media", self.alice.id, PermissionType.READ_WRITE)

        publish = self.zfs.publish_share

        def fail_for_data(dataset, rw, ro):
            if dataset == "naspool/data":
                raise GatewayError("cannot set property for 'naspool/data': dataset is busy")
            return publish(dataset, rw, ro)

        with patch.object(self.zfs, "publish_share", side_effect=fail_for_data):
            with self.assertRaises(ShareOutOfSyncError) as ctx:
                self.service.remove_user(self.alice.id)

        self.assertIn("naspool/data", ctx.exception.message)
        self.assertNotIn("naspool/media", ctx.exception.dataset)
        # the other share dropped the deleted user's address
        self.assertEqual(self.zfs.published["naspool/media"][2], "insecure,rw=10.0.0.1")
        self.assertIsNone(self.service.shares.get_by_dataset("naspool/media").sync_error)
        self.assertIn("dataset is busy", self.service.shares.get_by_dataset("naspool/data").sync_error)
        self.assertIsNone(self.service.users.get(self.alice.id))

    def test_remove_user_flags_every_failed_share(self):
        self.service.create_share("naspool", "naspool/data")
        self.service.create_share("naspool", "naspool/media")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_ONLY)
        self.service.add_permission("naspool/media", self.alice.id, PermissionType.READ_ONLY)
        self.zfs.fail_publish = "pool I/O is currently suspended"

        with self.assertRaises(ShareOutOfSyncError) as ctx:
            self.service.remove_user(self.alice.id)

        self.assertEqual(ctx.exception.dataset, "naspool/data, naspool/media")
        for dataset in ("naspool/data", "naspool/media"):
            self.assertIsNotNone(self.service.shares.get_by_dataset(dataset).sync_error)

    def test_reconcile_clears_sync_error(self):
        self.service.create_share("naspool", "naspool/data")
        self.zfs.fail_publish = "dataset is busy"
        with self.assertRaises(ShareOutOfSyncError):
            self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)

        self.zfs.fail_publish = None
        share, result = self.service.reconcile_share("naspool/data")

        self.assertIsNone(share.sync_error)
        self.assertIsNone(share.sync_failed_at)
        self.assertEqual(result.rw, [ADMIN_IP, "10.0.0.2"])

    # Write access

    def test_check_write_access(self):
        admin = add_user(self.session, "admin", "10.0.0.9", role=ROLE_ADMIN)
        self.service.create_share("naspool", "naspool/data")
        self.service.add_permission("naspool/data", self.alice.id, PermissionType.READ_WRITE)
        self.service.add_permission("naspool/data", self.bob.id, PermissionType.READ_ONLY)

        self.service.check_write_access(admin, "naspool/media")
        self.service.check_write_access(self.alice, "naspool/data")
        with self.assertRaises(PermissionDeniedError):
            self.service.check_write_access(self.bob, "naspool/data")
        with self.assertRaises(PermissionDeniedError):
            self.service.check_write_access(self.alice, "naspool/media")


if __name__ == "__main__":
    unittest.main()
