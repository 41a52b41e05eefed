import os
import tempfile
import threading
import unittest
from unittest.mock import patch

from sqlmodel import Session

from nas_agent.db.models import NfsShare, NfsSharePermission
from nas_agent.db.repository import PermissionRepository, ShareRepository, UserRepository
from nas_agent.errors import GatewayError
from nas_agent.services.reconciler import DatasetLocks, PermissionReconciler
from nas_agent.services.shares import ShareService
from nas_agent.tests.fakes import FakeZFS, add_share, add_user, file_engine, memory_engine

ADMIN_IP = "10.0.0.1"


def grant(session, share, user, permission):
    record = NfsSharePermission(share_id=share.id, user_id=user.id, permission=permission)
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


class PermissionReconcilerTests(unittest.TestCase):
    def setUp(self):
        self.session = Session(memory_engine())
        self.zfs = FakeZFS(datasets=["naspool/data"], mount_root="/mnt")
        self.reconciler = PermissionReconciler(
            self.zfs,
            PermissionRepository(self.session),
            ShareRepository(self.session),
            admin_client_ip=ADMIN_IP,
            locks=DatasetLocks()
        )
        self.share = add_share(self.session, "naspool/data")
        self.alice = add_user(self.session, "alice", "10.0.0.2")
        self.bob = add_user(self.session, "bob", "10.0.0.3")
        self.carol = add_user(self.session, "carol", "10.0.0.4")

    def tearDown(self):
        self.session.close()

    def test_new_share_publishes_admin_only(self):
        result = self.reconciler.reconcile(self.share)

        self.assertEqual(result.policy, "insecure,rw=10.0.0.1")
        self.assertEqual(result.rw, [ADMIN_IP])
        self.assertEqual(result.ro, [])
        self.assertEqual(self.zfs.chowned, ["/mnt/naspool/data"])

    def test_rw_and_ro_grants(self):
        grant(self.session, self.share, self.alice, "rw")
        grant(self.session, self.share, self.bob, "r")
        grant(self.session, self.share, self.carol, "r")

        result = self.reconciler.reconcile(self.share)

        self.assertEqual(result.policy, "insecure,rw=10.0.0.1:10.0.0.2,ro=10.0.0.3:10.0.0.4")
        self.assertEqual(self.zfs.published["naspool/data"][:2], (["10.0.0.1", "10.0.0.2"], ["10.0.0.3", "10.0.0.4"]))

    def test_reconcile_is_idempotent(self):
        grant(self.session, self.share, self.alice, "rw")
        grant(self.session, self.share, self.bob, "r")

        first = self.reconciler.reconcile(self.share)
        second = self.reconciler.reconcile(self.share)

        self.assertEqual(first.policy, second.policy)
        self.assertEqual(len(self.zfs.publish_calls), 2)

    def test_last_permission_removed(self):
        record = grant(self.session, self.share, self.bob, "r")
        self.reconciler.reconcile(self.share)

        PermissionRepository(self.session).delete(record.id)
        result = self.reconciler.reconcile(self.share)

        self.assertEqual(result.rw, [ADMIN_IP])
        self.assertEqual(result.ro, [])
        self.assertEqual(result.policy, "insecure,rw=10.0.0.1")

    def test_admin_address_never_read_only(self):
        other_admin = add_user(self.session, "ops", ADMIN_IP)
        grant(self.session, self.share, other_admin, "r")
        grant(self.session, self.share, self.alice, "r")

        rw, ro = self.reconciler.compute_access_lists(self.share)

        self.assertEqual(rw, [ADMIN_IP])
        self.assertEqual(ro, ["10.0.0.2"])

    def test_preview_does_not_publish(self):
        grant(self.session, self.share, self.alice, "rw")

        access = self.reconciler.preview(self.share)

        self.assertEqual(access.rw, [ADMIN_IP, "10.0.0.2"])
        self.assertEqual(self.zfs.publish_calls, [])

    def test_publish_failure_propagates(self):
        self.zfs.fail_publish = "cannot set property for 'naspool/data': permission denied"

        with self.assertRaises(GatewayError):
            self.reconciler.reconcile(self.share)
        self.assertEqual(self.zfs.chowned, [])

    def test_publish_failure_flags_share_under_lock(self):
        self.zfs.fail_publish = "dataset is busy"
        shares = self.reconciler.shares
        lock_held = []
        mark = shares.mark_sync_error

        def recording_mark(share, message):
            lock_held.append(self.reconciler.locks.get(share.dataset).locked())
            return mark(share, message)

        with patch.object(shares, "mark_sync_error", side_effect=recording_mark):
            with self.assertRaises(GatewayError):
                self.reconciler.reconcile(self.share)

        self.assertEqual(lock_held, [True])
        self.assertEqual(self.share.sync_error, "dataset is busy")

    def test_success_clears_flag_under_lock(self):
        self.reconciler.shares.mark_sync_error(self.share, "dataset is busy")
        shares = self.reconciler.shares
        lock_held = []
        clear = shares.clear_sync_error

        def recording_clear(share):
            lock_held.append(self.reconciler.locks.get(share.dataset).locked())
            return clear(share)

        with patch.object(shares, "clear_sync_error", side_effect=recording_clear):
            self.reconciler.reconcile(self.share)

        self.assertEqual(lock_held, [True])
        self.assertIsNone(self.share.sync_error)
        self.assertIsNone(self.share.sync_failed_at)

    def test_clear_sees_flag_set_by_another_session(self):
        """A flag written through another session is not skipped as already clear."""
        with Session(self.session.get_bind()) as other:
            ShareRepository(other).mark_sync_error(other.get(NfsShare, self.share.id), "dataset is busy")

        self.reconciler.reconcile(self.share)

        with Session(self.session.get_bind()) as other:
            self.assertIsNone(other.get(NfsShare, self.share.id).sync_error)

    def test_ownership_failure_is_reported(self):
        self.zfs.fail_ownership = "Operation not permitted"

        result = self.reconciler.reconcile(self.share)

        self.assertFalse(result.ownership_normalized)
        self.assertIn("Operation not permitted", result.ownership_error)
        self.assertIn("naspool/data", self.zfs.published)

    def test_grant_read_failure_aborts_before_publish(self):
        with patch.object(PermissionRepository, "list_with_users", side_effect=RuntimeError("database is locked")):
            with self.assertRaises(RuntimeError):
                self.reconciler.reconcile(self.share)
        self.assertEqual(self.zfs.publish_calls, [])


class ConcurrentReconcileTests(unittest.TestCase):
    """Overlapping permission changes on one dataset must end in a consistent policy."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = file_engine(os.path.join(self.tmp.name, "nas.db"))
        self.zfs = FakeZFS(datasets=["naspool/data"], publish_delay=0.05)
        self.locks = DatasetLocks()

        with Session(self.engine) as session:
            self.share_id = add_share(session, "naspool/data").id
            self.user_ids = [add_user(session, f"user{i}", f"10.0.1.{i}").id for i in range(1, 7)]

    def tearDown(self):
        self.engine.dispose()
        self.tmp.cleanup()

    def _service(self, session):
        permissions = PermissionRepository(session)
        return ShareService(
            self.zfs,
            ShareRepository(session),
            permissions,
            UserRepository(session),
            reconciler=PermissionReconciler(
                self.zfs, permissions, ShareRepository(session), admin_client_ip=ADMIN_IP, locks=self.locks
            )
        )

    def _run(self, jobs):
        errors = []

        def call(job):
            try:
                with Session(self.engine) as session:
                    job(self._service(session))
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=call, args=(job,)) for job in jobs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(errors, [])

    def test_parallel_add_and_remove_match_final_grants(self):
        with Session(self.engine) as session:
            service = self._service(session)
            existing = [
                service.add_permission("naspool/data", user_id, "rw" if i % 2 else "r")[0].id
                for i, user_id in enumerate(self.user_ids[:3])
            ]

        jobs = [lambda s, pid=pid: s.remove_permission(pid) for pid in existing]
        jobs += [
            lambda s, uid=uid, i=i: s.add_permission("naspool/data", uid, "rw" if i % 2 else "r")
            for i, uid in enumerate(self.user_ids[3:])
        ]
        self._run(jobs)

        self.assertEqual(self.zfs.max_in_flight, 1)
        with Session(self.engine) as session:
            service = self._service(session)
            share = service.get_share("naspool/data")
            expected_rw, expected_ro = service.reconciler.compute_access_lists(share)
            self.assertIsNone(share.sync_error)

        rw, ro, _ = self.zfs.published["naspool/data"]
        self.assertEqual((rw, ro), (expected_rw, expected_ro))
        self.assertEqual(sorted(rw[1:] + ro), sorted(f"10.0.1.{i}" for i in range(4, 7)))

    def test_parallel_grants_publish_every_address(self):
        errors = []

        def add(user_id, permission):
            try:
                with Session(self.engine) as session:
                    self._service(session).add_permission("naspool/data", user_id, permission)
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        threads = [
            threading.Thread(target=add, args=(user_id, "rw" if i % 2 else "r"))
            for i, user_id in enumerate(self.user_ids)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(self.zfs.max_in_flight, 1)

        rw, ro, _ = self.zfs.published["naspool/data"]
        self.assertEqual(rw[0], ADMIN_IP)
        self.assertEqual(
            sorted(rw[1:] + ro),
            sorted(f"10.0.1.{i}" for i in range(1, 7))
        )
        self.assertEqual(len(rw), 4)
        self.assertEqual(len(ro), 3)


if __name__ == "__main__":
    unittest.main()
