import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta

from storefront_checkout.redis_service import RedisAttemptManager
from storefront_checkout.services.attempt_store import (
    AttemptStatus,
    FileAttemptStore,
    MemoryAttemptStore,
    PendingAttempt,
    RedisAttemptStore
)

from checkout_fakes import FakeRedis, FlakyRedis


def attempt(attempt_id="attempt_0001", **overrides):
    values = dict(
        attempt_id=attempt_id,
        amount=499,
        method="gateway",
        idempotency_key=attempt_id,
        order_payload={'items': [], 'paymentDetails': {}}
    )
    values.update(overrides)
    return PendingAttempt(**values)


class StoreContract:
    """Behaviour every PendingAttemptStore backend shares"""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_save_and_get(self):
        self.assertTrue(self.store.save(attempt()))
        loaded = self.store.get("attempt_0001")
        self.assertEqual(loaded.amount, 499)
        self.assertEqual(loaded.status, AttemptStatus.IN_FLIGHT)
        self.assertIsInstance(loaded.created_at, datetime)

    def test_missing_attempt_is_none(self):
        self.assertIsNone(self.store.get("attempt_missing"))
        self.assertFalse(self.store.delete("attempt_missing"))

    def test_update_status_keeps_payment_metadata(self):
        self.store.save(attempt())
        self.store.update_status("attempt_0001", AttemptStatus.NEEDS_RECONCILIATION,
                                 payment={'gateway_payment_id': "pay_123", 'status': "completed"},
                                 idempotency_key="pay_123")

        loaded = self.store.get("attempt_0001")
        self.assertEqual(loaded.status, AttemptStatus.NEEDS_RECONCILIATION)
        self.assertEqual(loaded.idempotency_key, "pay_123")
        self.assertEqual(loaded.summary()['payment_id'], "pay_123")

    def test_update_status_of_missing_attempt(self):
        self.assertIsNone(self.store.update_status("attempt_missing", AttemptStatus.ABANDONED))

    def test_list_is_oldest_first(self):
        now = datetime.utcnow()
        self.store.save(attempt("attempt_new", created_at=now))
        self.store.save(attempt("attempt_old", created_at=now - timedelta(hours=1)))

        self.assertEqual([a.attempt_id for a in self.store.list()], ["attempt_old", "attempt_new"])

    def test_delete(self):
        self.store.save(attempt())
        self.assertTrue(self.store.delete("attempt_0001"))
        self.assertEqual(self.store.list(), [])


class TestMemoryAttemptStore(StoreContract, unittest.TestCase):

    def make_store(self):
        return MemoryAttemptStore()


class TestFileAttemptStore(StoreContract, unittest.TestCase):

    def make_store(self):
        self.tmpdir = tempfile.mkdtemp()
        return FileAttemptStore(self.tmpdir)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_one_json_file_per_attempt(self):
        self.store.save(attempt("attempt_a"))
        self.store.save(attempt("attempt_b"))
        self.assertEqual(sorted(os.listdir(self.tmpdir)), ["attempt_a.json", "attempt_b.json"])

    def test_records_survive_a_new_store_instance(self):
        self.store.save(attempt())
        reopened = FileAttemptStore(self.tmpdir)
        self.assertEqual(reopened.get("attempt_0001").method, "gateway")

    def test_corrupt_file_is_skipped(self):
        self.store.save(attempt())
        with open(os.path.join(self.tmpdir, "attempt_broken.json"), 'w') as f:
            f.write("{not json")

        self.assertEqual([a.attempt_id for a in self.store.list()], ["attempt_0001"])


class TestRedisAttemptStore(StoreContract, unittest.TestCase):

    def make_store(self):
        self.redis = FakeRedis()
        return RedisAttemptStore(RedisAttemptManager(client=self.redis), ttl_hours=72)

    def test_keys_are_prefixed_and_expire(self):
        self.store.save(attempt())
        self.assertIn("checkout_attempt:attempt_0001", self.redis.data)
        self.assertEqual(self.redis.expiry["checkout_attempt:attempt_0001"], 72 * 3600)

    def test_unavailable_redis_reports_failure(self):
        store = RedisAttemptStore(RedisAttemptManager(client=FakeRedis()))
        store.manager.client = None
        self.assertFalse(store.save(attempt()))
        self.assertEqual(store.list(), [])

    def test_lost_connection_reads_as_missing(self):
        client = FlakyRedis(failing=())
        store = RedisAttemptStore(RedisAttemptManager(client=client))
        store.save(attempt())
        client.failing = {'get', 'delete', 'exists', 'scan_iter'}

        self.assertIsNone(store.get("attempt_0001"))
        self.assertFalse(store.delete("attempt_0001"))
        self.assertEqual(store.list(), [])
        self.assertIsNone(store.update_status("attempt_0001", AttemptStatus.ABANDONED))
        self.assertIn("checkout_attempt:attempt_0001", client.data)

    def test_lost_connection_on_delete_is_reported(self):
        store = RedisAttemptStore(RedisAttemptManager(client=FlakyRedis(failing=('delete',))))
        store.save(attempt())

        self.assertFalse(store.delete("attempt_0001"))
        self.assertEqual(store.get("attempt_0001").status, AttemptStatus.IN_FLIGHT)


if __name__ == "__main__":
    unittest.main()
