"""
Automation — Policy Store Tests
"""

import os
import sys
import tempfile
import unittest
from datetime import datetime, timezone

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from automation.catalog import seed_catalog
from automation.store import PolicyStore, from_epoch, to_epoch
from automation.types import ApprovalLevel
from recordflow.types import Verb


class TestEpochBoundary(unittest.TestCase):

    def test_round_trip_is_utc_aware(self):
        ts = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
        back = from_epoch(to_epoch(ts))
        self.assertEqual(back, ts)
        self.assertIsNotNone(back.tzinfo)

    def test_naive_treated_as_utc(self):
        naive = datetime(2026, 3, 1, 12, 30)
        self.assertEqual(from_epoch(to_epoch(naive)), naive.replace(tzinfo=timezone.utc))

    def test_none(self):
        self.assertIsNone(to_epoch(None))
        self.assertIsNone(from_epoch(None))


class TestPolicyStore(unittest.TestCase):

    def setUp(self):
        self.store = PolicyStore(":memory:")

    def tearDown(self):
        self.store.close()

    def test_seed_inserts_catalog(self):
        added = self.store.seed(seed_catalog())
        self.assertEqual(added, len(seed_catalog()))
        self.assertEqual(len(self.store.list_policies()), len(seed_catalog()))

    def test_seed_is_idempotent(self):
        self.store.seed(seed_catalog())
        self.assertEqual(self.store.seed(seed_catalog()), 0)

    def test_seed_keeps_operator_choice(self):
        self.store.seed(seed_catalog())
        policy = self.store.get_policy("create-vendor")
        policy.approval_level = ApprovalLevel.AUTOMATED
        self.store.save_policy(policy)
        self.store.seed(seed_catalog())
        self.assertIs(self.store.get_policy("create-vendor").approval_level, ApprovalLevel.AUTOMATED)

    def test_save_round_trip(self):
        self.store.seed(seed_catalog())
        policy = self.store.get_policy("update-contract")
        policy.success_count = 4
        policy.failure_count = 1
        policy.last_executed_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        self.store.save_policy(policy)

        loaded = self.store.get_policy("update-contract")
        self.assertEqual(loaded.success_count, 4)
        self.assertEqual(loaded.failure_count, 1)
        self.assertEqual(loaded.last_executed_at, policy.last_executed_at)
        self.assertIs(loaded.verb, Verb.PATCH)

    def test_update_keeps_listing_order(self):
        self.store.seed(seed_catalog())
        before = [p.id for p in self.store.list_policies()]
        policy = self.store.get_policy(before[0])
        policy.approval_level = ApprovalLevel.VALIDATED
        self.store.save_policy(policy)
        self.assertEqual([p.id for p in self.store.list_policies()], before)

    def test_save_all(self):
        policies = seed_catalog()
        self.store.seed(policies)
        for p in policies:
            p.approval_level = ApprovalLevel.VALIDATED
        self.store.save_all(policies)
        levels = {p.approval_level for p in self.store.list_policies()}
        self.assertEqual(levels, {ApprovalLevel.VALIDATED})

    def test_missing_policy(self):
        self.assertIsNone(self.store.get_policy("nope"))


class TestPolicyStoreOnDisk(unittest.TestCase):

    def test_survives_reopen(self):
        path = os.path.join(tempfile.mkdtemp(), "policies.db")
        store = PolicyStore(path)
        store.seed(seed_catalog())
        policy = store.get_policy("create-asset")
        policy.approval_level = ApprovalLevel.AUTOMATED
        store.save_policy(policy)
        store.close()

        reopened = PolicyStore(path)
        self.assertIs(reopened.get_policy("create-asset").approval_level, ApprovalLevel.AUTOMATED)
        reopened.close()


if __name__ == "__main__":
    unittest.main()
