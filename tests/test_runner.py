"""
Automation — Gated Runner Tests

Planning, approval, execution, and policy bookkeeping end to end, with
a stub record store and a VirtualClock for countdowns.
"""

import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from automation.countdown import VirtualClock
from automation.policy import PolicyEngine
from automation.runner import GateDecision, GatedRunner, policy_key_for
from automation.types import ApprovalLevel, PolicyKey
from recordflow.types import EntityKind, Operation, OperationStatus, RecordStoreResponse, Target, Verb


class StubStore:

    def __init__(self, fail_collections=()):
        self.calls = []
        self.fail_collections = set(fail_collections)

    def execute_request(self, verb, target, headers, payload):
        self.calls.append((verb, target.path, dict(payload or {})))
        if target.collection in self.fail_collections:
            return RecordStoreResponse(status=400, status_text="Bad Request", error="rejected")
        return RecordStoreResponse(
            status=201, data={"result": {"sys_id": f"{target.collection}-{len(self.calls)}"}},
        )


def _vendor(op_id="vendor", name="Acme"):
    return Operation(
        id=op_id, entity_kind=EntityKind.VENDOR, verb=Verb.POST,
        target=Target("core_company"), payload={"name": name},
    )


def _contract(op_id="contract"):
    return Operation(
        id=op_id, entity_kind=EntityKind.CONTRACT, verb=Verb.POST,
        target=Target("ast_contract"),
        payload={"short_description": "Support", "vendor": "{{vendor.identifier}}"},
    )


def _delete(op_id="del"):
    return Operation(
        id=op_id, entity_kind=EntityKind.VENDOR, verb=Verb.DELETE,
        target=Target("core_company", "abc"),
    )


class RunnerTestCase(unittest.TestCase):

    def setUp(self):
        self.clock = VirtualClock()
        self.engine = PolicyEngine(clock=self.clock, countdown_seconds=3, bulk_threshold=2)
        self.store = StubStore()

    def runner(self, approver=None):
        return GatedRunner(self.engine, self.store, approver=approver)


class TestPlan(RunnerTestCase):

    def test_levels_map_to_decisions(self):
        self.engine.set_approval_level("create-vendor", "automated")
        self.engine.set_approval_level("create-contract", "validated")
        plan = self.runner().plan([_vendor(), _contract(), _delete()])
        self.assertEqual(
            [p.decision for p in plan],
            [GateDecision.AUTO, GateDecision.COUNTDOWN, GateDecision.MANUAL],
        )
        self.assertEqual(plan[0].policy_id, "create-vendor")

    def test_bulk_over_threshold_falls_back_to_countdown(self):
        self.engine.set_approval_level("create-vendor", "automated")
        ops = [_vendor(f"v{i}") for i in range(3)]
        plan = self.runner().plan(ops, is_bulk=True)
        self.assertTrue(all(p.decision is GateDecision.COUNTDOWN for p in plan))

    def test_bulk_within_threshold_stays_auto(self):
        self.engine.set_approval_level("create-vendor", "automated")
        plan = self.runner().plan([_vendor("a"), _vendor("b")], is_bulk=True)
        self.assertTrue(all(p.decision is GateDecision.AUTO for p in plan))

    def test_policy_key_for(self):
        self.assertEqual(policy_key_for(_vendor()), PolicyKey(Verb.POST, "core_company"))
        op = _vendor()
        op.verb = None
        self.assertIsNone(policy_key_for(op))


class TestRun(RunnerTestCase):

    def test_auto_runs_and_resolves(self):
        self.engine.set_approval_level("create-vendor", "automated")
        self.engine.set_approval_level("create-contract", "automated")
        ops = [_contract(), _vendor()]
        outcome = self.runner().run(ops)

        self.assertEqual([r.operation_id for r in outcome.results], ["vendor", "contract"])
        self.assertEqual(self.store.calls[1][2]["vendor"], "core_company-1")
        self.assertTrue(all(op.status is OperationStatus.SUCCEEDED for op in ops))
        self.assertEqual(outcome.pending, [])
        self.assertEqual(self.engine.get_policy_by_id("create-vendor").success_count, 1)

    def test_manual_without_approver_stays_pending(self):
        op = _vendor()
        outcome = self.runner().run([op])
        self.assertEqual(outcome.pending, ["vendor"])
        self.assertEqual(outcome.results, [])
        self.assertIs(op.status, OperationStatus.PENDING)
        self.assertEqual(self.store.calls, [])

    def test_manual_with_approver(self):
        seen = []

        def approver(op):
            seen.append(op.id)
            return op.id == "a"

        outcome = self.runner(approver).run([_vendor("a"), _vendor("b")])
        self.assertEqual(seen, ["a", "b"])
        self.assertEqual([r.operation_id for r in outcome.results], ["a"])
        self.assertEqual(outcome.pending, ["b"])

    def test_countdown_elapses_then_runs(self):
        self.engine.set_approval_level("create-vendor", "validated")
        op = _vendor()
        outcome = self.runner().run([op])
        self.assertEqual(len(outcome.results), 1)
        self.assertIs(op.status, OperationStatus.SUCCEEDED)
        self.assertEqual(self.clock.now, 3)

    def test_cancelled_countdown_leaves_pending(self):
        self.engine.set_approval_level("create-vendor", "validated")
        # Cancel as soon as the first second ticks by
        self.engine.subscribe_tick(lambda state: self.engine.cancel_countdown() if state.active else None)
        outcome = self.runner().run([_vendor()])
        self.assertEqual(outcome.pending, ["vendor"])
        self.assertEqual(outcome.results, [])

    def test_invalid_operation_failed_up_front(self):
        self.engine.set_approval_level("create-vendor", "automated")
        bad = _vendor("bad", name="")
        good = _vendor("good")
        outcome = self.runner().run([bad, good])

        self.assertIs(bad.status, OperationStatus.FAILED)
        self.assertEqual(bad.response.status, 400)
        self.assertIn('Required field "name" is missing', bad.response.error)
        self.assertEqual(outcome.validation.invalid_ids(), ["bad"])
        self.assertEqual([r.operation_id for r in outcome.results], ["good"])
        self.assertEqual(len(self.store.calls), 1)

    def test_failure_demotes_and_records(self):
        self.engine.set_approval_level("create-vendor", "automated")
        self.store.fail_collections.add("core_company")
        op = _vendor()
        outcome = self.runner().run([op])

        self.assertIs(op.status, OperationStatus.FAILED)
        self.assertEqual(op.response.error, "rejected")
        self.assertEqual(outcome.report.failed, ["vendor"])
        policy = self.engine.get_policy_by_id("create-vendor")
        self.assertIs(policy.approval_level, ApprovalLevel.MANUAL)
        self.assertEqual(policy.failure_count, 1)

    def test_stop_on_error_reports_skipped(self):
        self.engine.set_approval_level("create-vendor", "automated")
        self.engine.set_approval_level("create-contract", "automated")
        self.store.fail_collections.add("core_company")
        contract = _contract()
        outcome = self.runner().run([_vendor(), contract], stop_on_error=True)

        self.assertEqual(outcome.report.failed, ["vendor"])
        self.assertEqual(outcome.report.skipped, ["contract"])
        self.assertIs(contract.status, OperationStatus.APPROVED)

    def test_terminal_operations_ignored(self):
        self.engine.set_approval_level("create-vendor", "automated")
        done = _vendor("done")
        done.status = OperationStatus.SUCCEEDED
        outcome = self.runner().run([done])
        self.assertEqual(outcome.plan, [])
        self.assertEqual(self.store.calls, [])

    def test_outcome_to_dict(self):
        self.engine.set_approval_level("create-vendor", "automated")
        body = self.runner().run([_vendor()]).to_dict()
        self.assertEqual(body["plan"][0]["decision"], "auto")
        self.assertEqual(body["report"]["counts"]["succeeded"], 1)
        self.assertTrue(body["validation"]["valid"])


if __name__ == "__main__":
    unittest.main()
