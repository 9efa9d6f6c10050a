"""
Recordflow — Execution Loop Tests

Tests:
  - end-to-end vendor → contract → expense line with reference resolution
  - failures are reported, not raised
  - stop_on_error halts after the first failure
  - non-pending operations are ignored
  - last successful create of a kind wins
  - callbacks and run logger hooks fire
  - repeated runs over the same batch keep the same order
"""

import io
import json
import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from recordflow.executor import execute_batch, summarize
from recordflow.logging import RunLogger, configure_logging
from recordflow.types import (
    TABLE_NAMES,
    EntityKind,
    Operation,
    OperationStatus,
    RecordStoreResponse,
    Target,
    Verb,
)


class StubStore:
    """Records every request; answers from a per-collection script."""

    def __init__(self, script=None):
        self.calls = []
        self.script = script or {}
        self._seq = 0

    def execute_request(self, verb, target, headers, payload):
        self.calls.append((verb, target, dict(payload or {})))
        answer = self.script.get(target.collection)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, RecordStoreResponse):
            return answer
        self._seq += 1
        return RecordStoreResponse(
            status=201, status_text="Created",
            data={"result": {"sys_id": f"{target.collection}-{self._seq}"}},
        )


def _op(op_id, kind, payload=None, verb=Verb.POST, status=OperationStatus.PENDING):
    return Operation(
        id=op_id, entity_kind=kind, verb=verb,
        target=Target(TABLE_NAMES[kind]), payload=payload or {}, status=status,
    )


class TestEndToEnd(unittest.TestCase):

    def test_vendor_contract_expense_line(self):
        ops = [
            _op("line", EntityKind.EXPENSE_LINE, {"contract": "{{contract.identifier}}", "amount": 5}),
            _op("contract", EntityKind.CONTRACT, {
                "short_description": "Support", "vendor": "{{vendor.identifier}}",
            }),
            _op("vendor", EntityKind.VENDOR, {"name": "Acme"}),
        ]
        store = StubStore()
        results = execute_batch(ops, store)

        self.assertEqual([r.operation_id for r in results], ["vendor", "contract", "line"])
        self.assertTrue(all(r.success for r in results))
        self.assertEqual(results[0].produced_identifier, "core_company-1")
        self.assertEqual(store.calls[1][2]["vendor"], "core_company-1")
        self.assertEqual(store.calls[2][2]["contract"], "ast_contract-2")
        self.assertEqual(results[2].submitted_payload["contract"], "ast_contract-2")

    def test_inputs_not_mutated(self):
        contract = _op("contract", EntityKind.CONTRACT, {
            "short_description": "c", "vendor": "{{vendor.identifier}}",
        })
        execute_batch([_op("vendor", EntityKind.VENDOR, {"name": "A"}), contract], StubStore())
        self.assertEqual(contract.payload["vendor"], "{{vendor.identifier}}")
        self.assertIs(contract.status, OperationStatus.PENDING)

    def test_repeat_runs_keep_same_order(self):
        ops = [
            _op("line", EntityKind.EXPENSE_LINE, {"contract": "{{contract.identifier}}"}),
            _op("asset", EntityKind.ASSET, {"name": "Laptop"}),
            _op("s", EntityKind.SUPPLIER, {"name": "S"}),
            _op("contract", EntityKind.CONTRACT, {"short_description": "c"}),
            _op("v2", EntityKind.VENDOR, {"name": "B"}),
            _op("v1", EntityKind.VENDOR, {"name": "A"}),
        ]
        first = [r.operation_id for r in execute_batch(ops, StubStore())]
        second = [r.operation_id for r in execute_batch(ops, StubStore())]
        self.assertEqual(first, second)
        self.assertEqual(len(first), len(ops))
        self.assertLess(first.index("v2"), first.index("v1"))

    def test_failed_producer_leaves_placeholder(self):
        store = StubStore({"core_company": RecordStoreResponse(status=400, error="bad")})
        ops = [
            _op("vendor", EntityKind.VENDOR, {"name": "A"}),
            _op("contract", EntityKind.CONTRACT, {
                "short_description": "c", "vendor": "{{vendor.identifier}}",
            }),
        ]
        results = execute_batch(ops, store)
        self.assertFalse(results[0].success)
        self.assertEqual(store.calls[1][2]["vendor"], "{{vendor.identifier}}")

    def test_last_write_wins(self):
        ops = [
            _op("v1", EntityKind.VENDOR, {"name": "A"}),
            _op("v2", EntityKind.VENDOR, {"name": "B"}),
            _op("c", EntityKind.CONTRACT, {"short_description": "c", "vendor": "{{vendor.identifier}}"}),
        ]
        store = StubStore()
        execute_batch(ops, store)
        self.assertEqual(store.calls[2][2]["vendor"], "core_company-2")


class TestFailureHandling(unittest.TestCase):

    def test_exception_becomes_failed_result(self):
        store = StubStore({"core_company": RuntimeError("socket closed")})
        results = execute_batch([_op("v", EntityKind.VENDOR, {"name": "A"})], store)
        self.assertEqual(len(results), 1)
        self.assertFalse(results[0].success)
        self.assertEqual(results[0].raw_outcome.status, 500)
        self.assertIn("socket closed", results[0].raw_outcome.error)

    def test_continue_after_failure_by_default(self):
        store = StubStore({"core_company": RecordStoreResponse(status=409)})
        ops = [
            _op("v", EntityKind.VENDOR, {"name": "A"}),
            _op("s", EntityKind.SUPPLIER, {"name": "S"}),
        ]
        results = execute_batch(ops, store)
        self.assertEqual([r.success for r in results], [False, True])

    def test_stop_on_error(self):
        store = StubStore({"core_company": RecordStoreResponse(status=409)})
        ops = [
            _op("v", EntityKind.VENDOR, {"name": "A"}),
            _op("s", EntityKind.SUPPLIER, {"name": "S"}),
            _op("c", EntityKind.CONTRACT, {"short_description": "c"}),
        ]
        results = execute_batch(ops, store, stop_on_error=True)
        self.assertEqual(len(results), 1)
        self.assertEqual(len(store.calls), 1)

        report = summarize(ops, results)
        self.assertEqual(report.failed, ["v"])
        self.assertEqual(report.skipped, ["s", "c"])
        self.assertFalse(report.all_succeeded)

    def test_success_without_identifier(self):
        store = StubStore({"core_company": RecordStoreResponse(status=204)})
        results = execute_batch([_op("v", EntityKind.VENDOR, {"name": "A"})], store)
        self.assertTrue(results[0].success)
        self.assertIsNone(results[0].produced_identifier)


class TestEligibility(unittest.TestCase):

    def test_only_pending_and_approved_run(self):
        ops = [
            _op("a", EntityKind.VENDOR, {"name": "A"}),
            _op("b", EntityKind.VENDOR, {"name": "B"}, status=OperationStatus.APPROVED),
            _op("c", EntityKind.VENDOR, {"name": "C"}, status=OperationStatus.SUCCEEDED),
            _op("d", EntityKind.VENDOR, {"name": "D"}, status=OperationStatus.FAILED),
        ]
        results = execute_batch(ops, StubStore())
        self.assertEqual([r.operation_id for r in results], ["a", "b"])

    def test_empty_batch(self):
        store = StubStore()
        self.assertEqual(execute_batch([], store), [])
        self.assertEqual(store.calls, [])


class TestCallbacks(unittest.TestCase):

    def test_callbacks_fire_in_order(self):
        events = []
        store = StubStore({"sn_fin_supplier": RecordStoreResponse(status=500)})
        ops = [
            _op("v", EntityKind.VENDOR, {"name": "A"}),
            _op("s", EntityKind.SUPPLIER, {"name": "S"}),
        ]
        execute_batch(
            ops, store,
            on_start=lambda op: events.append(("start", op.id)),
            on_success=lambda op, r: events.append(("ok", op.id)),
            on_failure=lambda op, r: events.append(("fail", op.id)),
        )
        self.assertEqual(events, [("start", "v"), ("ok", "v"), ("start", "s"), ("fail", "s")])

    def test_run_logger_events(self):
        buf = io.StringIO()
        configure_logging(level="DEBUG", stream=buf)
        run_logger = RunLogger(source="test")
        execute_batch([_op("v", EntityKind.VENDOR, {"name": "A"})], StubStore(), run_logger=run_logger)

        buf.seek(0)
        entries = [json.loads(line) for line in buf if line.strip()]
        actions = [e.get("action") for e in entries if e.get("run_id") == run_logger.run_id]
        self.assertEqual(actions, ["batch_start", "operation_start", "operation_success", "batch_end"])
        self.assertEqual(entries[-1]["succeeded"], 1)


if __name__ == "__main__":
    unittest.main()
