"""
Recordflow — Dependency Orderer Tests

Tests:
  - kinds sort by the fixed execution order
  - unknown kinds go last
  - ties keep their input order
  - input is not modified
"""

import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _base)

from recordflow.ordering import EXECUTION_ORDER, order, precedence
from recordflow.types import EntityKind, Operation, Target, Verb


def _op(op_id, kind, verb=Verb.POST):
    return Operation(id=op_id, entity_kind=kind, verb=verb, target=Target("t"))


class TestPrecedence(unittest.TestCase):

    def test_vendor_first(self):
        self.assertEqual(precedence(EntityKind.VENDOR), 0)

    def test_supplier_product_last_known(self):
        self.assertEqual(precedence(EntityKind.SUPPLIER_PRODUCT), len(EXECUTION_ORDER) - 1)

    def test_unknown_kind_after_all_known(self):
        self.assertEqual(precedence("widget"), len(EXECUTION_ORDER))

    def test_snake_case_alias(self):
        self.assertEqual(precedence("purchase_order"), precedence(EntityKind.PURCHASE_ORDER))

    def test_order_covers_every_kind(self):
        self.assertEqual(set(EXECUTION_ORDER), set(EntityKind))


class TestOrder(unittest.TestCase):

    def test_contract_before_expense_line(self):
        ops = [_op("a", EntityKind.EXPENSE_LINE), _op("b", EntityKind.CONTRACT)]
        self.assertEqual([o.id for o in order(ops)], ["b", "a"])

    def test_full_chain(self):
        ops = [
            _op("line", EntityKind.EXPENSE_LINE),
            _op("contract", EntityKind.CONTRACT),
            _op("supplier", EntityKind.SUPPLIER),
            _op("vendor", EntityKind.VENDOR),
        ]
        self.assertEqual(
            [o.id for o in order(ops)],
            ["vendor", "supplier", "contract", "line"],
        )

    def test_stable_for_equal_kinds(self):
        ops = [_op(str(i), EntityKind.ASSET) for i in range(5)]
        self.assertEqual([o.id for o in order(ops)], ["0", "1", "2", "3", "4"])

    def test_unknown_kinds_last_in_input_order(self):
        ops = [
            _op("x", "widget"),
            _op("v", EntityKind.VENDOR),
            _op("y", "gadget"),
        ]
        self.assertEqual([o.id for o in order(ops)], ["v", "x", "y"])

    def test_input_untouched(self):
        ops = [_op("a", EntityKind.EXPENSE_LINE), _op("b", EntityKind.VENDOR)]
        order(ops)
        self.assertEqual([o.id for o in ops], ["a", "b"])

    def test_empty(self):
        self.assertEqual(order([]), [])


if __name__ == "__main__":
    unittest.main()
