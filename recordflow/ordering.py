"""
Recordflow — Dependency Orderer

Sorts pending operations by a fixed entity-kind precedence so records
that others commonly reference (vendors, suppliers, models) are created
before the records that point at them.

This is a heuristic default, not a dependency graph. Callers must not
build payloads whose real reference runs against the precedence below.
"""

from __future__ import annotations

from typing import Iterable

from recordflow.types import EntityKind, Operation

# Parents and independent records first
EXECUTION_ORDER: tuple[EntityKind, ...] = (
    EntityKind.VENDOR,
    EntityKind.SUPPLIER,
    EntityKind.CMDB_MODEL,
    EntityKind.SERVICE_OFFERING,
    EntityKind.ASSET,
    EntityKind.CONTRACT,
    EntityKind.PURCHASE_ORDER,
    EntityKind.EXPENSE_LINE,
    EntityKind.PURCHASE_ORDER_LINE,
    EntityKind.CONTRACT_ASSET,
    EntityKind.CURRENCY_INSTANCE,
    EntityKind.SUPPLIER_PRODUCT,
)

_RANK = {kind: i for i, kind in enumerate(EXECUTION_ORDER)}
_UNKNOWN_RANK = len(EXECUTION_ORDER)


def precedence(entity_kind: EntityKind | str) -> int:
    """Position of ``entity_kind`` in the execution order; unknown kinds rank last."""
    kind = EntityKind.parse(entity_kind)
    return _RANK.get(kind, _UNKNOWN_RANK)


def order(operations: Iterable[Operation]) -> list[Operation]:
    """
    Return ``operations`` in execution order.

    Stable: operations of the same kind, and operations of unknown kinds,
    keep their relative input order. The input is not modified.
    """
    return sorted(operations, key=lambda op: precedence(op.entity_kind))
