"""
Recordflow — Validator / Dry-Run

Structural checks on operations before anything touches the network:
verb and target present, a body for create/update, and the required
fields of each entity kind. Required fields apply to every verb, reads
and deletes included.

A placeholder such as ``{{vendor.identifier}}`` counts as present. This
is a shape check only; whether the reference will resolve is not known
until the batch runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from recordflow.types import EntityKind, Operation, Verb

REQUIRED_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.VENDOR: ("name",),
    EntityKind.SUPPLIER: ("name",),
    EntityKind.CONTRACT: ("short_description",),
    EntityKind.EXPENSE_LINE: ("contract",),
    EntityKind.SERVICE_OFFERING: ("name",),
    EntityKind.ASSET: ("name",),
    EntityKind.CONTRACT_ASSET: ("contract", "asset"),
    EntityKind.CMDB_MODEL: ("name",),
    EntityKind.PURCHASE_ORDER: ("supplier",),
    EntityKind.PURCHASE_ORDER_LINE: ("purchase_order",),
    EntityKind.CURRENCY_INSTANCE: ("amount", "currency"),
    EntityKind.SUPPLIER_PRODUCT: ("name",),
}


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class DryRunEntry:
    operation_id: str
    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"operation_id": self.operation_id, "valid": self.valid, "errors": list(self.errors)}


@dataclass
class DryRunReport:
    valid: bool
    results: list[DryRunEntry] = field(default_factory=list)

    def invalid_ids(self) -> list[str]:
        return [r.operation_id for r in self.results if not r.valid]

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "results": [r.to_dict() for r in self.results]}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple)):
        return len(value) == 0
    return False


def required_fields(entity_kind: EntityKind | str) -> tuple[str, ...]:
    """Required payload fields for ``entity_kind`` (empty for unknown kinds)."""
    return REQUIRED_FIELDS.get(EntityKind.parse(entity_kind), ())


def validate(operation: Operation) -> ValidationResult:
    """Check one operation's structure. Never raises."""
    errors: list[str] = []

    if not operation.target or not operation.target.collection:
        errors.append("URL is required")

    if not operation.verb:
        errors.append("HTTP method is required")

    body = operation.effective_payload or {}

    if operation.verb is not None and operation.verb.carries_body and not body:
        errors.append("Request body is required for POST/PATCH requests")

    for name in required_fields(operation.entity_kind):
        if _is_blank(body.get(name)):
            errors.append(f'Required field "{name}" is missing')

    if operation.verb in (Verb.PATCH, Verb.DELETE) and not operation.target.record_id:
        errors.append(f"Record id is required for {operation.verb.value}")

    return ValidationResult(valid=not errors, errors=errors)


def dry_run(operations: Iterable[Operation]) -> DryRunReport:
    """Validate every operation; no collaborator is involved."""
    entries = []
    for operation in operations:
        result = validate(operation)
        entries.append(DryRunEntry(
            operation_id=operation.id,
            valid=result.valid,
            errors=result.errors,
        ))
    return DryRunReport(valid=all(e.valid for e in entries), results=entries)
