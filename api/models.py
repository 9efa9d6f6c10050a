"""
Recordflow — API Models

Request/response dataclasses for the API server.
No FastAPI dependency; used by server and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any

from automation.types import ApprovalLevel
from recordflow.types import Operation


@dataclass
class BatchSubmission:
    """POST /v1/batches and /v1/batches/dry-run request body."""
    operations: list[dict[str, Any]]
    stop_on_error: bool = False
    is_bulk: bool = False

    @classmethod
    def from_body(cls, body: Any) -> BatchSubmission:
        if not isinstance(body, dict):
            return cls(operations=body if isinstance(body, list) else [])
        return cls(
            operations=body.get("operations", []),
            stop_on_error=body.get("stop_on_error", False),
            is_bulk=body.get("is_bulk", False),
        )

    def validate(self) -> list[str]:
        """Return list of validation errors (empty = valid)."""
        errors = []
        if not isinstance(self.operations, list) or not self.operations:
            errors.append("operations is required and must be a non-empty list")
        elif not all(isinstance(op, dict) for op in self.operations):
            errors.append("every operation must be an object")
        else:
            ids = [op.get("id") for op in self.operations]
            if any(not i for i in ids):
                errors.append("every operation needs an id")
            elif len(set(ids)) != len(ids):
                errors.append("operation ids must be unique")
            for op in self.operations:
                try:
                    Operation.from_dict(op)
                except (TypeError, ValueError) as e:
                    errors.append(f"operation {op.get('id')!r}: {e}")
        if not isinstance(self.stop_on_error, bool):
            errors.append("stop_on_error must be a boolean")
        if not isinstance(self.is_bulk, bool):
            errors.append("is_bulk must be a boolean")
        return errors

    def to_operations(self) -> list[Operation]:
        return [Operation.from_dict(op) for op in self.operations]


@dataclass
class PolicyUpdate:
    """PUT /v1/policies/{id} body."""
    approval_level: str

    def validate(self) -> list[str]:
        valid = [level.value for level in ApprovalLevel]
        if not isinstance(self.approval_level, str) or self.approval_level.strip().lower() not in valid:
            return [f"approval_level must be one of {valid}"]
        return []


@dataclass
class BatchResponse:
    """POST /v1/batches response."""
    run_id: str
    plan: list[dict[str, Any]] = field(default_factory=list)
    validation: dict[str, Any] | None = None
    results: list[dict[str, Any]] = field(default_factory=list)
    report: dict[str, Any] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    operations: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
