"""
Automation — Type Definitions

Approval levels, policy keys, and the persisted WorkflowPolicy record.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from recordflow.types import RecordflowError, Verb


class UnknownApprovalLevel(RecordflowError, ValueError):
    pass


class ApprovalLevel(str, enum.Enum):
    """How much human gating an operation needs before it runs."""
    MANUAL = "manual"          # Explicit human action required
    VALIDATED = "validated"    # Runs after a cancellable countdown
    AUTOMATED = "automated"    # Runs immediately

    @classmethod
    def parse(cls, value: Any) -> ApprovalLevel:
        if isinstance(value, ApprovalLevel):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownApprovalLevel(
                f"Unknown approval level: {value!r}. Valid: {[l.value for l in cls]}"
            ) from None


@dataclass(frozen=True)
class PolicyKey:
    """(verb, target collection) pair identifying one policy."""
    verb: Verb
    collection: str

    @classmethod
    def of(cls, verb: Verb | str, collection: str) -> PolicyKey:
        return cls(verb=Verb.parse(verb), collection=collection)

    def __str__(self) -> str:
        return f"{self.verb.value}-{self.collection}"


def clamp_level(verb: Verb, level: ApprovalLevel) -> ApprovalLevel:
    """Deletes can never be automated; they top out at validated."""
    if verb is Verb.DELETE and level is ApprovalLevel.AUTOMATED:
        return ApprovalLevel.VALIDATED
    return level


@dataclass
class WorkflowPolicy:
    """Approval/automation policy for one (verb, collection) pair."""
    id: str
    verb: Verb
    collection: str
    name: str = ""
    description: str = ""
    approval_level: ApprovalLevel = ApprovalLevel.MANUAL
    success_count: int = 0
    failure_count: int = 0
    last_executed_at: datetime | None = None

    @property
    def key(self) -> PolicyKey:
        return PolicyKey(self.verb, self.collection)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "verb": self.verb.value,
            "collection": self.collection,
            "name": self.name,
            "description": self.description,
            "approval_level": self.approval_level.value,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
        }
