"""
Recordflow — Type Definitions

Operations, targets, results, and the fixed entity-kind vocabulary
shared by the orderer, resolver, executor, and validator.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any


class RecordflowError(Exception):
    """Base class for errors raised by recordflow and automation."""
    pass


class IllegalStatusTransition(RecordflowError):
    """Raised when an operation status would move backwards or out of a terminal state."""
    pass


# ─── Entity kinds ───────────────────────────────────────────────────

class EntityKind(str, enum.Enum):
    """Record categories the engine knows how to order and validate."""
    VENDOR = "vendor"
    SUPPLIER = "supplier"
    CONTRACT = "contract"
    EXPENSE_LINE = "expenseLine"
    SERVICE_OFFERING = "serviceOffering"
    ASSET = "asset"
    CONTRACT_ASSET = "contractAsset"
    CMDB_MODEL = "cmdbModel"
    PURCHASE_ORDER = "purchaseOrder"
    PURCHASE_ORDER_LINE = "purchaseOrderLine"
    CURRENCY_INSTANCE = "currencyInstance"
    SUPPLIER_PRODUCT = "supplierProduct"

    @classmethod
    def parse(cls, value: str) -> EntityKind | str:
        """
        Map a wire value to an EntityKind.

        Accepts the camelCase values and the record store's snake_case
        spelling (``purchase_order``). Anything else is returned unchanged:
        unknown kinds are legal, they just sort last and carry no
        required fields.
        """
        if isinstance(value, EntityKind):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        return _SNAKE_ALIASES.get(value, value)


_SNAKE_ALIASES = {
    "expense_line": EntityKind.EXPENSE_LINE,
    "service_offering": EntityKind.SERVICE_OFFERING,
    "contract_asset": EntityKind.CONTRACT_ASSET,
    "cmdb_model": EntityKind.CMDB_MODEL,
    "purchase_order": EntityKind.PURCHASE_ORDER,
    "purchase_order_line": EntityKind.PURCHASE_ORDER_LINE,
    "currency_instance": EntityKind.CURRENCY_INSTANCE,
    "supplier_product": EntityKind.SUPPLIER_PRODUCT,
}

# Record-store table backing each entity kind
TABLE_NAMES: dict[EntityKind, str] = {
    EntityKind.VENDOR: "core_company",
    EntityKind.SUPPLIER: "sn_fin_supplier",
    EntityKind.CONTRACT: "ast_contract",
    EntityKind.EXPENSE_LINE: "fm_expense_line",
    EntityKind.SERVICE_OFFERING: "service_offering",
    EntityKind.ASSET: "alm_asset",
    EntityKind.CONTRACT_ASSET: "clm_m2m_contract_asset",
    EntityKind.CMDB_MODEL: "cmdb_model",
    EntityKind.PURCHASE_ORDER: "sn_shop_purchase_order",
    EntityKind.PURCHASE_ORDER_LINE: "sn_shop_purchase_order_line",
    EntityKind.CURRENCY_INSTANCE: "fx_currency2_instance",
    EntityKind.SUPPLIER_PRODUCT: "sn_shop_supplier_product",
}


# ─── Verbs and targets ──────────────────────────────────────────────

class Verb(str, enum.Enum):
    """HTTP-like verbs accepted by the record store."""
    GET = "GET"
    POST = "POST"
    PATCH = "PATCH"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: str) -> Verb:
        if isinstance(value, Verb):
            return value
        key = str(value).strip()
        alias = _VERB_ALIASES.get(key.lower())
        if alias is not None:
            return alias
        return cls(key.upper())

    @property
    def creates(self) -> bool:
        return self is Verb.POST

    @property
    def carries_body(self) -> bool:
        return self in (Verb.POST, Verb.PATCH)


_VERB_ALIASES = {
    "read": Verb.GET,
    "create": Verb.POST,
    "update": Verb.PATCH,
    "delete": Verb.DELETE,
}


@dataclass(frozen=True)
class Target:
    """Collection (table) plus an optional record id."""
    collection: str
    record_id: str = ""

    @property
    def path(self) -> str:
        if self.record_id:
            return f"/table/{self.collection}/{self.record_id}"
        return f"/table/{self.collection}"

    @classmethod
    def parse(cls, value: Any) -> Target:
        """Build a Target from a dict, a ``table[/id]`` string, or a Table API URL."""
        if isinstance(value, Target):
            return value
        if isinstance(value, dict):
            return cls(
                collection=value.get("collection", "") or value.get("table", ""),
                record_id=value.get("record_id", "") or value.get("sys_id", ""),
            )
        text = str(value or "").strip()
        if "/table/" in text:
            text = text.split("/table/", 1)[1]
        parts = [p for p in text.split("/") if p]
        if not parts:
            return cls(collection="")
        return cls(collection=parts[0], record_id=parts[1] if len(parts) > 1 else "")


# ─── Operation lifecycle ────────────────────────────────────────────

class OperationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


VALID_TRANSITIONS = {
    OperationStatus.PENDING: [
        OperationStatus.APPROVED, OperationStatus.EXECUTING, OperationStatus.FAILED,
    ],
    OperationStatus.APPROVED: [OperationStatus.EXECUTING, OperationStatus.FAILED],
    OperationStatus.EXECUTING: [OperationStatus.SUCCEEDED, OperationStatus.FAILED],
    OperationStatus.SUCCEEDED: [],  # Terminal
    OperationStatus.FAILED: [],  # Terminal
}

EXECUTABLE_STATUSES = (OperationStatus.PENDING, OperationStatus.APPROVED)


@dataclass
class RecordStoreResponse:
    """What the record-store collaborator hands back for one request."""
    status: int
    status_text: str = ""
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "data": self.data,
            "error": self.error,
        }


@dataclass
class Operation:
    """
    One pending create/read/update/delete against the record store.

    ``payload`` values may be literals or ``{{entityKind.identifier}}``
    placeholders. ``modified_payload`` holds operator edits and, when set,
    is what gets resolved, validated, and sent.
    """
    id: str
    entity_kind: EntityKind | str
    verb: Verb | None
    target: Target
    payload: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    status: OperationStatus = OperationStatus.PENDING
    created_at: float = field(default_factory=time.time)
    modified_payload: dict[str, Any] | None = None
    executed_at: datetime | None = None
    response: RecordStoreResponse | None = None

    @property
    def effective_payload(self) -> dict[str, Any]:
        if self.modified_payload is not None:
            return self.modified_payload
        return self.payload

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.status]

    def advance(self, to_status: OperationStatus):
        """Move to ``to_status``; only forward moves are allowed."""
        if to_status not in VALID_TRANSITIONS[self.status]:
            raise IllegalStatusTransition(
                f"Cannot move operation {self.id!r} from {self.status.value} "
                f"to {to_status.value}. Valid targets: "
                f"{[s.value for s in VALID_TRANSITIONS[self.status]]}"
            )
        self.status = to_status
        if to_status in (OperationStatus.SUCCEEDED, OperationStatus.FAILED):
            self.executed_at = datetime.now(timezone.utc)

    def with_payload(self, payload: dict[str, Any]) -> Operation:
        """Copy of this operation carrying ``payload`` as its effective body."""
        return replace(self, payload=dict(payload), modified_payload=None)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        """Build an operation from its JSON/YAML form."""
        kind = EntityKind.parse(
            data.get("entity_kind") or data.get("entityKind") or data.get("kind") or ""
        )
        raw_verb = data.get("verb") or data.get("method")
        verb = Verb.parse(raw_verb) if raw_verb else None
        raw_target = data.get("target") or data.get("url")
        if raw_target:
            target = Target.parse(raw_target)
        elif isinstance(kind, EntityKind):
            target = Target(collection=TABLE_NAMES[kind], record_id=data.get("record_id", ""))
        else:
            target = Target(collection="")
        status = data.get("status")
        return cls(
            id=str(data.get("id", "")),
            entity_kind=kind,
            verb=verb,
            target=target,
            payload=dict(data.get("payload") or data.get("body") or {}),
            headers=dict(data.get("headers") or {}),
            status=OperationStatus(status) if status else OperationStatus.PENDING,
            created_at=float(data.get("created_at", time.time())),
            modified_payload=data.get("modified_payload", data.get("modifiedBody")),
        )

    def to_dict(self) -> dict[str, Any]:
        kind = self.entity_kind.value if isinstance(self.entity_kind, EntityKind) else self.entity_kind
        return {
            "id": self.id,
            "entity_kind": kind,
            "verb": self.verb.value if self.verb else None,
            "target": {"collection": self.target.collection, "record_id": self.target.record_id},
            "payload": self.payload,
            "modified_payload": self.modified_payload,
            "status": self.status.value,
            "created_at": self.created_at,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
        }


@dataclass
class ExecutionResult:
    """Outcome of one executed operation."""
    operation_id: str
    success: bool
    entity_kind: EntityKind | str = ""
    produced_identifier: str | None = None
    raw_outcome: RecordStoreResponse | None = None
    submitted_payload: dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        kind = self.entity_kind.value if isinstance(self.entity_kind, EntityKind) else self.entity_kind
        return {
            "operation_id": self.operation_id,
            "success": self.success,
            "entity_kind": kind,
            "produced_identifier": self.produced_identifier,
            "raw_outcome": self.raw_outcome.to_dict() if self.raw_outcome else None,
            "submitted_payload": self.submitted_payload,
            "latency_ms": round(self.latency_ms, 1),
        }
