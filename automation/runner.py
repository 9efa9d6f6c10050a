"""
Automation — Gated Runner

Joins the policy engine to the execution loop. Gating happens before
anything is submitted to ``execute_batch``:

    dry-run ─▶ plan (auto | countdown | manual) ─▶ approve ─▶ execute_batch
                                                              │
                         policy statistics / demotion ◀───────┘

  - auto:      approved immediately
  - countdown: approved when the engine's countdown elapses; left
               pending if it is cancelled first
  - manual:    approved only if the ``approver`` callback says so

Structurally invalid operations are failed up front and never sent.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from automation.countdown import VirtualClock
from automation.policy import PolicyEngine
from automation.types import ApprovalLevel, PolicyKey
from recordflow.collaborator import RecordStore
from recordflow.executor import BatchReport, execute_batch, summarize
from recordflow.types import (
    EXECUTABLE_STATUSES,
    ExecutionResult,
    Operation,
    OperationStatus,
    RecordStoreResponse,
)
from recordflow.validate import DryRunReport, dry_run

logger = logging.getLogger("automation.runner")

Approver = Callable[[Operation], bool]


class GateDecision(str, enum.Enum):
    AUTO = "auto"
    COUNTDOWN = "countdown"
    MANUAL = "manual"


@dataclass
class PlannedOperation:
    operation: Operation
    policy_key: PolicyKey | None
    policy_id: str
    decision: GateDecision

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation.id,
            "policy_id": self.policy_id,
            "decision": self.decision.value,
        }


@dataclass
class RunOutcome:
    plan: list[PlannedOperation] = field(default_factory=list)
    validation: DryRunReport | None = None
    results: list[ExecutionResult] = field(default_factory=list)
    report: BatchReport = field(default_factory=BatchReport)
    pending: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": [p.to_dict() for p in self.plan],
            "validation": self.validation.to_dict() if self.validation else None,
            "results": [r.to_dict() for r in self.results],
            "report": self.report.to_dict(),
            "pending": list(self.pending),
        }


def policy_key_for(operation: Operation) -> PolicyKey | None:
    if operation.verb is None or not operation.target.collection:
        return None
    return PolicyKey(operation.verb, operation.target.collection)


class GatedRunner:
    """Runs batches through approval gating, execution, and policy bookkeeping."""

    def __init__(
        self,
        engine: PolicyEngine,
        store: RecordStore,
        approver: Approver | None = None,
        countdown_timeout: float | None = None,
        run_logger: Any = None,
    ):
        self.engine = engine
        self.store = store
        self.approver = approver
        # Wall-clock wait for a countdown on a real clock; None derives it from the countdown length
        self.countdown_timeout = countdown_timeout
        self.run_logger = run_logger

    # ── Planning ──────────────────────────────────────────────

    def plan(self, operations: Iterable[Operation], is_bulk: bool = False) -> list[PlannedOperation]:
        operations = list(operations)
        per_key = Counter(policy_key_for(op) for op in operations)

        planned = []
        for op in operations:
            key = policy_key_for(op)
            if key is None:
                planned.append(PlannedOperation(op, None, "", GateDecision.MANUAL))
                continue
            policy = self.engine.get_policy(key.verb, key.collection)
            level = policy.approval_level
            if level is ApprovalLevel.AUTOMATED:
                if self.engine.can_be_automated(key.verb, is_bulk, per_key[key]):
                    decision = GateDecision.AUTO
                else:
                    decision = GateDecision.COUNTDOWN
            elif level is ApprovalLevel.VALIDATED:
                decision = GateDecision.COUNTDOWN
            else:
                decision = GateDecision.MANUAL
            planned.append(PlannedOperation(op, key, policy.id, decision))
            if self.run_logger:
                self.run_logger.on_gate_decision(op.id, policy.id, decision.value)
        return planned

    # ── Approval ──────────────────────────────────────────────

    def _await_countdown(self, key: PolicyKey) -> bool:
        """Start the countdown for ``key``; True if it elapsed, False if cancelled."""
        done = threading.Event()
        elapsed = []

        def _on_elapsed(elapsed_key: PolicyKey):
            if elapsed_key == key:
                elapsed.append(elapsed_key)
            done.set()

        def _on_cancelled(state):
            done.set()

        unsubscribe = [
            self.engine.subscribe_elapsed(_on_elapsed),
            self.engine.subscribe_cancelled(_on_cancelled),
        ]
        try:
            self.engine.start_countdown(key)
            countdown = self.engine.countdown
            if isinstance(countdown.clock, VirtualClock):
                countdown.clock.advance(countdown.seconds)
            else:
                timeout = self.countdown_timeout
                if timeout is None:
                    timeout = countdown.seconds + 2
                if not done.wait(timeout):
                    self.engine.cancel_countdown()
        finally:
            for fn in unsubscribe:
                fn()
        return bool(elapsed)

    def _approve(self, item: PlannedOperation) -> bool:
        if item.decision is GateDecision.AUTO:
            return True
        if item.decision is GateDecision.COUNTDOWN:
            return self._await_countdown(item.policy_key)
        if self.approver is None:
            return False
        return bool(self.approver(item.operation))

    # ── Run ───────────────────────────────────────────────────

    def run(
        self,
        operations: Iterable[Operation],
        stop_on_error: bool = False,
        is_bulk: bool = False,
    ) -> RunOutcome:
        candidates = [op for op in operations if op.status in EXECUTABLE_STATUSES]
        outcome = RunOutcome()

        outcome.validation = dry_run(candidates)
        invalid = set(outcome.validation.invalid_ids())
        for op in candidates:
            if op.id in invalid:
                errors = next(e.errors for e in outcome.validation.results if e.operation_id == op.id)
                op.response = RecordStoreResponse(
                    status=400, status_text="Invalid", error="; ".join(errors),
                )
                op.advance(OperationStatus.FAILED)
                logger.info("Operation %s failed validation: %s", op.id, errors)

        valid = [op for op in candidates if op.id not in invalid]
        outcome.plan = self.plan(valid, is_bulk=is_bulk)

        approved: list[Operation] = []
        for item in outcome.plan:
            if self._approve(item):
                if item.operation.status is OperationStatus.PENDING:
                    item.operation.advance(OperationStatus.APPROVED)
                approved.append(item.operation)
            else:
                outcome.pending.append(item.operation.id)

        keys = {item.operation.id: item.policy_key for item in outcome.plan}

        def _on_start(op: Operation):
            op.advance(OperationStatus.EXECUTING)

        def _finish(op: Operation, result: ExecutionResult):
            op.response = result.raw_outcome
            op.advance(OperationStatus.SUCCEEDED if result.success else OperationStatus.FAILED)
            key = keys.get(op.id)
            if key is not None:
                self.engine.record_execution(key, result.success)

        # Snapshot before execution moves statuses on, so skipped ones still count as eligible
        report_basis = [
            Operation(
                id=op.id, entity_kind=op.entity_kind, verb=op.verb,
                target=op.target, status=op.status,
            )
            for op in approved
        ]

        outcome.results = execute_batch(
            approved,
            self.store,
            stop_on_error=stop_on_error,
            on_start=_on_start,
            on_success=_finish,
            on_failure=_finish,
            run_logger=self.run_logger,
        )
        outcome.report = summarize(report_basis, outcome.results)
        return outcome
