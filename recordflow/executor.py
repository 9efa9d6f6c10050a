"""
Recordflow — Execution Loop

Runs a batch of operations against the record store one at a time, in
dependency order, resolving placeholders from identifiers produced
earlier in the same run.

Strictly sequential: a later operation may reference an identifier
that only exists once an earlier one has returned, so no two
operations are ever in flight together.

Failures never raise out of ``execute_batch``. A non-2xx response or an
exception from the collaborator becomes a failed ExecutionResult, and
the run either continues or, with ``stop_on_error``, ends right there.
Operations after an early stop are left untouched.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from recordflow.collaborator import RecordStore, extract_identifier
from recordflow.ordering import order
from recordflow.references import resolve
from recordflow.types import (
    EXECUTABLE_STATUSES,
    EntityKind,
    ExecutionResult,
    Operation,
    RecordStoreResponse,
)

logger = logging.getLogger("recordflow.executor")

OnStart = Callable[[Operation], None]
OnSuccess = Callable[[Operation, ExecutionResult], None]
OnFailure = Callable[[Operation, ExecutionResult], None]


def _call_store(store: RecordStore, operation: Operation) -> RecordStoreResponse:
    try:
        return store.execute_request(
            operation.verb,
            operation.target,
            dict(operation.headers),
            operation.payload,
        )
    except Exception as e:
        logger.warning("Record store raised on operation %s: %s", operation.id, e)
        return RecordStoreResponse(
            status=500,
            status_text="Internal Error",
            error=str(e) or type(e).__name__,
        )


def execute_batch(
    operations: Iterable[Operation],
    store: RecordStore,
    stop_on_error: bool = False,
    on_start: OnStart | None = None,
    on_success: OnSuccess | None = None,
    on_failure: OnFailure | None = None,
    run_logger: Any = None,
) -> list[ExecutionResult]:
    """
    Execute every pending or approved operation in dependency order.

    Args:
        operations: Candidate operations; anything not pending/approved is skipped.
        store: Record-store collaborator (see recordflow.collaborator).
        stop_on_error: End the run after the first failed operation.
        on_start / on_success / on_failure: Per-operation callbacks.
        run_logger: Optional RunLogger for structured run events.

    Returns:
        ExecutionResults in the order the operations were executed.
    """
    eligible = [op for op in operations if op.status in EXECUTABLE_STATUSES]
    ordered = order(eligible)

    results: list[ExecutionResult] = []
    results_by_kind: dict[EntityKind | str, ExecutionResult] = {}

    if run_logger:
        run_logger.on_batch_start(len(ordered))
    t_batch = time.time()

    for operation in ordered:
        if on_start:
            on_start(operation)
        if run_logger:
            run_logger.on_operation_start(operation)

        resolved = resolve(operation, results_by_kind)

        t0 = time.time()
        response = _call_store(store, resolved)
        elapsed_ms = (time.time() - t0) * 1000

        if response.ok:
            identifier = extract_identifier(response.data)
            result = ExecutionResult(
                operation_id=operation.id,
                success=True,
                entity_kind=operation.entity_kind,
                produced_identifier=identifier,
                raw_outcome=response,
                submitted_payload=resolved.payload,
                latency_ms=elapsed_ms,
            )
            results.append(result)
            # Last write wins within a run
            if identifier:
                results_by_kind[operation.entity_kind] = result
            if run_logger:
                run_logger.on_operation_success(operation, result)
            if on_success:
                on_success(operation, result)
            continue

        result = ExecutionResult(
            operation_id=operation.id,
            success=False,
            entity_kind=operation.entity_kind,
            raw_outcome=response,
            submitted_payload=resolved.payload,
            latency_ms=elapsed_ms,
        )
        results.append(result)
        if run_logger:
            run_logger.on_operation_failure(operation, result)
        if on_failure:
            on_failure(operation, result)

        if stop_on_error:
            logger.info(
                "Stopping batch after failed operation %s (%d of %d executed)",
                operation.id, len(results), len(ordered),
            )
            break

    if run_logger:
        succeeded = sum(1 for r in results if r.success)
        run_logger.on_batch_end(
            succeeded=succeeded,
            failed=len(results) - succeeded,
            skipped=len(ordered) - len(results),
            elapsed_s=time.time() - t_batch,
        )

    return results


# ─── Summary ────────────────────────────────────────────────────────

@dataclass
class BatchReport:
    """Counts and ids for a finished (or stopped) batch."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "counts": {
                "succeeded": len(self.succeeded),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
            },
        }


def summarize(
    operations: Iterable[Operation],
    results: list[ExecutionResult],
) -> BatchReport:
    """
    Tally a batch. ``skipped`` lists eligible operations that never ran,
    which only happens after an early stop.
    """
    report = BatchReport()
    attempted = set()
    for r in results:
        attempted.add(r.operation_id)
        (report.succeeded if r.success else report.failed).append(r.operation_id)
    for op in order(operations):
        if op.id not in attempted and op.status in EXECUTABLE_STATUSES:
            report.skipped.append(op.id)
    return report
