"""
Recordflow — Structured Logging with Run Correlation IDs

JSON-lines logging for batch runs and policy changes. Every entry from a
RunLogger carries the run_id of the batch it belongs to, so the lines of
one run can be pulled out of a shared log.

Usage:
    from recordflow.logging import RunLogger, configure_logging

    configure_logging(level="INFO")
    run_logger = RunLogger(source="cli")
    execute_batch(operations, store, run_logger=run_logger)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "recordflow"

# Keys that must never reach a log line
_REDACTED_KEYS = {"api_key", "x-sn-apikey", "authorization", "password"}


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def __init__(self, service_name: str = "recordflow"):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("RF_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(redact(record.structured))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


def redact(fields: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``fields`` with credential-looking keys masked, recursively."""
    clean = {}
    for key, value in fields.items():
        if str(key).lower() in _REDACTED_KEYS:
            clean[key] = "***"
        elif isinstance(value, dict):
            clean[key] = redact(value)
        else:
            clean[key] = value
    return clean


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = "recordflow",
) -> logging.Logger:
    """
    Configure the recordflow logger namespace with JSON output.

    Both ``recordflow.*`` and ``automation.*`` loggers are routed to the
    same handler.
    """
    numeric = getattr(logging, level.upper(), logging.INFO)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(numeric)

    root = None
    for name in (ROOT_LOGGER, "automation"):
        logger = logging.getLogger(name)
        logger.setLevel(numeric)
        # Avoid duplicate handlers on reconfigure
        logger.handlers.clear()
        for child_name in list(logging.Logger.manager.loggerDict.keys()):
            if child_name.startswith(name + "."):
                child = logging.getLogger(child_name)
                child.handlers.clear()
                child.setLevel(logging.NOTSET)
        logger.addHandler(handler)
        logger.propagate = False
        if root is None:
            root = logger

    return root


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the recordflow namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


def generate_run_id() -> str:
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════
# Run Logger
# ═══════════════════════════════════════════════════════════════════

class RunLogger:
    """
    Emits structured events for one batch run.

    Passed to ``execute_batch`` (and the gated runner) as ``run_logger``.
    """

    def __init__(self, source: str = "", run_id: str | None = None):
        self.source = source
        self.run_id = run_id or generate_run_id()
        self._logger = get_logger("run")

    def _emit(self, level: int, action: str, **fields):
        if not self._logger.isEnabledFor(level):
            return
        structured = {"run_id": self.run_id, "source": self.source, "action": action, **fields}
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(), exc_info=None,
        )
        record.structured = structured
        self._logger.handle(record)

    def on_batch_start(self, operation_count: int) -> None:
        self._emit(logging.INFO, "batch_start", operation_count=operation_count)

    def on_operation_start(self, operation) -> None:
        self._emit(
            logging.DEBUG, "operation_start",
            operation_id=operation.id,
            entity_kind=operation.entity_kind,
            verb=operation.verb,
            collection=operation.target.collection,
        )

    def on_operation_success(self, operation, result) -> None:
        self._emit(
            logging.INFO, "operation_success",
            operation_id=operation.id,
            entity_kind=operation.entity_kind,
            produced_identifier=result.produced_identifier,
            latency_ms=round(result.latency_ms, 1),
        )

    def on_operation_failure(self, operation, result) -> None:
        outcome = result.raw_outcome
        self._emit(
            logging.WARNING, "operation_failure",
            operation_id=operation.id,
            entity_kind=operation.entity_kind,
            status=outcome.status if outcome else None,
            error=(outcome.error or "")[:500] if outcome else "",
        )

    def on_batch_end(self, succeeded: int, failed: int, skipped: int, elapsed_s: float) -> None:
        self._emit(
            logging.INFO, "batch_end",
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            elapsed_s=round(elapsed_s, 2),
        )

    def on_gate_decision(self, operation_id: str, policy_id: str, decision: str) -> None:
        self._emit(
            logging.INFO, "gate_decision",
            operation_id=operation_id,
            policy_id=policy_id,
            decision=decision,
        )

    def on_policy_change(self, policy_id: str, from_level: str, to_level: str, reason: str) -> None:
        self._emit(
            logging.WARNING if reason == "automatic_demotion" else logging.INFO,
            "policy_change",
            policy_id=policy_id,
            from_level=from_level,
            to_level=to_level,
            reason=reason,
        )
