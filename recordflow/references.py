"""
Recordflow — Reference Resolver

Rewrites ``{{entityKind.identifier}}`` placeholders in an operation's
payload with the identifier produced earlier in the same run by the
most recent successful create of that entity kind.

Unresolvable placeholders (unknown kind, nothing produced yet, failed
producer, any field other than ``identifier``) are left untouched and
travel to the record store as-is; its own validation rejects them.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from recordflow.types import EntityKind, ExecutionResult, Operation

logger = logging.getLogger("recordflow.references")

PLACEHOLDER_RE = re.compile(r"^\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}$")

RESOLVABLE_FIELD = "identifier"


def parse_placeholder(value: Any) -> tuple[str, str] | None:
    """Split a placeholder string into (entity_kind, field), or None if it isn't one."""
    if not isinstance(value, str):
        return None
    m = PLACEHOLDER_RE.match(value)
    if not m:
        return None
    return m.group(1), m.group(2)


def find_placeholders(payload: Mapping[str, Any]) -> dict[str, tuple[str, str]]:
    """Map payload key → (entity_kind, field) for every placeholder value."""
    found = {}
    for key, value in payload.items():
        parsed = parse_placeholder(value)
        if parsed is not None:
            found[key] = parsed
    return found


def _lookup(
    results_by_kind: Mapping[Any, ExecutionResult],
    kind_text: str,
) -> ExecutionResult | None:
    kind = EntityKind.parse(kind_text)
    result = results_by_kind.get(kind)
    if result is None and kind != kind_text:
        result = results_by_kind.get(kind_text)
    return result


def resolve(
    operation: Operation,
    results_by_kind: Mapping[Any, ExecutionResult],
) -> Operation:
    """
    Return a copy of ``operation`` with resolvable placeholders substituted.

    The original operation and its payload dicts are never mutated.
    """
    payload = dict(operation.effective_payload)
    unresolved = []

    for key, (kind_text, field_name) in find_placeholders(payload).items():
        result = _lookup(results_by_kind, kind_text)
        if (
            result is not None
            and result.success
            and field_name == RESOLVABLE_FIELD
            and result.produced_identifier
        ):
            payload[key] = result.produced_identifier
        else:
            unresolved.append(payload[key])

    if unresolved:
        logger.debug(
            "Operation %s has unresolved placeholders: %s",
            operation.id, unresolved,
        )

    return operation.with_payload(payload)
