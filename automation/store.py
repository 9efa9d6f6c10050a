"""
Automation — Policy Store

SQLite-backed persistence for workflow policies, so operator-chosen
approval levels and execution statistics survive restarts.

``last_executed_at`` is a timezone-aware UTC datetime everywhere in the
code; only ``policy_to_row`` / ``row_to_policy`` ever see the stored
epoch-seconds REAL.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from automation.types import ApprovalLevel, WorkflowPolicy
from recordflow.types import Verb


# ─── Serialization boundary ─────────────────────────────────────────

def to_epoch(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def policy_to_row(policy: WorkflowPolicy) -> tuple[Any, ...]:
    return (
        policy.id,
        policy.verb.value,
        policy.collection,
        policy.name,
        policy.description,
        policy.approval_level.value,
        policy.success_count,
        policy.failure_count,
        to_epoch(policy.last_executed_at),
    )


def row_to_policy(row: sqlite3.Row) -> WorkflowPolicy:
    return WorkflowPolicy(
        id=row["policy_id"],
        verb=Verb(row["verb"]),
        collection=row["collection"],
        name=row["name"] or "",
        description=row["description"] or "",
        approval_level=ApprovalLevel.parse(row["approval_level"]),
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        last_executed_at=from_epoch(row["last_executed_at"]),
    )


_UPSERT = """
    INSERT INTO workflow_policies
    (policy_id, verb, collection, name, description, approval_level,
     success_count, failure_count, last_executed_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(policy_id) DO UPDATE SET
        name = excluded.name,
        description = excluded.description,
        approval_level = excluded.approval_level,
        success_count = excluded.success_count,
        failure_count = excluded.failure_count,
        last_executed_at = excluded.last_executed_at
"""


# ─── Store ──────────────────────────────────────────────────────────

class PolicyStore:
    """SQLite-backed store for workflow policies."""

    def __init__(self, db_path: str | Path = "recordflow.db"):
        self.db_path = str(db_path)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if self.db_path != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self._create_tables()

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS workflow_policies (
                policy_id TEXT PRIMARY KEY,
                verb TEXT NOT NULL,
                collection TEXT NOT NULL,
                name TEXT DEFAULT '',
                description TEXT DEFAULT '',
                approval_level TEXT NOT NULL DEFAULT 'manual',
                success_count INTEGER NOT NULL DEFAULT 0,
                failure_count INTEGER NOT NULL DEFAULT 0,
                last_executed_at REAL,
                UNIQUE (verb, collection)
            );
        """)
        self.conn.commit()

    def seed(self, policies: Iterable[WorkflowPolicy]) -> int:
        """Insert catalog entries that aren't stored yet. Returns how many were added."""
        added = 0
        for policy in policies:
            cur = self.conn.execute("""
                INSERT OR IGNORE INTO workflow_policies
                (policy_id, verb, collection, name, description, approval_level,
                 success_count, failure_count, last_executed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, policy_to_row(policy))
            added += cur.rowcount
        self.conn.commit()
        return added

    def save_policy(self, policy: WorkflowPolicy):
        self.conn.execute(_UPSERT, policy_to_row(policy))
        self.conn.commit()

    def save_all(self, policies: Iterable[WorkflowPolicy]):
        rows = [policy_to_row(p) for p in policies]
        with self.conn:
            self.conn.executemany(_UPSERT, rows)

    def get_policy(self, policy_id: str) -> WorkflowPolicy | None:
        row = self.conn.execute(
            "SELECT * FROM workflow_policies WHERE policy_id = ?", (policy_id,)
        ).fetchone()
        if not row:
            return None
        return row_to_policy(row)

    def list_policies(self) -> list[WorkflowPolicy]:
        rows = self.conn.execute(
            "SELECT * FROM workflow_policies ORDER BY rowid"
        ).fetchall()
        return [row_to_policy(r) for r in rows]

    def close(self):
        self.conn.close()
