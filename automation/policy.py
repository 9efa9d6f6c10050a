"""
Automation — Approval/Automation Policy Engine

One policy per (verb, collection). Each sits in one of three levels:

    manual     — a human must approve every operation
    validated  — the operation runs after a cancellable countdown
    automated  — the operation runs immediately

Transitions:
  - set_approval_level: operator driven, accepted as given, except that
    delete policies clamp automated → validated.
  - record_execution(success=False) on an automated policy demotes it to
    manual at once. No grace period.
  - reset_all_to_manual: every policy back to manual.

Nothing ever leaves manual on its own. Keys outside the catalog behave
as manual until an operator sets them.

Usage:
    engine = PolicyEngine(store=PolicyStore("recordflow.db"))
    engine.set_approval_level(("POST", "core_company"), "automated")
    if engine.should_auto_execute("POST", "core_company"):
        ...
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from automation.catalog import default_policy_id, seed_catalog
from automation.countdown import (
    DEFAULT_COUNTDOWN_SECONDS,
    CancelledListener,
    Clock,
    Countdown,
    CountdownState,
    ElapsedListener,
    TickListener,
)
from automation.store import PolicyStore
from automation.types import ApprovalLevel, PolicyKey, WorkflowPolicy, clamp_level
from recordflow.types import Verb

logger = logging.getLogger("automation.policy")

DEFAULT_BULK_THRESHOLD = 5

KeyLike = PolicyKey | tuple | str


class PolicyEngine:
    """
    Approval/automation state machine over the policy catalog.

    Thread-safe: countdown ticks arrive on timer threads, everything
    else on the caller's thread.
    """

    def __init__(
        self,
        store: PolicyStore | None = None,
        catalog: Iterable[WorkflowPolicy] | None = None,
        clock: Clock | None = None,
        countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
        bulk_threshold: int = DEFAULT_BULK_THRESHOLD,
        now: Callable[[], datetime] | None = None,
        run_logger: Any = None,
    ):
        self._store = store
        self._lock = threading.RLock()
        self._policies: dict[PolicyKey, WorkflowPolicy] = {}
        self._now = now or (lambda: datetime.now(timezone.utc))
        self.bulk_threshold = bulk_threshold
        self.run_logger = run_logger
        self.countdown = Countdown(clock=clock, seconds=countdown_seconds)

        seed = list(catalog) if catalog is not None else seed_catalog()
        if store is not None:
            added = store.seed(seed)
            if added:
                logger.info("Seeded %d workflow policies", added)
            loaded = store.list_policies()
        else:
            loaded = seed

        for policy in loaded:
            clamped = clamp_level(policy.verb, policy.approval_level)
            if clamped is not policy.approval_level:
                logger.warning(
                    "Policy %s stored as %s; clamped to %s",
                    policy.id, policy.approval_level.value, clamped.value,
                )
                policy.approval_level = clamped
                self._persist(policy)
            self._policies[policy.key] = policy

    # ── Lookup ───────────────────────────────────────────────

    def _key(self, key: KeyLike) -> PolicyKey:
        if isinstance(key, PolicyKey):
            return key
        if isinstance(key, str):
            with self._lock:
                for policy in self._policies.values():
                    if policy.id == key:
                        return policy.key
            raise KeyError(f"Unknown policy id: {key!r}")
        verb, collection = key
        return PolicyKey.of(verb, collection)

    def get_policy(self, verb: Verb | str, collection: str) -> WorkflowPolicy:
        """
        The policy for (verb, collection). Keys outside the catalog get a
        transient manual policy that is not stored.
        """
        key = PolicyKey.of(verb, collection)
        with self._lock:
            policy = self._policies.get(key)
        if policy is not None:
            return policy
        return WorkflowPolicy(
            id=default_policy_id(key.verb, key.collection),
            verb=key.verb,
            collection=key.collection,
        )

    def get_policy_by_id(self, policy_id: str) -> WorkflowPolicy | None:
        with self._lock:
            for policy in self._policies.values():
                if policy.id == policy_id:
                    return policy
        return None

    def list_policies(self) -> list[WorkflowPolicy]:
        with self._lock:
            return list(self._policies.values())

    def _get_or_create(self, key: PolicyKey) -> WorkflowPolicy:
        policy = self._policies.get(key)
        if policy is None:
            policy = WorkflowPolicy(
                id=default_policy_id(key.verb, key.collection),
                verb=key.verb,
                collection=key.collection,
                name=f"{key.verb.value} {key.collection}",
            )
            self._policies[key] = policy
            logger.info("Created policy %s for key outside the catalog", policy.id)
        return policy

    def _persist(self, policy: WorkflowPolicy):
        if self._store is not None:
            self._store.save_policy(policy)

    def _changed(self, policy: WorkflowPolicy, old: ApprovalLevel, reason: str):
        if old is policy.approval_level:
            return
        if reason == "automatic_demotion":
            logger.warning(
                "Policy %s demoted %s → %s after failed automated execution",
                policy.id, old.value, policy.approval_level.value,
            )
        else:
            logger.info(
                "Policy %s level %s → %s (%s)",
                policy.id, old.value, policy.approval_level.value, reason,
            )
        if self.run_logger:
            self.run_logger.on_policy_change(
                policy.id, old.value, policy.approval_level.value, reason,
            )

    # ── Transitions ──────────────────────────────────────────

    def set_approval_level(self, key: KeyLike, level: ApprovalLevel | str) -> WorkflowPolicy:
        """Operator change. Deletes silently clamp automated → validated."""
        level = ApprovalLevel.parse(level)
        with self._lock:
            policy = self._get_or_create(self._key(key))
            old = policy.approval_level
            policy.approval_level = clamp_level(policy.verb, level)
            self._persist(policy)
        self._changed(policy, old, "operator")
        return policy

    def downgrade_to_manual(self, key: KeyLike) -> WorkflowPolicy:
        with self._lock:
            policy = self._get_or_create(self._key(key))
            old = policy.approval_level
            policy.approval_level = ApprovalLevel.MANUAL
            self._persist(policy)
        self._changed(policy, old, "automatic_demotion")
        return policy

    def record_execution(self, key: KeyLike, success: bool) -> WorkflowPolicy:
        """
        Count one completed execution against the policy and stamp
        ``last_executed_at``. A failure while automated demotes to manual.
        """
        with self._lock:
            policy = self._get_or_create(self._key(key))
            if success:
                policy.success_count += 1
            else:
                policy.failure_count += 1
            policy.last_executed_at = self._now()
            self._persist(policy)
            demote = not success and policy.approval_level is ApprovalLevel.AUTOMATED

        if demote:
            self.downgrade_to_manual(policy.key)
        return policy

    def reset_all_to_manual(self) -> int:
        """Force every policy to manual. Returns how many changed."""
        with self._lock:
            changed = [
                (p, p.approval_level) for p in self._policies.values()
                if p.approval_level is not ApprovalLevel.MANUAL
            ]
            for policy in self._policies.values():
                policy.approval_level = ApprovalLevel.MANUAL
            if self._store is not None:
                self._store.save_all(self._policies.values())
        for policy, old in changed:
            self._changed(policy, old, "reset")
        logger.info("All workflow policies reset to manual (%d changed)", len(changed))
        return len(changed)

    # ── Decisions ────────────────────────────────────────────

    def should_auto_execute(self, verb: Verb | str, collection: str) -> bool:
        return self.get_policy(verb, collection).approval_level is ApprovalLevel.AUTOMATED

    def should_show_countdown(self, verb: Verb | str, collection: str) -> bool:
        return self.get_policy(verb, collection).approval_level is ApprovalLevel.VALIDATED

    def can_be_automated(self, verb: Verb | str, is_bulk: bool = False, record_count: int = 1) -> bool:
        """
        Safeguard independent of the stored level: deletes never run
        unattended, and bulk changes above the threshold need at least a
        countdown.
        """
        if Verb.parse(verb) is Verb.DELETE:
            return False
        if is_bulk and record_count > self.bulk_threshold:
            return False
        return True

    # ── Countdown ────────────────────────────────────────────

    @property
    def countdown_state(self) -> CountdownState:
        return self.countdown.state

    def start_countdown(self, key: KeyLike) -> CountdownState:
        return self.countdown.start(self._key(key))

    def decrement_countdown(self) -> CountdownState:
        return self.countdown.decrement()

    def cancel_countdown(self) -> CountdownState:
        return self.countdown.cancel()

    def subscribe_tick(self, fn: TickListener) -> Callable[[], None]:
        return self.countdown.subscribe_tick(fn)

    def subscribe_elapsed(self, fn: ElapsedListener) -> Callable[[], None]:
        return self.countdown.subscribe_elapsed(fn)

    def subscribe_cancelled(self, fn: CancelledListener) -> Callable[[], None]:
        return self.countdown.subscribe_cancelled(fn)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            levels: dict[str, int] = {}
            for p in self._policies.values():
                levels[p.approval_level.value] = levels.get(p.approval_level.value, 0) + 1
            return {
                "policies": len(self._policies),
                "level_distribution": levels,
                "successes": sum(p.success_count for p in self._policies.values()),
                "failures": sum(p.failure_count for p in self._policies.values()),
            }
