"""
Automation - Approval/Automation Policy Engine

Decides per (verb, collection) whether an operation needs a human,
runs after a cancellable countdown, or runs immediately, and demotes
automated policies the moment an automated execution fails.
"""

from automation.types import ApprovalLevel, PolicyKey, WorkflowPolicy, UnknownApprovalLevel
from automation.countdown import Countdown, CountdownState, ThreadingClock, VirtualClock
from automation.store import PolicyStore
from automation.policy import PolicyEngine
from automation.runner import GatedRunner, GateDecision, RunOutcome
