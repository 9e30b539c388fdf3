"""
ldapaudit Execution Engine

Components:
- runner: TestRunner with sequential and bounded-parallel policies
- permits: PermitPool admission control
- progress: Progress sink delivery (direct or via a dispatcher thread)
"""

from ldapaudit.engine.permits import PermitPool
from ldapaudit.engine.progress import ProgressDispatcher, ProgressSink, deliver_progress
from ldapaudit.engine.runner import RunOutcome, TestRunner, run_audit

__all__ = [
    "TestRunner",
    "RunOutcome",
    "run_audit",
    "PermitPool",
    "ProgressDispatcher",
    "ProgressSink",
    "deliver_progress",
]
