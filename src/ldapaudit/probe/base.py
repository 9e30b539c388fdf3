"""
ldapaudit Probe Contract

A probe executes one authenticated connection attempt for a test case.

The engine treats probes as black boxes: it never inspects why a probe
failed and never enforces the case timeout itself. Honoring
`TestCase.timeout_seconds` is the probe's job, on a best-effort basis.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod

from ldapaudit.core.types import ProbeOutcome, TestCase


class Probe(ABC):
    """Abstract base for connection probes."""

    @abstractmethod
    def probe(self, case: TestCase, cancel: threading.Event) -> ProbeOutcome:
        """
        Run one connection attempt.

        Args:
            case: Test case describing the attempt
            cancel: Shared cancellation signal; checked at safe points

        Returns:
            ProbeOutcome with success flag and diagnostic text

        Implementations may raise; the engine records any exception as a
        failed result.
        """
