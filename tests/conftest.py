"""
Pytest configuration and shared fixtures for ldapaudit tests.
"""

import random
import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from ldapaudit.core.config import AuditConfig
from ldapaudit.core.types import AuthMechanism, ProbeOutcome, TestCase, TestProgress
from ldapaudit.probe.base import Probe


# =============================================================================
# CONFIGURATION FIXTURES
# =============================================================================


@pytest.fixture
def audit_config() -> AuditConfig:
    """Default sequential configuration (3 mechanisms x 2 x 2 = 12 cases)."""
    return AuditConfig(
        domain_controller="dc1.example.com",
        domain="example.com",
        username="auditor",
        password="S3cret!",
    )


@pytest.fixture
def parallel_config() -> AuditConfig:
    """Bounded-parallel configuration with four permits."""
    return AuditConfig(
        domain_controller="dc1.example.com",
        domain="example.com",
        parallel_tests=4,
    )


@pytest.fixture
def make_cases() -> Callable[[int], List[TestCase]]:
    """Factory for n distinct test cases."""

    def _make(n: int) -> List[TestCase]:
        return [
            TestCase(
                name=f"case-{i}",
                server="dc1.example.com",
                port=389,
                mechanism=AuthMechanism.NTLM,
            )
            for i in range(n)
        ]

    return _make


# =============================================================================
# FAKE PROBES
# =============================================================================


class RecordingProbe(Probe):
    """
    Probe that succeeds after an optional delay and records what it saw.

    Tracks the highest number of concurrent probe calls.
    """

    def __init__(
        self,
        delay: Callable[[TestCase], float] = lambda case: 0.0,
        fail: Callable[[TestCase], bool] = lambda case: False,
        raise_for: Callable[[TestCase], bool] = lambda case: False,
        on_probe: Optional[Callable[[TestCase], None]] = None,
    ) -> None:
        self.delay = delay
        self.fail = fail
        self.raise_for = raise_for
        self.on_probe = on_probe
        self.calls: List[str] = []
        self.start_times: Dict[str, float] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def probe(self, case: TestCase, cancel: threading.Event) -> ProbeOutcome:
        with self._lock:
            self.calls.append(case.name)
            self.start_times[case.name] = time.monotonic()
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.on_probe is not None:
                self.on_probe(case)
            seconds = self.delay(case)
            if seconds:
                time.sleep(seconds)
            if self.raise_for(case):
                raise RuntimeError(f"boom in {case.name}")
            if self.fail(case):
                return ProbeOutcome.failed(f"rejected {case.name}")
            return ProbeOutcome.passed(f"ok {case.name}")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def probe_factory() -> Callable[..., RecordingProbe]:
    """The RecordingProbe class, for tests that need custom behavior."""
    return RecordingProbe


@pytest.fixture
def recording_probe() -> RecordingProbe:
    """Probe that succeeds immediately."""
    return RecordingProbe()


@pytest.fixture
def jittery_probe() -> RecordingProbe:
    """Probe with random delays up to 30ms."""
    rng = random.Random(1234)
    delays: Dict[str, float] = {}
    lock = threading.Lock()

    def delay(case: TestCase) -> float:
        with lock:
            if case.name not in delays:
                delays[case.name] = rng.uniform(0.0, 0.03)
            return delays[case.name]

    return RecordingProbe(delay=delay)


class ProgressCollector:
    """Thread-safe progress sink that keeps every snapshot."""

    def __init__(self) -> None:
        self.snapshots: List[TestProgress] = []
        self._lock = threading.Lock()

    def __call__(self, progress: TestProgress) -> None:
        with self._lock:
            self.snapshots.append(progress)

    @property
    def counts(self) -> List[int]:
        return [p.completed for p in self.snapshots]


@pytest.fixture
def progress_collector() -> ProgressCollector:
    return ProgressCollector()


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring real AD environment"
    )
