"""
ldapaudit Execution Engine

Runs a test matrix against a probe and returns results aligned with the
input cases.

Scheduling policies (chosen once per run from `parallel_tests`):
1. Sequential (parallel_tests <= 1): strict input order, optional pause
   between probes, progress delivered synchronously
2. Bounded-parallel (parallel_tests > 1): a permit pool admits at most N
   probes at a time, progress delivered in completion order

Ordering contract:
- in a completed run result[i] corresponds to cases[i]; in parallel runs each task
  carries its original index and writes into a pre-sized slot list
- progress snapshots carry a monotonically increasing completed count

Failure handling:
- A probe exception becomes one failed TestResult, never a batch abort
- Cancellation is returned as Failure(RunCancelled), never raised. A run
  whose cancel signal is set by the time it ends counts as cancelled, even
  if every case produced a result
- A probe outcome marked `interrupted` is not a result: the case is
  reported as pending in RunCancelled
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import attrs
import structlog
from returns.result import Failure, Result, Success

from ldapaudit.core.config import AuditConfig
from ldapaudit.core.types import RunCancelled, TestCase, TestProgress, TestResult
from ldapaudit.engine.permits import PermitPool
from ldapaudit.engine.progress import ProgressDispatcher, ProgressSink, deliver_progress
from ldapaudit.matrix.builder import build_matrix
from ldapaudit.probe.base import Probe

logger = structlog.get_logger()

RunOutcome = Result[List[TestResult], RunCancelled]


@attrs.define
class TestRunner:
    """
    Execute test cases against a probe.

    Example:
        runner = TestRunner(probe=LdapProbe())
        outcome = runner.run_tests(cases, config, progress=print, cancel=stop_event)

        if isinstance(outcome, Success):
            results = outcome.unwrap()
        else:
            partial = outcome.failure().results
    """

    __test__ = False

    probe: Probe

    # How often the admission loop re-checks the cancel signal
    admission_poll_interval: float = 0.05

    # Pool used by the last parallel run
    _permit_pool: Optional[PermitPool] = None
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def permit_pool(self) -> Optional[PermitPool]:
        """Permit pool of the most recent parallel run (None before one)."""
        return self._permit_pool

    def run_tests(
        self,
        cases: Sequence[TestCase],
        config: AuditConfig,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RunOutcome:
        """
        Run every case and collect the results in input order.

        Args:
            cases: Ordered test cases (usually from build_matrix)
            config: Audit configuration (parallelism, pause)
            progress: Optional sink for progress snapshots
            cancel: Shared cancellation signal

        Returns:
            Success(results) with one result per case, or
            Failure(RunCancelled) holding the results gathered before the stop
        """
        cases = list(cases)
        if cancel is None:
            cancel = threading.Event()

        self._logger.info(
            "test_run_started",
            total=len(cases),
            policy="parallel" if config.is_parallel else "sequential",
            parallel_tests=config.parallel_tests,
        )

        if config.is_parallel:
            outcome = self._run_parallel(cases, config.parallel_tests, progress, cancel)
        else:
            outcome = self._run_sequential(
                cases, config.pause_between_tests, progress, cancel
            )

        if isinstance(outcome, Failure):
            cancelled = outcome.failure()
            self._logger.warning(
                "test_run_cancelled",
                completed=cancelled.completed,
                total=cancelled.total,
            )
        else:
            results = outcome.unwrap()
            passed = sum(1 for r in results if r.success)
            self._logger.info(
                "test_run_completed",
                total=len(results),
                passed=passed,
                failed=len(results) - passed,
            )

        return outcome

    # =========================================================================
    # SCHEDULING POLICIES
    # =========================================================================

    def _run_sequential(
        self,
        cases: List[TestCase],
        pause_seconds: float,
        progress: Optional[ProgressSink],
        cancel: threading.Event,
    ) -> RunOutcome:
        total = len(cases)
        results: List[TestResult] = []

        for index, case in enumerate(cases):
            if cancel.is_set():
                return self._cancelled(cases, results)

            result = self._execute(case, cancel)
            if result is None:
                return self._cancelled(cases, results)
            results.append(result)

            deliver_progress(
                progress,
                TestProgress(
                    completed=index + 1,
                    total=total,
                    current_test_name=case.name,
                    last_result=result,
                ),
                self._logger,
            )

            if pause_seconds > 0 and index < total - 1:
                self._logger.debug("test_pause", seconds=pause_seconds)
                if cancel.wait(pause_seconds):
                    return self._cancelled(cases, results)

        if cancel.is_set():
            return self._cancelled(cases, results)
        return Success(results)

    def _run_parallel(
        self,
        cases: List[TestCase],
        parallel_tests: int,
        progress: Optional[ProgressSink],
        cancel: threading.Event,
    ) -> RunOutcome:
        total = len(cases)
        slots: List[Optional[TestResult]] = [None] * total
        lock = threading.Lock()
        completed = 0

        pool = PermitPool(size=parallel_tests)
        self._permit_pool = pool

        def run_one(index: int, case: TestCase, dispatcher: ProgressDispatcher) -> None:
            nonlocal completed
            try:
                if cancel.is_set():
                    self._logger.debug("test_skipped_cancelled", test=case.name)
                    return

                result = self._execute(case, cancel)
                if result is None:
                    return

                with lock:
                    slots[index] = result
                    completed += 1
                    dispatcher.submit(
                        TestProgress(
                            completed=completed,
                            total=total,
                            current_test_name=case.name,
                            last_result=result,
                        )
                    )
            finally:
                pool.release()

        with ProgressDispatcher(sink=progress) as dispatcher:
            with ThreadPoolExecutor(
                max_workers=parallel_tests,
                thread_name_prefix="ldapaudit-probe",
            ) as executor:
                for index, case in enumerate(cases):
                    if not self._admit(pool, cancel):
                        self._logger.debug("admission_stopped", admitted=index, total=total)
                        break
                    try:
                        executor.submit(run_one, index, case, dispatcher)
                    except BaseException:
                        pool.release()
                        raise

        # Every worker has joined; slots are already in input order.
        results = [r for r in slots if r is not None]
        if len(results) < total or cancel.is_set():
            return self._cancelled(cases, results)
        return Success(results)

    @staticmethod
    def _cancelled(cases: List[TestCase], results: List[TestResult]) -> RunOutcome:
        done = {id(r.test_case) for r in results}
        pending = [c.name for c in cases if id(c) not in done]
        return Failure(RunCancelled(results=results, total=len(cases), pending=pending))

    def _admit(self, pool: PermitPool, cancel: threading.Event) -> bool:
        """Wait for a permit while watching the cancel signal."""
        while not cancel.is_set():
            if pool.acquire(timeout=self.admission_poll_interval):
                if cancel.is_set():
                    pool.release()
                    return False
                return True
        return False

    # =========================================================================
    # SINGLE CASE
    # =========================================================================

    def _execute(self, case: TestCase, cancel: threading.Event) -> Optional[TestResult]:
        """
        Probe one case, converting any exception into a failed result.

        Returns None when the probe was interrupted by cancellation.
        """
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        self._logger.debug("test_started", test=case.name)

        try:
            outcome = self.probe.probe(case, cancel)
        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            self._logger.error(
                "test_execution_error",
                test=case.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return TestResult(
                test_name=case.name,
                success=False,
                error=f"Test execution failed: {e}",
                timestamp=started_at,
                duration_ms=duration_ms,
                test_case=case,
            )

        if outcome.interrupted:
            self._logger.info("test_interrupted", test=case.name, error=outcome.error)
            return None

        duration_ms = (time.perf_counter() - start) * 1000
        self._logger.debug(
            "test_finished",
            test=case.name,
            success=outcome.success,
            duration_ms=round(duration_ms, 1),
        )

        return TestResult(
            test_name=case.name,
            success=outcome.success,
            details=outcome.details,
            error=outcome.error,
            timestamp=started_at,
            duration_ms=duration_ms,
            test_case=case,
        )


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


def run_audit(
    config: AuditConfig,
    probe: Probe,
    progress: Optional[ProgressSink] = None,
    cancel: Optional[threading.Event] = None,
) -> RunOutcome:
    """
    Build the matrix for `config` and run it.

    Args:
        config: Audit configuration
        probe: Probe used for every case
        progress: Optional progress sink
        cancel: Shared cancellation signal

    Returns:
        Same as TestRunner.run_tests
    """
    cases = build_matrix(config)
    logger.info("test_matrix_generated", test_count=len(cases))
    return TestRunner(probe=probe).run_tests(cases, config, progress, cancel)
