"""
ldapaudit Command Line Interface

Usage:
    ldapaudit --domain example.com --dc dc1.example.com -u auditor
    ldapaudit -D example.com --auth-types Kerberos,NTLM --ssl --parallel 4
    python -m ldapaudit -D example.com --output-format json --no-pause

Exit codes:
    0 - run completed (whatever the pass/fail mix)
    1 - run cancelled or results could not be exported
    2 - configuration error
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import re
import signal
import sys
import threading
from typing import Any, Callable, List, Mapping, Optional, Sequence, TextIO

import attrs
import structlog
from returns.result import Failure, Success

from ldapaudit import __version__
from ldapaudit.ad.discovery import discover_domain_controllers
from ldapaudit.ad.policy import read_client_signing_policy
from ldapaudit.core.config import DEFAULT_AUTH_TYPES, OUTPUT_FORMATS, AuditConfig
from ldapaudit.core.exceptions import ConfigurationError, ExportError
from ldapaudit.core.types import AuthMechanism, TestProgress, TestResult
from ldapaudit.engine.runner import TestRunner
from ldapaudit.export.exporters import export_results
from ldapaudit.matrix.builder import build_matrix
from ldapaudit.probe.ldap_probe import create_ldap_probe

logger = structlog.get_logger()

PASSWORD_ENV_VAR = "LDAPAUDIT_PASSWORD"

EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


# =============================================================================
# ARGUMENT PARSING
# =============================================================================


def parse_auth_types(values: Sequence[str]) -> List[AuthMechanism]:
    """
    Parse mechanism names separated by commas and/or whitespace.

    Example:
        ["Kerberos,NTLM", "Basic"] -> [KERBEROS, NTLM, BASIC]
    """
    mechanisms = []
    for value in values:
        for token in re.split(r"[,\s]+", value):
            if token:
                mechanisms.append(AuthMechanism.parse(token))
    return mechanisms


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ldapaudit",
        description="Audit LDAP authentication, signing and sealing against a domain controller.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    target = parser.add_argument_group("target")
    target.add_argument(
        "--dc", "--domain-controller",
        dest="domain_controller",
        help="Domain controller hostname or IP (discovered through DNS when omitted)",
    )
    target.add_argument("--domain", "-D", required=True, help="AD domain name")
    target.add_argument("--ldap-port", type=int, default=389, help="LDAP port (default: 389)")
    target.add_argument("--ldaps-port", type=int, default=636, help="LDAPS port (default: 636)")

    creds = parser.add_argument_group("credentials")
    creds.add_argument("--user", "-u", dest="username", help="Bind user (default: current user context)")
    creds.add_argument(
        "--password", "-p",
        help=f"Bind password (falls back to ${PASSWORD_ENV_VAR}, then a prompt)",
    )

    matrix = parser.add_argument_group("test matrix")
    matrix.add_argument(
        "--auth-types",
        nargs="+",
        default=[",".join(m.value for m in DEFAULT_AUTH_TYPES)],
        metavar="TYPES",
        help="Mechanisms to test: Kerberos, NTLM, Negotiate, Basic, Anonymous",
    )
    matrix.add_argument("--ssl", dest="use_ssl", action="store_true", help="Probe over LDAPS")
    matrix.add_argument("--require-signing", action="store_true", help="Force signing when not dual-tested")
    matrix.add_argument("--require-sealing", action="store_true", help="Force sealing when not dual-tested")
    matrix.add_argument("--test-signing", dest="test_signing", action="store_true", default=True,
                        help="Test with and without signing (default)")
    matrix.add_argument("--no-test-signing", dest="test_signing", action="store_false")
    matrix.add_argument("--test-sealing", dest="test_sealing", action="store_true", default=True,
                        help="Test with and without sealing (default)")
    matrix.add_argument("--no-test-sealing", dest="test_sealing", action="store_false")

    run = parser.add_argument_group("execution")
    run.add_argument("--pause", type=float, default=0.0, metavar="SECONDS",
                     help="Pause between sequential tests")
    run.add_argument("--no-pause", action="store_true",
                     help="Run non-interactively (never prompt)")
    run.add_argument("--parallel", type=int, default=1, metavar="N",
                     help="Number of tests to run in parallel")
    run.add_argument("--timeout", type=float, default=30.0, metavar="SECONDS",
                     help="Per-test timeout (default: 30)")
    run.add_argument("--insecure-tls", action="store_true",
                     help="Skip LDAPS certificate validation")

    output = parser.add_argument_group("output")
    output.add_argument("--output-format", choices=OUTPUT_FORMATS, default="csv")
    output.add_argument("--output-path", help="Export path (default: timestamped file name)")
    output.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    return parser


def config_from_args(
    args: argparse.Namespace,
    environ: Mapping[str, str] = os.environ,
    prompt: Callable[[str], str] = getpass.getpass,
    discover: Optional[Callable[[str], List[str]]] = None,
) -> AuditConfig:
    """
    Build the audit configuration from parsed arguments.

    Raises:
        ConfigurationError: Invalid values or no domain controller found
    """
    interactive = not args.no_pause

    password = args.password or environ.get(PASSWORD_ENV_VAR)
    if args.username and not password and interactive:
        password = prompt(f"Enter password for {args.username}: ")

    domain_controller = args.domain_controller
    if not domain_controller:
        found = (discover or discover_domain_controllers)(args.domain)
        if not found:
            raise ConfigurationError(
                f"No domain controller given and none found in DNS for {args.domain}"
            )
        domain_controller = found[0]
        logger.info("domain_controller_discovered", domain=args.domain, dc=domain_controller)

    return AuditConfig(
        domain_controller=domain_controller,
        domain=args.domain,
        username=args.username,
        password=password or None,
        ldap_port=args.ldap_port,
        ldaps_port=args.ldaps_port,
        auth_types=parse_auth_types(args.auth_types),
        use_ssl=args.use_ssl,
        require_signing=args.require_signing,
        require_sealing=args.require_sealing,
        test_signing=args.test_signing,
        test_sealing=args.test_sealing,
        interactive=interactive,
        pause_between_tests=args.pause,
        parallel_tests=args.parallel,
        test_timeout=args.timeout,
        output_format=args.output_format,
        output_path=args.output_path,
        verbose=args.verbose,
        insecure_tls=args.insecure_tls,
    )


# =============================================================================
# OUTPUT
# =============================================================================


def configure_logging(verbose: bool = False, stream: TextIO = sys.stderr) -> None:
    """Configure structlog for console output."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=stream.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=False,
    )


@attrs.define
class ProgressPrinter:
    """
    Progress sink for the console.

    Verbose mode prints one line per finished test; otherwise a single
    line is rewritten in place.
    """

    verbose: bool = False
    stream: TextIO = sys.stdout
    _printed: bool = False

    def __call__(self, progress: TestProgress) -> None:
        status = progress.last_result.status if progress.last_result else "Running"
        if self.verbose:
            self.stream.write(
                f"Progress: {progress.completed}/{progress.total} "
                f"({progress.percent_complete:.1f}%) - {progress.current_test_name}: {status}\n"
            )
        else:
            self.stream.write(
                f"\rProgress: {progress.completed}/{progress.total} "
                f"({progress.percent_complete:.1f}%)"
            )
            self._printed = True
        self.stream.flush()

    def finish(self) -> None:
        if self._printed:
            self.stream.write("\n")
            self._printed = False


def log_startup(config: AuditConfig) -> None:
    logger.info(
        "ldap_audit_starting",
        dc=config.domain_controller,
        domain=config.domain,
        user=config.username or "Current User Context",
        auth_types=", ".join(m.value for m in config.auth_types),
        use_ssl=config.use_ssl,
        port=config.port,
        parallel_tests=config.parallel_tests,
    )


def print_summary(results: Sequence[TestResult], stream: TextIO = sys.stdout) -> None:
    """Print totals and the failed tests with their errors."""
    passed = sum(1 for r in results if r.success)
    failed = len(results) - passed

    stream.write("\n=== TEST SUMMARY ===\n")
    stream.write(f"Total Tests: {len(results)}\n")
    stream.write(f"Passed: {passed}\n")
    stream.write(f"Failed: {failed}\n")

    if failed:
        stream.write("\nFailed Tests:\n")
        for result in results:
            if not result.success:
                stream.write(f" - {result.test_name}: {result.error}\n")


def print_client_policy(stream: TextIO = sys.stdout) -> None:
    stream.write("\n=== CURRENT LDAP CLIENT POLICIES ===\n")
    policy = read_client_signing_policy()
    if isinstance(policy, Success):
        stream.write(f"LDAP Client Integrity: {policy.unwrap()}\n")
    else:
        stream.write(f"LDAP Client Integrity: {policy.failure()}\n")


# =============================================================================
# ENTRY POINT
# =============================================================================


def run(config: AuditConfig, cancel: threading.Event, stream: TextIO = sys.stdout) -> int:
    """Run the audit described by `config` and export the results."""
    log_startup(config)

    cases = build_matrix(config)
    logger.info("test_matrix_generated", test_count=len(cases))

    printer = ProgressPrinter(verbose=config.verbose, stream=stream)
    runner = TestRunner(probe=create_ldap_probe(insecure_tls=config.insecure_tls))
    outcome = runner.run_tests(cases, config, progress=printer, cancel=cancel)
    printer.finish()

    exit_code = EXIT_OK
    if isinstance(outcome, Failure):
        cancelled = outcome.failure()
        logger.warning(
            "testing_cancelled_by_user",
            completed=cancelled.completed,
            total=cancelled.total,
            not_run=len(cancelled.pending),
        )
        results = cancelled.results
        exit_code = EXIT_CANCELLED
    else:
        results = outcome.unwrap()

    print_summary(results, stream)

    try:
        output_path = export_results(results, config.output_format, config.output_path or None)
    except ExportError as e:
        logger.error("results_export_failed", error=e.message)
        return EXIT_FAILURE
    logger.info("results_exported", filepath=output_path, count=len(results))

    print_client_policy(stream)

    if exit_code == EXIT_OK:
        logger.info("testing_completed")
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        logger.error("configuration_error", error=e.message)
        return EXIT_CONFIG_ERROR

    cancel = threading.Event()

    def _on_interrupt(signum: int, frame: Any) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("cancellation_requested")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        return run(config, cancel)
    finally:
        signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    sys.exit(main())
