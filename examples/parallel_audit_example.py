#!/usr/bin/env python3
"""
Parallel LDAP Audit Example

Demonstrates how to drive ldapaudit from Python instead of the CLI.

Features:
1. Domain controller discovery through DNS SRV records
2. Test matrix generation
3. Bounded-parallel execution with a progress callback
4. Cancellation with Ctrl+C, keeping partial results
5. CSV and JSON export

Usage:
    LDAPAUDIT_PASSWORD=secret python parallel_audit_example.py example.com auditor
"""

import os
import signal
import sys
import threading

from returns.result import Failure

from ldapaudit import AuditConfig, LdapProbe, TestProgress, TestRunner, build_matrix
from ldapaudit.ad import discover_domain_controllers, read_client_signing_policy
from ldapaudit.export import default_output_path, get_exporter


def print_progress(progress: TestProgress) -> None:
    status = progress.last_result.status if progress.last_result else "..."
    print(f"[{progress.completed:>3}/{progress.total}] {status} {progress.current_test_name}")


def main() -> int:
    if len(sys.argv) < 2:
        print(__doc__)
        return 2

    domain = sys.argv[1]
    username = sys.argv[2] if len(sys.argv) > 2 else None

    print("=" * 60)
    print("Discovering domain controllers")
    print("=" * 60)

    dcs = discover_domain_controllers(domain)
    if not dcs:
        print(f"No domain controllers found for {domain}")
        return 2
    for dc in dcs:
        print(f"  {dc}")

    config = AuditConfig(
        domain_controller=dcs[0],
        domain=domain,
        username=username,
        password=os.environ.get("LDAPAUDIT_PASSWORD"),
        auth_types=["Kerberos", "NTLM", "Negotiate", "Basic"],
        parallel_tests=4,
        test_timeout=10.0,
    )

    cases = build_matrix(config)
    print(f"\nRunning {len(cases)} tests against {config.domain_controller}:{config.port}\n")

    cancel = threading.Event()
    signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())

    runner = TestRunner(probe=LdapProbe())
    outcome = runner.run_tests(cases, config, progress=print_progress, cancel=cancel)

    if isinstance(outcome, Failure):
        cancelled = outcome.failure()
        print(f"\n{cancelled}")
        results = cancelled.results
    else:
        results = outcome.unwrap()

    accepted = [r for r in results if r.success]
    print(f"\nServer accepted {len(accepted)} of {len(results)} combinations:")
    for result in accepted:
        print(f"  - {result.test_name}")

    for output_format in ("csv", "json"):
        path = get_exporter(output_format).export(results, default_output_path(output_format))
        print(f"Exported {output_format.upper()}: {path}")

    policy = read_client_signing_policy()
    if isinstance(policy, Failure):
        print(f"\nLocal LDAP client signing policy: unavailable ({policy.failure()})")
    else:
        print(f"\nLocal LDAP client signing policy: {policy.unwrap()}")

    return 1 if isinstance(outcome, Failure) else 0


if __name__ == "__main__":
    sys.exit(main())
