"""
ldapaudit - LDAP Security Posture Auditor for Active Directory

Probes a domain controller with every combination of authentication
mechanism, signing and sealing requested by the configuration, and
reports which combinations the server accepts.

Supported Mechanisms:
- Kerberos (SASL GSSAPI)
- NTLM
- Negotiate (Kerberos, falling back to NTLM)
- Basic (simple bind)
- Anonymous

Example Usage:
    from ldapaudit import AuditConfig, LdapProbe, run_audit

    config = AuditConfig(
        domain_controller="dc1.example.com",
        domain="example.com",
        username="auditor",
        password="secret",
        auth_types=["Kerberos", "NTLM"],
        parallel_tests=4,
    )
    outcome = run_audit(config, LdapProbe())

    for result in outcome.value_or([]):
        print(f"{result.status} {result.test_name}: {result.error or result.details}")
"""

from ldapaudit.core.config import AuditConfig
from ldapaudit.core.types import AuthMechanism, RunCancelled, TestCase, TestProgress, TestResult
from ldapaudit.engine.runner import TestRunner, run_audit
from ldapaudit.matrix.builder import build_matrix
from ldapaudit.probe.ldap_probe import LdapProbe

__version__ = "0.1.0"

__all__ = [
    # Main API
    "AuditConfig",
    "build_matrix",
    "TestRunner",
    "run_audit",
    "LdapProbe",
    # Types
    "AuthMechanism",
    "TestCase",
    "TestResult",
    "TestProgress",
    "RunCancelled",
    # Metadata
    "__version__",
]
