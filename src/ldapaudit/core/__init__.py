"""
ldapaudit Core Module

Foundational types shared by every other module.

Components:
- types: Test cases, probe outcomes, results and progress snapshots
- config: Audit run configuration
- exceptions: Custom exception types
"""

from ldapaudit.core.types import (
    AuthMechanism,
    TestCase,
    ProbeOutcome,
    TestResult,
    TestProgress,
    RunCancelled,
)
from ldapaudit.core.config import AuditConfig
from ldapaudit.core.exceptions import (
    LdapAuditError,
    ConfigurationError,
    ProbeError,
    ExportError,
)

__all__ = [
    # Types
    "AuthMechanism",
    "TestCase",
    "ProbeOutcome",
    "TestResult",
    "TestProgress",
    "RunCancelled",
    # Configuration
    "AuditConfig",
    # Exceptions
    "LdapAuditError",
    "ConfigurationError",
    "ProbeError",
    "ExportError",
]
