"""
ldapaudit Core Types

Data types shared by the matrix builder, the execution engine, the probes
and the exporters.

Design Principles:
- Immutable: cases, outcomes, results and progress snapshots are frozen
- Correlatable: every result keeps a reference to the case it came from
- Secret-safe: passwords never appear in repr() or exported dictionaries
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import attrs
from attrs import field, validators

from ldapaudit.core.exceptions import ConfigurationError


# =============================================================================
# ENUMS
# =============================================================================


class AuthMechanism(Enum):
    """Authentication mechanism used for the LDAP bind."""

    KERBEROS = "Kerberos"
    NTLM = "NTLM"
    NEGOTIATE = "Negotiate"  # SPNEGO - tries Kerberos first, falls back to NTLM
    BASIC = "Basic"
    ANONYMOUS = "Anonymous"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def needs_credentials(self) -> bool:
        """Return True if the mechanism cannot bind without a password."""
        return self is AuthMechanism.BASIC

    @property
    def can_protect_session(self) -> bool:
        """Return True if the mechanism can negotiate signing or sealing."""
        return self in (
            AuthMechanism.KERBEROS,
            AuthMechanism.NTLM,
            AuthMechanism.NEGOTIATE,
        )

    @classmethod
    def parse(cls, text: str) -> AuthMechanism:
        """
        Parse a mechanism from its display name, ignoring case.

        Examples:
            "kerberos" -> AuthMechanism.KERBEROS
            "NTLM" -> AuthMechanism.NTLM
        """
        wanted = text.strip().lower()
        for mechanism in cls:
            if mechanism.value.lower() == wanted:
                return mechanism
        known = ", ".join(m.value for m in cls)
        raise ConfigurationError(
            f"Unknown authentication type: {text!r} (expected one of {known})"
        )

    def __str__(self) -> str:
        return self.value


# =============================================================================
# TEST CASE
# =============================================================================


@attrs.define(frozen=True, slots=True)
class TestCase:
    """
    One probe to run: a single mechanism/signing/sealing/transport setting.

    INVARIANT: name is derived from (mechanism, use_ssl, require_signing,
    require_sealing) unless the matrix builder disambiguates a duplicate.
    """

    __test__ = False

    server: str = field(validator=validators.instance_of(str))
    port: int = field(validator=[validators.instance_of(int), validators.ge(1), validators.le(65535)])
    mechanism: AuthMechanism = field(validator=validators.instance_of(AuthMechanism))
    use_ssl: bool = False
    require_signing: bool = False
    require_sealing: bool = False
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    domain: Optional[str] = None
    timeout_seconds: float = 30.0
    name: str = field()

    @name.default
    def _default_name(self) -> str:
        return self.derive_name(
            self.mechanism, self.use_ssl, self.require_signing, self.require_sealing
        )

    @staticmethod
    def derive_name(
        mechanism: AuthMechanism,
        use_ssl: bool,
        require_signing: bool,
        require_sealing: bool,
    ) -> str:
        """
        Build the human-readable case name.

        Example:
            Kerberos (SSL:False, Signing:True, Sealing:False)
        """
        return (
            f"{mechanism.display_name} "
            f"(SSL:{use_ssl}, Signing:{require_signing}, Sealing:{require_sealing})"
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.username) and bool(self.password)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (password omitted)."""
        return {
            "name": self.name,
            "server": self.server,
            "port": self.port,
            "mechanism": self.mechanism.display_name,
            "use_ssl": self.use_ssl,
            "require_signing": self.require_signing,
            "require_sealing": self.require_sealing,
            "username": self.username,
            "domain": self.domain,
            "timeout_seconds": self.timeout_seconds,
        }

    def __str__(self) -> str:
        return self.name


# =============================================================================
# PROBE OUTCOME
# =============================================================================


@attrs.define(frozen=True, slots=True)
class ProbeOutcome:
    """
    What a probe reports for one case.

    Attributes:
        success: Whether the bind and validation query succeeded
        details: Diagnostic text for a successful probe
        error: Human-readable error for a failed probe
        interrupted: The probe stopped early because the run was cancelled;
            the engine reports the case as not run rather than as a failure
    """

    success: bool
    details: Optional[str] = None
    error: Optional[str] = None
    interrupted: bool = False

    @classmethod
    def passed(cls, details: Optional[str] = None) -> ProbeOutcome:
        """Create a successful outcome."""
        return cls(success=True, details=details)

    @classmethod
    def failed(cls, error: str, details: Optional[str] = None) -> ProbeOutcome:
        """Create a failed outcome."""
        return cls(success=False, details=details, error=error)

    @classmethod
    def cancelled(cls, error: str = "Test was cancelled") -> ProbeOutcome:
        """Create an outcome for a probe cut short by cancellation."""
        return cls(success=False, error=error, interrupted=True)


# =============================================================================
# RESULT TYPES
# =============================================================================


@attrs.define(frozen=True, slots=True)
class TestResult:
    """
    Outcome of one executed test case.

    Attributes:
        test_name: Name of the originating case
        success: Whether the probe succeeded
        details: Probe diagnostic text
        error: Failure message
        timestamp: When the probe started (UTC)
        duration_ms: Wall-clock time spent in the probe
        test_case: The originating case, for correlation and export
    """

    __test__ = False

    test_name: str
    success: bool
    details: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(factory=lambda: datetime.now(timezone.utc))
    duration_ms: float = 0.0
    test_case: Optional[TestCase] = field(default=None, eq=False)

    @property
    def status(self) -> str:
        return "PASS" if self.success else "FAIL"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "test_name": self.test_name,
            "status": self.status,
            "success": self.success,
            "details": self.details,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "test_case": self.test_case.to_dict() if self.test_case else None,
        }


@attrs.define(frozen=True, slots=True)
class TestProgress:
    """
    Transient progress snapshot handed to a progress sink.

    Never persisted. In parallel runs snapshots arrive in completion order.
    """

    __test__ = False

    completed: int
    total: int
    current_test_name: str = ""
    last_result: Optional[TestResult] = None

    @property
    def percent_complete(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.completed / self.total * 100


@attrs.define(frozen=True, slots=True)
class RunCancelled:
    """
    A run stopped by the cancellation signal.

    Carries the results gathered before the stop, in input order. For a
    sequential run they are a strict prefix of the case list. A parallel
    run can finish cases out of order, so results[i] is not necessarily
    cases[i]: match on `test_case` (or `test_name`) instead. Cases that
    never produced a result are listed by name in `pending`.
    """

    results: List[TestResult] = attrs.Factory(list)
    total: int = 0
    pending: List[str] = attrs.Factory(list)

    @property
    def completed(self) -> int:
        return len(self.results)

    def __str__(self) -> str:
        return f"Run cancelled after {self.completed}/{self.total} tests"
