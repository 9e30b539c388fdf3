"""
ldapaudit Configuration

Audit run configuration consumed by the matrix builder, the execution
engine and the surrounding CLI layer.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Union

import attrs

from ldapaudit.core.exceptions import ConfigurationError
from ldapaudit.core.types import AuthMechanism

DEFAULT_AUTH_TYPES = (
    AuthMechanism.KERBEROS,
    AuthMechanism.NTLM,
    AuthMechanism.NEGOTIATE,
)

OUTPUT_FORMATS = ("csv", "json")


def _to_mechanisms(
    values: Iterable[Union[AuthMechanism, str]],
) -> List[AuthMechanism]:
    """Accept mechanisms or their display names, keeping the given order."""
    return [
        v if isinstance(v, AuthMechanism) else AuthMechanism.parse(v)
        for v in values
    ]


@attrs.define
class AuditConfig:
    """
    Audit configuration.

    Attributes:
        domain_controller: Domain controller hostname or IP address
        domain: AD domain name (e.g., "EXAMPLE.COM")
        username: Bind user (None = current user context)
        password: Bind password
        ldap_port: Plaintext LDAP port (default 389)
        ldaps_port: LDAPS port (default 636)
        auth_types: Mechanisms to test, in order
        use_ssl: Probe over LDAPS instead of plaintext LDAP
        require_signing: Forced signing value when not dual-tested
        require_sealing: Forced sealing value when not dual-tested
        test_signing: Test both signing values
        test_sealing: Test both sealing values
        interactive: Prompt for missing input (CLI only)
        pause_between_tests: Seconds to wait between sequential probes
        parallel_tests: Maximum probes in flight (1 = sequential)
        test_timeout: Per-probe timeout hint in seconds
        output_format: "csv" or "json"
        output_path: Export path (auto-generated when None)
        verbose: Debug logging and per-probe progress lines
        insecure_tls: Skip LDAPS certificate validation
    """

    domain_controller: str
    domain: str
    username: Optional[str] = None
    password: Optional[str] = attrs.field(default=None, repr=False)
    ldap_port: int = 389
    ldaps_port: int = 636
    auth_types: List[AuthMechanism] = attrs.field(
        factory=lambda: list(DEFAULT_AUTH_TYPES),
        converter=_to_mechanisms,
    )
    use_ssl: bool = False
    require_signing: bool = False
    require_sealing: bool = False
    test_signing: bool = True
    test_sealing: bool = True
    interactive: bool = True
    pause_between_tests: float = 0.0
    parallel_tests: int = 1
    test_timeout: float = 30.0
    output_format: str = "csv"
    output_path: Optional[str] = None
    verbose: bool = False
    insecure_tls: bool = False

    def __attrs_post_init__(self) -> None:
        for name, port in (("ldap_port", self.ldap_port), ("ldaps_port", self.ldaps_port)):
            if not 1 <= port <= 65535:
                raise ConfigurationError(f"{name} must be between 1 and 65535, got {port}")
        if self.parallel_tests < 1:
            raise ConfigurationError(
                f"parallel_tests must be at least 1, got {self.parallel_tests}"
            )
        if self.pause_between_tests < 0:
            raise ConfigurationError("pause_between_tests cannot be negative")
        if self.test_timeout <= 0:
            raise ConfigurationError("test_timeout must be positive")
        self.output_format = self.output_format.lower()
        if self.output_format not in OUTPUT_FORMATS:
            raise ConfigurationError(
                f"Unsupported output format: {self.output_format!r} "
                f"(expected one of {', '.join(OUTPUT_FORMATS)})"
            )

    @property
    def port(self) -> int:
        """Port used by every case of a run, chosen by the SSL flag."""
        return self.ldaps_port if self.use_ssl else self.ldap_port

    @property
    def is_parallel(self) -> bool:
        return self.parallel_tests > 1
