"""
ldapaudit LDAP Probe

Probes a domain controller with ldap3: bind under one
mechanism/signing/sealing/transport combination, then read the default
naming context and query a handful of computer objects to prove the
session is usable.

Mechanism mapping:
- Kerberos: SASL GSSAPI (password credentials or the default ccache)
- NTLM: NTLM bind as DOMAIN\\user
- Negotiate: Kerberos first, NTLM if Kerberos fails
- Basic: simple bind as user@domain
- Anonymous: anonymous bind

Signing and sealing are requested through ldap3 session security, which
only NTLM and GSSAPI binds support. Simple and anonymous binds with a
protection requirement fail without touching the network, and so does
every protected case when the installed ldap3 has no session security
(ldap3 2.9.1 does not).

Every search must come back with resultCode success (or sizeLimitExceeded
for the computer query); anything else fails the case with the server's
error, so a bind that is accepted but cannot read the directory is never
reported as a pass.
"""

from __future__ import annotations

import ssl
import threading
from typing import Any, Dict, List, Optional, Tuple

import attrs
import ldap3
import structlog
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_SIZE_LIMIT_EXCEEDED, RESULT_SUCCESS

from ldapaudit.core.exceptions import ProbeError
from ldapaudit.core.types import AuthMechanism, ProbeOutcome, TestCase
from ldapaudit.probe.base import Probe
from ldapaudit.probe.kerberos import acquire_password_credentials

logger = structlog.get_logger()

COMPUTER_SEARCH_LIMIT = 100
SAMPLE_COUNT = 3
COMPUTER_ATTRIBUTES = ["cn", "dNSHostName", "operatingSystem"]

CANCELLED_ERROR = "Test was cancelled"


class _Cancelled(Exception):
    """Raised internally when the cancel signal is seen between steps."""


class _RequestRejected(Exception):
    """Raised internally when the server answers a search with an error code."""


# =============================================================================
# CONNECTION OPTIONS
# =============================================================================


def session_security_supported() -> bool:
    """Whether the installed ldap3 can request LDAP signing and sealing."""
    return hasattr(ldap3, "ENCRYPT")


def session_security_unsupported_error() -> str:
    version = getattr(ldap3, "__version__", "unknown")
    return (
        f"LDAP signing/sealing is not supported by the installed ldap3 client "
        f"(version {version}); the case was not attempted."
    )



def bind_user(case: TestCase, mechanism: AuthMechanism) -> Optional[str]:
    """
    Format the bind identity for a mechanism.

    Examples:
        NTLM, jdoe, EXAMPLE -> "EXAMPLE\\jdoe"
        Basic, jdoe, example.com -> "jdoe@example.com"
    """
    if not case.username:
        return None
    if mechanism is AuthMechanism.NTLM:
        if "\\" in case.username or not case.domain:
            return case.username
        return f"{case.domain}\\{case.username}"
    if mechanism is AuthMechanism.BASIC:
        if "@" in case.username or "=" in case.username or not case.domain:
            return case.username
        return f"{case.username}@{case.domain}"
    return case.username


def precheck(case: TestCase, mechanism: AuthMechanism) -> Optional[str]:
    """
    Reject combinations this client cannot attempt.

    Returns:
        Error message, or None if the bind can be attempted
    """
    if mechanism.needs_credentials and not case.has_credentials:
        return f"Username and password are required for {mechanism.display_name} authentication."
    if mechanism is AuthMechanism.NTLM and not case.has_credentials:
        return "Username and password are required for NTLM authentication."
    if (case.require_signing or case.require_sealing) and not mechanism.can_protect_session:
        return (
            f"{mechanism.display_name} binds cannot negotiate LDAP signing or sealing."
        )
    if (case.require_signing or case.require_sealing) and not session_security_supported():
        return session_security_unsupported_error()
    return None


def connection_options(case: TestCase, mechanism: AuthMechanism) -> Dict[str, Any]:
    """
    Build ldap3.Connection keyword arguments for one bind attempt.

    Kerberos password credentials are added separately, since acquiring
    them talks to the KDC.

    Raises:
        ProbeError: Signing or sealing required but unsupported by ldap3
    """
    options: Dict[str, Any] = {
        "receive_timeout": case.timeout_seconds,
        "auto_bind": ldap3.AUTO_BIND_NONE,
        "raise_exceptions": False,
    }

    if mechanism is AuthMechanism.KERBEROS:
        options["authentication"] = ldap3.SASL
        options["sasl_mechanism"] = ldap3.KERBEROS
    elif mechanism is AuthMechanism.NTLM:
        options["authentication"] = ldap3.NTLM
        options["user"] = bind_user(case, mechanism)
        options["password"] = case.password
    elif mechanism is AuthMechanism.BASIC:
        options["authentication"] = ldap3.SIMPLE
        options["user"] = bind_user(case, mechanism)
        options["password"] = case.password
    else:
        options["authentication"] = ldap3.ANONYMOUS

    # Session security covers integrity and confidentiality together
    if case.require_signing or case.require_sealing:
        if not session_security_supported():
            raise ProbeError(session_security_unsupported_error())
        options["session_security"] = ldap3.ENCRYPT

    return options


def build_server(case: TestCase, insecure_tls: bool = False) -> ldap3.Server:
    """Create the ldap3 server description for a case."""
    tls = None
    if case.use_ssl:
        tls = ldap3.Tls(
            validate=ssl.CERT_NONE if insecure_tls else ssl.CERT_REQUIRED,
        )

    return ldap3.Server(
        case.server,
        port=case.port,
        use_ssl=case.use_ssl,
        tls=tls,
        get_info=ldap3.NONE,
        connect_timeout=case.timeout_seconds,
    )


def _first_value(attributes: Dict[str, Any], name: str) -> Optional[str]:
    value = attributes.get(name)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None or value == "":
        return None
    return str(value)


def _entries(connection: ldap3.Connection) -> List[Dict[str, Any]]:
    return [
        entry for entry in (connection.response or [])
        if entry.get("type") == "searchResEntry"
    ]


def _check_search(
    connection: ldap3.Connection,
    accepted: Tuple[int, ...] = (RESULT_SUCCESS,),
) -> None:
    result = connection.result or {}
    if result.get("result") not in accepted:
        raise _RequestRejected(describe_ldap_error(result, "search"))


def describe_ldap_error(result: Optional[Dict[str, Any]], operation: str = "bind") -> str:
    """
    Format an ldap3 result dictionary for a rejected bind or search.

    Example:
        {"result": 49, "description": "invalidCredentials", "message": "..."}
        -> "LDAP Error (49): invalidCredentials, ServerErrorMessage: ..."
    """
    result = result or {}
    description = result.get("description") or f"{operation} failed"
    error = f"LDAP Error ({result.get('result', 'unknown')}): {description}"
    if result.get("message"):
        error += f", ServerErrorMessage: {result['message']}"
    return error


# =============================================================================
# LDAP PROBE
# =============================================================================


@attrs.define
class LdapProbe(Probe):
    """
    Bind-and-query probe for Active Directory LDAP.

    Example:
        probe = LdapProbe(insecure_tls=True)
        outcome = probe.probe(case, threading.Event())
        if outcome.success:
            print(outcome.details)
    """

    insecure_tls: bool = False
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def probe(self, case: TestCase, cancel: threading.Event) -> ProbeOutcome:
        """Run one probe; never raises for LDAP or network errors."""
        self._logger.debug("ldap_probe_started", test=case.name)

        if case.mechanism is AuthMechanism.NEGOTIATE:
            return self._probe_negotiate(case, cancel)

        return self._probe_mechanism(case, case.mechanism, cancel)

    def _probe_negotiate(self, case: TestCase, cancel: threading.Event) -> ProbeOutcome:
        """SPNEGO: try Kerberos, fall back to NTLM."""
        kerberos = self._probe_mechanism(case, AuthMechanism.KERBEROS, cancel)
        if kerberos.success:
            return ProbeOutcome.passed(f"Negotiated Kerberos. {kerberos.details}")
        if kerberos.interrupted:
            return kerberos

        self._logger.info(
            "negotiate_kerberos_failed_trying_ntlm",
            test=case.name,
            kerberos_error=kerberos.error,
        )
        ntlm = self._probe_mechanism(case, AuthMechanism.NTLM, cancel)
        if ntlm.success:
            return ProbeOutcome.passed(f"Negotiated NTLM. {ntlm.details}")
        if ntlm.interrupted:
            return ntlm

        return ProbeOutcome.failed(
            f"Kerberos: {kerberos.error}; NTLM: {ntlm.error}"
        )

    def _probe_mechanism(
        self,
        case: TestCase,
        mechanism: AuthMechanism,
        cancel: threading.Event,
    ) -> ProbeOutcome:
        rejection = precheck(case, mechanism)
        if rejection is not None:
            return ProbeOutcome.failed(rejection)

        connection: Optional[ldap3.Connection] = None
        try:
            options = connection_options(case, mechanism)
            if mechanism is AuthMechanism.KERBEROS and case.has_credentials:
                creds = acquire_password_credentials(
                    case.username, case.password, case.domain
                )
                options["sasl_credentials"] = (None, None, creds)

            connection = ldap3.Connection(build_server(case, self.insecure_tls), **options)

            self._check_cancel(cancel)
            connection.open()
            if not connection.bind():
                error = describe_ldap_error(connection.result)
                self._logger.warning("ldap_bind_failed", test=case.name, error=error)
                return ProbeOutcome.failed(error)

            self._logger.debug(
                "ldap_bind_successful",
                test=case.name,
                mechanism=mechanism.display_name,
            )

            naming_context = self._default_naming_context(connection)

            self._check_cancel(cancel)
            details = self._query_computers(connection, naming_context)

            self._logger.debug("ldap_probe_completed", test=case.name, details=details)
            return ProbeOutcome.passed(details)

        except _Cancelled:
            self._logger.warning("ldap_probe_cancelled", test=case.name)
            return ProbeOutcome.cancelled(CANCELLED_ERROR)

        except _RequestRejected as e:
            self._logger.warning("ldap_search_rejected", test=case.name, error=str(e))
            return ProbeOutcome.failed(str(e))

        except LDAPException as e:
            error = f"LDAP Error ({type(e).__name__}): {e}"
            self._logger.warning("ldap_probe_failed", test=case.name, error=error)
            return ProbeOutcome.failed(error)

        except Exception as e:
            self._logger.error(
                "ldap_probe_error",
                test=case.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ProbeOutcome.failed(f"Exception: {e}")

        finally:
            if connection is not None:
                self._close(connection)

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    @staticmethod
    def _check_cancel(cancel: threading.Event) -> None:
        if cancel.is_set():
            raise _Cancelled()

    def _default_naming_context(self, connection: ldap3.Connection) -> str:
        """Read defaultNamingContext from the root DSE."""
        connection.search(
            search_base="",
            search_filter="(objectClass=*)",
            search_scope=ldap3.BASE,
            attributes=["defaultNamingContext"],
        )
        _check_search(connection)
        entries = _entries(connection)
        if not entries:
            raise LDAPException("Could not retrieve default naming context.")

        naming_context = _first_value(
            entries[0].get("attributes", {}), "defaultNamingContext"
        )
        if not naming_context:
            raise LDAPException("Default naming context is null or empty.")
        return naming_context

    def _query_computers(self, connection: ldap3.Connection, naming_context: str) -> str:
        """Search computer objects and summarize what came back."""
        connection.search(
            search_base=naming_context,
            search_filter="(objectClass=computer)",
            search_scope=ldap3.SUBTREE,
            attributes=COMPUTER_ATTRIBUTES,
            size_limit=COMPUTER_SEARCH_LIMIT,
        )
        _check_search(connection, (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED))
        entries = _entries(connection)

        details = f"Bind successful, queried {len(entries)} computers from {naming_context}"
        samples = []
        for entry in entries[:SAMPLE_COUNT]:
            attributes = entry.get("attributes", {})
            samples.append(
                _first_value(attributes, "dNSHostName")
                or _first_value(attributes, "cn")
                or "Unknown"
            )
        if samples:
            details += f" (samples: {', '.join(samples)})"
        return details

    def _close(self, connection: ldap3.Connection) -> None:
        try:
            connection.unbind()
        except Exception as e:
            self._logger.debug("ldap_unbind_failed", error=str(e))


def create_ldap_probe(insecure_tls: bool = False) -> LdapProbe:
    """Create an LDAP probe."""
    return LdapProbe(insecure_tls=insecure_tls)
