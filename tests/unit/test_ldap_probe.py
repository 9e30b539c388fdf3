"""
Unit tests for ldapaudit.probe.ldap_probe module.

ldap3.Connection is replaced with a scripted fake; no network traffic.
"""

import ssl
import threading

import ldap3
import pytest
from ldap3.core.exceptions import LDAPSocketOpenError

from ldapaudit.core.exceptions import ProbeError
from ldapaudit.core.types import AuthMechanism, TestCase
from ldapaudit.probe import ldap_probe
from ldapaudit.probe.kerberos import kerberos_principal
from ldapaudit.probe.ldap_probe import (
    CANCELLED_ERROR,
    LdapProbe,
    bind_user,
    build_server,
    connection_options,
    describe_ldap_error,
    precheck,
    session_security_supported,
)


def make_case(mechanism=AuthMechanism.NTLM, **overrides) -> TestCase:
    values = {
        "server": "dc1.example.com",
        "port": 389,
        "mechanism": mechanism,
        "username": "auditor",
        "password": "pw",
        "domain": "EXAMPLE",
    }
    values.update(overrides)
    return TestCase(**values)


ROOT_DSE = [
    {
        "type": "searchResEntry",
        "dn": "",
        "attributes": {"defaultNamingContext": ["DC=example,DC=com"]},
    }
]

COMPUTERS = [
    {"type": "searchResEntry", "attributes": {"cn": ["WS1"], "dNSHostName": ["ws1.example.com"]}},
    {"type": "searchResEntry", "attributes": {"cn": ["WS2"], "dNSHostName": []}},
    {"type": "searchResEntry", "attributes": {"cn": ["WS3"], "dNSHostName": "ws3.example.com"}},
    {"type": "searchResEntry", "attributes": {"cn": ["WS4"]}},
    {"type": "searchResRef", "uri": ["ldap://other.example.com/DC=other"]},
]


class FakeConnection:
    """Scripted stand-in for ldap3.Connection."""

    instances = []
    bind_results = {}
    open_error = None
    computers = COMPUTERS
    search_results = {}

    def __init__(self, server, **options):
        self.server = server
        self.options = options
        self.opened = False
        self.unbound = False
        self.searches = []
        self.response = None
        self.result = None
        FakeConnection.instances.append(self)

    def open(self):
        if FakeConnection.open_error is not None:
            raise FakeConnection.open_error
        self.opened = True

    def bind(self):
        ok = FakeConnection.bind_results.get(self.options["authentication"], True)
        if not ok:
            self.result = {
                "result": 49,
                "description": "invalidCredentials",
                "message": "80090308: LdapErr: DSID-0C09044E",
            }
        return ok

    def search(self, search_base, search_filter, search_scope, attributes=None, size_limit=0):
        self.searches.append((search_base, search_filter, search_scope, attributes, size_limit))
        self.result = FakeConnection.search_results.get(
            search_scope, {"result": 0, "description": "success", "message": ""}
        )
        if self.result["result"] not in (0, 4):
            self.response = []
        elif search_scope == ldap3.BASE:
            self.response = ROOT_DSE
        else:
            self.response = FakeConnection.computers
        return self.result["result"] == 0 and bool(self.response)

    def unbind(self):
        self.unbound = True
        return True


@pytest.fixture
def with_session_security(monkeypatch):
    """ldap3 build that exposes session security."""
    monkeypatch.setattr(ldap3, "ENCRYPT", "ENCRYPT", raising=False)


@pytest.fixture
def without_session_security(monkeypatch):
    """ldap3 build without session security, like the 2.9.1 release."""
    monkeypatch.delattr(ldap3, "ENCRYPT", raising=False)


@pytest.fixture
def fake_ldap(monkeypatch):
    FakeConnection.instances = []
    FakeConnection.bind_results = {}
    FakeConnection.open_error = None
    FakeConnection.computers = COMPUTERS
    FakeConnection.search_results = {}
    monkeypatch.setattr(ldap3, "Connection", FakeConnection)
    monkeypatch.setattr(
        ldap_probe, "acquire_password_credentials", lambda user, password, realm: "raw-creds"
    )
    return FakeConnection


# =============================================================================
# CONNECTION OPTIONS
# =============================================================================


class TestBindUser:
    """Tests for bind identity formatting."""

    def test_ntlm_domain_prefix(self):
        assert bind_user(make_case(), AuthMechanism.NTLM) == "EXAMPLE\\auditor"

    def test_ntlm_already_qualified(self):
        case = make_case(username="OTHER\\svc")
        assert bind_user(case, AuthMechanism.NTLM) == "OTHER\\svc"

    def test_basic_upn(self):
        case = make_case(domain="example.com")
        assert bind_user(case, AuthMechanism.BASIC) == "auditor@example.com"

    def test_basic_distinguished_name_kept(self):
        case = make_case(username="CN=svc,OU=Service,DC=example,DC=com")
        assert bind_user(case, AuthMechanism.BASIC) == case.username

    def test_no_username(self):
        assert bind_user(make_case(username=None), AuthMechanism.NTLM) is None


class TestPrecheck:
    """Tests for combinations rejected before any network traffic."""

    def test_basic_requires_credentials(self):
        case = make_case(AuthMechanism.BASIC, username=None, password=None)
        assert precheck(case, AuthMechanism.BASIC) == (
            "Username and password are required for Basic authentication."
        )

    def test_ntlm_requires_credentials(self):
        case = make_case(password=None)
        assert "NTLM" in precheck(case, AuthMechanism.NTLM)

    def test_kerberos_without_credentials_allowed(self):
        case = make_case(AuthMechanism.KERBEROS, username=None, password=None)
        assert precheck(case, AuthMechanism.KERBEROS) is None

    @pytest.mark.parametrize("mechanism", [AuthMechanism.BASIC, AuthMechanism.ANONYMOUS])
    def test_simple_binds_cannot_sign(self, mechanism):
        case = make_case(mechanism, require_signing=True)
        assert "cannot negotiate LDAP signing or sealing" in precheck(case, mechanism)

    def test_ntlm_signing_allowed(self, with_session_security):
        case = make_case(require_signing=True, require_sealing=True)
        assert precheck(case, AuthMechanism.NTLM) is None

    @pytest.mark.parametrize("mechanism", [AuthMechanism.NTLM, AuthMechanism.KERBEROS])
    @pytest.mark.parametrize("signing,sealing", [(True, False), (False, True), (True, True)])
    def test_signing_unsupported_by_client(self, without_session_security, mechanism, signing, sealing):
        case = make_case(mechanism, require_signing=signing, require_sealing=sealing)
        error = precheck(case, mechanism)
        assert error.startswith("LDAP signing/sealing is not supported by the installed ldap3 client")

    def test_unprotected_case_ignores_client_support(self, without_session_security):
        assert not session_security_supported()
        assert precheck(make_case(), AuthMechanism.NTLM) is None


class TestConnectionOptions:
    """Tests for ldap3.Connection keyword arguments."""

    def test_kerberos(self):
        options = connection_options(make_case(AuthMechanism.KERBEROS), AuthMechanism.KERBEROS)
        assert options["authentication"] == ldap3.SASL
        assert options["sasl_mechanism"] == ldap3.KERBEROS
        assert "session_security" not in options

    def test_ntlm(self):
        options = connection_options(make_case(), AuthMechanism.NTLM)
        assert options["authentication"] == ldap3.NTLM
        assert options["user"] == "EXAMPLE\\auditor"
        assert options["password"] == "pw"

    def test_basic(self):
        options = connection_options(make_case(AuthMechanism.BASIC), AuthMechanism.BASIC)
        assert options["authentication"] == ldap3.SIMPLE
        assert options["user"] == "auditor@EXAMPLE"

    def test_anonymous(self):
        options = connection_options(make_case(AuthMechanism.ANONYMOUS), AuthMechanism.ANONYMOUS)
        assert options["authentication"] == ldap3.ANONYMOUS
        assert "user" not in options

    @pytest.mark.parametrize("signing,sealing", [(True, False), (False, True), (True, True)])
    def test_session_security(self, with_session_security, signing, sealing):
        case = make_case(require_signing=signing, require_sealing=sealing)
        assert connection_options(case, AuthMechanism.NTLM)["session_security"] == ldap3.ENCRYPT

    def test_session_security_unsupported(self, without_session_security):
        with pytest.raises(ProbeError):
            connection_options(make_case(require_sealing=True), AuthMechanism.NTLM)

    def test_timeout(self):
        options = connection_options(make_case(timeout_seconds=4.0), AuthMechanism.NTLM)
        assert options["receive_timeout"] == 4.0


class TestBuildServer:
    """Tests for server descriptions."""

    def test_plain(self):
        server = build_server(make_case())
        assert server.host == "dc1.example.com"
        assert server.port == 389
        assert not server.ssl

    def test_ssl_validates_by_default(self):
        server = build_server(make_case(port=636, use_ssl=True))
        assert server.ssl
        assert server.tls.validate == ssl.CERT_REQUIRED

    def test_ssl_insecure(self):
        server = build_server(make_case(port=636, use_ssl=True), insecure_tls=True)
        assert server.tls.validate == ssl.CERT_NONE


class TestDescribeLdapError:
    def test_with_server_message(self):
        error = describe_ldap_error(
            {"result": 8, "description": "strongerAuthRequired", "message": "00002028: LdapErr"}
        )
        assert error == "LDAP Error (8): strongerAuthRequired, ServerErrorMessage: 00002028: LdapErr"

    def test_without_server_message(self):
        assert describe_ldap_error({"result": 49, "description": "invalidCredentials", "message": ""}) == (
            "LDAP Error (49): invalidCredentials"
        )

    def test_missing_description_names_operation(self):
        assert describe_ldap_error({"result": 1}, "search") == "LDAP Error (1): search failed"


def test_kerberos_principal():
    assert kerberos_principal("jdoe", "example.com") == "jdoe@EXAMPLE.COM"
    assert kerberos_principal("jdoe@EXAMPLE.COM", "other.com") == "jdoe@EXAMPLE.COM"
    assert kerberos_principal("jdoe") == "jdoe"


# =============================================================================
# PROBE
# =============================================================================


class TestLdapProbe:
    """Tests for LdapProbe.probe against a fake connection."""

    def test_successful_probe(self, fake_ldap):
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.success
        assert outcome.details == (
            "Bind successful, queried 4 computers from DC=example,DC=com "
            "(samples: ws1.example.com, WS2, ws3.example.com)"
        )
        (conn,) = fake_ldap.instances
        assert conn.unbound
        base, search_filter, _, attributes, size_limit = conn.searches[1]
        assert base == "DC=example,DC=com"
        assert search_filter == "(objectClass=computer)"
        assert size_limit == 100
        assert attributes == ["cn", "dNSHostName", "operatingSystem"]

    def test_no_computers(self, fake_ldap):
        fake_ldap.computers = []
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.details == "Bind successful, queried 0 computers from DC=example,DC=com"

    def test_rejected_bind(self, fake_ldap):
        fake_ldap.bind_results = {ldap3.NTLM: False}
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert not outcome.success
        assert outcome.error.startswith("LDAP Error (49): invalidCredentials, ServerErrorMessage:")
        assert fake_ldap.instances[0].unbound

    def test_ldap_exception(self, fake_ldap):
        fake_ldap.open_error = LDAPSocketOpenError("socket connection error")
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.error == "LDAP Error (LDAPSocketOpenError): socket connection error"

    def test_other_exception(self, fake_ldap):
        fake_ldap.open_error = RuntimeError("unexpected")
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.error == "Exception: unexpected"

    def test_basic_without_credentials_skips_network(self, fake_ldap):
        case = make_case(AuthMechanism.BASIC, username=None, password=None)
        outcome = LdapProbe().probe(case, threading.Event())

        assert outcome.error == "Username and password are required for Basic authentication."
        assert fake_ldap.instances == []

    def test_cancelled_before_bind(self, fake_ldap):
        cancel = threading.Event()
        cancel.set()
        outcome = LdapProbe().probe(make_case(), cancel)

        assert outcome.error == CANCELLED_ERROR
        assert outcome.interrupted
        assert not fake_ldap.instances[0].opened

    def test_kerberos_password_credentials(self, fake_ldap):
        LdapProbe().probe(make_case(AuthMechanism.KERBEROS), threading.Event())

        assert fake_ldap.instances[0].options["sasl_credentials"] == (None, None, "raw-creds")

    def test_kerberos_default_ccache(self, fake_ldap):
        case = make_case(AuthMechanism.KERBEROS, username=None, password=None)
        LdapProbe().probe(case, threading.Event())

        assert "sasl_credentials" not in fake_ldap.instances[0].options

    def test_negotiate_prefers_kerberos(self, fake_ldap):
        outcome = LdapProbe().probe(make_case(AuthMechanism.NEGOTIATE), threading.Event())

        assert outcome.success
        assert outcome.details.startswith("Negotiated Kerberos. Bind successful")
        assert len(fake_ldap.instances) == 1

    def test_negotiate_falls_back_to_ntlm(self, fake_ldap):
        fake_ldap.bind_results = {ldap3.SASL: False}
        outcome = LdapProbe().probe(make_case(AuthMechanism.NEGOTIATE), threading.Event())

        assert outcome.success
        assert outcome.details.startswith("Negotiated NTLM.")
        assert [c.options["authentication"] for c in fake_ldap.instances] == [ldap3.SASL, ldap3.NTLM]

    def test_negotiate_both_fail(self, fake_ldap):
        fake_ldap.bind_results = {ldap3.SASL: False, ldap3.NTLM: False}
        outcome = LdapProbe().probe(make_case(AuthMechanism.NEGOTIATE), threading.Event())

        assert not outcome.success
        assert outcome.error.startswith("Kerberos: LDAP Error (49)")
        assert "; NTLM: LDAP Error (49)" in outcome.error

    def test_rejected_computer_search_fails(self, fake_ldap):
        """Test an anonymous bind whose directory search is refused is not a pass."""
        fake_ldap.search_results = {
            ldap3.SUBTREE: {
                "result": 1,
                "description": "operationsError",
                "message": "000004DC: LdapErr: DSID-0C090A5C, comment: In order to perform this operation a successful bind must be completed",
            }
        }
        outcome = LdapProbe().probe(make_case(AuthMechanism.ANONYMOUS), threading.Event())

        assert not outcome.success
        assert outcome.error.startswith(
            "LDAP Error (1): operationsError, ServerErrorMessage: 000004DC"
        )
        assert fake_ldap.instances[0].unbound

    def test_rejected_root_dse_search_fails(self, fake_ldap):
        fake_ldap.search_results = {
            ldap3.BASE: {"result": 50, "description": "insufficientAccessRights", "message": ""}
        }
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.error == "LDAP Error (50): insufficientAccessRights"
        assert len(fake_ldap.instances[0].searches) == 1

    def test_size_limit_exceeded_still_passes(self, fake_ldap):
        fake_ldap.search_results = {
            ldap3.SUBTREE: {"result": 4, "description": "sizeLimitExceeded", "message": ""}
        }
        outcome = LdapProbe().probe(make_case(), threading.Event())

        assert outcome.success
        assert outcome.details.startswith("Bind successful, queried 4 computers")

    @pytest.mark.parametrize("mechanism", [AuthMechanism.NTLM, AuthMechanism.NEGOTIATE])
    def test_signing_unsupported_reported_clearly(self, fake_ldap, without_session_security, mechanism):
        case = make_case(mechanism, require_signing=True)
        outcome = LdapProbe().probe(case, threading.Event())

        assert not outcome.success
        assert "signing/sealing is not supported by the installed ldap3 client" in outcome.error
        assert fake_ldap.instances == []

    def test_signing_requested_when_supported(self, fake_ldap, with_session_security):
        outcome = LdapProbe().probe(make_case(require_signing=True), threading.Event())

        assert outcome.success
        assert fake_ldap.instances[0].options["session_security"] == ldap3.ENCRYPT

    def test_negotiate_stops_when_cancelled(self, fake_ldap):
        cancel = threading.Event()
        cancel.set()
        outcome = LdapProbe().probe(make_case(AuthMechanism.NEGOTIATE), cancel)

        assert outcome.interrupted
        assert len(fake_ldap.instances) == 1
