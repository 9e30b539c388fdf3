"""
ldapaudit Probes

Connection probes executed by the engine for each test case.

Components:
- base: Probe contract
- ldap_probe: ldap3 bind-and-query probe for Active Directory
- kerberos: GSSAPI password credential acquisition (optional gssapi)
"""

from ldapaudit.probe.base import Probe
from ldapaudit.probe.kerberos import gssapi_available
from ldapaudit.probe.ldap_probe import LdapProbe, create_ldap_probe

__all__ = [
    "Probe",
    "LdapProbe",
    "create_ldap_probe",
    "gssapi_available",
]
