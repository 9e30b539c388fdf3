"""
ldapaudit Active Directory Helpers

Components:
- discovery: Domain controller discovery through DNS SRV records
- policy: Windows LDAP client signing policy lookup
"""

from ldapaudit.ad.discovery import (
    DomainControllerRecord,
    discover_domain_controllers,
    lookup_domain_controllers,
)
from ldapaudit.ad.policy import (
    describe_signing_policy,
    read_client_signing_policy,
    registry_available,
)

__all__ = [
    # Discovery
    "DomainControllerRecord",
    "discover_domain_controllers",
    "lookup_domain_controllers",
    # Policy
    "describe_signing_policy",
    "read_client_signing_policy",
    "registry_available",
]
