"""
ldapaudit Domain Controller Discovery

Locates domain controllers through the DNS SRV records Active Directory
registers for the domain:

    _ldap._tcp.dc._msdcs.<domain>
"""

from __future__ import annotations

from typing import List, NamedTuple

import dns.exception
import dns.resolver
import structlog

logger = structlog.get_logger()

DC_SRV_TEMPLATE = "_ldap._tcp.dc._msdcs.{domain}"


class DomainControllerRecord(NamedTuple):
    """One SRV answer for a domain controller."""

    host: str
    port: int
    priority: int
    weight: int


def lookup_domain_controllers(domain: str, lifetime: float = 5.0) -> List[DomainControllerRecord]:
    """
    Resolve the DC SRV records of a domain.

    Args:
        domain: AD domain name (e.g., "example.com")
        lifetime: Total DNS resolution time budget in seconds

    Returns:
        Records sorted by priority (lower first), then weight (higher first).
        Empty when the lookup fails.
    """
    srv_name = DC_SRV_TEMPLATE.format(domain=domain.strip().rstrip(".").lower())

    try:
        answers = dns.resolver.resolve(srv_name, "SRV", lifetime=lifetime)
    except dns.exception.DNSException as e:
        logger.warning("dns_discovery_failed", name=srv_name, error=str(e))
        return []

    records = [
        DomainControllerRecord(
            host=str(rdata.target).rstrip("."),
            port=rdata.port,
            priority=rdata.priority,
            weight=rdata.weight,
        )
        for rdata in answers
    ]
    records.sort(key=lambda r: (r.priority, -r.weight))

    logger.debug("dns_discovery_completed", name=srv_name, count=len(records))
    return records


def discover_domain_controllers(domain: str, lifetime: float = 5.0) -> List[str]:
    """
    Discover domain controller host names for a domain.

    Returns:
        Host names in SRV preference order, without duplicates
    """
    hosts: List[str] = []
    for record in lookup_domain_controllers(domain, lifetime=lifetime):
        if record.host not in hosts:
            hosts.append(record.host)
    return hosts
