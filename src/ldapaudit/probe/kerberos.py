"""
ldapaudit Kerberos Credentials

Acquires GSSAPI initiator credentials from a username and password so a
Kerberos probe can bind as a user other than the one in the default
credential cache.

Requirements:
- gssapi package (pip install ldapaudit[kerberos])
- MIT or Heimdal Kerberos libraries with the password extension
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from ldapaudit.core.exceptions import ProbeError

logger = structlog.get_logger()

# Check if GSSAPI is available
try:
    import gssapi
    _gssapi_available = True
    _gssapi_error: Optional[str] = None
except ImportError as e:
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
except OSError as e:
    # gssapi installed but the underlying Kerberos library is missing
    gssapi = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)


def gssapi_available() -> bool:
    """Check if GSSAPI is available."""
    return _gssapi_available


def kerberos_principal(username: str, realm: Optional[str] = None) -> str:
    """
    Build a user principal name.

    Examples:
        ("jdoe", "example.com") -> "jdoe@EXAMPLE.COM"
        ("jdoe@EXAMPLE.COM", None) -> "jdoe@EXAMPLE.COM"
    """
    if "@" in username or not realm:
        return username
    return f"{username}@{realm.upper()}"


def acquire_password_credentials(
    username: str,
    password: str,
    realm: Optional[str] = None,
) -> Any:
    """
    Acquire raw GSSAPI credentials with a password.

    Args:
        username: User name (with or without @REALM)
        password: User password
        realm: Kerberos realm, usually the AD domain

    Returns:
        gssapi.raw.Creds suitable for ldap3 sasl_credentials

    Raises:
        ProbeError: GSSAPI is unavailable or the password extension is missing
    """
    if not _gssapi_available:
        raise ProbeError(f"GSSAPI library not available: {_gssapi_error}")

    principal = kerberos_principal(username, realm)
    name = gssapi.Name(principal, name_type=gssapi.NameType.user)

    try:
        creds = gssapi.raw.acquire_cred_with_password(
            name,
            password.encode("utf-8"),
            usage="initiate",
        ).creds
    except AttributeError:
        raise ProbeError(
            "GSSAPI password acquisition not available. "
            "Use kinit to obtain credentials first."
        )

    logger.debug("gssapi_creds_acquired_password", principal=principal)
    return creds
