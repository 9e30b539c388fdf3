"""
ldapaudit Client Signing Policy

Reads the Windows LDAP client signing policy of the local machine:

    HKLM\\SYSTEM\\CurrentControlSet\\Services\\LDAP\\LDAPClientIntegrity

Values:
    0 - None
    1 - Negotiate signing
    2 - Require signing
"""

from __future__ import annotations

import sys
from typing import Optional

import structlog
from returns.result import Failure, Result, Success

logger = structlog.get_logger()

# =============================================================================
# PLATFORM DETECTION
# =============================================================================

winreg = None
_registry_error: Optional[str] = None

if sys.platform == "win32":
    import winreg as winreg_module

    winreg = winreg_module
else:
    _registry_error = "Registry policy lookup is only available on Windows"


LDAP_POLICY_KEY = r"SYSTEM\CurrentControlSet\Services\LDAP"
LDAP_POLICY_VALUE = "LDAPClientIntegrity"

SIGNING_POLICY_NAMES = {
    0: "None",
    1: "Negotiate signing",
    2: "Require signing",
}


def registry_available() -> bool:
    """Check if the Windows registry can be read."""
    return winreg is not None


def describe_signing_policy(value: int) -> str:
    """
    Name an LDAPClientIntegrity value.

    Examples:
        1 -> "Negotiate signing"
        7 -> "Unknown (7)"
    """
    return SIGNING_POLICY_NAMES.get(value, f"Unknown ({value})")


def read_client_signing_policy() -> Result[str, str]:
    """
    Read the local LDAP client signing policy.

    Returns:
        Success(policy name) or Failure(reason) when not on Windows, the
        value is unset or the key cannot be read
    """
    if winreg is None:
        return Failure(_registry_error or "Windows registry not available")

    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, LDAP_POLICY_KEY) as key:
            value, _ = winreg.QueryValueEx(key, LDAP_POLICY_VALUE)
    except FileNotFoundError:
        return Failure("LDAP client signing policy is not configured")
    except OSError as e:
        logger.warning("signing_policy_read_failed", error=str(e))
        return Failure(f"Could not read LDAP client signing policy: {e}")

    try:
        policy = describe_signing_policy(int(value))
    except (TypeError, ValueError):
        return Failure(f"Unexpected LDAPClientIntegrity value: {value!r}")

    logger.debug("signing_policy_read", value=value, policy=policy)
    return Success(policy)
