"""
ldapaudit Exception Types

Custom exceptions for configuration, probing and export errors.

Probe faults and run cancellation never surface as exceptions from the
execution engine: faults become failed results and cancellation is a
returned value. These types cover the layers around the engine.
"""

from typing import Optional


class LdapAuditError(Exception):
    """Base exception for all ldapaudit errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(LdapAuditError):
    """
    Invalid audit configuration.

    Raised for values the caller layer must reject before a run starts,
    such as an unknown authentication mechanism or output format.
    """

    pass


class ProbeError(LdapAuditError):
    """
    A probe could not be prepared.

    Raised inside a probe implementation; the engine converts it into a
    failed result like any other fault.
    """

    pass


class ExportError(LdapAuditError):
    """Writing results to disk failed."""

    pass
