"""
ldapaudit Test Matrix Builder

Turns an audit configuration into the ordered list of test cases.

Ordering contract (relied on by the engine and the exporters):
    mechanism (configured order) -> signing -> sealing

Signing varies slower than sealing. The builder is pure: no I/O, no
failure mode. An empty mechanism list gives an empty matrix.
"""

from __future__ import annotations

from collections import Counter
from typing import List, Tuple

import structlog

from ldapaudit.core.config import AuditConfig
from ldapaudit.core.types import TestCase

logger = structlog.get_logger()


def option_values(test_both: bool, forced: bool) -> Tuple[bool, ...]:
    """Values of one boolean dimension: both when dual-tested, else the forced one."""
    return (False, True) if test_both else (forced,)


def build_matrix(config: AuditConfig) -> List[TestCase]:
    """
    Build the test matrix for a run.

    Count = |auth_types| x |signing values| x |sealing values|.

    Duplicate mechanisms are kept; the second and later cases sharing a
    derived name get a " #n" suffix so names stay unique.

    Args:
        config: Audit configuration

    Returns:
        Ordered list of test cases
    """
    port = config.port
    signing_values = option_values(config.test_signing, config.require_signing)
    sealing_values = option_values(config.test_sealing, config.require_sealing)
    seen: Counter = Counter()

    cases: List[TestCase] = []
    for mechanism in config.auth_types:
        for require_signing in signing_values:
            for require_sealing in sealing_values:
                name = TestCase.derive_name(
                    mechanism, config.use_ssl, require_signing, require_sealing
                )
                seen[name] += 1
                if seen[name] > 1:
                    name = f"{name} #{seen[name]}"

                cases.append(
                    TestCase(
                        name=name,
                        server=config.domain_controller,
                        port=port,
                        mechanism=mechanism,
                        use_ssl=config.use_ssl,
                        require_signing=require_signing,
                        require_sealing=require_sealing,
                        username=config.username,
                        password=config.password,
                        domain=config.domain,
                        timeout_seconds=config.test_timeout,
                    )
                )

    logger.debug(
        "test_matrix_built",
        test_count=len(cases),
        mechanisms=[m.display_name for m in config.auth_types],
        port=port,
    )
    return cases
