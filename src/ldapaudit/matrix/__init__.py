"""
ldapaudit Test Matrix

Deterministic cross-product of mechanisms x signing x sealing.
"""

from ldapaudit.matrix.builder import build_matrix, option_values

__all__ = [
    "build_matrix",
    "option_values",
]
