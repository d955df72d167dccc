"""Integrity checking package."""

from kharcha_vault.integrity.checksum import (
    IntegrityCheck,
    IntegrityWarning,
    compute_checksum,
    verify_checksum,
)

__all__ = [
    "IntegrityCheck",
    "IntegrityWarning",
    "compute_checksum",
    "verify_checksum",
]
