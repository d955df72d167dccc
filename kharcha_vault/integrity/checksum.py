"""
Integrity Layer

A fast, deterministic, NON-cryptographic checksum over stored payloads.

DESIGN DECISION: A mismatch is a corruption hint, not a security control.
The failures seen in practice are hand edits and half-finished writes, so a
mismatch is logged and reported as an ``IntegrityWarning`` and loading
carries on with whatever rows still validate.

The hash is the classic 32-bit ``h = h * 31 + c`` over UTF-16 code units,
wrapped to a signed 32-bit integer and printed in hexadecimal. Checksums
stored by the original browser app therefore still verify.
"""

import warnings
from typing import Optional

import structlog
from pydantic import BaseModel


logger = structlog.get_logger(__name__)


class IntegrityWarning(UserWarning):
    """Stored checksum does not match the payload. Never fatal."""


class IntegrityCheck(BaseModel):
    """Result of comparing a stored checksum with a recomputed one."""

    expected: Optional[str]
    actual: str

    @property
    def matches(self) -> bool:
        # A payload stored without a checksum has nothing to contradict it
        return self.expected is None or self.expected == self.actual


def compute_checksum(text: str) -> str:
    """
    Compute the rolling hash of ``text``.

    Returns the signed 32-bit value in hex, e.g. ``"-3f2a9c1"`` or ``"0"``.
    """
    value = 0
    encoded = text.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return format(value, "x")


def verify_checksum(
    text: str,
    expected: Optional[str],
    context: str = "payload",
) -> IntegrityCheck:
    """
    Recompute the checksum of ``text`` and compare it with ``expected``.

    On mismatch a structured warning is logged and an ``IntegrityWarning``
    is emitted. Never raises.
    """
    check = IntegrityCheck(expected=expected, actual=compute_checksum(text))
    if not check.matches:
        logger.warning(
            "integrity_check_failed",
            context=context,
            expected=expected,
            actual=check.actual,
        )
        warnings.warn(
            f"Checksum mismatch for {context} - data may be corrupted",
            IntegrityWarning,
            stacklevel=2,
        )
    return check
