"""Validation package."""

from kharcha_vault.validation.validator import (
    DuplicateDetector,
    ExpenseValidator,
    parse_amount,
    parse_calendar_date,
)

__all__ = [
    "DuplicateDetector",
    "ExpenseValidator",
    "parse_amount",
    "parse_calendar_date",
]
