"""
Record Validation

Every record goes through ``ExpenseValidator`` before it may touch storage:
direct saves, CSV imports, dataset loads and backup restores all share the
same checks, so a record that would be rejected on import is also rejected
on save.

FIELD CHECKS:
- id: non-empty string
- amount: numeric, finite, greater than zero, at most the configured bound
- category: one of the allowed categories (free-form only when enabled)
- description: string between the configured length bounds
- date: a calendar date that is not after today

IMPORTANT: Validation never raises for bad data and never silently fixes a
value. Problems come back as ``ValidationIssue`` objects and the caller
decides whether to skip the record.
"""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from pydantic import ValidationError

from kharcha_vault.clock import Clock, utc_now
from kharcha_vault.config import ValidationSettings
from kharcha_vault.models.expense import Expense
from kharcha_vault.models.results import RecordValidation, ValidationIssue


def parse_calendar_date(value: Any) -> Optional[date]:
    """
    Parse a stored date value.

    Accepts ``date`` objects, ``YYYY-MM-DD`` strings and full ISO timestamps
    (older backups stored the time as well). Returns None when unparseable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a numeric amount, rejecting booleans, NaN and infinities."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    if not amount.is_finite():
        return None
    return amount


class ExpenseValidator:
    """
    Validates candidate expense records.

    Bounds come from the injected ``ValidationSettings``; "today" comes from
    the injected clock so the future-date rule is testable.
    """

    def __init__(
        self,
        settings: ValidationSettings,
        clock: Optional[Clock] = None,
    ):
        self._settings = settings
        self._clock = clock or utc_now
        self._max_amount = Decimal(str(settings.max_amount))
        self._allowed_categories = frozenset(settings.allowed_categories)

    @property
    def settings(self) -> ValidationSettings:
        return self._settings

    def _check_id(self, value: Any) -> list[ValidationIssue]:
        if not isinstance(value, str) or not value.strip():
            return [ValidationIssue(
                field="id",
                issue_type="missing",
                message="Invalid or missing ID",
            )]
        return []

    def _check_amount(self, value: Any) -> tuple[Optional[Decimal], list[ValidationIssue]]:
        amount = parse_amount(value)
        if amount is None:
            return None, [ValidationIssue(
                field="amount",
                issue_type="invalid_format",
                message=f"Invalid amount \"{value}\"",
            )]
        if amount <= 0 or amount > self._max_amount:
            return None, [ValidationIssue(
                field="amount",
                issue_type="out_of_range",
                message=(
                    "Amount must be a positive number no greater than "
                    f"{self._max_amount:,.0f}"
                ),
            )]
        return amount, []

    def _check_category(self, value: Any) -> list[ValidationIssue]:
        if not isinstance(value, str) or not value.strip():
            return [ValidationIssue(
                field="category",
                issue_type="missing",
                message="Invalid or missing category",
            )]

        category = value.strip()
        if self._settings.allow_custom_categories:
            if len(category) > self._settings.max_custom_category_length:
                return [ValidationIssue(
                    field="category",
                    issue_type="out_of_range",
                    message=(
                        "Category cannot exceed "
                        f"{self._settings.max_custom_category_length} characters"
                    ),
                )]
            return []

        if category not in self._allowed_categories:
            return [ValidationIssue(
                field="category",
                issue_type="invalid_value",
                message=(
                    "Invalid category. Must be one of: "
                    f"{', '.join(self._settings.allowed_categories)}"
                ),
            )]
        return []

    def _check_description(self, value: Any) -> list[ValidationIssue]:
        minimum = self._settings.min_description_length
        maximum = self._settings.max_description_length
        text = value.strip() if isinstance(value, str) else ""

        if len(text) < minimum:
            return [ValidationIssue(
                field="description",
                issue_type="too_short",
                message=f"Description must be at least {minimum} characters long",
            )]
        if len(text) > maximum:
            return [ValidationIssue(
                field="description",
                issue_type="too_long",
                message=f"Description cannot exceed {maximum} characters",
            )]
        return []

    def _check_date(self, value: Any) -> tuple[Optional[date], list[ValidationIssue]]:
        if value is None or value == "":
            return None, [ValidationIssue(
                field="date",
                issue_type="missing",
                message="Invalid or missing date",
            )]

        parsed = parse_calendar_date(value)
        if parsed is None:
            return None, [ValidationIssue(
                field="date",
                issue_type="invalid_format",
                message="Invalid date format",
            )]

        if parsed > self._clock().date():
            return None, [ValidationIssue(
                field="date",
                issue_type="future_date",
                message="Date cannot be in the future",
            )]
        return parsed, []

    def validate(self, candidate: Union[Mapping[str, Any], Expense]) -> RecordValidation:
        """
        Run every field check on one candidate record.

        Args:
            candidate: A raw mapping (decoded row, snapshot document) or an
                       Expense instance about to be saved.

        Returns:
            RecordValidation with the built Expense when all checks pass.
        """
        if isinstance(candidate, Expense):
            candidate = candidate.model_dump()
        if not isinstance(candidate, Mapping):
            return RecordValidation(issues=[ValidationIssue(
                field="record",
                issue_type="invalid_format",
                message="Record is not an object",
            )])

        issues = self._check_id(candidate.get("id"))
        amount, amount_issues = self._check_amount(candidate.get("amount"))
        issues.extend(amount_issues)
        issues.extend(self._check_category(candidate.get("category")))
        issues.extend(self._check_description(candidate.get("description")))
        expense_date, date_issues = self._check_date(candidate.get("date"))
        issues.extend(date_issues)

        if issues:
            return RecordValidation(issues=issues)

        try:
            expense = Expense(
                id=candidate["id"],
                amount=amount,
                category=candidate["category"],
                description=candidate["description"],
                date=expense_date,
            )
        except ValidationError as e:
            return RecordValidation(issues=[
                ValidationIssue(
                    field=".".join(str(part) for part in error["loc"]) or "record",
                    issue_type="schema",
                    message=error["msg"],
                )
                for error in e.errors()
            ])

        return RecordValidation(expense=expense)


class DuplicateDetector:
    """
    Tracks accepted records and flags repeats.

    A candidate is a duplicate when its id was already accepted, or (with
    ``match_content``) when amount, category, description and date all match
    an accepted record.
    """

    def __init__(self, match_content: bool = True):
        self._match_content = match_content
        self._ids: set[str] = set()
        self._contents: set[tuple] = set()

    def duplicate_reason(self, expense: Expense) -> Optional[str]:
        """Why ``expense`` is a duplicate, or None if it is new."""
        if expense.id in self._ids:
            return f"duplicate id {expense.id}"
        if self._match_content and expense.content_key in self._contents:
            return "duplicate of an earlier expense"
        return None

    def accept(self, expense: Expense) -> bool:
        """Record ``expense`` unless it is a duplicate. Returns True if accepted."""
        if self.duplicate_reason(expense) is not None:
            return False
        self._ids.add(expense.id)
        self._contents.add(expense.content_key)
        return True
