"""
Core Data Models for Kharcha Vault

An Expense is the only entity the core persists. A Dataset is simply the
ordered list of an owner's expenses and is replaced as a whole on every
save, so there is no separate dataset model.

DESIGN DECISION: The model enforces the shape that can never change
(positive amount, non-empty id, description length). Bounds that come from
configuration (maximum amount, the allowed category list, "not in the
future") are checked by ``ExpenseValidator`` which is the single gate in
front of storage.
"""

import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Standard expense categories.

    Typed imports only accept these values unless custom categories are
    switched on in ``ValidationSettings``.
    """
    FOOD_GROCERIES = "Food & Groceries"
    TRANSPORTATION = "Transportation"
    UTILITIES = "Utilities"
    HOUSING = "Housing"
    HEALTHCARE = "Healthcare"
    EDUCATION = "Education"
    ENTERTAINMENT = "Entertainment"
    SHOPPING = "Shopping"
    CHARITY_ZAKAT = "Charity/Zakat"
    MOBILE_INTERNET = "Mobile/Internet"
    FAMILY_SUPPORT = "Family Support"
    DEBT_PAYMENT = "Debt Payment"
    MISCELLANEOUS = "Miscellaneous"


EXPENSE_FIELDS = ("id", "amount", "category", "description", "date")


def new_expense_id() -> str:
    """Generate an opaque identifier for a new expense."""
    return str(uuid4())


# =============================================================================
# CORE EXPENSE MODEL
# =============================================================================

class Expense(BaseModel):
    """
    A single expense entry.

    Identity is ``id``; two expenses with the same id cannot live in the
    same dataset. Instances are immutable, edits produce a new instance via
    ``model_copy(update=...)``.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    id: str = Field(
        default_factory=new_expense_id,
        min_length=1,
        description="Opaque unique identifier"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Positive amount"
    )
    category: str = Field(
        ...,
        min_length=1,
        description="Category name (an ExpenseCategory value for typed data)"
    )
    description: str = Field(
        ...,
        min_length=2,
        max_length=200,
        description="What the money was spent on"
    )
    date: datetime.date = Field(
        ...,
        description="Calendar date of the expense"
    )

    @property
    def content_key(self) -> tuple[Decimal, str, str, datetime.date]:
        """Fields that identify the same expense entered twice under different ids."""
        return (self.amount, self.category, self.description, self.date)

    @property
    def standard_category(self) -> Optional[ExpenseCategory]:
        """The matching ExpenseCategory, or None for a free-form category."""
        try:
            return ExpenseCategory(self.category)
        except ValueError:
            return None

    def to_document(self) -> dict[str, Any]:
        """
        Convert to the JSON-ready dict stored in snapshot documents.

        Amounts are written as strings so no precision is lost.
        """
        return {
            "id": self.id,
            "amount": format(self.amount, "f"),
            "category": self.category,
            "description": self.description,
            "date": self.date.isoformat(),
        }
