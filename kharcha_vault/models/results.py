"""
Validation and outcome models.

Low-level checks never raise for bad data; they return these objects and
the counts bubble up into ``ImportResult`` and ``RestoreResult``.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from kharcha_vault.models.backup import BackupMetadata
from kharcha_vault.models.expense import Expense


class ValidationIssue(BaseModel):
    """A single problem found with one field of one record."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'out_of_range')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
        description="Issue severity"
    )


class RecordValidation(BaseModel):
    """
    Result of validating one candidate record.

    ``expense`` is only set when every field check passed.
    """

    expense: Optional[Expense] = None
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.expense is not None and not any(
            issue.severity == "error" for issue in self.issues
        )

    def summary(self) -> str:
        """Join the error messages into one line for result error lists."""
        return ", ".join(
            issue.message for issue in self.issues if issue.severity == "error"
        )


class FlowState(str, Enum):
    """Terminal states of an import or restore."""
    COMMITTED = "committed"
    COMMITTED_WITH_WARNINGS = "committed_with_warnings"
    REJECTED = "rejected"


class ImportResult(BaseModel):
    """Outcome of importing a CSV file into an owner's dataset."""

    success: bool
    imported_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)
    state: FlowState = FlowState.REJECTED

    @classmethod
    def rejected(cls, error: str) -> "ImportResult":
        return cls(success=False, errors=[error], state=FlowState.REJECTED)


class RestoreResult(BaseModel):
    """Outcome of restoring a snapshot or backup file."""

    success: bool
    restored_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: Optional[BackupMetadata] = None
    state: FlowState = FlowState.REJECTED

    @classmethod
    def rejected(
        cls,
        error: str,
        warnings: Optional[list[str]] = None,
        metadata: Optional[BackupMetadata] = None,
    ) -> "RestoreResult":
        return cls(
            success=False,
            errors=[error],
            warnings=warnings or [],
            metadata=metadata,
            state=FlowState.REJECTED,
        )


class DataUsage(BaseModel):
    """How much an owner's dataset occupies in storage."""

    size_bytes: int = Field(default=0, ge=0)
    records: int = Field(default=0, ge=0)
