"""
Data Models Package

This package contains all Pydantic models used in Kharcha Vault.
All data flowing through the core must conform to these schemas.
"""

from kharcha_vault.models.expense import (
    EXPENSE_FIELDS,
    Expense,
    ExpenseCategory,
    new_expense_id,
)
from kharcha_vault.models.backup import (
    BACKUP_FORMAT_VERSION,
    SNAPSHOT_FORMAT_TAG,
    BackupFrequency,
    BackupMetadata,
    BackupSchedule,
    BackupSnapshot,
    DatasetMetadata,
    DateRange,
    LocalBackup,
)
from kharcha_vault.models.results import (
    DataUsage,
    FlowState,
    ImportResult,
    RecordValidation,
    RestoreResult,
    ValidationIssue,
)
from kharcha_vault.models.upload import UploadedFile, read_upload
from kharcha_vault.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "EXPENSE_FIELDS",
    "Expense",
    "ExpenseCategory",
    "new_expense_id",
    # Backup models
    "BACKUP_FORMAT_VERSION",
    "SNAPSHOT_FORMAT_TAG",
    "BackupFrequency",
    "BackupMetadata",
    "BackupSchedule",
    "BackupSnapshot",
    "DatasetMetadata",
    "DateRange",
    "LocalBackup",
    # Results
    "DataUsage",
    "FlowState",
    "ImportResult",
    "RecordValidation",
    "RestoreResult",
    "ValidationIssue",
    # Uploads
    "UploadedFile",
    "read_upload",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
