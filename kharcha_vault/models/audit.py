"""
Audit Models for Kharcha Vault

Every operation that changes or reads back an owner's stored data is
recorded. This gives:
1. Traceability of saves, imports, backups and restores
2. Debugging information when a restore skips rows
3. A visible record of integrity warnings

DESIGN DECISION: Audit logs are append-only. Entries are only removed when
the owner's whole namespace is deleted or the per-owner cap is reached.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the save / import / backup / restore flows has its own type.
    """
    # Dataset persistence
    DATASET_SAVED = "dataset_saved"
    DATASET_SAVE_REJECTED = "dataset_save_rejected"
    DATASET_LOADED = "dataset_loaded"
    DATASET_DELETED = "dataset_deleted"

    # Integrity
    INTEGRITY_MISMATCH = "integrity_mismatch"

    # Import / export
    EXPORT_CREATED = "export_created"
    IMPORT_COMPLETED = "import_completed"
    IMPORT_REJECTED = "import_rejected"

    # Backups
    BACKUP_CREATED = "backup_created"
    BACKUPS_PRUNED = "backups_pruned"
    RESTORE_COMPLETED = "restore_completed"
    RESTORE_REJECTED = "restore_rejected"

    # Schedule
    SCHEDULE_UPDATED = "schedule_updated"
    SCHEDULED_BACKUP_SKIPPED = "scheduled_backup_skipped"

    # System events
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Whose data this is about
    owner: Optional[str] = Field(
        default=None,
        description="Owner whose namespace the event touched"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'dataset', 'snapshot', 'schedule')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner": self.owner,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.dataset_saved(owner, record_count=3)
        event = AuditEventBuilder.restore_rejected(owner, reason)
    """

    @staticmethod
    def dataset_saved(owner: str, record_count: int, checksum: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATASET_SAVED,
            owner=owner,
            entity_type="dataset",
            description=f"Dataset saved with {record_count} expenses",
            details={"record_count": record_count, "checksum": checksum},
        )

    @staticmethod
    def dataset_save_rejected(owner: str, errors: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATASET_SAVE_REJECTED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type="dataset",
            description=f"Dataset save rejected: {len(errors)} invalid records",
            details={"errors": errors[:20]},
        )

    @staticmethod
    def dataset_loaded(owner: str, record_count: int, skipped: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATASET_LOADED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            owner=owner,
            entity_type="dataset",
            description=f"Dataset loaded with {record_count} expenses ({skipped} rows skipped)",
            details={"record_count": record_count, "skipped": skipped},
        )

    @staticmethod
    def dataset_deleted(owner: str, keys_removed: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATASET_DELETED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type="dataset",
            description=f"All data deleted ({keys_removed} keys)",
            details={"keys_removed": keys_removed},
        )

    @staticmethod
    def integrity_mismatch(
        owner: str,
        entity_type: str,
        expected: str,
        actual: str,
        entity_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INTEGRITY_MISMATCH,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type=entity_type,
            entity_id=entity_id,
            description="Checksum mismatch - data may be corrupted",
            details={"expected": expected, "actual": actual},
        )

    @staticmethod
    def export_created(owner: str, filename: str, record_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_CREATED,
            owner=owner,
            entity_type="export",
            entity_id=filename,
            description=f"Dataset exported to {filename}",
            details={"record_count": record_count},
        )

    @staticmethod
    def import_completed(
        owner: str,
        filename: str,
        imported: int,
        skipped: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            owner=owner,
            entity_type="import",
            entity_id=filename,
            description=f"Imported {imported} expenses from {filename}",
            details={"imported": imported, "skipped": skipped},
        )

    @staticmethod
    def import_rejected(owner: str, filename: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.IMPORT_REJECTED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type="import",
            entity_id=filename,
            description=f"Import of {filename} rejected",
            error_message=reason,
        )

    @staticmethod
    def backup_created(owner: str, snapshot_id: str, record_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUP_CREATED,
            owner=owner,
            entity_type="snapshot",
            entity_id=snapshot_id,
            description=f"Backup created with {record_count} expenses",
            details={"record_count": record_count},
        )

    @staticmethod
    def backups_pruned(owner: str, snapshot_ids: list[str], reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKUPS_PRUNED,
            owner=owner,
            entity_type="snapshot",
            description=f"Removed {len(snapshot_ids)} local backups ({reason})",
            details={"snapshot_ids": snapshot_ids, "reason": reason},
        )

    @staticmethod
    def restore_completed(
        owner: str,
        source: str,
        restored: int,
        skipped: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_COMPLETED,
            severity=AuditSeverity.WARNING if skipped else AuditSeverity.INFO,
            owner=owner,
            entity_type="snapshot",
            entity_id=source,
            description=f"Restored {restored} expenses from {source}",
            details={"restored": restored, "skipped": skipped},
        )

    @staticmethod
    def restore_rejected(owner: str, source: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RESTORE_REJECTED,
            severity=AuditSeverity.WARNING,
            owner=owner,
            entity_type="snapshot",
            entity_id=source,
            description=f"Restore from {source} rejected",
            error_message=reason,
        )

    @staticmethod
    def schedule_updated(owner: str, enabled: bool, frequency: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULE_UPDATED,
            owner=owner,
            entity_type="schedule",
            description=f"Backup schedule {'enabled' if enabled else 'disabled'} ({frequency})",
            details={"enabled": enabled, "frequency": frequency},
        )

    @staticmethod
    def scheduled_backup_skipped(owner: str, reason: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULED_BACKUP_SKIPPED,
            owner=owner,
            entity_type="schedule",
            description=f"Scheduled backup skipped: {reason}",
        )

    @staticmethod
    def storage_error(owner: Optional[str], operation: str, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            owner=owner,
            description=f"Storage failure during {operation}",
            error_message=error_message,
        )
