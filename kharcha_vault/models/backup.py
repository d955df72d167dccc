"""
Backup Models for Kharcha Vault

A snapshot is a self-describing backup bundle:

    {"metadata": {...}, "records": [...], "format": "pak-kharcha-backup"}

The ``format`` tag is what tells a backup apart from a plain CSV export and
is checked before any other field is trusted.

DESIGN DECISION: Documents are written with camelCase keys. Backups made by
the original browser app used a few different key names (``version``,
``username``, ``expenseCount``, ``categories``, ``expenses``); those are
accepted when reading so old files can still be restored.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


SNAPSHOT_FORMAT_TAG = "pak-kharcha-backup"
BACKUP_FORMAT_VERSION = "1.0"


class DateRange(BaseModel):
    """Earliest and latest expense date covered by a snapshot."""

    earliest: Optional[date] = None
    latest: Optional[date] = None


class BackupMetadata(BaseModel):
    """
    Derived description of a snapshot.

    Recomputed every time a snapshot is made, never edited by hand.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    format_version: str = Field(
        default=BACKUP_FORMAT_VERSION,
        validation_alias=AliasChoices("formatVersion", "format_version", "version"),
    )
    owner: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("owner", "username"),
    )
    created_at: datetime = Field(
        ...,
        validation_alias=AliasChoices("createdAt", "created_at"),
    )
    record_count: int = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("recordCount", "record_count", "expenseCount"),
    )
    total_amount: Decimal = Field(
        ...,
        validation_alias=AliasChoices("totalAmount", "total_amount"),
    )
    date_range: DateRange = Field(
        default_factory=DateRange,
        validation_alias=AliasChoices("dateRange", "date_range"),
    )
    distinct_categories: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("distinctCategories", "distinct_categories", "categories"),
    )
    checksum: str = Field(
        ...,
        description="Checksum of the serialized record array"
    )


class BackupSnapshot(BaseModel):
    """
    A portable backup unit.

    Records are kept as plain documents so that restoring can validate each
    one individually instead of failing the whole file on a single bad row.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    metadata: BackupMetadata
    records: list[Any] = Field(
        ...,
        validation_alias=AliasChoices("records", "expenses"),
    )
    format_tag: Literal["pak-kharcha-backup"] = Field(
        default=SNAPSHOT_FORMAT_TAG,
        alias="format",
    )

    def to_document(self) -> dict[str, Any]:
        """Convert to the JSON-ready document written to storage and files."""
        return {
            "metadata": self.metadata.model_dump(mode="json", by_alias=True),
            "records": self.records,
            "format": self.format_tag,
        }


class LocalBackup(BaseModel):
    """A snapshot stored in the owner's local storage namespace."""

    snapshot_id: str
    metadata: BackupMetadata


class DatasetMetadata(BaseModel):
    """Bookkeeping stored beside an owner's dataset text."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    format_version: str
    owner: str
    last_saved: datetime
    record_count: int = Field(ge=0)
    checksum: str


# =============================================================================
# SCHEDULE
# =============================================================================

class BackupFrequency(str, Enum):
    """How often automatic backups run."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of shorter months."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class BackupSchedule(BaseModel):
    """
    Automatic backup preferences for one owner.

    Only ``BackupManager.set_schedule`` and the scheduler write this.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = False
    frequency: BackupFrequency = BackupFrequency.WEEKLY
    last_backup: Optional[datetime] = None
    next_backup: Optional[datetime] = None
    retention_days: int = Field(default=30, ge=0)

    def next_after(self, moment: datetime) -> datetime:
        """One interval of ``frequency`` after ``moment``."""
        if self.frequency == BackupFrequency.DAILY:
            return moment + timedelta(days=1)
        if self.frequency == BackupFrequency.WEEKLY:
            return moment + timedelta(days=7)
        return add_months(moment, 1)

    def is_due(self, now: datetime) -> bool:
        """True when enabled and the next backup time has been reached."""
        return self.enabled and self.next_backup is not None and self.next_backup <= now
