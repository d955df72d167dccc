"""
Configuration Management for Kharcha Vault

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here and handed to the
core components when they are constructed. No component reads validation
bounds or storage locations from module-level globals, so tests can build
a vault with any limits they like.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CATEGORIES = (
    "Food & Groceries",
    "Transportation",
    "Utilities",
    "Housing",
    "Healthcare",
    "Education",
    "Entertainment",
    "Shopping",
    "Charity/Zakat",
    "Mobile/Internet",
    "Family Support",
    "Debt Payment",
    "Miscellaneous",
)


class ValidationSettings(BaseSettings):
    """Field-level bounds applied to every expense record."""

    model_config = SettingsConfigDict(
        env_prefix="KHARCHA_VALIDATION_",
        extra="ignore"
    )

    max_amount: float = Field(
        default=10_000_000.0,
        gt=0,
        description="Largest amount a single expense may carry"
    )
    min_description_length: int = Field(
        default=2,
        ge=1,
        description="Shortest allowed description"
    )
    max_description_length: int = Field(
        default=200,
        ge=1,
        description="Longest allowed description"
    )
    allowed_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORIES),
        description="Category names accepted for typed records"
    )
    allow_custom_categories: bool = Field(
        default=False,
        description="Accept free-form category names instead of the fixed list"
    )
    max_custom_category_length: int = Field(
        default=50,
        ge=1,
        description="Longest free-form category name"
    )

    @field_validator('allowed_categories')
    @classmethod
    def validate_categories(cls, v: list[str]) -> list[str]:
        """The fixed category list must not be empty."""
        cleaned = [name.strip() for name in v if name.strip()]
        if not cleaned:
            raise ValueError("allowed_categories must contain at least one category")
        return cleaned


class StorageSettings(BaseSettings):
    """Storage backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KHARCHA_STORAGE_",
        extra="ignore"
    )

    backend: Literal["memory", "file", "sql"] = Field(
        default="file",
        description="Which key/value backend to use"
    )
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for the file backend"
    )
    database_url: str = Field(
        default="sqlite:///data/kharcha.db",
        description="SQLAlchemy URL for the sql backend"
    )
    quota_bytes: Optional[int] = Field(
        default=None,
        ge=1,
        description="Byte quota for the memory backend (None = unlimited)"
    )
    write_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for transient file-system write failures"
    )


class BackupSettings(BaseSettings):
    """Snapshot, export and schedule configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KHARCHA_BACKUP_",
        extra="ignore"
    )

    max_local_backups: int = Field(
        default=5,
        ge=1,
        description="Number of local snapshots kept per owner"
    )
    max_dataset_backups: int = Field(
        default=3,
        ge=1,
        description="Timestamped dataset copies kept per owner"
    )
    default_retention_days: int = Field(
        default=30,
        ge=0,
        description="Age limit applied after scheduled backups"
    )
    recheck_interval_seconds: float = Field(
        default=24 * 60 * 60,
        gt=0,
        description="Longest single wait of the backup scheduler"
    )
    export_dir: Optional[Path] = Field(
        default=None,
        description="Where exported files are written (None = no file side effect)"
    )
    max_import_size_mb: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Largest accepted import file in MB"
    )

    @property
    def max_import_size_bytes(self) -> int:
        """Get max import size in bytes."""
        return self.max_import_size_mb * 1024 * 1024


class AuditSettings(BaseSettings):
    """Audit trail configuration."""

    model_config = SettingsConfigDict(
        env_prefix="KHARCHA_AUDIT_",
        extra="ignore"
    )

    persist_events: bool = Field(
        default=True,
        description="Append audit events to the owner's audit log"
    )
    max_events_per_owner: int = Field(
        default=200,
        ge=1,
        description="Audit log entries kept per owner"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )

    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
