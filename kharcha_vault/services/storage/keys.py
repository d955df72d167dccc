"""
Storage key namespacing.

Every key an owner has lives under ``"<owner>/"``:

    alice/dataset               CSV text of the current dataset
    alice/dataset-previous      the dataset as it was before the last save
    alice/dataset-meta          DatasetMetadata JSON (checksum, counts)
    alice/dataset-backups/<ts>  timestamped copies of the dataset text
    alice/schedule              BackupSchedule JSON
    alice/audit-log             capped JSON list of audit events
    alice/snapshots/<id>        one BackupSnapshot document per key

The trailing slash keeps ``ann/`` from matching ``anna/``.
"""

from typing import Optional


SNAPSHOTS_SEGMENT = "snapshots"
DATASET_BACKUPS_SEGMENT = "dataset-backups"


def normalize_owner(owner: str) -> str:
    """
    Canonical form of an owner identity used in keys.

    Raises:
        ValueError: If the owner is empty or contains a path separator
    """
    if not isinstance(owner, str) or not owner.strip():
        raise ValueError("Owner is required")
    normalized = owner.strip().lower()
    if "/" in normalized:
        raise ValueError(f"Owner may not contain '/': {owner!r}")
    return normalized


class StorageKeys:
    """Builds the namespaced keys for one owner."""

    def __init__(self, owner: str):
        self.owner = normalize_owner(owner)

    @property
    def prefix(self) -> str:
        return f"{self.owner}/"

    @property
    def dataset(self) -> str:
        return f"{self.prefix}dataset"

    @property
    def previous_dataset(self) -> str:
        return f"{self.prefix}dataset-previous"

    @property
    def dataset_meta(self) -> str:
        return f"{self.prefix}dataset-meta"

    @property
    def dataset_backup_prefix(self) -> str:
        return f"{self.prefix}{DATASET_BACKUPS_SEGMENT}/"

    def dataset_backup(self, stamp: str) -> str:
        return f"{self.dataset_backup_prefix}{stamp}"

    @property
    def schedule(self) -> str:
        return f"{self.prefix}schedule"

    @property
    def audit_log(self) -> str:
        return f"{self.prefix}audit-log"

    @property
    def snapshot_prefix(self) -> str:
        return f"{self.prefix}{SNAPSHOTS_SEGMENT}/"

    def snapshot(self, snapshot_id: str) -> str:
        return f"{self.snapshot_prefix}{snapshot_id}"

    def snapshot_id_from_key(self, key: str) -> str:
        return key[len(self.snapshot_prefix):]


def owner_from_schedule_key(key: str) -> Optional[str]:
    """Owner part of a ``<owner>/schedule`` key, or None for other keys."""
    owner, _, rest = key.partition("/")
    if owner and rest == "schedule":
        return owner
    return None
