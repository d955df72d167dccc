"""Injectable time source shared by the core components."""

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime) -> datetime:
    """Treat naive datetimes (old files, hand edits) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def file_timestamp(moment: datetime) -> str:
    """Timestamp fragment used in exported file names: 2024-01-31T09-15-00."""
    return moment.strftime("%Y-%m-%dT%H-%M-%S")


def key_timestamp(moment: datetime) -> str:
    """Sortable UTC stamp used in storage keys: 20240131T091500000000Z."""
    return ensure_aware(moment).astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
