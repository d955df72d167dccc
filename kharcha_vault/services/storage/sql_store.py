"""
SQL Storage Implementation

A single ``kv_entries`` table in any SQLAlchemy-supported database. The
default is a SQLite file next to the application data, which makes this the
"lightweight local database" backend.

Each write runs in its own transaction; a failed write is rolled back so
the previous row is still what readers see.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import DateTime, String, Text, create_engine, delete, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from kharcha_vault.services.storage.interface import (
    KeyValueStorage,
    StorageConnectionError,
    StorageError,
)


class Base(DeclarativeBase):
    """Declarative base for the storage table."""


class KeyValueEntry(Base):
    """One stored key and its full text value."""

    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


def _prepare_sqlite_path(database_url: str) -> None:
    """Ensure on-disk SQLite paths exist before engine creation."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite"):
        return
    database = url.database
    if not database or database == ":memory:":
        return
    Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def create_storage_engine(database_url: str) -> Engine:
    """Create an engine and make sure the table exists."""
    try:
        _prepare_sqlite_path(database_url)
        connect_args = (
            {"check_same_thread": False}
            if make_url(database_url).drivername.startswith("sqlite")
            else {}
        )
        engine = create_engine(database_url, future=True, connect_args=connect_args)
        Base.metadata.create_all(bind=engine)
        return engine
    except (SQLAlchemyError, OSError) as e:
        raise StorageConnectionError(f"Cannot open database {database_url}: {e}")


class SqlStorage(KeyValueStorage):
    """SQLAlchemy-backed key/value storage."""

    def __init__(self, database_url: str = "sqlite:///:memory:", engine: Optional[Engine] = None):
        self._engine = engine or create_storage_engine(database_url)
        self._sessions = sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )

    def _session(self) -> Session:
        return self._sessions()

    async def get(self, key: str) -> Optional[str]:
        try:
            with self._session() as session:
                entry = session.get(KeyValueEntry, key)
                return entry.value if entry is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {key}: {e}")

    async def set(self, key: str, value: str) -> None:
        try:
            with self._session() as session, session.begin():
                entry = session.get(KeyValueEntry, key)
                now = datetime.now(timezone.utc)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=value, updated_at=now))
                else:
                    entry.value = value
                    entry.updated_at = now
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {key}: {e}")

    async def delete(self, key: str) -> bool:
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    delete(KeyValueEntry).where(KeyValueEntry.key == key)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete {key}: {e}")

    async def list_keys(self, prefix: str = "") -> list[str]:
        statement = select(KeyValueEntry.key).order_by(KeyValueEntry.key)
        if prefix:
            statement = statement.where(KeyValueEntry.key.startswith(prefix, autoescape=True))
        try:
            with self._session() as session:
                return list(session.scalars(statement))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list keys under {prefix!r}: {e}")

    async def close(self) -> None:
        self._engine.dispose()
