"""
Shared fixtures for Kharcha Vault tests.

Every component gets the same fixed clock (2024-06-15 12:00 UTC) so
future-date checks, snapshot ids and retention cut-offs are deterministic.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from kharcha_vault.config import (
    AuditSettings,
    BackupSettings,
    Settings,
    StorageSettings,
    ValidationSettings,
)
from kharcha_vault.models.expense import Expense
from kharcha_vault.orchestrator import create_vault
from kharcha_vault.serialization import ExpenseCsvCodec
from kharcha_vault.services.export import InMemoryExportSink
from kharcha_vault.services.storage import InMemoryStorage
from kharcha_vault.validation import ExpenseValidator


FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validation_settings():
    return ValidationSettings()


@pytest.fixture
def validator(validation_settings, clock):
    return ExpenseValidator(validation_settings, clock=clock)


@pytest.fixture
def codec(validator):
    return ExpenseCsvCodec(validator)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def export_sink():
    return InMemoryExportSink()


@pytest.fixture
def settings():
    return Settings(
        validation=ValidationSettings(),
        storage=StorageSettings(backend="memory"),
        backup=BackupSettings(),
        audit=AuditSettings(),
    )


@pytest.fixture
def vault(settings, storage, export_sink, clock):
    return create_vault(settings, storage=storage, export_sink=export_sink, clock=clock)


def make_expense(index: int = 1, **overrides) -> Expense:
    """A valid expense; ``index`` keeps id and content unique."""
    fields = {
        "id": f"e{index}",
        "amount": Decimal(100 + index),
        "category": "Food & Groceries",
        "description": f"Groceries run {index}",
        "date": date(2024, 6, 1) + timedelta(days=index % 10),
    }
    fields.update(overrides)
    return Expense(**fields)


@pytest.fixture
def expenses():
    return [make_expense(i) for i in range(1, 4)]
