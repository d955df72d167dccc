"""Dataset persistence package."""

from kharcha_vault.services.dataset.store import ExpenseDatasetStore

__all__ = ["ExpenseDatasetStore"]
