"""
Kharcha Vault - Source Package

The persistence and backup core of a personal expense tracker.
UI, charts and login screens sit on top of the contract exposed by
``kharcha_vault.orchestrator.ExpenseVault``.

DESIGN PRINCIPLES:
1. Validate before anything touches storage
2. Partial failure is reported, never raised
3. The stored dataset is never left half-written
4. Integrity checks warn, they do not block
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Kharcha Vault Team"
