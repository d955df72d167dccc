"""Audit logging package."""

from kharcha_vault.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
