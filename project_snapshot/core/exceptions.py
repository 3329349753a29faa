"""
Custom exceptions for project-snapshot.

This module defines the exception classes raised by the snapshot,
registry and restore layers so callers can tell a failed capture
from an unknown restore point or a partially applied restore.
"""

from typing import Any, Dict, Optional


class SnapshotOrchestratorError(Exception):
    """Base exception class for project-snapshot errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}


class ConfigurationError(SnapshotOrchestratorError):
    """Raised when there's an error in configuration."""
    pass


class SnapshotError(SnapshotOrchestratorError):
    """Raised when a snapshot step fails (missing tool, permission denied, absent path)."""
    pass


class RegistryError(SnapshotOrchestratorError):
    """Raised when the restore point ledger is unreadable or corrupt."""
    pass


class RestoreNotFoundError(SnapshotOrchestratorError):
    """Raised when a restore point id is not registered."""

    def __init__(self, backup_id: str, **kwargs):
        super().__init__(f"Backup {backup_id} not found", **kwargs)
        self.backup_id = backup_id


class RestoreStepError(SnapshotOrchestratorError):
    """Raised when a selected restore facet fails.

    ``report`` carries the per-facet results gathered so far, so facets
    that were already restored stay visible to the caller.
    """

    def __init__(self, message: str, report: Optional[Any] = None, facet: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.report = report
        self.facet = facet
