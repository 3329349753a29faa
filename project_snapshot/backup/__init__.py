"""
Checkpoint and restore engine for project-snapshot.

This module provides the facet snapshot strategies, the restore point
registry and its stores, and the orchestrators that create restore
points and roll a project back to them.
"""

from project_snapshot.backup.manager import BackupOrchestrator
from project_snapshot.backup.registry import RestorePointRegistry
from project_snapshot.backup.rollback import RestoreCoordinator
from project_snapshot.backup.storage import (
    FileRestorePointStore,
    InMemoryRestorePointStore,
    RestorePointStore,
    RetentionPolicy,
)
from project_snapshot.backup.validator import RecoveryValidator, ValidationResult
from project_snapshot.backup.strategies import (
    ArchiveBuilder,
    BackupStrategy,
    ConfigSnapshotter,
    DatabaseSnapshotter,
    RepositorySnapshotter,
    SystemStateSnapshotter,
)

__all__ = [
    "BackupOrchestrator",
    "RestoreCoordinator",
    "RestorePointRegistry",
    "RestorePointStore",
    "InMemoryRestorePointStore",
    "FileRestorePointStore",
    "RetentionPolicy",
    "RecoveryValidator",
    "ValidationResult",
    "BackupStrategy",
    "RepositorySnapshotter",
    "DatabaseSnapshotter",
    "ConfigSnapshotter",
    "SystemStateSnapshotter",
    "ArchiveBuilder",
]
