"""
Data models for project-snapshot.

This module contains the Pydantic models used for configuration,
restore point records and restore reporting.
"""

from project_snapshot.models.config import (
    SnapshotConfig,
    load_snapshot_config,
)
from project_snapshot.models.snapshot import (
    AttemptStep,
    BackupAttempt,
    ConfigSnapshot,
    DatabaseSnapshot,
    FacetResult,
    FacetStatus,
    FileManifest,
    FileManifestEntry,
    RepositorySnapshot,
    RestoreOptions,
    RestorePoint,
    RestorePointListing,
    RestorePointStatus,
    RestoreReport,
    StepPolicy,
    StepStatus,
    SystemStateSnapshot,
)

__all__ = [
    # Configuration models
    "SnapshotConfig",
    "load_snapshot_config",
    # Snapshot models
    "AttemptStep",
    "BackupAttempt",
    "ConfigSnapshot",
    "DatabaseSnapshot",
    "FacetResult",
    "FacetStatus",
    "FileManifest",
    "FileManifestEntry",
    "RepositorySnapshot",
    "RestoreOptions",
    "RestorePoint",
    "RestorePointListing",
    "RestorePointStatus",
    "RestoreReport",
    "StepPolicy",
    "StepStatus",
    "SystemStateSnapshot",
]
