"""
project-snapshot

Checkpoint and restore for an actively developed project: code history,
embedded databases, configuration files and a full archive captured
under one named restore point, and rolled back on demand.
"""

__version__ = "0.1.0"

from project_snapshot.models.config import SnapshotConfig
from project_snapshot.models.snapshot import RestoreOptions, RestorePoint, RestoreReport

__all__ = [
    "SnapshotConfig",
    "RestoreOptions",
    "RestorePoint",
    "RestoreReport",
]
