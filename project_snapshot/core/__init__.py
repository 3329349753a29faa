"""
Core module for project-snapshot.

This module contains the exception hierarchy shared by every layer.
"""

from project_snapshot.core.exceptions import (
    SnapshotOrchestratorError,
    ConfigurationError,
    SnapshotError,
    RegistryError,
    RestoreNotFoundError,
    RestoreStepError,
)

__all__ = [
    "SnapshotOrchestratorError",
    "ConfigurationError",
    "SnapshotError",
    "RegistryError",
    "RestoreNotFoundError",
    "RestoreStepError",
]
