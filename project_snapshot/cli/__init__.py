"""
CLI module for project-snapshot.

This module provides command-line interface functionality
using Click and Rich.
"""

from project_snapshot.cli.main import main

__all__ = ["main"]
