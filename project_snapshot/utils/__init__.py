"""
Utilities module for project-snapshot.

This module contains utility functions and helper classes
used throughout the application.
"""

from project_snapshot.utils.helpers import (
    atomic_write_bytes,
    atomic_write_json,
    calculate_file_checksum,
    flatten_relative_path,
    format_bytes,
    format_timestamp_for_id,
    generate_restore_point_id,
    get_nested,
    load_config_file,
    safe_filename,
    utc_now,
    write_json,
)
from project_snapshot.utils.logging import (
    setup_logging,
    get_logger,
)
from project_snapshot.utils.process import (
    ProcessResult,
    ProcessRunner,
    SubprocessRunner,
)

__all__ = [
    # Helper functions
    "atomic_write_bytes",
    "atomic_write_json",
    "calculate_file_checksum",
    "flatten_relative_path",
    "format_bytes",
    "format_timestamp_for_id",
    "generate_restore_point_id",
    "get_nested",
    "load_config_file",
    "safe_filename",
    "utc_now",
    "write_json",
    # Logging utilities
    "setup_logging",
    "get_logger",
    # External processes
    "ProcessResult",
    "ProcessRunner",
    "SubprocessRunner",
]
