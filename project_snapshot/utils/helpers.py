"""
Helper utilities for project-snapshot.

This module contains various utility functions used throughout
the application for common operations.
"""

import hashlib
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp_for_id(moment: datetime) -> str:
    """
    Render a timestamp the way restore point ids embed it.

    ``2026-01-07T19:00:00.000Z`` becomes ``2026-01-07T19-00-00-000Z``.
    """
    moment = moment.astimezone(timezone.utc)
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def generate_restore_point_id(label: str, moment: datetime) -> str:
    """Generate a restore point ID from a label and a timestamp."""
    return f"{safe_filename(label) or 'manual'}-{format_timestamp_for_id(moment)}"


def calculate_file_checksum(file_path: Union[str, Path], algorithm: str = "sha256") -> str:
    """
    Calculate checksum for a file.

    Args:
        file_path: Path to the file
        algorithm: Hash algorithm (md5, sha1, sha256, sha512)

    Returns:
        Hexadecimal checksum string
    """
    hash_obj = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(4096), b""):
            hash_obj.update(chunk)

    return hash_obj.hexdigest()


def format_bytes(bytes_count: float) -> str:
    """Format bytes into human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"


def safe_filename(filename: str) -> str:
    """Convert a string to a safe filename."""
    unsafe_chars = '<>:"/\\|?* '
    for char in unsafe_chars:
        filename = filename.replace(char, '_')

    filename = filename.strip(' .')

    if len(filename) > 200:
        filename = filename[:200]

    return filename


def flatten_relative_path(relative_path: str) -> str:
    """Flatten a project-relative path into a single file name (``a/b.json`` -> ``a_b.json``)."""
    return relative_path.replace("\\", "/").strip("/").replace("/", "_")


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load configuration from YAML or JSON file.

    Args:
        file_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            return yaml.safe_load(f) or {}
        elif file_path.suffix.lower() == '.json':
            return json.load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_path.suffix}")


def write_json(file_path: Union[str, Path], data: Any) -> None:
    """Write ``data`` as indented JSON, creating parent directories."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, default=str)


def atomic_write_bytes(file_path: Union[str, Path], content: bytes) -> None:
    """
    Replace ``file_path`` with ``content`` via a temp file and ``os.replace``.

    Readers never observe a half-written file; on failure the temp file
    is removed and the original is left untouched.
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(prefix=f".{file_path.name}.", suffix=".tmp", dir=file_path.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def atomic_write_json(file_path: Union[str, Path], data: Any) -> None:
    """Atomically write ``data`` as indented JSON."""
    payload = json.dumps(data, indent=2, default=str) + "\n"
    atomic_write_bytes(file_path, payload.encode('utf-8'))


def get_nested(data: Dict[str, Any], *keys: str, default: Optional[Any] = None) -> Any:
    """Walk nested dictionaries, returning ``default`` on the first missing key."""
    current: Any = data
    for key in keys:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current
