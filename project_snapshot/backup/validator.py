"""
Recovery validator for ensuring restore point integrity.

This module checks that a registered restore point still has the
artifacts and manifests a restore needs before anything destructive
happens to the working tree.
"""

import json
import tarfile
from pathlib import Path
from typing import Any, Dict, List

from project_snapshot.models.snapshot import RestorePoint
from project_snapshot.utils.helpers import calculate_file_checksum
from project_snapshot.utils.logging import get_logger

logger = get_logger("backup.validator")


class ValidationResult:
    """Result of restore point validation."""

    def __init__(self):
        self.is_valid = True
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.details: Dict[str, Any] = {}

    def add_error(self, message: str):
        """Add an error to the validation result."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str):
        """Add a warning to the validation result."""
        self.warnings.append(message)

    @property
    def error(self) -> str:
        return "; ".join(self.errors)


class RecoveryValidator:
    """Validates restore point integrity and recovery readiness."""

    # facet -> manifest file expected inside the facet directory
    MANIFESTS = {
        "git": "git-info.json",
        "database": "db-info.json",
        "config": "config-info.json",
    }
    RESTORABLE = ("git", "database", "config", "archive")

    def __init__(self, verify_archive: bool = True):
        self.verify_archive = verify_archive

    def validate(self, point: RestorePoint) -> ValidationResult:
        """Validate a single restore point for integrity and recoverability."""
        result = ValidationResult()
        result.details["backup_id"] = point.id

        if not point.id:
            result.add_error("Missing required field: id")
            return result
        for field in ("phase", "week"):
            if getattr(point, field) is None:
                result.add_warning(f"Missing milestone field: {field}")

        paths = point.artifact_paths()
        existing = 0
        for facet in self.RESTORABLE:
            path = paths.get(facet)
            if path is None:
                continue
            if path.exists():
                existing += 1
            else:
                result.add_warning(f"{facet} backup path does not exist: {path}")

        if existing == 0:
            result.add_error("No backup files found")
            return result

        for facet, manifest in self.MANIFESTS.items():
            path = paths.get(facet)
            if path is not None and path.is_dir():
                self._validate_manifest(facet, path / manifest, result)

        archive = paths.get("archive")
        if self.verify_archive and archive is not None and archive.is_file():
            self._validate_archive(archive, result)

        if result.warnings:
            logger.warning("Backup integrity warnings for %s:\n  - %s", point.id, "\n  - ".join(result.warnings))
        if result.is_valid:
            logger.debug("Backup %s passed validation", point.id)
        else:
            logger.error("Backup %s failed validation: %s", point.id, result.error)
        return result

    def _validate_manifest(self, facet: str, manifest: Path, result: ValidationResult):
        if not manifest.exists():
            result.add_warning(f"{facet} info file missing")
            return
        try:
            with open(manifest, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            result.add_warning(f"{facet} info invalid: {e}")
            return

        if facet == "git" and not (isinstance(data, dict) and data.get("commit")):
            result.add_warning("git info incomplete")

    def _validate_archive(self, archive: Path, result: ValidationResult):
        try:
            if not tarfile.is_tarfile(archive):
                result.add_warning(f"Archive is not a readable tarball: {archive}")
                return
            result.details["archive_size"] = archive.stat().st_size
            result.details["archive_checksum"] = calculate_file_checksum(archive)
        except OSError as e:
            result.add_warning(f"Archive could not be read: {e}")
