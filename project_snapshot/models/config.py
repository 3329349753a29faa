"""
Configuration models for project-snapshot.

This module defines the Pydantic model describing which project is
snapshotted, where artifacts go, and which files each facet covers.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from project_snapshot.core.exceptions import ConfigurationError
from project_snapshot.utils.helpers import load_config_file

STEP_NAMES = ("repository", "database", "config", "state", "archive")

DEFAULT_DATABASE_PATHS = [
    "database.sqlite",
    "packages/user-api/database.sqlite",
    "packages/system-api/database.sqlite",
]

DEFAULT_CONFIG_FILES = [
    ".env",
    "package.json",
    "pyproject.toml",
    "packages/system-api/package.json",
    "packages/user-api/package.json",
    "packages/web/package.json",
    "packages/cli/package.json",
    "project-state.json",
    "agents-data.json",
]

DEFAULT_ARCHIVE_EXCLUDES = [
    "node_modules",
    "dist",
    "build",
    ".next",
    "*.log",
    "backups",
    ".git",
    "__pycache__",
    ".venv",
    ".pytest_cache",
]


class SnapshotConfig(BaseModel):
    """Settings for one snapshotted project."""
    model_config = ConfigDict(validate_assignment=True)

    project_root: Path = Field(default_factory=Path.cwd, description="Working tree to snapshot")
    backups_dir: Path = Path("backups")
    state_file: Path = Field(Path("project-state.json"), description="Shared project-state document holding the registry")

    database_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_DATABASE_PATHS))
    config_files: List[str] = Field(default_factory=lambda: list(DEFAULT_CONFIG_FILES))
    archive_excludes: List[str] = Field(default_factory=lambda: list(DEFAULT_ARCHIVE_EXCLUDES))

    max_restore_points: int = Field(default=10, ge=1)
    default_retention_days: int = Field(default=30, ge=0)
    mandatory_steps: List[str] = Field(default_factory=lambda: ["repository", "archive"])

    state_env_vars: List[str] = Field(default_factory=lambda: [
        "NODE_ENV", "AI_PROVIDER_ENDPOINT", "SYSTEM_API_PORT", "USER_API_PORT", "VIRTUAL_ENV",
    ])
    state_process_names: List[str] = Field(default_factory=lambda: ["node", "npm", "python"])
    state_port_ranges: List[Tuple[int, int]] = Field(default_factory=lambda: [(3000, 3009), (4000, 4009)])

    default_phase: int = 1
    default_week: int = 1

    @field_validator('mandatory_steps')
    @classmethod
    def known_steps_only(cls, v):
        unknown = [step for step in v if step not in STEP_NAMES]
        if unknown:
            raise ValueError(f"Unknown backup steps: {', '.join(unknown)}")
        if "state" in v:
            raise ValueError("The state step is diagnostic and cannot be mandatory")
        return v

    @field_validator('state_port_ranges')
    @classmethod
    def ordered_port_ranges(cls, v):
        for low, high in v:
            if low > high:
                raise ValueError(f"Invalid port range {low}-{high}")
        return v

    @property
    def root(self) -> Path:
        return self.project_root.expanduser().resolve()

    @property
    def backups_path(self) -> Path:
        return self.root / self.backups_dir.expanduser()

    @property
    def state_path(self) -> Path:
        return self.root / self.state_file.expanduser()

    @property
    def lock_path(self) -> Path:
        return self.state_path.with_name(self.state_path.name + ".lock")

    def relative_to_root(self, path: Path) -> Optional[str]:
        """POSIX path of ``path`` relative to the root, or None when it lies outside."""
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return None

    def owned_paths(self) -> List[str]:
        """Root-relative paths this tool writes inside the working tree."""
        candidates = (self.backups_path, self.state_path, self.lock_path)
        return [relative for relative in map(self.relative_to_root, candidates) if relative is not None]

    def facet_dir(self, facet: str, backup_id: str) -> Path:
        """Directory holding one facet's artifacts for one backup."""
        return self.backups_path / facet / backup_id

    def archive_path_for(self, backup_id: str) -> Path:
        return self.backups_path / "full" / f"{backup_id}.tar.gz"

    def resolve(self, relative_path: str) -> Path:
        """Resolve a project-relative path against the root."""
        return self.root / relative_path

    @classmethod
    def from_file(cls, file_path: Union[str, Path], **overrides: Any) -> "SnapshotConfig":
        """Load settings from a YAML or JSON file; ``overrides`` win over file values."""
        try:
            data: Dict[str, Any] = load_config_file(file_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not read configuration {file_path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration {file_path} must be a mapping")

        data.update({key: value for key, value in overrides.items() if value is not None})
        return cls.build(**data)

    @classmethod
    def build(cls, **values: Any) -> "SnapshotConfig":
        """Construct a config, reporting invalid values as ConfigurationError."""
        try:
            return cls(**{key: value for key, value in values.items() if value is not None})
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", details={"errors": e.errors()})


def load_snapshot_config(
    config_file: Optional[Union[str, Path]] = None,
    project_root: Optional[Union[str, Path]] = None,
) -> SnapshotConfig:
    """Build the effective configuration for a CLI invocation."""
    if config_file:
        return SnapshotConfig.from_file(config_file, project_root=project_root)
    return SnapshotConfig.build(project_root=project_root)
