"""
Snapshot models for project-snapshot.

This module defines Pydantic models for restore points, the per-facet
manifests written next to each artifact, backup attempts and restore
reports.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from project_snapshot.utils.helpers import utc_now


class StepPolicy(str, Enum):
    """Whether a failing backup step aborts the whole backup."""
    MANDATORY = "mandatory"
    BEST_EFFORT = "best-effort"


class StepStatus(str, Enum):
    """Backup step status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class RestorePointStatus(str, Enum):
    """Lifecycle of a restore point."""
    PENDING = "pending"
    COMPLETE = "complete"
    STALE = "stale"
    PURGED = "purged"


class FacetStatus(str, Enum):
    """Outcome of restoring one facet."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    READY = "ready"


class RestorePoint(BaseModel):
    """A registered, restorable backup and the locations of its artifacts."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    label: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    phase: Optional[Union[int, str]] = None
    week: Optional[Union[int, str]] = None
    repository_dir: Optional[str] = Field(default=None, alias="git")
    database_dir: Optional[str] = Field(default=None, alias="database")
    config_dir: Optional[str] = Field(default=None, alias="config")
    state_dir: Optional[str] = Field(default=None, alias="state")
    archive_path: Optional[str] = Field(default=None, alias="archive")

    def artifact_paths(self) -> Dict[str, Path]:
        """Facet name -> artifact path, for the facets this restore point captured."""
        paths = {
            "git": self.repository_dir,
            "database": self.database_dir,
            "config": self.config_dir,
            "state": self.state_dir,
            "archive": self.archive_path,
        }
        return {facet: Path(path) for facet, path in paths.items() if path}

    def to_record(self) -> Dict[str, Any]:
        """Serialize with the ledger's field names."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RestorePoint":
        return cls.model_validate(record)


class RestorePointListing(BaseModel):
    """A restore point annotated with a live existence check of its artifacts."""
    restore_point: RestorePoint
    artifacts: Dict[str, bool] = Field(default_factory=dict)
    status: RestorePointStatus = RestorePointStatus.COMPLETE

    @property
    def is_stale(self) -> bool:
        return self.status == RestorePointStatus.STALE

    @property
    def missing(self) -> List[str]:
        return [facet for facet, exists in self.artifacts.items() if not exists]


class RepositorySnapshot(BaseModel):
    """Branch, commit and dirty state captured with a full-history bundle."""
    model_config = ConfigDict(populate_by_name=True)

    branch: str = ""
    commit: str
    has_uncommitted: bool = Field(default=False, alias="hasUncommitted")
    status: str = ""
    bundle_path: str = Field(alias="bundlePath")


class FileManifestEntry(BaseModel):
    """One captured file: where it lived and where its copy is."""
    original: str
    backup: str
    dump: Optional[str] = None


class FileManifest(BaseModel):
    """Files captured by a manifest-copy facet."""
    files: List[FileManifestEntry] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class DatabaseSnapshot(FileManifest):
    """Raw database copies with optional logical-dump siblings."""
    pass


class ConfigSnapshot(FileManifest):
    """Copies of the enumerated configuration and metadata files."""
    pass


class SystemStateSnapshot(BaseModel):
    """Diagnostic telemetry captured for later debugging; never restored."""
    timestamp: datetime = Field(default_factory=utc_now)
    python_version: str = ""
    platform: str = ""
    architecture: str = ""
    hostname: str = ""
    working_directory: str = ""
    environment: Dict[str, Optional[str]] = Field(default_factory=dict)
    processes: Union[List[Dict[str, Any]], str] = Field(default_factory=list)
    ports: Union[List[Dict[str, Any]], str] = Field(default_factory=list)
    accelerator: str = ""


class AttemptStep(BaseModel):
    """One step of a backup attempt."""
    name: str
    policy: StepPolicy
    status: StepStatus = StepStatus.PENDING
    artifact: Optional[str] = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def start(self):
        """Mark step as started."""
        self.status = StepStatus.RUNNING
        self.start_time = utc_now()

    def complete(self, artifact: Optional[str]):
        """Mark step as completed."""
        self.status = StepStatus.COMPLETED
        self.artifact = artifact
        self.end_time = utc_now()

    def fail(self, error: str):
        """Mark step as failed."""
        self.status = StepStatus.FAILED
        self.error = error
        self.end_time = utc_now()

    @property
    def duration(self) -> Optional[float]:
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class BackupAttempt(BaseModel):
    """
    State machine for one backup run.

    ``started`` -> ``step-N-complete`` ... -> ``registered`` | ``aborted``.
    ``written`` lists every artifact path created so an abort can remove them.
    """
    backup_id: str
    label: str
    started_at: datetime = Field(default_factory=utc_now)
    state: str = "started"
    steps: List[AttemptStep] = Field(default_factory=list)
    written: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    def step_complete(self, index: int):
        self.state = f"step-{index}-complete"

    def register(self):
        self.state = "registered"

    def abort(self, error: str):
        self.state = "aborted"
        self.error = error

    @property
    def is_registered(self) -> bool:
        return self.state == "registered"

    @property
    def is_aborted(self) -> bool:
        return self.state == "aborted"


class RestoreOptions(BaseModel):
    """Switches for one restore call."""
    restore_code: bool = True
    restore_database: bool = True
    restore_config: bool = True
    skip_current_backup: bool = False
    force: bool = False
    continue_on_error: bool = False
    dry_run: bool = False
    auto_stash: bool = True

    def selected_facets(self) -> List[str]:
        facets = []
        if self.restore_code:
            facets.append("code")
        if self.restore_database:
            facets.append("database")
        if self.restore_config:
            facets.append("config")
        return facets


class FacetResult(BaseModel):
    """Result of restoring (or simulating) one facet."""
    facet: str
    status: FacetStatus
    message: str = ""


class RestoreReport(BaseModel):
    """Per-facet outcome of a restore call."""
    backup_id: str
    safety_net_id: Optional[str] = None
    dry_run: bool = False
    facets: Dict[str, FacetResult] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)

    def record(self, facet: str, status: FacetStatus, message: str = "") -> FacetResult:
        result = FacetResult(facet=facet, status=status, message=message)
        self.facets[facet] = result
        return result

    def with_status(self, status: FacetStatus) -> List[str]:
        return [facet for facet, result in self.facets.items() if result.status == status]

    @property
    def succeeded(self) -> List[str]:
        return self.with_status(FacetStatus.COMPLETED)

    @property
    def failed(self) -> List[str]:
        return self.with_status(FacetStatus.FAILED)

    @property
    def outcome(self) -> str:
        """``success``, ``partial`` or ``failed`` over the attempted facets."""
        if self.failed and self.succeeded:
            return "partial"
        if self.failed:
            return "failed"
        return "success"
