"""
Backup orchestrator for creating and managing restore points.

This module provides the BackupOrchestrator class that runs the facet
snapshot strategies in a fixed order, applies each step's mandatory or
best-effort policy, and registers the combined restore point only when
every mandatory step succeeded.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Callable, Collection, Dict, List, NamedTuple, Optional

from project_snapshot.backup.registry import RestorePointRegistry
from project_snapshot.backup.storage import FileRestorePointStore, RetentionPolicy
from project_snapshot.backup.strategies import (
    ArchiveBuilder,
    BackupStrategy,
    ConfigSnapshotter,
    DatabaseSnapshotter,
    RepositorySnapshotter,
    SystemStateSnapshotter,
)
from project_snapshot.core.exceptions import RegistryError, SnapshotError
from project_snapshot.models.config import STEP_NAMES, SnapshotConfig
from project_snapshot.models.snapshot import (
    AttemptStep,
    BackupAttempt,
    RestorePoint,
    RestorePointListing,
    StepPolicy,
)
from project_snapshot.utils.helpers import generate_restore_point_id, utc_now
from project_snapshot.utils.logging import LogEntry, LogLevel, get_logger
from project_snapshot.utils.process import ProcessRunner, SubprocessRunner

logger = get_logger("backup.manager")

# step name -> RestorePoint field holding its artifact location
STEP_FIELDS = {
    "repository": "repository_dir",
    "database": "database_dir",
    "config": "config_dir",
    "state": "state_dir",
    "archive": "archive_path",
}


class BackupStep(NamedTuple):
    """One entry of the ordered, declarative step list."""
    name: str
    strategy: BackupStrategy
    policy: StepPolicy


def default_snapshotters(config: SnapshotConfig, runner: ProcessRunner) -> Dict[str, BackupStrategy]:
    return {
        "repository": RepositorySnapshotter(config, runner),
        "database": DatabaseSnapshotter(config, runner),
        "config": ConfigSnapshotter(config, runner),
        "state": SystemStateSnapshotter(config, runner),
        "archive": ArchiveBuilder(config, runner),
    }


def remove_path(path: Path):
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


class BackupOrchestrator:
    """Main orchestrator class for creating and managing restore points."""

    def __init__(
        self,
        config: SnapshotConfig,
        registry: Optional[RestorePointRegistry] = None,
        runner: Optional[ProcessRunner] = None,
        snapshotters: Optional[Dict[str, BackupStrategy]] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.clock = clock
        self.runner = runner or SubprocessRunner()
        self.registry = registry or RestorePointRegistry(
            FileRestorePointStore(config.state_path),
            RetentionPolicy(config.max_restore_points, config.default_retention_days),
            clock=clock,
        )
        self.snapshotters = default_snapshotters(config, self.runner)
        self.snapshotters.update(snapshotters or {})
        self.steps = self._build_steps()
        self.last_attempt: Optional[BackupAttempt] = None
        self._backup_logs: List[LogEntry] = []

    def _build_steps(self) -> List[BackupStep]:
        steps = []
        for name in STEP_NAMES:
            policy = StepPolicy.MANDATORY if name in self.config.mandatory_steps else StepPolicy.BEST_EFFORT
            steps.append(BackupStep(name, self.snapshotters[name], policy))
        return steps

    def _log(self, level: LogLevel, message: str, backup_id: Optional[str] = None,
             step: Optional[str] = None, **kwargs):
        """Add a log entry and forward it to the module logger."""
        self._backup_logs.append(LogEntry(
            level=level,
            logger=logger.name,
            message=message,
            backup_id=backup_id,
            step=step,
            metadata=kwargs,
        ))
        logger.log(getattr(logging, level.value), message, extra={"backup_id": backup_id, "step": step})

    def _unique_id(self, label: str, moment: datetime) -> str:
        base = generate_restore_point_id(label, moment)
        candidate = base
        suffix = 1
        while self._id_taken(candidate):
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def _id_taken(self, backup_id: str) -> bool:
        if self.registry.contains(backup_id):
            return True
        return any(step.strategy.location(backup_id).exists() for step in self.steps)

    def _milestone(self):
        phase, week = self.registry.store.milestone()
        if phase is None:
            phase = self.config.default_phase
        if week is None:
            week = self.config.default_week
        return phase, week

    def create_full_backup(self, label: Optional[str] = "manual", protected: Collection[str] = ()) -> RestorePoint:
        """
        Capture every facet and register the result as one restore point.

        Mandatory steps abort the attempt on failure: artifacts written so
        far are deleted and nothing is registered. Best-effort steps log
        the failure and leave their facet unset.
        """
        label = label or "manual"
        moment = self.clock()
        backup_id = self._unique_id(label, moment)
        attempt = BackupAttempt(backup_id=backup_id, label=label, started_at=moment)
        self.last_attempt = attempt
        point = RestorePoint(id=backup_id, label=label, timestamp=moment)

        self._log(LogLevel.INFO, f"Creating full backup: {label}", backup_id)

        for index, step in enumerate(self.steps, start=1):
            record = AttemptStep(name=step.name, policy=step.policy)
            attempt.steps.append(record)
            record.start()

            location = step.strategy.location(backup_id)
            attempt.written.append(str(location))
            try:
                step.strategy.snapshot(backup_id)
            except (SnapshotError, OSError) as e:
                record.fail(str(e))
                if step.policy == StepPolicy.MANDATORY:
                    message = f"{step.name} step failed: {e}"
                    self._abort(attempt, message)
                    raise SnapshotError(
                        f"Backup {backup_id} aborted, {message}",
                        details={"backup_id": backup_id, "step": step.name},
                    ) from e

                self._log(LogLevel.WARNING, f"{step.name.capitalize()} backup failed: {e}", backup_id, step.name)
                attempt.written.remove(str(location))
                self._discard(location)
                continue

            setattr(point, STEP_FIELDS[step.name], str(location))
            record.complete(str(location))
            attempt.step_complete(index)
            self._log(LogLevel.DEBUG, f"Step {step.name} complete", backup_id, step.name,
                      duration=record.duration)

        point.phase, point.week = self._milestone()
        try:
            self.registry.append(point, protected=protected)
        except RegistryError as e:
            self._abort(attempt, f"registration failed: {e}")
            raise

        attempt.register()
        self._log(LogLevel.INFO, f"Full backup completed: {backup_id}", backup_id)
        return point

    def _discard(self, location: Path):
        try:
            remove_path(location)
        except OSError as e:
            logger.warning("Could not remove partial artifact %s: %s", location, e)

    def _abort(self, attempt: BackupAttempt, error: str):
        attempt.abort(error)
        self._log(LogLevel.ERROR, f"Backup aborted: {error}", attempt.backup_id)
        for written in reversed(attempt.written):
            self._discard(Path(written))
        attempt.written.clear()

    def list_backups(self) -> List[RestorePointListing]:
        """Registered restore points, newest first, with artifact existence checks."""
        return self.registry.list()

    def cleanup(self, retention_days: Optional[int] = None) -> List[RestorePoint]:
        """Remove restore points older than ``retention_days`` (default from config)."""
        days = self.config.default_retention_days if retention_days is None else retention_days
        self._log(LogLevel.INFO, f"Cleaning up backups older than {days} days")
        return self.registry.purge(days)

    def get_logs(self, backup_id: Optional[str] = None) -> List[LogEntry]:
        """Get backup operation logs."""
        if backup_id:
            return [log for log in self._backup_logs if log.backup_id == backup_id]
        return self._backup_logs.copy()

    def clear_logs(self):
        """Clear backup operation logs."""
        self._backup_logs.clear()
