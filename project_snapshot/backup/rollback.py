"""
Restore coordinator for rolling a project back to a restore point.

This module validates a restore point, takes a safety-net backup of
the current state, and then replays the selected facets (code,
databases, configuration) one by one, reporting each individually.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from project_snapshot.backup.manager import BackupOrchestrator
from project_snapshot.backup.strategies import RepositorySnapshotter, RestorableStrategy
from project_snapshot.backup.validator import RecoveryValidator
from project_snapshot.core.exceptions import (
    RegistryError,
    RestoreStepError,
    SnapshotError,
    SnapshotOrchestratorError,
)
from project_snapshot.models.snapshot import (
    FacetStatus,
    FileManifest,
    RepositorySnapshot,
    RestoreOptions,
    RestorePoint,
    RestoreReport,
)
from project_snapshot.utils.logging import get_logger

logger = get_logger("backup.rollback")

# restore facet -> (restore point artifact key, snapshotter name)
FACETS: Dict[str, Tuple[str, str]] = {
    "code": ("git", "repository"),
    "database": ("database", "database"),
    "config": ("config", "config"),
}

SAFETY_NET_LABEL = "pre-restore"
STASH_MESSAGE = "Auto-stash before restore"


class RestoreCoordinator:
    """Rolls the working tree back to a registered restore point."""

    def __init__(self, orchestrator: BackupOrchestrator, validator: Optional[RecoveryValidator] = None):
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.validator = validator or RecoveryValidator()

    def _strategy(self, facet: str) -> RestorableStrategy:
        return self.orchestrator.snapshotters[FACETS[facet][1]]

    @property
    def repository(self) -> RepositorySnapshotter:
        return self.orchestrator.snapshotters["repository"]

    def _artifact(self, point: RestorePoint, facet: str):
        return point.artifact_paths().get(FACETS[facet][0])

    def restore_from_backup(self, backup_id: str, options: Optional[RestoreOptions] = None) -> RestoreReport:
        """
        Restore the selected facets of ``backup_id``.

        Raises RestoreNotFoundError for an unknown id before touching the
        filesystem, and RestoreStepError (carrying the partial report)
        when a facet fails and ``continue_on_error`` is off, or when no
        selected facet was restored.
        """
        options = options or RestoreOptions()
        point = self.registry.get(backup_id)
        report = RestoreReport(backup_id=backup_id, dry_run=options.dry_run)

        logger.info("Restoring from backup: %s", backup_id)
        validation = self.validator.validate(point)
        report.warnings.extend(validation.warnings)
        if not validation.is_valid:
            raise RestoreStepError(f"Backup integrity check failed: {validation.error}", report=report)

        if options.dry_run:
            logger.info("DRY RUN - No changes will be made")
            return self.simulate(point, options, report)

        if not options.skip_current_backup:
            self._create_safety_net(point, options, report)

        ledger = self.registry.store.list()
        if "code" in options.selected_facets() and self._artifact(point, "code") is not None:
            self._guard_uncommitted_changes(options, report)

        try:
            for facet in options.selected_facets():
                self._restore_facet(point, facet, options, report)
        finally:
            # code and config restores can roll back the state document holding the ledger
            if {"code", "config"} & set(report.succeeded):
                self._reapply_ledger(ledger, report)

        if options.selected_facets() and not report.succeeded:
            raise RestoreStepError("All restore operations failed", report=report)

        if report.failed:
            logger.warning("Restore completed with some failures: %s", ", ".join(report.failed))
        else:
            logger.info("Restore completed successfully")
        logger.info("Please restart services and run tests")
        return report

    def _create_safety_net(self, point: RestorePoint, options: RestoreOptions, report: RestoreReport):
        logger.info("Creating pre-restore backup...")
        try:
            safety_net = self.orchestrator.create_full_backup(SAFETY_NET_LABEL, protected=[point.id])
        except SnapshotOrchestratorError as e:
            if not options.force:
                raise RestoreStepError(
                    f"Pre-restore backup failed: {e}. Use --force to proceed anyway.", report=report
                ) from e
            logger.warning("Pre-restore backup failed, continuing because of --force: %s", e)
            report.warnings.append(f"Pre-restore backup failed: {e}")
            return
        report.safety_net_id = safety_net.id

    def _guard_uncommitted_changes(self, options: RestoreOptions, report: RestoreReport):
        try:
            dirty = self.repository.has_uncommitted_changes()
        except SnapshotError as e:
            logger.warning("Could not check git status: %s", e)
            return
        if not dirty:
            return

        logger.warning("Uncommitted changes detected")
        if options.auto_stash:
            try:
                self.repository.stash(STASH_MESSAGE)
            except SnapshotError as e:
                raise RestoreStepError(f"Failed to stash changes: {e}", report=report, facet="code") from e
            report.warnings.append("Uncommitted changes were stashed (use 'git stash pop' to recover)")
        elif not options.force:
            raise RestoreStepError(
                "Cannot restore with uncommitted changes without --force or auto-stash",
                report=report,
                facet="code",
            )
        else:
            report.warnings.append("Uncommitted changes were discarded (--force)")

    def _restore_facet(self, point: RestorePoint, facet: str, options: RestoreOptions, report: RestoreReport):
        path = self._artifact(point, facet)
        if path is None:
            report.record(facet, FacetStatus.SKIPPED, "Not captured in this backup")
            return
        if not path.exists():
            report.record(facet, FacetStatus.SKIPPED, f"Backup path does not exist: {path}")
            return

        strategy = self._strategy(facet)
        logger.info("Restoring %s...", facet)
        try:
            outcome = strategy.restore(strategy.load(path))
        except (SnapshotError, OSError) as e:
            report.record(facet, FacetStatus.FAILED, str(e))
            logger.error("%s restore failed: %s", facet.capitalize(), e)
            if not options.continue_on_error:
                raise RestoreStepError(f"{facet.capitalize()} restore failed: {e}", report=report, facet=facet) from e
            return

        message = f"{outcome} files restored" if isinstance(outcome, int) else "Restored"
        report.record(facet, FacetStatus.COMPLETED, message)

    def _reapply_ledger(self, before: List[RestorePoint], report: RestoreReport):
        """
        Put back the ledger as it was right before the rollback.

        Entries listed only by the restored document were purged or
        trimmed earlier and stay gone.
        """
        store = self.registry.store
        try:
            current = store.list()
        except RegistryError as e:
            current = []
            logger.warning("Project state unreadable after restore, rewriting ledger: %s", e)

        if [point.id for point in current] == [point.id for point in before]:
            return

        try:
            store.replace(before)
        except RegistryError as e:
            report.warnings.append(f"Could not rewrite restore point ledger: {e}")
            logger.error("Could not rewrite restore point ledger: %s", e)
            return

        logger.info("Restore point ledger rewritten after rollback (%d entries)", len(before))
        report.warnings.append("Restore point ledger rewritten to its pre-restore state")

    def simulate(self, point: RestorePoint, options: RestoreOptions, report: RestoreReport) -> RestoreReport:
        """Check what a restore would do without changing anything."""
        for facet in options.selected_facets():
            path = self._artifact(point, facet)
            if path is None or not path.exists():
                report.record(facet, FacetStatus.SKIPPED, "No backup available")
                continue

            strategy = self._strategy(facet)
            try:
                snapshot = strategy.load(path)
            except SnapshotError as e:
                report.record(facet, FacetStatus.FAILED, str(e))
                continue

            if isinstance(snapshot, RepositorySnapshot):
                self._simulate_code(snapshot, report)
            elif isinstance(snapshot, FileManifest):
                self._simulate_files(facet, snapshot, report)

        for facet, result in report.facets.items():
            logger.info("  %s: %s %s", facet, result.status.value, result.message)
        return report

    def _simulate_code(self, snapshot: RepositorySnapshot, report: RestoreReport):
        target = f"{snapshot.commit[:8]} on {snapshot.branch or 'detached HEAD'}"
        try:
            exists = self.repository.commit_exists(snapshot.commit)
        except SnapshotError as e:
            report.record("code", FacetStatus.FAILED, str(e))
            return

        if exists:
            report.record("code", FacetStatus.READY, f"Target commit {target} exists")
        elif Path(snapshot.bundle_path).is_file():
            report.record("code", FacetStatus.READY, f"Target commit {target} recoverable from bundle")
        else:
            report.record("code", FacetStatus.FAILED, f"Target commit {snapshot.commit} not found")

    def _simulate_files(self, facet: str, snapshot: FileManifest, report: RestoreReport):
        available = 0
        for entry in snapshot.files:
            if Path(entry.backup).is_file():
                available += 1
            else:
                report.warnings.append(f"{facet} backup file not found: {entry.backup}")
        status = FacetStatus.FAILED if snapshot.files and available == 0 else FacetStatus.READY
        report.record(facet, status, f"{available}/{len(snapshot.files)} files would be restored")
