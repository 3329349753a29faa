"""
Restore point registry.

Wraps a RestorePointStore with the rules the ledger must obey: newest
first, a capacity cap that deletes the artifacts of dropped entries,
age-based purging, and stale detection when listing.
"""

import shutil
from datetime import datetime
from typing import Callable, Collection, List, Optional

from project_snapshot.backup.storage import RestorePointStore, RetentionPolicy, as_utc
from project_snapshot.core.exceptions import RegistryError, RestoreNotFoundError
from project_snapshot.models.snapshot import RestorePoint, RestorePointListing, RestorePointStatus
from project_snapshot.utils.helpers import utc_now
from project_snapshot.utils.logging import get_logger

logger = get_logger("backup.registry")


def delete_artifacts(point: RestorePoint) -> List[str]:
    """Remove every artifact a restore point references; returns paths that could not be removed."""
    failures = []
    for facet, path in point.artifact_paths().items():
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("Could not delete %s artifact %s of %s: %s", facet, path, point.id, e)
            failures.append(str(path))
    return failures


class RestorePointRegistry:
    """The ordered list of restore points, newest first."""

    def __init__(
        self,
        store: RestorePointStore,
        retention_policy: Optional[RetentionPolicy] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.retention_policy = retention_policy or RetentionPolicy()
        self.clock = clock

    def append(self, point: RestorePoint, protected: Collection[str] = ()) -> List[RestorePoint]:
        """
        Register ``point`` as the newest restore point.

        When the registry exceeds its capacity the oldest entries are
        dropped and their artifacts deleted. Ids in ``protected`` are
        never dropped. Returns the dropped entries.
        """
        with self.store.lock():
            if self.store.get(point.id) is not None:
                raise RegistryError(f"Restore point {point.id} is already registered")

            self.store.append(point)
            dropped = self.retention_policy.over_capacity(self.store.list(), protected)
            for old in dropped:
                self.store.remove(old.id)

        for old in dropped:
            delete_artifacts(old)
            logger.info("Cleaned up old backup: %s", old.id)

        logger.info("Restore point registered: %s", point.id)
        return dropped

    def points(self) -> List[RestorePoint]:
        """Registered restore points, newest first."""
        indexed = list(enumerate(self.store.list()))
        # ties keep ledger order
        indexed.sort(key=lambda item: (as_utc(item[1].timestamp), -item[0]), reverse=True)
        return [point for _, point in indexed]

    def list(self) -> List[RestorePointListing]:
        """Every restore point annotated with whether its artifacts still exist."""
        listings = []
        for point in self.points():
            artifacts = {facet: path.exists() for facet, path in point.artifact_paths().items()}
            status = RestorePointStatus.COMPLETE if all(artifacts.values()) else RestorePointStatus.STALE
            listings.append(RestorePointListing(restore_point=point, artifacts=artifacts, status=status))
        return listings

    def get(self, backup_id: str) -> RestorePoint:
        point = self.store.get(backup_id)
        if point is None:
            raise RestoreNotFoundError(backup_id)
        return point

    def contains(self, backup_id: str) -> bool:
        return self.store.get(backup_id) is not None

    def purge(self, older_than_days: Optional[int] = None, now: Optional[datetime] = None) -> List[RestorePoint]:
        """Remove restore points older than ``now - older_than_days``, artifacts included."""
        if older_than_days is not None and older_than_days < 0:
            raise RegistryError("Retention days must not be negative")

        moment = now or self.clock()
        with self.store.lock():
            expired = self.retention_policy.expired(self.store.list(), moment, older_than_days)
            for point in expired:
                self.store.remove(point.id)

        for point in expired:
            delete_artifacts(point)
            logger.info("Removed old backup: %s", point.id)

        logger.info("Cleanup complete: %d backups removed", len(expired))
        return expired
