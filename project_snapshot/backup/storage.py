"""
Restore point storage with retention policies.

This module holds the ledger of restore points. The production store
embeds the ledger in the shared project-state JSON document under
``backupStrategy.restorePoints``; the in-memory store backs tests.
"""

import fcntl
import json
import os
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Collection, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from project_snapshot.core.exceptions import RegistryError
from project_snapshot.models.snapshot import RestorePoint
from project_snapshot.utils.helpers import atomic_write_json, get_nested, utc_now
from project_snapshot.utils.logging import get_logger

logger = get_logger("backup.storage")

Milestone = Tuple[Optional[Union[int, str]], Optional[Union[int, str]]]


def as_utc(moment: datetime) -> datetime:
    """Treat naive timestamps as UTC so old and new records compare."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class RetentionPolicy:
    """Defines restore point retention: a count cap and an age window."""

    def __init__(
        self,
        max_backups: Optional[int] = 10,
        max_age_days: Optional[int] = None
    ):
        self.max_backups = max_backups
        self.max_age_days = max_age_days

    def over_capacity(
        self,
        points: List[RestorePoint],
        protected: Collection[str] = ()
    ) -> List[RestorePoint]:
        """
        Entries to drop so that at most ``max_backups`` remain.

        ``points`` is newest first. Oldest entries go first; ids in
        ``protected`` are skipped but still count toward the cap.
        """
        if not self.max_backups:
            return []

        excess = len(points) - self.max_backups
        dropped = []
        for point in reversed(points):
            if excess <= 0:
                break
            if point.id in protected:
                continue
            dropped.append(point)
            excess -= 1
        return dropped

    def expired(
        self,
        points: List[RestorePoint],
        now: datetime,
        max_age_days: Optional[int] = None
    ) -> List[RestorePoint]:
        """Entries whose timestamp is older than ``now - max_age_days``."""
        days = self.max_age_days if max_age_days is None else max_age_days
        if days is None:
            return []

        cutoff = as_utc(now) - timedelta(days=days)
        return [point for point in points if as_utc(point.timestamp) < cutoff]


class RestorePointStore(ABC):
    """Ledger of restore points, newest first."""

    @abstractmethod
    def list(self) -> List[RestorePoint]:
        pass

    @abstractmethod
    def get(self, backup_id: str) -> Optional[RestorePoint]:
        pass

    @abstractmethod
    def append(self, point: RestorePoint):
        """Record ``point`` as the newest entry."""
        pass

    @abstractmethod
    def remove(self, backup_id: str) -> Optional[RestorePoint]:
        pass

    @abstractmethod
    def replace(self, points: List[RestorePoint]):
        """Overwrite the whole ledger, newest first."""
        pass

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold exclusive access for a read-modify-write sequence."""
        yield

    def milestone(self) -> Milestone:
        """Current project phase and week, when the store knows them."""
        return None, None


class InMemoryRestorePointStore(RestorePointStore):
    """Process-local store for tests and dry runs."""

    def __init__(self, points: Optional[List[RestorePoint]] = None, milestone: Milestone = (None, None)):
        self._points: List[RestorePoint] = list(points or [])
        self._milestone = milestone
        self._lock = threading.RLock()

    def list(self) -> List[RestorePoint]:
        return list(self._points)

    def get(self, backup_id: str) -> Optional[RestorePoint]:
        return next((point for point in self._points if point.id == backup_id), None)

    def append(self, point: RestorePoint):
        self._points.insert(0, point)

    def remove(self, backup_id: str) -> Optional[RestorePoint]:
        point = self.get(backup_id)
        if point:
            self._points.remove(point)
        return point

    def replace(self, points: List[RestorePoint]):
        self._points = list(points)

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield

    def milestone(self) -> Milestone:
        return self._milestone


class FileRestorePointStore(RestorePointStore):
    """
    Ledger embedded in the shared project-state document.

    Only ``backupStrategy.restorePoints`` (and the ``lastBackup`` stamps
    next to it) are touched; every other field of the document is
    written back unchanged. Writes are atomic, and ``lock()`` takes an
    advisory ``flock`` on ``<state-file>.lock``.
    """

    BACKUP_TYPES = ("code", "database", "configuration", "fullSystem")

    def __init__(self, state_path: Union[str, Path]):
        self.state_path = Path(state_path)
        self.lock_path = self.state_path.with_name(self.state_path.name + ".lock")
        self._lock_depth = 0
        self._lock_file = None

    def _load_document(self) -> Dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise RegistryError(f"Project state {self.state_path} is corrupt: {e}")
        except OSError as e:
            raise RegistryError(f"Project state {self.state_path} is unreadable: {e}")

        if not isinstance(document, dict):
            raise RegistryError(f"Project state {self.state_path} must be a JSON object")
        return document

    def _records(self, document: Dict[str, Any]) -> List[Dict[str, Any]]:
        records = get_nested(document, "backupStrategy", "restorePoints", default=[])
        if not isinstance(records, list):
            raise RegistryError("backupStrategy.restorePoints must be a list")
        return records

    def _parse(self, records: List[Dict[str, Any]]) -> List[RestorePoint]:
        try:
            return [RestorePoint.from_record(record) for record in records]
        except (ValidationError, TypeError) as e:
            raise RegistryError(f"Invalid restore point record in {self.state_path}: {e}")

    def _save(self, document: Dict[str, Any], points: List[RestorePoint]):
        strategy = document.setdefault("backupStrategy", {})
        if not isinstance(strategy, dict):
            raise RegistryError("backupStrategy must be a JSON object")
        strategy["restorePoints"] = [point.to_record() for point in points]
        try:
            atomic_write_json(self.state_path, document)
        except OSError as e:
            raise RegistryError(f"Could not write project state {self.state_path}: {e}")

    def list(self) -> List[RestorePoint]:
        return self._parse(self._records(self._load_document()))

    def get(self, backup_id: str) -> Optional[RestorePoint]:
        return next((point for point in self.list() if point.id == backup_id), None)

    def append(self, point: RestorePoint):
        with self.lock():
            document = self._load_document()
            points = self._parse(self._records(document))
            points.insert(0, point)

            stamp = utc_now().isoformat()
            backup_types = document.setdefault("backupStrategy", {}).setdefault("backupTypes", {})
            for backup_type in self.BACKUP_TYPES:
                entry = backup_types.setdefault(backup_type, {})
                if isinstance(entry, dict):
                    entry["lastBackup"] = stamp

            self._save(document, points)

    def remove(self, backup_id: str) -> Optional[RestorePoint]:
        with self.lock():
            document = self._load_document()
            points = self._parse(self._records(document))
            removed = next((point for point in points if point.id == backup_id), None)
            if removed is None:
                return None
            self._save(document, [point for point in points if point.id != backup_id])
            return removed

    def replace(self, points: List[RestorePoint]):
        with self.lock():
            try:
                document = self._load_document()
            except RegistryError:
                logger.warning("Replacing unreadable project state %s", self.state_path)
                document = {}
            self._save(document, points)

    def milestone(self) -> Milestone:
        document = self._load_document()
        phase = get_nested(document, "sessionInfo", "currentPhase")
        week = get_nested(document, "phases", f"phase{phase}", "currentWeek") if phase is not None else None
        return phase, week

    @contextmanager
    def lock(self) -> Iterator[None]:
        # flock is per open file, so nested use in this process must not re-acquire
        if self._lock_depth == 0:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            self._lock_file = open(self.lock_path, "a")
            try:
                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_EX)
            except OSError as e:
                self._lock_file.close()
                self._lock_file = None
                raise RegistryError(f"Could not lock {self.lock_path}: {e}")
            logger.debug("Acquired registry lock %s (pid %d)", self.lock_path, os.getpid())

        self._lock_depth += 1
        try:
            yield
        finally:
            self._lock_depth -= 1
            if self._lock_depth == 0 and self._lock_file is not None:
                fcntl.flock(self._lock_file.fileno(), fcntl.LOCK_UN)
                self._lock_file.close()
                self._lock_file = None
