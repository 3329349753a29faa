"""
Snapshot strategies for the individual facets of a project.

This module defines how each facet (source history, embedded databases,
configuration files, diagnostic telemetry and the full archive) is
captured, and how the restorable ones are put back.
"""

import fnmatch
import json
import os
import platform
import shutil
import socket
import sys
import tarfile
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Optional, Type

import psutil
from pydantic import ValidationError

from project_snapshot.core.exceptions import SnapshotError
from project_snapshot.models.config import SnapshotConfig
from project_snapshot.models.snapshot import (
    ConfigSnapshot,
    DatabaseSnapshot,
    FileManifest,
    FileManifestEntry,
    RepositorySnapshot,
    SystemStateSnapshot,
)
from project_snapshot.utils.helpers import (
    atomic_write_bytes,
    flatten_relative_path,
    format_bytes,
    write_json,
)
from project_snapshot.utils.logging import get_logger
from project_snapshot.utils.process import ProcessResult, ProcessRunner, SubprocessRunner

logger = get_logger("backup.strategies")


class BackupStrategy(ABC):
    """Abstract base class for facet snapshot strategies."""

    facet: str = ""

    def __init__(self, config: SnapshotConfig, runner: Optional[ProcessRunner] = None):
        self.config = config
        self.runner = runner or SubprocessRunner()

    def location(self, backup_id: str) -> Path:
        """Where this facet's artifacts for ``backup_id`` are written."""
        return self.config.facet_dir(self.facet, backup_id)

    @abstractmethod
    def snapshot(self, backup_id: str) -> Any:
        """Capture the facet and return its manifest."""
        pass

    def _read_json(self, file_path: Path, what: str) -> Dict[str, Any]:
        if not file_path.exists():
            raise SnapshotError(f"{what} not found in backup: {file_path}")
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Could not read {what} from backup: {e}")


class RestorableStrategy(BackupStrategy):
    """A strategy whose snapshots can be replayed onto the working tree."""

    @abstractmethod
    def load(self, location: Path) -> Any:
        """Read the manifest stored at ``location``."""
        pass

    @abstractmethod
    def restore(self, snapshot: Any) -> Any:
        """Put the captured state back."""
        pass


class RepositorySnapshotter(RestorableStrategy):
    """Captures the complete git history as a bundle plus branch/commit metadata."""

    facet = "code"
    BUNDLE_FILE = "repo.bundle"
    INFO_FILE = "git-info.json"

    def _git(self, *args: str, check: bool = True) -> ProcessResult:
        result = self.runner.run("git", args, cwd=self.config.root)
        if check and not result.ok:
            if result.not_found:
                raise SnapshotError("git executable not found", details={"command": result.command})
            raise SnapshotError(f"Git command failed: {result.describe_failure()}",
                                details={"command": result.command})
        return result

    def ensure_work_tree(self):
        result = self._git("rev-parse", "--is-inside-work-tree", check=False)
        if result.not_found:
            raise SnapshotError("git executable not found")
        if not result.ok or result.stdout.strip() != "true":
            raise SnapshotError(f"{self.config.root} is not a git working tree")

    def current_branch(self) -> str:
        return self._git("branch", "--show-current").stdout.strip()

    def head_commit(self) -> str:
        return self._git("rev-parse", "HEAD").stdout.strip()

    def snapshot(self, backup_id: str) -> RepositorySnapshot:
        self.ensure_work_tree()

        repo_dir = self.location(backup_id)
        repo_dir.mkdir(parents=True, exist_ok=True)
        bundle_path = repo_dir / self.BUNDLE_FILE

        # --all: every branch, tag and remote ref, not only the checked-out one
        self._git("bundle", "create", str(bundle_path), "--all")

        status = self._git("status", "--porcelain").stdout.strip("\n")
        snapshot = RepositorySnapshot(
            branch=self.current_branch(),
            commit=self.head_commit(),
            has_uncommitted=bool(self.project_changes(status)),
            status=status,
            bundle_path=str(bundle_path),
        )
        write_json(repo_dir / self.INFO_FILE, snapshot.model_dump(mode="json", by_alias=True))

        if snapshot.has_uncommitted:
            logger.warning(
                "Working tree has uncommitted changes; the bundle only holds committed history:\n%s",
                "\n".join(self.project_changes(status)),
            )
        logger.info("Git backup: %s (%s @ %s)", repo_dir, snapshot.branch or "detached", snapshot.commit[:8])
        return snapshot

    def load(self, location: Path) -> RepositorySnapshot:
        data = self._read_json(Path(location) / self.INFO_FILE, "Git info")
        try:
            snapshot = RepositorySnapshot.model_validate(data)
        except ValidationError as e:
            raise SnapshotError(f"Git info incomplete: {e}")
        if not snapshot.commit:
            raise SnapshotError("Git info missing required field: commit")
        return snapshot

    def commit_exists(self, commit: str) -> bool:
        return self._git("cat-file", "-e", f"{commit}^{{commit}}", check=False).ok

    def project_changes(self, status: str) -> List[str]:
        """
        Lines of ``git status --porcelain`` output that concern the project.

        The backups directory, the project-state document and its lock
        file belong to this tool and are left out.
        """
        owned = self.config.owned_paths()
        changes = []
        for line in status.splitlines():
            if not line.strip():
                continue
            # "XY path" or "XY old -> new"
            path = line[3:].split(" -> ")[-1].strip('"').rstrip("/")
            if any(path == prefix or path.startswith(prefix + "/") for prefix in owned):
                continue
            changes.append(line)
        return changes

    def has_uncommitted_changes(self) -> bool:
        """True when tracked files differ from HEAD. Untracked files are ignored."""
        result = self._git("status", "--porcelain", "--untracked-files=no", check=False)
        if not result.ok:
            logger.warning("Could not check git status: %s", result.describe_failure())
            return False
        return bool(self.project_changes(result.stdout))

    def stash(self, message: str):
        self._git("stash", "push", "-m", message)
        logger.info("Changes stashed (use 'git stash pop' to recover)")

    def restore(self, snapshot: RepositorySnapshot):
        """
        Hard-reset the working tree to the recorded commit.

        Destructive: uncommitted changes to tracked files are discarded.
        """
        self.ensure_work_tree()
        commit = snapshot.commit
        logger.info("Restoring to commit: %s", commit[:8])

        if not self.commit_exists(commit):
            bundle = Path(snapshot.bundle_path)
            if bundle.exists():
                logger.info("Commit %s not in repository, recovering objects from %s", commit[:8], bundle)
                self._git("bundle", "unbundle", str(bundle))
            if not self.commit_exists(commit):
                raise SnapshotError(f"Target commit {commit} not found in repository")

        if snapshot.branch and snapshot.branch != self.current_branch():
            exists = self._git("show-ref", "--verify", "--quiet", f"refs/heads/{snapshot.branch}", check=False)
            if exists.ok:
                checkout = self._git("checkout", "--force", snapshot.branch, check=False)
                if not checkout.ok:
                    logger.warning("Could not checkout branch %s: %s", snapshot.branch, checkout.describe_failure())
            else:
                logger.warning("Branch %s no longer exists, continuing with current branch", snapshot.branch)

        self._git("reset", "--hard", commit)

        head = self.head_commit()
        if head != commit:
            raise SnapshotError(f"Git restore verification failed: expected {commit}, got {head}")
        logger.info("Git repository restored to %s", commit[:8])


class ManifestSnapshotter(RestorableStrategy):
    """Copies an enumerated list of files and records them in a JSON manifest."""

    manifest_file: str = ""
    manifest_model: Type[FileManifest] = FileManifest
    kind: str = ""

    @abstractmethod
    def candidate_paths(self) -> List[str]:
        """Project-relative paths this facet covers."""
        pass

    def _after_copy(self, copy: Path, entry: FileManifestEntry):
        """Hook for secondary artifacts written next to a copy."""
        pass

    @abstractmethod
    def _restore_file(self, backup: Path, target: Path):
        pass

    def snapshot(self, backup_id: str) -> FileManifest:
        target_dir = self.location(backup_id)
        target_dir.mkdir(parents=True, exist_ok=True)

        entries: List[FileManifestEntry] = []
        for relative in self.candidate_paths():
            source = self.config.resolve(relative)
            if not source.is_file():
                logger.debug("Skipping absent %s file %s", self.kind, relative)
                continue

            backup_path = target_dir / flatten_relative_path(relative)
            try:
                shutil.copy2(source, backup_path)
            except OSError as e:
                raise SnapshotError(f"Could not copy {relative}: {e}", details={"path": str(source)})

            entry = FileManifestEntry(original=relative, backup=str(backup_path))
            self._after_copy(backup_path, entry)
            entries.append(entry)

        manifest = self.manifest_model(files=entries)
        write_json(target_dir / self.manifest_file, manifest.model_dump(mode="json"))

        logger.info("%s backup: %d files backed up", self.kind.capitalize(), len(entries))
        return manifest

    def load(self, location: Path) -> FileManifest:
        data = self._read_json(Path(location) / self.manifest_file, f"{self.kind.capitalize()} info")
        try:
            return self.manifest_model.model_validate(data)
        except ValidationError as e:
            raise SnapshotError(f"Invalid {self.kind} info in backup: {e}")

    def restore(self, snapshot: FileManifest) -> int:
        """Copy every backed-up file over its original; returns the number restored."""
        restored = 0
        for entry in snapshot.files:
            backup = Path(entry.backup)
            if not backup.is_file():
                logger.warning("%s backup file not found: %s", self.kind.capitalize(), backup)
                continue

            target = self.config.resolve(entry.original)
            try:
                self._restore_file(backup, target)
            except (OSError, SnapshotError) as e:
                logger.error("Failed to restore %s: %s", entry.original, e)
                continue

            logger.info("Restored: %s", entry.original)
            restored += 1

        if snapshot.files and restored == 0:
            raise SnapshotError(f"No {self.kind} files were restored")

        logger.info("%s restore completed: %d/%d files", self.kind.capitalize(), restored, len(snapshot.files))
        return restored


class DatabaseSnapshotter(ManifestSnapshotter):
    """Raw copies of embedded SQLite databases with a best-effort SQL dump beside each."""

    facet = "database"
    manifest_file = "db-info.json"
    manifest_model = DatabaseSnapshot
    kind = "database"

    def candidate_paths(self) -> List[str]:
        return list(self.config.database_paths)

    def _after_copy(self, copy: Path, entry: FileManifestEntry):
        # The raw copy is authoritative; the dump is a readable extra.
        result = self.runner.run("sqlite3", [str(copy), ".dump"])
        if not result.ok:
            logger.warning("Could not create SQL dump for %s: %s", entry.original, result.describe_failure())
            return

        dump_path = Path(f"{entry.backup}.sql")
        try:
            dump_path.write_text(result.stdout, encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write SQL dump for %s: %s", entry.original, e)
            return
        entry.dump = str(dump_path)

    def _restore_file(self, backup: Path, target: Path):
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, staged = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".restore", dir=target.parent)
        os.close(fd)
        try:
            shutil.copyfile(backup, staged)
            backup_size = backup.stat().st_size
            staged_size = os.path.getsize(staged)
            if backup_size != staged_size:
                raise SnapshotError(f"Size mismatch: backup {backup_size} != restored {staged_size}")

            # a leftover write-ahead log would be replayed over the restored file
            for suffix in ("-wal", "-shm", "-journal"):
                sidecar = target.with_name(target.name + suffix)
                if sidecar.exists():
                    sidecar.unlink()

            os.replace(staged, target)
        finally:
            if os.path.exists(staged):
                os.unlink(staged)


class ConfigSnapshotter(ManifestSnapshotter):
    """Copies of environment settings, package manifests and project metadata."""

    facet = "config"
    manifest_file = "config-info.json"
    manifest_model = ConfigSnapshot
    kind = "config"

    def candidate_paths(self) -> List[str]:
        return list(self.config.config_files)

    def _restore_file(self, backup: Path, target: Path):
        atomic_write_bytes(target, backup.read_bytes())
        shutil.copymode(backup, target)


class SystemStateSnapshotter(BackupStrategy):
    """Read-only diagnostic telemetry. Every field degrades on its own."""

    facet = "state"
    INFO_FILE = "system-info.json"
    GPU_QUERY = "--query-gpu=name,memory.total,memory.free,memory.used,utilization.gpu,temperature.gpu"

    def snapshot(self, backup_id: str) -> SystemStateSnapshot:
        state_dir = self.location(backup_id)
        state_dir.mkdir(parents=True, exist_ok=True)

        state = SystemStateSnapshot(
            python_version=sys.version.split()[0],
            platform=platform.platform(),
            architecture=platform.machine(),
            hostname=socket.gethostname(),
            working_directory=os.getcwd(),
            environment={name: os.environ.get(name) for name in self.config.state_env_vars},
            processes=self._safely("process list", self._capture_processes, "Could not get process list"),
            ports=self._safely("port list", self._capture_ports, "Could not get port list"),
            accelerator=self._safely("GPU status", self._capture_accelerator, "GPU info not available"),
        )
        write_json(state_dir / self.INFO_FILE, state.model_dump(mode="json"))

        logger.info("System state backup: %s", state_dir)
        return state

    def _safely(self, what: str, capture: Callable[[], Any], placeholder: str) -> Any:
        try:
            return capture()
        except Exception as e:
            logger.warning("Could not capture %s: %s", what, e)
            return placeholder

    def _capture_processes(self) -> List[Dict[str, Any]]:
        wanted = [name.lower() for name in self.config.state_process_names]
        processes = []
        for proc in psutil.process_iter(["pid", "name", "username", "cmdline"]):
            info = proc.info
            name = (info.get("name") or "").lower()
            if not any(candidate in name for candidate in wanted):
                continue
            processes.append({
                "pid": info.get("pid"),
                "name": info.get("name"),
                "username": info.get("username"),
                "cmdline": " ".join(info.get("cmdline") or []),
            })
        return processes

    def _capture_ports(self) -> List[Dict[str, Any]]:
        listening = []
        for conn in psutil.net_connections(kind="inet"):
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            port = conn.laddr.port
            if any(low <= port <= high for low, high in self.config.state_port_ranges):
                listening.append({"address": conn.laddr.ip, "port": port, "pid": conn.pid})
        return listening

    def _capture_accelerator(self) -> str:
        result = self.runner.run("nvidia-smi", [self.GPU_QUERY, "--format=csv,noheader"])
        if not result.ok:
            return "GPU info not available"
        return result.stdout.strip()


class ArchiveBuilder(BackupStrategy):
    """One gzip tarball of the working tree without regenerable or heavy directories."""

    facet = "full"

    def location(self, backup_id: str) -> Path:
        return self.config.archive_path_for(backup_id)

    def snapshot(self, backup_id: str) -> Path:
        return self.build(backup_id)

    def _excluded_prefixes(self) -> List[PurePosixPath]:
        relatives = map(self.config.relative_to_root, (self.config.backups_path, self.config.lock_path))
        return [PurePosixPath(relative) for relative in relatives if relative is not None]

    def is_excluded(self, relative: PurePosixPath, prefixes: Optional[List[PurePosixPath]] = None) -> bool:
        """Whether a root-relative path falls under the exclusion list."""
        for pattern in self.config.archive_excludes:
            if "/" in pattern:
                if fnmatch.fnmatch(relative.as_posix(), pattern.strip("/")):
                    return True
            elif any(fnmatch.fnmatch(part, pattern) for part in relative.parts):
                return True

        for prefix in prefixes or []:
            if relative == prefix or prefix in relative.parents:
                return True
        return False

    def build(self, backup_id: str) -> Path:
        archive_path = self.location(backup_id)
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        prefixes = self._excluded_prefixes()

        def exclude_filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
            relative = PurePosixPath(tarinfo.name)
            if relative.parts and relative.parts[0] == ".":
                relative = PurePosixPath(*relative.parts[1:])
            if relative.parts and self.is_excluded(relative, prefixes):
                return None
            return tarinfo

        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                tar.add(str(self.config.root), arcname=".", filter=exclude_filter)
        except (OSError, tarfile.TarError) as e:
            if archive_path.exists():
                archive_path.unlink()
            raise SnapshotError(f"Full archive failed: {e}", details={"archive": str(archive_path)})

        logger.info("Full archive: %s (%s)", archive_path, format_bytes(archive_path.stat().st_size))
        return archive_path
