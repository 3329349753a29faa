"""
Pytest configuration and fixtures for the project-snapshot tests.

This module provides a scripted process runner, throwaway git projects
with an embedded SQLite database, and configurations that keep the
backups and the project-state document outside the working tree.
"""

import shutil
import sqlite3
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest

from project_snapshot.backup.manager import BackupOrchestrator
from project_snapshot.backup.registry import RestorePointRegistry
from project_snapshot.backup.rollback import RestoreCoordinator
from project_snapshot.backup.storage import FileRestorePointStore, RetentionPolicy
from project_snapshot.models.config import SnapshotConfig
from project_snapshot.utils.process import ProcessResult, ProcessRunner, SubprocessRunner

GIT_AVAILABLE = shutil.which("git") is not None

requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git executable not available")

Response = Union[ProcessResult, Callable[[List[str]], ProcessResult]]


class FakeProcessRunner(ProcessRunner):
    """
    Scripted runner. Responses are looked up by ``(command, first_arg)``
    and then by ``command``; anything unscripted behaves like a missing
    executable.
    """

    def __init__(self, responses: Optional[Dict[object, Response]] = None):
        self.responses = responses or {}
        self.calls: List[List[str]] = []

    def run(self, command: str, args: Sequence[str] = (), cwd=None) -> ProcessResult:
        argv = [command, *args]
        self.calls.append(argv)
        first = args[0] if args else None
        response = self.responses.get((command, first), self.responses.get(command))
        if response is None:
            return ProcessResult(argv, "", f"command not found: {command}", 127)
        if callable(response):
            return response(argv)
        return ProcessResult(argv, response.stdout, response.stderr, response.exit_code)


def ok(stdout: str = "") -> ProcessResult:
    return ProcessResult([], stdout, "", 0)


def failed(stderr: str = "boom", exit_code: int = 1) -> ProcessResult:
    return ProcessResult([], "", stderr, exit_code)


def git(root: Path, *args: str) -> str:
    completed = subprocess.run(["git", *args], cwd=root, capture_output=True, text=True, check=True)
    return completed.stdout.strip()


def create_database(path: Path, rows: int = 5):
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path)
    try:
        connection.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, name TEXT)")
        connection.executemany("INSERT INTO items (name) VALUES (?)", [(f"item-{i}",) for i in range(rows)])
        connection.commit()
    finally:
        connection.close()


def count_rows(path: Path, table: str = "items") -> int:
    connection = sqlite3.connect(path)
    try:
        return connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        connection.close()


def delete_rows(path: Path, count: int, table: str = "items"):
    connection = sqlite3.connect(path)
    try:
        connection.execute(f"DELETE FROM {table} WHERE id IN (SELECT id FROM {table} LIMIT ?)", (count,))
        connection.commit()
    finally:
        connection.close()


class SteppingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def fake_runner() -> FakeProcessRunner:
    return FakeProcessRunner()


@pytest.fixture
def plain_project(tmp_path) -> Path:
    """A project directory that is not a git repository."""
    root = tmp_path / "plain"
    root.mkdir()
    (root / "package.json").write_text('{"name": "plain"}\n')
    (root / ".env").write_text("NODE_ENV=development\n")
    create_database(root / "database.sqlite")
    return root


@pytest.fixture
def git_project(tmp_path, monkeypatch) -> Path:
    """A committed git project on branch ``main`` with an ignored SQLite database."""
    if not GIT_AVAILABLE:
        pytest.skip("git executable not available")

    for name, value in {
        "GIT_AUTHOR_NAME": "Test Author",
        "GIT_AUTHOR_EMAIL": "author@example.com",
        "GIT_COMMITTER_NAME": "Test Author",
        "GIT_COMMITTER_EMAIL": "author@example.com",
        "GIT_CONFIG_NOSYSTEM": "1",
    }.items():
        monkeypatch.setenv(name, value)

    root = tmp_path / "project"
    root.mkdir()
    git(root, "init", "--quiet")
    git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    git(root, "config", "commit.gpgsign", "false")

    (root / ".gitignore").write_text("database.sqlite\n.env\nnode_modules/\n*.log\n")
    (root / "package.json").write_text('{"name": "demo", "version": "1.0.0"}\n')
    (root / "src").mkdir()
    (root / "src" / "app.py").write_text("print('v1')\n")
    (root / ".env").write_text("NODE_ENV=development\n")
    create_database(root / "database.sqlite")

    git(root, "add", "-A")
    git(root, "commit", "--quiet", "-m", "initial")
    return root


def build_config(root: Path, tmp_path: Path, **overrides) -> SnapshotConfig:
    values = dict(
        project_root=root,
        backups_dir=tmp_path / "backups",
        state_file=tmp_path / "state" / "project-state.json",
    )
    values.update(overrides)
    return SnapshotConfig.build(**values)


@pytest.fixture
def project_config(git_project, tmp_path) -> SnapshotConfig:
    return build_config(git_project, tmp_path)


@pytest.fixture
def orchestrator(project_config, clock) -> BackupOrchestrator:
    registry = RestorePointRegistry(
        FileRestorePointStore(project_config.state_path),
        RetentionPolicy(project_config.max_restore_points, project_config.default_retention_days),
        clock=clock,
    )
    return BackupOrchestrator(project_config, registry=registry, runner=SubprocessRunner(), clock=clock)


@pytest.fixture
def coordinator(orchestrator) -> RestoreCoordinator:
    return RestoreCoordinator(orchestrator)
