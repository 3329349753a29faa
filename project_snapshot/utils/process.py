"""
External process execution.

Snapshotters never build shell strings: every call goes through a
``ProcessRunner`` with an argument list, which also lets tests swap
in a scripted runner.
"""

import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from project_snapshot.utils.logging import get_logger

logger = get_logger("process")

COMMAND_NOT_FOUND = 127


@dataclass
class ProcessResult:
    """Outcome of one external command."""
    command: List[str]
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def not_found(self) -> bool:
        return self.exit_code == COMMAND_NOT_FOUND

    def describe_failure(self) -> str:
        """Short human-readable reason for a failed command."""
        reason = (self.stderr or self.stdout).strip()
        if len(reason) > 500:
            reason = reason[:500] + "..."
        return f"{' '.join(self.command)} exited with {self.exit_code}: {reason or 'no output'}"


class ProcessRunner(ABC):
    """Capability for running external executables."""

    @abstractmethod
    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Union[str, Path]] = None,
    ) -> ProcessResult:
        """Run ``command`` with ``args`` and capture its output."""
        pass


class SubprocessRunner(ProcessRunner):
    """Runs commands with ``subprocess.run`` and captured text output."""

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Union[str, Path]] = None,
    ) -> ProcessResult:
        argv = [command, *args]
        logger.debug("Running %s", " ".join(argv))
        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError:
            return ProcessResult(argv, "", f"command not found: {command}", COMMAND_NOT_FOUND)
        except PermissionError as e:
            return ProcessResult(argv, "", f"permission denied: {e}", 126)

        return ProcessResult(argv, completed.stdout, completed.stderr, completed.returncode)
