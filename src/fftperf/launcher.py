"""
Subprocess launching for the external executables.

Every invocation gets its configuration from an explicit LaunchConfig.
Environment variables are applied to a copy of os.environ for that one
call only, so differently configured invocations can never leak settings
into each other.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union
import os
import shutil
import subprocess


@dataclass(frozen=True)
class LaunchConfig:
    """
    Per-call subprocess configuration.

    Attributes:
        env: Variables set for this call.
        unset: Variables removed for this call.
        cwd: Working directory.
        timeout: Seconds before the call is abandoned (None = no limit).
    """
    env: Dict[str, str] = field(default_factory=dict)
    unset: Tuple[str, ...] = ()
    cwd: Optional[Path] = None
    timeout: Optional[float] = None

    def build_env(self) -> Dict[str, str]:
        """Environment for the child process."""
        env = dict(os.environ)
        for key in self.unset:
            env.pop(key, None)
        env.update({k: str(v) for k, v in self.env.items()})
        return env


@dataclass
class ProcessResult:
    """Outcome of one subprocess call."""
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe_failure(self) -> str:
        """One-line reason for a failed call."""
        detail = (self.stderr or self.stdout).strip().splitlines()
        tail = detail[-1] if detail else "no output"
        return f"exit code {self.returncode}: {tail}"


def launch(command: Sequence[str], config: Optional[LaunchConfig] = None) -> ProcessResult:
    """
    Run a command to completion.

    Launch errors and timeouts are reported as a failed ProcessResult
    rather than raised, so callers can record them per problem.

    Args:
        command: Executable and arguments.
        config: Per-call configuration.

    Returns:
        ProcessResult with captured output.
    """
    config = config or LaunchConfig()
    command = [str(c) for c in command]
    try:
        proc = subprocess.run(
            command,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=False,
            env=config.build_env(),
            cwd=str(config.cwd) if config.cwd else None,
            timeout=config.timeout,
        )
    except subprocess.TimeoutExpired:
        return ProcessResult(command, -1, "", f"timed out after {config.timeout}s")
    except OSError as e:
        return ProcessResult(command, -1, "", f"failed to start: {e}")
    return ProcessResult(command, proc.returncode, proc.stdout, proc.stderr)


def require_executable(path: Union[str, Path, None], what: str) -> Path:
    """
    Resolve a required external executable.

    Bare names are looked up on PATH.

    Raises:
        FileNotFoundError: If no executable is configured or it cannot be found.
    """
    if not path:
        raise FileNotFoundError(f"No {what} executable configured")
    candidate = Path(path)
    if candidate.exists():
        return candidate
    found = shutil.which(str(path))
    if found:
        return Path(found)
    raise FileNotFoundError(f"{what} executable not found: {path}")
