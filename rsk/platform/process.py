"""Subprocess execution with Result-based error handling.

Two flavours:

- ``run``: any non-zero exit is an error (gh, cosign, container runtime
  management commands).
- ``capture``: the exit code is data, only launch failures and timeouts
  are errors (the build command inside a sandbox).
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from rsk.core.result import Err, Ok, Result

__all__ = ["ProcessError", "Completed", "run", "capture", "which"]

TIMEOUT_RETURNCODE = -9


@dataclass(frozen=True, slots=True)
class ProcessError:
    """A command that could not run, timed out or exited non-zero.

    ``returncode`` is -1 when the process could not be launched and
    ``TIMEOUT_RETURNCODE`` when it was killed for exceeding its timeout.
    """

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def timed_out(self) -> bool:
        return self.returncode == TIMEOUT_RETURNCODE

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.returncode})"


@dataclass(frozen=True, slots=True)
class Completed:
    returncode: int
    stdout: str
    stderr: str


def _text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def capture(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[Completed, ProcessError]:
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=TIMEOUT_RETURNCODE,
                stdout=_text(e.stdout),
                stderr=f"Command timed out after {timeout}s",
            )
        )
    except OSError as e:
        return Err(ProcessError(command=tuple(cmd), returncode=-1, stdout="", stderr=str(e)))

    return Ok(Completed(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr))


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[str, ProcessError]:
    """Execute a command and return its stdout, or an error for any failure."""
    result = capture(cmd, cwd, env, timeout=timeout)
    if isinstance(result, Err):
        return result

    proc = result.value
    if proc.returncode != 0:
        return Err(
            ProcessError(
                command=tuple(cmd),
                returncode=proc.returncode,
                stdout=proc.stdout,
                stderr=proc.stderr,
            )
        )
    return Ok(proc.stdout)


def which(name: str) -> str | None:
    return shutil.which(name)
