"""Ephemeral build sandboxes.

``ContainerSandbox`` runs one command in a fresh container and removes the
container before ``run`` returns, whatever happened in between. Containers
are never reused, so nothing leaks from one build attempt into the next.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from rsk.core.result import Err, Ok, Result
from rsk.output.console import ConsoleProtocol
from rsk.platform.process import Completed, ProcessError, capture, which
from rsk.platform.process import run as run_process
from rsk.release.errors import ProvisioningError, SandboxError, SandboxTimeout

__all__ = [
    "MountMode",
    "Mount",
    "SandboxResult",
    "Sandbox",
    "ContainerSandbox",
    "detect_runtime",
]

PULL_TIMEOUT_SECONDS = 15 * 60.0
MANAGE_TIMEOUT_SECONDS = 60.0

RUNTIMES = ("podman", "docker")

# Exit status podman and docker use for their own failures, never the command's.
ENGINE_FAILURE_EXIT = 125

type RunFn = Callable[..., Result[str, ProcessError]]
type CaptureFn = Callable[..., Result[Completed, ProcessError]]


class MountMode(StrEnum):
    READ_ONLY = "ro"
    READ_WRITE = "rw"


@dataclass(frozen=True, slots=True)
class Mount:
    source: Path
    target: str
    mode: MountMode

    def to_arg(self) -> str:
        # ",z" relabels for SELinux hosts; ignored elsewhere.
        return f"{self.source}:{self.target}:{self.mode},z"


@dataclass(frozen=True, slots=True)
class SandboxResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Sandbox(Protocol):
    def run(
        self,
        image: str,
        mounts: Sequence[Mount],
        env: Mapping[str, str],
        command: Sequence[str],
        *,
        timeout: float | None = None,
        platform: str | None = None,
        on_started: Callable[[], None] | None = None,
    ) -> Result[SandboxResult, SandboxError]:
        """Run ``command``; a non-zero exit is a normal result, not an error.

        ``on_started`` fires once the environment is provisioned, right
        before the command starts.
        """
        ...


def detect_runtime(preferred: str | None = None) -> str | None:
    """Configured runtime if present on PATH, else podman, else docker."""
    candidates = (preferred,) if preferred else RUNTIMES
    for name in candidates:
        if name and which(name) is not None:
            return name
    return None


@dataclass
class ContainerSandbox:
    """podman/docker-backed sandbox.

    Lifecycle per ``run``: pull -> create -> start --attach -> rm --force.
    The removal sits in a ``finally`` block so it also runs on timeouts and
    on exceptions raised mid-run.
    """

    cwd: Path
    runtime: str | None = None
    console: ConsoleProtocol | None = None
    run_fn: RunFn = run_process
    capture_fn: CaptureFn = capture
    name_prefix: str = "rsk-build"
    teardown_failures: list[str] = field(default_factory=lambda: [])

    def run(
        self,
        image: str,
        mounts: Sequence[Mount],
        env: Mapping[str, str],
        command: Sequence[str],
        *,
        timeout: float | None = None,
        platform: str | None = None,
        on_started: Callable[[], None] | None = None,
    ) -> Result[SandboxResult, SandboxError]:
        runtime = self.runtime or detect_runtime()
        if runtime is None:
            return Err(
                ProvisioningError(
                    stage="runtime",
                    detail="no container runtime found",
                    hint="Install podman (preferred) or docker",
                )
            )

        pull_cmd = [runtime, "pull"]
        if platform:
            pull_cmd += ["--platform", platform]
        pulled = self.run_fn([*pull_cmd, image], cwd=self.cwd, timeout=PULL_TIMEOUT_SECONDS)
        if isinstance(pulled, Err):
            return Err(
                ProvisioningError(stage="pull", detail=f"{image}: {pulled.error.stderr.strip()}")
            )

        name = f"{self.name_prefix}-{uuid.uuid4().hex[:12]}"
        create_cmd = [runtime, "create", "--name", name]
        if platform:
            create_cmd += ["--platform", platform]
        for m in mounts:
            create_cmd += ["-v", m.to_arg()]
        for key, value in sorted(env.items()):
            create_cmd += ["-e", f"{key}={value}"]
        create_cmd += [image, *command]

        created = self.run_fn(create_cmd, cwd=self.cwd, timeout=MANAGE_TIMEOUT_SECONDS)
        if isinstance(created, Err):
            # A failed create can still leave a half-registered container behind.
            self._teardown(runtime, name)
            return Err(ProvisioningError(stage="create", detail=created.error.stderr.strip()))

        try:
            if on_started is not None:
                on_started()
            started = self.capture_fn(
                [runtime, "start", "--attach", name], cwd=self.cwd, timeout=timeout
            )
            if isinstance(started, Err):
                if started.error.timed_out:
                    return Err(SandboxTimeout(seconds=timeout or 0.0))
                return Err(ProvisioningError(stage="start", detail=started.error.stderr.strip()))

            proc = started.value
            if proc.returncode == ENGINE_FAILURE_EXIT:
                detail = proc.stderr.strip() or f"{runtime} start exited {proc.returncode}"
                return Err(ProvisioningError(stage="start", detail=detail))
            return Ok(
                SandboxResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
            )
        finally:
            self._teardown(runtime, name)

    def _teardown(self, runtime: str, name: str) -> None:
        removed = self.run_fn(
            [runtime, "rm", "--force", name], cwd=self.cwd, timeout=MANAGE_TIMEOUT_SECONDS
        )
        if isinstance(removed, Err):
            self.teardown_failures.append(name)
            if self.console is not None:
                self.console.warning(f"failed to remove container {name}: {removed.error}")
