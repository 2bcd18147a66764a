"""Release aggregate and its entities.

A Release owns a fixed matrix of BuildJobs (variants x architectures) and,
once every job succeeded and signing finished, the artifacts to publish.
State changes go through ``advance`` so illegal transitions are caught at
the point they happen and every change lands in ``history``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path

from rsk.release.errors import FailureCode, JobFailure, ReleaseFailure, failure_code
from rsk.release.manifest import Arch, ToolSpec, Variant, archive_name, release_tag
from rsk.release.versions import Version


class ReleaseState(StrEnum):
    PENDING = "pending"
    BUILDING = "building"
    SIGNING = "signing"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (ReleaseState.PUBLISHED, ReleaseState.FAILED, ReleaseState.SKIPPED)


class JobState(StrEnum):
    QUEUED = "queued"
    PROVISIONING = "provisioning"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


_RELEASE_EDGES: dict[ReleaseState, frozenset[ReleaseState]] = {
    ReleaseState.PENDING: frozenset({ReleaseState.BUILDING, ReleaseState.SKIPPED}),
    ReleaseState.BUILDING: frozenset({ReleaseState.SIGNING}),
    ReleaseState.SIGNING: frozenset({ReleaseState.PUBLISHING}),
    ReleaseState.PUBLISHING: frozenset({ReleaseState.PUBLISHED}),
}

_JOB_EDGES: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset({JobState.PROVISIONING, JobState.FAILED}),
    JobState.PROVISIONING: frozenset({JobState.RUNNING, JobState.FAILED}),
    JobState.RUNNING: frozenset({JobState.SUCCEEDED, JobState.FAILED}),
}


class InvalidTransition(RuntimeError):
    """Raised on a state change the state machine does not allow (a bug, not a failure)."""


@dataclass(slots=True)
class Tool:
    """A configured tool; only ``last_checked`` changes at runtime."""

    spec: ToolSpec
    last_checked: datetime | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def upstream(self) -> str:
        return self.spec.upstream

    @property
    def variants(self) -> tuple[Variant, ...]:
        return self.spec.variants


class ArtifactKind(StrEnum):
    ARCHIVE = "archive"
    CHECKSUM = "checksum"
    SIGNATURE = "signature"


@dataclass(frozen=True, slots=True)
class Artifact:
    """An immutable release file.

    ``digest`` is the sha256 of an archive, computed before signing.
    ``signs`` names the archive a signature belongs to.
    """

    kind: ArtifactKind
    path: Path
    size: int
    digest: str | None = None
    signs: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class JobKey:
    tool: str
    version: str
    variant: Variant
    arch: Arch

    def __str__(self) -> str:
        return f"{self.tool}-{self.version}/{self.variant}/{self.arch}"

    @property
    def archive_name(self) -> str:
        return archive_name(self.tool, self.variant, self.arch)


@dataclass(frozen=True, slots=True)
class Transition[S]:
    state: S
    at: datetime
    note: str | None = None


@dataclass(slots=True)
class BuildJob:
    """One matrix cell. Terminal states are final; a retry is a new attempt."""

    key: JobKey
    attempt: int = 1
    state: JobState = JobState.QUEUED
    started_at: datetime | None = None
    finished_at: datetime | None = None
    failure: JobFailure | None = None
    artifacts: tuple[Artifact, ...] = ()
    history: list[Transition[JobState]] = field(default_factory=lambda: [])

    @property
    def failure_code(self) -> FailureCode | None:
        return None if self.failure is None else failure_code(self.failure)

    @property
    def archive(self) -> Artifact | None:
        for a in self.artifacts:
            if a.kind == ArtifactKind.ARCHIVE:
                return a
        return None

    def advance(self, state: JobState, at: datetime, note: str | None = None) -> None:
        if state not in _JOB_EDGES.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.key}: {self.state} -> {state}")
        if self.state == JobState.QUEUED:
            self.started_at = at
        if state.terminal:
            self.finished_at = at
        self.state = state
        self.history.append(Transition(state, at, note))

    def succeed(self, at: datetime, archive: Artifact) -> None:
        self.artifacts = (archive,)
        self.advance(JobState.SUCCEEDED, at)

    def fail(self, at: datetime, failure: JobFailure) -> None:
        self.failure = failure
        self.advance(JobState.FAILED, at, failure.message)

    def retry(self) -> BuildJob:
        """A fresh attempt for a failed job; the failed one stays as history."""
        if self.state != JobState.FAILED:
            raise InvalidTransition(f"{self.key}: only failed jobs can be retried")
        return BuildJob(key=self.key, attempt=self.attempt + 1)


@dataclass(slots=True)
class Release:
    """Aggregate root for one (tool, version)."""

    tool: str
    version: Version
    created_at: datetime
    state: ReleaseState = ReleaseState.PENDING
    completed_at: datetime | None = None
    jobs: tuple[BuildJob, ...] = ()
    checksum: Artifact | None = None
    signatures: tuple[Artifact, ...] = ()
    failure: ReleaseFailure | None = None
    history: list[Transition[ReleaseState]] = field(default_factory=lambda: [])
    superseded: list[BuildJob] = field(default_factory=lambda: [])

    @property
    def tag(self) -> str:
        return release_tag(self.tool, self.version.semver)

    @property
    def archives(self) -> tuple[Artifact, ...]:
        return tuple(j.archive for j in self.jobs if j.archive is not None)

    @property
    def artifacts(self) -> tuple[Artifact, ...]:
        """Everything that gets uploaded: archives, checksum file, signatures."""
        out = list(self.archives)
        if self.checksum is not None:
            out.append(self.checksum)
        out.extend(self.signatures)
        return tuple(out)

    def plan(self, variants: Iterable[Variant], arches: Iterable[Arch], at: datetime) -> None:
        """Create the full BuildJob matrix and enter BUILDING. Allowed once."""
        if self.jobs:
            raise InvalidTransition(f"{self.tag}: build matrix already planned")
        arch_list = tuple(arches)
        self.jobs = tuple(
            BuildJob(key=JobKey(self.tool, self.version.semver, v, a))
            for v in variants
            for a in arch_list
        )
        if not self.jobs:
            raise InvalidTransition(f"{self.tag}: empty build matrix")
        self.advance(ReleaseState.BUILDING, at, f"{len(self.jobs)} job(s)")

    def supersede(self, failed: BuildJob) -> BuildJob:
        """Swap a failed cell for a fresh attempt; the matrix itself never changes."""
        if self.state != ReleaseState.BUILDING:
            raise InvalidTransition(f"{self.tag}: jobs can only be retried while building")
        if not any(j is failed for j in self.jobs):
            raise InvalidTransition(f"{self.tag}: {failed.key} is not a current job")
        replacement = failed.retry()
        self.jobs = tuple(replacement if j is failed else j for j in self.jobs)
        self.superseded.append(failed)
        return replacement

    def advance(self, state: ReleaseState, at: datetime, note: str | None = None) -> None:
        if state == ReleaseState.PUBLISHED and not self.complete:
            raise InvalidTransition(f"{self.tag}: refusing to publish a partial release")
        if state not in _RELEASE_EDGES.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.tag}: {self.state} -> {state}")
        self._enter(state, at, note)

    def fail(self, at: datetime, failure: ReleaseFailure) -> None:
        """Abandon the release; reachable from any non-terminal state."""
        if self.state.terminal:
            raise InvalidTransition(f"{self.tag}: {self.state} -> failed")
        self.failure = failure
        self._enter(ReleaseState.FAILED, at, failure.message)

    @property
    def complete(self) -> bool:
        """Every job succeeded, a checksum exists and each archive has a signature."""
        if not self.jobs or any(j.state != JobState.SUCCEEDED for j in self.jobs):
            return False
        if self.checksum is None:
            return False
        signed = {s.signs for s in self.signatures}
        return all(a.filename in signed for a in self.archives) and len(self.archives) == len(
            self.jobs
        )

    def _enter(self, state: ReleaseState, at: datetime, note: str | None) -> None:
        self.state = state
        if state.terminal:
            self.completed_at = at
        self.history.append(Transition(state, at, note))
