"""Release orchestration for one (tool, version).

The coordinator is the only place that decides a Release's outcome. It
checks for an existing release once, fans the build matrix out to a thread
pool, waits for every job to finish and only then decides: any failed job
fails the whole Release and nothing is signed or uploaded.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime

from rsk.core.result import Err, Ok, Result
from rsk.output.console import ConsoleProtocol, Style
from rsk.release.errors import (
    Abstention,
    FailureCode,
    InvalidRequest,
    JobFailure,
    JobsFailed,
    ReleaseFailure,
)
from rsk.release.manifest import ALL_ARCHES, ALL_VARIANTS, Arch, Variant
from rsk.release.model import BuildJob, JobState, Release, ReleaseState, Tool
from rsk.release.versions import Version, VersionSource, version_from_tag
from rsk.services.builder import Builder
from rsk.services.notes import release_title, render_notes
from rsk.services.oracle import VersionOracle
from rsk.services.packager import Packager
from rsk.services.publisher import Publisher
from rsk.services.signer import Signer

__all__ = ["ReleaseCoordinator", "INFRA_FAILURES"]

# Failures worth another attempt: the environment broke, not the build.
INFRA_FAILURES = frozenset({FailureCode.PROVISIONING, FailureCode.TIMEOUT})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReleaseCoordinator:
    def __init__(
        self,
        *,
        oracle: VersionOracle,
        builder: Builder,
        packager: Packager,
        signer: Signer,
        publisher: Publisher,
        console: ConsoleProtocol,
        variants: tuple[Variant, ...] = ALL_VARIANTS,
        arches: tuple[Arch, ...] = ALL_ARCHES,
        max_workers: int = 4,
        infra_retries: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._oracle = oracle
        self._builder = builder
        self._packager = packager
        self._signer = signer
        self._publisher = publisher
        self._console = console
        self._variants = variants
        self._arches = arches
        self._max_workers = max(1, max_workers)
        self._infra_retries = max(0, infra_retries)
        self._clock = clock
        self._lock = threading.Lock()

    def resolve_version(self, tool: Tool, requested: str | None) -> Result[Version, Abstention]:
        """Explicit version if given, else the oracle's latest stable one."""
        if requested is None:
            return self._oracle.latest_stable(tool)

        raw = requested.strip()
        tag = raw if raw.startswith("v") else f"v{raw}"
        version = version_from_tag(tag, at=self._clock(), source=VersionSource.MANUAL)
        if version is None:
            return Err(
                InvalidRequest(
                    detail=f"{tool.name}: not a release version: {requested!r}",
                    hint="Use MAJOR.MINOR[.PATCH], e.g. 5.3.1",
                )
            )
        return Ok(version)

    def run(
        self,
        tool: Tool,
        *,
        version: str | None = None,
        variants: Iterable[Variant] | None = None,
        arches: Iterable[Arch] | None = None,
    ) -> Result[Release, Abstention]:
        """Drive one Release to a terminal state.

        ``Err`` means no Release was created at all (the oracle abstained or
        the request was invalid). Every other outcome, failures included, is
        an ``Ok`` Release whose ``state`` and ``failure`` tell what happened.
        """
        selected_variants = tuple(variants) if variants else self._variants
        selected_arches = tuple(arches) if arches else self._arches
        unsupported = [v for v in selected_variants if v not in tool.variants]
        if unsupported:
            return Err(
                InvalidRequest(
                    detail=f"{tool.name}: unsupported variant(s): {', '.join(unsupported)}"
                )
            )

        resolved = self.resolve_version(tool, version)
        if isinstance(resolved, Err):
            return resolved

        release = Release(tool=tool.name, version=resolved.value, created_at=self._clock())
        self._console.header(f"{release.tag} ({resolved.value.source})")

        # Checked once per Release, before any BuildJob exists.
        exists = self._oracle.already_released(tool, resolved.value)
        if isinstance(exists, Err):
            self._fail(release, exists.error)
            return Ok(release)
        if exists.value:
            self._advance(release, ReleaseState.SKIPPED, "already published")
            return Ok(release)

        release.plan(selected_variants, selected_arches, self._clock())
        self._console.info(f"{release.tag}: {ReleaseState.BUILDING} ({len(release.jobs)} jobs)")

        self._build_matrix(release)

        failed = [j for j in release.jobs if j.state == JobState.FAILED]
        if failed:
            self._fail(
                release,
                JobsFailed(failed=tuple(f"{j.key} ({j.failure_code})" for j in failed)),
            )
            return Ok(release)

        self._advance(release, ReleaseState.SIGNING)
        signed = self._signer.sign_release(release.tag, release.archives)
        if isinstance(signed, Err):
            self._fail(release, signed.error)
            return Ok(release)
        release.checksum = signed.value.checksum
        release.signatures = signed.value.signatures

        self._advance(release, ReleaseState.PUBLISHING, f"{len(release.artifacts)} file(s)")
        published = self._publisher.publish(
            release.tag,
            title=release_title(release),
            notes=render_notes(release),
            files=[a.path for a in release.artifacts],
        )
        if isinstance(published, Err):
            self._fail(release, published.error)
            return Ok(release)

        self._advance(release, ReleaseState.PUBLISHED)
        return Ok(release)

    # -- build matrix ---------------------------------------------------------

    def _build_matrix(self, release: Release) -> None:
        # Wait for every cell before deciding, even after a failure.
        workers = min(self._max_workers, len(release.jobs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="rsk-job") as pool:
            futures = [pool.submit(self._run_cell, release, job) for job in release.jobs]
            for future in futures:
                future.result()

    def _run_cell(self, release: Release, job: BuildJob) -> None:
        current = job
        while True:
            self._run_job(release, current)
            code = current.failure_code
            if code is None or code not in INFRA_FAILURES or current.attempt > self._infra_retries:
                return
            with self._lock:
                current = release.supersede(current)
            self._console.warning(
                f"{current.key}: retrying after {code} (attempt {current.attempt})"
            )

    def _run_job(self, release: Release, job: BuildJob) -> None:
        key = job.key
        self._job_advance(job, JobState.PROVISIONING)

        def on_started() -> None:
            self._job_advance(job, JobState.RUNNING)

        built = self._builder.build(key, source_ref=release.version.tag, on_started=on_started)
        if isinstance(built, Err):
            self._job_fail(job, built.error)
            return
        if job.state == JobState.PROVISIONING:
            # The builder produced a result without reporting its start.
            self._job_advance(job, JobState.RUNNING)

        packaged = self._packager.package(key.tool, key.version, key.arch, key.variant, built.value)
        if isinstance(packaged, Err):
            self._job_fail(job, packaged.error)
            return

        archive = packaged.value
        for warning in archive.warnings:
            self._console.warning(f"{key}: {warning}")
        job.succeed(self._clock(), archive)
        self._console.success(f"{key}: {JobState.SUCCEEDED} ({archive.filename})")

    # -- transitions ----------------------------------------------------------

    def _job_advance(self, job: BuildJob, state: JobState) -> None:
        job.advance(state, self._clock())
        suffix = f" (attempt {job.attempt})" if job.attempt > 1 else ""
        self._console.info(f"{job.key}: {state}{suffix}")

    def _job_fail(self, job: BuildJob, failure: JobFailure) -> None:
        job.fail(self._clock(), failure)
        self._console.error(f"{job.key}: {JobState.FAILED} [{job.failure_code}] {failure.message}")

    def _advance(self, release: Release, state: ReleaseState, note: str | None = None) -> None:
        release.advance(state, self._clock(), note)
        text = f"{release.tag}: {state}" + (f" ({note})" if note else "")
        if state == ReleaseState.PUBLISHED:
            self._console.success(text)
        else:
            self._console.info(text)

    def _fail(self, release: Release, failure: ReleaseFailure) -> None:
        release.fail(self._clock(), failure)
        self._console.error(f"{release.tag}: {ReleaseState.FAILED}: {failure.message}")
        if failure.hint:
            self._console.print(f"hint: {failure.hint}", Style.DIM)
