"""Tests for rsk.services.coordinator module."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path

import pytest

from rsk.core.result import Err, Ok, Result
from rsk.core.retry import RetryPolicy
from rsk.output.console import MockConsole
from rsk.release.errors import (
    BuildCommandFailed,
    InvalidRequest,
    JobFailure,
    JobsFailed,
    MissingComponent,
    PackageError,
    ProvisioningError,
    PublishError,
    RateLimited,
    SigningError,
)
from rsk.release.manifest import TOOLS, Arch, Variant
from rsk.release.model import (
    Artifact,
    ArtifactKind,
    JobKey,
    JobState,
    ReleaseState,
    Tool,
)
from rsk.services.builder import BuildResult
from rsk.services.coordinator import ReleaseCoordinator
from rsk.services.http import HttpError, MockHttpClient
from rsk.services.oracle import VersionOracle
from rsk.services.publisher import InMemoryPublisher
from rsk.services.signer import SignedRelease

T0 = datetime(2026, 6, 1, 3, 0, tzinfo=UTC)
API = "https://api.github.test"
MATRIX_VARIANTS = (Variant.DEFAULT, Variant.FULL)
MATRIX_ARCHES = (Arch.AMD64, Arch.ARM64)
CELLS = [(v, a) for v in MATRIX_VARIANTS for a in MATRIX_ARCHES]

type Cell = tuple[Variant, Arch]


class FakeBuilder:
    def __init__(self, tmp_path: Path) -> None:
        self.tmp_path = tmp_path
        self.failures: dict[Cell, list[JobFailure]] = {}
        self.calls: list[tuple[JobKey, str]] = []
        self._lock = threading.Lock()

    def build(
        self,
        key: JobKey,
        *,
        source_ref: str,
        on_started: Callable[[], None] | None = None,
    ) -> Result[BuildResult, JobFailure]:
        with self._lock:
            self.calls.append((key, source_ref))
            queued = self.failures.get((key.variant, key.arch))
            failure = queued.pop(0) if queued else None
        if isinstance(failure, ProvisioningError):
            return Err(failure)
        if on_started is not None:
            on_started()
        if failure is not None:
            return Err(failure)
        return Ok(BuildResult(key=key, install_dir=self.tmp_path / "install", components=()))


class FakePackager:
    def __init__(self, dist: Path) -> None:
        self.dist = dist
        self.failures: dict[Cell, PackageError] = {}

    def package(
        self, tool: str, version: str, arch: Arch, variant: Variant, build: BuildResult
    ) -> Result[Artifact, PackageError]:
        failure = self.failures.get((variant, arch))
        if failure is not None:
            return Err(failure)
        path = self.dist / build.key.archive_name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(str(build.key).encode())
        return Ok(Artifact(ArtifactKind.ARCHIVE, path, path.stat().st_size, digest="ab" * 32))


class FakeSigner:
    def __init__(self, dist: Path) -> None:
        self.dist = dist
        self.error: SigningError | None = None
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def sign_release(
        self, tag: str, archives: Sequence[Artifact]
    ) -> Result[SignedRelease, SigningError]:
        self.calls.append((tag, tuple(a.filename for a in archives)))
        if self.error is not None:
            return Err(self.error)
        checksum = self.dist / "checksums.txt"
        checksum.write_text("sums")
        sigs = []
        for a in archives:
            sig = a.path.with_name(f"{a.filename}.sig")
            sig.write_text("sig")
            sigs.append(Artifact(ArtifactKind.SIGNATURE, sig, 3, signs=a.filename))
        return Ok(
            SignedRelease(
                checksum=Artifact(ArtifactKind.CHECKSUM, checksum, 4), signatures=tuple(sigs)
            )
        )


class BrokenPublisher(InMemoryPublisher):
    def release_exists(self, tag: str) -> Result[bool, PublishError]:
        return Err(PublishError(kind="query_failed", detail="HTTP 401"))


class Harness:
    def __init__(self, tmp_path: Path, *, infra_retries: int = 0) -> None:
        self.http = MockHttpClient()
        self.publisher = InMemoryPublisher()
        self.builder = FakeBuilder(tmp_path)
        self.packager = FakePackager(tmp_path / "dist")
        self.signer = FakeSigner(tmp_path / "dist")
        self.console = MockConsole()
        self.infra_retries = infra_retries

    def coordinator(self) -> ReleaseCoordinator:
        oracle = VersionOracle(
            http=self.http,
            publisher=self.publisher,
            api_url=API,
            policy=RetryPolicy(),
            console=self.console,
            clock=lambda: T0,
            sleep=lambda s: None,
        )
        return ReleaseCoordinator(
            oracle=oracle,
            builder=self.builder,
            packager=self.packager,
            signer=self.signer,
            publisher=self.publisher,
            console=self.console,
            variants=MATRIX_VARIANTS,
            arches=MATRIX_ARCHES,
            max_workers=4,
            infra_retries=self.infra_retries,
            clock=lambda: T0,
        )


def _podman() -> Tool:
    return Tool(spec=TOOLS["podman"])


class TestHappyPath:
    def test_full_matrix_published(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        release = result.value
        assert release.state == ReleaseState.PUBLISHED
        assert [t.state for t in release.history] == [
            ReleaseState.BUILDING,
            ReleaseState.SIGNING,
            ReleaseState.PUBLISHING,
            ReleaseState.PUBLISHED,
        ]
        assert len(release.jobs) == 4
        assert all(j.state == JobState.SUCCEEDED for j in release.jobs)

        published = h.publisher.releases["podman-v2.0.0"]
        archives = [f for f in published.files if f.endswith(".tar.gz")]
        sigs = [f for f in published.files if f.endswith(".sig")]
        assert len(archives) == 4
        assert len(sigs) == 4
        assert published.files.count("checksums.txt") == 1
        assert "podman-full-linux-arm64.tar.gz" in published.notes

    def test_rerun_is_skipped_without_jobs(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        coordinator = h.coordinator()
        coordinator.run(_podman(), version="2.0.0")
        builds = len(h.builder.calls)

        again = coordinator.run(_podman(), version="2.0.0")

        assert isinstance(again, Ok)
        assert again.value.state == ReleaseState.SKIPPED
        assert again.value.jobs == ()
        assert len(h.builder.calls) == builds
        assert h.publisher.queries == ["podman-v2.0.0", "podman-v2.0.0"]

    def test_job_lifecycle(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        result = h.coordinator().run(_podman(), version="2.0.0", arches=[Arch.AMD64])

        assert isinstance(result, Ok)
        for job in result.value.jobs:
            assert [t.state for t in job.history] == [
                JobState.PROVISIONING,
                JobState.RUNNING,
                JobState.SUCCEEDED,
            ]

    def test_latest_version_from_oracle(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.http.set_json(
            f"{API}/repos/containers/podman/releases",
            [{"tag_name": "v5.4.0-rc2"}, {"tag_name": "v5.3.1"}],
        )

        result = h.coordinator().run(_podman())

        assert isinstance(result, Ok)
        assert result.value.tag == "podman-v5.3.1"
        assert {ref for _, ref in h.builder.calls} == {"v5.3.1"}

    def test_transitions_reach_console(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        h.coordinator().run(_podman(), version="2.0.0")

        assert h.console.find("podman-v2.0.0: signing")
        assert h.console.find("podman-v2.0.0: published")
        assert h.console.find("podman-2.0.0/full/arm64: running")


class TestNoPartialRelease:
    @pytest.mark.parametrize("cell", CELLS)
    def test_single_build_failure_blocks_release(
        self, tmp_path: Path, cell: tuple[Variant, Arch]
    ) -> None:
        h = Harness(tmp_path)
        h.builder.failures[cell] = [BuildCommandFailed(exit_code=2, output_tail="")]

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        release = result.value
        assert release.state == ReleaseState.FAILED
        assert isinstance(release.failure, JobsFailed)
        assert len(release.failure.failed) == 1
        # Every sibling still ran to completion before the decision.
        assert len(h.builder.calls) == 4
        assert all(j.state.terminal for j in release.jobs)
        assert h.signer.calls == []
        assert h.publisher.releases == {}

    def test_missing_component_on_one_cell(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.packager.failures[(Variant.FULL, Arch.ARM64)] = MissingComponent(
            tool="podman", variant="full", arch="arm64", missing=("bin/pasta",)
        )

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        release = result.value
        assert release.state == ReleaseState.FAILED
        by_cell = {(j.key.variant, j.key.arch): j for j in release.jobs}
        assert by_cell[(Variant.FULL, Arch.ARM64)].failure_code == "missing_component"
        succeeded = [j for j in release.jobs if j.state == JobState.SUCCEEDED]
        assert len(succeeded) == 3
        assert h.publisher.releases == {}
        assert "podman-2.0.0/full/arm64 (missing_component)" in release.failure.message

    def test_signing_failure(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.signer.error = SigningError(kind="sign_failed", detail="1 of 4", files=("x",))

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        assert result.value.state == ReleaseState.FAILED
        assert result.value.failure == h.signer.error
        assert h.publisher.releases == {}

    def test_upload_failure(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.publisher.fail_uploads = True

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        release = result.value
        assert release.state == ReleaseState.FAILED
        assert isinstance(release.failure, PublishError)
        assert release.history[-2].state == ReleaseState.PUBLISHING
        assert h.publisher.releases == {}


class TestFailureTriage:
    def test_infra_and_build_failures_tagged_differently(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.builder.failures[(Variant.DEFAULT, Arch.AMD64)] = [
            ProvisioningError(stage="pull", detail="manifest unknown")
        ]
        h.builder.failures[(Variant.FULL, Arch.AMD64)] = [
            BuildCommandFailed(exit_code=1, output_tail="")
        ]

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        codes = {(j.key.variant, j.key.arch): j.failure_code for j in result.value.jobs}
        assert codes[(Variant.DEFAULT, Arch.AMD64)] == "provisioning"
        assert codes[(Variant.FULL, Arch.AMD64)] == "build_failed"
        provisioning = next(j for j in result.value.jobs if j.failure_code == "provisioning")
        assert JobState.RUNNING not in [t.state for t in provisioning.history]


class TestInfraRetries:
    def test_provisioning_failure_retried_as_new_attempt(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, infra_retries=1)
        h.builder.failures[(Variant.FULL, Arch.ARM64)] = [
            ProvisioningError(stage="pull", detail="TLS handshake timeout")
        ]

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        release = result.value
        assert release.state == ReleaseState.PUBLISHED
        assert len(release.jobs) == 4
        assert len(release.superseded) == 1
        assert release.superseded[0].state == JobState.FAILED
        retried = next(j for j in release.jobs if j.key == release.superseded[0].key)
        assert retried.attempt == 2
        assert retried.state == JobState.SUCCEEDED

    def test_retries_are_bounded(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, infra_retries=1)
        h.builder.failures[(Variant.FULL, Arch.ARM64)] = [
            ProvisioningError(stage="pull", detail="x"),
            ProvisioningError(stage="pull", detail="x"),
        ]

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        assert result.value.state == ReleaseState.FAILED
        assert len(h.builder.calls) == 5

    def test_build_failures_never_retried(self, tmp_path: Path) -> None:
        h = Harness(tmp_path, infra_retries=3)
        h.builder.failures[(Variant.DEFAULT, Arch.ARM64)] = [
            BuildCommandFailed(exit_code=2, output_tail="")
        ]

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        assert result.value.superseded == []
        assert len(h.builder.calls) == 4


class TestAbstention:
    def test_oracle_failure_creates_no_release(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        url = f"{API}/repos/containers/podman/releases"
        h.http.set_json(url, HttpError(url, 429, "Too Many Requests"))

        result = h.coordinator().run(_podman())

        assert isinstance(result, Err)
        assert isinstance(result.error, RateLimited)
        assert h.builder.calls == []
        assert h.publisher.queries == []

    def test_manual_version_must_be_semver(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        result = h.coordinator().run(_podman(), version="5.4.0-rc1")

        assert isinstance(result, Err)
        assert isinstance(result.error, InvalidRequest)

    def test_manual_version_gets_upstream_tag(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)

        result = h.coordinator().run(_podman(), version="5.3", variants=[Variant.DEFAULT])

        assert isinstance(result, Ok)
        assert result.value.version.semver == "5.3.0"
        assert result.value.version.source == "manual"
        assert {ref for _, ref in h.builder.calls} == {"v5.3"}
        # Published under the padded version, not the upstream tag text.
        assert list(h.publisher.releases) == ["podman-v5.3.0"]

    def test_release_check_failure_fails_before_building(self, tmp_path: Path) -> None:
        h = Harness(tmp_path)
        h.publisher = BrokenPublisher()

        result = h.coordinator().run(_podman(), version="2.0.0")

        assert isinstance(result, Ok)
        assert result.value.state == ReleaseState.FAILED
        assert result.value.jobs == ()
        assert isinstance(result.value.failure, PublishError)
        assert h.builder.calls == []
