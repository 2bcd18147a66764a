"""Tests for rsk.services.notes module."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from rsk.release.manifest import Arch, Variant
from rsk.release.model import Artifact, ArtifactKind, JobState, Release
from rsk.release.versions import VersionSource, version_from_tag
from rsk.services.notes import release_title, render_notes

T0 = datetime(2026, 6, 1, tzinfo=UTC)


def _release(variants: list[Variant], arches: list[Arch]) -> Release:
    version = version_from_tag("v5.3.1", at=T0, source=VersionSource.RELEASES)
    assert version is not None
    release = Release(tool="podman", version=version, created_at=T0)
    release.plan(variants, arches, T0)
    for job in release.jobs:
        job.advance(JobState.PROVISIONING, T0)
        job.advance(JobState.RUNNING, T0)
        path = Path("/dist") / job.key.archive_name
        job.succeed(T0, Artifact(ArtifactKind.ARCHIVE, path, 10, digest="f" * 64))
    return release


def test_title() -> None:
    release = _release([Variant.DEFAULT], [Arch.AMD64])
    assert release_title(release) == "podman 5.3.1 (static)"


def test_notes_list_every_archive() -> None:
    release = _release([Variant.DEFAULT, Variant.FULL], [Arch.AMD64, Arch.ARM64])

    notes = render_notes(release)

    assert "Static builds of upstream `v5.3.1`" in notes
    assert "| Variant | amd64 | arm64 |" in notes
    for job in release.jobs:
        assert f"{'f' * 64}  {job.key.archive_name}" in notes
    assert "`full`:" in notes
    assert "`standalone`:" not in notes


def test_verify_example_prefers_default_variant() -> None:
    release = _release([Variant.STANDALONE, Variant.DEFAULT], [Arch.ARM64])

    notes = render_notes(release)

    assert "sha256sum -c checksums.txt --ignore-missing" in notes
    assert "podman-linux-arm64.tar.gz.sig" in notes


def test_verify_example_without_default_variant() -> None:
    release = _release([Variant.FULL], [Arch.AMD64])

    notes = render_notes(release)

    assert "podman-full-linux-amd64.tar.gz.sig" in notes
    assert notes.endswith("```\n")
