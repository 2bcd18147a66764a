"""Publishing surface: one GitHub release per ``{tool}-v{version}`` tag.

``GhPublisher`` drives the GitHub CLI. Uploads are all-or-nothing: a
release whose asset upload fails is deleted again so users never see a
half-populated tag.
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from time import sleep
from typing import Protocol

from rsk.core.result import Err, Ok, Result
from rsk.core.retry import RetryPolicy, retry
from rsk.platform.process import ProcessError, which
from rsk.platform.process import run as run_process
from rsk.release.errors import PublishError

__all__ = ["Publisher", "GhPublisher", "InMemoryPublisher", "PublishedRelease"]

GH_TIMEOUT_SECONDS = 60.0
GH_UPLOAD_TIMEOUT_SECONDS = 30 * 60.0

_TRANSIENT_MARKERS = (
    "timed out",
    "timeout",
    "connection reset",
    "connection refused",
    "temporarily unavailable",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
    "tls handshake timeout",
    "network is unreachable",
    "http 429",
    "http 500",
    "http 502",
    "http 503",
    "http 504",
)


class Publisher(Protocol):
    def release_exists(self, tag: str) -> Result[bool, PublishError]: ...

    def publish(
        self, tag: str, *, title: str, notes: str, files: Sequence[Path]
    ) -> Result[None, PublishError]: ...


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _is_not_found(error: ProcessError) -> bool:
    # gh's own wording for a missing release; an HTTP 404 means the repo is wrong.
    return "release not found" in error.stderr.lower()


class GhPublisher:
    """GitHub releases via ``gh``."""

    def __init__(
        self,
        *,
        repo: str | None,
        cwd: Path,
        policy: RetryPolicy | None = None,
        sleep_fn: Callable[[float], None] = sleep,
    ) -> None:
        self._repo = repo
        self._cwd = cwd
        self._policy = policy or RetryPolicy()
        self._sleep = sleep_fn

    @property
    def repo(self) -> str | None:
        return self._repo

    def _ensure_gh(self) -> Result[str, PublishError]:
        if not self._repo:
            return Err(
                PublishError(
                    kind="repo_unknown",
                    detail="no publish repository configured",
                    hint="Set [publish] repo in rsk.toml or GITHUB_REPOSITORY",
                )
            )
        if which("gh") is None:
            return Err(
                PublishError(
                    kind="gh_missing",
                    detail="gh: missing",
                    hint="Install GitHub CLI: https://cli.github.com/",
                )
            )
        return Ok(self._repo)

    def release_exists(self, tag: str) -> Result[bool, PublishError]:
        gh = self._ensure_gh()
        if isinstance(gh, Err):
            return gh

        cmd = ["gh", "release", "view", tag, "--repo", gh.value, "--json", "tagName"]

        def attempt(_: int) -> Result[str, ProcessError]:
            return run_process(cmd, cwd=self._cwd, timeout=GH_TIMEOUT_SECONDS)

        result = retry(
            attempt,
            policy=self._policy,
            is_transient=_is_transient_gh_error,
            sleep=self._sleep,
        )
        if isinstance(result, Ok):
            return Ok(True)
        if _is_not_found(result.error):
            return Ok(False)
        return Err(
            PublishError(
                kind="query_failed",
                detail=f"gh release view {tag} failed",
                hint=result.error.stderr.strip() or None,
            )
        )

    def publish(
        self, tag: str, *, title: str, notes: str, files: Sequence[Path]
    ) -> Result[None, PublishError]:
        gh = self._ensure_gh()
        if isinstance(gh, Err):
            return gh

        missing = [str(f) for f in files if not f.is_file()]
        if missing:
            return Err(
                PublishError(kind="upload_failed", detail=f"missing file(s): {', '.join(missing)}")
            )

        with tempfile.TemporaryDirectory(prefix="rsk-notes-") as tmp:
            notes_path = Path(tmp) / "notes.md"
            notes_path.write_text(notes, encoding="utf-8")
            cmd = [
                "gh",
                "release",
                "create",
                tag,
                "--repo",
                gh.value,
                "--title",
                title,
                "--notes-file",
                str(notes_path),
                *(str(f) for f in files),
            ]
            result = run_process(cmd, cwd=self._cwd, timeout=GH_UPLOAD_TIMEOUT_SECONDS)

        if isinstance(result, Ok):
            return Ok(None)

        stderr = result.error.stderr.strip()
        if "already exists" in stderr.lower():
            return Err(PublishError(kind="tag_exists", detail=f"{tag} already exists", hint=stderr))

        # The release may exist with a subset of assets; remove it entirely.
        cleanup = run_process(
            ["gh", "release", "delete", tag, "--repo", gh.value, "--yes", "--cleanup-tag"],
            cwd=self._cwd,
            timeout=GH_TIMEOUT_SECONDS,
        )
        hint = stderr or None
        if isinstance(cleanup, Err) and not _is_not_found(cleanup.error):
            hint = f"{stderr}; cleanup also failed, delete {tag} manually"
        return Err(PublishError(kind="upload_failed", detail=f"gh release create {tag}", hint=hint))


@dataclass(frozen=True, slots=True)
class PublishedRelease:
    tag: str
    title: str
    notes: str
    files: tuple[str, ...]


@dataclass
class InMemoryPublisher:
    """Publishing surface held in memory (tests and local rehearsals).

    ``fail_uploads`` makes the next ``publish`` calls fail without storing anything.
    """

    releases: dict[str, PublishedRelease] = field(default_factory=lambda: {})
    fail_uploads: bool = False
    queries: list[str] = field(default_factory=lambda: [])

    def release_exists(self, tag: str) -> Result[bool, PublishError]:
        self.queries.append(tag)
        return Ok(tag in self.releases)

    def publish(
        self, tag: str, *, title: str, notes: str, files: Sequence[Path]
    ) -> Result[None, PublishError]:
        if tag in self.releases:
            return Err(PublishError(kind="tag_exists", detail=f"{tag} already exists"))
        if self.fail_uploads:
            return Err(PublishError(kind="upload_failed", detail=f"upload rejected for {tag}"))
        self.releases[tag] = PublishedRelease(
            tag=tag, title=title, notes=notes, files=tuple(f.name for f in files)
        )
        return Ok(None)
