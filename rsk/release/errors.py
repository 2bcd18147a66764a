"""Typed failure payloads for every stage of a release.

Nothing below the coordinator raises for an expected failure: each stage
returns one of these values inside an ``Err`` and the coordinator attaches
it to the owning BuildJob or Release.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal


class FailureCode(StrEnum):
    """Why a BuildJob failed; infra problems are kept apart from real breakage."""

    PROVISIONING = "provisioning"
    TIMEOUT = "timeout"
    BUILD_FAILED = "build_failed"
    MISSING_COMPONENT = "missing_component"
    PACKAGING_FAILED = "packaging_failed"
    CANCELLED = "cancelled"


# -----------------------------------------------------------------------------
# Version oracle
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NotFound:
    tool: str
    feeds: tuple[str, ...]
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"{self.tool}: no stable release found in {', '.join(self.feeds)}"


@dataclass(frozen=True, slots=True)
class RateLimited:
    url: str
    attempts: int
    hint: str | None = "Set GITHUB_TOKEN to raise the API rate limit"

    @property
    def message(self) -> str:
        return f"rate limited after {self.attempts} attempt(s): {self.url}"


@dataclass(frozen=True, slots=True)
class TransportError:
    url: str
    status: int
    detail: str
    attempts: int = 1
    hint: str | None = None

    @property
    def message(self) -> str:
        status = f"HTTP {self.status}: " if self.status else ""
        return f"{status}{self.detail} ({self.url}, {self.attempts} attempt(s))"


OracleError = NotFound | RateLimited | TransportError


# -----------------------------------------------------------------------------
# Sandbox / builder / packager
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProvisioningError:
    """The sandbox itself could not be created (runtime missing, pull failed...)."""

    stage: Literal["runtime", "pull", "create", "start"]
    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"sandbox {self.stage} failed: {self.detail}"


@dataclass(frozen=True, slots=True)
class SandboxTimeout:
    seconds: float
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"sandbox run exceeded {self.seconds:.0f}s"


SandboxError = ProvisioningError | SandboxTimeout


@dataclass(frozen=True, slots=True)
class BuildCommandFailed:
    exit_code: int
    output_tail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"build command exited with {self.exit_code}"


@dataclass(frozen=True, slots=True)
class MissingComponent:
    """Every required path absent from the build output, not just the first."""

    tool: str
    variant: str
    arch: str
    missing: tuple[str, ...]
    hint: str | None = None

    @property
    def message(self) -> str:
        return (
            f"{self.tool}-{self.variant}-{self.arch}: missing required component(s): "
            f"{', '.join(self.missing)}"
        )


@dataclass(frozen=True, slots=True)
class PackagingFailed:
    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"packaging failed: {self.detail}"


PackageError = MissingComponent | PackagingFailed

JobFailure = ProvisioningError | SandboxTimeout | BuildCommandFailed | PackageError


def failure_code(failure: JobFailure) -> FailureCode:
    match failure:
        case ProvisioningError():
            return FailureCode.PROVISIONING
        case SandboxTimeout():
            return FailureCode.TIMEOUT
        case BuildCommandFailed():
            return FailureCode.BUILD_FAILED
        case MissingComponent():
            return FailureCode.MISSING_COMPONENT
        case PackagingFailed():
            return FailureCode.PACKAGING_FAILED


# -----------------------------------------------------------------------------
# Signer / publisher / release
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SigningError:
    kind: Literal["cosign_missing", "archive_missing", "checksum_failed", "sign_failed"]
    detail: str
    files: tuple[str, ...] = ()
    hint: str | None = None

    @property
    def message(self) -> str:
        if self.files:
            return f"signing failed ({self.kind}): {self.detail}: {', '.join(self.files)}"
        return f"signing failed ({self.kind}): {self.detail}"


@dataclass(frozen=True, slots=True)
class PublishError:
    kind: Literal["gh_missing", "repo_unknown", "query_failed", "upload_failed", "tag_exists"]
    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"publish failed ({self.kind}): {self.detail}"


@dataclass(frozen=True, slots=True)
class JobsFailed:
    """At least one matrix cell failed; lists every failed cell."""

    failed: tuple[str, ...]
    hint: str | None = None

    @property
    def message(self) -> str:
        return f"{len(self.failed)} build job(s) failed: {', '.join(self.failed)}"


ReleaseFailure = JobsFailed | SigningError | PublishError


@dataclass(frozen=True, slots=True)
class InvalidRequest:
    """The operator asked for something no Release can be created for."""

    detail: str
    hint: str | None = None

    @property
    def message(self) -> str:
        return self.detail


Abstention = OracleError | InvalidRequest
