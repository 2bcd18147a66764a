"""Typed loading of ``rsk.toml``.

Every section is optional; a missing file yields the defaults below.

    [sandbox]
    image = "docker.io/library/ubuntu:24.04"
    runtime = "podman"            # podman | docker | omit for auto-detect
    timeout_amd64 = 3600
    timeout_arm64 = 5400
    infra_retries = 0             # re-runs for provisioning failures and timeouts

    [release]
    workers = 4

    [publish]
    repo = "owner/rootless-static-toolkits"

    [upstream]
    api_url = "https://api.github.com"
    token_env = "GITHUB_TOKEN"
    timeout = 30

    [retry]
    attempts = 3
    base_delay = 1.0

    [matrix]
    architectures = ["amd64", "arm64"]
    variants = ["standalone", "default", "full"]

    [paths]
    scripts = "scripts"
    build = "build"
    dist = "dist"
    etc = "etc"

    [cache]
    version_ttl = 0
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from rsk.release.manifest import ALL_ARCHES, ALL_VARIANTS, Arch, Variant

from .result import Err, Ok, Result
from .retry import RetryPolicy
from .structured import (
    StrDict,
    as_str_dict,
    get_float,
    get_int,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "Config",
    "ConfigError",
    "SandboxConfig",
    "PublishConfig",
    "UpstreamConfig",
    "RetryConfig",
    "ReleaseConfig",
    "MatrixConfig",
    "PathsConfig",
    "CacheConfig",
    "load_config",
    "load_config_or_default",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_IMAGE",
]

DEFAULT_CONFIG_NAME = "rsk.toml"
DEFAULT_IMAGE = "docker.io/library/ubuntu:24.04"

# Per-architecture wall-clock ceilings for one sandboxed build (arm64 runners are slower).
DEFAULT_TIMEOUT_AMD64 = 60 * 60.0
DEFAULT_TIMEOUT_ARM64 = 90 * 60.0


@dataclass(frozen=True, slots=True)
class ConfigError:
    message: str
    path: Path | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class SandboxConfig:
    image: str = DEFAULT_IMAGE
    runtime: str | None = None
    timeout_amd64: float = DEFAULT_TIMEOUT_AMD64
    timeout_arm64: float = DEFAULT_TIMEOUT_ARM64
    infra_retries: int = 0

    def timeout_for(self, arch: Arch) -> float:
        return self.timeout_arm64 if arch == Arch.ARM64 else self.timeout_amd64


@dataclass(frozen=True, slots=True)
class PublishConfig:
    repo: str | None = None

    def resolved_repo(self) -> str | None:
        """Configured repo, else the CI-provided ``GITHUB_REPOSITORY``."""
        return self.repo or os.environ.get("GITHUB_REPOSITORY") or None


@dataclass(frozen=True, slots=True)
class UpstreamConfig:
    api_url: str = "https://api.github.com"
    token_env: str = "GITHUB_TOKEN"
    timeout: float = 30.0

    def token(self) -> str | None:
        return os.environ.get(self.token_env) or None


@dataclass(frozen=True, slots=True)
class RetryConfig:
    attempts: int = 3
    base_delay: float = 1.0

    def policy(self) -> RetryPolicy:
        return RetryPolicy(attempts=self.attempts, base_delay=self.base_delay)


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    workers: int = 4


@dataclass(frozen=True, slots=True)
class MatrixConfig:
    architectures: tuple[Arch, ...] = ALL_ARCHES
    variants: tuple[Variant, ...] = ALL_VARIANTS


@dataclass(frozen=True, slots=True)
class PathsConfig:
    """Directories relative to the project root (absolute paths are kept as is)."""

    scripts: str = "scripts"
    build: str = "build"
    dist: str = "dist"
    etc: str = "etc"

    def resolve(self, root: Path, name: str) -> Path:
        p = Path(getattr(self, name)).expanduser()
        return p if p.is_absolute() else root / p


@dataclass(frozen=True, slots=True)
class CacheConfig:
    version_ttl: float = 0.0


@dataclass(frozen=True, slots=True)
class Config:
    sandbox: SandboxConfig = field(default_factory=SandboxConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    matrix: MatrixConfig = field(default_factory=MatrixConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Build a Config from parsed TOML.

        Raises:
            ValueError: on values of the right type but outside the allowed set.
        """
        sandbox: StrDict = get_table(data, "sandbox") or {}
        publish: StrDict = get_table(data, "publish") or {}
        upstream: StrDict = get_table(data, "upstream") or {}
        retry: StrDict = get_table(data, "retry") or {}
        release: StrDict = get_table(data, "release") or {}
        matrix: StrDict = get_table(data, "matrix") or {}
        paths: StrDict = get_table(data, "paths") or {}
        cache: StrDict = get_table(data, "cache") or {}

        runtime = get_str(sandbox, "runtime")
        if runtime is not None and runtime not in ("podman", "docker"):
            raise ValueError(f"sandbox.runtime must be podman or docker, got {runtime!r}")

        attempts = retry.get("attempts", 3)
        if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
            raise ValueError("retry.attempts must be a positive integer")

        infra_retries = get_int(sandbox, "infra_retries")
        infra_retries = 0 if infra_retries is None else infra_retries
        workers = get_int(release, "workers")
        workers = 4 if workers is None else workers
        if infra_retries < 0 or workers < 1:
            raise ValueError("sandbox.infra_retries must be >= 0 and release.workers >= 1")

        arches = get_str_list(matrix, "architectures")
        variants = get_str_list(matrix, "variants")

        return cls(
            sandbox=SandboxConfig(
                image=get_str(sandbox, "image") or DEFAULT_IMAGE,
                runtime=runtime,
                timeout_amd64=get_float(sandbox, "timeout_amd64") or DEFAULT_TIMEOUT_AMD64,
                timeout_arm64=get_float(sandbox, "timeout_arm64") or DEFAULT_TIMEOUT_ARM64,
                infra_retries=infra_retries,
            ),
            publish=PublishConfig(repo=get_str(publish, "repo")),
            upstream=UpstreamConfig(
                api_url=(get_str(upstream, "api_url") or "https://api.github.com").rstrip("/"),
                token_env=get_str(upstream, "token_env") or "GITHUB_TOKEN",
                timeout=get_float(upstream, "timeout") or 30.0,
            ),
            retry=RetryConfig(
                attempts=attempts,
                base_delay=get_float(retry, "base_delay") or 1.0,
            ),
            release=ReleaseConfig(workers=workers),
            matrix=MatrixConfig(
                architectures=tuple(Arch(a) for a in arches) if arches else ALL_ARCHES,
                variants=tuple(Variant(v) for v in variants) if variants else ALL_VARIANTS,
            ),
            paths=PathsConfig(
                scripts=get_str(paths, "scripts") or "scripts",
                build=get_str(paths, "build") or "build",
                dist=get_str(paths, "dist") or "dist",
                etc=get_str(paths, "etc") or "etc",
            ),
            cache=CacheConfig(version_ttl=get_float(cache, "version_ttl") or 0.0),
        )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[Config, ConfigError]:
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Result[Config, ConfigError]:
    """Defaults when ``path`` does not exist; a present but broken file is still an error."""
    if not path.exists():
        return Ok(Config())
    return load_config(path)
