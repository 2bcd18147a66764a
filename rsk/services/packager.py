"""Variant archives with a strict required-components check.

This is where a tolerant build becomes a hard failure: every path the
manifest requires for the variant must exist, and all missing paths are
reported together.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from rsk.core.result import Err, Ok, Result
from rsk.release.errors import MissingComponent, PackageError, PackagingFailed
from rsk.release.manifest import (
    Arch,
    Variant,
    archive_name,
    get_tool_spec,
    release_tag,
    required_paths,
)
from rsk.release.model import Artifact, ArtifactKind
from rsk.services.builder import BuildResult
from rsk.services.smoke import dynamic_binaries

__all__ = ["Packager", "TarPackager", "missing_components", "sha256_file"]

# Bundled defaults so the tools work without a system-wide /etc/containers.
BUNDLED_CONFIGS = ("policy.json", "registries.conf")

# Fixed entry mtime keeps archives byte-identical across rebuilds of the same inputs.
ARCHIVE_MTIME = 0


class Packager(Protocol):
    def package(
        self,
        tool: str,
        version: str,
        arch: Arch,
        variant: Variant,
        build: BuildResult,
    ) -> Result[Artifact, PackageError]: ...


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def missing_components(install_dir: Path, required: tuple[str, ...]) -> tuple[str, ...]:
    """Every required path absent from ``install_dir``, in manifest order."""
    return tuple(p for p in required if not (install_dir / p).is_file())


def _readme(
    tool: str, version: str, arch: Arch, variant: Variant, archive: str, files: list[str]
) -> str:
    lines = [
        f"{tool} v{version} - static binary release ({variant})",
        "",
        f"Architecture: linux/{arch}",
        "Linked statically against musl; no glibc required.",
        "",
        "Installation",
        "------------",
        f"  tar -xzf {archive}",
        f"  export PATH=$PWD/{tool}-v{version}/bin:$PATH",
        "",
        "Verification",
        "------------",
        "  sha256sum -c checksums.txt --ignore-missing",
        "  cosign verify-blob \\",
        f"    --signature {archive}.sig \\",
        "    --certificate-identity-regexp 'https://github.com/.*' \\",
        "    --certificate-oidc-issuer https://token.actions.githubusercontent.com \\",
        f"    {archive}",
        "",
        "Contents",
        "--------",
        *(f"  {f}" for f in files),
        "",
    ]
    return "\n".join(lines)


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    info.mtime = ARCHIVE_MTIME
    tar.addfile(info, io.BytesIO(data))


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.mtime = ARCHIVE_MTIME
    tar.addfile(info)


@dataclass
class TarPackager:
    """Writes ``{dist_dir}/{tool}-v{version}/<archive>.tar.gz`` archives."""

    dist_dir: Path
    etc_dir: Path | None = None

    def release_dir(self, tool: str, version: str) -> Path:
        return self.dist_dir / release_tag(tool, version)

    def package(
        self,
        tool: str,
        version: str,
        arch: Arch,
        variant: Variant,
        build: BuildResult,
    ) -> Result[Artifact, PackageError]:
        spec = get_tool_spec(tool)
        if spec is None:
            return Err(PackagingFailed(detail=f"unknown tool: {tool}"))

        install_dir = build.install_dir
        missing = missing_components(install_dir, required_paths(spec, variant))
        if missing:
            return Err(
                MissingComponent(
                    tool=tool,
                    variant=str(variant),
                    arch=str(arch),
                    missing=missing,
                    hint=f"build logs: {install_dir.parent / 'report'}",
                )
            )

        out_dir = self.release_dir(tool, version)
        name = archive_name(tool, variant, arch)
        out_path = out_dir / name
        root = f"{tool}-v{version}"

        bin_dir = install_dir / "bin"
        binaries = sorted(p for p in bin_dir.iterdir() if p.is_file())
        configs: list[Path] = []
        if self.etc_dir is not None:
            configs = [self.etc_dir / "containers" / c for c in BUNDLED_CONFIGS]
            configs = [c for c in configs if c.is_file()]

        listing = [f"bin/{b.name}" for b in binaries] + [
            f"etc/containers/{c.name}" for c in configs
        ]
        readme = _readme(tool, version, arch, variant, name, listing)

        tmp_path: Path | None = None
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            # Write next to the target and rename, so a crash never leaves a truncated archive.
            with tempfile.NamedTemporaryFile(dir=out_dir, suffix=".partial", delete=False) as tmp:
                tmp_path = Path(tmp.name)
                # Empty filename keeps the random temp name out of the gzip header.
                with gzip.GzipFile(filename="", fileobj=tmp, mode="wb", mtime=ARCHIVE_MTIME) as gz:
                    with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                        _add_dir(tar, root)
                        _add_dir(tar, f"{root}/bin")
                        for b in binaries:
                            _add_bytes(tar, f"{root}/bin/{b.name}", b.read_bytes(), 0o755)
                        _add_dir(tar, f"{root}/etc")
                        _add_dir(tar, f"{root}/etc/containers")
                        for c in configs:
                            _add_bytes(tar, f"{root}/etc/containers/{c.name}", c.read_bytes())
                        _add_dir(tar, f"{root}/lib")
                        _add_dir(tar, f"{root}/lib/{tool}")
                        _add_bytes(tar, f"{root}/README.txt", readme.encode("utf-8"))
            tmp_path.replace(out_path)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            return Err(PackagingFailed(detail=f"{name}: {e}"))

        warnings = tuple(f"{b} is dynamically linked" for b in dynamic_binaries(bin_dir))
        return Ok(
            Artifact(
                kind=ArtifactKind.ARCHIVE,
                path=out_path,
                size=out_path.stat().st_size,
                digest=sha256_file(out_path),
                warnings=warnings,
            )
        )
