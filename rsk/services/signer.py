"""Checksums and keyless signatures for a release's archives.

Signing is all-or-nothing: if any archive cannot be signed, signatures
already produced for its siblings are removed and the whole release fails.
Signatures are made with ``cosign sign-blob``; in CI the signer identity
comes from the workflow's OIDC token, so no private key is ever stored.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from rsk.core.result import Err, Ok, Result
from rsk.output.console import ConsoleProtocol
from rsk.platform.process import ProcessError, which
from rsk.platform.process import run as run_process
from rsk.release.errors import SigningError
from rsk.release.model import Artifact, ArtifactKind
from rsk.services.packager import sha256_file

__all__ = [
    "Signer",
    "SignedRelease",
    "CosignSigner",
    "write_checksums",
    "CHECKSUMS_NAME",
    "verify_command",
]

CHECKSUMS_NAME = "checksums.txt"
COSIGN_TIMEOUT_SECONDS = 5 * 60.0
OIDC_ISSUER = "https://token.actions.githubusercontent.com"

type RunFn = Callable[..., Result[str, ProcessError]]


@dataclass(frozen=True, slots=True)
class SignedRelease:
    checksum: Artifact
    signatures: tuple[Artifact, ...]


class Signer(Protocol):
    def sign_release(
        self, tag: str, archives: Sequence[Artifact]
    ) -> Result[SignedRelease, SigningError]: ...


def verify_command(archive: str) -> str:
    return (
        f"cosign verify-blob --signature {archive}.sig "
        "--certificate-identity-regexp 'https://github.com/.*' "
        f"--certificate-oidc-issuer {OIDC_ISSUER} {archive}"
    )


def write_checksums(archives: Sequence[Artifact], out_dir: Path) -> Result[Artifact, SigningError]:
    """Write one ``sha256sum``-compatible file covering every archive.

    Archive digests computed at packaging time are reused as is.
    """
    lines: list[str] = []
    for a in sorted(archives, key=lambda x: x.filename):
        try:
            digest = a.digest or sha256_file(a.path)
        except OSError as e:
            return Err(SigningError(kind="checksum_failed", detail=str(e), files=(a.filename,)))
        lines.append(f"{digest}  {a.filename}")

    path = out_dir / CHECKSUMS_NAME
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as e:
        return Err(SigningError(kind="checksum_failed", detail=str(e)))
    return Ok(Artifact(kind=ArtifactKind.CHECKSUM, path=path, size=path.stat().st_size))


@dataclass
class CosignSigner:
    cwd: Path
    console: ConsoleProtocol | None = None
    run_fn: RunFn = run_process
    which_fn: Callable[[str], str | None] = which
    extra_env: dict[str, str] = field(default_factory=lambda: {"COSIGN_YES": "true"})

    def sign_release(
        self, tag: str, archives: Sequence[Artifact]
    ) -> Result[SignedRelease, SigningError]:
        if not archives:
            return Err(SigningError(kind="archive_missing", detail=f"{tag}: nothing to sign"))

        missing = tuple(a.filename for a in archives if not a.path.is_file())
        if missing:
            return Err(SigningError(kind="archive_missing", detail=tag, files=missing))

        if self.which_fn("cosign") is None:
            return Err(
                SigningError(
                    kind="cosign_missing",
                    detail="cosign: missing",
                    hint="Install cosign: https://docs.sigstore.dev/cosign/installation/",
                )
            )

        out_dir = archives[0].path.parent
        checksum = write_checksums(archives, out_dir)
        if isinstance(checksum, Err):
            return checksum

        env = {**os.environ, **self.extra_env}
        signatures: list[Artifact] = []
        failed: list[str] = []
        for archive in archives:
            sig_path = archive.path.with_name(f"{archive.filename}.sig")
            result = self.run_fn(
                [
                    "cosign",
                    "sign-blob",
                    "--yes",
                    "--output-signature",
                    str(sig_path),
                    str(archive.path),
                ],
                cwd=self.cwd,
                env=env,
                timeout=COSIGN_TIMEOUT_SECONDS,
            )
            if isinstance(result, Err) or not sig_path.is_file():
                failed.append(archive.filename)
                if self.console is not None:
                    detail = result.error.stderr.strip() if isinstance(result, Err) else "no output"
                    self.console.error(f"cosign failed for {archive.filename}: {detail}")
                continue
            signatures.append(
                Artifact(
                    kind=ArtifactKind.SIGNATURE,
                    path=sig_path,
                    size=sig_path.stat().st_size,
                    signs=archive.filename,
                )
            )

        if failed:
            for sig in signatures:
                sig.path.unlink(missing_ok=True)
            checksum.value.path.unlink(missing_ok=True)
            return Err(
                SigningError(
                    kind="sign_failed",
                    detail=f"{len(failed)} of {len(archives)} archive(s)",
                    files=tuple(failed),
                )
            )

        return Ok(SignedRelease(checksum=checksum.value, signatures=tuple(signatures)))
