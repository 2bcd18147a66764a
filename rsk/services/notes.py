from __future__ import annotations

from rsk.release.manifest import Variant, archive_name
from rsk.release.model import Release
from rsk.services.signer import CHECKSUMS_NAME, verify_command

_VARIANT_BLURB = {
    Variant.STANDALONE: "main binary only; bring your own runtime helpers",
    Variant.DEFAULT: "main binary plus OCI runtime and container monitor (recommended)",
    Variant.FULL: "everything needed for rootless networking, storage and init",
}


def release_title(release: Release) -> str:
    return f"{release.tool} {release.version.semver} (static)"


def render_notes(release: Release) -> str:
    """Markdown body for the published release."""
    lines: list[str] = []
    lines.append(f"# {release.tool} {release.version.semver}")
    lines.append("")
    lines.append(
        f"Static builds of upstream `{release.version.tag}`. "
        "No glibc or distribution packages required."
    )
    lines.append("")

    variants = sorted({j.key.variant for j in release.jobs}, key=list(Variant).index)
    arches = sorted({j.key.arch for j in release.jobs})

    lines.append("## Variants")
    for v in variants:
        lines.append(f"- `{v}`: {_VARIANT_BLURB[v]}")
    lines.append("")

    lines.append("## Downloads")
    lines.append("")
    lines.append("| Variant | " + " | ".join(str(a) for a in arches) + " |")
    lines.append("|---|" + "---|" * len(arches))
    for v in variants:
        cells = [f"`{archive_name(release.tool, v, a)}`" for a in arches]
        lines.append(f"| {v} | " + " | ".join(cells) + " |")
    lines.append("")

    lines.append("## Checksums (sha256)")
    lines.append("")
    lines.append("```")
    for a in sorted(release.archives, key=lambda x: x.filename):
        lines.append(f"{a.digest or '-'}  {a.filename}")
    lines.append("```")
    lines.append("")

    lines.append("## Verify")
    lines.append("")
    default = Variant.DEFAULT if Variant.DEFAULT in variants else variants[0]
    example = archive_name(release.tool, default, arches[0])
    lines.append("```")
    lines.append(f"sha256sum -c {CHECKSUMS_NAME} --ignore-missing")
    lines.append(verify_command(example))
    lines.append("```")

    return "\n".join(lines).rstrip() + "\n"
