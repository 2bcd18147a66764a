"""Static release matrix: tools, variants, architectures and required components.

This table is the single source of truth for what a variant must contain.
The builder reads it to decide what to build and the packager reads it to
decide what must be present, so the two can never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

__all__ = [
    "Arch",
    "Variant",
    "ToolSpec",
    "TOOLS",
    "ALL_VARIANTS",
    "ALL_ARCHES",
    "get_tool_spec",
    "components_for",
    "required_paths",
    "archive_name",
    "release_tag",
]


class Arch(StrEnum):
    AMD64 = "amd64"
    ARM64 = "arm64"


class Variant(StrEnum):
    STANDALONE = "standalone"  # main binary only
    DEFAULT = "default"  # + OCI runtime and monitor
    FULL = "full"  # + networking, storage and init helpers


ALL_VARIANTS: tuple[Variant, ...] = (Variant.STANDALONE, Variant.DEFAULT, Variant.FULL)
ALL_ARCHES: tuple[Arch, ...] = (Arch.AMD64, Arch.ARM64)


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Static description of one tool.

    Attributes:
        name: Tool (and main binary) name.
        upstream: ``owner/name`` of the upstream repository.
        extra_binaries: Go binaries built from the main tree for non-standalone variants.
        helpers: Runtime helper components per variant, in build order.
    """

    name: str
    upstream: str
    extra_binaries: tuple[str, ...]
    helpers: dict[Variant, tuple[str, ...]]

    @property
    def variants(self) -> tuple[Variant, ...]:
        return ALL_VARIANTS


_PODMAN_FULL = (
    "crun",
    "conmon",
    "fuse-overlayfs",
    "netavark",
    "aardvark-dns",
    "pasta",
    "catatonit",
)

TOOLS: dict[str, ToolSpec] = {
    "podman": ToolSpec(
        name="podman",
        upstream="containers/podman",
        extra_binaries=("rootlessport", "quadlet"),
        helpers={
            Variant.STANDALONE: (),
            Variant.DEFAULT: ("crun", "conmon"),
            Variant.FULL: _PODMAN_FULL,
        },
    ),
    "buildah": ToolSpec(
        name="buildah",
        upstream="containers/buildah",
        extra_binaries=(),
        helpers={
            Variant.STANDALONE: (),
            Variant.DEFAULT: ("crun", "conmon"),
            Variant.FULL: ("crun", "conmon", "fuse-overlayfs"),
        },
    ),
    "skopeo": ToolSpec(
        name="skopeo",
        upstream="containers/skopeo",
        extra_binaries=(),
        # skopeo never runs containers, so no variant bundles runtime helpers.
        helpers={Variant.STANDALONE: (), Variant.DEFAULT: (), Variant.FULL: ()},
    ),
}


def get_tool_spec(name: str) -> ToolSpec | None:
    return TOOLS.get(name)


def components_for(spec: ToolSpec, variant: Variant) -> tuple[str, ...]:
    """Every component a variant ships: main binary, extras, then helpers."""
    extras = () if variant == Variant.STANDALONE else spec.extra_binaries
    return (spec.name, *extras, *spec.helpers[variant])


def required_paths(spec: ToolSpec, variant: Variant) -> tuple[str, ...]:
    """Paths (relative to the install dir) that must exist for ``variant``."""
    return tuple(f"bin/{name}" for name in components_for(spec, variant))


def archive_name(tool: str, variant: Variant, arch: Arch) -> str:
    """Deterministic archive filename; ``default`` is the unmarked, recommended choice."""
    if variant == Variant.DEFAULT:
        return f"{tool}-linux-{arch}.tar.gz"
    return f"{tool}-{variant}-linux-{arch}.tar.gz"


def release_tag(tool: str, version: str) -> str:
    return f"{tool}-v{version.removeprefix('v')}"
