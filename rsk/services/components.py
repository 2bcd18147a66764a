"""Buildable sub-components and how each build system compiles them.

Every component kind renders the shell steps that build it from a checked
out source tree. The builder only dispatches on the kind; it never needs to
know how a Meson project differs from a Cargo one.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field

__all__ = [
    "Component",
    "AutotoolsComponent",
    "MesonComponent",
    "CargoComponent",
    "MakeComponent",
    "GoComponent",
    "COMPONENTS",
    "BuildStep",
    "BuildPlan",
    "build_order",
]

# Helpers link statically against musl through clang; $PREFIX holds staged libraries.
STATIC_CFLAGS = "-O2 -static -I$PREFIX/include"
STATIC_LDFLAGS = "-static -s -w -L$PREFIX/lib"

RUST_TARGETS = {"amd64": "x86_64-unknown-linux-musl", "arm64": "aarch64-unknown-linux-musl"}


def _dq(value: str) -> str:
    """Double-quote for the build shell, keeping $VAR expansion."""
    return '"' + value.replace('"', '\\"') + '"'


def _install_bins(src_dir: str, binaries: tuple[str, ...]) -> list[str]:
    return [f'install -m 0755 {_dq(f"{src_dir}/{b}")} "$INSTALL_DIR/bin/"' for b in binaries]


@dataclass(frozen=True, slots=True)
class Component(ABC):
    """A sub-component built from its own source repository.

    Attributes:
        name: Component id (also the report file stem).
        repo: Clone URL.
        binaries: Paths (relative to the build tree) installed into ``bin/``.
        requires: Components that must have built first; otherwise this one is skipped.
        source: Share another component's checkout instead of cloning ``repo``.
        ref: Tag to check out. The main tool tree always uses the release tag;
            a helper left at None is checked out at its latest stable release.
    """

    name: str
    repo: str
    binaries: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    source: str | None = None
    ref: str | None = None

    @property
    def checkout(self) -> str:
        return self.source or self.name

    @property
    def upstream(self) -> str | None:
        """``owner/repo`` for GitHub-hosted sources, used to look up release tags."""
        prefix = "https://github.com/"
        if not self.repo.startswith(prefix):
            return None
        return self.repo.removeprefix(prefix).removesuffix(".git")

    @abstractmethod
    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        """Shell steps that build this component inside ``source_dir``."""


@dataclass(frozen=True, slots=True)
class AutotoolsComponent(Component):
    configure_args: tuple[str, ...] = ()
    make_targets: tuple[str, ...] = ()
    make_install: bool = False

    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        steps = [
            f"cd {_dq(source_dir)}",
            "if [ ! -x configure ]; then ./autogen.sh; fi",
            f'./configure CC=clang CFLAGS="{STATIC_CFLAGS}" LDFLAGS="{STATIC_LDFLAGS}" '
            + " ".join(_dq(a) for a in self.configure_args),
            "make -j\"$(nproc)\" " + " ".join(self.make_targets),
        ]
        if self.make_install:
            steps.append("make install")
        steps += _install_bins(source_dir, self.binaries)
        return tuple(steps)


@dataclass(frozen=True, slots=True)
class MesonComponent(Component):
    options: tuple[str, ...] = ()

    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        build_dir = f"{source_dir}/_build"
        opts = " ".join(f"-D{shlex.quote(o)}" for o in self.options)
        steps = [
            f"cd {_dq(source_dir)}",
            f'CC=clang LDFLAGS="{STATIC_LDFLAGS}" meson setup --wipe --default-library=static '
            f"--prefix=\"$PREFIX\" {opts} {_dq(build_dir)}",
            f"ninja -C {_dq(build_dir)}",
            f"ninja -C {_dq(build_dir)} install",
        ]
        steps += _install_bins(build_dir, self.binaries)
        return tuple(steps)


@dataclass(frozen=True, slots=True)
class CargoComponent(Component):
    features: tuple[str, ...] = ()

    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        target = RUST_TARGETS[env.get("ARCH", "amd64")]
        features = f" --features {shlex.quote(','.join(self.features))}" if self.features else ""
        out_dir = f"{source_dir}/target/{target}/release"
        steps = [
            f"cd {_dq(source_dir)}",
            f"rustup target add {target}",
            f'RUSTFLAGS="-C target-feature=+crt-static" cargo build --release --target {target}'
            + features,
        ]
        steps += _install_bins(out_dir, self.binaries)
        return tuple(steps)


@dataclass(frozen=True, slots=True)
class MakeComponent(Component):
    targets: tuple[str, ...] = ()
    variables: tuple[str, ...] = ()

    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        args = " ".join(_dq(v) for v in self.variables)
        steps = [
            f"cd {_dq(source_dir)}",
            "make clean >/dev/null 2>&1 || true",
            f'make -j"$(nproc)" CC=clang {args} ' + " ".join(self.targets),
        ]
        steps += _install_bins(source_dir, self.binaries)
        return tuple(steps)


@dataclass(frozen=True, slots=True)
class GoComponent(Component):
    package: str = "."
    tags: tuple[str, ...] = ()
    cgo: bool = True

    def build(self, source_dir: str, env: Mapping[str, str]) -> tuple[str, ...]:
        output = f'"$INSTALL_DIR/bin/{self.name}"'
        tags = f"-tags {shlex.quote(' '.join(self.tags))} " if self.tags else ""
        ldflags = '-ldflags "-s -w -linkmode external -extldflags -static"' if self.cgo else (
            '-ldflags "-s -w"'
        )
        cgo = "CGO_ENABLED=1 CC=clang" if self.cgo else "CGO_ENABLED=0"
        return (
            f"cd {_dq(source_dir)}",
            f'{cgo} GOARCH="$GOARCH" go build -trimpath {tags}{ldflags} -o {output} '
            f"{shlex.quote(self.package)}",
        )


_GO_STATIC_TAGS = (
    "containers_image_openpgp",
    "exclude_graphdriver_btrfs",
    "exclude_graphdriver_devicemapper",
    "netgo",
    "osusergo",
)

COMPONENTS: dict[str, Component] = {
    # Main tool trees; the checkout ref is the release version.
    "podman": GoComponent(
        name="podman",
        repo="https://github.com/containers/podman.git",
        package="./cmd/podman",
        tags=(*_GO_STATIC_TAGS, "remote", "exclude_graphdriver_overlay"),
    ),
    "rootlessport": GoComponent(
        name="rootlessport",
        repo="https://github.com/containers/podman.git",
        source="podman",
        package="./cmd/rootlessport",
        cgo=False,
    ),
    "quadlet": GoComponent(
        name="quadlet",
        repo="https://github.com/containers/podman.git",
        source="podman",
        package="./cmd/quadlet",
        cgo=False,
    ),
    "buildah": GoComponent(
        name="buildah",
        repo="https://github.com/containers/buildah.git",
        package="./cmd/buildah",
        tags=_GO_STATIC_TAGS,
    ),
    "skopeo": GoComponent(
        name="skopeo",
        repo="https://github.com/containers/skopeo.git",
        package="./cmd/skopeo",
        tags=_GO_STATIC_TAGS,
    ),
    # Libraries staged into $PREFIX for the helpers that link them.
    "libseccomp": AutotoolsComponent(
        name="libseccomp",
        repo="https://github.com/seccomp/libseccomp.git",
        configure_args=("--prefix=$PREFIX", "--enable-static", "--disable-shared"),
        make_install=True,
    ),
    "libfuse": MesonComponent(
        name="libfuse",
        repo="https://github.com/libfuse/libfuse.git",
        options=("examples=false", "utils=false", "tests=false"),
    ),
    # Runtime helpers.
    "crun": AutotoolsComponent(
        name="crun",
        repo="https://github.com/containers/crun.git",
        binaries=("crun",),
        requires=("libseccomp",),
        configure_args=("--disable-systemd", "--enable-embedded-yajl"),
    ),
    "conmon": MakeComponent(
        name="conmon",
        repo="https://github.com/containers/conmon.git",
        binaries=("bin/conmon",),
        targets=("git-vars", "bin/conmon"),
        variables=("PKG_CONFIG=pkg-config --static", "LDFLAGS=-static -s -w"),
    ),
    "fuse-overlayfs": AutotoolsComponent(
        name="fuse-overlayfs",
        repo="https://github.com/containers/fuse-overlayfs.git",
        binaries=("fuse-overlayfs",),
        requires=("libfuse",),
    ),
    "netavark": CargoComponent(
        name="netavark",
        repo="https://github.com/containers/netavark.git",
        binaries=("netavark",),
    ),
    "aardvark-dns": CargoComponent(
        name="aardvark-dns",
        repo="https://github.com/containers/aardvark-dns.git",
        binaries=("aardvark-dns",),
    ),
    "pasta": MakeComponent(
        name="pasta",
        repo="git://passt.top/passt",
        # Not on GitHub, so no release feed to ask.
        ref="2025_12_10.d04c480",
        binaries=("pasta",),
        targets=("static",),
    ),
    "catatonit": AutotoolsComponent(
        name="catatonit",
        repo="https://github.com/openSUSE/catatonit.git",
        binaries=("catatonit",),
    ),
}


@dataclass(frozen=True, slots=True)
class BuildStep:
    component: Component
    main: bool = False


@dataclass(frozen=True, slots=True)
class BuildPlan:
    """Components for one job in dependency order (prerequisites first)."""

    steps: tuple[BuildStep, ...] = field(default_factory=tuple)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(s.component.name for s in self.steps)


def build_order(components: tuple[str, ...]) -> BuildPlan:
    """Expand ``components`` with their library prerequisites.

    The first entry is the main binary; prerequisites are placed right
    before their first dependant.
    """
    seen: set[str] = set()
    steps: list[BuildStep] = []

    def visit(name: str, main: bool) -> None:
        if name in seen:
            return
        comp = COMPONENTS[name]
        for dep in comp.requires:
            visit(dep, False)
        seen.add(name)
        steps.append(BuildStep(component=comp, main=main))

    for i, name in enumerate(components):
        visit(name, i == 0)
    return BuildPlan(steps=tuple(steps))
