from __future__ import annotations

import typer

from rsk.cli.commands._helpers import exit_on_error
from rsk.cli.context import build_context, make_coordinator, resolve_tool
from rsk.output.console import Style
from rsk.release.manifest import Arch, Variant, archive_name, release_tag
from rsk.release.model import JobKey
from rsk.services.builder import plan_for


def plan(
    tool: str = typer.Argument(..., help="podman, buildah or skopeo"),
    version: str = typer.Option(..., "--version", "-v", help="Upstream version"),
    arch: list[Arch] = typer.Option([], "--arch", help="Limit to architecture (repeatable)"),
    variant: list[Variant] = typer.Option([], "--variant", help="Limit to variant (repeatable)"),
) -> None:
    """Print the build matrix for a version without building anything."""
    ctx = build_context()
    target = resolve_tool(ctx, tool)
    resolved = exit_on_error(make_coordinator(ctx).resolve_version(target, version), ctx)

    arches = tuple(arch) or ctx.config.matrix.architectures
    variants = tuple(variant) or ctx.config.matrix.variants

    ctx.console.header(release_tag(target.name, resolved.semver))
    for v in variants:
        for a in arches:
            key = JobKey(target.name, resolved.semver, v, a)
            ctx.console.print(archive_name(target.name, v, a), Style.BOLD)
            ctx.console.print(f"  build: {' -> '.join(plan_for(key).names)}", Style.DIM)
    ctx.console.print(f"{len(variants) * len(arches)} job(s)", Style.INFO)
