from __future__ import annotations

import typer

from rsk.cli.commands._helpers import exit_on_error, exit_with_code
from rsk.cli.context import CLIContext, build_context, make_coordinator, resolve_tool
from rsk.core.errors import ErrorCode
from rsk.output.console import Style
from rsk.release.manifest import Arch, Variant
from rsk.release.model import JobState, Release, ReleaseState


def release(
    tool: str = typer.Argument(..., help="podman, buildah or skopeo"),
    version: str | None = typer.Option(
        None, "--version", "-v", help="Upstream version (default: latest stable)"
    ),
    arch: list[Arch] = typer.Option([], "--arch", help="Limit to architecture (repeatable)"),
    variant: list[Variant] = typer.Option([], "--variant", help="Limit to variant (repeatable)"),
) -> None:
    """Build, sign and publish a release unless it already exists."""
    ctx = build_context()
    target = resolve_tool(ctx, tool)
    coordinator = make_coordinator(ctx)

    result = coordinator.run(target, version=version, variants=variant, arches=arch)
    outcome = exit_on_error(result, ctx)
    _print_summary(ctx, outcome)

    if outcome.state == ReleaseState.FAILED:
        exit_with_code(int(ErrorCode.RELEASE_FAILED))


def _print_summary(ctx: CLIContext, outcome: Release) -> None:
    console = ctx.console
    console.header(f"{outcome.tag}: {outcome.state}")
    for job in outcome.jobs:
        if job.state == JobState.SUCCEEDED:
            archive = job.archive
            size = f"{archive.size / (1024 * 1024):.1f} MiB" if archive is not None else "-"
            console.print(f"{job.key}: {job.state} ({size})", Style.SUCCESS)
        else:
            reason = f" [{job.failure_code}]" if job.failure_code is not None else ""
            console.print(f"{job.key}: {job.state}{reason}", Style.ERROR)
    if outcome.superseded:
        console.print(f"{len(outcome.superseded)} attempt(s) retried", Style.DIM)
