from __future__ import annotations

from rsk.cli.commands._helpers import exit_on_error
from rsk.cli.context import build_context, make_oracle, resolve_tool
from rsk.core.errors import ErrorCode
from rsk.core.result import Err
from rsk.output.console import Style
from rsk.release.manifest import release_tag
from rsk.services.oracle import RATE_LIMIT_WARNING_THRESHOLD


def check(tool: str) -> None:
    """Show the latest stable upstream version and whether it is released."""
    ctx = build_context()
    target = resolve_tool(ctx, tool)
    oracle = make_oracle(ctx)

    remaining = oracle.rate_limit_remaining()
    if isinstance(remaining, Err):
        ctx.console.warning(f"rate limit unknown: {remaining.error.message}")
    elif remaining.value < RATE_LIMIT_WARNING_THRESHOLD:
        ctx.console.warning(f"only {remaining.value} GitHub API request(s) left")

    version = exit_on_error(oracle.latest_stable(target), ctx)
    ctx.console.print(f"{target.name}: {version.semver} (tag {version.tag})", Style.BOLD)
    ctx.console.print(f"source: {version.source}", Style.DIM)

    tag = release_tag(target.name, version.semver)
    released = exit_on_error(oracle.already_released(target, version), ctx, ErrorCode.ENV_ERROR)
    if released:
        ctx.console.success(f"{tag}: already released")
    else:
        ctx.console.info(f"{tag}: not released yet")
