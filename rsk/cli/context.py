from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import typer

from rsk.core.config import DEFAULT_CONFIG_NAME, Config, load_config_or_default
from rsk.core.errors import ErrorCode
from rsk.core.result import Err
from rsk.output.console import ConsoleProtocol, RichConsole
from rsk.output.errors import exit_code_for, print_error
from rsk.release.manifest import TOOLS, get_tool_spec
from rsk.release.model import Tool
from rsk.services.builder import SandboxBuilder
from rsk.services.coordinator import ReleaseCoordinator
from rsk.services.http import RealHttpClient
from rsk.services.oracle import VersionCache, VersionOracle
from rsk.services.packager import TarPackager
from rsk.services.publisher import GhPublisher
from rsk.services.sandbox import ContainerSandbox
from rsk.services.signer import CosignSigner

CONFIG_ENV = "RSK_CONFIG"


@dataclass(frozen=True, slots=True)
class CLIContext:
    root: Path
    config_path: Path
    config: Config
    console: ConsoleProtocol


def config_path_from_env() -> Path:
    override = os.environ.get(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return Path.cwd() / DEFAULT_CONFIG_NAME


def build_context() -> CLIContext:
    console = RichConsole()
    path = config_path_from_env()
    result = load_config_or_default(path)
    if isinstance(result, Err):
        print_error(result.error, console)
        raise typer.Exit(code=exit_code_for(result.error))

    return CLIContext(
        root=path.resolve().parent,
        config_path=path,
        config=result.value,
        console=console,
    )


def resolve_tool(ctx: CLIContext, name: str) -> Tool:
    spec = get_tool_spec(name)
    if spec is None:
        ctx.console.error(f"Unknown tool: {name}")
        ctx.console.print(f"Available: {', '.join(TOOLS)}")
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))
    return Tool(spec=spec)


def make_publisher(ctx: CLIContext) -> GhPublisher:
    cfg = ctx.config
    return GhPublisher(
        repo=cfg.publish.resolved_repo(),
        cwd=ctx.root,
        policy=cfg.retry.policy(),
    )


def make_oracle(ctx: CLIContext, publisher: GhPublisher | None = None) -> VersionOracle:
    cfg = ctx.config
    return VersionOracle(
        http=RealHttpClient(timeout=cfg.upstream.timeout, token=cfg.upstream.token()),
        publisher=publisher or make_publisher(ctx),
        api_url=cfg.upstream.api_url,
        policy=cfg.retry.policy(),
        cache=VersionCache(ttl_seconds=cfg.cache.version_ttl),
        console=ctx.console,
    )


def make_coordinator(ctx: CLIContext) -> ReleaseCoordinator:
    cfg = ctx.config
    paths = cfg.paths
    publisher = make_publisher(ctx)
    oracle = make_oracle(ctx, publisher)
    sandbox = ContainerSandbox(cwd=ctx.root, runtime=cfg.sandbox.runtime, console=ctx.console)
    return ReleaseCoordinator(
        oracle=oracle,
        builder=SandboxBuilder(
            sandbox=sandbox,
            sandbox_config=cfg.sandbox,
            scripts_dir=paths.resolve(ctx.root, "scripts"),
            build_dir=paths.resolve(ctx.root, "build"),
            resolve_tag=oracle.latest_stable_tag,
            console=ctx.console,
        ),
        packager=TarPackager(
            dist_dir=paths.resolve(ctx.root, "dist"),
            etc_dir=paths.resolve(ctx.root, "etc"),
        ),
        signer=CosignSigner(cwd=ctx.root, console=ctx.console),
        publisher=publisher,
        console=ctx.console,
        variants=cfg.matrix.variants,
        arches=cfg.matrix.architectures,
        max_workers=cfg.release.workers,
        infra_retries=cfg.sandbox.infra_retries,
    )
