from __future__ import annotations

import os
from pathlib import Path

import typer

from rsk import __version__
from rsk.cli.commands.check import check
from rsk.cli.commands.plan import plan
from rsk.cli.commands.release_cmd import release
from rsk.cli.commands.tools import tools
from rsk.cli.context import CONFIG_ENV
from rsk.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Commands
app.command()(check)
app.command()(release)
app.command()(plan)
app.command()(tools)


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to rsk.toml (default: ./rsk.toml, or $RSK_CONFIG)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if config is not None:
        path = config.expanduser()
        if not path.is_file():
            typer.echo(f"error: --config '{path}' does not exist", err=True)
            raise typer.Exit(code=int(ErrorCode.USER_ERROR))
        os.environ[CONFIG_ENV] = str(path)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=0)


def main() -> None:
    app()
