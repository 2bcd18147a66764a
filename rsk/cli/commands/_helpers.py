"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

import typer

from rsk.core.errors import ErrorCode
from rsk.core.result import Err, Result
from rsk.output.errors import PrintableError, exit_code_for, print_error

if TYPE_CHECKING:
    from rsk.cli.context import CLIContext


def exit_on_error[T](
    result: Result[T, PrintableError],
    ctx: CLIContext,
    error_code: ErrorCode | None = None,
) -> T:
    """Return the Ok value, or print the error and exit.

    The exit code comes from the error type unless ``error_code`` is given.
    """
    if isinstance(result, Err):
        print_error(result.error, ctx.console)
        code = int(error_code) if error_code is not None else exit_code_for(result.error)
        raise typer.Exit(code=code)
    return result.value


def exit_with_code(code: int) -> NoReturn:
    """Exit with given code. Explicit helper for clarity."""
    raise typer.Exit(code=code)
