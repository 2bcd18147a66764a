"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rsk.core.config import ConfigError
from rsk.core.errors import ErrorCode
from rsk.output.console import Style
from rsk.release.errors import (
    BuildCommandFailed,
    InvalidRequest,
    JobsFailed,
    MissingComponent,
    NotFound,
    PackagingFailed,
    ProvisioningError,
    PublishError,
    RateLimited,
    SandboxTimeout,
    SigningError,
    TransportError,
)

if TYPE_CHECKING:
    from rsk.output.console import ConsoleProtocol

__all__ = ["print_error", "exit_code_for", "PrintableError"]

type PrintableError = (
    ConfigError
    | InvalidRequest
    | NotFound
    | RateLimited
    | TransportError
    | ProvisioningError
    | SandboxTimeout
    | BuildCommandFailed
    | MissingComponent
    | PackagingFailed
    | SigningError
    | PublishError
    | JobsFailed
)


def print_error(error: PrintableError, console: ConsoleProtocol) -> None:
    """Print an error and its hint (dimmed, on its own line)."""
    match error:
        case ConfigError(message=message, path=path):
            console.error(f"{message}" + (f" ({path})" if path is not None else ""))
        case BuildCommandFailed(output_tail=tail):
            console.error(error.message)
            for line in tail.splitlines()[-10:]:
                console.print(f"  {line}", Style.DIM)
        case JobsFailed(failed=failed):
            console.error(f"{len(failed)} build job(s) failed:")
            for cell in failed:
                console.print(f"  - {cell}", Style.ERROR)
        case _:
            console.error(error.message)
    if error.hint:
        console.print(f"hint: {error.hint}", Style.DIM)


def exit_code_for(error: PrintableError) -> int:
    """Get exit code for an error."""
    match error:
        case ConfigError():
            return int(ErrorCode.ENV_ERROR)
        case InvalidRequest():
            return int(ErrorCode.USER_ERROR)
        case NotFound() | RateLimited() | TransportError():
            return int(ErrorCode.NETWORK_ERROR)
        case ProvisioningError() | SandboxTimeout() | BuildCommandFailed():
            return int(ErrorCode.BUILD_ERROR)
        case MissingComponent() | PackagingFailed():
            return int(ErrorCode.BUILD_ERROR)
        case PublishError(kind="gh_missing" | "repo_unknown") | SigningError(kind="cosign_missing"):
            return int(ErrorCode.ENV_ERROR)
        case SigningError() | PublishError() | JobsFailed():
            return int(ErrorCode.RELEASE_FAILED)
