"""Process exit codes for the ``rsk`` CLI.

The values are part of the operator contract (scheduled jobs branch on
them) and must stay stable:

- 0: success (release published, or skipped because it already exists)
- 1: user error (unknown tool, bad arguments)
- 2: environment error (bad config, missing gh/cosign/container runtime)
- 3: build error (a build job could not produce its archive)
- 4: network error (upstream feed unreachable or rate limited)
- 5: I/O error (unreadable build output, unwritable dist dir)
- 6: release failed (the coordinator abandoned the release)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    NETWORK_ERROR = 4
    IO_ERROR = 5
    RELEASE_FAILED = 6

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
