"""Process exit codes.

Each error payload of the release core maps onto one of these codes (see
`distkit.output.errors.error_exit_code`). The numeric values are part of the
CLI contract and CI scripts depend on them.
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Exit codes for CLI commands.

    - 0: Success
    - 1: User error (bad tag, nothing to release, bad arguments)
    - 2: Environment error (unsupported cross-compile, missing tools)
    - 3: Build error (a build step failed or lost a binary)
    - 4: Manifest error (unreadable or malformed manifest files)
    - 5: I/O error (copying or writing artifacts failed)
    """

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    BUILD_ERROR = 3
    MANIFEST_ERROR = 4
    IO_ERROR = 5

    def __str__(self) -> str:
        return self.name.lower().replace("_", " ")

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK

    @property
    def is_error(self) -> bool:
        return self != ErrorCode.OK
