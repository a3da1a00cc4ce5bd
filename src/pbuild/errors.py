"""Error hierarchy for pbuild.

Every failure a build can report maps to one class here. Each class carries a
stable ``kind`` string so the remote builder service can report the same
category back to a delegating caller.
"""

from typing import Optional


class PbuildError(Exception):
    """Base class for all pbuild errors."""

    kind = "error"


class ValidationError(PbuildError):
    """Raised when a build spec is malformed. Terminal, no side effects."""

    kind = "validation"


class RuntimeMismatchError(PbuildError):
    """Raised when the target runtime differs from the host runtime."""

    kind = "runtime_mismatch"


class NoDelegationError(RuntimeMismatchError):
    """Raised when delegation is required but no registered builder matches."""

    kind = "no_delegation"


class ToolchainInstallError(PbuildError):
    """Raised when the Go toolchain cannot be installed into the cache."""

    kind = "toolchain_install"


class TransferError(PbuildError):
    """Raised by the transfer layer on copy, download or store failures."""

    kind = "transfer"


class SourceStageError(PbuildError):
    """Raised when the source bundle cannot be unpacked or rewritten."""

    kind = "source_stage"


class CompileError(PbuildError):
    """Raised when the compiler exits with a non-zero status.

    Attributes:
        cwd: Working directory of the compiler process
        command: Full command line
        output: Combined stdout/stderr of the compiler
        returncode: Process exit code
    """

    kind = "compile"

    def __init__(
        self,
        message: str,
        cwd: str = "",
        command: str = "",
        output: str = "",
        returncode: Optional[int] = None,
    ):
        super().__init__(message)
        self.cwd = cwd
        self.command = command
        self.output = output
        self.returncode = returncode


class ArtifactNotFoundError(PbuildError):
    """Raised when the compiler reported success but produced no artifact."""

    kind = "artifact_missing"


class DelegationUnreachableError(PbuildError):
    """Raised when a remote builder stays unreachable after bring-up."""

    kind = "delegation_unreachable"


class RemoteBuildError(PbuildError):
    """Raised when a remote builder reports a failed build."""

    kind = "remote_build"

    def __init__(self, message: str, remote_kind: str = "error"):
        super().__init__(message)
        self.remote_kind = remote_kind
