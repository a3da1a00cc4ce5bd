"""Target runtime (OS + architecture) model and host matching.

A Go plugin can only be produced natively: ``-buildmode=plugin`` requires cgo,
which rules out cross-compilation. The host runtime is therefore compared
against the requested target, and any difference sends the build to a
delegated remote builder.

Runtime strings use Go's naming (``GOOS``/``GOARCH``), e.g. ``linux/amd64``.
"""

import platform
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Tuple

from pbuild.errors import RuntimeMismatchError, ValidationError

# Subset of `go tool dist list` this builder accepts
SUPPORTED_RUNTIMES: FrozenSet[Tuple[str, str]] = frozenset(
    {
        ("linux", "amd64"),
        ("linux", "arm64"),
        ("linux", "386"),
        ("linux", "arm"),
        ("darwin", "amd64"),
        ("darwin", "arm64"),
        ("windows", "amd64"),
        ("windows", "386"),
        ("windows", "arm64"),
        ("freebsd", "amd64"),
        ("freebsd", "arm64"),
    }
)

# platform.machine() -> GOARCH
_MACHINE_TO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
}


@dataclass(frozen=True)
class Runtime:
    """Operating system and architecture pair.

    Attributes:
        os: Go operating system name (e.g., "linux", "darwin")
        arch: Go architecture name (e.g., "amd64", "arm64")
    """

    os: str
    arch: str

    @classmethod
    def host(cls) -> "Runtime":
        """Detect the runtime of the current machine."""
        system = platform.system().lower()
        machine = platform.machine().lower()
        return cls(os=system, arch=_MACHINE_TO_ARCH.get(machine, machine))

    @classmethod
    def from_string(cls, value: str) -> "Runtime":
        """Parse the ``os/arch`` form.

        Raises:
            ValidationError: If the value is not of the form ``os/arch``
        """
        parts = value.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValidationError(f"Invalid runtime '{value}', expected os/arch")
        return cls(os=parts[0], arch=parts[1])

    def is_supported(self) -> bool:
        return (self.os, self.arch) in SUPPORTED_RUNTIMES

    def validate(self) -> None:
        """Check that this runtime is one of the supported combinations.

        Raises:
            ValidationError: If os/arch is empty or unsupported
        """
        if not self.os or not self.arch:
            raise ValidationError(f"Runtime os and arch are required, got '{self}'")
        if not self.is_supported():
            raise ValidationError(f"Unsupported runtime: {self}")

    def validate_os_and_arch(self, target: "Runtime") -> None:
        """Check that ``target`` can be built on this (host) runtime.

        Args:
            target: Requested target runtime

        Raises:
            RuntimeMismatchError: If target differs from this runtime
        """
        if self.os != target.os or self.arch != target.arch:
            raise RuntimeMismatchError(f"Cannot build {target} on {self} host: runtime mismatch")

    def to_dict(self) -> Dict[str, Any]:
        return {"os": self.os, "arch": self.arch}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Runtime":
        return cls(os=data.get("os", ""), arch=data.get("arch", ""))

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"
