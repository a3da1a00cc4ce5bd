"""Build result model.

A Module is the immutable product of one build: the artifact bytes, the
resolved build mode, and metadata identifying the build. Ownership passes to
the caller, who persists it with ``Module.store()``.
"""

import base64
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict

from .build_spec import BuildMode
from .runtime import Runtime

if TYPE_CHECKING:
    from pbuild.packages.transfer import Transfer

PLUGIN_EXTENSION = ".so"


def as_scn(created: datetime) -> int:
    """Derive a build sequence number from a creation time.

    The number is the UTC time as ``YYYYMMDDhhmmss``, so it increases with
    the creation time and stays readable.
    """
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return int(created.strftime("%Y%m%d%H%M%S"))


@dataclass(frozen=True)
class BuildInfo:
    """Module metadata.

    Attributes:
        scn: Build sequence number derived from the snapshot creation time
        runtime: Target runtime the artifact was built for
        name: Module name
    """

    scn: int
    runtime: Runtime
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"scn": self.scn, "runtime": self.runtime.to_dict(), "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildInfo":
        return cls(
            scn=int(data.get("scn", 0)),
            runtime=Runtime.from_dict(data.get("runtime") or {}),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class Module:
    """Built artifact with its mode and metadata."""

    mode: BuildMode
    data: bytes
    info: BuildInfo

    def file_name(self) -> str:
        """Artifact file name: ``<name>_<scn>.so`` for plugins, ``<name>_<scn>`` for programs."""
        suffix = PLUGIN_EXTENSION if self.mode == BuildMode.PLUGIN else ""
        return f"{self.info.name}_{self.info.scn}{suffix}"

    def store(self, transfer: "Transfer", dest_url: str) -> str:
        """Persist the artifact.

        Args:
            transfer: Transfer layer used to write the bytes
            dest_url: Destination file, or a directory when it ends with "/"

        Returns:
            URL the artifact was written to
        """
        if dest_url.endswith("/"):
            dest_url = dest_url + self.file_name()
        transfer.store(self.data, dest_url)
        return dest_url

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "mode": self.mode.value,
            "data": base64.b64encode(self.data).decode("ascii"),
            "info": self.info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Module":
        """Create Module from dictionary."""
        return cls(
            mode=BuildMode(data.get("mode", BuildMode.PLUGIN.value)),
            data=base64.b64decode(data.get("data") or ""),
            info=BuildInfo.from_dict(data.get("info") or {}),
        )
