"""Remote builder delegation targets.

A Delegation names a remote instance of the pbuild service that can build for
a given runtime, plus the container configuration used to start it locally
when it is not reachable. The registry is an immutable table passed to the
orchestrator through BuilderConfig; there is no module-level registry.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from pbuild.build.runtime import Runtime

DEFAULT_DELEGATION_HOST = "127.0.0.1"
DEFAULT_DELEGATION_PORT = 8089
DEFAULT_BUILDER_IMAGE = "pbuild/builder:latest"


@dataclass(frozen=True)
class Delegation:
    """Remote builder target.

    Attributes:
        name: Delegation name (also the default container name)
        runtime: Runtime this builder produces binaries for
        host: Builder host
        port: Builder HTTP port
        image: Container image that runs the builder
        container_port: Port the builder listens on inside the container
    """

    name: str
    runtime: Runtime
    host: str = DEFAULT_DELEGATION_HOST
    port: int = DEFAULT_DELEGATION_PORT
    image: str = DEFAULT_BUILDER_IMAGE
    container_port: int = DEFAULT_DELEGATION_PORT

    def matches(self, runtime: Runtime) -> bool:
        """True when this builder can produce binaries for ``runtime``."""
        return self.runtime.os == runtime.os and self.runtime.arch == runtime.arch

    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def container_name(self) -> str:
        return f"pbuild-{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "runtime": self.runtime.to_dict(),
            "host": self.host,
            "port": self.port,
            "image": self.image,
            "container_port": self.container_port,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Delegation":
        """Create Delegation from dictionary.

        Raises:
            KeyError: If name or runtime is missing
        """
        runtime = data["runtime"]
        if isinstance(runtime, str):
            runtime = Runtime.from_string(runtime)
        else:
            runtime = Runtime.from_dict(runtime)
        return cls(
            name=data["name"],
            runtime=runtime,
            host=data.get("host", DEFAULT_DELEGATION_HOST),
            port=int(data.get("port", DEFAULT_DELEGATION_PORT)),
            image=data.get("image", DEFAULT_BUILDER_IMAGE),
            container_port=int(data.get("container_port", DEFAULT_DELEGATION_PORT)),
        )


class DelegationRegistry:
    """Read-only table of delegation targets, searched in insertion order."""

    def __init__(self, delegations: Iterable[Delegation] = ()):
        self._delegations: Tuple[Delegation, ...] = tuple(delegations)

    def match(self, runtime: Runtime) -> Optional[Delegation]:
        """Return the first delegation able to build for ``runtime``, or None."""
        for delegation in self._delegations:
            if delegation.matches(runtime):
                return delegation
        return None

    def with_delegation(self, delegation: Delegation) -> "DelegationRegistry":
        """Return a new registry with ``delegation`` appended."""
        return DelegationRegistry(self._delegations + (delegation,))

    def __iter__(self) -> Iterator[Delegation]:
        return iter(self._delegations)

    def __len__(self) -> int:
        return len(self._delegations)


LINUX_AMD64_DELEGATION = Delegation(name="linux-amd64", runtime=Runtime("linux", "amd64"))
