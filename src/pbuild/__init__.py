"""pbuild - Go plugin builder with remote delegation."""

__version__ = "0.1.0"

from pbuild.build.build_spec import BuildMode, BuildSpec, GoSpec, PackageSpec, Source  # noqa: E402
from pbuild.build.module import BuildInfo, Module  # noqa: E402
from pbuild.build.orchestrator import BuildOrchestrator  # noqa: E402
from pbuild.build.runtime import Runtime  # noqa: E402
from pbuild.config import BuilderConfig  # noqa: E402
from pbuild.errors import PbuildError  # noqa: E402

__all__ = [
    "__version__",
    "BuildInfo",
    "BuildMode",
    "BuildOrchestrator",
    "BuildSpec",
    "BuilderConfig",
    "GoSpec",
    "Module",
    "PackageSpec",
    "PbuildError",
    "Runtime",
    "Source",
]
