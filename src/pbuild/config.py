"""
Builder configuration.

Centralized path and delegation settings for the build service. Supports a
development mode that keeps caches inside the working directory.

Modes:
- Production (default): ~/.pbuild/cache and ~/.pbuild/workspace
- Development (PBUILD_DEV_MODE=1): ./.pbuild/cache_dev and ./.pbuild/workspace_dev

Environment overrides:
- PBUILD_CACHE_DIR: toolchain cache root
- PBUILD_WORKSPACE_DIR: root for per-build snapshot workspaces
- PBUILD_DELEGATIONS: path to a JSON file holding a list of delegation dicts
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from pbuild.build.runtime import Runtime
from pbuild.daemon.delegation import LINUX_AMD64_DELEGATION, Delegation, DelegationRegistry
from pbuild.errors import ValidationError
from pbuild.packages.toolchain_go import GO_DOWNLOAD_URL

logger = logging.getLogger(__name__)


def is_dev_mode() -> bool:
    """Check if development mode is enabled."""
    return os.environ.get("PBUILD_DEV_MODE") == "1"


def default_base_dir() -> Path:
    if is_dev_mode():
        return Path.cwd() / ".pbuild"
    return Path.home() / ".pbuild"


@dataclass
class BuilderConfig:
    """Build service configuration.

    Attributes:
        runtime: Host runtime (what this machine can build natively)
        cache_root: Toolchain cache root, shared by concurrent builds
        workspace_root: Parent directory of per-build snapshot workspaces
        delegations: Remote builders searched when the host cannot build a target
        download_url: Go release archive address template
    """

    runtime: Runtime = field(default_factory=Runtime.host)
    cache_root: Path = field(default_factory=lambda: default_base_dir() / ("cache_dev" if is_dev_mode() else "cache"))
    workspace_root: Path = field(default_factory=lambda: default_base_dir() / ("workspace_dev" if is_dev_mode() else "workspace"))
    delegations: DelegationRegistry = field(default_factory=DelegationRegistry)
    download_url: str = GO_DOWNLOAD_URL

    @classmethod
    def from_env(cls, delegations_file: Optional[str] = None) -> "BuilderConfig":
        """Create a config from PBUILD_* environment variables.

        Args:
            delegations_file: Delegation JSON file; overrides PBUILD_DELEGATIONS

        Raises:
            ValidationError: If the delegations file cannot be read or parsed
        """
        config = cls()
        if os.environ.get("PBUILD_CACHE_DIR"):
            config.cache_root = Path(os.environ["PBUILD_CACHE_DIR"])
        if os.environ.get("PBUILD_WORKSPACE_DIR"):
            config.workspace_root = Path(os.environ["PBUILD_WORKSPACE_DIR"])

        delegations_file = delegations_file or os.environ.get("PBUILD_DELEGATIONS")
        if delegations_file:
            config.delegations = load_delegations(Path(delegations_file))
        return config


def load_delegations(path: Path) -> DelegationRegistry:
    """Load a delegation registry from a JSON list.

    Raises:
        ValidationError: If the file is missing or malformed
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        registry = DelegationRegistry(Delegation.from_dict(item) for item in data)
    except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise ValidationError(f"Failed to load delegations from {path}: {e}") from e
    logger.debug(f"Loaded {len(registry)} delegations from {path}")
    return registry


ConfigOption = Callable[[BuilderConfig], None]


def with_delegation(delegation: Delegation) -> ConfigOption:
    """Register an additional delegation target."""

    def option(config: BuilderConfig) -> None:
        config.delegations = config.delegations.with_delegation(delegation)

    return option


def with_linux_amd64(config: BuilderConfig) -> None:
    """Register the default containerized linux/amd64 builder."""
    config.delegations = config.delegations.with_delegation(LINUX_AMD64_DELEGATION)
