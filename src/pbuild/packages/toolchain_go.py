"""Go Toolchain Management.

This module ensures a given Go toolchain version is present in the local
cache, downloading and extracting the official release archive when absent.

Cache Structure:
    cache_root/
    ├── go1.21.5/
    │   └── go/                 <- GOROOT
    │       ├── bin/
    │       │   ├── go
    │       │   └── gofmt
    │       ├── pkg/
    │       └── src/
    └── go1.22.0/
        └── go/

Concurrency:
    Several builds may share one cache root. The archive is extracted into a
    private staging directory and renamed into place, so a reader either sees
    a complete GOROOT or none. Racing installers may each download once; the
    loser of the rename discards its copy.
"""

import logging
import os
import shutil
import sys
import uuid
from pathlib import Path

from pbuild.build.runtime import Runtime
from pbuild.errors import PbuildError, ToolchainInstallError

from .transfer import Transfer, archive_url

logger = logging.getLogger(__name__)

GO_DOWNLOAD_URL = "https://dl.google.com/go/go{version}.{os}-{arch}.tar.gz"
DEFAULT_DIR_PERMISSION = 0o755


def go_version_dir(cache_root: Path, version: str) -> Path:
    """Directory holding one toolchain version."""
    return cache_root / f"go{version}"


def go_root(cache_root: Path, version: str) -> Path:
    """GOROOT of a cached toolchain version."""
    return go_version_dir(cache_root, version) / "go"


def go_binary(cache_root: Path, version: str) -> Path:
    """Path of the ``go`` command of a cached toolchain version."""
    exe = "go.exe" if sys.platform == "win32" else "go"
    return go_root(cache_root, version) / "bin" / exe


class GoToolchain:
    """Installs Go toolchains into a cache root.

    The toolchain runs on the host, so downloads always use the host runtime
    regardless of the build's target runtime.
    """

    def __init__(self, transfer: Transfer, host: Runtime, download_url: str = GO_DOWNLOAD_URL):
        """Initialize the toolchain manager.

        Args:
            transfer: Transfer layer used for the fetch-and-extract step
            host: Host runtime selecting the release archive
            download_url: Address template with {version}, {os} and {arch} fields
        """
        self.transfer = transfer
        self.host = host
        self.download_url = download_url

    def get_download_url(self, version: str) -> str:
        return self.download_url.format(version=version, os=self.host.os, arch=self.host.arch)

    def is_installed(self, version: str, cache_root: Path) -> bool:
        return self.transfer.exists(str(go_binary(cache_root, version)))

    def ensure(self, version: str, cache_root: Path) -> Path:
        """Ensure the toolchain ``version`` is installed under ``cache_root``.

        Args:
            version: Go version (e.g., "1.21.5")
            cache_root: Toolchain cache directory

        Returns:
            GOROOT of the installed toolchain

        Raises:
            ToolchainInstallError: If the version directory cannot be created or the fetch fails
        """
        root = go_root(cache_root, version)
        installed = self.is_installed(version, cache_root)
        logger.debug(f"Checking go binary [{installed}]: {root}")
        if installed:
            return root

        ver_dir = go_version_dir(cache_root, version)
        try:
            ver_dir.mkdir(parents=True, exist_ok=True, mode=DEFAULT_DIR_PERMISSION)
        except OSError as e:
            raise ToolchainInstallError(f"Failed to create {ver_dir}: {e}") from e

        url = self.get_download_url(version)
        staging = ver_dir / f".staging-{uuid.uuid4().hex}"
        logger.info(f"Installing go {version} {self.host.os} {self.host.arch} from {url}")
        try:
            self.transfer.copy(archive_url(url), str(staging))
            self._promote(staging, root)
        except (PbuildError, OSError) as e:
            logger.error(f"Failed to install go {version}: {e}")
            raise ToolchainInstallError(f"Failed to install go {version}: {e}") from e
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        if not self.is_installed(version, cache_root):
            raise ToolchainInstallError(f"Go {version} archive did not contain {go_binary(cache_root, version)}")
        return root

    @staticmethod
    def _promote(staging: Path, root: Path) -> None:
        """Rename the extracted GOROOT from ``staging`` into ``root``."""
        extracted = staging / "go"
        if not extracted.is_dir():
            raise ToolchainInstallError(f"Archive has no top-level go/ directory: {staging}")
        try:
            os.replace(extracted, root)
        except OSError:
            # Another build won the race; its toolchain is complete
            if not root.is_dir():
                raise
            logger.debug(f"Toolchain already promoted by a concurrent build: {root}")
