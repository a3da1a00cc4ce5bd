"""
Docker utilities for remote builder bring-up.

This module starts a containerized pbuild builder for a delegation target when
its liveness probe fails: it checks that Docker is available, makes sure the
builder image is present, and runs the container with the builder port
published on the delegation's host port.
"""

import logging
import os
import subprocess
from typing import TYPE_CHECKING

from pbuild.subprocess_utils import safe_run

if TYPE_CHECKING:
    from pbuild.daemon.delegation import Delegation

logger = logging.getLogger(__name__)


def get_docker_env() -> dict[str, str]:
    """Get environment for Docker commands, handling Git Bash/MSYS2 path conversion."""
    env = os.environ.copy()
    # Only set MSYS_NO_PATHCONV if we're in a Git Bash/MSYS2 environment
    if "MSYSTEM" in os.environ or "bash.exe" in os.environ.get("SHELL", ""):
        env["MSYS_NO_PATHCONV"] = "1"
    return env


def _docker(args: list[str], timeout: float) -> subprocess.CompletedProcess:
    return safe_run(["docker", *args], capture_output=True, text=True, timeout=timeout, env=get_docker_env())


def check_docker_installed() -> bool:
    """Check if the Docker CLI is installed."""
    try:
        return _docker(["--version"], timeout=5).returncode == 0
    except (subprocess.SubprocessError, OSError):
        return False


def check_docker_daemon_running() -> bool:
    """Check if the Docker daemon is running."""
    try:
        return _docker(["info"], timeout=10).returncode == 0
    except (subprocess.SubprocessError, OSError):
        return False


def check_docker_image_exists(image_name: str) -> bool:
    """Check if a Docker image exists locally."""
    try:
        result = _docker(["images", "-q", image_name], timeout=10)
        return bool(result.stdout.strip())
    except (subprocess.SubprocessError, OSError):
        return False


def pull_docker_image(image_name: str, timeout: int = 600) -> bool:
    """Pull a Docker image.

    Args:
        image_name: Name of the Docker image to pull
        timeout: Timeout in seconds (default 10 minutes)

    Returns:
        True if image was pulled successfully, False otherwise
    """
    logger.info(f"Pulling Docker image: {image_name}")
    try:
        result = _docker(["pull", image_name], timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.error(f"Timeout pulling {image_name}")
        return False
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"Error pulling {image_name}: {e}")
        return False
    if result.returncode != 0:
        logger.error(f"Failed to pull {image_name}: {result.stderr.strip()}")
        return False
    return True


def ensure_docker_image(image_name: str) -> bool:
    """Ensure a Docker image is available, pulling if necessary."""
    if check_docker_image_exists(image_name):
        logger.debug(f"Image {image_name} already available locally")
        return True
    return pull_docker_image(image_name)


def check_container_running(container_name: str) -> bool:
    """Check if a container with this name is running."""
    try:
        result = _docker(["ps", "-q", "--filter", f"name=^{container_name}$"], timeout=10)
        return bool(result.stdout.strip())
    except (subprocess.SubprocessError, OSError):
        return False


def run_builder_container(delegation: "Delegation") -> bool:
    """Start the builder container for ``delegation`` (detached, removed on exit).

    Returns:
        True if ``docker run`` succeeded
    """
    args = [
        "run",
        "-d",
        "--rm",
        "--name",
        delegation.container_name,
        "--platform",
        str(delegation.runtime),
        "-p",
        f"{delegation.port}:{delegation.container_port}",
        delegation.image,
    ]
    logger.info(f"Starting builder container {delegation.container_name} ({delegation.image})")
    try:
        result = _docker(args, timeout=120)
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"Failed to start {delegation.container_name}: {e}")
        return False
    if result.returncode != 0:
        logger.error(f"Failed to start {delegation.container_name}: {result.stderr.strip()}")
        return False
    return True


class ContainerLauncher:
    """Brings up containerized builders for delegation targets."""

    def ensure_running(self, delegation: "Delegation") -> bool:
        """Ensure the builder container for ``delegation`` is running.

        Returns:
            True if the container is (now) running, False if it could not be started
        """
        if not check_docker_installed():
            logger.error("Docker is not installed; cannot start delegated builder")
            return False
        if not check_docker_daemon_running():
            logger.error("Docker daemon is not running; cannot start delegated builder")
            return False
        if check_container_running(delegation.container_name):
            return True
        if not ensure_docker_image(delegation.image):
            return False
        return run_builder_container(delegation)
