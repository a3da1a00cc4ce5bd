"""Unit tests for containerized builder bring-up."""

import subprocess
from unittest.mock import patch

from pbuild.build.runtime import Runtime
from pbuild.daemon.delegation import Delegation
from pbuild.deploy.docker_utils import (
    ContainerLauncher,
    check_docker_image_exists,
    check_docker_installed,
    get_docker_env,
    pull_docker_image,
    run_builder_container,
)

DELEGATION = Delegation(name="linux-arm64", runtime=Runtime("linux", "arm64"), port=8090, image="pbuild/builder:arm64")


def _done(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestDockerChecks:
    """Test docker CLI probes."""

    def test_docker_installed(self):
        with patch("pbuild.deploy.docker_utils._docker", return_value=_done(0, "Docker version 24")):
            assert check_docker_installed() is True

    def test_docker_missing(self):
        with patch("pbuild.deploy.docker_utils._docker", side_effect=FileNotFoundError("docker")):
            assert check_docker_installed() is False

    def test_image_exists(self):
        with patch("pbuild.deploy.docker_utils._docker", return_value=_done(0, "sha256:abc\n")):
            assert check_docker_image_exists("pbuild/builder:latest") is True
        with patch("pbuild.deploy.docker_utils._docker", return_value=_done(0, "")):
            assert check_docker_image_exists("pbuild/builder:latest") is False

    def test_pull_timeout(self):
        with patch("pbuild.deploy.docker_utils._docker", side_effect=subprocess.TimeoutExpired("docker", 600)):
            assert pull_docker_image("pbuild/builder:latest") is False

    def test_msys_path_conversion_disabled(self):
        with patch.dict("os.environ", {"MSYSTEM": "MINGW64"}):
            assert get_docker_env()["MSYS_NO_PATHCONV"] == "1"


class TestRunBuilderContainer:
    """Test the docker run invocation."""

    def test_run_arguments(self):
        with patch("pbuild.deploy.docker_utils._docker", return_value=_done(0, "container-id")) as mock_docker:
            assert run_builder_container(DELEGATION) is True

        args = mock_docker.call_args.args[0]
        assert args[:3] == ["run", "-d", "--rm"]
        assert args[args.index("--name") + 1] == "pbuild-linux-arm64"
        assert args[args.index("--platform") + 1] == "linux/arm64"
        assert args[args.index("-p") + 1] == "8090:8089"
        assert args[-1] == "pbuild/builder:arm64"

    def test_run_failure(self):
        with patch("pbuild.deploy.docker_utils._docker", return_value=_done(125, stderr="port is already allocated")):
            assert run_builder_container(DELEGATION) is False


class TestContainerLauncher:
    """Test bring-up sequencing."""

    def test_starts_container(self):
        with patch("pbuild.deploy.docker_utils.check_docker_installed", return_value=True), patch(
            "pbuild.deploy.docker_utils.check_docker_daemon_running", return_value=True
        ), patch("pbuild.deploy.docker_utils.check_container_running", return_value=False), patch(
            "pbuild.deploy.docker_utils.ensure_docker_image", return_value=True
        ), patch("pbuild.deploy.docker_utils.run_builder_container", return_value=True) as mock_run:
            assert ContainerLauncher().ensure_running(DELEGATION) is True
        mock_run.assert_called_once_with(DELEGATION)

    def test_already_running(self):
        with patch("pbuild.deploy.docker_utils.check_docker_installed", return_value=True), patch(
            "pbuild.deploy.docker_utils.check_docker_daemon_running", return_value=True
        ), patch("pbuild.deploy.docker_utils.check_container_running", return_value=True), patch(
            "pbuild.deploy.docker_utils.run_builder_container"
        ) as mock_run:
            assert ContainerLauncher().ensure_running(DELEGATION) is True
        mock_run.assert_not_called()

    def test_docker_not_installed(self):
        with patch("pbuild.deploy.docker_utils.check_docker_installed", return_value=False), patch(
            "pbuild.deploy.docker_utils.run_builder_container"
        ) as mock_run:
            assert ContainerLauncher().ensure_running(DELEGATION) is False
        mock_run.assert_not_called()

    def test_image_unavailable(self):
        with patch("pbuild.deploy.docker_utils.check_docker_installed", return_value=True), patch(
            "pbuild.deploy.docker_utils.check_docker_daemon_running", return_value=True
        ), patch("pbuild.deploy.docker_utils.check_container_running", return_value=False), patch(
            "pbuild.deploy.docker_utils.ensure_docker_image", return_value=False
        ):
            assert ContainerLauncher().ensure_running(DELEGATION) is False
