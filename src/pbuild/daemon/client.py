"""
HTTP client for remote builders.

Forwards a whole build request to a remote pbuild service and exposes a
liveness probe against the same base address.

Protocol:
    GET  /health        -> 200 {"status": "healthy", "runtime": {...}}
    POST /v1/api/build  -> 200 Module dict
                        -> 4xx/5xx {"error": "...", "kind": "..."}

Each build is one blocking round-trip; nothing is retried here.
"""

import logging
import time
from typing import Any

import httpx

from pbuild.build.build_spec import BuildSpec
from pbuild.build.module import Module
from pbuild.errors import RemoteBuildError

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"
BUILD_PATH = "/v1/api/build"

# Probe timeouts are short; build timeouts cover a full remote compile
PROBE_TIMEOUT = 2.0
BUILD_TIMEOUT = 1800.0
CONNECT_TIMEOUT = 5.0


def http_client(timeout: float = 30.0, connect_timeout: float = CONNECT_TIMEOUT) -> httpx.Client:
    """Create an HTTP client configured for builder communication.

    Args:
        timeout: Read timeout in seconds
        connect_timeout: Connection timeout in seconds

    Returns:
        httpx.Client (use as a context manager)
    """
    return httpx.Client(timeout=httpx.Timeout(timeout, connect=connect_timeout), follow_redirects=True)


class BuilderClient:
    """Client for one remote builder."""

    def __init__(self, base_url: str, timeout: float = BUILD_TIMEOUT):
        """Initialize the client.

        Args:
            base_url: Builder base address (e.g., "http://127.0.0.1:8089")
            timeout: Read timeout for build requests in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    def is_up(self) -> bool:
        """Liveness probe: True when the builder answers /health with 200."""
        try:
            with http_client(timeout=PROBE_TIMEOUT, connect_timeout=PROBE_TIMEOUT) as client:
                response = client.get(self.url(HEALTH_PATH))
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Builder {self.base_url} not reachable: {e}")
            return False

    def wait_until_up(self, timeout: float = 60.0, poll_interval: float = 1.0) -> bool:
        """Poll the liveness probe until it succeeds or ``timeout`` elapses.

        Returns:
            True if the builder became reachable, False on timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.is_up():
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    def build(self, spec: BuildSpec) -> Module:
        """Forward ``spec`` to the remote builder.

        Returns:
            Module produced by the remote builder

        Raises:
            RemoteBuildError: If the request fails or the builder reports an error
        """
        logger.info(f"Delegating build {spec.name} ({spec.go.runtime}) to {self.base_url}")
        try:
            with http_client(timeout=self.timeout) as client:
                response = client.post(self.url(BUILD_PATH), json=spec.to_dict())
        except httpx.HTTPError as e:
            raise RemoteBuildError(f"Remote build request to {self.base_url} failed: {e}") from e

        payload = self._decode(response)
        if response.status_code != 200 or "error" in payload:
            raise RemoteBuildError(
                payload.get("error") or f"Remote builder returned HTTP {response.status_code}",
                remote_kind=payload.get("kind", "error"),
            )
        try:
            return Module.from_dict(payload)
        except (KeyError, ValueError, TypeError) as e:
            raise RemoteBuildError(f"Invalid module payload from {self.base_url}: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {"error": response.text or f"HTTP {response.status_code}"}
        if not isinstance(payload, dict):
            return {"error": f"Unexpected response payload: {payload!r}"}
        return payload
