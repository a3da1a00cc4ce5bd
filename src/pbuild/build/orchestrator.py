"""Build Orchestrator - top-level build control flow.

State machine:

    validate ──► match runtime ──► local build ──► assemble Module
                      │
                      └─ mismatch / forced ──► pack ──► delegate ──► remote Module

Local build phases:
    1. Pack the source bundle if only a location was given
    2. Create the snapshot (workspace paths, mode hint, pins)
    3. Ensure the Go toolchain is installed in the shared cache
    4. Unpack the bundle through the descriptor and source hooks
    5. Run the compiler
    6. Retrieve the artifact and assemble the Module

A build either returns a complete Module or raises a PbuildError; nothing is
retried and there is no partial result.
"""

import logging
from typing import Callable, Optional, Protocol

from pbuild.config import BuilderConfig
from pbuild.daemon.client import BuilderClient
from pbuild.daemon.delegation import Delegation
from pbuild.deploy.docker_utils import ContainerLauncher
from pbuild.errors import (
    ArtifactNotFoundError,
    DelegationUnreachableError,
    NoDelegationError,
    PbuildError,
    RuntimeMismatchError,
    SourceStageError,
    TransferError,
)
from pbuild.packages.toolchain_go import GoToolchain
from pbuild.packages.transfer import FileTransfer, Transfer

from .build_spec import BuildOption, BuildSpec
from .compiler import LocalCompiler
from .gomod import ModParseError
from .module import BuildInfo, Module, as_scn
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_TIMEOUT = 60.0


class Launcher(Protocol):
    def ensure_running(self, delegation: Delegation) -> bool: ...


ClientFactory = Callable[[str], BuilderClient]


class BuildOrchestrator:
    """Builds Go plugins locally or through a delegated remote builder.

    Example:
        >>> orchestrator = BuildOrchestrator(BuilderConfig.from_env())
        >>> module = orchestrator.build(BuildSpec(name="hello", source=Source(url="/src/hello")))
    """

    def __init__(
        self,
        config: BuilderConfig,
        transfer: Optional[Transfer] = None,
        toolchain: Optional[GoToolchain] = None,
        compiler: Optional[LocalCompiler] = None,
        launcher: Optional[Launcher] = None,
        client_factory: ClientFactory = BuilderClient,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
        cleanup: bool = True,
    ):
        """Initialize the orchestrator.

        Args:
            config: Host runtime, cache/workspace roots and delegation registry
            transfer: Transfer layer (default: FileTransfer)
            toolchain: Toolchain manager (default: GoToolchain on the host runtime)
            compiler: Local compiler invoker
            launcher: Container bring-up for unreachable delegations
            client_factory: Creates a BuilderClient for a base URL
            startup_timeout: Seconds to wait for a builder after bring-up
            cleanup: Remove the snapshot workspace after the artifact is retrieved
        """
        self.config = config
        self.transfer: Transfer = transfer or FileTransfer()
        self.toolchain = toolchain or GoToolchain(self.transfer, config.runtime, config.download_url)
        self.compiler = compiler or LocalCompiler()
        self.launcher: Launcher = launcher or ContainerLauncher()
        self.client_factory = client_factory
        self.startup_timeout = startup_timeout
        self.cleanup = cleanup

    def build(self, build_spec: BuildSpec, *options: BuildOption) -> Module:
        """Build ``build_spec`` into a Module.

        Args:
            build_spec: Build request (mutated by options and defaults)
            *options: Option hooks applied before validation

        Returns:
            The built Module

        Raises:
            PbuildError: On validation, runtime, toolchain, staging, compile or delegation failure
        """
        for option in options:
            option(build_spec)
        build_spec.init(self.config.runtime)
        build_spec.validate()

        mismatch: Optional[RuntimeMismatchError] = None
        try:
            self.config.runtime.validate_os_and_arch(build_spec.go.runtime)
        except RuntimeMismatchError as e:
            mismatch = e
        if mismatch is not None or build_spec.go.force_delegation:
            return self._delegate_or_fail(build_spec, mismatch)
        return self._build_locally(build_spec)

    def _build_locally(self, build_spec: BuildSpec) -> Module:
        if not build_spec.source.data:
            build_spec.source.pack(self.transfer)

        mode_hint, package_spec = build_spec.get_mode_with_spec()
        snapshot = Snapshot.new(
            name=build_spec.name,
            mode_hint=mode_hint,
            spec=package_spec,
            go=build_spec.go,
            cache_root=self.config.cache_root,
            workspace_root=self.config.workspace_root,
        )
        try:
            self.toolchain.ensure(build_spec.go.version, self.config.cache_root)
            self._stage_source(build_spec, snapshot)
            self.compiler.compile(snapshot, build_spec)
            data = self._retrieve_artifact(snapshot)
        finally:
            if self.cleanup:
                snapshot.cleanup()

        return Module(
            mode=snapshot.build_mode,
            data=data,
            info=BuildInfo(scn=as_scn(snapshot.created), runtime=build_spec.go.runtime, name=build_spec.name),
        )

    def _stage_source(self, build_spec: BuildSpec, snapshot: Snapshot) -> None:
        try:
            snapshot.prepare()
            build_spec.source.unpack(self.transfer, snapshot.base_plugin_url(), snapshot.append_mod, snapshot.process_source)
        except (TransferError, ModParseError, UnicodeDecodeError, OSError) as e:
            raise SourceStageError(f"Failed to stage source for {build_spec.name}: {e}") from e
        build_spec.logf("staged %s: mode=%s entry_points=%d", build_spec.name, snapshot.build_mode.value, len(snapshot.entry_points))

    def _retrieve_artifact(self, snapshot: Snapshot) -> bytes:
        dest = str(snapshot.plugin_dest_path)
        try:
            return self.transfer.download(dest)
        except TransferError as e:
            raise ArtifactNotFoundError(f"failed to locate {snapshot.build_mode.value}: {e}") from e

    def _delegate_or_fail(self, build_spec: BuildSpec, mismatch: Optional[RuntimeMismatchError]) -> Module:
        """Forward the build to a matching delegation.

        The force-delegation flag is consumed here: it is cleared before the
        spec is forwarded, because the remote builder runs the same runtime
        check and would otherwise delegate again. A source given only by
        location is packed first so the bundle travels with the request.

        Raises:
            RuntimeMismatchError: If no delegation matches (the original mismatch, or NoDelegationError)
            DelegationUnreachableError: If the builder stays unreachable after bring-up
            RemoteBuildError: If the remote builder reports a failure
        """
        build_spec.go.force_delegation = False
        delegation = self.config.delegations.match(build_spec.go.runtime)
        if delegation is None:
            if mismatch is not None:
                raise mismatch
            raise NoDelegationError(f"No delegation registered for {build_spec.go.runtime}")

        if not build_spec.source.data:
            build_spec.source.pack(self.transfer)

        client = self.client_factory(delegation.base_url())
        self._ensure_builder(delegation, client, build_spec)
        return client.build(build_spec)

    def _ensure_builder(self, delegation: Delegation, client: BuilderClient, build_spec: BuildSpec) -> None:
        if client.is_up():
            build_spec.logf("%s is up", delegation.name)
            return

        build_spec.logf("%s is down, starting builder", delegation.name)
        try:
            started = self.launcher.ensure_running(delegation)
        except PbuildError as e:
            raise DelegationUnreachableError(f"Failed to start builder {delegation.name}: {e}") from e
        if not started or not client.wait_until_up(timeout=self.startup_timeout):
            raise DelegationUnreachableError(f"Builder {delegation.name} unreachable at {delegation.base_url()}")
