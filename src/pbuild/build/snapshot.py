"""Snapshot - ephemeral single-build workspace.

A Snapshot owns everything one build stages on disk and accumulates while
unpacking the source bundle:

    workspace_root/
    └── <name>_<scn>_<unique>/        <- base_path
        ├── src/                      <- plugin_build_path (unpacked sources)
        ├── out/                      <- artifact destination
        └── home/                     <- HOME for the compiler process

The toolchain, module and build caches live under the shared cache root
(``go_dir``); everything else is private to the snapshot. A snapshot is never
shared between builds; the caller removes it with ``cleanup()`` once the
artifact has been retrieved.
"""

import logging
import os
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Dict, List, Optional, Tuple

from pbuild.packages.toolchain_go import go_binary, go_root

from .build_spec import BuildMode, GoSpec, PackageSpec
from .gomod import ModFile, parse_mod_file
from .module import PLUGIN_EXTENSION, as_scn
from .source_transforms import SOURCE_EXTENSIONS, Pin, detect_entry_point, reconcile_pins, rewrite_dependencies

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Per-build workspace state.

    Attributes:
        name: Target name
        mode_hint: Explicit build mode, or None to infer from entry points
        spec: Package spec (main module and pins)
        go: Target Go spec
        go_dir: Shared toolchain cache root
        base_path: Private workspace directory
        created: Creation time (source of the build sequence number)
        mods: go.mod fragments found in the bundle
        entry_points: Files declaring ``package main``
        extra_env: Additional environment variables (KEY -> VALUE)
    """

    name: str
    mode_hint: Optional[BuildMode]
    spec: PackageSpec
    go: GoSpec
    go_dir: Path
    base_path: Path
    created: datetime
    mods: List[ModFile] = field(default_factory=list)
    entry_points: List[str] = field(default_factory=list)
    extra_env: Dict[str, str] = field(default_factory=dict)
    _pins: Optional[Dict[str, Pin]] = field(default=None, init=False, repr=False)

    @classmethod
    def new(
        cls,
        name: str,
        mode_hint: Optional[BuildMode],
        spec: PackageSpec,
        go: GoSpec,
        cache_root: Path,
        workspace_root: Path,
    ) -> "Snapshot":
        """Create a snapshot with computed workspace paths (nothing is created on disk)."""
        created = datetime.now(timezone.utc)
        safe_name = "".join(c if c.isalnum() or c in "-_." else "_" for c in name)
        base_path = workspace_root / f"{safe_name}_{as_scn(created)}_{uuid.uuid4().hex[:8]}"
        return cls(
            name=name,
            mode_hint=mode_hint,
            spec=spec,
            go=go,
            go_dir=cache_root,
            base_path=base_path,
            created=created,
        )

    @property
    def plugin_build_path(self) -> Path:
        return self.base_path / "src"

    @property
    def plugin_dest_path(self) -> Path:
        suffix = PLUGIN_EXTENSION if self.build_mode == BuildMode.PLUGIN else ""
        return self.base_path / "out" / f"{PurePath(self.name).name}{suffix}"

    def base_plugin_url(self) -> str:
        """Unpack destination of the source bundle."""
        return str(self.plugin_build_path)

    @property
    def build_mode(self) -> BuildMode:
        """Resolved build mode: an explicit hint wins, otherwise entry points mean a program."""
        if self.mode_hint is not None:
            return self.mode_hint
        return BuildMode.EXEC if self.entry_points else BuildMode.PLUGIN

    @property
    def rewrites_dependencies(self) -> bool:
        """Dependencies are rewritten for every build not explicitly targeting a program."""
        return self.mode_hint != BuildMode.EXEC

    def append_mod(self, mod: ModFile) -> None:
        self.mods.append(mod)
        self._pins = None

    def append_main(self, path: str) -> None:
        if path not in self.entry_points:
            self.entry_points.append(path)

    def pinned_dependencies(self) -> Dict[str, Pin]:
        """Pin table reconciled from caller pins, the main module and bundle fragments.

        Raises:
            ModParseError: If the main module descriptor is malformed
        """
        if self._pins is None:
            main = parse_mod_file(self.spec.main_module.encode("utf-8")) if self.spec.main_module else None
            self._pins = reconcile_pins(self.spec.pins, main, self.mods)
        return self._pins

    def replace_dependencies(self, source: bytes, ext: str) -> bytes:
        return rewrite_dependencies(source, ext, self.pinned_dependencies())

    def process_source(self, parent: str, name: str, data: bytes) -> bytes:
        """Per-file unpack hook: rewrite dependencies, then record entry points.

        Args:
            parent: Directory the file is written to
            name: File name
            data: File content

        Returns:
            Content to write
        """
        ext = os.path.splitext(name)[1]
        if ext not in SOURCE_EXTENSIONS:
            return data
        if self.rewrites_dependencies:
            data = self.replace_dependencies(data, ext)
        if detect_entry_point(data):
            self.append_main(os.path.join(parent, name))
        return data

    @property
    def go_root(self) -> Path:
        return go_root(self.go_dir, self.go.version)

    def env(self) -> List[str]:
        """Compiler environment as ``KEY=VALUE`` entries."""
        bin_dir = self.go_root / "bin"
        plugin = self.build_mode == BuildMode.PLUGIN
        env = {
            "GOROOT": str(self.go_root),
            "GOPATH": str(self.go_dir / "gopath"),
            "GOMODCACHE": str(self.go_dir / "mod"),
            "GOCACHE": str(self.go_dir / "build-cache"),
            "GOOS": self.go.runtime.os,
            "GOARCH": self.go.runtime.arch,
            "GOFLAGS": "-mod=mod",
            "GOTOOLCHAIN": "local",
            "CGO_ENABLED": "1" if plugin else "0",
            "HOME": str(self.base_path / "home"),
            "PATH": os.pathsep.join(p for p in (str(bin_dir), os.environ.get("PATH", "")) if p),
        }
        env.update(self.extra_env)
        return [f"{k}={v}" for k, v in env.items()]

    def build_targets(self) -> List[str]:
        if self.build_mode == BuildMode.PLUGIN or not self.entry_points:
            return ["."]
        dirs = sorted({os.path.dirname(p) for p in self.entry_points})
        if len(dirs) > 1:
            logger.warning(f"Multiple main packages found, building {dirs[0]}")
        rel = os.path.relpath(dirs[0], self.plugin_build_path)
        return ["."] if rel == "." else ["./" + Path(rel).as_posix()]

    def build_cmd_args(self) -> Tuple[str, List[str]]:
        """Compiler command and arguments for this snapshot."""
        buildmode = "plugin" if self.build_mode == BuildMode.PLUGIN else "exe"
        args = ["build", f"-buildmode={buildmode}", "-o", str(self.plugin_dest_path)]
        args.extend(self.build_targets())
        return str(go_binary(self.go_dir, self.go.version)), args

    def prepare(self) -> None:
        """Create the workspace directories."""
        for path in (self.plugin_build_path, self.plugin_dest_path.parent, self.base_path / "home"):
            path.mkdir(parents=True, exist_ok=True)

    def cleanup(self) -> None:
        """Remove the workspace."""
        shutil.rmtree(self.base_path, ignore_errors=True)
