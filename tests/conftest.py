"""Pytest configuration and fixtures for pbuild tests.

Fixtures here build small Go source trees and a fake ``go`` toolchain (a
shell script that writes a marker artifact to its ``-o`` path), so the
orchestrator can be exercised end to end without a real Go installation or
network access.
"""

import stat
from pathlib import Path

import pytest

from pbuild.build.runtime import Runtime
from pbuild.config import BuilderConfig
from pbuild.packages.toolchain_go import go_binary

GO_VERSION = "1.21.5"

FAKE_GO_SCRIPT = """#!/bin/sh
out=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-o" ]; then
    shift
    out="$1"
  fi
  shift
done
if [ -z "$out" ]; then
  echo "missing -o" >&2
  exit 2
fi
printf 'artifact %s/%s' "$GOOS" "$GOARCH" > "$out"
"""

FAILING_GO_SCRIPT = """#!/bin/sh
echo "./plugin.go:3:2: undefined: missingSymbol"
exit 1
"""

PLUGIN_GO_MOD = """module example.com/hello

go 1.21

require golang.org/x/text v0.10.0
"""

PLUGIN_SOURCE = """package main

import "golang.org/x/text/language"

var Tag = language.English
"""

MAIN_SOURCE = """package main

func main() {}
"""


def install_fake_go(cache_root: Path, script: str = FAKE_GO_SCRIPT, version: str = GO_VERSION) -> Path:
    """Install a fake ``go`` command where the toolchain manager expects it."""
    binary = go_binary(cache_root, version)
    binary.parent.mkdir(parents=True, exist_ok=True)
    binary.write_text(script)
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return binary


@pytest.fixture
def linux_amd64() -> Runtime:
    return Runtime("linux", "amd64")


@pytest.fixture
def builder_config(tmp_path: Path, linux_amd64: Runtime) -> BuilderConfig:
    """Config for a linux/amd64 host with caches under tmp_path and no delegations."""
    return BuilderConfig(
        runtime=linux_amd64,
        cache_root=tmp_path / "cache",
        workspace_root=tmp_path / "workspace",
    )


@pytest.fixture
def plugin_tree(tmp_path: Path) -> Path:
    """A plugin source tree (``package main`` without a ``main`` function)."""
    root = tmp_path / "src" / "hello"
    root.mkdir(parents=True)
    (root / "go.mod").write_text(PLUGIN_GO_MOD)
    (root / "plugin.go").write_text(PLUGIN_SOURCE)
    return root


@pytest.fixture
def program_tree(tmp_path: Path) -> Path:
    """A program source tree with its entry point under cmd/tool."""
    root = tmp_path / "src" / "tool"
    (root / "cmd" / "tool").mkdir(parents=True)
    (root / "go.mod").write_text("module example.com/tool\n\ngo 1.21\n")
    (root / "cmd" / "tool" / "main.go").write_text(MAIN_SOURCE)
    return root


@pytest.fixture
def install_go():
    """Return a helper installing a fake ``go`` script: ``install_go(cache_root, script=...)``."""
    return install_fake_go


@pytest.fixture
def failing_go_script() -> str:
    return FAILING_GO_SCRIPT
