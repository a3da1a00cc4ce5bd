"""Unit tests for the per-build snapshot workspace."""

from pathlib import Path

import pytest

from pbuild.build.build_spec import BuildMode, GoSpec, PackageSpec
from pbuild.build.gomod import parse_mod_file
from pbuild.build.runtime import Runtime
from pbuild.build.snapshot import Snapshot
from pbuild.packages.toolchain_go import go_binary

HOST_MOD = "module example.com/host\n\nrequire golang.org/x/text v0.14.0\n"


def _snapshot(tmp_path: Path, mode_hint=None, main_module: str = "", name: str = "hello") -> Snapshot:
    return Snapshot.new(
        name=name,
        mode_hint=mode_hint,
        spec=PackageSpec(mode=mode_hint, main_module=main_module),
        go=GoSpec(runtime=Runtime("linux", "amd64"), version="1.21.5", env={}),
        cache_root=tmp_path / "cache",
        workspace_root=tmp_path / "workspace",
    )


class TestSnapshotPaths:
    """Test workspace layout."""

    def test_base_path_under_workspace(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        assert snapshot.base_path.parent == tmp_path / "workspace"
        assert snapshot.base_path.name.startswith("hello_")
        assert snapshot.plugin_build_path == snapshot.base_path / "src"

    def test_snapshots_never_share_workspace(self, tmp_path):
        assert _snapshot(tmp_path).base_path != _snapshot(tmp_path).base_path

    def test_unsafe_name_sanitized(self, tmp_path):
        snapshot = _snapshot(tmp_path, name="../evil name")
        assert snapshot.base_path.parent == tmp_path / "workspace"
        assert "/" not in snapshot.base_path.name

    def test_plugin_dest_has_extension(self, tmp_path):
        assert _snapshot(tmp_path).plugin_dest_path.name == "hello.so"

    def test_exec_dest_has_no_extension(self, tmp_path):
        assert _snapshot(tmp_path, mode_hint=BuildMode.EXEC).plugin_dest_path.name == "hello"

    def test_prepare_and_cleanup(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.prepare()
        assert snapshot.plugin_build_path.is_dir()
        assert snapshot.plugin_dest_path.parent.is_dir()
        snapshot.cleanup()
        assert not snapshot.base_path.exists()


class TestModeInference:
    """Test build mode resolution."""

    def test_defaults_to_plugin(self, tmp_path):
        assert _snapshot(tmp_path).build_mode == BuildMode.PLUGIN

    def test_entry_point_means_exec(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.process_source("/w/src/cmd", "main.go", b"package main\n")
        assert snapshot.build_mode == BuildMode.EXEC
        assert snapshot.entry_points == ["/w/src/cmd/main.go"]

    def test_explicit_hint_wins(self, tmp_path):
        snapshot = _snapshot(tmp_path, mode_hint=BuildMode.PLUGIN)
        snapshot.process_source("/w/src", "main.go", b"package main\n")
        assert snapshot.build_mode == BuildMode.PLUGIN

    def test_entry_point_recorded_once(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.append_main("/w/src/main.go")
        snapshot.append_main("/w/src/main.go")
        assert snapshot.entry_points == ["/w/src/main.go"]


class TestProcessSource:
    """Test the per-file unpack hook."""

    def test_rewrites_against_host_module(self, tmp_path):
        snapshot = _snapshot(tmp_path, main_module=HOST_MOD)
        result = snapshot.process_source("/w/src", "go.mod", b"module p\nrequire golang.org/x/text v0.10.0\n")
        assert result == b"module p\nrequire golang.org/x/text v0.14.0\n"

    def test_exec_hint_skips_rewriting(self, tmp_path):
        snapshot = _snapshot(tmp_path, mode_hint=BuildMode.EXEC, main_module=HOST_MOD)
        source = b"module p\nrequire golang.org/x/text v0.10.0\n"
        assert snapshot.process_source("/w/src", "go.mod", source) == source

    def test_non_source_files_untouched(self, tmp_path):
        snapshot = _snapshot(tmp_path, main_module=HOST_MOD)
        data = b"package main\n"
        assert snapshot.process_source("/w/src", "README.md", data) == data
        assert snapshot.entry_points == []

    def test_fragments_feed_pin_table(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.append_mod(parse_mod_file(b"module a\nrequire github.com/x/y v1.4.0\n"))
        snapshot.append_mod(parse_mod_file(b"module b\nrequire github.com/x/y v1.2.0\n"))
        result = snapshot.process_source("/w/src/b", "go.mod", b"module b\nrequire github.com/x/y v1.2.0\n")
        assert result == b"module b\nrequire github.com/x/y v1.4.0\n"

    def test_fragment_order_does_not_change_output(self, tmp_path):
        fragment_a = b"module example.com/a\n\nrequire (\n\tgithub.com/x/y v1.2.0\n\tgithub.com/a/b v1.5.0\n)\n"
        fragment_b = b"module example.com/b\n\nrequire github.com/x/y v1.10.0\n\nreplace github.com/a/b => github.com/fork/b v1.3.0\n"
        files = [
            ("main.go", b'package main\n\nimport (\n\t"github.com/a/b/sub"\n\t"github.com/x/y"\n)\n'),
            ("go.mod", fragment_a),
            ("go.sum", b"github.com/x/y v1.2.0 h1:old=\ngithub.com/x/y v1.10.0 h1:new=\ngithub.com/a/b v1.5.0 h1:zzz=\n"),
        ]

        forward = _snapshot(tmp_path)
        backward = _snapshot(tmp_path)
        for fragment in (fragment_a, fragment_b):
            forward.append_mod(parse_mod_file(fragment))
        for fragment in (fragment_b, fragment_a):
            backward.append_mod(parse_mod_file(fragment))

        for name, data in files:
            assert forward.process_source("/w/src", name, data) == backward.process_source("/w/src", name, data)

        assert b'"github.com/fork/b/sub"' in forward.process_source("/w/src", "main.go", files[0][1])
        assert forward.process_source("/w/src", "go.sum", files[2][1]) == b"github.com/x/y v1.10.0 h1:new=\n"

    def test_pin_table_recomputed_after_new_fragment(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.append_mod(parse_mod_file(b"module a\nrequire github.com/x/y v1.0.0\n"))
        assert snapshot.pinned_dependencies()["github.com/x/y"].version == "v1.0.0"
        snapshot.append_mod(parse_mod_file(b"module b\nrequire github.com/x/y v1.1.0\n"))
        assert snapshot.pinned_dependencies()["github.com/x/y"].version == "v1.1.0"


class TestCompilerInvocation:
    """Test environment and command construction."""

    def test_env_targets_runtime_and_cache(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        env = dict(entry.split("=", 1) for entry in snapshot.env())
        assert env["GOOS"] == "linux"
        assert env["GOARCH"] == "amd64"
        assert env["GOROOT"] == str(tmp_path / "cache" / "go1.21.5" / "go")
        assert env["CGO_ENABLED"] == "1"
        assert env["PATH"].startswith(str(tmp_path / "cache" / "go1.21.5" / "go" / "bin"))

    def test_env_exec_disables_cgo(self, tmp_path):
        env = dict(entry.split("=", 1) for entry in _snapshot(tmp_path, mode_hint=BuildMode.EXEC).env())
        assert env["CGO_ENABLED"] == "0"

    def test_extra_env_overrides(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.extra_env["GOFLAGS"] = "-mod=readonly"
        env = dict(entry.split("=", 1) for entry in snapshot.env())
        assert env["GOFLAGS"] == "-mod=readonly"

    def test_plugin_command(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        cmd, args = snapshot.build_cmd_args()
        assert cmd == str(go_binary(tmp_path / "cache", "1.21.5"))
        assert args == ["build", "-buildmode=plugin", "-o", str(snapshot.plugin_dest_path), "."]

    def test_exec_command_targets_entry_point_dir(self, tmp_path):
        snapshot = _snapshot(tmp_path)
        snapshot.process_source(str(snapshot.plugin_build_path / "cmd" / "tool"), "main.go", b"package main\n")
        _, args = snapshot.build_cmd_args()
        assert args[:2] == ["build", "-buildmode=exe"]
        assert args[-1] == "./cmd/tool"

    @pytest.mark.parametrize("version", ["1.21.5", "1.22.0"])
    def test_go_root_follows_version(self, tmp_path, version):
        snapshot = _snapshot(tmp_path)
        snapshot.go.version = version
        assert snapshot.go_root == tmp_path / "cache" / f"go{version}" / "go"
