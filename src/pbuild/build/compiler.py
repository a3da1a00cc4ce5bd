"""Local compiler invocation.

Runs ``go build`` for a prepared snapshot as a blocking child process. The
compiler environment is the snapshot's computed environment with the build
spec's explicit variables appended after it; on key collision the explicit
value wins.
"""

import logging
import shlex
import subprocess
from typing import Dict, List, Mapping, Optional

from pbuild.errors import CompileError
from pbuild.subprocess_utils import safe_run

from .build_spec import BuildSpec
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


def append_env(pairs: Optional[Mapping[str, str]], env: List[str]) -> List[str]:
    """Append ``pairs`` to ``env`` as ``KEY=VALUE`` entries (sorted by key)."""
    env = list(env)
    if pairs:
        for key in sorted(pairs):
            env.append(f"{key}={pairs[key]}")
    return env


def env_to_dict(env: List[str]) -> Dict[str, str]:
    """Convert ``KEY=VALUE`` entries to a dict; later entries win."""
    result: Dict[str, str] = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if sep:
            result[key] = value
    return result


class LocalCompiler:
    """Executes the Go compiler for a snapshot."""

    def compile(self, snapshot: Snapshot, build_spec: BuildSpec) -> None:
        """Build the snapshot's sources into ``snapshot.plugin_dest_path``.

        Args:
            snapshot: Prepared snapshot with unpacked sources
            build_spec: Originating build spec (explicit env, logger)

        Raises:
            CompileError: If the compiler cannot be started or exits non-zero
        """
        cmd, args = snapshot.build_cmd_args()
        command = [cmd, *args]
        command_line = shlex.join(command)
        cwd = str(snapshot.plugin_build_path)
        env = env_to_dict(append_env(build_spec.go.env, snapshot.env()))

        build_spec.logf("building %s at %s: %s", snapshot.build_mode.value, cwd, command_line)
        try:
            result = safe_run(
                command,
                cwd=cwd,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise CompileError(
                f"couldn't generate {snapshot.build_mode.value} due to: {e} at: {cwd}\n\tcommand: {command_line}",
                cwd=cwd,
                command=command_line,
            ) from e

        output = result.stdout.decode("utf-8", errors="replace") if result.stdout else ""
        if result.returncode != 0:
            message = (
                f"couldn't generate {snapshot.build_mode.value} due to: exit status {result.returncode} at: {cwd}"
                f"\n\tcommand: {command_line}\n\toutput: {output}"
            )
            logger.error(message)
            raise CompileError(message, cwd=cwd, command=command_line, output=output, returncode=result.returncode)
        if output:
            logger.debug(f"compiler output:\n{output}")
