"""
Command-line interface for pbuild.

This module provides the `pbuild` CLI tool:

    pbuild build -s ./myplugin -d /tmp/out/ -n myplugin -o linux -a amd64 -r 1.21.5
    pbuild serve --host 0.0.0.0 --port 8089
"""

import argparse
import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from pbuild import __version__
from pbuild.build.build_spec import (
    BuildMode,
    BuildOption,
    BuildSpec,
    GoSpec,
    PackageSpec,
    Source,
    with_force_delegation,
)
from pbuild.build.orchestrator import BuildOrchestrator
from pbuild.build.runtime import Runtime
from pbuild.config import BuilderConfig, with_linux_amd64
from pbuild.daemon.delegation import DEFAULT_DELEGATION_PORT
from pbuild.errors import PbuildError, ValidationError
from pbuild.output import init_timer, log_detail, log_error, log_header, log_phase
from pbuild.packages.transfer import FileTransfer

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
AUTO_MODE = "auto"

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure the root logger for CLI and service use."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    source: str
    dest_url: str
    name: str
    os: str = ""
    arch: str = ""
    version: str = ""
    mode: str = BuildMode.PLUGIN.value
    main_module: Optional[Path] = None
    env: Dict[str, str] = field(default_factory=dict)
    delegate: bool = False
    verbose: bool = False


@dataclass
class ServeArgs:
    """Arguments for the serve command."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_DELEGATION_PORT
    verbose: bool = False


def parse_env_pairs(pairs: List[str]) -> Dict[str, str]:
    """Parse ``KEY=VALUE`` arguments.

    Raises:
        ValidationError: If an entry has no ``=`` or an empty key
    """
    env: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationError(f"Invalid environment variable (expected KEY=VALUE): {pair}")
        env[key] = value
    return env


def build(args: BuildArgs, config: Optional[BuilderConfig] = None) -> str:
    """Build a plugin and store it at ``args.dest_url``.

    The default containerized linux/amd64 builder is registered so that a
    non-linux host can still produce linux plugins.

    Args:
        args: Build arguments
        config: Builder configuration (default: from PBUILD_* environment)

    Returns:
        URL the artifact was stored at

    Raises:
        PbuildError: If the build or the store fails
    """
    config = config or BuilderConfig.from_env()
    with_linux_amd64(config)

    main_module = ""
    if args.main_module is not None:
        try:
            main_module = args.main_module.read_text(encoding="utf-8")
        except OSError as e:
            raise ValidationError(f"Cannot read main module {args.main_module}: {e}") from e

    mode = None if args.mode == AUTO_MODE else BuildMode.from_string(args.mode)
    spec = BuildSpec(
        name=args.name,
        source=Source(url=args.source),
        go=GoSpec(runtime=Runtime(args.os, args.arch), version=args.version, env=dict(args.env)),
        spec=PackageSpec(mode=mode, main_module=main_module),
    )
    options: List[BuildOption] = []
    if args.delegate:
        options.append(with_force_delegation())

    transfer = FileTransfer()
    orchestrator = BuildOrchestrator(config, transfer=transfer)
    module = orchestrator.build(spec, *options)
    return module.store(transfer, args.dest_url)


def build_command(args: BuildArgs) -> None:
    """Build a Go plugin or program.

    Examples:
        pbuild build -s ./hello -d ./out/ -n hello
        pbuild build -s ./hello -d ./out/ -n hello -o linux -a amd64 --delegate
    """
    log_header("pbuild", __version__)
    try:
        start_time = time.time()
        log_phase(1, 2, f"Building {args.name} from {args.source}...")
        url = build(args)
        log_phase(2, 2, "Stored artifact")
        log_detail(f"Artifact: {url}")
        log_detail(f"Build time: {time.time() - start_time:.2f}s")
    except PbuildError as e:
        log_error(str(e))
        logger.debug("Build failed", exc_info=True)
        sys.exit(1)


def serve_command(args: ServeArgs) -> None:
    """Run the remote builder service."""
    import uvicorn

    from pbuild.daemon.fastapi_app import create_app

    try:
        config = BuilderConfig.from_env()
    except PbuildError as e:
        log_error(str(e))
        sys.exit(1)

    log_header("pbuild builder", __version__)
    log_detail(f"Runtime: {config.runtime}")
    log_detail(f"Listening on http://{args.host}:{args.port}")
    app = create_app(BuildOrchestrator(config))
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pbuild",
        description="pbuild - Go plugin builder",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"pbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Build command
    build_parser = subparsers.add_parser("build", help="Build a Go plugin or program")
    build_parser.add_argument("-s", "--source", required=True, help="Source directory or URL")
    build_parser.add_argument("-d", "--dest", required=True, help="Destination file, or directory ending with '/'")
    build_parser.add_argument("-n", "--name", required=True, help="Module name")
    build_parser.add_argument("-o", "--os", default="", help="Target OS (default: host OS)")
    build_parser.add_argument("-a", "--arch", default="", help="Target architecture (default: host architecture)")
    build_parser.add_argument("-r", "--version", dest="go_version", default="", help="Go toolchain version")
    build_parser.add_argument(
        "-m",
        "--mode",
        default=BuildMode.PLUGIN.value,
        choices=[m.value for m in BuildMode] + [AUTO_MODE],
        help="Build mode; 'auto' infers it from the sources (default: plugin)",
    )
    build_parser.add_argument("--main", type=Path, default=None, help="go.mod of the host application")
    build_parser.add_argument(
        "-e",
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra compiler environment variable (repeatable)",
    )
    build_parser.add_argument(
        "--delegate",
        action="store_true",
        help="Build on a delegated builder even when the host runtime matches",
    )
    build_parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the remote builder service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_DELEGATION_PORT,
        help=f"Port (default: {DEFAULT_DELEGATION_PORT})",
    )
    serve_parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """pbuild - Go plugin builder."""
    parser = _parser()
    parsed_args = parser.parse_args(argv)

    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    init_timer()
    setup_logging(parsed_args.verbose)

    if parsed_args.command == "build":
        try:
            env = parse_env_pairs(parsed_args.env)
        except ValidationError as e:
            log_error(str(e))
            sys.exit(2)
        build_command(
            BuildArgs(
                source=parsed_args.source,
                dest_url=parsed_args.dest,
                name=parsed_args.name,
                os=parsed_args.os,
                arch=parsed_args.arch,
                version=parsed_args.go_version,
                mode=parsed_args.mode,
                main_module=parsed_args.main,
                env=env,
                delegate=parsed_args.delegate,
                verbose=parsed_args.verbose,
            )
        )
    elif parsed_args.command == "serve":
        serve_command(ServeArgs(host=parsed_args.host, port=parsed_args.port, verbose=parsed_args.verbose))


if __name__ == "__main__":
    main()
