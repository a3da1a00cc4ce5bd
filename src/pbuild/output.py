"""
Console output for the pbuild CLI.

All output is prefixed with the elapsed time since program launch in
MM:SS.cc format (minutes:seconds.centiseconds).

Example output:
    00:00.01 pbuild v0.1.0
    00:00.02 [1/2] Building hello from ./hello...
    00:03.41 [2/2] Stored artifact
    00:03.42       Artifact: /tmp/out/hello_20240101120000.so
    00:03.42       Build time: 3.40s
"""

import sys
import time
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def get_elapsed() -> float:
    global _start_time
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """Format the current elapsed time as MM:SS.cc."""
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str) -> None:
    stream = _output_stream or sys.stdout
    stream.write(f"{format_timestamp()} {message}\n")
    stream.flush()


def log_phase(phase: int, total: int, message: str) -> None:
    """
    Log a build phase message.

    Format: [N/M] message
    """
    _print(f"[{phase}/{total}] {message}")


def log_detail(message: str, indent: int = 6) -> None:
    _print(f"{' ' * indent}{message}")


def log_header(title: str, version: str) -> None:
    _print(f"{title} v{version}")


def log_error(message: str) -> None:
    _print(f"ERROR: {message}")
