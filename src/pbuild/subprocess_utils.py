"""Child process helper shared by the compiler invoker and the Docker launcher.

Toolchain and docker commands run non-interactively: they never read the
caller's stdin, and on Windows they do not open a console window.
"""

import subprocess
import sys
from typing import Any, List


def safe_run(cmd: List[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Run a non-interactive command such as ``go build`` or ``docker run``.

    ``stdin`` defaults to DEVNULL. On Windows CREATE_NO_WINDOW is added to
    any ``creationflags`` the caller passes.
    """
    kwargs.setdefault("stdin", subprocess.DEVNULL)
    if sys.platform == "win32":
        kwargs["creationflags"] = kwargs.get("creationflags", 0) | subprocess.CREATE_NO_WINDOW
    return subprocess.run(cmd, **kwargs)
