"""Go module descriptor (go.mod) parsing.

Only the directives that matter for dependency reconciliation are parsed:
``module``, ``go``, ``require`` and ``replace``, in both single-line and block
form. Everything else (``exclude``, ``retract``, ``toolchain``) is ignored.

Example:
    >>> mod = parse_mod_file(b"module example.com/p\\nrequire golang.org/x/mod v0.14.0\\n")
    >>> mod.module
    'example.com/p'
    >>> mod.requires[0].version
    'v0.14.0'
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

MOD_FILE_NAME = "go.mod"
SUM_FILE_NAME = "go.sum"

_SEMVER_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:-([0-9A-Za-z.\-]+))?(?:\+[0-9A-Za-z.\-]+)?$")


@dataclass(frozen=True)
class Requirement:
    """A ``require`` entry: module path at a version."""

    path: str
    version: str


@dataclass(frozen=True)
class Replacement:
    """A ``replace`` entry.

    Attributes:
        old_path: Module path being replaced
        old_version: Version being replaced ("" = all versions)
        new_path: Replacement module path or local directory
        new_version: Replacement version ("" for local directories)
    """

    old_path: str
    old_version: str
    new_path: str
    new_version: str

    @property
    def is_local(self) -> bool:
        """True when the replacement points at a filesystem directory."""
        return self.new_path.startswith((".", "/")) or not self.new_version


@dataclass(frozen=True)
class ModFile:
    """Parsed go.mod fragment."""

    module: str = ""
    go_version: str = ""
    requires: Tuple[Requirement, ...] = field(default_factory=tuple)
    replaces: Tuple[Replacement, ...] = field(default_factory=tuple)


class ModParseError(ValueError):
    """Raised when a go.mod line cannot be parsed."""

    pass


def _strip_comment(line: str) -> str:
    idx = line.find("//")
    if idx >= 0:
        line = line[:idx]
    return line.strip()


def _unquote(token: str) -> str:
    if len(token) >= 2 and token[0] == token[-1] and token[0] in ('"', "`"):
        return token[1:-1]
    return token


def _parse_require(args: List[str], line_no: int) -> Requirement:
    if len(args) != 2:
        raise ModParseError(f"go.mod:{line_no}: usage: require module/path v1.2.3")
    return Requirement(path=_unquote(args[0]), version=args[1])


def _parse_replace(args: List[str], line_no: int) -> Replacement:
    if "=>" not in args:
        raise ModParseError(f"go.mod:{line_no}: usage: replace module/path [v1.2.3] => other/path [v1.4.5]")
    arrow = args.index("=>")
    left, right = args[:arrow], args[arrow + 1 :]
    if len(left) not in (1, 2) or len(right) not in (1, 2):
        raise ModParseError(f"go.mod:{line_no}: invalid replace directive")
    return Replacement(
        old_path=_unquote(left[0]),
        old_version=left[1] if len(left) == 2 else "",
        new_path=_unquote(right[0]),
        new_version=right[1] if len(right) == 2 else "",
    )


def parse_mod_file(data: bytes) -> ModFile:
    """Parse go.mod content.

    Args:
        data: Raw go.mod bytes

    Returns:
        Parsed ModFile

    Raises:
        ModParseError: If a require/replace directive is malformed
    """
    module = ""
    go_version = ""
    requires: List[Requirement] = []
    replaces: List[Replacement] = []
    block: Optional[str] = None

    for line_no, raw in enumerate(data.decode("utf-8", errors="replace").splitlines(), start=1):
        line = _strip_comment(raw)
        if not line:
            continue

        if block is not None:
            if line == ")":
                block = None
                continue
            args = line.split()
            if block == "require":
                requires.append(_parse_require(args, line_no))
            elif block == "replace":
                replaces.append(_parse_replace(args, line_no))
            continue

        verb, _, rest = line.partition(" ")
        rest = rest.strip()
        if rest == "(":
            block = verb
            continue

        args = rest.split()
        if verb == "module" and args:
            module = _unquote(args[0])
        elif verb == "go" and args:
            go_version = args[0]
        elif verb == "require":
            requires.append(_parse_require(args, line_no))
        elif verb == "replace":
            replaces.append(_parse_replace(args, line_no))

    return ModFile(module=module, go_version=go_version, requires=tuple(requires), replaces=tuple(replaces))


def version_key(version: str) -> Tuple[int, int, int, int, str]:
    """Sort key for Go module versions.

    Release versions sort above their pre-releases, matching semver. Versions
    that are not semver sort lowest, ordered by their text.
    """
    match = _SEMVER_RE.match(version)
    if not match:
        return (-1, -1, -1, -1, version)
    major, minor, patch, pre = match.groups()
    return (int(major), int(minor or 0), int(patch or 0), 0 if pre else 1, pre or "")


def higher_version(a: str, b: str) -> str:
    """Return the higher of two versions (``a`` on ties)."""
    return b if version_key(b) > version_key(a) else a
