"""Pure per-file transforms applied while staging a source bundle.

The snapshot builder composes these in a fixed order for every ``.go``,
``.mod`` and ``.sum`` file:

1. ``rewrite_dependencies`` - reconcile dependency references with the pin table
2. ``detect_entry_point`` - look for the ``package main`` declaration

Both are pure functions of their inputs, so the same bytes and pin table
always yield the same output.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from .gomod import ModFile, higher_version

ENTRY_POINT_RE = re.compile(rb"^[ \t]*package[ \t]+main\b", re.MULTILINE)

SOURCE_EXTENSIONS = (".go", ".mod", ".sum")


@dataclass(frozen=True)
class Pin:
    """Pinned dependency.

    Attributes:
        path: Module path as referenced by sources
        version: Version the build must resolve
        location: Module path the dependency resolves to (== path unless relocated)
    """

    path: str
    version: str
    location: str

    @property
    def relocated(self) -> bool:
        return self.location != self.path


def _pick(current: Optional[Pin], candidate: Pin) -> Pin:
    """Highest-version-wins tie-break between bundle fragments."""
    if current is None:
        return candidate
    if current.version == candidate.version:
        # Same version, different locations: lowest location sorts first
        return current if current.location <= candidate.location else candidate
    return current if higher_version(current.version, candidate.version) == current.version else candidate


def reconcile_pins(
    pins: Optional[Mapping[str, str]],
    main_module: Optional[ModFile],
    fragments: Iterable[ModFile],
) -> Dict[str, Pin]:
    """Merge caller pins, host module and bundle fragments into one pin table.

    Precedence: caller pins, then the host (main) module, then bundle
    fragments. Conflicts between bundle fragments resolve to the highest
    version regardless of the order the fragments were seen in, and a
    fragment's non-local replacement takes precedence over plain requires
    of the same module.

    Args:
        pins: Caller-pinned versions (module path -> version)
        main_module: Parsed go.mod of the host application, if any
        fragments: go.mod fragments found in the source bundle

    Returns:
        Module path -> Pin
    """
    table: Dict[str, Pin] = {}
    for path, version in sorted((pins or {}).items()):
        table[path] = Pin(path=path, version=version, location=path)

    if main_module is not None:
        for rep in main_module.replaces:
            if not rep.is_local:
                table.setdefault(rep.old_path, Pin(rep.old_path, rep.new_version, rep.new_path))
        for req in main_module.requires:
            table.setdefault(req.path, Pin(req.path, req.version, req.path))

    fragments = list(fragments)
    bundle: Dict[str, Pin] = {}
    # Relocations from every fragment apply before any fragment's requires
    for fragment in fragments:
        for rep in fragment.replaces:
            if not rep.is_local:
                bundle[rep.old_path] = _pick(bundle.get(rep.old_path), Pin(rep.old_path, rep.new_version, rep.new_path))
    for fragment in fragments:
        for req in fragment.requires:
            existing = bundle.get(req.path)
            if existing is not None and existing.relocated:
                continue
            bundle[req.path] = _pick(existing, Pin(req.path, req.version, req.path))

    for path in sorted(bundle):
        table.setdefault(path, bundle[path])
    return table


def _relocation_pattern(pins: Mapping[str, Pin]) -> Optional["re.Pattern[bytes]"]:
    relocated = sorted((p.path for p in pins.values() if p.relocated), key=lambda p: (-len(p), p))
    if not relocated:
        return None
    alternation = b"|".join(re.escape(p.encode()) for p in relocated)
    return re.compile(b'"(' + alternation + b')((?:/[^"]*)?)"')


def _rewrite_go(data: bytes, pins: Mapping[str, Pin]) -> bytes:
    pattern = _relocation_pattern(pins)
    if pattern is None:
        return data

    def repl(match: "re.Match[bytes]") -> bytes:
        pin = pins[match.group(1).decode()]
        return b'"' + pin.location.encode() + match.group(2) + b'"'

    return pattern.sub(repl, data)


def _rewrite_require(line: str, pins: Mapping[str, Pin], prefix: str) -> str:
    body = line[len(prefix) :]
    stripped = body.strip()
    comment = ""
    if "//" in stripped:
        stripped, _, tail = stripped.partition("//")
        comment = " //" + tail
        stripped = stripped.strip()
    parts = stripped.split()
    if len(parts) != 2:
        return line
    path, version = parts
    pin = pins.get(path.strip('"'))
    if pin is None or (pin.version == version and not pin.relocated):
        return line
    indent = body[: len(body) - len(body.lstrip())]
    return f"{prefix}{indent}{pin.location} {pin.version or version}{comment}"


def _rewrite_mod(data: bytes, pins: Mapping[str, Pin]) -> bytes:
    out: List[str] = []
    block: Optional[str] = None
    for raw in data.decode("utf-8").splitlines(keepends=True):
        line = raw.rstrip("\r\n")
        ending = raw[len(line) :]
        stripped = line.strip()
        if block is not None:
            if stripped == ")":
                block = None
            elif block == "require" and stripped and not stripped.startswith("//"):
                line = _rewrite_require(line, pins, "")
        elif stripped.startswith("require") and stripped.rstrip().endswith("("):
            block = "require"
        elif stripped.startswith("replace") and stripped.rstrip().endswith("("):
            block = "replace"
        elif stripped.startswith("require "):
            lead = line[: len(line) - len(line.lstrip())]
            line = _rewrite_require(line, pins, lead + "require ")
        out.append(line + ending)
    return "".join(out).encode("utf-8")


def _rewrite_sum(data: bytes, pins: Mapping[str, Pin]) -> bytes:
    out: List[str] = []
    for raw in data.decode("utf-8").splitlines(keepends=True):
        parts = raw.split()
        if len(parts) == 3:
            pin = pins.get(parts[0])
            version = parts[1].split("/", 1)[0]
            # Stale checksums are re-resolved by the toolchain (-mod=mod)
            if pin is not None and (pin.relocated or (pin.version and pin.version != version)):
                continue
        out.append(raw)
    return "".join(out).encode("utf-8")


def rewrite_dependencies(data: bytes, ext: str, pins: Mapping[str, Pin]) -> bytes:
    """Rewrite dependency references in a source, descriptor or checksum file.

    Args:
        data: File content
        ext: File extension (".go", ".mod" or ".sum")
        pins: Pin table from ``reconcile_pins``

    Returns:
        Rewritten content (``data`` itself when nothing applies)
    """
    if not pins:
        return data
    if ext == ".go":
        return _rewrite_go(data, pins)
    if ext == ".mod":
        return _rewrite_mod(data, pins)
    if ext == ".sum":
        return _rewrite_sum(data, pins)
    return data


def detect_entry_point(data: bytes) -> bool:
    """True when the file declares ``package main`` at top level."""
    return ENTRY_POINT_RE.search(data) is not None
