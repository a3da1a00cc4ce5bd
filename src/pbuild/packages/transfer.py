"""Source bundle and artifact transfer layer.

The build core never touches storage directly; it calls the ``Transfer``
protocol defined here. ``FileTransfer`` is the default implementation:

- local paths and ``file://`` URLs via pathlib
- ``http://`` / ``https://`` URLs via requests
- tar.gz bundles via tarfile

Archive URLs:
    A URL ending with ``/tar://`` names an archive whose contents should be
    extracted rather than copied. ``archive_url()`` builds one from a plain
    URL by folding the scheme separator (``https://host/x.tar.gz`` becomes
    ``https:host/x.tar.gz/tar://``) so the suffix is unambiguous.
"""

import io
import logging
import os
import tarfile
import tempfile
import uuid
from pathlib import Path, PurePosixPath
from typing import Callable, Iterator, List, Protocol

import requests

from pbuild.build.gomod import MOD_FILE_NAME, ModFile, parse_mod_file
from pbuild.errors import TransferError

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = "/tar://"
HTTP_TIMEOUT = 30
DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# Directories never included in a packed bundle
PACK_EXCLUDES = frozenset({".git", ".idea", ".vscode"})

DescriptorHook = Callable[[ModFile], None]
FileHook = Callable[[str, str, bytes], bytes]


class Transfer(Protocol):
    """Storage capability used by the build core."""

    def pack(self, directory: str) -> bytes: ...

    def unpack(self, data: bytes, dest: str, on_descriptor: DescriptorHook, on_file: FileHook) -> None: ...

    def exists(self, url: str) -> bool: ...

    def copy(self, source_url: str, dest_url: str) -> None: ...

    def download(self, url: str) -> bytes: ...

    def store(self, data: bytes, dest_url: str) -> None: ...


def archive_url(url: str) -> str:
    """Mark ``url`` as an archive to be extracted by ``Transfer.copy``."""
    return url.replace("://", ":", 1) + ARCHIVE_SUFFIX


def _is_http(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def _local_path(url: str) -> Path:
    if url.startswith("file://"):
        url = url[len("file://") :]
    return Path(url)


def _check_member_path(name: str) -> PurePosixPath:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts:
        raise TransferError(f"Refusing archive member outside destination: {name}")
    return path


def _safe_members(archive: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
    for member in archive.getmembers():
        _check_member_path(member.name)
        if member.issym() or member.islnk():
            target = PurePosixPath(member.name).parent / member.linkname
            if PurePosixPath(member.linkname).is_absolute() or ".." in target.parts:
                logger.warning(f"Skipping link escaping archive root: {member.name} -> {member.linkname}")
                continue
        yield member


class FileTransfer:
    """Local filesystem and HTTP(S) implementation of ``Transfer``."""

    def __init__(self, timeout: float = HTTP_TIMEOUT):
        """Initialize the transfer layer.

        Args:
            timeout: Timeout in seconds for HTTP requests
        """
        self.timeout = timeout

    def pack(self, directory: str) -> bytes:
        """Pack a source tree into tar.gz bytes.

        Entries are added in sorted order with paths relative to ``directory``
        so the same tree always packs to the same member list.

        Raises:
            TransferError: If the directory does not exist
        """
        root = _local_path(directory)
        if not root.is_dir():
            raise TransferError(f"Source directory not found: {directory}")

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
            for path in sorted(root.rglob("*")):
                rel = path.relative_to(root)
                if PACK_EXCLUDES.intersection(rel.parts):
                    continue
                if path.is_file():
                    archive.add(str(path), arcname=rel.as_posix(), recursive=False)
        return buffer.getvalue()

    def unpack(self, data: bytes, dest: str, on_descriptor: DescriptorHook, on_file: FileHook) -> None:
        """Expand a tar.gz bundle into ``dest``.

        Two passes: every go.mod member is parsed and handed to
        ``on_descriptor`` first, then each regular file is passed through
        ``on_file(parent_dir, name, content)`` and written with the returned
        content.

        Raises:
            TransferError: If the bundle is not a valid archive or a member escapes ``dest``
        """
        root = _local_path(dest)
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as archive:
                members = [m for m in archive.getmembers() if m.isfile() or m.isdir()]
                for member in members:
                    path = _check_member_path(member.name)
                    if member.isfile() and path.name == MOD_FILE_NAME:
                        content = self._read_member(archive, member)
                        on_descriptor(parse_mod_file(content))

                for member in members:
                    path = _check_member_path(member.name)
                    target = root.joinpath(*path.parts)
                    if member.isdir():
                        target.mkdir(parents=True, exist_ok=True)
                        continue
                    parent = target.parent
                    parent.mkdir(parents=True, exist_ok=True)
                    content = on_file(str(parent), path.name, self._read_member(archive, member))
                    target.write_bytes(content)
                    os.chmod(target, member.mode & 0o777 or 0o644)
        except (tarfile.TarError, EOFError) as e:
            raise TransferError(f"Failed to unpack source bundle: {e}") from e

    @staticmethod
    def _read_member(archive: tarfile.TarFile, member: tarfile.TarInfo) -> bytes:
        handle = archive.extractfile(member)
        if handle is None:
            return b""
        with handle:
            return handle.read()

    def exists(self, url: str) -> bool:
        if _is_http(url):
            try:
                response = requests.head(url, timeout=self.timeout, allow_redirects=True)
                return response.status_code == 200
            except requests.RequestException:
                return False
        return _local_path(url).exists()

    def copy(self, source_url: str, dest_url: str) -> None:
        """Copy a file, or extract an archive when ``source_url`` carries the archive suffix.

        Raises:
            TransferError: If fetching or extracting fails
        """
        if not source_url.endswith(ARCHIVE_SUFFIX):
            self.store(self.download(source_url), dest_url)
            return

        url = source_url[: -len(ARCHIVE_SUFFIX)]
        if ":" in url and "://" not in url and not url.startswith("/"):
            scheme, _, rest = url.partition(":")
            url = f"{scheme}://{rest}"

        dest = _local_path(dest_url)
        dest.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="pbuild-archive-") as tmp:
            archive_path = Path(tmp) / "archive"
            self._fetch_to_file(url, archive_path)
            try:
                with tarfile.open(str(archive_path), mode="r:*") as archive:
                    members: List[tarfile.TarInfo] = list(_safe_members(archive))
                    archive.extractall(str(dest), members=members)
            except tarfile.TarError as e:
                raise TransferError(f"Failed to extract {url}: {e}") from e

    def _fetch_to_file(self, url: str, path: Path) -> None:
        if not _is_http(url):
            try:
                path.write_bytes(_local_path(url).read_bytes())
            except OSError as e:
                raise TransferError(f"Failed to read {url}: {e}") from e
            return

        logger.info(f"Downloading {url}")
        try:
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
        except requests.RequestException as e:
            raise TransferError(f"Failed to download {url}: {e}") from e

    def download(self, url: str) -> bytes:
        """Read the content at ``url``.

        Raises:
            TransferError: If the location does not exist or cannot be read
        """
        if _is_http(url):
            try:
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.content
            except requests.RequestException as e:
                raise TransferError(f"Failed to download {url}: {e}") from e
        try:
            return _local_path(url).read_bytes()
        except OSError as e:
            raise TransferError(f"Failed to read {url}: {e}") from e

    def store(self, data: bytes, dest_url: str) -> None:
        """Write ``data`` to ``dest_url``.

        Local writes go through a temporary file and an atomic rename.

        Raises:
            TransferError: If the write fails
        """
        if _is_http(dest_url):
            try:
                response = requests.put(dest_url, data=data, timeout=self.timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise TransferError(f"Failed to upload {dest_url}: {e}") from e
            return

        dest = _local_path(dest_url)
        temp_file = dest.with_name(f".{dest.name}.{uuid.uuid4().hex}.tmp")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            temp_file.write_bytes(data)
            temp_file.replace(dest)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise TransferError(f"Failed to store {dest_url}: {e}") from e
