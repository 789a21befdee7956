r"""Filesystem access to a hypervisor host.

Hosts report paths in their own terms (``C:\VMs\web01``). A PathMapper
turns such a path into one the invoking process can open, and back:

- DirectMapper: the path is used as is (local host, SMB shares).
- AdminShareMapper: ``C:\VMs`` on host ``hv01`` becomes
  ``\\hv01\C$\VMs``.

HostFilesystem builds on a mapper to list files recursively and to read
disk headers, always reporting paths in the host's terms.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PureWindowsPath

from hvtools.core.winpath import is_unc_path, join, strip_device_prefix
from hvtools.disks.header import DiskHeader, DiskReadError, parse_parent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FileEntry:
    """A file found while walking a directory tree.

    Attributes:
        path: Path in the host's terms.
        size_bytes: File size (None if unavailable).
        mtime: Last modification time in ISO 8601 format (None if unavailable).
    """

    path: str
    size_bytes: int | None
    mtime: str | None


class PathMapper(ABC):
    """Translates between host paths and locally openable paths."""

    @abstractmethod
    def to_local(self, path: str) -> Path:
        """Return the locally openable form of a host path."""

    @abstractmethod
    def to_host(self, local: Path) -> str:
        """Return the host form of a locally openable path."""


class DirectMapper(PathMapper):
    """Identity mapping for paths the invoking process can open directly."""

    def to_local(self, path: str) -> Path:
        return Path(path)

    def to_host(self, local: Path) -> str:
        return str(local)


class AdminShareMapper(PathMapper):
    r"""Maps drive paths of a remote host to its administrative shares.

    ``D:\VMs`` becomes ``\\host\D$\VMs``; UNC paths pass through.
    """

    def __init__(self, host: str) -> None:
        self._host = host
        self._prefix = f"\\\\{host}\\".casefold()

    def to_local(self, path: str) -> Path:
        if is_unc_path(path):
            return Path(path)
        pure = PureWindowsPath(strip_device_prefix(path))
        if len(pure.drive) != 2:
            msg = f"Cannot map path without drive letter to {self._host}: {path}"
            raise ValueError(msg)
        share = f"\\\\{self._host}\\{pure.drive[0].upper()}$\\"
        return Path(share + "\\".join(pure.parts[1:]))

    def to_host(self, local: Path) -> str:
        text = str(local)
        if not text.casefold().startswith(self._prefix):
            return text
        rest = text[len(self._prefix) :]
        share, _, tail = rest.partition("\\")
        if len(share) == 2 and share.endswith("$"):
            return f"{share[0].upper()}:\\{tail}"
        return text


class HostFilesystem:
    """Recursive listing and disk header reads on one host.

    Args:
        host: Host name, or None for shared storage read by the invoking process.
        mapper: Path translation for this host.
    """

    def __init__(self, host: str | None, mapper: PathMapper) -> None:
        self._host = host
        self._mapper = mapper

    @property
    def host(self) -> str | None:
        return self._host

    def exists(self, path: str) -> bool:
        """Check if a path exists on the host."""
        try:
            return self._mapper.to_local(path).exists()
        except (OSError, ValueError):
            return False

    def read_disk_header(self, path: str) -> DiskHeader:
        """Parse the disk header of a file on this host.

        The returned header carries the host form of ``path``.

        Raises:
            DiskHeaderError: If the header cannot be read or parsed.
        """
        try:
            local = self._mapper.to_local(path)
        except ValueError as e:
            raise DiskReadError(path, "open", None, str(e)) from e
        header = parse_parent(local)
        return DiskHeader(path=path, format_kind=header.format_kind, parent_path=header.parent_path)

    def walk_files(
        self,
        root: str,
        *,
        prune: Callable[[str], bool] | None = None,
        on_error: Callable[[str, OSError], None] | None = None,
    ) -> Iterator[FileEntry]:
        """Yield every file below ``root``.

        Args:
            root: Directory to walk, in the host's terms.
            prune: Called with each subdirectory; returning True skips it.
            on_error: Called with the directory and error when a
                subdirectory cannot be listed. Such directories are skipped.

        Yields:
            FileEntry for each file found.

        Raises:
            FileNotFoundError: If ``root`` does not exist.
            NotADirectoryError: If ``root`` is not a directory.
            PermissionError: If ``root`` cannot be listed.
            OSError: For any other failure to list ``root``.
        """
        local_root = self._mapper.to_local(root)
        if not local_root.exists():
            raise FileNotFoundError(f"Path not found: {root}")
        if not local_root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")

        # Surface access problems on the root itself instead of an empty walk
        with os.scandir(local_root):
            pass

        def _walk_error(error: OSError) -> None:
            failed = error.filename if error.filename else str(local_root)
            host_path = self._mapper.to_host(Path(failed))
            logger.warning("Cannot list %s: %s", host_path, error.strerror or error)
            if on_error is not None:
                on_error(host_path, error)

        for dirpath, dirnames, filenames in os.walk(local_root, onerror=_walk_error):
            host_dir = self._mapper.to_host(Path(dirpath))
            if prune is not None:
                dirnames[:] = [d for d in dirnames if not prune(join(host_dir, d))]
            for name in filenames:
                yield self._entry(Path(dirpath) / name, join(host_dir, name))

    @staticmethod
    def _entry(local: Path, host_path: str) -> FileEntry:
        try:
            stat = local.stat()
        except OSError:
            return FileEntry(path=host_path, size_bytes=None, mtime=None)
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=UTC).isoformat()
        return FileEntry(path=host_path, size_bytes=stat.st_size, mtime=mtime)
