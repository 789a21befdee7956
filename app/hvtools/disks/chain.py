"""Differencing disk chain walking.

Follows parent links from a disk up to the first disk without a parent.
The container formats do not protect against loops, so a corrupt file
naming itself (or a descendant) as parent is detected and reported.
"""

import logging
from collections.abc import Callable

from hvtools.core.winpath import path_key
from hvtools.disks.header import DiskHeader, DiskHeaderError, parse_parent

logger = logging.getLogger(__name__)

HeaderReader = Callable[[str], DiskHeader]


class ChainError(Exception):
    """Base exception for chain walking errors.

    Attributes:
        path: Disk the walk started from.
        ancestors: Ancestors discovered before the walk stopped, nearest first.
    """

    def __init__(self, path: str, ancestors: list[str], message: str) -> None:
        super().__init__(message)
        self.path = path
        self.ancestors = ancestors


class CyclicChainError(ChainError):
    """Raised when a parent link points back to a disk already in the chain."""

    def __init__(self, path: str, repeated: str, ancestors: list[str]) -> None:
        super().__init__(
            path, ancestors, f"Differencing chain of {path} loops back to {repeated}"
        )
        self.repeated = repeated


class BrokenChainError(ChainError):
    """Raised when a disk in the chain cannot be parsed.

    The underlying DiskHeaderError is available as ``__cause__``.
    """

    def __init__(self, path: str, failed: str, ancestors: list[str], reason: str) -> None:
        super().__init__(
            path, ancestors, f"Differencing chain of {path} broken at {failed}: {reason}"
        )
        self.failed = failed


def walk_chain(path: str, read_header: HeaderReader = parse_parent) -> list[str]:
    """Return the ancestors of a disk, nearest parent first.

    Every call starts again from ``path``; nothing is cached.

    Args:
        path: Disk to start from.
        read_header: Function parsing one disk. The default reads local files.

    Returns:
        Parent paths in chain order; empty for a disk without parent.

    Raises:
        CyclicChainError: If a parent repeats a path already visited.
        BrokenChainError: If any disk in the chain cannot be parsed.
    """
    ancestors: list[str] = []
    visited = {path_key(path)}
    current = path

    while True:
        try:
            header = read_header(current)
        except DiskHeaderError as e:
            raise BrokenChainError(path, current, list(ancestors), str(e)) from e

        parent = header.parent_path
        if not parent:
            return ancestors

        key = path_key(parent)
        if key in visited:
            raise CyclicChainError(path, parent, list(ancestors))

        logger.debug("Disk %s has parent %s", current, parent)
        visited.add(key)
        ancestors.append(parent)
        current = parent
