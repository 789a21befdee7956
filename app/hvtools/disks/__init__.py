"""Virtual disk inspection module.

This module parses VHD/VHDX headers to find differencing disk parents
and walks complete parent chains.
"""

from hvtools.disks.chain import BrokenChainError, ChainError, CyclicChainError, walk_chain
from hvtools.disks.header import (
    DiskFormat,
    DiskHeader,
    DiskHeaderError,
    DiskReadError,
    InvalidDiskFormatError,
    parse_parent,
)

__all__ = [
    "BrokenChainError",
    "ChainError",
    "CyclicChainError",
    "DiskFormat",
    "DiskHeader",
    "DiskHeaderError",
    "DiskReadError",
    "InvalidDiskFormatError",
    "parse_parent",
    "walk_chain",
]
