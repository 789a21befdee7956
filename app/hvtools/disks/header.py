"""Differencing disk parent resolution for VHD and VHDX files.

Only the fields needed to find a differencing disk's parent are read.
Offsets follow the published container layouts:

VHD (legacy, footer copy at offset 0):
    0x000  cookie "conectix"
    0x03C  disk type (big endian uint32, 4 = differencing)
    0x240  parent unicode name (512 bytes, UTF-16 big endian, NUL padded)

VHDX:
    0x00000  file type identifier "vhdxfile"
    0x30000  region table 1 ("regi", checksum, entry count, reserved)
    0x40000  region table 2
    Region entries (32 bytes) locate the metadata region, whose table
    (32 byte header, 32 byte entries) locates the parent locator item.
    The parent locator holds UTF-16 key/value pairs; the parent path is
    the value of the ``absolute_win32_path`` key.
"""

import logging
import re
import struct
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from hvtools.core.winpath import normalize_path

logger = logging.getLogger(__name__)

VHD_SIGNATURE = b"conectix"
VHDX_SIGNATURE = b"vhdxfile"

VHD_DISK_TYPE_OFFSET = 60
VHD_DIFFERENCING_TYPE = 4
VHD_PARENT_NAME_OFFSET = 576
VHD_PARENT_NAME_LENGTH = 512

VHDX_REGION_TABLE_OFFSETS: tuple[int, ...] = (196608, 262144)
VHDX_REGION_SIGNATURE = b"regi"
VHDX_REGION_HEADER_SIZE = 16
VHDX_REGION_ENTRY_SIZE = 32
VHDX_METADATA_SIGNATURE = b"metadata"
VHDX_METADATA_HEADER_SIZE = 32
VHDX_METADATA_ENTRY_SIZE = 32
VHDX_LOCATOR_ENTRY_SIZE = 12
# Region tables and metadata tables hold at most 2047 entries
VHDX_MAX_ENTRIES = 2047

# GUIDs as stored on disk (little endian field order)
METADATA_REGION_GUID = uuid.UUID("8b7ca206-4790-4b9a-b8fe-575f050f886e")
PARENT_LOCATOR_GUID = uuid.UUID("a8d35f2d-b30b-454d-abf7-d3d84834ab0c")
PARENT_PATH_KEY = "absolute_win32_path"

_VHD_NAME_RE = re.compile(r"^(.*?\.vhdx?)", re.IGNORECASE)


class DiskFormat(str, Enum):
    """Virtual disk container format.

    Attributes:
        VHD: Legacy VHD (signature ``conectix``).
        VHDX: VHDX (signature ``vhdxfile``).
    """

    VHD = "vhd"
    VHDX = "vhdx"


@dataclass(frozen=True, slots=True)
class DiskHeader:
    """Parent information parsed from one disk file.

    Attributes:
        path: Path of the parsed disk file.
        format_kind: Container format of the file.
        parent_path: Normalized parent path, or "" for a disk without parent.
    """

    path: str
    format_kind: DiskFormat
    parent_path: str

    @property
    def is_differencing(self) -> bool:
        """Check if the disk has a parent."""
        return bool(self.parent_path)


class DiskHeaderError(Exception):
    """Base exception for disk header parsing errors."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class InvalidDiskFormatError(DiskHeaderError):
    """Raised when a file is not a VHD/VHDX or its structures are inconsistent."""


class DiskReadError(DiskHeaderError):
    """Raised when the file cannot be opened or a read comes up short.

    Attributes:
        operation: "open" or "read".
        offset: Byte offset of the failed read (None for open).
    """

    def __init__(self, path: str, operation: str, offset: int | None, reason: str) -> None:
        where = f" at offset {offset}" if offset is not None else ""
        super().__init__(path, f"{operation}{where} failed: {reason}")
        self.operation = operation
        self.offset = offset


class _HeaderReader:
    """Positioned reads on one open disk file."""

    def __init__(self, stream: BinaryIO, path: str) -> None:
        self._stream = stream
        self._path = path

    def read_at(self, offset: int, size: int) -> bytes:
        try:
            self._stream.seek(offset)
            data = self._stream.read(size)
        except OSError as e:
            raise DiskReadError(self._path, "read", offset, str(e)) from e
        if len(data) != size:
            raise DiskReadError(
                self._path, "read", offset, f"expected {size} bytes, got {len(data)}"
            )
        return data

    def read_u16(self, offset: int) -> int:
        return struct.unpack("<H", self.read_at(offset, 2))[0]

    def read_u32(self, offset: int) -> int:
        return struct.unpack("<I", self.read_at(offset, 4))[0]

    def read_u64(self, offset: int) -> int:
        return struct.unpack("<Q", self.read_at(offset, 8))[0]

    def read_utf16(self, offset: int, size: int) -> str:
        raw = self.read_at(offset, size)
        try:
            return raw.decode("utf-16-le")
        except UnicodeDecodeError as e:
            raise InvalidDiskFormatError(
                self._path, f"undecodable UTF-16 text at offset {offset}"
            ) from e


def parse_parent(path: str | Path) -> DiskHeader:
    """Parse a VHD or VHDX file and return its parent path.

    The file is opened read-only; other processes (including the
    hypervisor) may keep it open for reading and writing meanwhile.

    Args:
        path: Locally readable path of the disk file.

    Returns:
        DiskHeader whose ``parent_path`` is "" for non-differencing disks.

    Raises:
        InvalidDiskFormatError: If the signature is unknown or the header
            structures are inconsistent.
        DiskReadError: If the file cannot be opened or is truncated.
    """
    path_str = str(path)
    try:
        stream = open(path, "rb")  # noqa: SIM115
    except OSError as e:
        raise DiskReadError(path_str, "open", None, str(e)) from e

    with stream:
        reader = _HeaderReader(stream, path_str)
        signature = reader.read_at(0, 8)

        if signature == VHD_SIGNATURE:
            parent = _parse_vhd_parent(reader, path_str)
            format_kind = DiskFormat.VHD
        elif signature == VHDX_SIGNATURE:
            parent = _parse_vhdx_parent(reader, path_str)
            format_kind = DiskFormat.VHDX
        else:
            msg = f"unrecognized disk signature {signature!r}"
            raise InvalidDiskFormatError(path_str, msg)

    if parent:
        parent = _normalize_parent(parent, path_str)
    logger.debug("Parsed %s header of %s (parent=%r)", format_kind.value, path_str, parent)
    return DiskHeader(path=path_str, format_kind=format_kind, parent_path=parent)


def _parse_vhd_parent(reader: _HeaderReader, path: str) -> str:
    """Read the parent unicode name of a legacy VHD differencing disk."""
    disk_type = struct.unpack(">I", reader.read_at(VHD_DISK_TYPE_OFFSET, 4))[0]
    if disk_type != VHD_DIFFERENCING_TYPE:
        return ""

    raw = reader.read_at(VHD_PARENT_NAME_OFFSET, VHD_PARENT_NAME_LENGTH)
    # Code units are big endian; the field is NUL padded and may carry garbage
    name = raw.decode("utf-16-be", errors="replace").split("\x00", 1)[0]
    match = _VHD_NAME_RE.match(name)
    if match:
        name = match.group(1)
    name = name.strip()
    if not name:
        raise InvalidDiskFormatError(path, "differencing VHD has an empty parent name")
    return name


def _parse_vhdx_parent(reader: _HeaderReader, path: str) -> str:
    """Walk region table, metadata table and parent locator of a VHDX file."""
    region_offset, region_count = _select_region_table(reader, path)

    metadata_start: int | None = None
    for index in range(region_count):
        entry = region_offset + VHDX_REGION_HEADER_SIZE + index * VHDX_REGION_ENTRY_SIZE
        if reader.read_at(entry, 16) == METADATA_REGION_GUID.bytes_le:
            metadata_start = reader.read_u64(entry + 16)
            break

    if metadata_start is None:
        return ""

    if reader.read_at(metadata_start, 8) != VHDX_METADATA_SIGNATURE:
        msg = f"missing metadata table signature at offset {metadata_start}"
        raise InvalidDiskFormatError(path, msg)

    entry_count = reader.read_u16(metadata_start + 10)
    if entry_count > VHDX_MAX_ENTRIES:
        raise InvalidDiskFormatError(path, f"metadata table claims {entry_count} entries")

    for index in range(entry_count):
        entry = metadata_start + VHDX_METADATA_HEADER_SIZE + index * VHDX_METADATA_ENTRY_SIZE
        if reader.read_at(entry, 16) != PARENT_LOCATOR_GUID.bytes_le:
            continue
        locator_start = metadata_start + reader.read_u32(entry + 16)
        return _read_parent_locator(reader, locator_start, path)

    return ""


def _select_region_table(reader: _HeaderReader, path: str) -> tuple[int, int]:
    """Pick the region table with the higher entry count.

    Returns:
        Tuple of (table offset, entry count).
    """
    best: tuple[int, int] | None = None
    for offset in VHDX_REGION_TABLE_OFFSETS:
        if reader.read_at(offset, 4) != VHDX_REGION_SIGNATURE:
            logger.debug("No region table signature at offset %d in %s", offset, path)
            continue
        count = reader.read_u32(offset + 8)
        if best is None or count > best[1]:
            best = (offset, count)

    if best is None:
        raise InvalidDiskFormatError(path, "no valid region table")
    if best[1] > VHDX_MAX_ENTRIES:
        raise InvalidDiskFormatError(path, f"region table claims {best[1]} entries")
    return best


def _read_parent_locator(reader: _HeaderReader, locator_start: int, path: str) -> str:
    """Find the ``absolute_win32_path`` value in a parent locator item."""
    # Locator header: type GUID (16), reserved (2), key/value count (2)
    pair_count = reader.read_u16(locator_start + 18)
    for index in range(pair_count):
        record = reader.read_at(
            locator_start + 20 + index * VHDX_LOCATOR_ENTRY_SIZE, VHDX_LOCATOR_ENTRY_SIZE
        )
        key_offset, value_offset, key_length, value_length = struct.unpack("<IIHH", record)
        key = reader.read_utf16(locator_start + key_offset, key_length)
        if key == PARENT_PATH_KEY:
            return reader.read_utf16(locator_start + value_offset, value_length)

    msg = f"parent locator has no {PARENT_PATH_KEY} entry"
    raise InvalidDiskFormatError(path, msg)


def _normalize_parent(parent: str, path: str) -> str:
    try:
        return normalize_path(parent)
    except ValueError as e:
        raise InvalidDiskFormatError(path, f"invalid parent path {parent!r}") from e
