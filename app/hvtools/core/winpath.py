"""Windows path handling for hypervisor artifacts.

Hyper-V reports paths in Windows form regardless of where hvtools runs,
so all path logic works on strings through ``PureWindowsPath`` and never
touches the local filesystem.

Normalization rules:
- Surrounding whitespace and quotes are removed.
- Forward slashes become backslashes.
- The ``\\\\?\\`` prefix is rewritten to ``\\\\.\\``.
- Files carry no trailing separator; directories keep exactly one.

Comparison keys (``path_key``) are case-insensitive and ignore the
device prefix in front of a drive letter.
"""

import re
from pathlib import PureWindowsPath

# Virtual hard disk and virtual floppy files
DISK_EXTENSIONS: frozenset[str] = frozenset({".vhd", ".vhdx", ".avhd", ".avhdx", ".vfd"})

# Configuration, checkpoint and saved-state files (always GUID named)
METADATA_EXTENSIONS: frozenset[str] = frozenset(
    {".xml", ".bin", ".vsv", ".vmcx", ".vmgs", ".vmrs"}
)

SMART_PAGING_EXTENSION = ".slp"

CLUSTER_STORAGE_DIR = "ClusterStorage"

_GUID_RE = re.compile(
    r"^\{?[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\}?$",
    re.IGNORECASE,
)
_DRIVE_RE = re.compile(r"^[A-Za-z]:(\\|$)")
_DEVICE_DRIVE_RE = re.compile(r"^\\\\[.?]\\([A-Za-z]:)")
_CLUSTER_STORAGE_RE = re.compile(r"^[a-z]:\\clusterstorage(\\|$)")
_INVALID_CHARS = frozenset('<>"|?*')


class MalformedPathError(ValueError):
    """Raised when a path cannot be normalized to an absolute Windows path."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Malformed path {path!r}: {reason}")
        self.path = path
        self.reason = reason


def normalize_path(path: str, *, directory: bool = False) -> str:
    """Normalize a Windows path string.

    Args:
        path: Path as reported by the hypervisor or supplied by the operator.
        directory: If True, the result ends with a single backslash.

    Returns:
        Normalized absolute path.

    Raises:
        MalformedPathError: If the path is empty, relative, or contains
            characters that Windows does not allow.
    """
    original = path
    cleaned = path.strip().strip("\"'").strip().replace("/", "\\")
    if not cleaned:
        raise MalformedPathError(original, "empty path")

    prefix = ""
    if cleaned.startswith("\\\\?\\") or cleaned.startswith("\\\\.\\"):
        prefix = "\\\\.\\"
        cleaned = cleaned[4:]
    elif cleaned.startswith("\\\\"):
        prefix = "\\\\"
        cleaned = cleaned[2:]

    body = re.sub(r"\\{2,}", "\\\\", cleaned).rstrip("\\")
    check = body[2:] if _DRIVE_RE.match(body + "\\") else body
    if any(ch in _INVALID_CHARS for ch in check) or ":" in check:
        raise MalformedPathError(original, "invalid characters")

    if prefix == "\\\\":
        if len([p for p in body.split("\\") if p]) < 2:
            raise MalformedPathError(original, "UNC path needs a server and a share")
    elif prefix:
        if not body:
            raise MalformedPathError(original, "device path without a volume")
    elif not _DRIVE_RE.match(body + "\\"):
        raise MalformedPathError(original, "not an absolute path")

    result = prefix + body
    if _DRIVE_RE.match(body) and len(body) == 2:
        # Bare drive: the root directory is always written with a separator
        return result + "\\"
    return result + "\\" if directory else result


def strip_device_prefix(path: str) -> str:
    """Remove a ``\\\\.\\`` or ``\\\\?\\`` prefix that precedes a drive letter."""
    match = _DEVICE_DRIVE_RE.match(path)
    if match:
        return path[4:]
    return path


def path_key(path: str) -> str:
    """Build the comparison key for a path.

    Keys are case-folded, use backslashes, carry no trailing separator
    (except for a drive root) and drop device prefixes in front of drive
    letters.
    """
    key = strip_device_prefix(path.strip().strip("\"'").replace("/", "\\"))
    key = key.rstrip("\\")
    if len(key) == 2 and key[1] == ":":
        key += "\\"
    return key.casefold()


def host_key(host: str | None) -> str | None:
    """Case-folded host name, or None for shared storage."""
    if host is None:
        return None
    return host.strip().casefold() or None


def is_unc_path(path: str) -> bool:
    """Check if a path is on an SMB share (``\\\\server\\share``).

    Raw volume identifiers (``\\\\?\\`` and ``\\\\.\\``) are local paths.
    """
    candidate = path.strip().strip("\"'").replace("/", "\\")
    if candidate.startswith("\\\\?\\") or candidate.startswith("\\\\.\\"):
        return False
    return candidate.startswith("\\\\")


def is_under(path: str, root: str) -> bool:
    """Check if ``path`` equals ``root`` or lies below it."""
    child = path_key(path)
    parent = path_key(root)
    if child == parent:
        return True
    prefix = parent if parent.endswith("\\") else parent + "\\"
    return child.startswith(prefix)


def is_cluster_storage(path: str) -> bool:
    """Check if a path lies under a ``<drive>:\\ClusterStorage`` mount."""
    return _CLUSTER_STORAGE_RE.match(path_key(path)) is not None


def join(base: str, *parts: str) -> str:
    """Join Windows path components."""
    return str(PureWindowsPath(base, *parts))


def parent_of(path: str) -> str:
    """Return the directory containing ``path``."""
    return str(PureWindowsPath(path.rstrip("\\")).parent)


def file_name(path: str) -> str:
    return PureWindowsPath(path).name


def stem(path: str) -> str:
    return PureWindowsPath(path).stem


def extension(path: str) -> str:
    """Lower-cased extension including the dot (``.vhdx``)."""
    return PureWindowsPath(path).suffix.lower()


def is_guid(name: str) -> bool:
    """Check if a name is a GUID (optionally wrapped in braces)."""
    return _GUID_RE.match(name.strip()) is not None


def guid_key(name: str) -> str:
    """Comparison key for a GUID string."""
    return name.strip().strip("{}").casefold()


def is_disk_file(path: str) -> bool:
    return extension(path) in DISK_EXTENSIONS


def is_metadata_file(path: str) -> bool:
    """Check if a path is a GUID-named VM configuration or state file."""
    return extension(path) in METADATA_EXTENSIONS and is_guid(stem(path))
