"""Directories whose GUID-named files are not VM metadata.

Several Windows components write GUID-named XML files that look exactly
like VM configuration files. Files below these directories are never
reported as orphaned metadata, whatever the exclusion set says.
"""

import fnmatch
from collections.abc import Iterable

from hvtools.core.winpath import path_key

# Directory patterns (glob-style, matched case-insensitively against the
# normalized directory path). "?:" matches any drive letter.
EXCLUDED_DIRECTORY_PATTERNS: list[str] = [
    # Component store
    "?:\\windows\\winsxs",
    "?:\\windows\\winsxs\\*",
    # Hyper-V resource type definitions
    "?:\\programdata\\microsoft\\windows\\hyper-v\\resource types",
    "?:\\programdata\\microsoft\\windows\\hyper-v\\resource types\\*",
    # VSS writer registrations
    "?:\\windows\\system32\\vss\\*",
    "?:\\programdata\\microsoft\\windows\\vss\\*",
    "?:\\system volume information",
    "?:\\system volume information\\*",
]


def is_excluded_directory(directory: str, extra_patterns: Iterable[str] = ()) -> bool:
    """Check if GUID-named files in a directory must never be reported.

    Args:
        directory: Directory holding the candidate file.
        extra_patterns: Additional glob patterns (from the configuration).

    Returns:
        True if the directory matches any excluded pattern, False otherwise.
    """
    key = path_key(directory)
    for pattern in (*EXCLUDED_DIRECTORY_PATTERNS, *extra_patterns):
        if fnmatch.fnmatchcase(key, path_key(pattern)):
            return True
    return False
