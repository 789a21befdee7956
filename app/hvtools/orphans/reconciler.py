"""Orphan classification of files below a scan target.

Walks one target on its owning host and compares every virtual disk and
GUID-named metadata file against the exclusion set. Targets that cannot
be listed are reported as failures, never as empty results.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from hvtools.core.winpath import (
    METADATA_EXTENSIONS,
    extension,
    is_cluster_storage,
    is_disk_file,
    is_guid,
    parent_of,
    stem,
)
from hvtools.hosts.filesystem import FileEntry, HostFilesystem
from hvtools.orphans.excluded import is_excluded_directory
from hvtools.orphans.models import (
    ExclusionSet,
    FailureReason,
    FileKind,
    OrphanedFile,
    ScanFailure,
    ScanTarget,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TargetScanResult:
    """Outcome of scanning one target.

    Attributes:
        target: Target that was scanned.
        orphans: Orphaned files found below the target.
        failures: The target itself or subdirectories that could not be listed.
        files_checked: Number of candidate files compared.
    """

    target: ScanTarget
    orphans: tuple[OrphanedFile, ...] = ()
    failures: tuple[ScanFailure, ...] = ()
    files_checked: int = 0


def failure_reason(error: OSError) -> FailureReason:
    """Classify a listing error."""
    if isinstance(error, (FileNotFoundError, NotADirectoryError)):
        return FailureReason.PATH_NOT_FOUND
    if isinstance(error, PermissionError):
        return FailureReason.ACCESS_DENIED
    if isinstance(error, TimeoutError):
        return FailureReason.TIMEOUT
    return FailureReason.SCAN_ERROR


class PathReconciler:
    """Finds orphaned files against a complete exclusion set.

    Args:
        exclusions: Files known to belong to live VMs and disk chains.
        excluded_directories: Extra directory patterns whose GUID-named
            files are never metadata.
    """

    def __init__(
        self, exclusions: ExclusionSet, *, excluded_directories: Iterable[str] = ()
    ) -> None:
        self._exclusions = exclusions
        self._excluded_directories = tuple(excluded_directories)

    def scan(self, target: ScanTarget, filesystem: HostFilesystem) -> TargetScanResult:
        """Scan one target with the filesystem of its owning host.

        Args:
            target: Directory to scan.
            filesystem: Filesystem of ``target.owner_host`` (or shared storage).

        Returns:
            TargetScanResult with orphans sorted by path.
        """
        host = target.owner_host
        if target.skip_cluster_storage and is_cluster_storage(target.path):
            logger.debug("Skipping cluster storage target %s on %s", target.path, host)
            return TargetScanResult(target=target)

        orphans: list[OrphanedFile] = []
        failures: list[ScanFailure] = []
        checked = 0

        def _subdirectory_failed(path: str, error: OSError) -> None:
            failures.append(ScanFailure(path, host, failure_reason(error), str(error)))

        def _prune(directory: str) -> bool:
            return target.skip_cluster_storage and is_cluster_storage(directory)

        logger.info("Scanning %s on %s", target.path, host or "shared storage")
        try:
            for entry in filesystem.walk_files(
                target.path, prune=_prune, on_error=_subdirectory_failed
            ):
                kind = self._classify(entry.path, target)
                if kind is None:
                    continue
                checked += 1
                if not self._is_known(entry.path, host, kind):
                    orphans.append(self._orphan(entry, host, kind, target))
        except (OSError, ValueError) as e:
            reason = failure_reason(e) if isinstance(e, OSError) else FailureReason.SCAN_ERROR
            logger.warning("Cannot scan %s on %s: %s", target.path, host or "shared storage", e)
            failures.append(ScanFailure(target.path, host, reason, str(e)))

        logger.debug(
            "Checked %d files below %s, %d orphaned", checked, target.path, len(orphans)
        )
        return TargetScanResult(
            target=target,
            orphans=tuple(sorted(orphans, key=lambda o: o.path.casefold())),
            failures=tuple(failures),
            files_checked=checked,
        )

    def _classify(self, path: str, target: ScanTarget) -> FileKind | None:
        """Return the kind of a candidate file, None for files to ignore."""
        directory = parent_of(path)
        if target.skip_cluster_storage and is_cluster_storage(directory):
            return None
        if is_disk_file(path):
            return FileKind.DISK
        if extension(path) in METADATA_EXTENSIONS:
            if is_excluded_directory(directory, self._excluded_directories):
                return None
            if is_guid(stem(path)):
                return FileKind.METADATA
        return None

    def _is_known(self, path: str, host: str | None, kind: FileKind) -> bool:
        if kind == FileKind.DISK:
            return self._exclusions.knows_disk(path, host)
        return self._exclusions.knows_metadata(path, host)

    @staticmethod
    def _orphan(
        entry: FileEntry, host: str | None, kind: FileKind, target: ScanTarget
    ) -> OrphanedFile:
        return OrphanedFile(
            path=entry.path,
            owning_host=host,
            kind=kind,
            size_bytes=entry.size_bytes,
            mtime=entry.mtime,
            target=target.path,
        )
