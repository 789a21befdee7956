"""Orphan detection models.

This module defines the immutable records exchanged between the
inventory, cluster deduplication, reconciliation and reporting steps.
Per-host results are separate records; a single reduction merges them
once all hosts are done.
"""

from dataclasses import dataclass, field, replace
from enum import Enum

from hvtools.core.winpath import (
    guid_key,
    host_key,
    is_under,
    is_unc_path,
    parent_of,
    path_key,
    stem,
)


class FileKind(str, Enum):
    """Kind of a managed or orphaned file.

    Attributes:
        METADATA: GUID-named configuration, checkpoint or saved-state file.
        DISK: Virtual hard disk or virtual floppy file.
        DIRECTORY_ROOT: Directory holding a VM's files.
        SHARED_METADATA: Shared directory plus the GUID of the VM or
            checkpoint whose metadata files it holds.
    """

    METADATA = "metadata"
    DISK = "disk"
    DIRECTORY_ROOT = "directory_root"
    SHARED_METADATA = "shared_metadata"


class FailureReason(str, Enum):
    """Why a host or scan root could not be checked."""

    UNREACHABLE_HOST = "unreachable_host"
    PATH_NOT_FOUND = "path_not_found"
    ACCESS_DENIED = "access_denied"
    TIMEOUT = "timeout"
    SCAN_ERROR = "scan_error"


class IssueKind(str, Enum):
    """Non-fatal problems found while building an inventory."""

    INVALID_DISK_FORMAT = "invalid_disk_format"
    CYCLIC_CHAIN = "cyclic_chain"
    DISK_READ_ERROR = "disk_read_error"
    LISTING_FAILED = "listing_failed"
    MALFORMED_PATH = "malformed_path"


@dataclass(frozen=True, slots=True)
class ManagedFileReference:
    """A file or directory known to belong to the hypervisor.

    Attributes:
        path: Normalized path.
        owning_host: Host owning the path, None for shared (SMB) storage.
        kind: Kind of the reference.
        vm_name: Name of the VM the reference belongs to, if any.
        identifier: GUID covered by a SHARED_METADATA reference.
    """

    path: str
    owning_host: str | None
    kind: FileKind
    vm_name: str | None = None
    identifier: str | None = None

    def __post_init__(self) -> None:
        if not self.path:
            msg = "Path cannot be empty"
            raise ValueError(msg)
        if self.kind == FileKind.SHARED_METADATA and not self.identifier:
            msg = "Shared metadata references need an identifier"
            raise ValueError(msg)

    @classmethod
    def create(
        cls,
        path: str,
        host: str | None,
        kind: FileKind,
        *,
        vm_name: str | None = None,
        identifier: str | None = None,
    ) -> "ManagedFileReference":
        """Create a reference, dropping the host for paths on shared storage."""
        owner = None if is_unc_path(path) else host
        return cls(path=path, owning_host=owner, kind=kind, vm_name=vm_name, identifier=identifier)

    @property
    def key(self) -> tuple[str, str | None]:
        """Case-insensitive (path, host) pair used for lookups."""
        return (path_key(self.path), host_key(self.owning_host))

    @property
    def host(self) -> str | None:
        return self.owning_host

    def reassign(self, host: str | None) -> "ManagedFileReference":
        """Return a copy owned by another host."""
        return replace(self, owning_host=host)


@dataclass(frozen=True, slots=True)
class ScanTarget:
    """A directory tree to search for orphans.

    Attributes:
        path: Normalized directory path.
        owner_host: Host that must perform the scan, None for shared paths
            the invoking process reads directly.
        skip_cluster_storage: Skip files below the local ClusterStorage
            mount (set for non-primary cluster nodes).
    """

    path: str
    owner_host: str | None
    skip_cluster_storage: bool = False

    @classmethod
    def create(
        cls, path: str, host: str | None, *, skip_cluster_storage: bool = False
    ) -> "ScanTarget":
        """Create a target, dropping the host for paths on shared storage."""
        owner = None if is_unc_path(path) else host
        return cls(path=path, owner_host=owner, skip_cluster_storage=skip_cluster_storage)

    @property
    def key(self) -> tuple[str, str | None]:
        return (path_key(self.path), host_key(self.owner_host))

    @property
    def host(self) -> str | None:
        return self.owner_host

    def reassign(self, host: str | None) -> "ScanTarget":
        """Return a copy scanned by another host, including its cluster storage."""
        return replace(self, owner_host=host, skip_cluster_storage=False)


@dataclass(frozen=True, slots=True)
class ClusterMembership:
    """A failover cluster as reported by its nodes.

    Attributes:
        name: Cluster name.
        primary_node: Node that owns cluster shared volume files.
        members: All node names.
    """

    name: str
    primary_node: str
    members: tuple[str, ...]

    def is_secondary(self, host: str | None) -> bool:
        """Check if ``host`` is a member other than the primary node."""
        key = host_key(host)
        if key is None or key == host_key(self.primary_node):
            return False
        return key in {host_key(m) for m in self.members}


@dataclass(frozen=True, slots=True)
class InventoryIssue:
    """A non-fatal problem found while building a host inventory.

    Attributes:
        host: Host whose inventory was being built.
        path: File or directory concerned.
        kind: Kind of problem.
        message: Human-readable description.
        ancestors: Chain ancestors found before a chain walk stopped.
    """

    host: str
    path: str
    kind: IssueKind
    message: str
    ancestors: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ScanFailure:
    """A host or scan root that could not be checked.

    Attributes:
        path: Scan root or directory concerned (None for host-level failures).
        host: Host concerned (None for shared paths).
        reason: Failure classification.
        message: Human-readable description.
    """

    path: str | None
    host: str | None
    reason: FailureReason
    message: str


@dataclass(frozen=True, slots=True)
class OrphanedFile:
    """A VM artifact no known VM, checkpoint or disk chain refers to.

    Attributes:
        path: Path in the owning host's terms.
        owning_host: Host the file was found on, None for shared storage.
        kind: METADATA or DISK.
        size_bytes: File size (None if unavailable).
        mtime: Last modification time in ISO 8601 format (None if unavailable).
        target: Scan root the file was found under.
    """

    path: str
    owning_host: str | None
    kind: FileKind
    size_bytes: int | None
    mtime: str | None
    target: str


@dataclass(frozen=True, slots=True)
class HostInventory:
    """Everything one host contributes to a scan.

    Attributes:
        host: Host name.
        targets: Directories this host wants scanned.
        references: Files and directories the host's hypervisor uses.
        cluster: Cluster membership, None for standalone hosts.
        issues: Non-fatal problems found while collecting.
    """

    host: str
    targets: tuple[ScanTarget, ...]
    references: tuple[ManagedFileReference, ...]
    cluster: ClusterMembership | None = None
    issues: tuple[InventoryIssue, ...] = ()


@dataclass(frozen=True, slots=True)
class ExclusionSet:
    """Known files, split by kind.

    A file is known iff its (path, host) pair is in the partition for its
    kind. Metadata files on shared storage are also known when they lie
    below a shared directory recorded for their GUID.

    Attributes:
        metadata: Known metadata files as (path key, host key).
        disks: Known disk files as (path key, host key).
        shared_metadata: Shared directories as (path key, GUID key).
    """

    metadata: frozenset[tuple[str, str | None]] = field(default_factory=frozenset)
    disks: frozenset[tuple[str, str | None]] = field(default_factory=frozenset)
    shared_metadata: frozenset[tuple[str, str]] = field(default_factory=frozenset)

    @classmethod
    def from_references(cls, references: list[ManagedFileReference]) -> "ExclusionSet":
        metadata: set[tuple[str, str | None]] = set()
        disks: set[tuple[str, str | None]] = set()
        shared: set[tuple[str, str]] = set()
        for ref in references:
            if ref.kind == FileKind.METADATA:
                metadata.add(ref.key)
            elif ref.kind == FileKind.DISK:
                disks.add(ref.key)
            elif ref.kind == FileKind.SHARED_METADATA and ref.identifier:
                shared.add((path_key(ref.path), guid_key(ref.identifier)))
        return cls(frozenset(metadata), frozenset(disks), frozenset(shared))

    def knows_disk(self, path: str, host: str | None) -> bool:
        return self._key(path, host) in self.disks

    def knows_metadata(self, path: str, host: str | None) -> bool:
        if self._key(path, host) in self.metadata:
            return True
        if not is_unc_path(path):
            return False
        identifier = guid_key(stem(path))
        directory = parent_of(path)
        return any(
            guid == identifier and is_under(directory, shared_dir)
            for shared_dir, guid in self.shared_metadata
        )

    def __len__(self) -> int:
        return len(self.metadata) + len(self.disks) + len(self.shared_metadata)

    @staticmethod
    def _key(path: str, host: str | None) -> tuple[str, str | None]:
        owner = None if is_unc_path(path) else host
        return (path_key(path), host_key(owner))


@dataclass(frozen=True, slots=True)
class OrphanReport:
    """Result of one orphan search.

    Attributes:
        orphans: Orphaned files, sorted by host and path.
        failures: Hosts and roots that could not be checked.
        issues: Non-fatal inventory problems.
        targets: Scan roots that were searched.
    """

    orphans: tuple[OrphanedFile, ...]
    failures: tuple[ScanFailure, ...] = ()
    issues: tuple[InventoryIssue, ...] = ()
    targets: tuple[ScanTarget, ...] = ()

    @property
    def complete(self) -> bool:
        """Check if every host and root was checked."""
        return not self.failures
