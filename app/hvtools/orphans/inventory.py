r"""Per-host inventory of managed files and scan targets.

For one host this module collects:

- the directories to scan: default VM, disk and registration paths, the
  mounted cluster shared volumes, and the directories of registered VMs;
- every file the hypervisor uses: configuration and checkpoint metadata
  with the links to it in the registration directory,
  attached disks with their complete differencing chains, floppy disks,
  and the directories holding them.

Each path is classified on its own; a VM may keep its configuration on a
local drive and its disks on a share. Metadata on a share is recorded
as one ``shared_metadata`` reference per directory and GUID instead of
being listed from the host.

The result is an immutable HostInventory; nothing is shared between
hosts.
"""

import logging

from hvtools.core.winpath import (
    MalformedPathError,
    extension,
    guid_key,
    host_key,
    is_metadata_file,
    is_unc_path,
    join,
    normalize_path,
    parent_of,
    path_key,
    stem,
)
from hvtools.disks.chain import BrokenChainError, ChainError, CyclicChainError, walk_chain
from hvtools.disks.header import InvalidDiskFormatError
from hvtools.hosts.base import HypervisorHost
from hvtools.hosts.models import HostConfig, VirtualMachine
from hvtools.orphans.models import (
    ClusterMembership,
    FileKind,
    HostInventory,
    InventoryIssue,
    IssueKind,
    ManagedFileReference,
    ScanTarget,
)

logger = logging.getLogger(__name__)

# Subdirectories Hyper-V creates below configuration and snapshot locations
METADATA_SUBDIRECTORIES: tuple[str, ...] = ("Virtual Machines", "Snapshots")

# Floppy images have no header and no parent
_HEADERLESS_DISK_EXTENSIONS = frozenset({".vfd"})


def collect_inventory(
    host: HypervisorHost,
    *,
    include_default_paths: bool = True,
    include_existing_vm_paths: bool = True,
) -> HostInventory:
    """Collect the scan targets and managed files of one host.

    Managed file references are always collected, since a file can only be
    judged against the complete set of live VMs. The flags only decide
    which directories become scan targets.

    Args:
        host: Host to query.
        include_default_paths: Add the host's default VM, disk and
            registration paths as scan targets.
        include_existing_vm_paths: Add the directories of registered VMs
            as scan targets.

    Returns:
        HostInventory with deterministic (sorted) contents.

    Raises:
        HostQueryError: If the host configuration or VM list cannot be
            retrieved.
    """
    config = host.get_host_config()
    vms = host.list_vms()
    logger.info("Host %s reports %d virtual machines", host.name, len(vms))

    collector = _InventoryCollector(host, config)
    for path in config.cluster_storage_volumes:
        collector.add_target(path)
    if include_default_paths:
        for path in config.default_paths:
            collector.add_target(path)

    for vm in vms:
        collector.add_vm(vm, include_paths=include_existing_vm_paths)

    return collector.result()


def cluster_membership(config: HostConfig) -> ClusterMembership | None:
    """Convert reported cluster information into a ClusterMembership."""
    if config.cluster is None:
        return None
    return ClusterMembership(
        name=config.cluster.name,
        primary_node=config.cluster.primary_node,
        members=tuple(config.cluster.members),
    )


def _registration_directory(config: HostConfig) -> str | None:
    """Directory where Hyper-V links the configuration of every VM, if known."""
    if not config.registration_path:
        return None
    try:
        return normalize_path(config.registration_path, directory=True)
    except MalformedPathError:
        return None


class _InventoryCollector:
    """Accumulates one host's inventory; used for a single collect call."""

    def __init__(self, host: HypervisorHost, config: HostConfig) -> None:
        self._host = host
        self._membership = cluster_membership(config)
        self._secondary = self._membership is not None and (
            self._membership.is_secondary(host.name)
            or self._membership.is_secondary(config.computer_name)
        )
        self._targets: dict[tuple[str, str | None], ScanTarget] = {}
        self._references: dict[tuple, ManagedFileReference] = {}
        self._issues: list[InventoryIssue] = []
        self._chains: dict[str, list[str]] = {}
        self._registration = _registration_directory(config)
        self._registration_files: list[str] | None = None

    def result(self) -> HostInventory:
        targets = sorted(self._targets.values(), key=lambda t: path_key(t.path))
        references = sorted(
            self._references.values(),
            key=lambda r: (
                host_key(r.owning_host) or "",
                r.kind.value,
                path_key(r.path),
                guid_key(r.identifier or ""),
            ),
        )
        issues = sorted(self._issues, key=lambda i: (path_key(i.path), i.kind.value))
        return HostInventory(
            host=self._host.name,
            targets=tuple(targets),
            references=tuple(references),
            cluster=self._membership,
            issues=tuple(issues),
        )

    def add_target(self, path: str) -> None:
        normalized = self._normalize(path, directory=True)
        if normalized is None:
            return
        target = ScanTarget.create(
            normalized, self._host.name, skip_cluster_storage=self._secondary
        )
        self._targets.setdefault(target.key, target)

    def add_vm(self, vm: VirtualMachine, *, include_paths: bool) -> None:
        logger.debug("Collecting files of VM %s (%s)", vm.name, vm.vm_id)
        locations = [
            loc for loc in (vm.configuration_location, vm.snapshot_file_location) if loc
        ]
        for location in locations:
            directory = self._normalize(location, directory=True)
            if directory is None:
                continue
            self._add_reference(directory, FileKind.DIRECTORY_ROOT, vm)
            self._add_metadata(directory, vm)
            if include_paths:
                self.add_target(directory)
        self._add_registration_links(vm)

        if vm.smart_paging_file_in_use and vm.smart_paging_file_path:
            directory = self._normalize(vm.smart_paging_file_path, directory=True)
            if directory is not None:
                self._add_reference(directory, FileKind.DIRECTORY_ROOT, vm)

        for disk in vm.disk_files:
            path = self._normalize(disk)
            if path is None:
                continue
            self._add_reference(path, FileKind.DISK, vm)
            if include_paths:
                self.add_target(parent_of(path))
            if extension(path) in _HEADERLESS_DISK_EXTENSIONS:
                continue
            for ancestor in self._ancestors(path):
                self._add_reference(ancestor, FileKind.DISK, vm)

    def _add_metadata(self, directory: str, vm: VirtualMachine) -> None:
        if is_unc_path(directory):
            for identifier in sorted(vm.identifiers):
                self._add_reference(
                    directory, FileKind.SHARED_METADATA, vm, identifier=identifier
                )
            return

        identifiers = {guid_key(i) for i in vm.identifiers}
        for path in self._list_metadata(directory):
            if guid_key(stem(path)) in identifiers:
                self._add_reference(path, FileKind.METADATA, vm)

    def _add_registration_links(self, vm: VirtualMachine) -> None:
        """Reference the links Hyper-V keeps in the registration directory."""
        if self._registration is None:
            return
        if self._registration_files is None:
            self._registration_files = self._list_metadata(self._registration)
        identifiers = {guid_key(i) for i in vm.identifiers}
        for path in self._registration_files:
            if guid_key(stem(path)) in identifiers:
                self._add_reference(path, FileKind.METADATA, vm)

    def _list_metadata(self, directory: str) -> list[str]:
        """Metadata files below the Hyper-V subdirectories of ``directory``."""
        filesystem = self._host.filesystem
        found: list[str] = []
        for sub in METADATA_SUBDIRECTORIES:
            folder = join(directory, sub)
            if not filesystem.exists(folder):
                continue
            try:
                found.extend(
                    entry.path
                    for entry in filesystem.walk_files(folder, on_error=self._listing_failed)
                    if is_metadata_file(entry.path)
                )
            except OSError as e:
                self._listing_failed(folder, e)
        return found

    def _ancestors(self, path: str) -> list[str]:
        """Differencing ancestors of a disk, cached for the whole host."""
        key = path_key(path)
        if key in self._chains:
            return self._chains[key]
        try:
            ancestors = walk_chain(path, self._host.filesystem.read_disk_header)
        except ChainError as e:
            ancestors = e.ancestors
            self._chain_failed(path, e)
        self._chains[key] = ancestors
        return ancestors

    def _add_reference(
        self,
        path: str,
        kind: FileKind,
        vm: VirtualMachine,
        *,
        identifier: str | None = None,
    ) -> None:
        ref = ManagedFileReference.create(
            path, self._host.name, kind, vm_name=vm.name, identifier=identifier
        )
        key = (*ref.key, kind, guid_key(identifier or ""))
        self._references.setdefault(key, ref)

    def _normalize(self, path: str, *, directory: bool = False) -> str | None:
        try:
            return normalize_path(path, directory=directory)
        except MalformedPathError as e:
            logger.warning("Host %s reported an unusable path: %s", self._host.name, e)
            self._issues.append(
                InventoryIssue(self._host.name, path, IssueKind.MALFORMED_PATH, str(e))
            )
            return None

    def _listing_failed(self, path: str, error: OSError) -> None:
        logger.warning("Cannot list %s on %s: %s", path, self._host.name, error)
        self._issues.append(
            InventoryIssue(self._host.name, path, IssueKind.LISTING_FAILED, str(error))
        )

    def _chain_failed(self, path: str, error: ChainError) -> None:
        if isinstance(error, CyclicChainError):
            kind = IssueKind.CYCLIC_CHAIN
        elif isinstance(error, BrokenChainError) and isinstance(
            error.__cause__, InvalidDiskFormatError
        ):
            kind = IssueKind.INVALID_DISK_FORMAT
        else:
            kind = IssueKind.DISK_READ_ERROR
        logger.warning("%s (on %s)", error, self._host.name)
        self._issues.append(
            InventoryIssue(
                self._host.name, path, kind, str(error), ancestors=tuple(error.ancestors)
            )
        )
