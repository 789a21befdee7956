"""Orphan search across hosts.

The finder runs the whole search:

1. Inventory every requested host in parallel. Unreachable hosts are
   reported and left out.
2. Inventory cluster members that were not requested, so files of VMs
   running on them are known (their directories are not scanned).
3. Resolve scan targets: cluster deduplication, explicit paths,
   removal of nested targets.
4. Build a single exclusion set and scan every target in parallel.
5. Merge all per-host and per-target results into one OrphanReport.

No state is shared between workers; each returns an immutable record and
the merge happens once all of them are done.
"""

import logging
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import TypeVar

from hvtools.core.config import HvToolsConfig
from hvtools.core.winpath import host_key, is_unc_path, normalize_path, path_key
from hvtools.hosts.base import HostQueryError, HypervisorHost
from hvtools.hosts.filesystem import DirectMapper, HostFilesystem
from hvtools.hosts.powershell import PowerShellHost
from hvtools.orphans.cluster import (
    dedupe,
    drop_cluster_storage,
    remove_subpaths,
    unique_memberships,
)
from hvtools.orphans.inventory import collect_inventory
from hvtools.orphans.models import (
    ClusterMembership,
    ExclusionSet,
    FailureReason,
    HostInventory,
    OrphanedFile,
    OrphanReport,
    ScanFailure,
    ScanTarget,
)
from hvtools.orphans.reconciler import PathReconciler, TargetScanResult

logger = logging.getLogger(__name__)

HostFactory = Callable[[str], HypervisorHost]

DEFAULT_HOST = "localhost"

J = TypeVar("J")
R = TypeVar("R")


class FinderError(Exception):
    """Base exception for orphan search errors."""


class InvalidRequestError(FinderError):
    """Raised when search options contradict each other."""


class NoScanTargetsError(FinderError):
    """Raised when no host or path is left to scan."""


@dataclass(frozen=True, slots=True)
class FindRequest:
    """Options of one orphan search.

    Without explicit paths the default and VM paths of each host are
    scanned unless excluded. With explicit paths only those are scanned,
    plus default and VM paths when included.

    Attributes:
        hosts: Hosts to inventory and scan (empty: configured or local host).
        paths: Explicit directories to scan.
        include_default_paths: Also scan default paths (needs ``paths``).
        include_existing_vm_paths: Also scan VM directories (needs ``paths``).
        exclude_default_paths: Skip default paths (needs no ``paths``).
        exclude_existing_vm_paths: Skip VM directories (needs no ``paths``).
        ignore_cluster_membership: Treat cluster nodes as standalone hosts
            and never scan ClusterStorage.
    """

    hosts: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()
    include_default_paths: bool = False
    include_existing_vm_paths: bool = False
    exclude_default_paths: bool = False
    exclude_existing_vm_paths: bool = False
    ignore_cluster_membership: bool = False

    def __post_init__(self) -> None:
        if self.paths and (self.exclude_default_paths or self.exclude_existing_vm_paths):
            msg = "Exclude options cannot be combined with explicit paths"
            raise InvalidRequestError(msg)
        if not self.paths and (self.include_default_paths or self.include_existing_vm_paths):
            msg = "Include options require explicit paths"
            raise InvalidRequestError(msg)

    @property
    def scan_default_paths(self) -> bool:
        if self.paths:
            return self.include_default_paths
        return not self.exclude_default_paths

    @property
    def scan_existing_vm_paths(self) -> bool:
        if self.paths:
            return self.include_existing_vm_paths
        return not self.exclude_existing_vm_paths


class OrphanFinder:
    """Finds orphaned VM files on a set of hosts.

    Args:
        config: Worker count, timeouts and excluded directories.
        host_factory: Creates a host from its name. Defaults to
            PowerShellHost with the configured executable and timeout.
        shared_filesystem: Filesystem used for targets on SMB shares.
    """

    def __init__(
        self,
        config: HvToolsConfig | None = None,
        host_factory: HostFactory | None = None,
        shared_filesystem: HostFilesystem | None = None,
    ) -> None:
        self._config = config or HvToolsConfig()
        self._host_factory = host_factory or self._default_host_factory
        self._shared_filesystem = shared_filesystem or HostFilesystem(None, DirectMapper())
        self._hosts: dict[str, HypervisorHost] = {}

    def find(self, request: FindRequest) -> OrphanReport:
        """Run one orphan search.

        Returns:
            OrphanReport with orphans, failures, inventory issues and the
            targets that were scanned.

        Raises:
            MalformedPathError: If an explicit path cannot be normalized.
            NoScanTargetsError: If no target could be resolved.
        """
        # Validate user input before contacting any host
        explicit = [normalize_path(p, directory=True) for p in request.paths]
        names = self._host_names(request)
        deadline = self._deadline()
        self._hosts = {}

        inventories, failures = self._inventory_hosts(names, request, deadline)
        extra: list[HostInventory] = []
        if not request.ignore_cluster_membership:
            members = self._unrequested_members(inventories, names)
            if members:
                logger.info("Collecting references of cluster members %s", ", ".join(members))
                extra, extra_failures = self._inventory_hosts(members, request, deadline)
                failures.extend(extra_failures)

        memberships = unique_memberships(inv.cluster for inv in (*inventories, *extra))
        references = dedupe(
            memberships,
            (ref for inv in (*inventories, *extra) for ref in inv.references),
            ignore_cluster_membership=request.ignore_cluster_membership,
        )
        targets = self._resolve_targets(inventories, explicit, memberships, request)
        if not targets:
            raise NoScanTargetsError("No scan target could be resolved")

        exclusions = ExclusionSet.from_references(references)
        logger.info("Scanning %d targets against %d known files", len(targets), len(exclusions))
        results, scan_failures = self._scan_targets(targets, exclusions, deadline)
        failures.extend(scan_failures)

        return self._merge(targets, results, failures, (*inventories, *extra))

    def inventory(
        self, hosts: Iterable[str] = ()
    ) -> tuple[list[HostInventory], list[ScanFailure]]:
        """Collect host inventories in parallel without scanning anything.

        Hosts default to the configured hosts or the local host, as for
        ``find``. Cluster members are not added.

        Returns:
            Tuple of (inventories sorted by host, per-host failures).
        """
        request = FindRequest(hosts=tuple(hosts))
        self._hosts = {}
        return self._inventory_hosts(self._host_names(request), request, self._deadline())

    def _host_names(self, request: FindRequest) -> list[str]:
        candidates = request.hosts or tuple(self._config.hosts)
        shared_only = bool(request.paths) and all(is_unc_path(p) for p in request.paths)
        if not candidates and not shared_only:
            candidates = (DEFAULT_HOST,)
        names: dict[str | None, str] = {}
        for name in candidates:
            names.setdefault(host_key(name), name.strip())
        return list(names.values())

    def _host(self, name: str) -> HypervisorHost:
        key = host_key(name) or name
        if key not in self._hosts:
            self._hosts[key] = self._host_factory(name)
        return self._hosts[key]

    def _inventory_hosts(
        self, names: list[str], request: FindRequest, deadline: float | None
    ) -> tuple[list[HostInventory], list[ScanFailure]]:
        hosts = [self._host(name) for name in names]

        def _collect(host: HypervisorHost) -> HostInventory | ScanFailure:
            try:
                return collect_inventory(
                    host,
                    include_default_paths=request.scan_default_paths,
                    include_existing_vm_paths=request.scan_existing_vm_paths,
                )
            except HostQueryError as e:
                logger.warning("Host %s is unreachable: %s", host.name, e)
                return ScanFailure(None, host.name, FailureReason.UNREACHABLE_HOST, str(e))
            except Exception as e:
                # Unexpected errors stay with their host
                logger.exception("Inventory of %s failed", host.name)
                return ScanFailure(
                    None, host.name, FailureReason.SCAN_ERROR, f"inventory failed: {e}"
                )

        done, timed_out = self._run_parallel(
            [(host, (lambda h=host: _collect(h))) for host in hosts], deadline
        )

        inventories: list[HostInventory] = []
        failures: list[ScanFailure] = []
        for _, outcome in done:
            if isinstance(outcome, ScanFailure):
                failures.append(outcome)
            else:
                inventories.append(outcome)
        for host in timed_out:
            logger.warning("Inventory of %s timed out", host.name)
            failures.append(
                ScanFailure(None, host.name, FailureReason.TIMEOUT, "inventory timed out")
            )

        inventories.sort(key=lambda inv: host_key(inv.host) or "")
        failures.sort(key=lambda f: host_key(f.host) or "")
        return inventories, failures

    @staticmethod
    def _unrequested_members(inventories: list[HostInventory], names: list[str]) -> list[str]:
        requested = {host_key(name) for name in names}
        members: dict[str | None, str] = {}
        for inventory in inventories:
            if inventory.cluster is None:
                continue
            for member in inventory.cluster.members:
                key = host_key(member)
                if key not in requested:
                    members.setdefault(key, member)
        return list(members.values())

    def _resolve_targets(
        self,
        inventories: list[HostInventory],
        explicit: list[str],
        memberships: list[ClusterMembership],
        request: FindRequest,
    ) -> list[ScanTarget]:
        targets: list[ScanTarget] = []
        for path in explicit:
            if is_unc_path(path):
                targets.append(ScanTarget.create(path, None))
                continue
            for inventory in inventories:
                secondary = inventory.cluster is not None and inventory.cluster.is_secondary(
                    inventory.host
                )
                targets.append(
                    ScanTarget.create(path, inventory.host, skip_cluster_storage=secondary)
                )
        for inventory in inventories:
            targets.extend(inventory.targets)

        resolved = dedupe(
            memberships, targets, ignore_cluster_membership=request.ignore_cluster_membership
        )
        resolved = remove_subpaths(resolved)
        if request.ignore_cluster_membership:
            resolved = drop_cluster_storage(resolved)
        return resolved

    def _scan_targets(
        self,
        targets: list[ScanTarget],
        exclusions: ExclusionSet,
        deadline: float | None,
    ) -> tuple[list[TargetScanResult], list[ScanFailure]]:
        reconciler = PathReconciler(
            exclusions, excluded_directories=self._config.excluded_directories
        )
        jobs = [
            (target, (lambda t=target, fs=self._filesystem(target): reconciler.scan(t, fs)))
            for target in targets
        ]
        done, timed_out = self._run_parallel(jobs, deadline)

        failures = []
        for target in timed_out:
            logger.warning("Scan of %s timed out", target.path)
            failures.append(
                ScanFailure(
                    target.path, target.owner_host, FailureReason.TIMEOUT, "scan timed out"
                )
            )
        return [result for _, result in done], failures

    def _filesystem(self, target: ScanTarget) -> HostFilesystem:
        if target.owner_host is None:
            return self._shared_filesystem
        return self._host(target.owner_host).filesystem

    def _run_parallel(
        self, jobs: list[tuple[J, Callable[[], R]]], deadline: float | None
    ) -> tuple[list[tuple[J, R]], list[J]]:
        """Run jobs on the worker pool until done or the deadline passes.

        Returns:
            Tuple of (completed (job, result) pairs, jobs abandoned at the deadline).
        """
        if not jobs:
            return [], []

        done: list[tuple[J, R]] = []
        workers = min(self._config.max_workers, len(jobs))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="hvtools")
        futures: dict[Future[R], J] = {executor.submit(fn): job for job, fn in jobs}
        timed_out = False
        try:
            for future in as_completed(futures, timeout=self._remaining(deadline)):
                done.append((futures[future], future.result()))
        except TimeoutError:
            timed_out = True
        finally:
            # Abandoned workers keep running in the background; nothing waits for them
            executor.shutdown(wait=not timed_out, cancel_futures=True)

        finished = {id(job) for job, _ in done}
        pending = [job for job in futures.values() if id(job) not in finished]
        return done, pending

    def _deadline(self) -> float | None:
        if self._config.timeout_seconds is None:
            return None
        return time.monotonic() + self._config.timeout_seconds

    @staticmethod
    def _remaining(deadline: float | None) -> float | None:
        if deadline is None:
            return None
        return max(0.0, deadline - time.monotonic())

    @staticmethod
    def _merge(
        targets: list[ScanTarget],
        results: Iterable[TargetScanResult],
        failures: list[ScanFailure],
        inventories: Iterable[HostInventory],
    ) -> OrphanReport:
        orphans: dict[tuple[str, str | None], OrphanedFile] = {}
        for result in results:
            failures.extend(result.failures)
            for orphan in result.orphans:
                orphans.setdefault((path_key(orphan.path), host_key(orphan.owning_host)), orphan)

        issues = [issue for inventory in inventories for issue in inventory.issues]
        ordered = sorted(
            orphans.values(), key=lambda o: (host_key(o.owning_host) or "", path_key(o.path))
        )
        return OrphanReport(
            orphans=tuple(ordered),
            failures=tuple(failures),
            issues=tuple(issues),
            targets=tuple(targets),
        )

    def _default_host_factory(self, name: str) -> HypervisorHost:
        return PowerShellHost(
            name,
            powershell=self._config.powershell,
            timeout=self._config.command_timeout_seconds,
        )
