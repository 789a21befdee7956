"""Cluster-aware deduplication of scan targets and references.

Every node of a failover cluster mounts the same cluster shared volumes
below ``<system drive>\\ClusterStorage``. Without deduplication each node
would scan those volumes and each node's references would only cover its
own VMs, so a file owned by a VM on another node would look orphaned.

Items under ClusterStorage owned by a non-primary node are therefore
handed to the cluster's primary node, so that the primary's scan sees
the references of every node exactly once.
"""

import logging
from collections.abc import Iterable
from typing import Protocol, Self, TypeVar

from hvtools.core.winpath import host_key, is_cluster_storage, is_under, path_key
from hvtools.orphans.models import ClusterMembership, ScanTarget

logger = logging.getLogger(__name__)


class HostedItem(Protocol):
    """Anything carrying a (path, owner host) pair."""

    @property
    def path(self) -> str: ...

    @property
    def host(self) -> str | None: ...

    @property
    def key(self) -> tuple[str, str | None]: ...

    def reassign(self, host: str | None) -> Self: ...


T = TypeVar("T", bound=HostedItem)


def unique_memberships(memberships: Iterable[ClusterMembership | None]) -> list[ClusterMembership]:
    """Drop missing and repeated memberships (each node reports its cluster)."""
    seen: dict[str, ClusterMembership] = {}
    for membership in memberships:
        if membership is None:
            continue
        seen.setdefault(membership.name.casefold(), membership)
    return list(seen.values())


def dedupe(
    memberships: Iterable[ClusterMembership],
    items: Iterable[T],
    *,
    ignore_cluster_membership: bool = False,
) -> list[T]:
    """Attribute cluster storage items to the primary node, once.

    Args:
        memberships: Known clusters.
        items: Scan targets or managed file references.
        ignore_cluster_membership: Drop items of non-primary nodes under
            ClusterStorage instead of handing them to the primary node.

    Returns:
        Items in input order, without duplicates.
    """
    clusters = list(memberships)
    result: dict[tuple[str, str | None], T] = {}

    for item in items:
        resolved = item
        if item.host is not None and is_cluster_storage(item.path):
            for cluster in clusters:
                if not cluster.is_secondary(item.host):
                    continue
                if ignore_cluster_membership:
                    logger.debug("Dropping %s on %s (cluster storage)", item.path, item.host)
                    resolved = None
                else:
                    resolved = item.reassign(cluster.primary_node)
                break
        if resolved is not None:
            result.setdefault(resolved.key, resolved)

    return list(result.values())


def remove_subpaths(targets: Iterable[ScanTarget]) -> list[ScanTarget]:
    """Drop targets contained in another target.

    A target is redundant when another target contains it and both have
    the same owner, or either of them has no owner. The container is
    kept. Results are sorted by host and path.
    """
    candidates = sorted(
        {t.key: t for t in targets}.values(),
        key=lambda t: len(path_key(t.path)),
    )
    kept: list[ScanTarget] = []
    for target in candidates:
        container = next((k for k in kept if _contains(k, target)), None)
        if container is not None:
            logger.debug("Skipping %s, covered by %s", target.path, container.path)
            continue
        kept.append(target)
    return sorted(kept, key=lambda t: (host_key(t.owner_host) or "", path_key(t.path)))


def drop_cluster_storage(targets: Iterable[ScanTarget]) -> list[ScanTarget]:
    """Remove ClusterStorage roots and skip ClusterStorage below the rest."""
    result = []
    for target in targets:
        if target.owner_host is not None and is_cluster_storage(target.path):
            logger.debug("Dropping cluster storage target %s on %s", target.path, target.host)
            continue
        if target.owner_host is None:
            result.append(target)
        else:
            result.append(
                ScanTarget(target.path, target.owner_host, skip_cluster_storage=True)
            )
    return result


def _contains(outer: ScanTarget, inner: ScanTarget) -> bool:
    owner_matches = (
        outer.owner_host is None
        or inner.owner_host is None
        or host_key(outer.owner_host) == host_key(inner.owner_host)
    )
    return owner_matches and is_under(inner.path, outer.path)
