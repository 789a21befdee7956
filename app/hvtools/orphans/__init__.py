"""Orphaned VM file detection module.

This module collects per-host inventories of managed files, resolves
cluster-aware scan targets and reports virtual disks and VM metadata that
no registered VM, checkpoint or differencing chain refers to.
"""

from hvtools.orphans.finder import (
    FinderError,
    FindRequest,
    InvalidRequestError,
    NoScanTargetsError,
    OrphanFinder,
)
from hvtools.orphans.inventory import collect_inventory
from hvtools.orphans.models import (
    ClusterMembership,
    ExclusionSet,
    FailureReason,
    FileKind,
    HostInventory,
    InventoryIssue,
    IssueKind,
    ManagedFileReference,
    OrphanedFile,
    OrphanReport,
    ScanFailure,
    ScanTarget,
)
from hvtools.orphans.reconciler import PathReconciler, TargetScanResult

__all__ = [
    "ClusterMembership",
    "ExclusionSet",
    "FailureReason",
    "FileKind",
    "FindRequest",
    "FinderError",
    "HostInventory",
    "InvalidRequestError",
    "InventoryIssue",
    "IssueKind",
    "ManagedFileReference",
    "NoScanTargetsError",
    "OrphanFinder",
    "OrphanReport",
    "OrphanedFile",
    "PathReconciler",
    "ScanFailure",
    "ScanTarget",
    "TargetScanResult",
    "collect_inventory",
]
