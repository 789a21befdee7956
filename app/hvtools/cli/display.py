"""Shared Rich display functions for orphan reports and inventories.

Provides table builders and JSON conversion for the orphans commands.
Paths are passed to Rich as Text so brackets in file names are never
read as markup.
"""

from typing import Any

from rich.table import Table
from rich.text import Text

from hvtools.orphans.models import (
    FileKind,
    HostInventory,
    InventoryIssue,
    OrphanedFile,
    OrphanReport,
    ScanFailure,
)
from hvtools.utils.formatting import create_table, format_size

SHARED_LABEL = "(shared)"

_KIND_STYLES: dict[FileKind, str] = {
    FileKind.DISK: "disk",
    FileKind.METADATA: "metadata",
    FileKind.SHARED_METADATA: "shared",
    FileKind.DIRECTORY_ROOT: "muted",
}


def host_label(host: str | None) -> Text:
    """Host column text; shared storage has no host."""
    if host is None:
        return Text(SHARED_LABEL, style="shared")
    return Text(host)


def create_orphans_table(orphans: list[OrphanedFile]) -> Table:
    """Create a Rich table of orphaned files.

    Args:
        orphans: Orphaned files, already sorted.

    Returns:
        Rich Table with Host, Kind, Path, Size and Modified columns.
    """
    table = create_table("Orphaned Files", "Host", "Kind", "Path", "Size", "Modified")
    table.columns[3].justify = "right"

    for orphan in orphans:
        table.add_row(
            host_label(orphan.owning_host),
            Text(orphan.kind.value, style=_KIND_STYLES[orphan.kind]),
            Text(orphan.path),
            format_size(orphan.size_bytes) if orphan.size_bytes is not None else "-",
            orphan.mtime[:19].replace("T", " ") if orphan.mtime else "-",
        )
    return table


def create_failures_table(failures: list[ScanFailure]) -> Table:
    """Create a Rich table of hosts and paths that could not be checked."""
    table = create_table("Not Checked", "Host", "Path", "Reason", "Details")
    for failure in failures:
        table.add_row(
            host_label(failure.host),
            Text(failure.path or "-"),
            Text(failure.reason.value, style="error"),
            Text(failure.message, style="muted"),
        )
    return table


def create_issues_table(issues: list[InventoryIssue]) -> Table:
    """Create a Rich table of non-fatal inventory issues."""
    table = create_table("Inventory Issues", "Host", "Path", "Issue", "Details")
    for issue in issues:
        table.add_row(
            host_label(issue.host),
            Text(issue.path),
            Text(issue.kind.value, style="warning"),
            Text(issue.message, style="muted"),
        )
    return table


def create_inventory_table(inventory: HostInventory) -> Table:
    """Create a Rich table of one host's managed files."""
    table = create_table(f"Managed Files on {inventory.host}", "VM", "Kind", "Path", "Owner")
    for ref in inventory.references:
        path = ref.path if ref.identifier is None else f"{ref.path} [{ref.identifier}]"
        table.add_row(
            Text(ref.vm_name or "-"),
            Text(ref.kind.value, style=_KIND_STYLES[ref.kind]),
            Text(path),
            host_label(ref.owning_host),
        )
    return table


def report_to_dict(report: OrphanReport) -> dict[str, Any]:
    """Convert an OrphanReport to a JSON-serializable dictionary."""
    return {
        "complete": report.complete,
        "orphans": [
            {
                "path": o.path,
                "owning_host": o.owning_host,
                "kind": o.kind.value,
                "size_bytes": o.size_bytes,
                "mtime": o.mtime,
                "target": o.target,
            }
            for o in report.orphans
        ],
        "failures": [failure_to_dict(f) for f in report.failures],
        "issues": [
            {
                "host": i.host,
                "path": i.path,
                "kind": i.kind.value,
                "message": i.message,
                "ancestors": list(i.ancestors),
            }
            for i in report.issues
        ],
        "targets": [
            {
                "path": t.path,
                "owner_host": t.owner_host,
                "skip_cluster_storage": t.skip_cluster_storage,
            }
            for t in report.targets
        ],
    }


def failure_to_dict(failure: ScanFailure) -> dict[str, Any]:
    """Convert a ScanFailure to a JSON-serializable dictionary."""
    return {
        "path": failure.path,
        "host": failure.host,
        "reason": failure.reason.value,
        "message": failure.message,
    }


def inventory_to_dict(inventory: HostInventory) -> dict[str, Any]:
    """Convert a HostInventory to a JSON-serializable dictionary."""
    cluster = inventory.cluster
    return {
        "host": inventory.host,
        "cluster": (
            {
                "name": cluster.name,
                "primary_node": cluster.primary_node,
                "members": list(cluster.members),
            }
            if cluster
            else None
        ),
        "targets": [
            {"path": t.path, "owner_host": t.owner_host} for t in inventory.targets
        ],
        "references": [
            {
                "path": r.path,
                "owning_host": r.owning_host,
                "kind": r.kind.value,
                "vm_name": r.vm_name,
                "identifier": r.identifier,
            }
            for r in inventory.references
        ],
        "issues": [
            {"path": i.path, "kind": i.kind.value, "message": i.message}
            for i in inventory.issues
        ],
    }
