"""Orphan search commands.

Provides commands to find orphaned virtual disks and VM metadata files,
and to show the managed files the search compares against.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer

from hvtools.cli.display import (
    create_failures_table,
    create_inventory_table,
    create_issues_table,
    create_orphans_table,
    failure_to_dict,
    inventory_to_dict,
    report_to_dict,
)
from hvtools.core.config import ConfigError, HvToolsConfig, load_config_or_default
from hvtools.core.winpath import MalformedPathError
from hvtools.orphans.finder import FinderError, FindRequest, OrphanFinder
from hvtools.orphans.models import OrphanReport
from hvtools.utils.formatting import (
    console,
    format_size,
    print_error,
    print_info,
    print_success,
    print_warning,
)

app = typer.Typer(
    help="Find orphaned virtual disks and VM files.",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        help="Config file to use instead of ~/.config/hvtools/config.toml.",
    ),
]

HostOption = Annotated[
    list[str] | None,
    typer.Option(
        "--host",
        "-H",
        help="Hyper-V host to check (repeatable). Defaults to configured hosts or localhost.",
    ),
]


@app.command()
def find(
    hosts: HostOption = None,
    paths: Annotated[
        list[str] | None,
        typer.Option(
            "--path",
            "-p",
            help="Directory to scan instead of the host paths (repeatable).",
        ),
    ] = None,
    include_default_paths: Annotated[
        bool,
        typer.Option(
            "--include-default-paths",
            help="With --path: also scan the default VM and disk paths.",
        ),
    ] = False,
    include_existing_vm_paths: Annotated[
        bool,
        typer.Option(
            "--include-existing-vm-paths",
            help="With --path: also scan the directories of registered VMs.",
        ),
    ] = False,
    exclude_default_paths: Annotated[
        bool,
        typer.Option(
            "--exclude-default-paths",
            help="Without --path: do not scan the default VM and disk paths.",
        ),
    ] = False,
    exclude_existing_vm_paths: Annotated[
        bool,
        typer.Option(
            "--exclude-existing-vm-paths",
            help="Without --path: do not scan the directories of registered VMs.",
        ),
    ] = False,
    ignore_cluster_membership: Annotated[
        bool,
        typer.Option(
            "--ignore-cluster-membership",
            help="Treat cluster nodes as standalone hosts and skip ClusterStorage.",
        ),
    ] = False,
    output_format: Annotated[
        OutputFormat,
        typer.Option(
            "--format",
            "-f",
            help="Output format: table or json.",
            case_sensitive=False,
        ),
    ] = OutputFormat.TABLE,
    export_path: Annotated[
        Path | None,
        typer.Option(
            "--export",
            "-e",
            help="Export the report to a JSON file.",
        ),
    ] = None,
    config_path: ConfigOption = None,
) -> None:
    """Find virtual disks and VM metadata no registered VM uses.

    Exits with code 1 if any host or path could not be checked, so an
    empty result always means "no orphans".

    Examples:
        hvtools orphans find                          # Configured hosts or localhost
        hvtools orphans find -H hv01 -H hv02          # Two hosts
        hvtools orphans find -H hv01 -p D:\\Old        # One directory only
        hvtools orphans find -p \\\\nas\\vms             # A share, read directly
        hvtools orphans find --format json            # Output as JSON
    """
    config = _load_config(config_path)

    try:
        request = FindRequest(
            hosts=tuple(hosts or ()),
            paths=tuple(paths or ()),
            include_default_paths=include_default_paths,
            include_existing_vm_paths=include_existing_vm_paths,
            exclude_default_paths=exclude_default_paths,
            exclude_existing_vm_paths=exclude_existing_vm_paths,
            ignore_cluster_membership=ignore_cluster_membership,
        )
        report = OrphanFinder(config).find(request)
    except (MalformedPathError, FinderError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    # Handle export (always JSON regardless of format option)
    if export_path is not None:
        _export_report(report, export_path)

    if output_format == OutputFormat.JSON:
        console.print_json(json.dumps(report_to_dict(report)))
    else:
        _print_report(report)

    if not report.complete:
        raise typer.Exit(code=1)


@app.command()
def inventory(
    hosts: HostOption = None,
    output_format: Annotated[
        OutputFormat,
        typer.Option(
            "--format",
            "-f",
            help="Output format: table or json.",
            case_sensitive=False,
        ),
    ] = OutputFormat.TABLE,
    config_path: ConfigOption = None,
) -> None:
    """Show the files each host's VMs use (nothing is scanned)."""
    config = _load_config(config_path)
    inventories, failures = OrphanFinder(config).inventory(tuple(hosts or ()))

    if output_format == OutputFormat.JSON:
        console.print_json(
            json.dumps(
                {
                    "inventories": [inventory_to_dict(inv) for inv in inventories],
                    "failures": [failure_to_dict(f) for f in failures],
                }
            )
        )
    else:
        for inv in inventories:
            console.print(create_inventory_table(inv))
            if inv.cluster is not None:
                print_info(
                    f"Cluster {inv.cluster.name}, primary node {inv.cluster.primary_node}"
                )
            if inv.issues:
                console.print(create_issues_table(list(inv.issues)))
        if failures:
            console.print(create_failures_table(failures))

    if failures:
        raise typer.Exit(code=1)


# === Private helper functions ===


def _load_config(config_path: Path | None) -> HvToolsConfig:
    try:
        return load_config_or_default(config_path)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e


def _print_report(report: OrphanReport) -> None:
    """Display orphans, failures and issues as Rich tables."""
    if report.issues:
        console.print(create_issues_table(list(report.issues)))
    if report.failures:
        console.print(create_failures_table(list(report.failures)))

    if not report.orphans:
        if report.complete:
            print_success("No orphaned files found.")
        else:
            print_warning("No orphaned files found, but some locations could not be checked.")
        return

    console.print(create_orphans_table(list(report.orphans)))
    total_size = sum(o.size_bytes or 0 for o in report.orphans)
    console.print(
        f"\n[dim]Found {len(report.orphans)} orphaned files "
        f"({format_size(total_size)} total) in {len(report.targets)} locations[/dim]"
    )
    if not report.complete:
        print_warning(f"{len(report.failures)} location(s) could not be checked.")


def _export_report(report: OrphanReport, export_path: Path) -> None:
    """Export the report to a JSON file."""
    export_path = export_path.resolve()
    if export_path.is_dir():
        print_error(f"Export path is a directory: {export_path}")
        raise typer.Exit(code=1)

    try:
        export_path.parent.mkdir(parents=True, exist_ok=True)
        export_path.write_text(json.dumps(report_to_dict(report), indent=2))
        print_info(f"Report exported to {export_path}")
    except OSError as e:
        print_error(f"Failed to export: {e}")
        raise typer.Exit(code=1) from e
