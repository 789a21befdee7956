"""Virtual disk inspection commands.

Reads VHD/VHDX headers of local files to show their differencing parents.
"""

from pathlib import Path
from typing import Annotated

import typer
from rich.text import Text

from hvtools.disks.chain import ChainError, CyclicChainError, walk_chain
from hvtools.disks.header import DiskHeaderError, parse_parent
from hvtools.utils.formatting import console, create_table, print_error, print_info

app = typer.Typer(
    help="Inspect virtual disk headers.",
    no_args_is_help=True,
)

DiskArgument = Annotated[
    Path,
    typer.Argument(help="Virtual disk file (.vhd, .vhdx, .avhd, .avhdx)."),
]


@app.command()
def parent(path: DiskArgument) -> None:
    """Show the format and parent of a virtual disk."""
    try:
        header = parse_parent(path)
    except DiskHeaderError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    console.print(Text(f"Format: {header.format_kind.value}"))
    if header.is_differencing:
        console.print(Text(f"Parent: {header.parent_path}"))
    else:
        print_info("Not a differencing disk.")


@app.command()
def chain(path: DiskArgument) -> None:
    """Show the complete differencing chain of a virtual disk.

    Parent paths are opened as they are written in each disk, so the
    chain can only be followed on the machine the disks belong to.
    """
    try:
        ancestors = walk_chain(str(path))
    except ChainError as e:
        _print_chain(str(path), e.ancestors)
        label = "Cycle" if isinstance(e, CyclicChainError) else "Broken chain"
        print_error(f"{label}: {e}")
        raise typer.Exit(code=1) from e

    if not ancestors:
        print_info("Not a differencing disk.")
        return
    _print_chain(str(path), ancestors)


def _print_chain(path: str, ancestors: list[str]) -> None:
    table = create_table("Differencing Chain", "Depth", "Disk")
    table.add_row("0", Text(path))
    for depth, ancestor in enumerate(ancestors, start=1):
        table.add_row(str(depth), Text(ancestor))
    console.print(table)
