"""
OFP Extractor CLI

Command-line interface for unpacking OFP/OPS firmware containers.
"""

import sys
import logging
import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from ofp_extractor.config import DEFAULT_DECRYPT_CHUNK
from ofp_extractor.container import ContainerKind, parse_container_kind
from ofp_extractor.core.results import OperationResult
from ofp_extractor.core.actions import (
    extract_firmware as core_extract_firmware,
    inspect_container as core_inspect_container,
    read_manifest as core_read_manifest,
)
from ofp_extractor.models import list_keysets, FALLBACK_KEYSET
from ofp_extractor.utils.ops_cipher import MBOXES

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
)
logger = logging.getLogger("ofp_extractor")

# Setup Rich console
console = Console()

app = typer.Typer(help="OFP Extractor - unpack OFP/OPS firmware containers")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_result_messages(result: OperationResult) -> None:
    """Print warnings and errors collected in an OperationResult."""
    for warn in result.warnings:
        print_warning(warn)
    for err in result.errors:
        print_error(err)


def parse_int(value: Optional[str], label: str) -> Optional[int]:
    """Parse an integer from string (supports decimal and hex)."""
    if value is None:
        return None
    value = value.strip()
    try:
        if value.lower().startswith("0x"):
            return int(value, 16)
        return int(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid {label}: {value}")


def parse_format(value: Optional[str]) -> Optional[ContainerKind]:
    """
    Parse the --format option.

    CLI wrapper around container.parse_container_kind that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return parse_container_kind(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def set_verbose(verbose: bool) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def emit_json(payload: dict) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def entries_table(entries: list, title: str = "Manifest Entries") -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Path", style="cyan")
    table.add_column("Section", style="magenta")
    table.add_column("Offset", style="yellow")
    table.add_column("Length", style="green")
    table.add_column("Action", style="blue")
    for i, entry in enumerate(entries, 1):
        table.add_row(
            str(i),
            entry["path"],
            entry["section"],
            f"0x{entry['offset']:X}",
            f"{entry['length']:,}",
            entry["action"],
        )
    return table


@app.command()
def extract(
    input_file: Path = typer.Argument(..., help="OFP/OPS/ZIP container"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output directory (default: ./extract next to input)"),
    fmt: Optional[str] = typer.Option("auto", "--format", "-f", help="Container format: auto, ofp, ops, zip"),
    chunk_size: Optional[str] = typer.Option(None, "--chunk-size", help=f"Decrypted prefix per entry (default 0x{DEFAULT_DECRYPT_CHUNK:X})"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show key probing details"),
) -> None:
    """
    Extract every file described by the container manifest.

    The output directory is deleted and recreated on every run.
    """
    set_verbose(verbose)
    kind = parse_format(fmt)
    chunk = parse_int(chunk_size, "chunk size")
    if chunk is None:
        chunk = DEFAULT_DECRYPT_CHUNK
    if chunk <= 0:
        raise typer.BadParameter(f"Invalid chunk size: {chunk_size}")

    if not output_json:
        print_header(f"Extracting {input_file.name}")

    result = core_extract_firmware(
        str(input_file),
        output_dir=str(output) if output else None,
        kind=kind,
        decrypt_chunk_size=chunk,
    )

    if output_json:
        emit_json(result.to_dict())
        if not result.ok:
            raise typer.Exit(code=1)
        return

    print_result_messages(result)
    if not result.ok:
        print_error("Extraction failed")
        raise typer.Exit(code=1)

    if result.key:
        console.print(f"Key: [cyan]{result.key}[/cyan]")
    if result.page_size:
        console.print(f"Page size: 0x{result.page_size:X}")
    print_success(f"Extracted {result.files_written} files to {result.output_dir}")


@app.command()
def info(
    input_file: Path = typer.Argument(..., help="OFP/OPS/ZIP container"),
    fmt: Optional[str] = typer.Option("auto", "--format", "-f", help="Container format: auto, ofp, ops, zip"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show key probing details"),
) -> None:
    """Identify a container and list its manifest without extracting."""
    set_verbose(verbose)
    kind = parse_format(fmt)
    result = core_inspect_container(str(input_file), kind=kind)

    if output_json:
        emit_json(result.to_dict())
        if not result.ok:
            raise typer.Exit(code=1)
        return

    print_header(f"Container: {input_file.name}")
    print_result_messages(result)
    if not result.ok:
        raise typer.Exit(code=1)

    table = Table(title="Container")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Format", result.kind)
    table.add_row("Size", f"{result.metadata['size']:,} bytes")
    if result.page_size:
        table.add_row("Page Size", f"0x{result.page_size:X}")
        table.add_row("Manifest Offset", f"0x{result.metadata['manifest_offset']:X}")
        table.add_row("Manifest Length", str(result.metadata["manifest_length"]))
        table.add_row("Key", str(result.key))
    console.print(table)

    if "entries" in result.metadata:
        console.print(entries_table(result.metadata["entries"]))
    elif "members" in result.metadata:
        members = Table(title="ZIP Members")
        members.add_column("Path", style="cyan")
        members.add_column("Length", style="green")
        members.add_column("Encrypted", style="red")
        for member in result.metadata["members"]:
            members.add_row(member["path"], f"{member['length']:,}", "Yes" if member["encrypted"] else "No")
        console.print(members)


@app.command()
def manifest(
    input_file: Path = typer.Argument(..., help="OFP/OPS container"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write manifest to file instead of stdout"),
    fmt: Optional[str] = typer.Option("auto", "--format", "-f", help="Container format: auto, ofp, ops"),
) -> None:
    """Decrypt and print (or save) the container manifest."""
    kind = parse_format(fmt)
    result = core_read_manifest(str(input_file), kind=kind)
    if not result.ok:
        print_result_messages(result)
        raise typer.Exit(code=1)

    xml = result.metadata["xml"]
    if output:
        output.write_bytes(xml.encode("utf-8"))
        print_success(f"Saved manifest ({result.key}) to {output}")
    else:
        typer.echo(xml)


@app.command()
def keysets() -> None:
    """List known OFP key sets and OPS mbox variants in resolution order."""
    print_header("Known Keys")

    table = Table(title="OFP Key Sets")
    table.add_column("#", style="dim")
    table.add_column("Version", style="cyan")
    table.add_column("MC", style="yellow")
    table.add_column("Key", style="green")
    table.add_column("IV", style="magenta")
    for i, keyset in enumerate(list_keysets(), 1):
        derived = keyset.derive()
        table.add_row(str(i), keyset.version, keyset.mc, derived.key.decode("ascii"), derived.iv.decode("ascii"))
    fallback = FALLBACK_KEYSET.derive()
    table.add_row("-", FALLBACK_KEYSET.version, FALLBACK_KEYSET.key3, fallback.key.decode("ascii"), fallback.iv.decode("ascii"))
    console.print(table)

    table2 = Table(title="OPS Mbox Variants")
    table2.add_column("#", style="dim")
    table2.add_column("Name", style="cyan")
    table2.add_column("Words 0-3", style="yellow")
    table2.add_column("Rounds", style="green")
    for i, mbox in enumerate(MBOXES, 1):
        table2.add_row(str(i), mbox.name, " ".join(f"{w:08X}" for w in mbox.words[:4]), str(mbox.rounds))
    console.print(table2)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
