"""
mesh-flasher CLI

Command-line interface for resolving and flashing mesh radio firmware.
"""

import sys
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from mesh_flasher import __version__
from mesh_flasher.catalog import (
    DeviceDescriptor,
    FirmwareDescriptor,
    PartitionScheme,
    TargetSelector,
    load_device_catalog,
    load_firmware,
)
from mesh_flasher.config import FlasherSettings
from mesh_flasher.core.actions import fetch_artifact, flash_target, plan_flash
from mesh_flasher.core.messages import MessageLevel, WarningCode, WarningItem, result_to_warnings
from mesh_flasher.core.parsing import parse_partition_scheme as _parse_partition_scheme_core
from mesh_flasher.core.results import OperationResult
from mesh_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    WritePermissionError,
    create_cli_safety_context,
    require_write_permission,
)
from mesh_flasher.errors import DeviceError
from mesh_flasher.flash.layout import APP_OFFSET, resolve_partition_layout
from mesh_flasher.flash.request import FlashRequest
from mesh_flasher.protocol.serial_transport import list_serial_ports, touch_1200bps

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("mesh_flasher")

console = Console()

app = typer.Typer(help="📡 mesh-flasher - Firmware flashing for mesh radio devices")


@app.callback()
def _root(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)


def print_header(text: str) -> None:
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = True) -> None:
    """Print a structured warning with its remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_result(result: OperationResult) -> None:
    """Print placements, warnings and errors of a result."""
    if result.placements:
        table = Table(title="Flash Plan")
        table.add_column("Placement", style="cyan")
        for line in result.placements:
            table.add_row(line)
        console.print(table)

    for warning in result_to_warnings(result):
        print_structured_warning(warning)

    if result.ok:
        print_success(f"{result.operation} complete ({result.bytes_len:,} bytes)")


def parse_partition_scheme(value: Optional[str]) -> PartitionScheme:
    """
    CLI wrapper around core.parsing.parse_partition_scheme that converts
    ValueError to typer.BadParameter.
    """
    try:
        return _parse_partition_scheme_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def load_targets(catalog: Path) -> List[DeviceDescriptor]:
    if not catalog.exists():
        print_error(f"Catalog not found: {catalog}")
        raise typer.Exit(1)
    return load_device_catalog(catalog)


def find_target(catalog: Path, name: str, vendor_tag: str = "") -> DeviceDescriptor:
    target = TargetSelector(load_targets(catalog), vendor_tag).find(name)
    if target is None:
        print_error(f"Unknown target: {name}")
        console.print("Use [cyan]list-targets[/cyan] to see supported targets.")
        raise typer.Exit(1)
    return target


def load_firmware_option(path: Optional[Path]) -> Optional[FirmwareDescriptor]:
    if path is None:
        return None
    if not path.exists():
        print_error(f"Firmware descriptor not found: {path}")
        raise typer.Exit(1)
    try:
        return load_firmware(path)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list_serial_ports()
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")
    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")
    console.print(table)


@app.command("list-targets")
def list_targets(
    catalog: Path = typer.Option(..., "--catalog", "-c", help="Hardware list JSON"),
    tag: Optional[str] = typer.Option(None, "--tag", "-t", help="Filter by tag or architecture"),
    vendor_tag: str = typer.Option("", "--vendor-tag", help="Only targets carrying this tag"),
    show_tags: bool = typer.Option(False, "--tags", help="List available tags instead"),
    show_all: bool = typer.Option(False, "--all", help="Include targets no longer actively supported"),
) -> None:
    """List supported hardware targets."""
    settings = FlasherSettings().with_overrides(vendor_tag=vendor_tag)
    all_targets = load_targets(catalog)
    selector = TargetSelector(all_targets, settings.vendor_tag)
    if show_all:
        selector.targets = list(all_targets)

    if show_tags:
        print_header("Tags")
        console.print(", ".join(selector.all_tags) or "-")
        console.print(f"Architectures: {', '.join(selector.all_architectures) or '-'}")
        return

    if tag:
        selector.select_tag(tag)

    targets = selector.sorted_targets
    print_header(f"Hardware Targets ({len(targets)})")
    if not targets:
        print_warning("No targets match")
        return

    table = Table()
    table.add_column("Name", style="cyan")
    table.add_column("Target", style="green")
    table.add_column("Architecture", style="magenta")
    table.add_column("Level", style="yellow")
    table.add_column("Tags")
    for target in targets:
        table.add_row(
            target.name,
            target.platformio_target,
            target.architecture,
            str(target.support_level),
            ", ".join(target.tags),
        )
    console.print(table)


@app.command("show-target")
def show_target(
    name: str = typer.Argument(..., help="Slug, build target or model id"),
    catalog: Path = typer.Option(..., "--catalog", "-c", help="Hardware list JSON"),
) -> None:
    """Show details of one hardware target."""
    target = find_target(catalog, name)
    print_header(target.name)

    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in target.to_dict().items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "-"
        table.add_row(key, str(value))
    console.print(table)

    method = "UF2 image" if FlashRequest(target).is_uf2 else "serial (esptool)"
    console.print(f"Flash method: [green]{method}[/green]")


@app.command()
def layout(
    scheme: str = typer.Option("default", "--scheme", "-s", help="default, 8MB or 16MB"),
    display: bool = typer.Option(False, "--display/--no-display", help="Target has the display UI"),
    version: str = typer.Option("", "--version", help="Firmware version (e.g. 2.7.1)"),
) -> None:
    """Show partition offsets for a scheme."""
    parsed = parse_partition_scheme(scheme)
    result = resolve_partition_layout(parsed, display, version)

    table = Table(title=f"Partition Layout ({parsed.value})")
    table.add_column("Partition", style="cyan")
    table.add_column("Offset", style="green")
    table.add_row("factory", "0x000000")
    table.add_row("app (update)", f"0x{APP_OFFSET:06X}")
    table.add_row("OTA loader", f"0x{result.ota_offset:06X}")
    table.add_row("filesystem", f"0x{result.filesystem_offset:06X}")
    console.print(table)


@app.command()
def fetch(
    name: str = typer.Argument(..., help="Logical file name or pattern"),
    firmware: Optional[Path] = typer.Option(None, "--firmware", "-f", help="Firmware descriptor JSON"),
    file: Optional[Path] = typer.Option(None, "--file", help="Uploaded archive or image"),
    out: Path = typer.Option(Path("."), "--out", "-o", help="Output file or directory"),
    mirror: Optional[str] = typer.Option(None, "--mirror", help="Unpacked archive mirror URL"),
) -> None:
    """Resolve one firmware file and save it."""
    settings = FlasherSettings().with_overrides(archive_mirror=mirror)
    result = fetch_artifact(load_firmware_option(firmware), name, out, file, settings)
    print_result(result)
    if not result.ok:
        raise typer.Exit(1)
    console.print(f"Saved to {result.metadata['saved_path']}")


@app.command()
def flash(
    target_name: str = typer.Option(..., "--target", "-t", help="Slug, build target or model id"),
    catalog: Path = typer.Option(..., "--catalog", "-c", help="Hardware list JSON"),
    firmware: Optional[Path] = typer.Option(None, "--firmware", "-f", help="Firmware descriptor JSON"),
    file: Optional[Path] = typer.Option(None, "--file", help="Firmware archive (.zip) or image"),
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial port (ESP32 targets)"),
    clean: bool = typer.Option(False, "--clean", help="Clean install: erase and write all partitions"),
    scheme: str = typer.Option("default", "--scheme", "-s", help="Partition scheme: default, 8MB, 16MB"),
    baud: Optional[int] = typer.Option(None, "--baud", "-b", help="Serial baud rate"),
    mirror: Optional[str] = typer.Option(None, "--mirror", help="Unpacked archive mirror URL"),
    download_dir: Optional[Path] = typer.Option(None, "--download-dir", help="Where UF2 images are saved"),
    uf2_drive: Optional[Path] = typer.Option(None, "--uf2-drive", help="Bootloader drive to copy UF2 onto"),
    find_drive: bool = typer.Option(False, "--find-drive", help="Copy UF2 onto a detected bootloader drive"),
    monitor: bool = typer.Option(False, "--monitor", help="Show device output after flashing (Ctrl-C ends it)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve files and offsets only"),
    write: bool = typer.Option(False, "--write", help="Required flag to actually flash the device"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help=f"Non-interactive confirmation token (must be '{CONFIRMATION_TOKEN}')",
    ),
) -> None:
    """
    Flash firmware onto a target.

    ESP32 targets are written over serial (update, or --clean install).
    nRF52/RP2040 targets get a UF2 image saved (and optionally copied to
    the bootloader drive).
    """
    target = find_target(catalog, target_name)
    fw = load_firmware_option(firmware)
    if fw is None and file is None:
        print_error("Provide --firmware or --file")
        raise typer.Exit(1)

    settings = FlasherSettings().with_overrides(
        baud_rate=baud, archive_mirror=mirror, download_dir=download_dir
    )
    request = FlashRequest(
        target=target,
        firmware=fw,
        uploaded_file=file,
        clean_install=clean,
        scheme=parse_partition_scheme(scheme),
    )

    print_header(f"Flash {target.name}")
    console.print(f"Firmware: {fw.id if fw else file}")
    console.print(f"Files: {', '.join(request.artifact_names())}")
    if port:
        console.print(f"Port: {port}")

    if dry_run:
        result = plan_flash(request, settings)
        print_result(result)
        if not result.ok:
            raise typer.Exit(1)
        return

    ctx = create_cli_safety_context(
        write_flag=write,
        target_name=target.name,
        erase_all=clean and not request.is_uf2,
        confirmation_token=confirm,
    )

    def show_details(details: dict) -> None:
        warnings = "".join(f"\n[yellow]⚠️  {w}[/yellow]" for w in details.get("warnings", []))
        console.print(Panel(
            f"[bold yellow]⚠️  FLASH CONFIRMATION REQUIRED[/bold yellow]\n\n"
            f"Target:  {details.get('target', 'Unknown')}\n"
            f"Files:   {details.get('placements', '')}"
            f"{warnings}\n"
            f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
            title="Firmware Flash",
            expand=False,
        ))

    ctx.show_details = show_details
    ctx.prompt_confirmation = lambda text: typer.prompt("Confirm")

    # Confirm before the progress display owns the terminal
    try:
        require_write_permission(ctx, placements_desc=", ".join(request.artifact_names()))
    except WritePermissionError as e:
        code = WarningCode.W_CONFIRMATION_REQUIRED if ctx.write_enabled else WarningCode.W_WRITE_DISABLED
        print_structured_warning(WarningItem.error(code, e.reason))
        raise typer.Exit(1)
    ctx.confirmation_token = CONFIRMATION_TOKEN

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        names = request.artifact_names()
        tasks: Dict[int, int] = {}

        def on_progress(index: int, written: int, total: int) -> None:
            if index not in tasks:
                label = names[index] if index < len(names) else f"file {index + 1}"
                tasks[index] = progress.add_task(f"Writing {label}", total=total or 1)
            progress.update(tasks[index], completed=written, total=total or 1)

        def on_output(text: str) -> None:
            progress.console.print(text, end="", markup=False, highlight=False)

        result = flash_target(
            request,
            port,
            ctx,
            settings=settings,
            on_progress=on_progress,
            monitor=on_output if monitor else None,
            uf2_drive=uf2_drive,
            copy_to_uf2_drive=find_drive,
            stop_on_interrupt=monitor,
        )

    print_result(result)
    if not result.ok:
        raise typer.Exit(1)
    if result.metadata.get("copied_to"):
        print_success(f"Copied to {result.metadata['copied_to']}")


@app.command("touch-1200")
def touch_1200(
    port: str = typer.Argument(..., help="Serial port of the device"),
) -> None:
    """Reboot an nRF52/RP2040 device into its UF2 bootloader."""
    try:
        touch_1200bps(port)
    except DeviceError as e:
        print_error(str(e))
        raise typer.Exit(1)
    print_success(f"Bootloader requested on {port}; the UF2 drive should appear shortly")


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"mesh-flasher {__version__}")


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
