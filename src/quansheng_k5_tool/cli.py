"""
Quansheng K5 Tool CLI

Command-line interface for reading and writing UV-K5 radios: calibration,
battery, settings, channels, EEPROM dumps and firmware flashing.
"""

import sys
import logging
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn
from serial.tools import list_ports

from quansheng_k5_tool import __version__
from quansheng_k5_tool.protocol import K5SerialTransport, K5Session
from quansheng_k5_tool.protocol.commands import format_hex
from quansheng_k5_tool.record_codec import CalibrationData, DeviceInfo, validate_channels
from quansheng_k5_tool.exporters import (
    export_channels,
    import_channels,
    load_calibration,
    load_full_calibration,
    save_calibration,
    save_full_calibration,
)
from quansheng_k5_tool.core.parsing import parse_address, parse_hex
from quansheng_k5_tool.core.safety import (
    SafetyContext,
    require_write_permission,
    WritePermissionError,
    CONFIRMATION_TOKEN,
    create_cli_safety_context,
)
from quansheng_k5_tool.core.results import OperationResult
from quansheng_k5_tool.core import actions
from quansheng_k5_tool.core.messages import (
    WarningItem,
    MessageLevel,
    result_to_warnings,
)
from quansheng_k5_tool.models import (
    VOLTAGE_PROFILES,
    ModelConfig,
    get_model,
    get_voltage_profile,
    list_models as registry_list_models,
)

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("quansheng_k5_tool")

# Setup Rich console
console = Console()

app = typer.Typer(help="📻 Quansheng UV-K5 programming tool")

PORT_OPTION = typer.Option(..., "--port", "-p", help="Serial port (e.g., /dev/ttyUSB0, COM3)")
MODEL_OPTION = typer.Option("UV-K5", "--model", "-m", help="Radio model")
WRITE_OPTION = typer.Option(False, "--write", help="Actually write to the radio")
CONFIRM_OPTION = typer.Option(None, "--confirm", help=f"Non-interactive confirmation token ({CONFIRMATION_TOKEN})")
DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Simulate: nothing is sent to the radio")

_state = {"verbose": False}


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol debug output"),
) -> None:
    """Global options."""
    _state["verbose"] = verbose
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)


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


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARNING:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings from an OperationResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def finish(result: OperationResult, success_text: Optional[str] = None) -> None:
    """Print warnings and errors of a result; exit 1 if it failed."""
    print_warnings_from_result(result, verbose=True)
    if _state["verbose"]:
        console.print(result.to_summary(), style="dim", markup=False)
        if result.logs:
            console.print("[dim]" + "\n".join(result.logs) + "[/dim]")
    if not result.ok:
        print_error(f"{result.operation} failed")
        sys.exit(1)
    print_success(success_text or f"{result.operation} complete")


def resolve_model(name: str) -> ModelConfig:
    model = get_model(name)
    if model is None:
        print_error(f"Unknown model '{name}'. Known models: {', '.join(registry_list_models())}")
        sys.exit(1)
    return model


def open_session(port: str, model: ModelConfig, voltage_profile: Optional[str] = None) -> K5Session:
    """Create a session on ``port``; the caller enters it to open the port."""
    profile = get_voltage_profile(voltage_profile) if voltage_profile else None
    transport = K5SerialTransport(port, baudrate=model.baud_rate)
    return K5Session(transport, model=model, voltage_profile=profile)


@contextmanager
def radio(port: str, model: ModelConfig, voltage_profile: Optional[str] = None) -> Iterator[K5Session]:
    """Open a session, turning connection errors into a clean exit."""
    try:
        session = open_session(port, model, voltage_profile)
        session.__enter__()
    except Exception as e:
        print_error(f"Cannot connect on {port}: {e}")
        sys.exit(1)
    try:
        yield session
    finally:
        session.close()


@contextmanager
def progress_bar(description: str) -> Iterator:
    """Rich progress bar; yields a callback taking a 0.0-1.0 fraction."""
    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task(description, total=100)
        yield lambda fraction: progress.update(task, completed=fraction * 100)


def show_write_details(details: dict) -> None:
    console.print()
    console.print(Panel(
        f"[bold yellow]⚠️  WRITE CONFIRMATION REQUIRED[/bold yellow]\n\n"
        f"Model:         {details.get('model', 'Unknown')}\n"
        f"Target:        {details.get('target_region', 'Unknown')}\n"
        f"Bytes:         {details.get('bytes_length', 0):,}\n"
        + (f"Address:       {details['address']}\n" if details.get('address') else "") +
        f"\n[bold]Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort:[/bold]",
        title="Radio Write Operation",
        expand=False,
    ))


def confirm_write(
    write_flag: bool,
    confirm_token: Optional[str],
    dry_run: bool,
    model: ModelConfig,
    target_region: str,
    bytes_length: int,
    address: Optional[int] = None,
) -> SafetyContext:
    """
    Require --write plus typed (or --confirm) confirmation before a radio write.

    Runs before the port is opened. On success returns a pre-confirmed
    context for the core action, so the user is only asked once.
    """
    ctx = create_cli_safety_context(
        write_flag,
        model=model.display_name,
        simulate=dry_run,
        confirmation_token=confirm_token,
    )
    if ctx.interactive:
        ctx.show_details = show_write_details
        ctx.prompt_confirmation = lambda text: typer.prompt("Confirm")

    try:
        require_write_permission(ctx, target_region=target_region, bytes_length=bytes_length, address=address)
    except WritePermissionError as e:
        print_error(e.reason)
        if not write_flag:
            console.print("This is a safety measure to prevent accidental writes to your radio.")
            console.print(f"Re-run with --write (and --confirm {CONFIRMATION_TOKEN} for scripts) to proceed,")
            console.print("or with --dry-run to simulate.")
        elif confirm_token is None and not sys.stdin.isatty():
            console.print(f"[bold]For scripted/non-interactive use, provide:[/bold] --write --confirm {CONFIRMATION_TOKEN}")
        sys.exit(1)

    if dry_run:
        print_warning("Dry run: nothing will be written")
    else:
        print_success("Confirmation accepted. Proceeding with write...")
    return SafetyContext(
        write_enabled=True,
        confirmation_token=CONFIRMATION_TOKEN,
        interactive=False,
        model=ctx.model,
        simulate=dry_run,
    )


def metadata_table(title: str, result: OperationResult) -> Table:
    table = Table(title=title)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    for name, value in result.metadata.items():
        table.add_row(str(name), str(value))
    return table


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    ports_list = list(list_ports.comports())
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


@app.command()
def models() -> None:
    """List supported models and the memory map."""
    print_header("Supported Radio Models")

    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Baud", style="magenta")
    table.add_column("Aliases", style="green")
    table.add_column("Battery Profile", style="yellow")
    for name in registry_list_models():
        model = get_model(name)
        table.add_row(model.display_name, str(model.baud_rate), ", ".join(model.aliases) or "-",
                      model.voltage_profile.name)
    console.print(table)

    regions = Table(title="Memory Map")
    regions.add_column("Region", style="cyan")
    regions.add_column("Address", style="magenta")
    regions.add_column("Size", style="green")
    regions.add_column("Access", style="yellow")
    regions.add_column("Description")
    for region in get_model().memory_map.regions.values():
        regions.add_row(region.name, f"0x{region.address:04X}-0x{region.end_addr - 1:04X}", f"{region.length} B",
                        "rw" if region.writable else "ro", region.description)
    console.print(regions)


@app.command()
def version() -> None:
    """Show the tool version."""
    console.print(f"k5-tool {__version__}")


# ---------------------------------------------------------------------------
# Read-only commands
# ---------------------------------------------------------------------------

@app.command("test")
def test_link(port: str = PORT_OPTION, model: str = MODEL_OPTION) -> None:
    """Check the radio answers on the serial port."""
    print_header("Connection Test")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.test_connection(session)
    console.print(metadata_table("Link", result))
    finish(result, "Radio is responding")


@app.command()
def info(port: str = PORT_OPTION, model: str = MODEL_OPTION) -> None:
    """Read firmware, bootloader and battery information."""
    print_header("Device Information")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_device_info(session)
    if result.ok:
        device: DeviceInfo = result.data
        table = Table(title="Radio Information")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Model", device.model)
        table.add_row("Firmware", device.firmware_version)
        table.add_row("Bootloader", device.bootloader_version)
        table.add_row("Battery", f"{device.battery_voltage:.2f} V")
        console.print(table)
    finish(result)


@app.command()
def battery(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    voltage_profile: Optional[str] = typer.Option(
        None, "--voltage-profile", help=f"Battery profile: {', '.join(VOLTAGE_PROFILES)}"
    ),
) -> None:
    """Read the live battery voltage."""
    print_header("Battery Voltage")
    config = resolve_model(model)
    if voltage_profile is not None and voltage_profile.lower() not in VOLTAGE_PROFILES:
        raise typer.BadParameter(f"Unknown voltage profile '{voltage_profile}'", param_hint="--voltage-profile")
    with radio(port, config, voltage_profile) as session:
        result = actions.read_battery(session)
    console.print(metadata_table("Battery", result))
    finish(result, f"Battery: {result.data:.3f} V" if result.ok else None)


@app.command("read-calibration")
def read_calibration(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save to .json or .bin"),
) -> None:
    """Read the battery calibration block."""
    print_header("Read Battery Calibration")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_battery_calibration(session)
    console.print(metadata_table("Battery Calibration", result))
    if result.ok and output:
        path = save_calibration(output, result.data, DeviceInfo(model=config.display_name))
        print_success(f"Calibration saved to {path}")
    finish(result)


@app.command("write-calibration")
def write_calibration(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    input_file: Optional[str] = typer.Option(None, "--in", "-i", help="Calibration .json or .bin file"),
    hex_data: Optional[str] = typer.Option(None, "--hex", help="Calibration bytes as hex"),
    write: bool = WRITE_OPTION,
    confirm: Optional[str] = CONFIRM_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Write the battery calibration block."""
    print_header("Write Battery Calibration")
    config = resolve_model(model)
    if (input_file is None) == (hex_data is None):
        raise typer.BadParameter("Give exactly one of --in or --hex")
    try:
        data = parse_hex(hex_data) if hex_data is not None else load_calibration(input_file)[0]
    except (OSError, ValueError) as e:
        print_error(f"Cannot load calibration: {e}")
        sys.exit(1)

    console.print(f"Data: {format_hex(data)}")
    region = config.memory_map.region("battery_calibration")
    ctx = confirm_write(write, confirm, dry_run, config, region.describe(), len(data), region.address)
    with radio(port, config) as session:
        result = actions.write_battery_calibration(session, data, ctx)
    finish(result, "Battery calibration written")


@app.command("read-full-calibration")
def read_full_calibration(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save to .json"),
) -> None:
    """Read battery, RSSI and TX calibration."""
    print_header("Read Full Calibration")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_full_calibration(session)

    calibration: CalibrationData = result.data
    if calibration is not None:
        table = Table(title="Calibration")
        table.add_column("Buffer", style="cyan")
        table.add_column("Bytes", style="magenta")
        table.add_column("Data", style="green")
        for name in ("battery", "rssi", "general"):
            buffer = getattr(calibration, name)
            table.add_row(name, str(len(buffer)), format_hex(buffer) or "-")
        console.print(table)
    if result.ok and output:
        path = save_full_calibration(output, calibration, DeviceInfo(model=config.display_name))
        print_success(f"Calibration saved to {path}")
    finish(result)


@app.command("write-full-calibration")
def write_full_calibration(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    input_file: str = typer.Option(..., "--in", "-i", help="Calibration .json file"),
    write: bool = WRITE_OPTION,
    confirm: Optional[str] = CONFIRM_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Write battery, RSSI and TX calibration from a saved record."""
    print_header("Write Full Calibration")
    config = resolve_model(model)
    try:
        calibration, _ = load_full_calibration(input_file)
    except (OSError, ValueError) as e:
        print_error(f"Cannot load calibration: {e}")
        sys.exit(1)

    total = len(calibration.battery) + len(calibration.rssi) + len(calibration.general)
    ctx = confirm_write(write, confirm, dry_run, config, "calibration (battery, RSSI, TX)", total)
    with radio(port, config) as session:
        result = actions.write_full_calibration(session, calibration, ctx)
    finish(result, "Calibration written")


@app.command("read-settings")
def read_settings(port: str = PORT_OPTION, model: str = MODEL_OPTION) -> None:
    """Read the main settings block."""
    print_header("Device Settings")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_settings(session)
    console.print(metadata_table("Settings", result))
    finish(result)


@app.command("write-settings")
def write_settings(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    default_frequency: Optional[float] = typer.Option(None, "--frequency", help="Default frequency (MHz)"),
    tx_power: Optional[int] = typer.Option(None, "--tx-power", min=0, max=2, help="TX power 0-2"),
    auto_scan: Optional[bool] = typer.Option(None, "--auto-scan/--no-auto-scan", help="Auto scan"),
    backlight: Optional[int] = typer.Option(None, "--backlight", min=0, max=100, help="Backlight 0-100"),
    auto_backlight_off: Optional[bool] = typer.Option(
        None, "--auto-backlight-off/--no-auto-backlight-off", help="Turn the backlight off automatically"
    ),
    write: bool = WRITE_OPTION,
    confirm: Optional[str] = CONFIRM_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Change settings: current values are read first, given options override them."""
    print_header("Write Settings")
    config = resolve_model(model)
    changes = {
        key: value
        for key, value in (
            ("default_frequency", default_frequency),
            ("tx_power", tx_power),
            ("auto_scan", auto_scan),
            ("backlight", backlight),
            ("auto_backlight_off", auto_backlight_off),
        )
        if value is not None
    }
    if not changes:
        raise typer.BadParameter("Nothing to change; give at least one setting option")

    region = config.memory_map.region("settings")
    ctx = confirm_write(write, confirm, dry_run, config, region.describe(), region.length, region.address)
    with radio(port, config) as session:
        current = actions.read_settings(session)
        if not current.ok:
            finish(current)
        result = actions.write_settings(session, replace(current.data, **changes), ctx)
    console.print(metadata_table("Settings", result))
    finish(result, "Settings written")


@app.command("read-channels")
def read_channels(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Export to .json or .csv"),
    chirp: bool = typer.Option(False, "--chirp", help="Use the CHIRP CSV layout"),
) -> None:
    """Discover and list the channel table."""
    print_header("Read Channels")
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_channels(session)

    channels = result.data or []
    if channels:
        table = Table(title=f"{len(channels)} Channels (strategy: {result.metadata.get('strategy')})")
        for column, style in (
            ("#", "dim"), ("Name", "cyan"), ("MHz", "green"), ("Power", "magenta"),
            ("Bandwidth", "yellow"), ("Scrambler", "dim"), ("RX Tone", "blue"), ("TX Tone", "blue"),
        ):
            table.add_column(column, style=style)
        for row in actions.describe_channels(channels):
            table.add_row(*row)
        console.print(table)

    if result.ok and output and channels:
        try:
            path = export_channels(output, channels, chirp=chirp)
        except ValueError as e:
            print_error(str(e))
            sys.exit(1)
        print_success(f"Channels exported to {path}")
    finish(result)


@app.command("write-channels")
def write_channels(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    input_file: str = typer.Option(..., "--in", "-i", help="Channels .json or .csv file"),
    write: bool = WRITE_OPTION,
    confirm: Optional[str] = CONFIRM_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Write channels from a JSON or CSV file."""
    print_header("Write Channels")
    config = resolve_model(model)
    try:
        channels = import_channels(input_file)
    except (OSError, ValueError, KeyError) as e:
        print_error(f"Cannot load channels: {e}")
        sys.exit(1)
    if not channels:
        print_error(f"No channels in {input_file}")
        sys.exit(1)

    problems = validate_channels(channels)
    if problems:
        for label, errors in problems.items():
            for error in errors:
                print_error(f"{label}: {error}")
        sys.exit(1)

    ctx = confirm_write(
        write, confirm, dry_run, config, "channel table", 16 * len(channels),
        config.memory_map.primary_channel_base,
    )
    with radio(port, config) as session:
        with progress_bar("Writing channels") as report:
            result = actions.write_channels(session, channels, ctx, progress=report)
    finish(result, f"{len(channels)} channels written")


@app.command("read-region")
def read_region(
    name: str = typer.Argument(..., help="Region name (see 'models')"),
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
) -> None:
    """Read one named memory region and print it as hex."""
    config = resolve_model(model)
    with radio(port, config) as session:
        result = actions.read_region(session, name)
    if result.ok:
        console.print(Panel(result.metadata["hex"], title=result.region, expand=False))
    finish(result)


@app.command("read-memory")
def read_memory(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    address: str = typer.Option(..., "--address", "-a", help="Start address (0x1EC0, 1EC0h or decimal)"),
    length: str = typer.Option("16", "--length", "-l", help="Bytes to read (1-255)"),
) -> None:
    """Read raw EEPROM bytes and print them as hex."""
    config = resolve_model(model)
    try:
        start = parse_address(address)
        count = parse_address(length)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    if start is None or not count or not 1 <= count <= 255:
        raise typer.BadParameter("Address is required and length must be 1-255")

    with radio(port, config) as session:
        result = actions.read_memory(session, start, count)
    if result.ok:
        console.print(Panel(result.metadata["hex"], title=result.region, expand=False))
    finish(result)


@app.command("dump-eeprom")
def dump_eeprom(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    output: str = typer.Option(..., "--output", "-o", help="Output .bin file"),
) -> None:
    """Read the whole EEPROM into a file."""
    print_header("EEPROM Dump")
    config = resolve_model(model)
    with radio(port, config) as session:
        with progress_bar("Reading EEPROM") as report:
            result = actions.dump_eeprom(session, progress=report)

    if result.ok:
        path = Path(output)
        path.write_bytes(result.data)
        print_success(f"{len(result.data):,} bytes saved to {path}")
    finish(result)


# ---------------------------------------------------------------------------
# Firmware
# ---------------------------------------------------------------------------

@app.command()
def flash(
    port: str = PORT_OPTION,
    model: str = MODEL_OPTION,
    firmware: str = typer.Option(..., "--firmware", "-f", help="Firmware image (.bin)"),
    write: bool = WRITE_OPTION,
    confirm: Optional[str] = CONFIRM_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
) -> None:
    """Flash a firmware image through the bootloader."""
    print_header("Flash Firmware")
    config = resolve_model(model)
    try:
        image = Path(firmware).read_bytes()
    except OSError as e:
        print_error(f"Cannot read firmware: {e}")
        sys.exit(1)

    flash_size = config.memory_map.flash_size
    if not image or len(image) > flash_size:
        print_error(f"Firmware must be 1-{flash_size:,} bytes, got {len(image):,}")
        sys.exit(1)

    console.print(f"Firmware: {firmware} ({len(image):,} bytes)")
    print_warning("Do not disconnect the radio until flashing completes")
    ctx = confirm_write(
        write, confirm, dry_run, config, f"flash @0x{config.memory_map.flash_start:08X}", len(image),
    )
    with radio(port, config) as session:
        with progress_bar("Flashing") as report:
            result = actions.flash_firmware(session, image, ctx, progress=report)
    finish(result, "Firmware flashed; the radio is rebooting")


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
