"""
PicBoot CLI

Command-line front end for erasing, reading and writing PIC program
memory through the PicBoot serial bootloader.
"""

import sys
import json
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from picboot.protocol import Bootloader, SessionStatus
from picboot.models import DeviceProfile, ProfileConfigError, load_profiles, get_profile
from picboot.core.parsing import (
    parse_range as _parse_range_core,
    parse_baud as _parse_baud_core,
)
from picboot.core.logsink import attach_log_queue
from picboot.core.results import OperationResult
from picboot.core.actions import (
    erase_device as core_erase_device,
    read_device as core_read_device,
    load_image as core_load_image,
    write_device as core_write_device,
    start_application as core_start_application,
)
from picboot.models.profiles import AddressRange

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("picboot")

# Setup Rich console
console = Console()

app = typer.Typer(help="PicBoot - serial bootloader client for PIC microcontrollers")

POLL_INTERVAL = 0.1  # seconds between status polls
DEFAULT_CONFIG = "cpus.xml"

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG, "--config", "-c", envvar="PICBOOT_CONFIG", help="Device profile file (cpus.xml)"
)
PROFILE_OPTION = typer.Option(None, "--profile", "-m", help="Profile name (default: first in file)")
PORT_OPTION = typer.Option(..., "--port", "-p", envvar="PICBOOT_PORT", help="Serial port (e.g., /dev/ttyUSB0, COM3)")
BAUD_OPTION = typer.Option(None, "--baud", "-b", help="Baud rate (default: profile baud)")

_verbose = False


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


def print_result(result: OperationResult) -> None:
    """Print an OperationResult summary, red on failure."""
    console.print(result.to_summary(), style="green" if result.ok else "red", highlight=False, markup=False)


def parse_baud(value: Optional[str]) -> Optional[int]:
    """
    CLI wrapper around core.parsing.parse_baud that converts
    ValueError to typer.BadParameter.
    """
    try:
        return _parse_baud_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_ranges(first: Optional[str], last: Optional[str]) -> Optional[List[AddressRange]]:
    """
    Resolve --first/--last into a single range, or None for the profile's
    full program memory.

    Accepts decimal (4096), hex (0x1000) or suffix (1000h) addresses.
    """
    if first is None and last is None:
        return None
    if first is None or last is None:
        raise typer.BadParameter("--first and --last must be given together")
    try:
        return [_parse_range_core(first, last)]
    except ValueError as e:
        raise typer.BadParameter(str(e))


def select_profile(config: str, name: Optional[str]) -> DeviceProfile:
    """Load the profile file and pick one profile, exiting on error."""
    try:
        return get_profile(load_profiles(config), name)
    except ProfileConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)


def open_session(port: str, profile: DeviceProfile, baud: Optional[str]) -> Bootloader:
    """Open a bootloader session on port, exiting on error."""
    baudrate = parse_baud(baud) or profile.baud
    bl = Bootloader()
    console.print(f"Port: {port}  Baud: {baudrate}  Profile: {profile.name}")
    if not bl.open(port, baudrate, profile.timeout):
        print_error(f"Can't open selected serial port: {bl.last_error}")
        raise typer.Exit(1)
    return bl


def close_session(bl: Bootloader) -> None:
    """Close the port, waiting for a running command to finish."""
    while not bl.try_close():
        bl.request_stop()
        time.sleep(POLL_INTERVAL)


def _print_log_line(line: str) -> None:
    style = "red" if line.startswith("ERROR") else None
    console.print(line, style=style, highlight=False, markup=False)


def run_in_worker(bl: Bootloader, description: str, work: Callable[[], object]):
    """
    Run a blocking device workflow on a worker thread.

    The calling thread polls the session status, prints log lines from
    the worker and turns Ctrl+C into a stop request for the bootloader.

    Returns:
        Whatever `work` returned

    Raises:
        Exception: Whatever `work` raised, after the session was put in
            ERROR so it can still be closed
    """
    outcome = {}

    def _target() -> None:
        try:
            outcome["value"] = work()
        except Exception as e:
            outcome["error"] = e
            bl.state.fail(f"Internal error: {e}")

    level = logging.DEBUG if _verbose else logging.INFO
    with attach_log_queue(level=level, propagate=False) as sink:
        worker = threading.Thread(target=_target, name="picboot-worker", daemon=True)
        worker.start()
        with console.status(description) as status:
            while worker.is_alive():
                try:
                    worker.join(POLL_INTERVAL)
                except KeyboardInterrupt:
                    bl.request_stop()
                    print_warning("Stop requested, waiting for the current command...")
                for line in sink.drain():
                    _print_log_line(line)
                if bl.status == SessionStatus.BUSY:
                    status.update(f"{description} (busy)")
        for line in sink.drain():
            _print_log_line(line)
        if sink.dropped:
            print_warning(f"{sink.dropped} log lines dropped")
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("value")


@app.callback()
def main_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show protocol traffic"),
) -> None:
    """PicBoot - serial bootloader client."""
    global _verbose
    _verbose = verbose
    if verbose:
        logger.setLevel(logging.DEBUG)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial port found!")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")

    console.print(table)


@app.command("profiles")
def list_profiles_cmd(config: str = CONFIG_OPTION) -> None:
    """List device profiles from the profile file."""
    print_header("Device Profiles")
    try:
        profiles = load_profiles(config)
    except ProfileConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    table = Table(title=str(Path(config)))
    table.add_column("Name", style="cyan")
    table.add_column("Baud", style="green")
    table.add_column("Blocks W/R/E", style="yellow")
    table.add_column("Packet", style="magenta")
    table.add_column("Word", style="blue")
    table.add_column("Program", style="green")
    table.add_column("Data", style="yellow")

    for p in profiles:
        table.add_row(
            p.name,
            str(p.baud),
            f"{p.write_block}/{p.read_block}/{p.erase_block}",
            f"{p.max_pkt_size} B",
            f"{p.bytes_per_addr} B",
            ", ".join(str(r) for r in p.prog_ranges),
            str(p.data_range),
        )

    console.print(table)


@app.command()
def erase(
    port: str = PORT_OPTION,
    config: str = CONFIG_OPTION,
    profile_name: Optional[str] = PROFILE_OPTION,
    baud: Optional[str] = BAUD_OPTION,
    first: Optional[str] = typer.Option(None, "--first", help="First address (default: whole program memory)"),
    last: Optional[str] = typer.Option(None, "--last", help="Last address (inclusive)"),
) -> None:
    """Erase program memory."""
    print_header("Erase Program Memory")
    profile = select_profile(config, profile_name)
    ranges = parse_ranges(first, last)

    bl = open_session(port, profile, baud)
    try:
        result = run_in_worker(bl, "Erasing...", lambda: core_erase_device(bl, profile, ranges))
    finally:
        close_session(bl)

    print_result(result)
    if not result.ok:
        sys.exit(1)


@app.command()
def read(
    port: str = PORT_OPTION,
    output: str = typer.Option(..., "--output", "-o", help="Output Intel-HEX file"),
    config: str = CONFIG_OPTION,
    profile_name: Optional[str] = PROFILE_OPTION,
    baud: Optional[str] = BAUD_OPTION,
    first: Optional[str] = typer.Option(None, "--first", help="First address (default: whole program memory)"),
    last: Optional[str] = typer.Option(None, "--last", help="Last address (inclusive)"),
) -> None:
    """Read program memory and save it as Intel-HEX."""
    print_header("Read Program Memory")
    profile = select_profile(config, profile_name)
    ranges = parse_ranges(first, last)

    bl = open_session(port, profile, baud)
    try:
        outcome = run_in_worker(bl, "Reading...", lambda: core_read_device(bl, profile, ranges))
    finally:
        close_session(bl)

    result, image = outcome
    print_result(result)
    if not result.ok or image is None:
        sys.exit(1)

    image.save(output, profile.bytes_per_addr)
    print_success(f"Image saved to {output}")


@app.command()
def write(
    port: str = PORT_OPTION,
    input_file: str = typer.Option(..., "--input", "-i", help="Intel-HEX file to program"),
    config: str = CONFIG_OPTION,
    profile_name: Optional[str] = PROFILE_OPTION,
    baud: Optional[str] = BAUD_OPTION,
    force: bool = typer.Option(False, "--force", "-f", help="Write even if the hex file had problems"),
) -> None:
    """Program an Intel-HEX file into program memory."""
    print_header("Write Program Memory")
    profile = select_profile(config, profile_name)

    load_result, image = core_load_image(profile, input_file)
    if image is None:
        print_result(load_result)
        sys.exit(1)
    if load_result.warnings:
        for warning in load_result.warnings:
            print_warning(warning)
        if not force and not typer.confirm(
            "Some errors found during loading hex file. Do you want to continue?"
        ):
            raise typer.Abort()

    bl = open_session(port, profile, baud)
    try:
        result = run_in_worker(bl, "Writing...", lambda: core_write_device(bl, profile, image))
    finally:
        close_session(bl)

    print_result(result)
    if not result.ok:
        sys.exit(1)


@app.command()
def run(
    port: str = PORT_OPTION,
    config: str = CONFIG_OPTION,
    profile_name: Optional[str] = PROFILE_OPTION,
    baud: Optional[str] = BAUD_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Leave the bootloader and start the application."""
    print_header("Start Application")
    profile = select_profile(config, profile_name)
    if not yes and not typer.confirm("Start the application now?"):
        raise typer.Abort()

    bl = open_session(port, profile, baud)
    try:
        result = run_in_worker(bl, "Starting...", lambda: core_start_application(bl, profile))
    finally:
        close_session(bl)

    print_result(result)
    if not result.ok:
        sys.exit(1)


@app.command("hex-info")
def hex_info(
    hex_file: str = typer.Argument(..., help="Intel-HEX file"),
    config: str = CONFIG_OPTION,
    profile_name: Optional[str] = PROFILE_OPTION,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Check an Intel-HEX file against a profile's memory map (offline)."""
    if not output_json:
        print_header("Intel-HEX Check")
    profile = select_profile(config, profile_name)

    result, image = core_load_image(profile, hex_file)
    if output_json:
        console.print(json.dumps(result.to_dict(), indent=2), highlight=False, markup=False, soft_wrap=True)
        sys.exit(0 if result.ok and result.metadata.get("clean", False) else 1)

    print_result(result)
    if image is None:
        sys.exit(1)

    table = Table(title="Memory Blocks")
    table.add_column("Range", style="cyan")
    table.add_column("Bytes", style="green")
    table.add_column("Programmed", style="yellow")
    for block in image.blocks:
        used = sum(1 for b in block.data if b != 0xFF)
        table.add_row(
            str(block.address_range(profile.bytes_per_addr)),
            f"{len(block.data):,}",
            f"{used:,}",
        )
    console.print(table)
    if not result.metadata.get("clean", False):
        sys.exit(1)


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
