"""Command-line interface for DS2490 adapters and DS1922 loggers."""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from .devices import DS1922, MissionSettings
from .errors import OneWireError, TransportFault, ValidationError
from .rom import RomId
from .session import Session
from .tui import (
    adapters_table,
    devices_table,
    format_hex_dump,
    format_measurement,
    measurements_table,
    render_snapshot,
)
from .usb import DS2490

console = Console()


def _parse_rom(value: str) -> RomId:
    """Parse a ROM id argument given family byte first, e.g. 41:...:CRC."""
    try:
        return RomId.from_hex(value)
    except ValidationError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _parse_hex_bytes(value: str) -> bytes:
    try:
        data = bytes.fromhex(value.replace(":", "").replace(" ", ""))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid hex data '{value}'") from None
    if not data:
        raise argparse.ArgumentTypeError("no data given")
    return data


def _parse_int(value: str) -> int:
    """Accept decimal or 0x-prefixed integers."""
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer '{value}'") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="onewire-logger", description="DS2490 1-Wire adapter and DS1922 logger tool"
    )
    parser.add_argument(
        "--adapter", type=int, default=0, metavar="N",
        help="Index of the adapter to use, as listed by 'adapters' (default 0)",
    )
    parser.add_argument(
        "--alt-setting", type=int, default=0, choices=range(4),
        help="USB alternate setting: packet size 16/64, poll 10/1 ms",
    )
    parser.add_argument("--password", default="", help="Logger access passphrase")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log bus activity")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("adapters", help="List attached DS2490 adapters")

    search = sub.add_parser("search", help="Enumerate devices on the bus")
    search.add_argument("--alarm", action="store_true", help="Only devices in alarm")
    search.add_argument(
        "--software", action="store_true", help="Bit-level search instead of the adapter's"
    )

    def device_command(name: str, help: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help)
        p.add_argument("rom", type=_parse_rom, help="ROM id, family byte first")
        return p

    info = device_command("info", "Show configuration, mission state and log tail")
    info.add_argument("--samples", type=int, default=10, help="Log entries to show")

    device_command("log", "Print every logged sample")
    device_command("temperature", "Take a temperature reading now")

    start = device_command("start-mission", "Program and start a new mission")
    start.add_argument("--rate", type=int, default=10, help="Sample interval")
    start.add_argument(
        "--high-speed", action="store_true", help="Interval in seconds instead of minutes"
    )
    start.add_argument("--delay", type=int, default=0, help="Start delay in minutes")
    start.add_argument("--high-resolution", action="store_true", help="16-bit samples")
    start.add_argument("--rollover", action="store_true", help="Overwrite when full")
    start.add_argument("--low", type=float, default=None, help="Low alarm threshold")
    start.add_argument("--high", type=float, default=None, help="High alarm threshold")
    start.add_argument("--wait-low", action="store_true", help="Start upon low alarm")
    start.add_argument("--wait-high", action="store_true", help="Start upon high alarm")

    stop = device_command("stop-mission", "Stop the running mission")
    stop.add_argument("--stop-clock", action="store_true", help="Also stop the clock")

    password = device_command("password", "Change password protection")
    password.add_argument("action", choices=["enable", "disable"])
    password.add_argument("--full", default="", help="New full-access passphrase")
    password.add_argument("--read", default="", help="New read-only passphrase")

    mem_read = device_command("memory-read", "Dump general-purpose memory")
    mem_read.add_argument("--offset", type=_parse_int, default=0)
    mem_read.add_argument("--length", type=_parse_int, default=None)

    mem_write = device_command("memory-write", "Write general-purpose memory")
    mem_write.add_argument("offset", type=_parse_int)
    mem_write.add_argument("data", type=_parse_hex_bytes, help="Hex bytes")

    return parser


def _open_adapter(session: Session, args: argparse.Namespace) -> DS2490:
    adapters = session.list_adapters()
    if not adapters:
        raise TransportFault("No DS2490 adapter found")
    if not 0 <= args.adapter < len(adapters):
        raise ValidationError(
            f"Adapter index {args.adapter} out of range (found {len(adapters)})"
        )
    return session.open_adapter(adapters[args.adapter], args.alt_setting)


def _open_device(session: Session, args: argparse.Namespace) -> DS1922:
    adapter = _open_adapter(session, args)
    return session.select_device(adapter, args.rom, args.password)


def run_command(args: argparse.Namespace, session: Session) -> None:
    """Execute one parsed command against ``session``."""
    if args.command == "adapters":
        console.print(adapters_table(session.list_adapters()))
        return

    if args.command == "search":
        adapter = _open_adapter(session, args)
        found = adapter.search_all(conditional=args.alarm, hardware=not args.software)
        console.print(devices_table(found))
        return

    device = _open_device(session, args)

    if args.command == "info":
        console.print(render_snapshot(device.snapshot(), args.samples))
    elif args.command == "log":
        console.print(measurements_table(device.logged_measurements()))
    elif args.command == "temperature":
        console.print(format_measurement(device.real_time_temperature()))
    elif args.command == "start-mission":
        settings = MissionSettings(
            start_delay=args.delay,
            wait_for_low=args.wait_low,
            wait_for_high=args.wait_high,
            high_speed=args.high_speed,
            sample_rate=args.rate,
            high_resolution=args.high_resolution,
            rollover=args.rollover,
        )
        if args.low is not None:
            settings.low_threshold = args.low
        if args.high is not None:
            settings.high_threshold = args.high
        device.start_mission(settings)
        console.print(f"Mission started on {device.rom_id.hex()}")
    elif args.command == "stop-mission":
        device.stop_mission()
        if args.stop_clock:
            device.stop_clock()
        console.print(f"Mission stopped on {device.rom_id.hex()}")
    elif args.command == "password":
        if args.action == "enable":
            device.enable_password_protection(args.full, args.read)
        else:
            device.disable_password_protection()
        console.print(f"Password protection {args.action}d on {device.rom_id.hex()}")
    elif args.command == "memory-read":
        memory = device.general_purpose_memory().memory
        length = memory.size - args.offset if args.length is None else args.length
        if length <= 0 or not memory.contains(args.offset, length):
            raise ValidationError(f"Range {args.offset}+{length} outside general-purpose memory")
        rows = (args.offset % 16 + length + 15) // 16
        console.print(
            format_hex_dump(memory, args.offset, rows),
            markup=False, highlight=False, soft_wrap=True,
        )
    elif args.command == "memory-write":
        pages = device.write_general_purpose(args.offset, args.data)
        console.print(
            f"Wrote {len(args.data)} byte(s) in {len(pages)} page(s) on {device.rom_id.hex()}"
        )


def main(argv: list[str] | None = None) -> None:
    """Entry point for the onewire-logger CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        )

    try:
        with Session() as session:
            run_command(args, session)
    except OneWireError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
