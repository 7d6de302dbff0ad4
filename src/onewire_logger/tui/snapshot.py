"""Rich rendering of adapters, search results and logger snapshots."""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime

from rich.console import Group
from rich.panel import Panel
from rich.table import Table

from ..devices import DeviceSnapshot, Measurement
from ..rom import RomId
from ..session import AdapterInfo


def format_temperature(value: float) -> str:
    """Degrees Celsius with two decimals; sentinels read as below/above range."""
    if value == -math.inf:
        return "below range"
    if value == math.inf:
        return "above range"
    return f"{value:.2f} °C"


def format_measurement(measurement: Measurement) -> str:
    return (
        f"{format_temperature(measurement.calibrated)} "
        f"(raw {format_temperature(measurement.temperature)})"
    )


def _timestamp(value: datetime | None) -> str:
    return value.isoformat(sep=" ") if value else "not set"


def _yes_no(flag: bool) -> str:
    return "[green]yes[/green]" if flag else "no"


def adapters_table(adapters: Iterable[AdapterInfo]) -> Table:
    table = Table(title="DS2490 adapters")
    table.add_column("#", justify="right")
    table.add_column("Bus", justify="right")
    table.add_column("Address", justify="right")
    for i, info in enumerate(adapters):
        table.add_row(str(i), f"{info.bus:03d}", f"{info.address:03d}")
    return table


def devices_table(rom_ids: Iterable[RomId]) -> Table:
    table = Table(title="1-Wire devices")
    table.add_column("ROM id")
    table.add_column("Family", justify="right")
    table.add_column("Layout")
    for rom_id in rom_ids:
        table.add_row(rom_id.hex(), f"0x{rom_id.family:02X}", str(rom_id))
    return table


def snapshot_table(snapshot: DeviceSnapshot) -> Table:
    """Two-column table of every decoded register field."""
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    rtc = snapshot.rtc
    rows = [
        ("Device type", snapshot.device_type.name),
        ("Clock", _timestamp(rtc.timestamp)),
        ("Clock running", _yes_no(rtc.oscillating)),
        ("High-speed sampling", _yes_no(rtc.high_speed)),
        ("Device samples", str(snapshot.device_samples)),
        ("Password protected", _yes_no(snapshot.password_protected)),
        ("Latest temperature", format_measurement(snapshot.latest_temperature)),
        ("Mission in progress", _yes_no(snapshot.mission_in_progress)),
        ("Memory cleared", _yes_no(snapshot.memory_cleared)),
        ("Mission samples", str(snapshot.mission_samples)),
        ("Mission start", _timestamp(snapshot.mission_start)),
        ("Sample rate", f"{snapshot.sample_rate} {'s' if rtc.high_speed else 'min'}"),
        ("Start delay", f"{snapshot.start_delay} min"),
        ("Logging enabled", _yes_no(snapshot.logging_enabled)),
        ("High resolution", _yes_no(snapshot.high_resolution)),
        ("Rollover", _yes_no(snapshot.rollover)),
        ("Start upon alarm", _yes_no(snapshot.start_upon_alarm)),
        ("Waiting for alarm", _yes_no(snapshot.waiting_for_alarm)),
        ("Low alarm", f"{format_measurement(snapshot.alarm_low)}"
         f" enabled={snapshot.alarm_low_enabled} seen={snapshot.alarm_low_seen}"),
        ("High alarm", f"{format_measurement(snapshot.alarm_high)}"
         f" enabled={snapshot.alarm_high_enabled} seen={snapshot.alarm_high_seen}"),
        ("Battery-on-reset alarm", _yes_no(snapshot.battery_on_reset)),
    ]
    for name, value in rows:
        table.add_row(name, value)
    return table


def measurements_table(
    measurements: dict[int, tuple[datetime, Measurement]], limit: int | None = None
) -> Table:
    """Logged samples, most recent last; ``limit`` keeps only the tail."""
    table = Table(title=f"{len(measurements)} logged sample(s)")
    table.add_column("#", justify="right")
    table.add_column("Time")
    table.add_column("Calibrated", justify="right")
    table.add_column("Raw", justify="right")
    items = sorted(measurements.items())
    if limit is not None:
        items = items[-limit:] if limit else []
    for index, (when, measurement) in items:
        table.add_row(
            str(index),
            when.isoformat(sep=" "),
            format_temperature(measurement.calibrated),
            format_temperature(measurement.temperature),
        )
    return table


def render_snapshot(snapshot: DeviceSnapshot, samples: int | None = 10) -> Panel:
    """Panel with the register table and the tail of the data log."""
    parts: list[Table] = [snapshot_table(snapshot)]
    if snapshot.measurements and samples != 0:
        parts.append(measurements_table(snapshot.measurements, samples))
    return Panel(Group(*parts), title=f"DS1922 {snapshot.rom_id.hex()}", border_style="cyan")
