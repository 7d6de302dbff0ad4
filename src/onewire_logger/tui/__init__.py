"""Text and rich rendering for the command line front end."""

from .memory import format_hex_dump
from .snapshot import (
    adapters_table,
    devices_table,
    format_measurement,
    format_temperature,
    measurements_table,
    render_snapshot,
    snapshot_table,
)

__all__ = [
    "adapters_table",
    "devices_table",
    "format_hex_dump",
    "format_measurement",
    "format_temperature",
    "measurements_table",
    "render_snapshot",
    "snapshot_table",
]
