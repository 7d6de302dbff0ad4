"""Tests for rich rendering of adapters, devices and snapshots."""

import io
import math
from datetime import datetime, timedelta

from onewire_fakes import make_rom
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from onewire_logger.devices import DeviceSnapshot, DeviceType, Measurement, RtcState
from onewire_logger.session import AdapterInfo
from onewire_logger.tui import (
    adapters_table,
    devices_table,
    format_measurement,
    format_temperature,
    measurements_table,
    render_snapshot,
)

START = datetime(2024, 3, 5, 8, 0, 0)
ROM = make_rom(0x41, 0x1A2B3C)


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=160)
    console.print(renderable)
    return console.file.getvalue()


def _measurements(count: int) -> dict:
    return {
        i: (START + timedelta(minutes=10 * i), Measurement(20.0 + i, 19.5 + i))
        for i in range(count)
    }


def _snapshot(**overrides) -> DeviceSnapshot:
    fields = dict(
        rom_id=ROM,
        device_type=DeviceType.DS1922L,
        rtc=RtcState(START, oscillating=True, high_speed=False),
        device_samples=42,
        password_protected=False,
        latest_temperature=Measurement(25.0, 24.5),
        mission_samples=3,
        mission_in_progress=True,
        memory_cleared=False,
        sample_rate=10,
        alarm_low=Measurement(-math.inf, -math.inf),
        alarm_high=Measurement(30.0, 29.5),
        alarm_low_enabled=False,
        alarm_high_enabled=True,
        alarm_low_seen=False,
        alarm_high_seen=True,
        battery_on_reset=False,
        waiting_for_alarm=False,
        start_upon_alarm=False,
        logging_enabled=True,
        rollover=False,
        high_resolution=False,
        start_delay=0,
        mission_start=START,
        measurements=_measurements(3),
    )
    fields.update(overrides)
    return DeviceSnapshot(**fields)


class TestFormatting:
    def test_temperature(self) -> None:
        assert format_temperature(21.456) == "21.46 °C"

    def test_sentinels(self) -> None:
        assert format_temperature(-math.inf) == "below range"
        assert format_temperature(math.inf) == "above range"

    def test_measurement(self) -> None:
        assert format_measurement(Measurement(25.0, 24.5)) == "24.50 °C (raw 25.00 °C)"


class TestTables:
    """Tests for adapter and device listings."""

    def test_adapters(self) -> None:
        output = _render(adapters_table([AdapterInfo(1, 2), AdapterInfo(3, 14)]))
        assert "DS2490 adapters" in output
        assert "002" in output
        assert "014" in output

    def test_devices(self) -> None:
        output = _render(devices_table([ROM]))
        assert ROM.hex() in output
        assert "0x41" in output

    def test_measurements_tail(self) -> None:
        table = measurements_table(_measurements(5), limit=2)
        assert isinstance(table, Table)
        assert table.row_count == 2
        output = _render(table)
        assert "5 logged sample(s)" in output
        assert "2024-03-05 08:40:00" in output
        assert "08:20:00" not in output

    def test_measurements_zero_limit(self) -> None:
        assert measurements_table(_measurements(3), limit=0).row_count == 0


class TestRenderSnapshot:
    """Smoke tests for render_snapshot."""

    def test_returns_panel(self) -> None:
        assert isinstance(render_snapshot(_snapshot()), Panel)

    def test_shows_fields(self) -> None:
        output = _render(render_snapshot(_snapshot()))
        assert f"DS1922 {ROM.hex()}" in output
        assert "DS1922L" in output
        assert "24.50 °C (raw 25.00 °C)" in output
        assert "below range" in output
        assert "10 min" in output
        assert "3 logged sample(s)" in output

    def test_high_speed_rate_in_seconds(self) -> None:
        snapshot = _snapshot(rtc=RtcState(None, oscillating=False, high_speed=True))
        output = _render(render_snapshot(snapshot))
        assert "10 s" in output
        assert "not set" in output

    def test_without_samples(self) -> None:
        output = _render(render_snapshot(_snapshot(), samples=0))
        assert "logged sample" not in output

    def test_empty_log(self) -> None:
        output = _render(render_snapshot(_snapshot(measurements={})))
        assert "logged sample" not in output
