"""Tests for the DS2490 adapter against a simulated USB device."""

import time

import pytest
from onewire_fakes import FAST, FakeDS1922, FakeSlave, make_rom

from onewire_logger.errors import AdapterDisconnected, OneWireError, TransportFault
from onewire_logger.memory import DS1922Protocol, PasswordBuffer
from onewire_logger.usb import vendor as v
from onewire_logger.usb.poller import FeedbackCollector


def _slaves(count: int, family: int = 0x28) -> list[FakeSlave]:
    return [FakeSlave(make_rom(family, 0x100 + i * 0x11)) for i in range(count)]


class TestPrimitives:
    """Tests for reset, bit, byte and block I/O."""

    def test_reset_bus_reports_presence(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter(*_slaves(1))
        assert adapter.reset_bus() is True

    def test_reset_bus_without_devices(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter()
        assert adapter.reset_bus() is False

    def test_reset_device_checks_buffers(self, make_usb_adapter) -> None:
        adapter, handle = make_usb_adapter()
        adapter.reset_device()
        assert handle.device_resets == 1

    def test_block_write_drains_echo(self, make_usb_adapter) -> None:
        """Echoed bytes are consumed so the inbound buffer ends empty."""
        adapter, handle = make_usb_adapter(*_slaves(1), alt_setting=0)
        adapter.write(bytes(range(40)))
        assert handle.ep3 == bytearray()
        assert handle.count_controls(v.COMM_CMD, v.COMM_BLOCK_IO) == 3
        assert adapter.bytes_available() == 0

    def test_short_echo_drain_fails(self, make_usb_adapter, monkeypatch) -> None:
        """Echo bytes left in EP3 would be read back as bus data later."""
        adapter, _ = make_usb_adapter(*_slaves(1))
        monkeypatch.setattr(adapter.vendor, "read_in", lambda n: b"\x00")
        with pytest.raises(TransportFault, match="Short echo drain: 1 of 4"):
            adapter.write(b"\x01\x02\x03\x04")

    def test_primitive_waits_for_idle_once(self, make_usb_adapter, monkeypatch) -> None:
        adapter, _ = make_usb_adapter(*_slaves(1))
        calls: list[int] = []
        wait_idle = FeedbackCollector.wait_idle

        def counting(self, timeout=None):
            calls.append(1)
            return wait_idle(self, timeout)

        monkeypatch.setattr(FeedbackCollector, "wait_idle", counting)
        adapter.write_bit(True)
        adapter.write_byte(0x55)
        assert len(calls) == 2

    def test_block_read_idle_bus(self, make_usb_adapter) -> None:
        """An idle bus reads back all ones."""
        adapter, _ = make_usb_adapter(*_slaves(1))
        assert adapter.read(20) == b"\xff" * 20

    def test_read_bit_and_byte(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter(*_slaves(1))
        assert adapter.read_bit() is True
        assert adapter.read_byte() == 0xFF

    def test_state(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter()
        status = adapter.state()
        assert status.idle
        assert status.buffers_empty


class TestHardwareSearch:
    """Tests for SEARCH ACCESS rounds."""

    def test_three_devices_one_per_round(self, make_usb_adapter) -> None:
        """With 16-byte packets each round returns one id plus discrepancy data."""
        slaves = _slaves(3)
        adapter, handle = make_usb_adapter(*slaves, alt_setting=0)
        assert adapter.max_search_devices == 1
        found = adapter.search_all()
        assert set(found) == {s.rom_id for s in slaves}
        assert len(found) == 3
        assert handle.count_controls(v.COMM_CMD, v.COMM_SEARCH_ACCESS) == 3

    def test_three_devices_single_round(self, make_usb_adapter) -> None:
        slaves = _slaves(3)
        adapter, handle = make_usb_adapter(*slaves, alt_setting=3)
        found = adapter.search_all()
        assert set(found) == {s.rom_id for s in slaves}
        assert handle.count_controls(v.COMM_CMD, v.COMM_SEARCH_ACCESS) == 1

    def test_no_presence_ends_search(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter()
        assert adapter.search_all() == []

    def test_matches_software_search(self, make_usb_adapter) -> None:
        adapter, _ = make_usb_adapter(*_slaves(4), alt_setting=0)
        assert adapter.search_all() == adapter.search_all(hardware=False)

    def test_conditional(self, make_usb_adapter) -> None:
        slaves = _slaves(3)
        slaves[1].alarm = True
        adapter, handle = make_usb_adapter(*slaves)
        assert adapter.search_all(conditional=True) == [slaves[1].rom_id]
        assert any(index & 0xFF == 0xEC for _, _, index in handle.controls)

    def test_buffers_must_be_empty(self, make_usb_adapter) -> None:
        adapter, handle = make_usb_adapter(*_slaves(2))
        handle.ep3 += b"\x00"
        with pytest.raises(TransportFault, match="buffer state"):
            adapter.search_all()


class TestEvents:
    """Tests for presence and failure callbacks."""

    def test_device_detected_callback(self, make_usb_adapter) -> None:
        adapter, handle = make_usb_adapter()
        seen: list[int] = []
        adapter.on_device_detected(lambda: seen.append(1))
        handle.announce_device()
        deadline = time.monotonic() + 2.0
        while not seen and time.monotonic() < deadline:
            time.sleep(0.005)
        assert seen

    def test_unplug_reported(self, make_usb_adapter) -> None:
        adapter, handle = make_usb_adapter()
        failures: list[OneWireError] = []
        adapter.on_failure(failures.append)
        handle.unplug()
        deadline = time.monotonic() + 2.0
        while not failures and time.monotonic() < deadline:
            time.sleep(0.005)
        assert isinstance(failures[0], AdapterDisconnected)
        with pytest.raises(AdapterDisconnected):
            adapter.reset_bus()

    def test_ep0_full_triggers_reset(self, make_usb_adapter) -> None:
        adapter, handle = make_usb_adapter()
        handle.ep0_full = True
        deadline = time.monotonic() + 2.0
        while handle.device_resets == 0 and time.monotonic() < deadline:
            time.sleep(0.005)
        assert handle.device_resets >= 1


class TestLoggerOverUsb:
    """The memory protocol runs unchanged on the USB adapter."""

    def test_read_config_window(self, make_usb_adapter) -> None:
        fake = FakeDS1922(make_rom(0x41, 0x42))
        fake.poke(0x0200, bytes(range(64)))
        adapter, _ = make_usb_adapter(fake, alt_setting=0)
        protocol = DS1922Protocol(adapter, fake.rom_id, **FAST)
        data = protocol.read_memory(0x0200, 64, PasswordBuffer())
        assert bytes(data) == bytes(range(64))

    def test_write_page(self, make_usb_adapter) -> None:
        fake = FakeDS1922(make_rom(0x41, 0x43))
        adapter, _ = make_usb_adapter(fake)
        protocol = DS1922Protocol(adapter, fake.rom_id, **FAST)
        data = protocol.read_memory(0x0000, 32, PasswordBuffer()).to_mutable()
        data.write(0x0004, b"usb!")
        assert protocol.write_register_data(data, PasswordBuffer()) == [0x0000]
        assert fake.peek(0x0004, 4) == b"usb!"
