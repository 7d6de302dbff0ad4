"""Tests for ROM-level addressing and the software search."""

import pytest
from onewire_fakes import BusAdapter, FakeOneWireBus, FakeSlave, make_rom

from onewire_logger.bus.adapter import (
    CMD_MATCH_ROM,
    CMD_RESUME,
    CMD_SKIP_ROM,
    NO_BRANCH,
    OneWireAdapter,
)
from onewire_logger.errors import ValidationError


def _adapter(*roms, alarms=()) -> BusAdapter:
    slaves = [FakeSlave(rom, alarm=rom in alarms) for rom in roms]
    return BusAdapter(FakeOneWireBus(*slaves))


class TestSoftwareSearch:
    """Tests for the bit-level discrepancy search."""

    def test_two_devices(self) -> None:
        """Both devices are found exactly once."""
        a, b = make_rom(0x28, 1), make_rom(0x41, 2)
        found = _adapter(a, b).search_all()
        assert sorted(found, key=bytes) == sorted([a, b], key=bytes)

    def test_idempotent(self) -> None:
        """Repeating the search yields the same ids in the same order."""
        adapter = _adapter(make_rom(0x28, 1), make_rom(0x41, 2))
        assert adapter.search_all() == adapter.search_all()

    def test_many_devices_sharing_prefixes(self) -> None:
        """Serials differing only in high bits are all told apart."""
        roms = [make_rom(0x41, serial) for serial in (0x01, 0x81, 0x8001, 0x800001, 0x03)]
        found = _adapter(*roms).search_all()
        assert len(found) == len(roms)
        assert set(found) == set(roms)

    def test_single_device(self) -> None:
        rom = make_rom(0x41, 0x1234)
        assert _adapter(rom).search_all() == [rom]

    def test_empty_bus(self) -> None:
        """No presence pulse means no devices, not an error."""
        assert _adapter().search_all() == []

    def test_conditional_search_only_finds_alarming(self) -> None:
        a, b, c = make_rom(0x41, 1), make_rom(0x41, 2), make_rom(0x41, 3)
        found = _adapter(a, b, c, alarms=(b,)).search_all(conditional=True)
        assert found == [b]

    def test_conditional_search_nobody_alarming(self) -> None:
        assert _adapter(make_rom(0x41, 1)).search_all(conditional=True) == []

    def test_search_next_reports_last_branch(self) -> None:
        """The last device of a pass reports NO_BRANCH."""
        adapter = _adapter(make_rom(0x41, 5))
        rom, branch = adapter.search_next(None, NO_BRANCH)
        assert rom == make_rom(0x41, 5)
        assert branch == NO_BRANCH

    def test_branch_without_rom_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _adapter(make_rom(0x41, 5)).search_next(None, 3)


class TestAddressing:
    """Tests for match, resume and skip addressing."""

    def test_match_rom_sends_command_and_id(self) -> None:
        rom = make_rom(0x41, 7)
        adapter = _adapter(rom)
        adapter.address(rom)
        assert adapter.writes[-1] == bytes([CMD_MATCH_ROM]) + rom.wire_bytes()

    def test_resume_after_match(self) -> None:
        """A second access to the same device uses Resume when allowed."""
        rom = make_rom(0x41, 7)
        adapter = _adapter(rom)
        adapter.address(rom, allow_resume=True)
        adapter.address(rom, allow_resume=True)
        assert adapter.writes[-1] == bytes([CMD_RESUME])

    def test_resume_not_used_for_other_device(self) -> None:
        a, b = make_rom(0x41, 7), make_rom(0x41, 8)
        adapter = _adapter(a, b)
        adapter.address(a, allow_resume=True)
        adapter.address(b, allow_resume=True)
        assert adapter.writes[-1][0] == CMD_MATCH_ROM

    def test_reset_device_forgets_resume(self) -> None:
        rom = make_rom(0x41, 7)
        adapter = _adapter(rom)
        adapter.address(rom, allow_resume=True)
        adapter.reset_device()
        adapter.address(rom, allow_resume=True)
        assert adapter.writes[-1][0] == CMD_MATCH_ROM

    def test_skip_rom(self) -> None:
        rom = make_rom(0x41, 7)
        adapter = _adapter(rom)
        adapter.address(rom, skip_rom=True)
        assert adapter.writes[-1] == bytes([CMD_SKIP_ROM])


class TestAbstractPrimitives:
    """The base class leaves the primitives to subclasses."""

    def test_primitives_not_implemented(self) -> None:
        adapter = OneWireAdapter()
        with pytest.raises(NotImplementedError):
            adapter.reset_bus()
        with pytest.raises(NotImplementedError):
            adapter.read(1)
