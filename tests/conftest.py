"""Shared fixtures: simulated buses, adapters and loggers."""

import pytest
import usb.core
import usb.util
from onewire_fakes import (
    FAST,
    BusAdapter,
    FakeDS1922,
    FakeDS2490Handle,
    FakeOneWireBus,
    UsbHost,
    make_rom,
)

from onewire_logger.devices import DS1922
from onewire_logger.usb import DS2490

LOGGER_ROM = make_rom(0x41, 0x0000001A2B3C)

@pytest.fixture
def fake_logger() -> FakeDS1922:
    """A simulated DS1922L with blank memory."""
    return FakeDS1922(LOGGER_ROM)

@pytest.fixture
def bus_adapter(fake_logger: FakeDS1922) -> BusAdapter:
    """Direct adapter with the simulated logger alone on the bus."""
    return BusAdapter(FakeOneWireBus(fake_logger))

@pytest.fixture
def logger(bus_adapter: BusAdapter, fake_logger: FakeDS1922) -> DS1922:
    """DS1922 driver on the direct adapter, with all waits disabled."""
    return DS1922(bus_adapter, fake_logger.rom_id, **FAST)

@pytest.fixture
def make_usb_adapter():
    """Factory fixture: DS2490 driver over a simulated USB handle.

    Adapters created here are closed at teardown.
    """
    opened: list[DS2490] = []

    def _make(*slaves, alt_setting: int = 3) -> tuple[DS2490, FakeDS2490Handle]:
        handle = FakeDS2490Handle(FakeOneWireBus(*slaves))
        adapter = DS2490(handle, alt_setting, timeout=2.0)
        adapter.open()
        opened.append(adapter)
        return adapter, handle

    yield _make
    for adapter in opened:
        adapter.close()


@pytest.fixture
def host(monkeypatch) -> UsbHost:
    """Simulated USB host: pyusb lookups see only adapters attached to it."""
    host = UsbHost()
    monkeypatch.setattr(usb.core, "find", host.find)
    monkeypatch.setattr(usb.util, "claim_interface", host.claim_interface)
    monkeypatch.setattr(usb.util, "release_interface", host.release_interface)
    monkeypatch.setattr(usb.util, "dispose_resources", host.dispose_resources)
    return host
