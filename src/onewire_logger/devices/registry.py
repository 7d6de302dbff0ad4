"""Family code to device class dispatch."""

from __future__ import annotations

from ..bus.adapter import OneWireAdapter
from ..errors import DeviceNotSupported
from ..rom import RomId
from .ds1922 import DS1922

# Closed table: a family code either maps to a driver or is rejected.
DEVICE_CLASSES: dict[int, type[DS1922]] = {
    DS1922.family_code: DS1922,
}


def device_class(rom_id: RomId) -> type[DS1922]:
    try:
        return DEVICE_CLASSES[rom_id.family]
    except KeyError:
        raise DeviceNotSupported(
            f"No driver for family 0x{rom_id.family:02X} ({rom_id.hex()})"
        ) from None


def create_device(
    adapter: OneWireAdapter, rom_id: RomId, passphrase: str = "", **options: object
) -> DS1922:
    """Instantiate the driver for ``rom_id`` on ``adapter``."""
    return device_class(rom_id)(adapter, rom_id, passphrase, **options)
