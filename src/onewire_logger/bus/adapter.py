"""Generic 1-Wire adapter: bus primitives, ROM commands, software search.

Concrete adapters (see usb/ds2490.py) implement the primitives; this
base class composes them into ROM-level addressing and the discrepancy
search from Maxim application note 187.
"""

from __future__ import annotations

import logging
import threading

from ..errors import ValidationError
from ..rom import ROM_SIZE, RomId

_LOGGER = logging.getLogger(__name__)

# ROM command codes
CMD_SEARCH_ROM = 0xF0
CMD_ALARM_SEARCH = 0xEC
CMD_MATCH_ROM = 0x55
CMD_OVERDRIVE_MATCH_ROM = 0x69
CMD_SKIP_ROM = 0xCC
CMD_OVERDRIVE_SKIP_ROM = 0x3C
CMD_RESUME = 0xA5

# Returned as last branch position when no untaken branch remains
NO_BRANCH = -1

_ROM_BITS = ROM_SIZE * 8


class OneWireAdapter:
    """Base class for 1-Wire bus masters.

    Subclasses implement reset_device, reset_bus, the bit/byte
    primitives, and block read/write. Everything here is built on top of
    those.

    All bus access is serialized through ``lock``, a reentrant lock so a
    logical operation can call sub-operations while holding it.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._resumable: RomId | None = None

    # -- primitives --------------------------------------------------------

    def reset_device(self) -> None:
        """Reset the adapter itself (not the 1-Wire bus)."""
        raise NotImplementedError

    def reset_bus(self) -> bool:
        """Send a reset pulse on the 1-Wire bus.

        Returns:
            True if a presence pulse was detected.
        """
        raise NotImplementedError

    def write_bit(self, bit: bool) -> None:
        raise NotImplementedError

    def read_bit(self) -> bool:
        raise NotImplementedError

    def write_byte(self, value: int) -> None:
        raise NotImplementedError

    def read_byte(self) -> int:
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        """Write a block of bytes to the bus."""
        raise NotImplementedError

    def read(self, count: int) -> bytes:
        """Read a block of bytes from the bus."""
        raise NotImplementedError

    def bytes_available(self) -> int:
        """Number of bytes waiting in the adapter's inbound buffer."""
        raise NotImplementedError

    # -- ROM commands ------------------------------------------------------

    def skip_rom(self, overdrive: bool = False) -> None:
        """Address every device on the bus."""
        self.write_byte(CMD_OVERDRIVE_SKIP_ROM if overdrive else CMD_SKIP_ROM)

    def resume(self) -> None:
        """Re-address the device matched most recently."""
        self.write_byte(CMD_RESUME)

    def match_rom(self, rom_id: RomId, overdrive: bool = False) -> None:
        """Address a single device by its ROM id."""
        command = CMD_OVERDRIVE_MATCH_ROM if overdrive else CMD_MATCH_ROM
        self.write(bytes([command]) + rom_id.wire_bytes())

    def address(
        self,
        rom_id: RomId,
        *,
        allow_resume: bool = False,
        skip_rom: bool = False,
    ) -> None:
        """Reset the bus and select one device.

        Uses Resume instead of Match ROM when allowed and the same device
        was the last one matched. Skip ROM is only correct when a single
        device is on the bus.

        Args:
            rom_id: Device to select.
            allow_resume: Use the Resume command when possible.
            skip_rom: Address via Skip ROM instead.
        """
        with self.lock:
            self.reset_bus()
            if skip_rom:
                self.skip_rom()
            elif allow_resume and self._resumable == rom_id:
                self.resume()
            else:
                self.match_rom(rom_id)
                self._resumable = rom_id

    def forget_addressing(self) -> None:
        """Clear the resume flag, e.g. after an adapter reset."""
        self._resumable = None

    # -- software search ---------------------------------------------------

    def search_all(self, conditional: bool = False) -> list[RomId]:
        """Enumerate all devices on the bus.

        Args:
            conditional: Only find devices in an alarm state.

        Returns:
            ROM ids in bus-dependent order; empty if nothing answers.
        """
        with self.lock:
            found: list[RomId] = []
            last_rom: RomId | None = None
            last_branch = NO_BRANCH
            while True:
                rom_id, branch = self.search_next(last_rom, last_branch, conditional)
                if rom_id is None:
                    break
                found.append(rom_id)
                last_rom = rom_id
                last_branch = branch
                if branch == NO_BRANCH:
                    break
            _LOGGER.info("software search found %d device(s)", len(found))
            return found

    def search_next(
        self,
        last_rom: RomId | None,
        last_branch: int,
        conditional: bool = False,
    ) -> tuple[RomId | None, int]:
        """Run one pass of the triplet search.

        For each of the 64 bits: read the bit and its complement, pick a
        direction, write it back. On a genuine discrepancy (both read 0),
        bits before ``last_branch`` replay ``last_rom``, the bit at
        ``last_branch`` takes 1, deeper bits take 0 and are remembered.

        Args:
            last_rom: ROM id found by the previous pass, None on the first.
            last_branch: Bit position of the previous pass's last 0 branch,
                NO_BRANCH on the first pass.
            conditional: Use the alarm search command.

        Returns:
            Tuple of (rom_id, last_zero_branch). rom_id is None when no
            device answered. last_zero_branch is NO_BRANCH when this was
            the last device.

        Raises:
            ValidationError: If last_branch is set without last_rom.
            ProtocolError: If the assembled id fails its CRC.
        """
        if last_branch != NO_BRANCH and last_rom is None:
            raise ValidationError("last_branch given without last_rom")

        rom_id = RomId()
        last_zero = NO_BRANCH

        with self.lock:
            if not self.reset_bus():
                return None, NO_BRANCH
            self.write(bytes([CMD_ALARM_SEARCH if conditional else CMD_SEARCH_ROM]))
            for bit in range(_ROM_BITS):
                id_bit = self.read_bit()
                cmp_bit = self.read_bit()

                if id_bit and cmp_bit:
                    # Nobody answered
                    return None, NO_BRANCH
                if id_bit != cmp_bit:
                    direction = id_bit
                else:
                    if bit < last_branch:
                        assert last_rom is not None
                        direction = last_rom.get_bit(bit)
                    else:
                        direction = bit == last_branch
                    if not direction:
                        last_zero = bit

                rom_id.set_bit(bit, direction)
                self.write_bit(direction)

        rom_id.check_crc()
        _LOGGER.debug("search pass found %s (last zero branch %d)", rom_id, last_zero)
        return rom_id, last_zero
