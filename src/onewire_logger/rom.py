"""ROM identifier: the 64-bit address of a 1-Wire device."""

from __future__ import annotations

from .crc import crc8
from .errors import ProtocolError, ValidationError

ROM_SIZE = 8

# Byte 7 layout
_CUSTOM_FLAG = 0x80
_FAMILY_MASK = 0x7F


class RomId:
    """8-byte 1-Wire device address.

    Bytes are stored most-significant first, the reverse of the order in
    which they travel on the bus:

        byte 0:     CRC8 check byte
        bytes 1-6:  serial number
        byte 7:     bit 7 = custom (private) address flag,
                    bits 0-6 = family code

    Bit numbering used by the search algorithms follows the wire: bit 0
    is the first bit transmitted (LSB of the family byte), bit 63 the
    last (MSB of the CRC byte).
    """

    __slots__ = ("_data",)

    def __init__(self, data: bytes | bytearray | None = None) -> None:
        if data is None:
            self._data = bytearray(ROM_SIZE)
        else:
            if len(data) != ROM_SIZE:
                raise ValidationError(
                    f"ROM id needs {ROM_SIZE} bytes, got {len(data)}"
                )
            self._data = bytearray(data)

    @classmethod
    def from_wire(cls, data: bytes | bytearray) -> RomId:
        """Build a ROM id from bytes in bus order (family byte first)."""
        if len(data) != ROM_SIZE:
            raise ValidationError(f"ROM id needs {ROM_SIZE} bytes, got {len(data)}")
        return cls(bytes(reversed(data)))

    @classmethod
    def from_hex(cls, text: str) -> RomId:
        """Parse the hex form produced by hex(): family byte first.

        Separators (':', '.', '-', spaces) are ignored.
        """
        cleaned = "".join(ch for ch in text if ch not in ":.- ")
        try:
            raw = bytes.fromhex(cleaned)
        except ValueError as e:
            raise ValidationError(f"Invalid ROM id '{text}': {e}") from None
        return cls.from_wire(raw)

    @classmethod
    def with_crc(cls, family: int, serial: bytes) -> RomId:
        """Build a ROM id from family code and 6-byte serial, computing the CRC.

        Args:
            family: Full family byte (custom flag included).
            serial: Six serial bytes in bus order.
        """
        if len(serial) != 6:
            raise ValidationError(f"Serial needs 6 bytes, got {len(serial)}")
        wire = bytes([family & 0xFF]) + bytes(serial)
        return cls.from_wire(wire + bytes([crc8(wire)]))

    def wire_bytes(self) -> bytes:
        """Return the 8 bytes in bus order (family byte first, CRC last)."""
        return bytes(reversed(self._data))

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def __getitem__(self, index: int) -> int:
        return self._data[index]

    def get_bit(self, bit: int) -> bool:
        """Read a bit by wire position (0 = first bit on the bus)."""
        byte = self._data[ROM_SIZE - 1 - bit // 8]
        return bool(byte & (1 << (bit % 8)))

    def set_bit(self, bit: int, value: bool) -> None:
        """Write a bit by wire position (0 = first bit on the bus)."""
        index = ROM_SIZE - 1 - bit // 8
        mask = 1 << (bit % 8)
        if value:
            self._data[index] |= mask
        else:
            self._data[index] &= ~mask & 0xFF

    @property
    def family(self) -> int:
        """Family code (low 7 bits of byte 7)."""
        return self._data[7] & _FAMILY_MASK

    @property
    def is_custom(self) -> bool:
        """True for customer-specific (private) addresses."""
        return bool(self._data[7] & _CUSTOM_FLAG)

    @property
    def crc(self) -> int:
        return self._data[0]

    def is_family(self, family: int) -> bool:
        return self.family == family

    def crc_valid(self) -> bool:
        """True if CRC8 over all eight bytes in bus order settles to zero."""
        return crc8(self.wire_bytes()) == 0

    def check_crc(self) -> None:
        """Raise ProtocolError if the check byte does not match.

        Raises:
            ProtocolError: If CRC8 over the id is not zero.
        """
        residue = crc8(self.wire_bytes())
        if residue != 0:
            raise ProtocolError(f"CRC error: romId={self}, crc={residue}")

    def hex(self) -> str:
        """Upper-case hex in bus order, e.g. '41E5D4C3B2A10099'."""
        return self.wire_bytes().hex().upper()

    def copy(self) -> RomId:
        return RomId(self._data)

    def __str__(self) -> str:
        d = self._data
        if not self.is_custom:
            return (
                f"Family 0x{d[7]:02X} "
                f"S/N 0x{d[1]:02X}:{d[2]:02X}:{d[3]:02X}:{d[4]:02X}:{d[5]:02X}:{d[6]:02X} "
                f"CRC 0x{d[0]:02X}"
            )
        customer = (d[1] << 4) | (d[2] >> 4)
        return (
            f"Family 0x{self.family:02X} Customer 0x{customer:03X} "
            f"Id 0x{d[2] & 0x0F:01X}:{d[3]:02X}:{d[4]:02X}:{d[5]:02X}:{d[6]:02X} "
            f"CRC 0x{d[0]:02X}"
        )

    def __repr__(self) -> str:
        return f"RomId('{self.hex()}')"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RomId):
            return NotImplemented
        return self._data == other._data

    def __hash__(self) -> int:
        return hash(bytes(self._data))
