"""CRC accumulators used on the 1-Wire bus.

Both checksums are bit-reversed LFSRs seeded with zero that consume each
byte least-significant bit first:

    CRC8:  x^8 + x^5 + x^4 + 1         (reflected polynomial 0x8C)
    CRC16: x^16 + x^15 + x^2 + 1       (reflected polynomial 0xA001)

CRC8 protects ROM identifiers; running it over all eight ROM bytes
(check byte included) leaves a zero residue. CRC16 frames register
reads and scratchpad transfers; the device sends it inverted.
"""

from __future__ import annotations

from collections.abc import Iterable

CRC8_POLYNOMIAL = 0x8C
CRC16_POLYNOMIAL = 0xA001


class Crc:
    """Reflected LFSR accumulator with a configurable polynomial.

    The accumulator starts at zero and can be fed in several calls; the
    memory protocol seeds it with command bytes, then folds in page
    data, then resets it between pages.
    """

    def __init__(self, polynomial: int) -> None:
        self.polynomial = polynomial
        self.value = 0

    def update_byte(self, byte: int) -> None:
        """Fold one byte into the accumulator, LSB first."""
        crc = self.value
        byte &= 0xFF
        for _ in range(8):
            mix = (crc ^ byte) & 0x01
            crc >>= 1
            if mix:
                crc ^= self.polynomial
            byte >>= 1
        self.value = crc

    def update(self, data: Iterable[int]) -> Crc:
        """Fold a sequence of bytes into the accumulator.

        Returns:
            self, so calls can be chained.
        """
        for byte in data:
            self.update_byte(byte)
        return self

    def reset(self) -> None:
        """Reset the accumulator to its zero seed."""
        self.value = 0


class Crc8(Crc):
    """Dallas/Maxim 1-Wire CRC8."""

    def __init__(self) -> None:
        super().__init__(CRC8_POLYNOMIAL)


class Crc16(Crc):
    """Dallas/Maxim 1-Wire CRC16."""

    def __init__(self) -> None:
        super().__init__(CRC16_POLYNOMIAL)


def crc8(data: Iterable[int]) -> int:
    """Compute the CRC8 of a byte sequence."""
    return Crc8().update(data).value


def crc16(data: Iterable[int]) -> int:
    """Compute the CRC16 of a byte sequence."""
    return Crc16().update(data).value


def decode_inverted_crc16(data: bytes) -> int:
    """Decode the two inverted little-endian CRC16 bytes sent by a device.

    Args:
        data: The two bytes as read from the bus.

    Returns:
        The non-inverted CRC16 value.
    """
    if len(data) != 2:
        raise ValueError(f"Inverted CRC16 needs 2 bytes, got {len(data)}")
    return (data[0] ^ 0xFF) | ((data[1] ^ 0xFF) << 8)


def encode_inverted_crc16(value: int) -> bytes:
    """Encode a CRC16 the way a device transmits it (inverted, LSB first)."""
    inverted = ~value & 0xFFFF
    return bytes([inverted & 0xFF, inverted >> 8])
