"""Register windows: offset-addressed byte images of device memory."""

from __future__ import annotations

from ..errors import ValidationError

PAGE_SIZE = 32


def page_floor(offset: int) -> int:
    """Round an address down to the start of its 32-byte page."""
    return offset - offset % PAGE_SIZE


def page_ceil(offset: int) -> int:
    """Round an address up to the next 32-byte page boundary."""
    return page_floor(offset + PAGE_SIZE - 1)


class RegisterData:
    """Read-only byte window starting at a base offset in register space.

    Indexing uses absolute device addresses, not offsets into the window.
    """

    def __init__(self, offset: int, data: bytes | bytearray) -> None:
        self.offset = offset
        self._data = bytearray(data)

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def end(self) -> int:
        """First address past the window."""
        return self.offset + len(self._data)

    def contains(self, start: int, length: int) -> bool:
        """True if [start, start+length) lies inside the window."""
        return self.offset <= start and start + length <= self.end

    def _index(self, addr: int, width: int = 1) -> int:
        if not self.contains(addr, width):
            raise IndexError(
                f"Register access out of window: 0x{addr:04X}+{width} not in "
                f"0x{self.offset:04X}..0x{self.end:04X}"
            )
        return addr - self.offset

    def read8(self, addr: int) -> int:
        return self._data[self._index(addr)]

    def read(self, addr: int, length: int) -> bytes:
        """Read ``length`` bytes starting at absolute address ``addr``."""
        off = self._index(addr, length)
        return bytes(self._data[off:off + length])

    def read_uint(self, addr: int, width: int) -> int:
        """Read a little-endian unsigned integer."""
        return int.from_bytes(self.read(addr, width), "little")

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def to_mutable(self) -> MutableRegisterData:
        return MutableRegisterData(self.offset, self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(0x{self.offset:04X}, {len(self._data)} bytes)"


class MutableRegisterData(RegisterData):
    """Writable register window that tracks the range of changed bytes.

    ``touched`` is None until a write changes a byte; afterwards it is
    the inclusive (first, last) address range of all changes. Writing a
    byte's current value leaves it alone.
    """

    def __init__(self, offset: int, data: bytes | bytearray) -> None:
        super().__init__(offset, data)
        self.touched: tuple[int, int] | None = None

    def write8(self, addr: int, value: int) -> None:
        off = self._index(addr)
        value &= 0xFF
        if self._data[off] == value:
            return
        self._data[off] = value
        if self.touched is None:
            self.touched = (addr, addr)
        else:
            first, last = self.touched
            self.touched = (min(first, addr), max(last, addr))

    def write(self, addr: int, data: bytes) -> None:
        self._index(addr, len(data))
        for i, byte in enumerate(data):
            self.write8(addr + i, byte)

    def write_uint(self, addr: int, value: int, width: int) -> None:
        """Write a little-endian unsigned integer, rejecting overflow."""
        if value < 0 or value >= 1 << (8 * width):
            raise ValidationError(
                f"Value {value} does not fit in {width} byte(s)", offset=addr
            )
        self.write(addr, value.to_bytes(width, "little"))

    def has_bit(self, addr: int, bit: int) -> bool:
        if not 0 <= bit < 8:
            raise ValidationError(f"Bit index {bit} not in 0..7")
        return bool(self.read8(addr) & (1 << bit))

    def set_bit(self, addr: int, bit: int, value: bool) -> None:
        if not 0 <= bit < 8:
            raise ValidationError(f"Bit index {bit} not in 0..7")
        byte = self.read8(addr)
        mask = 1 << bit
        self.write8(addr, byte | mask if value else byte & ~mask)

    def dirty_pages(self) -> range:
        """Page start addresses covering the touched range (empty if clean)."""
        if self.touched is None:
            return range(0)
        first, last = self.touched
        return range(page_floor(first), page_ceil(last + 1), PAGE_SIZE)

    def copy(self) -> MutableRegisterData:
        clone = MutableRegisterData(self.offset, self._data)
        clone.touched = self.touched
        return clone
