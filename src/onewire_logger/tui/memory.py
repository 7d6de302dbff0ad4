"""Hex dump of register windows."""

from __future__ import annotations

from ..memory.register import RegisterData


def format_hex_dump(
    memory: RegisterData, start_addr: int | None = None, num_rows: int | None = None
) -> str:
    """Format a register window as a hex dump with addresses, hex bytes, and ASCII.

    Each row displays 16 bytes in the format:
        ADDR: HH HH HH HH HH HH HH HH  HH HH HH HH HH HH HH HH  |ASCII...........|

    Addresses outside the window show '??' and '.' in the ASCII column.

    Args:
        memory: The register window to dump.
        start_addr: First address (aligned down to 16 bytes); defaults to
            the window start.
        num_rows: Number of 16-byte rows; defaults to the whole window.

    Returns:
        A multi-line string, one row per line.
    """
    if start_addr is None:
        start_addr = memory.offset
    aligned_addr = start_addr & ~0xF
    if num_rows is None:
        num_rows = max(1, (memory.end - aligned_addr + 15) // 16)
    lines: list[str] = []

    for row in range(num_rows):
        row_addr = (aligned_addr + row * 16) & 0xFFFF
        hex_parts: list[str] = []
        ascii_parts: list[str] = []

        for col in range(16):
            try:
                byte_val = memory.read8(row_addr + col)
                hex_parts.append(f"{byte_val:02X}")
                ascii_parts.append(chr(byte_val) if 0x20 <= byte_val <= 0x7E else ".")
            except IndexError:
                hex_parts.append("??")
                ascii_parts.append(".")

            if col == 7:
                hex_parts.append("")

        lines.append(f"0x{row_addr:04X}: {' '.join(hex_parts)}  |{''.join(ascii_parts)}|")

    return "\n".join(lines)
