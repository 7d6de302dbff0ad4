"""Decoders for the DS2490 feedback block read from the interrupt endpoint.

Each poll returns a 16-byte state register block, optionally followed by
one result byte per completed 1-Wire command:

    0x00  enable flags (SPUE, SPCE)
    0x01  1-Wire speed
    0x02  strong pull-up duration
    0x04  pull-down slew rate
    0x05  write-1 low time
    0x06  data sample offset / write-0 recovery time
    0x08  device status flags (SPUA, PMOD, HALT, IDLE, EP0F)
    0x09  communication command byte 1
    0x0A  communication command byte 2
    0x0B  communication command buffer status
    0x0C  1-Wire data out buffer status
    0x0D  1-Wire data in buffer status
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ProtocolError

STATUS_SIZE = 16

# Enable flags (offset 0x00)
_SPUE = 0x01  # strong pull-up to 5V enabled
_SPCE = 0x04  # dynamic 1-Wire speed change enabled

# Device status flags (offset 0x08)
_SPUA = 0x01  # strong pull-up active
_PMOD = 0x08  # 12V programming voltage present
_HALT = 0x10  # command processing halted
_IDLE = 0x20  # command processing idle
_EP0F = 0x80  # endpoint 0 FIFO full

# Result byte value announcing a new device on the bus
DEVICE_DETECTED = 0xA5

# Result flags
_NRS = 0x01  # no presence pulse after reset
_SH = 0x02   # short detected
_APP = 0x04  # alarming presence pulse
_CMP = 0x10  # compare error on write verify
_CRC = 0x20  # CRC error
_RDP = 0x40  # read-back data pending
_EOS = 0x80  # search ended with fewer devices than requested


@dataclass(frozen=True)
class DeviceStatus:
    """One decoded state register block.

    ``seq`` is assigned by the poller and increases strictly with every
    read from the interrupt endpoint.
    """

    seq: int
    strong_pullup_enabled: bool
    speed_change_enabled: bool
    speed: int
    pullup_duration: int
    slew_rate: int
    write1_low_time: int
    write0_recovery_time: int
    strong_pullup_active: bool
    programming_voltage: bool
    halted: bool
    idle: bool
    ep0_fifo_full: bool
    command: int
    command_buffer_depth: int
    outbound_count: int
    inbound_count: int

    @classmethod
    def decode(cls, seq: int, data: bytes) -> DeviceStatus:
        if len(data) < STATUS_SIZE:
            raise ProtocolError(
                f"Status block needs {STATUS_SIZE} bytes, got {len(data)}"
            )
        flags = data[0x08]
        return cls(
            seq=seq,
            strong_pullup_enabled=bool(data[0x00] & _SPUE),
            speed_change_enabled=bool(data[0x00] & _SPCE),
            speed=data[0x01],
            pullup_duration=data[0x02],
            slew_rate=data[0x04],
            write1_low_time=data[0x05],
            write0_recovery_time=data[0x06],
            strong_pullup_active=bool(flags & _SPUA),
            programming_voltage=bool(flags & _PMOD),
            halted=bool(flags & _HALT),
            idle=bool(flags & _IDLE),
            ep0_fifo_full=bool(flags & _EP0F),
            command=data[0x09] | (data[0x0A] << 8),
            command_buffer_depth=data[0x0B],
            outbound_count=data[0x0C],
            inbound_count=data[0x0D],
        )

    @property
    def buffers_empty(self) -> bool:
        return self.outbound_count == 0 and self.inbound_count == 0

    def __str__(self) -> str:
        flags = [
            name
            for name, on in (
                ("IDLE", self.idle),
                ("HALT", self.halted),
                ("SPUA", self.strong_pullup_active),
                ("PMOD", self.programming_voltage),
                ("EP0F", self.ep0_fifo_full),
            )
            if on
        ]
        return (
            f"#{self.seq} [{' '.join(flags) or '-'}] cmd=0x{self.command:04X} "
            f"fifo={self.command_buffer_depth} out={self.outbound_count} "
            f"in={self.inbound_count}"
        )


@dataclass(frozen=True)
class CommandResult:
    """One result byte reported after a 1-Wire command."""

    value: int

    @property
    def device_detected(self) -> bool:
        return self.value == DEVICE_DETECTED

    @property
    def no_presence(self) -> bool:
        return not self.device_detected and bool(self.value & _NRS)

    @property
    def short(self) -> bool:
        return not self.device_detected and bool(self.value & _SH)

    @property
    def alarming_presence(self) -> bool:
        return not self.device_detected and bool(self.value & _APP)

    @property
    def compare_error(self) -> bool:
        return not self.device_detected and bool(self.value & _CMP)

    @property
    def crc_error(self) -> bool:
        return not self.device_detected and bool(self.value & _CRC)

    @property
    def data_pending(self) -> bool:
        return not self.device_detected and bool(self.value & _RDP)

    @property
    def search_underrun(self) -> bool:
        return not self.device_detected and bool(self.value & _EOS)


class CompoundResult:
    """Flags OR-ed over every result collected for one logical operation."""

    def __init__(self, results: list[CommandResult] | None = None) -> None:
        self.value = 0
        self.num_results = 0
        for result in results or ():
            self.add(result)

    def add(self, result: CommandResult) -> None:
        """Fold one result in; device-detected announcements are ignored."""
        if result.device_detected:
            return
        self.value |= result.value
        self.num_results += 1

    @property
    def no_presence(self) -> bool:
        return bool(self.value & _NRS)

    @property
    def short(self) -> bool:
        return bool(self.value & _SH)

    @property
    def alarming_presence(self) -> bool:
        return bool(self.value & _APP)

    @property
    def compare_error(self) -> bool:
        return bool(self.value & _CMP)

    @property
    def crc_error(self) -> bool:
        return bool(self.value & _CRC)

    @property
    def search_underrun(self) -> bool:
        return bool(self.value & _EOS)

    @property
    def has_error(self) -> bool:
        return self.crc_error or self.compare_error or self.short

    def __str__(self) -> str:
        names = [
            name
            for name, on in (
                ("NRS", self.no_presence),
                ("SH", self.short),
                ("APP", self.alarming_presence),
                ("CMP", self.compare_error),
                ("CRC", self.crc_error),
                ("EOS", self.search_underrun),
            )
            if on
        ]
        return f"{self.num_results} result(s) [{' '.join(names) or '-'}]"


@dataclass(frozen=True)
class Feedback:
    """A status block plus the result bytes that followed it."""

    status: DeviceStatus
    results: tuple[CommandResult, ...]

    @classmethod
    def decode(cls, seq: int, data: bytes) -> Feedback:
        status = DeviceStatus.decode(seq, data)
        results = tuple(CommandResult(b) for b in data[STATUS_SIZE:])
        return cls(status, results)
