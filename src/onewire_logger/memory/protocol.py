"""DS1922/DS1923 memory and function commands.

Framing of the commands used here (all preceded by reset + ROM
addressing):

    READ MEMORY WITH PASSWORD AND CRC   69h TA1 TA2 PW[8], then per page:
                                        data up to page end, inverted CRC16
    WRITE SCRATCHPAD                    0Fh TA1 TA2 data, inverted CRC16
    READ SCRATCHPAD                     AAh, then TA1 TA2 E/S data, CRC16
    COPY SCRATCHPAD WITH PASSWORD       99h TA1 TA2 E/S PW[8]
    CLEAR MEMORY WITH PASSWORD          96h PW[8] FFh
    START MISSION WITH PASSWORD         CCh PW[8] FFh
    STOP MISSION WITH PASSWORD          33h PW[8] FFh
    FORCED CONVERSION                   55h FFh

The CRC of the first page of a memory read covers the command and
address; every following page restarts the CRC at zero. A CRC read back
as FFh FFh (zero after inversion) is the chip's internal-conflict
signature and causes a retry; any other mismatch is a transmission
error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from ..bus.adapter import OneWireAdapter
from ..crc import Crc16, crc16, decode_inverted_crc16
from ..errors import InternalConflict, ProtocolError, ValidationError
from ..rom import RomId
from .password import PasswordBuffer
from .register import PAGE_SIZE, MutableRegisterData, RegisterData
from .retry import CONFLICT_DELAY, MAX_CONFLICT_RETRIES, run_with_retry

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Function commands
CMD_READ_MEMORY = 0x69
CMD_WRITE_SCRATCHPAD = 0x0F
CMD_READ_SCRATCHPAD = 0xAA
CMD_COPY_SCRATCHPAD = 0x99
CMD_CLEAR_MEMORY = 0x96
CMD_START_MISSION = 0xCC
CMD_STOP_MISSION = 0x33
CMD_FORCED_CONVERSION = 0x55

# Registers the protocol itself inspects
LATEST_TEMPERATURE = 0x020C
GENERAL_STATUS = 0x0215
DEVICE_SAMPLES_COUNTER = 0x0223

# General status bits
STATUS_WFTA = 0x10  # waiting for temperature alarm
STATUS_MEMCLR = 0x08  # memory cleared
STATUS_MIP = 0x02  # mission in progress

# Scratchpad E/S byte
_ES_AA = 0x80  # authorization accepted (copy done)
_ES_PF = 0x20  # partial byte flag
_ES_OFFSET = 0x1F

ADDRESS_SPACE = 0x10000
MAX_STAGING_ATTEMPTS = 3
COPY_SETTLE_TIME = 0.1  # seconds, on top of 2 us per byte
CONVERSION_TIME = 0.6  # seconds


@dataclass(frozen=True)
class ScratchpadReadback:
    """Decoded READ SCRATCHPAD response."""

    target_address: int
    ending_offset: int
    authorization_accepted: bool
    partial_flag: bool
    data: bytes
    auth_pattern: bytes  # TA1 TA2 E/S, as required by COPY SCRATCHPAD


def _check_crc(expected: int, raw: bytes, name: str, offset: int) -> None:
    if len(raw) != 2:
        raise ProtocolError(f"{name}: CRC missing", offset=offset)
    received = decode_inverted_crc16(raw)
    if received == expected:
        return
    if received == 0:
        raise InternalConflict(f"{name}: internal conflict", offset=offset)
    raise ProtocolError(
        f"{name}: CRC mismatch, received 0x{received:04X}, expected 0x{expected:04X}",
        offset=offset,
    )


class DS1922Protocol:
    """Register access to one DS1922/DS1923 logger.

    Args:
        adapter: Bus master the device sits on.
        rom_id: Address of the device.
        enable_resume: Re-address with RESUME when the device was the
            last one matched.
        use_skip_rom: Address with SKIP ROM (single-drop bus only).
        conflict_delay: Seconds to wait after an internal conflict.
        copy_settle_time: Extra wait after COPY SCRATCHPAD.
        conversion_time: Wait after FORCED CONVERSION.
    """

    def __init__(
        self,
        adapter: OneWireAdapter,
        rom_id: RomId,
        *,
        enable_resume: bool = False,
        use_skip_rom: bool = False,
        conflict_delay: float = CONFLICT_DELAY,
        copy_settle_time: float = COPY_SETTLE_TIME,
        conversion_time: float = CONVERSION_TIME,
        max_conflict_retries: int = MAX_CONFLICT_RETRIES,
        max_staging_attempts: int = MAX_STAGING_ATTEMPTS,
    ) -> None:
        self.adapter = adapter
        self.rom_id = rom_id
        self.enable_resume = enable_resume
        self.use_skip_rom = use_skip_rom
        self.conflict_delay = conflict_delay
        self.copy_settle_time = copy_settle_time
        self.conversion_time = conversion_time
        self.max_conflict_retries = max_conflict_retries
        self.max_staging_attempts = max_staging_attempts

    def _access(self) -> None:
        self.adapter.address(
            self.rom_id,
            allow_resume=self.enable_resume,
            skip_rom=self.use_skip_rom,
        )

    def _retry(
        self,
        command: Callable[[], T],
        name: str,
        recover: Callable[[], T | None] | None = None,
    ) -> T:
        with self.adapter.lock:
            return run_with_retry(
                command,
                reset_bus=self.adapter.reset_bus,
                recover=recover,
                max_attempts=self.max_conflict_retries,
                delay=self.conflict_delay,
                name=name,
            )

    # -- reads -------------------------------------------------------------

    def read_memory(
        self, offset: int, length: int, password: PasswordBuffer
    ) -> RegisterData:
        """Read ``length`` bytes at ``offset`` with password and CRC checks.

        Raises:
            ValidationError: For an empty or out-of-range request.
            ProtocolError: On a genuine CRC mismatch.
            TransportFault: If internal conflicts persist.
        """
        if length <= 0 or offset < 0 or offset + length > ADDRESS_SPACE:
            raise ValidationError(
                f"Invalid read of {length} byte(s)", offset=offset
            )
        command = bytes([CMD_READ_MEMORY, offset & 0xFF, (offset >> 8) & 0xFF])
        _LOGGER.debug("read memory 0x%04X+%d", offset, length)

        def once() -> RegisterData:
            self._access()
            self.adapter.write(command + bytes(password))
            crc = Crc16().update(command)
            out = bytearray()
            addr = offset
            while len(out) < length:
                in_page = PAGE_SIZE - addr % PAGE_SIZE
                page = self.adapter.read(in_page)
                crc.update(page)
                _check_crc(crc.value, self.adapter.read(2), "READ MEMORY", addr)
                crc.reset()
                out += page[:length - len(out)]
                addr += in_page
            # The device keeps sending ones past the end; only a reset stops it
            self.adapter.reset_bus()
            return RegisterData(offset, out)

        return self._retry(once, "READ MEMORY")

    def read_field(
        self,
        offset: int,
        length: int,
        password: PasswordBuffer,
        preloaded: RegisterData | None = None,
    ) -> bytes:
        """Serve a register field from ``preloaded`` if it covers it, else read it."""
        if preloaded is not None and preloaded.contains(offset, length):
            return preloaded.read(offset, length)
        return self.read_memory(offset, length, password).read(offset, length)

    def read_general_status(
        self, password: PasswordBuffer, preloaded: RegisterData | None = None
    ) -> int:
        return self.read_field(GENERAL_STATUS, 1, password, preloaded)[0]

    # -- scratchpad --------------------------------------------------------

    def write_scratchpad(self, offset: int, data: bytes) -> None:
        """Stage data from ``offset`` to the end of its 32-byte scratchpad page."""
        expected = PAGE_SIZE - (offset & _ES_OFFSET)
        if len(data) != expected:
            raise ValidationError(
                f"WRITE SCRATCHPAD expects {expected} bytes, got {len(data)}",
                offset=offset,
            )
        frame = bytes([CMD_WRITE_SCRATCHPAD, offset & 0xFF, (offset >> 8) & 0xFF]) + data
        expected_crc = crc16(frame)

        def once() -> None:
            self._access()
            self.adapter.write(frame)
            _check_crc(expected_crc, self.adapter.read(2), "WRITE SCRATCHPAD", offset)

        self._retry(once, "WRITE SCRATCHPAD")

    def read_scratchpad(self, offset: int) -> ScratchpadReadback:
        """Read the scratchpad back; the echoed target must equal ``offset``."""
        ta = bytes([offset & 0xFF, (offset >> 8) & 0xFF])

        def once() -> ScratchpadReadback:
            self._access()
            self.adapter.write(bytes([CMD_READ_SCRATCHPAD]))
            target = self.adapter.read(2)
            if target != ta:
                raise ProtocolError(
                    f"READ SCRATCHPAD: target address {target.hex()} != {ta.hex()}",
                    offset=offset,
                )
            es = self.adapter.read(1)[0]
            data = self.adapter.read(PAGE_SIZE - (offset & _ES_OFFSET))
            expected_crc = crc16(bytes([CMD_READ_SCRATCHPAD]) + target + bytes([es]) + data)
            _check_crc(expected_crc, self.adapter.read(2), "READ SCRATCHPAD", offset)
            self.adapter.reset_bus()
            return ScratchpadReadback(
                target_address=offset,
                ending_offset=es & _ES_OFFSET,
                authorization_accepted=bool(es & _ES_AA),
                partial_flag=bool(es & _ES_PF),
                data=data,
                auth_pattern=target + bytes([es]),
            )

        return self._retry(once, "READ SCRATCHPAD")

    def copy_scratchpad(self, auth_pattern: bytes, password: PasswordBuffer) -> None:
        """Commit the scratchpad to memory.

        Completion shows as alternating bits on the bus. After a conflict
        the scratchpad is read back; a set AA flag means the copy went
        through after all.
        """
        if len(auth_pattern) != 3:
            raise ValidationError("Authorization pattern needs 3 bytes (TA1, TA2, E/S)")
        es = auth_pattern[2]
        offset = auth_pattern[0] | (auth_pattern[1] << 8)
        if es & _ES_AA:
            raise ValidationError("Scratchpad already copied (AA set)", offset=offset)
        if es & _ES_OFFSET != _ES_OFFSET:
            raise ValidationError(
                f"Ending offset 0x{es & _ES_OFFSET:02X} != 0x1F", offset=offset
            )
        count = (es & _ES_OFFSET) + 1 - (auth_pattern[0] & _ES_OFFSET)
        frame = bytes([CMD_COPY_SCRATCHPAD]) + bytes(auth_pattern) + bytes(password)

        def once() -> bool:
            self._access()
            self.adapter.write(frame)
            time.sleep(2e-6 * count + self.copy_settle_time)
            if self.adapter.read_bit() == self.adapter.read_bit():
                raise InternalConflict("COPY SCRATCHPAD: no completion pattern", offset=offset)
            return True

        def recover() -> bool | None:
            return True if self.read_scratchpad(offset).authorization_accepted else None

        self._retry(once, "COPY SCRATCHPAD", recover=recover)

    def write_register_data(
        self, data: MutableRegisterData, password: PasswordBuffer
    ) -> list[int]:
        """Write every page overlapping the touched range of ``data``.

        Each page is staged, read back and compared, restaged up to
        ``max_staging_attempts`` times, then copied.

        Returns:
            Start addresses of the pages written.
        """
        pages = list(data.dirty_pages())
        with self.adapter.lock:
            for page in pages:
                if not data.contains(page, PAGE_SIZE):
                    raise ValidationError(
                        "Register window does not cover the whole page", offset=page
                    )
                content = data.read(page, PAGE_SIZE)
                readback = self._stage(page, content)
                self.copy_scratchpad(readback.auth_pattern, password)
                _LOGGER.debug("committed page 0x%04X", page)
        return pages

    def _stage(self, page: int, content: bytes) -> ScratchpadReadback:
        for n in range(1, self.max_staging_attempts + 1):
            self.write_scratchpad(page, content)
            readback = self.read_scratchpad(page)
            if (
                readback.data == content
                and not readback.authorization_accepted
                and not readback.partial_flag
            ):
                return readback
            _LOGGER.warning(
                "scratchpad verify failed for page 0x%04X (attempt %d/%d)",
                page, n, self.max_staging_attempts,
            )
        raise ProtocolError(
            f"Scratchpad verify failed after {self.max_staging_attempts} attempts",
            offset=page,
        )

    # -- function commands -------------------------------------------------

    def _password_command(
        self, code: int, password: PasswordBuffer, name: str,
        confirmed: Callable[[int], bool],
    ) -> None:
        frame = bytes([code]) + bytes(password) + b"\xff"

        def once() -> None:
            self._access()
            self.adapter.write(frame)
            status = self.read_general_status(password)
            if not confirmed(status):
                raise InternalConflict(f"{name}: status 0x{status:02X} not confirmed")

        self._retry(once, name)
        _LOGGER.info("%s done for %s", name, self.rom_id.hex())

    def clear_memory(self, password: PasswordBuffer) -> None:
        self._password_command(
            CMD_CLEAR_MEMORY, password, "CLEAR MEMORY",
            lambda s: bool(s & STATUS_MEMCLR),
        )

    def start_mission(self, password: PasswordBuffer) -> None:
        self._password_command(
            CMD_START_MISSION, password, "START MISSION",
            lambda s: bool(s & STATUS_MIP) and not s & STATUS_MEMCLR,
        )

    def stop_mission(self, password: PasswordBuffer) -> None:
        self._password_command(
            CMD_STOP_MISSION, password, "STOP MISSION",
            lambda s: not s & STATUS_MIP,
        )

    def forced_conversion(self, password: PasswordBuffer) -> bytes:
        """Take one temperature sample now.

        Returns:
            The two latest-temperature register bytes (low, high).

        Raises:
            ProtocolError: If the device samples counter did not advance.
        """

        def samples() -> int:
            raw = self.read_field(DEVICE_SAMPLES_COUNTER, 3, password)
            return int.from_bytes(raw, "little")

        def once() -> bytes:
            before = samples()
            self._access()
            self.adapter.write(bytes([CMD_FORCED_CONVERSION, 0xFF]))
            time.sleep(self.conversion_time)
            after = samples()
            if after <= before:
                raise ProtocolError(
                    f"FORCED CONVERSION: samples counter did not increase ({before} -> {after})"
                )
            return self.read_field(LATEST_TEMPERATURE, 2, password)

        return self._retry(once, "FORCED CONVERSION")
