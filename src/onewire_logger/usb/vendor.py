"""DS2490 vendor command encoder over an opened pyusb device.

Endpoint layout of the DS2490 (interface 0):

    EP0      control: vendor commands (control, communication, mode)
    EP1 IN   interrupt: state register block + result bytes
    EP2 OUT  bulk: data to transmit on the 1-Wire bus
    EP3 IN   bulk: data received from the 1-Wire bus

Every communication command is a vendor OUT control transfer whose
wValue holds the command code OR-ed with its flag bits and whose wIndex
carries the command parameter.
"""

from __future__ import annotations

import errno
import logging
import threading
from dataclasses import dataclass
from typing import Any

import usb.core
import usb.util

from ..errors import AdapterDisconnected, TransportFault, ValidationError
from .feedback import STATUS_SIZE, Feedback

_LOGGER = logging.getLogger(__name__)

VENDOR_ID = 0x04FA
PRODUCT_ID = 0x2490

EP_STATUS = 0x81
EP_OUT = 0x02
EP_IN = 0x83

USB_TIMEOUT_MS = 1000

# Interrupt reads request this many bytes: status block plus results
_FEEDBACK_READ_SIZE = 32

# alternate setting -> (bulk max packet size, interrupt poll interval in ms)
ALTERNATE_SETTINGS = {
    0: (16, 10),
    1: (64, 10),
    2: (16, 1),
    3: (64, 1),
}

# Command type codes (bRequest)
CONTROL_CMD = 0x00
COMM_CMD = 0x01
MODE_CMD = 0x02

# Control command codes
CTL_RESET_DEVICE = 0x0000

# Communication command codes
COMM_SET_DURATION = 0x0012
COMM_PULSE = 0x0030
COMM_ONE_WIRE_RESET = 0x0042
COMM_BIT_IO = 0x0020
COMM_BYTE_IO = 0x0052
COMM_BLOCK_IO = 0x0074
COMM_MATCH_ACCESS = 0x0064
COMM_READ_STRAIGHT = 0x0080
COMM_SEARCH_ACCESS = 0x00F4

# Communication flag bits (several share a position, meaning depends on command)
FLAG_RTS = 0x4000  # search: return discrepancy information
FLAG_CIB = 0x4000  # bit I/O: suppress read-back unless bit changed
FLAG_PST = 0x4000  # reset: loop until presence detected
FLAG_SPU = 0x1000  # strong pull-up after the command
FLAG_F = 0x0800    # flush buffers on error
FLAG_NTF = 0x0400  # always post a result byte
FLAG_ICP = 0x0200  # intermediate command: no read-back to EP3
FLAG_RST = 0x0100  # reset the bus before the command
FLAG_SE = 0x0008   # reset: change speed
FLAG_D = 0x0008    # bit I/O: data bit
FLAG_SM = 0x0008   # search: return ROM ids, not only discrepancy
FLAG_IM = 0x0001   # execute immediately

# 1-Wire speeds for reset / match access
SPEED_REGULAR = 0x00
SPEED_FLEXIBLE = 0x01
SPEED_OVERDRIVE = 0x02

# Bit mask isolating the command code from the flag bits in wValue
COMMAND_CODE_MASK = 0x00F6


@dataclass(frozen=True)
class LastCommand:
    """The most recent control transfer, kept for fault diagnostics."""

    request: int
    value: int
    index: int

    def __str__(self) -> str:
        kind = {CONTROL_CMD: "CTL", COMM_CMD: "COMM", MODE_CMD: "MODE"}.get(
            self.request, f"REQ{self.request}"
        )
        return f"{kind} value=0x{self.value:04X} index=0x{self.index:04X}"


def _usb_fault(message: str, error: usb.core.USBError, command: Any) -> TransportFault:
    if getattr(error, "errno", None) == errno.ENODEV:
        return AdapterDisconnected(f"{message}: adapter removed", command=command)
    return TransportFault(f"{message}: {error}", command=command)


class VendorCommands:
    """Thin encoder for DS2490 vendor requests.

    Args:
        handle: Opened, configured pyusb device with interface 0 claimed.
        alt_setting: Selected alternate setting (see ALTERNATE_SETTINGS).
    """

    def __init__(self, handle: Any, alt_setting: int = 0) -> None:
        if alt_setting not in ALTERNATE_SETTINGS:
            raise ValidationError(f"Alternate setting {alt_setting} not supported")
        self._handle = handle
        self.alt_setting = alt_setting
        self.packet_size, self.poll_interval_ms = ALTERNATE_SETTINGS[alt_setting]
        self.last_command: LastCommand | None = None
        self._status_thread: threading.Thread | None = None
        self._request_type = usb.util.build_request_type(
            usb.util.CTRL_OUT,
            usb.util.CTRL_TYPE_VENDOR,
            usb.util.CTRL_RECIPIENT_DEVICE,
        )

    def bind_status_thread(self, thread: threading.Thread | None) -> None:
        """Restrict read_feedback() to one thread (None lifts the restriction)."""
        self._status_thread = thread

    def _control(self, request: int, value: int, index: int = 0) -> None:
        command = LastCommand(request, value, index)
        self.last_command = command
        _LOGGER.debug("control %s", command)
        try:
            self._handle.ctrl_transfer(
                self._request_type, request, value, index, None, USB_TIMEOUT_MS
            )
        except usb.core.USBError as e:
            raise _usb_fault("Control transfer failed", e, command) from e

    # -- control commands --------------------------------------------------

    def reset_device(self) -> None:
        """Power-on equivalent reset: clears all buffers and mode settings."""
        self._control(CONTROL_CMD, CTL_RESET_DEVICE)

    # -- communication commands --------------------------------------------

    def one_wire_reset(
        self,
        *,
        notify: bool = False,
        flush: bool = True,
        until_presence: bool = False,
        speed: int | None = SPEED_FLEXIBLE,
    ) -> None:
        """Reset pulse; a speed other than None changes the bus speed."""
        value = COMM_ONE_WIRE_RESET | FLAG_IM
        if notify:
            value |= FLAG_NTF
        if flush:
            value |= FLAG_F
        if until_presence:
            value |= FLAG_PST
        if speed is not None:
            value |= FLAG_SE
        self._control(COMM_CMD, value, speed or 0)

    def bit_io(self, bit: bool, *, read_back: bool) -> None:
        """Write one bit; without read_back no byte is posted to EP3."""
        value = COMM_BIT_IO | FLAG_IM
        if not read_back:
            value |= FLAG_ICP
        if bit:
            value |= FLAG_D
        self._control(COMM_CMD, value)

    def byte_io(self, byte: int, *, read_back: bool) -> None:
        """Write one byte (0xFF to read); read_back posts the result to EP3."""
        value = COMM_BYTE_IO | FLAG_IM
        if not read_back:
            value |= FLAG_ICP
        self._control(COMM_CMD, value, byte & 0xFF)

    def block_io(self, size: int, *, strong_pullup: bool = False) -> None:
        """Shift ``size`` bytes from EP2 to the bus, echoing them into EP3."""
        value = COMM_BLOCK_IO | FLAG_IM
        if strong_pullup:
            value |= FLAG_SPU
        self._control(COMM_CMD, value, size)

    def match_access(self, *, overdrive: bool = False) -> None:
        """Match ROM using the 8 id bytes pre-loaded into EP2."""
        self._control(
            COMM_CMD, COMM_MATCH_ACCESS | FLAG_IM, 0x69 if overdrive else 0x55
        )

    def search_access(self, max_devices: int, *, conditional: bool = False) -> None:
        """Hardware search starting from the 8 bytes pre-loaded into EP2.

        Discovered ids (8 bytes each) are posted to EP3, followed by 8
        bytes of discrepancy information when more devices remain.
        """
        value = (
            COMM_SEARCH_ACCESS
            | FLAG_NTF
            | FLAG_IM
            | FLAG_RST
            | FLAG_SM
            | FLAG_RTS
        )
        index = ((max_devices & 0xFF) << 8) | (0xEC if conditional else 0xF0)
        self._control(COMM_CMD, value, index)

    # -- bulk endpoints ----------------------------------------------------

    def write_out(self, data: bytes) -> None:
        """Write to EP2 (bytes to go out on the bus)."""
        try:
            written = self._handle.write(EP_OUT, data, USB_TIMEOUT_MS)
        except usb.core.USBError as e:
            raise _usb_fault("Bulk write failed", e, self.last_command) from e
        if written != len(data):
            raise TransportFault(
                f"Bulk write incomplete: {written} of {len(data)} bytes",
                command=self.last_command,
            )

    def read_in(self, count: int) -> bytes:
        """Read up to ``count`` bytes from EP3 (bytes received from the bus)."""
        try:
            data = self._handle.read(EP_IN, count, USB_TIMEOUT_MS)
        except usb.core.USBError as e:
            raise _usb_fault("Bulk read failed", e, self.last_command) from e
        return bytes(data)

    # -- status ------------------------------------------------------------

    def read_feedback(self, seq: int) -> Feedback | None:
        """Read one state block from the interrupt endpoint.

        Only the bound status thread may call this: results are consumed
        by the read and would be lost to anyone else.

        Returns:
            The decoded feedback, or None if the read timed out.
        """
        if (
            self._status_thread is not None
            and threading.current_thread() is not self._status_thread
        ):
            raise TransportFault(
                "read_feedback() called outside the status thread; results would be lost"
            )
        try:
            data = self._handle.read(EP_STATUS, _FEEDBACK_READ_SIZE, USB_TIMEOUT_MS)
        except usb.core.USBTimeoutError:
            return None
        except usb.core.USBError as e:
            raise _usb_fault("Status read failed", e, self.last_command) from e
        if len(data) < STATUS_SIZE:
            raise TransportFault(
                f"Status block too short: {len(data)} bytes",
                command=self.last_command,
            )
        return Feedback.decode(seq, bytes(data))
