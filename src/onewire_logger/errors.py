"""Fault hierarchy for the adapter, bus, and device layers.

Every fault can carry diagnostic context: the last command issued to the
adapter, the last status block seen, and the register offset involved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .usb.feedback import CompoundResult


class OneWireError(Exception):
    """Base class for all faults raised by this package."""

    def __init__(
        self,
        message: str,
        *,
        command: Any = None,
        status: Any = None,
        offset: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = command
        self.status = status
        self.offset = offset

    def __str__(self) -> str:
        parts = [self.message]
        if self.offset is not None:
            parts.append(f"offset=0x{self.offset:04X}")
        if self.command is not None:
            parts.append(f"last command: {self.command}")
        if self.status is not None:
            parts.append(f"last status: {self.status}")
        return "; ".join(parts)


class TransportFault(OneWireError):
    """USB transfer failed, a wait timed out, or retries were exhausted."""


class AdapterDisconnected(TransportFault):
    """The USB adapter is no longer present on the host."""


class InternalConflict(OneWireError):
    """The device reported a transient internal conflict; safe to retry."""


class ProtocolError(OneWireError):
    """Received data failed a check: CRC, compare, short, or presence."""

    def __init__(
        self,
        message: str,
        *,
        flags: CompoundResult | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.flags = flags


class ValidationError(OneWireError, ValueError):
    """A caller argument violates a fixed contract."""


class DeviceNotSupported(OneWireError):
    """Unknown family code, device sub-type, or USB product."""
