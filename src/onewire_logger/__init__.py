"""onewire_logger: DS2490 USB 1-Wire adapter driver and DS1922 logger stack."""

from .devices import DS1922, DeviceSnapshot, MissionSettings
from .errors import (
    AdapterDisconnected,
    DeviceNotSupported,
    InternalConflict,
    OneWireError,
    ProtocolError,
    TransportFault,
    ValidationError,
)
from .rom import RomId
from .session import AdapterInfo, Session
from .usb import DS2490

__all__ = [
    "AdapterDisconnected",
    "AdapterInfo",
    "DS1922",
    "DS2490",
    "DeviceNotSupported",
    "DeviceSnapshot",
    "InternalConflict",
    "MissionSettings",
    "OneWireError",
    "ProtocolError",
    "RomId",
    "Session",
    "TransportFault",
    "ValidationError",
]
