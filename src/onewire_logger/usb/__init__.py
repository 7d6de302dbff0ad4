"""DS2490 USB transport: vendor commands, status polling, bus primitives."""

from .ds2490 import DS2490
from .feedback import CommandResult, CompoundResult, DeviceStatus, Feedback
from .poller import FeedbackCollector, StatusPoller
from .vendor import ALTERNATE_SETTINGS, PRODUCT_ID, VENDOR_ID, VendorCommands

__all__ = [
    "ALTERNATE_SETTINGS",
    "CommandResult",
    "CompoundResult",
    "DS2490",
    "DeviceStatus",
    "Feedback",
    "FeedbackCollector",
    "PRODUCT_ID",
    "StatusPoller",
    "VENDOR_ID",
    "VendorCommands",
]
