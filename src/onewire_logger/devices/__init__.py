"""Device drivers for 1-Wire slaves (DS1922/DS1923 temperature loggers)."""

from .ds1922 import DS1922, DeviceSnapshot, GeneralPurposeMemory, MissionSettings, RtcState
from .registers import Calibration, DeviceType, Measurement, Rtc, TemperatureScale
from .registry import DEVICE_CLASSES, create_device, device_class

__all__ = [
    "Calibration",
    "DEVICE_CLASSES",
    "DS1922",
    "DeviceSnapshot",
    "DeviceType",
    "GeneralPurposeMemory",
    "Measurement",
    "MissionSettings",
    "Rtc",
    "RtcState",
    "TemperatureScale",
    "create_device",
    "device_class",
]
