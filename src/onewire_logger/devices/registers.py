"""DS1922/DS1923 memory map and register field codecs.

Register space (addresses are 16 bit, little-endian multi-byte fields):

    0x0000 - 0x01FF  general-purpose memory (16 pages)
    0x0200 - 0x023F  configuration window (two pages, see constants)
    0x0240 - 0x0247  calibration data
    0x1000 - 0x2FFF  data log
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

from ..errors import DeviceNotSupported, ProtocolError, ValidationError
from ..memory.protocol import GENERAL_STATUS
from ..memory.register import MutableRegisterData, RegisterData

FAMILY_CODE = 0x41

GENERAL_PURPOSE = 0x0000
GENERAL_PURPOSE_SIZE = 16 * 32

CONFIG = 0x0200
CONFIG_SIZE = 64

RTC = 0x0200
SAMPLE_RATE = 0x0206
ALARM_LOW = 0x0208
ALARM_HIGH = 0x0209
# 0x020C latest temperature, see memory.protocol
ALARM_ENABLE = 0x0210
RTC_CONTROL = 0x0212
MISSION_CONTROL = 0x0213
ALARM_STATUS = 0x0214
# 0x0215 general status, see memory.protocol
START_DELAY = 0x0216
MISSION_TIMESTAMP = 0x0219
MISSION_SAMPLES = 0x0220
# 0x0223 device samples counter, see memory.protocol
DEVICE_CONFIG = 0x0226
PASSWORD_CONTROL = 0x0227
READ_PASSWORD = 0x0228
FULL_PASSWORD = 0x0230
CALIBRATION = 0x0240
CALIBRATION_SIZE = 8

DATA_LOG = 0x1000
DATA_LOG_SIZE = 8192

MAX_SAMPLE_RATE = 0x3FFF
MAX_START_DELAY = 0xFFFFFF

PASSWORD_PROTECTED = 0xAA
PASSWORD_UNPROTECTED = PASSWORD_PROTECTED ^ 0x5F


# -- bitfield registers ------------------------------------------------------


class _Flag:
    """One bit of a Bitfield register, read and written as a bool."""

    def __init__(self, mask: int) -> None:
        self.mask = mask

    def __get__(self, obj: Bitfield | None, owner: type) -> bool:
        if obj is None:
            return self  # type: ignore[return-value]
        return bool(obj.value & self.mask)

    def __set__(self, obj: Bitfield, on: bool) -> None:
        obj.value = obj.value | self.mask if on else obj.value & ~self.mask & 0xFF


class Bitfield:
    """Single-byte register decoded into boolean flags.

    Setting a flag only touches its bit, so reserved bits of the byte
    read from the device survive a read-modify-write.
    """

    address: ClassVar[int]

    def __init__(self, value: int = 0) -> None:
        self.value = value & 0xFF

    @classmethod
    def load(cls, data: RegisterData) -> Bitfield:
        return cls(data.read8(cls.address))

    def store(self, data: MutableRegisterData) -> None:
        data.write8(self.address, self.value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(0x{self.value:02X})"


class AlarmEnable(Bitfield):
    address = ALARM_ENABLE
    high = _Flag(0x02)  # ETHA
    low = _Flag(0x01)  # ETLA


class RtcControl(Bitfield):
    address = RTC_CONTROL
    high_speed = _Flag(0x02)  # EHSS: sample rate in seconds
    oscillator = _Flag(0x01)  # EOSC


class MissionControl(Bitfield):
    address = MISSION_CONTROL
    start_upon_alarm = _Flag(0x20)  # SUTA
    rollover = _Flag(0x10)  # RO
    high_resolution = _Flag(0x04)  # TLFS
    logging = _Flag(0x01)  # ETL


class AlarmStatus(Bitfield):
    address = ALARM_STATUS
    battery_on_reset = _Flag(0x80)  # BOR
    high_seen = _Flag(0x02)  # THF
    low_seen = _Flag(0x01)  # TLF


class GeneralStatus(Bitfield):
    address = GENERAL_STATUS
    waiting_for_alarm = _Flag(0x10)  # WFTA
    memory_cleared = _Flag(0x08)  # MEMCLR
    mission_in_progress = _Flag(0x02)  # MIP


# -- real-time clock ---------------------------------------------------------

_HOUR_12H = 0x40
_HOUR_20_OR_PM = 0x20
_MONTH_CENT = 0x80


def _from_bcd(value: int, mask: int) -> int:
    value &= mask
    return (value >> 4) * 10 + (value & 0x0F)


def _to_bcd(number: int, maximum: int) -> int:
    if not 0 <= number <= maximum:
        raise ValidationError(f"BCD value {number} not in 0..{maximum}")
    return ((number // 10) << 4) | (number % 10)


@dataclass
class Rtc:
    """Six-byte BCD clock as stored at RTC and MISSION_TIMESTAMP.

    ``hours`` is always 0..23; ``is_24h`` only selects the encoding.
    ``cent`` is set by the device when the year wraps from 99 to 00.
    """

    seconds: int = 0
    minutes: int = 0
    hours: int = 0
    day: int = 0
    month: int = 0
    year: int = 0
    is_24h: bool = True
    cent: bool = False

    SIZE: ClassVar[int] = 6

    @classmethod
    def decode(cls, raw: bytes) -> Rtc:
        if len(raw) != cls.SIZE:
            raise ValidationError(f"RTC needs {cls.SIZE} bytes, got {len(raw)}")
        hour_byte = raw[2]
        is_24h = not hour_byte & _HOUR_12H
        hours = _from_bcd(hour_byte, 0x1F)
        if is_24h:
            if hour_byte & _HOUR_20_OR_PM:
                hours += 20
        else:
            # 12-hour values run 12, 1..11 within each half of the day
            hours = hours % 12 + (12 if hour_byte & _HOUR_20_OR_PM else 0)
        return cls(
            seconds=_from_bcd(raw[0], 0x7F),
            minutes=_from_bcd(raw[1], 0x7F),
            hours=hours,
            day=_from_bcd(raw[3], 0x3F),
            month=_from_bcd(raw[4], 0x1F),
            year=_from_bcd(raw[5], 0xFF),
            is_24h=is_24h,
            cent=bool(raw[4] & _MONTH_CENT),
        )

    def encode(self) -> bytes:
        if self.is_24h:
            hour_byte = _to_bcd(self.hours, 23)
        else:
            if not 0 <= self.hours <= 23:
                raise ValidationError(f"Hour {self.hours} not in 0..23")
            hour_byte = (
                _HOUR_12H
                | (_HOUR_20_OR_PM if self.hours >= 12 else 0)
                | _to_bcd(self.hours % 12 or 12, 12)
            )
        return bytes([
            _to_bcd(self.seconds, 59),
            _to_bcd(self.minutes, 59),
            hour_byte,
            _to_bcd(self.day, 31),
            _to_bcd(self.month, 12) | (_MONTH_CENT if self.cent else 0),
            _to_bcd(self.year, 99),
        ])

    @classmethod
    def from_datetime(cls, when: datetime) -> Rtc:
        """24-hour clock value for ``when``, century flag clear."""
        return cls(
            seconds=when.second,
            minutes=when.minute,
            hours=when.hour,
            day=when.day,
            month=when.month,
            year=when.year % 100,
        )

    def to_datetime(self, now: datetime | None = None) -> datetime:
        """Resolve the two-digit year against ``now``.

        Years that would lie in the future belong to the previous century.
        """
        current = (now or datetime.now()).year
        year = current - current % 100 + self.year
        if year > current:
            year -= 100
        try:
            return datetime(year, self.month, self.day, self.hours, self.minutes, self.seconds)
        except ValueError as e:
            raise ProtocolError(f"Invalid RTC value {self}: {e}") from None


def rtc_timestamp(raw: bytes, now: datetime | None = None) -> datetime | None:
    """Decode a clock register; an all-zero register means "not set"."""
    if not any(raw):
        return None
    return Rtc.decode(raw).to_datetime(now)


# -- temperature -------------------------------------------------------------


class DeviceType(enum.Enum):
    """Sub-type encoded in the device configuration byte."""

    DS2422 = 0x00
    DS1923 = 0x20
    DS1922L = 0x40
    DS1922T = 0x60
    DS1922E = 0x80

    @classmethod
    def from_config(cls, value: int) -> DeviceType:
        try:
            return cls(value)
        except ValueError:
            raise DeviceNotSupported(
                f"Unknown device configuration 0x{value:02X}", offset=DEVICE_CONFIG
            ) from None


@dataclass(frozen=True)
class TemperatureScale:
    """Raw <-> degrees Celsius conversion for one sub-type.

    Raw values are 0.5 degree steps above ``-offset`` in the high byte
    plus 1/512 degree steps in the optional low byte.

    Attributes:
        tr1: Reference temperature of the factory calibration.
        offset: Temperature represented by raw zero, negated.
    """

    tr1: int
    offset: int

    def decode(self, trh: int, trl: int | None = None) -> float:
        if trh == 0x00 and (trl or 0x00) == 0x00:
            return -math.inf
        if trh == 0xFF:
            low = 0xE0 if trl is None else trl
            if low == 0xE0:
                return math.inf
            if low > 0xE0:
                raise ProtocolError(
                    f"Invalid temperature reading trh=0x{trh:02X} trl=0x{low:02X}"
                )
        return trh / 2.0 - self.offset + (trl or 0) / 512.0

    def encode(self, temperature: float) -> int:
        """Encode a threshold temperature into one raw byte."""
        if temperature == -math.inf:
            return 0x00
        if temperature == math.inf:
            return 0xFF
        raw = round(2 * temperature + 2 * self.offset)
        if not 0 <= raw <= 0xFF:
            raise ValidationError(f"Temperature {temperature} out of range")
        return raw


TEMPERATURE_SCALES = {
    DeviceType.DS1922L: TemperatureScale(tr1=60, offset=41),
    DeviceType.DS1922T: TemperatureScale(tr1=90, offset=1),
}


def scale_for(device_type: DeviceType) -> TemperatureScale:
    try:
        return TEMPERATURE_SCALES[device_type]
    except KeyError:
        raise DeviceNotSupported(f"Device type {device_type.name} not supported") from None


@dataclass(frozen=True)
class Measurement:
    """A temperature as read and after factory calibration."""

    temperature: float
    calibrated: float


class Calibration:
    """Quadratic error correction from the factory calibration block.

    The block holds two (reference, measured) pairs at Tr2 and Tr3; the
    error at Tr1 is taken equal to the error at Tr2.
    """

    def __init__(self, scale: TemperatureScale, raw: bytes) -> None:
        if len(raw) != CALIBRATION_SIZE:
            raise ValidationError(
                f"Calibration needs {CALIBRATION_SIZE} bytes, got {len(raw)}"
            )
        self.scale = scale
        self.tr2 = scale.decode(raw[0], raw[1])
        self.tc2 = scale.decode(raw[2], raw[3])
        self.tr3 = scale.decode(raw[4], raw[5])
        self.tc3 = scale.decode(raw[6], raw[7])
        self.a, self.b, self.c = self._coefficients()

    def _coefficients(self) -> tuple[float, float, float]:
        tr1 = float(self.scale.tr1)
        tr2, tr3 = self.tr2, self.tr3
        err2 = self.tc2 - tr2
        err3 = self.tc3 - tr3
        err1 = err2
        tr1s, tr2s, tr3s = tr1 ** 2, tr2 ** 2, tr3 ** 2
        denominator = (tr2s - tr1s) * (tr3 - tr1) + (tr3s - tr1s) * (tr1 - tr2)
        if not all(map(math.isfinite, (tr2, tr3, err2, err3))) or denominator == 0 or tr2s == tr1s:
            # Blank or corrupt calibration block: no correction
            return 0.0, 0.0, 0.0
        b = (tr2s - tr1s) * (err3 - err1) / denominator
        a = b * (tr1 - tr2) / (tr2s - tr1s)
        c = err1 - a * tr1s - b * tr1
        return a, b, c

    def apply(self, temperature: float) -> float:
        if math.isinf(temperature):
            return temperature
        return temperature - (self.a * temperature ** 2 + self.b * temperature + self.c)

    def measure(self, trh: int, trl: int | None = None) -> Measurement:
        temperature = self.scale.decode(trh, trl)
        return Measurement(temperature, self.apply(temperature))
