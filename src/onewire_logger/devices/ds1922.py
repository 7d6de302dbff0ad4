"""DS1922L/T temperature logger: configuration, missions, data log."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..bus.adapter import OneWireAdapter
from ..errors import ValidationError
from ..memory.password import PasswordBuffer
from ..memory.protocol import DEVICE_SAMPLES_COUNTER, LATEST_TEMPERATURE, DS1922Protocol
from ..memory.register import MutableRegisterData, RegisterData, page_ceil
from ..rom import RomId
from . import registers as regs
from .registers import (
    AlarmEnable,
    AlarmStatus,
    Calibration,
    DeviceType,
    GeneralStatus,
    Measurement,
    MissionControl,
    Rtc,
    RtcControl,
    TemperatureScale,
    rtc_timestamp,
    scale_for,
)

_LOGGER = logging.getLogger(__name__)

# Timestamps of a mission that never recorded its start
FALLBACK_MISSION_START = datetime(1970, 1, 1)


@dataclass(frozen=True)
class RtcState:
    timestamp: datetime | None
    oscillating: bool
    high_speed: bool


@dataclass
class MissionSettings:
    """Parameters for DS1922.start_mission().

    Attributes:
        start_delay: Minutes to wait before logging starts.
        wait_for_low: Start upon a low temperature alarm.
        low_threshold: Low alarm threshold in degrees Celsius.
        wait_for_high: Start upon a high temperature alarm.
        high_threshold: High alarm threshold in degrees Celsius.
        high_speed: Sample rate counts seconds instead of minutes.
        sample_rate: Interval between samples.
        high_resolution: Log 16-bit instead of 8-bit samples.
        rollover: Overwrite the oldest samples when the log is full.
    """

    start_delay: int = 0
    wait_for_low: bool = False
    low_threshold: float = -math.inf
    wait_for_high: bool = False
    high_threshold: float = math.inf
    high_speed: bool = False
    sample_rate: int = 10
    high_resolution: bool = False
    rollover: bool = False

    def validate(self) -> None:
        if not 1 <= self.sample_rate <= regs.MAX_SAMPLE_RATE:
            raise ValidationError(
                f"Sample rate {self.sample_rate} not in 1..{regs.MAX_SAMPLE_RATE}"
            )
        if not 0 <= self.start_delay <= regs.MAX_START_DELAY:
            raise ValidationError(
                f"Start delay {self.start_delay} not in 0..{regs.MAX_START_DELAY}"
            )


@dataclass
class DeviceSnapshot:
    """Everything shown about a logger, decoded in one pass."""

    rom_id: RomId
    device_type: DeviceType
    rtc: RtcState
    device_samples: int
    password_protected: bool
    latest_temperature: Measurement
    mission_samples: int
    mission_in_progress: bool
    memory_cleared: bool
    sample_rate: int
    alarm_low: Measurement
    alarm_high: Measurement
    alarm_low_enabled: bool
    alarm_high_enabled: bool
    alarm_low_seen: bool
    alarm_high_seen: bool
    battery_on_reset: bool
    waiting_for_alarm: bool
    start_upon_alarm: bool
    logging_enabled: bool
    rollover: bool
    high_resolution: bool
    start_delay: int
    mission_start: datetime | None
    measurements: dict[int, tuple[datetime, Measurement]] = field(default_factory=dict)


class GeneralPurposeMemory:
    """The 512 user bytes, indexed from zero."""

    def __init__(self, memory: MutableRegisterData) -> None:
        self.memory = memory

    def __len__(self) -> int:
        return self.memory.size

    def __iter__(self) -> Iterator[int]:
        return iter(self.read(0, len(self)))

    def _check(self, start: int, length: int) -> None:
        if start < 0 or start + length > len(self):
            raise ValidationError(
                f"General-purpose range {start}+{length} out of bounds",
                offset=regs.GENERAL_PURPOSE + max(start, 0),
            )

    def __getitem__(self, index: int | slice) -> int | bytes:
        if isinstance(index, slice):
            start, stop, _ = index.indices(len(self))
            return self.read(start, max(0, stop - start))
        self._check(index, 1)
        return self.memory.read8(self.memory.offset + index)

    def read(self, start: int, length: int) -> bytes:
        self._check(start, length)
        return self.memory.read(self.memory.offset + start, length)

    def write(self, start: int, data: bytes) -> None:
        self._check(start, len(data))
        self.memory.write(self.memory.offset + start, data)

    def copy(self) -> GeneralPurposeMemory:
        return GeneralPurposeMemory(self.memory.copy())


class DS1922:
    """A DS1922 logger on one adapter.

    Configuration reads are served from a cached copy of the 64-byte
    configuration window; every mutating call drops the cache so the
    next read reflects the device.

    Args:
        adapter: Bus master the logger sits on.
        rom_id: Address of the logger.
        password: Access password, as passphrase or buffer.
        **protocol_options: Forwarded to DS1922Protocol.
    """

    family_code = regs.FAMILY_CODE

    def __init__(
        self,
        adapter: OneWireAdapter,
        rom_id: RomId,
        password: PasswordBuffer | str = "",
        **protocol_options: object,
    ) -> None:
        if not rom_id.is_family(self.family_code):
            raise ValidationError(f"{rom_id} is not a DS1922/DS1923")
        self.adapter = adapter
        self.rom_id = rom_id
        self.protocol = DS1922Protocol(adapter, rom_id, **protocol_options)
        self.password = (
            password if isinstance(password, PasswordBuffer)
            else PasswordBuffer.from_passphrase(password)
        )
        self._config: RegisterData | None = None
        self._data_log: RegisterData | None = None
        self._calibration: Calibration | None = None
        self._device_type: DeviceType | None = None

    def set_password(self, passphrase: str) -> None:
        self.password = PasswordBuffer.from_passphrase(passphrase)
        self.invalidate()

    # -- cached state ------------------------------------------------------

    def invalidate(self) -> None:
        """Drop cached configuration and data log."""
        self._config = None
        self._data_log = None

    def _read_config(self) -> RegisterData:
        return self.protocol.read_memory(regs.CONFIG, regs.CONFIG_SIZE, self.password)

    @property
    def config(self) -> RegisterData:
        if self._config is None:
            self._config = self._read_config()
        return self._config

    def _field(self, addr: int, length: int) -> bytes:
        return self.protocol.read_field(addr, length, self.password, self.config)

    def _byte(self, addr: int) -> int:
        return self._field(addr, 1)[0]

    def _uint(self, addr: int, width: int) -> int:
        return int.from_bytes(self._field(addr, width), "little")

    @property
    def device_type(self) -> DeviceType:
        if self._device_type is None:
            self._device_type = DeviceType.from_config(self._byte(regs.DEVICE_CONFIG))
        return self._device_type

    @property
    def scale(self) -> TemperatureScale:
        return scale_for(self.device_type)

    @property
    def calibration(self) -> Calibration:
        if self._calibration is None:
            raw = self.protocol.read_field(
                regs.CALIBRATION, regs.CALIBRATION_SIZE, self.password
            )
            self._calibration = Calibration(self.scale, raw)
        return self._calibration

    # -- register fields ---------------------------------------------------

    def rtc_state(self) -> RtcState:
        control = RtcControl(self._byte(regs.RTC_CONTROL))
        return RtcState(
            timestamp=rtc_timestamp(self._field(regs.RTC, Rtc.SIZE)),
            oscillating=control.oscillator,
            high_speed=control.high_speed,
        )

    def device_samples(self) -> int:
        return self._uint(DEVICE_SAMPLES_COUNTER, 3)

    def mission_samples(self) -> int:
        return self._uint(regs.MISSION_SAMPLES, 3)

    def password_protected(self) -> bool:
        return self._byte(regs.PASSWORD_CONTROL) == regs.PASSWORD_PROTECTED

    def latest_temperature(self) -> Measurement:
        trl, trh = self._field(LATEST_TEMPERATURE, 2)
        return self.calibration.measure(trh, trl)

    def general_status(self) -> GeneralStatus:
        return GeneralStatus(self._byte(regs.GENERAL_STATUS))

    def alarm_status(self) -> AlarmStatus:
        return AlarmStatus(self._byte(regs.ALARM_STATUS))

    def alarm_enable(self) -> AlarmEnable:
        return AlarmEnable(self._byte(regs.ALARM_ENABLE))

    def mission_control(self) -> MissionControl:
        return MissionControl(self._byte(regs.MISSION_CONTROL))

    def sample_rate(self) -> int:
        return self._uint(regs.SAMPLE_RATE, 2)

    def alarm_thresholds(self) -> tuple[Measurement, Measurement]:
        low = self.calibration.measure(self._byte(regs.ALARM_LOW))
        high = self.calibration.measure(self._byte(regs.ALARM_HIGH))
        return low, high

    def start_delay(self) -> int:
        return self._uint(regs.START_DELAY, 3)

    def mission_start(self) -> datetime | None:
        return rtc_timestamp(self._field(regs.MISSION_TIMESTAMP, Rtc.SIZE))

    # -- data log ----------------------------------------------------------

    def _log_layout(self) -> tuple[int, int, range]:
        """Return (extra leading samples, bytes per entry, logged indexes)."""
        control = self.mission_control()
        alarms = self.alarm_status()
        count = self.mission_samples()
        step = 2 if control.high_resolution else 1
        capacity = regs.DATA_LOG_SIZE // step
        extra = 1 if control.start_upon_alarm and (alarms.low_seen or alarms.high_seen) else 0
        if control.rollover:
            first = max(-extra, count - capacity)
            last = count
        else:
            first = -extra
            last = min(count, capacity - extra)
        return extra, step, range(first, last)

    def data_log(self) -> RegisterData:
        if self._data_log is None:
            extra, step, indexes = self._log_layout()
            wanted = min(regs.DATA_LOG_SIZE, (indexes.stop + extra) * step)
            if wanted <= 0:
                self._data_log = RegisterData(regs.DATA_LOG, b"")
            else:
                self._data_log = self.protocol.read_memory(
                    regs.DATA_LOG, page_ceil(wanted), self.password
                )
        return self._data_log

    def logged_measurements(self) -> dict[int, tuple[datetime, Measurement]]:
        """Decode the data log into ``index -> (timestamp, measurement)``.

        Index 0 is the first sample after the mission start; index -1 is
        the sample that triggered a start upon alarm.
        """
        extra, step, indexes = self._log_layout()
        if not indexes:
            return {}
        log = self.data_log()
        calibration = self.calibration
        rate = self.sample_rate()
        interval = (
            timedelta(seconds=rate) if self.rtc_state().high_speed else timedelta(minutes=rate)
        )
        start = self.mission_start() or FALLBACK_MISSION_START
        capacity = regs.DATA_LOG_SIZE // step
        out: dict[int, tuple[datetime, Measurement]] = {}
        for i in indexes:
            slot = (i + extra) % capacity
            addr = regs.DATA_LOG + slot * step
            if step == 2:
                trh, trl = log.read(addr, 2)
                measurement = calibration.measure(trh, trl)
            else:
                measurement = calibration.measure(log.read8(addr))
            out[i] = (start + interval * i, measurement)
        return out

    def snapshot(self) -> DeviceSnapshot:
        """Read configuration, mission state and data log from the device."""
        with self.adapter.lock:
            self.invalidate()
            control = self.mission_control()
            status = self.general_status()
            alarms = self.alarm_status()
            enable = self.alarm_enable()
            low, high = self.alarm_thresholds()
            return DeviceSnapshot(
                rom_id=self.rom_id,
                device_type=self.device_type,
                rtc=self.rtc_state(),
                device_samples=self.device_samples(),
                password_protected=self.password_protected(),
                latest_temperature=self.latest_temperature(),
                mission_samples=self.mission_samples(),
                mission_in_progress=status.mission_in_progress,
                memory_cleared=status.memory_cleared,
                sample_rate=self.sample_rate(),
                alarm_low=low,
                alarm_high=high,
                alarm_low_enabled=enable.low,
                alarm_high_enabled=enable.high,
                alarm_low_seen=alarms.low_seen,
                alarm_high_seen=alarms.high_seen,
                battery_on_reset=alarms.battery_on_reset,
                waiting_for_alarm=status.waiting_for_alarm,
                start_upon_alarm=control.start_upon_alarm,
                logging_enabled=control.logging,
                rollover=control.rollover,
                high_resolution=control.high_resolution,
                start_delay=self.start_delay(),
                mission_start=self.mission_start(),
                measurements=self.logged_measurements(),
            )

    # -- commands ----------------------------------------------------------

    def real_time_temperature(self) -> Measurement:
        """Force a conversion and return the fresh reading."""
        trl, trh = self.protocol.forced_conversion(self.password)
        self.invalidate()
        return self.calibration.measure(trh, trl)

    def _write_config(self, config: MutableRegisterData) -> None:
        try:
            self.protocol.write_register_data(config, self.password)
        finally:
            self.invalidate()

    def stop_mission(self) -> None:
        try:
            self.protocol.stop_mission(self.password)
        finally:
            self.invalidate()

    def stop_clock(self) -> None:
        with self.adapter.lock:
            config = self._read_config().to_mutable()
            control = RtcControl.load(config)
            control.oscillator = False
            control.store(config)
            self._write_config(config)

    def start_mission(self, settings: MissionSettings, now: datetime | None = None) -> None:
        """Program the clock and mission registers, clear the log and start.

        Args:
            settings: Mission parameters.
            now: Time to set the clock to; defaults to the local time.
        """
        settings.validate()
        now = now or datetime.now()
        _LOGGER.info("starting mission on %s: %s", self.rom_id.hex(), settings)
        with self.adapter.lock:
            config = self._read_config().to_mutable()
            scale = scale_for(DeviceType.from_config(config.read8(regs.DEVICE_CONFIG)))
            low = scale.encode(settings.low_threshold)
            high = scale.encode(settings.high_threshold)

            config.write(regs.RTC, Rtc.from_datetime(now).encode())

            rtc_control = RtcControl.load(config)
            rtc_control.high_speed = settings.high_speed
            rtc_control.oscillator = True
            rtc_control.store(config)

            config.write_uint(regs.SAMPLE_RATE, settings.sample_rate, 2)
            config.write_uint(regs.START_DELAY, settings.start_delay, 3)

            control = MissionControl.load(config)
            control.logging = True
            control.high_resolution = settings.high_resolution
            control.rollover = settings.rollover
            control.start_upon_alarm = settings.wait_for_low or settings.wait_for_high
            control.store(config)

            config.write8(regs.ALARM_LOW, low)
            config.write8(regs.ALARM_HIGH, high)

            enable = AlarmEnable.load(config)
            enable.low = settings.wait_for_low
            enable.high = settings.wait_for_high
            enable.store(config)

            self._write_config(config)
            try:
                self.protocol.clear_memory(self.password)
                self.protocol.start_mission(self.password)
            finally:
                self.invalidate()

    def enable_password_protection(self, full_passphrase: str, read_passphrase: str) -> None:
        """Set both passwords and turn protection on.

        The session continues with the new full-access password.
        """
        full = PasswordBuffer.from_passphrase(full_passphrase)
        read = PasswordBuffer.from_passphrase(read_passphrase)
        with self.adapter.lock:
            config = self._read_config().to_mutable()
            config.write(regs.FULL_PASSWORD, bytes(full))
            config.write(regs.READ_PASSWORD, bytes(read))
            config.write8(regs.PASSWORD_CONTROL, regs.PASSWORD_PROTECTED)
            self._write_config(config)
            self.password = full
        _LOGGER.info("password protection enabled on %s", self.rom_id.hex())

    def disable_password_protection(self) -> None:
        with self.adapter.lock:
            config = self._read_config().to_mutable()
            config.write8(regs.PASSWORD_CONTROL, regs.PASSWORD_UNPROTECTED)
            self._write_config(config)
        _LOGGER.info("password protection disabled on %s", self.rom_id.hex())

    # -- general-purpose memory --------------------------------------------

    def general_purpose_memory(self) -> GeneralPurposeMemory:
        data = self.protocol.read_memory(
            regs.GENERAL_PURPOSE, regs.GENERAL_PURPOSE_SIZE, self.password
        )
        return GeneralPurposeMemory(data.to_mutable())

    def write_general_purpose(
        self,
        start: int,
        data: bytes,
        memory: GeneralPurposeMemory | None = None,
    ) -> list[int]:
        """Write ``data`` at ``start``, committing only the pages it touches.

        Args:
            start: Offset into general-purpose memory.
            data: Bytes to write.
            memory: Current contents; read from the device when omitted.

        Returns:
            Start addresses of the pages written.
        """
        if not data:
            raise ValidationError("Nothing to write")
        if start < 0 or start + len(data) > regs.GENERAL_PURPOSE_SIZE:
            raise ValidationError(
                f"Range {start}+{len(data)} outside general-purpose memory",
                offset=regs.GENERAL_PURPOSE + max(start, 0),
            )
        with self.adapter.lock:
            changed = (memory or self.general_purpose_memory()).copy()
            changed.write(start, data)
            try:
                return self.protocol.write_register_data(changed.memory, self.password)
            finally:
                self.invalidate()
