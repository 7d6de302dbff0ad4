"""Tests for the DS1922 driver against a simulated logger."""

import math
from datetime import datetime, timedelta

import pytest
from onewire_fakes import FAST, BusAdapter, FakeDS1922, FakeOneWireBus, make_rom

from onewire_logger.devices import DS1922, DeviceType, MissionSettings
from onewire_logger.devices import registers as regs
from onewire_logger.devices.ds1922 import FALLBACK_MISSION_START
from onewire_logger.errors import DeviceNotSupported, TransportFault, ValidationError
from onewire_logger.memory import PasswordBuffer
from onewire_logger.memory import protocol as proto

START = datetime(2024, 3, 5, 8, 7, 6)
START_RTC = bytes([0x06, 0x07, 0x08, 0x05, 0x03, 0x24])


def program_mission(
    fake: FakeDS1922,
    samples: int,
    log: bytes = b"",
    *,
    control: int = 0x01,
    rtc_control: int = 0x01,
    rate: int = 10,
    alarms: int = 0x00,
    started: bool = True,
) -> None:
    """Put the simulated logger into a state with ``samples`` logged."""
    fake.poke(regs.RTC, START_RTC)
    fake.poke(regs.RTC_CONTROL, bytes([rtc_control]))
    fake.poke(regs.SAMPLE_RATE, rate.to_bytes(2, "little"))
    fake.poke(regs.MISSION_CONTROL, bytes([control]))
    fake.poke(regs.ALARM_STATUS, bytes([alarms]))
    fake.poke(regs.GENERAL_STATUS, bytes([proto.STATUS_MIP]))
    fake.poke(regs.MISSION_SAMPLES, samples.to_bytes(3, "little"))
    if started:
        fake.poke(regs.MISSION_TIMESTAMP, START_RTC)
    fake.poke(regs.DATA_LOG, log)


class TestConstruction:
    def test_wrong_family(self, bus_adapter: BusAdapter) -> None:
        with pytest.raises(ValidationError):
            DS1922(bus_adapter, make_rom(0x28, 1))

    def test_passphrase(self, bus_adapter: BusAdapter, fake_logger: FakeDS1922) -> None:
        device = DS1922(bus_adapter, fake_logger.rom_id, "secret")
        assert device.password == PasswordBuffer.from_passphrase("secret")

    def test_device_type(self, logger: DS1922) -> None:
        assert logger.device_type is DeviceType.DS1922L

    def test_unknown_device_type(self) -> None:
        fake = FakeDS1922(make_rom(0x41, 7), device_config=0x13)
        device = DS1922(BusAdapter(FakeOneWireBus(fake)), fake.rom_id, **FAST)
        with pytest.raises(DeviceNotSupported):
            device.device_type

    def test_humidity_logger_has_no_scale(self) -> None:
        fake = FakeDS1922(make_rom(0x41, 8), device_config=0x20)
        device = DS1922(BusAdapter(FakeOneWireBus(fake)), fake.rom_id, **FAST)
        assert device.device_type is DeviceType.DS1923
        with pytest.raises(DeviceNotSupported):
            device.scale


class TestConfigCache:
    """Register reads come from one cached configuration window."""

    def test_fields_share_one_read(
        self, logger: DS1922, bus_adapter: BusAdapter, fake_logger: FakeDS1922
    ) -> None:
        program_mission(fake_logger, 3)
        assert logger.sample_rate() == 10
        assert logger.mission_samples() == 3
        assert logger.general_status().mission_in_progress
        assert bus_adapter.count_frames(proto.CMD_READ_MEMORY, 11) == 1

    def test_invalidate_rereads(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        fake_logger.poke(regs.SAMPLE_RATE, b"\x05\x00")
        assert logger.sample_rate() == 5
        fake_logger.poke(regs.SAMPLE_RATE, b"\x07\x00")
        assert logger.sample_rate() == 5
        logger.invalidate()
        assert logger.sample_rate() == 7


class TestSnapshot:
    """Tests for the combined device snapshot."""

    def test_mission_in_progress(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 3, bytes([0x84, 0x85, 0x86]))
        fake_logger.poke(proto.LATEST_TEMPERATURE, bytes([0x00, 0x84]))
        fake_logger.poke(proto.DEVICE_SAMPLES_COUNTER, (100).to_bytes(3, "little"))
        fake_logger.poke(regs.ALARM_LOW, bytes([0x66]))
        fake_logger.poke(regs.ALARM_ENABLE, bytes([0x01]))

        snapshot = logger.snapshot()

        assert snapshot.rom_id == fake_logger.rom_id
        assert snapshot.device_type is DeviceType.DS1922L
        assert snapshot.rtc.oscillating
        assert not snapshot.rtc.high_speed
        assert snapshot.rtc.timestamp == START
        assert snapshot.device_samples == 100
        assert not snapshot.password_protected
        assert snapshot.latest_temperature.temperature == 25.0
        assert snapshot.mission_samples == 3
        assert snapshot.mission_in_progress
        assert not snapshot.memory_cleared
        assert snapshot.sample_rate == 10
        assert snapshot.alarm_low.temperature == 10.0
        assert snapshot.alarm_high.temperature == -math.inf
        assert snapshot.alarm_low_enabled
        assert not snapshot.alarm_high_enabled
        assert snapshot.logging_enabled
        assert not snapshot.rollover
        assert snapshot.mission_start == START
        assert sorted(snapshot.measurements) == [0, 1, 2]
        assert [m.temperature for _, m in snapshot.measurements.values()] == [25.0, 25.5, 26.0]

    def test_snapshot_sees_fresh_state(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        assert logger.snapshot().mission_samples == 0
        program_mission(fake_logger, 1, b"\x84")
        assert logger.snapshot().mission_samples == 1


class TestLoggedMeasurements:
    """Tests for data log decoding."""

    def test_low_resolution(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 3, bytes([0x84, 0x85, 0x86]))
        measurements = logger.logged_measurements()
        assert measurements[0][0] == START
        assert measurements[2][0] == START + timedelta(minutes=20)
        assert measurements[1][1].temperature == 25.5

    def test_high_resolution(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 2, bytes([0x84, 0x80, 0x85, 0x00]), control=0x05)
        measurements = logger.logged_measurements()
        assert [m.temperature for _, m in measurements.values()] == [25.25, 25.5]

    def test_high_speed_interval(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 2, bytes([0x84, 0x84]), rtc_control=0x03, rate=30)
        assert logger.logged_measurements()[1][0] == START + timedelta(seconds=30)

    def test_alarm_start_adds_trigger_sample(
        self, logger: DS1922, fake_logger: FakeDS1922
    ) -> None:
        """A mission started upon alarm logs the triggering sample first."""
        program_mission(fake_logger, 2, bytes([0x90, 0x84, 0x85]), control=0x21, alarms=0x02)
        measurements = logger.logged_measurements()
        assert sorted(measurements) == [-1, 0, 1]
        assert measurements[-1][0] == START - timedelta(minutes=10)
        assert measurements[-1][1].temperature == 31.0
        assert measurements[0][1].temperature == 25.0

    def test_alarm_start_without_alarm(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 1, bytes([0x84]), control=0x21)
        assert sorted(logger.logged_measurements()) == [0]

    def test_missing_start_uses_fallback(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 1, bytes([0x84]), started=False)
        assert logger.logged_measurements()[0][0] == FALLBACK_MISSION_START

    def test_no_samples_skips_log_read(
        self, logger: DS1922, bus_adapter: BusAdapter, fake_logger: FakeDS1922
    ) -> None:
        program_mission(fake_logger, 0)
        assert logger.logged_measurements() == {}
        assert bus_adapter.count_frames(proto.CMD_READ_MEMORY, 11) == 1

    def test_rollover_keeps_newest(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        log = bytearray([0x84] * regs.DATA_LOG_SIZE)
        log[0] = 0x90  # sample 8192 overwrote slot 0
        log[5] = 0x80
        program_mission(fake_logger, regs.DATA_LOG_SIZE + 5, bytes(log), control=0x11)
        measurements = logger.logged_measurements()
        assert len(measurements) == regs.DATA_LOG_SIZE
        assert min(measurements) == 5
        assert max(measurements) == regs.DATA_LOG_SIZE + 4
        assert measurements[5][1].temperature == 23.0
        assert measurements[regs.DATA_LOG_SIZE][1].temperature == 31.0

    def test_full_log_without_rollover(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        """Without rollover the device stops at the high-resolution capacity."""
        program_mission(fake_logger, 5000, bytes(regs.DATA_LOG_SIZE), control=0x05)
        measurements = logger.logged_measurements()
        assert len(measurements) == regs.DATA_LOG_SIZE // 2
        assert max(measurements) == regs.DATA_LOG_SIZE // 2 - 1


class TestMission:
    """Tests for starting and stopping missions."""

    def test_start_mission(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        settings = MissionSettings(
            sample_rate=5,
            high_resolution=True,
            low_threshold=10.0,
            high_threshold=30.0,
            wait_for_high=True,
        )
        logger.start_mission(settings, now=START)

        assert fake_logger.peek(regs.RTC, 6) == START_RTC
        assert fake_logger.peek(regs.RTC_CONTROL) == b"\x01"
        assert fake_logger.peek(regs.SAMPLE_RATE, 2) == b"\x05\x00"
        assert fake_logger.peek(regs.MISSION_CONTROL) == b"\x25"
        assert fake_logger.peek(regs.ALARM_LOW, 2) == bytes([0x66, 0x8E])
        assert fake_logger.peek(regs.ALARM_ENABLE) == b"\x02"
        assert fake_logger.status & proto.STATUS_MIP
        assert logger.general_status().mission_in_progress
        assert logger.mission_start() is not None

    def test_start_mission_high_speed(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        logger.start_mission(MissionSettings(high_speed=True, rollover=True), now=START)
        assert fake_logger.peek(regs.RTC_CONTROL) == b"\x03"
        assert fake_logger.peek(regs.MISSION_CONTROL) == b"\x11"

    @pytest.mark.parametrize(
        "settings",
        [MissionSettings(sample_rate=0), MissionSettings(start_delay=-1),
         MissionSettings(sample_rate=regs.MAX_SAMPLE_RATE + 1)],
    )
    def test_invalid_settings(
        self, logger: DS1922, fake_logger: FakeDS1922, settings: MissionSettings
    ) -> None:
        with pytest.raises(ValidationError):
            logger.start_mission(settings)
        assert fake_logger.commands == []

    def test_threshold_out_of_range(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        with pytest.raises(ValidationError):
            logger.start_mission(MissionSettings(low_threshold=-100.0))
        assert proto.CMD_WRITE_SCRATCHPAD not in fake_logger.commands

    def test_stop_mission(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        program_mission(fake_logger, 1)
        assert logger.general_status().mission_in_progress
        logger.stop_mission()
        assert not logger.general_status().mission_in_progress

    def test_stop_clock(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        fake_logger.poke(regs.RTC_CONTROL, b"\x03")
        logger.stop_clock()
        assert fake_logger.peek(regs.RTC_CONTROL) == b"\x02"
        assert not logger.rtc_state().oscillating


class TestPasswords:
    """Tests for password protection."""

    def test_enable_and_disable(
        self, logger: DS1922, bus_adapter: BusAdapter, fake_logger: FakeDS1922
    ) -> None:
        logger.enable_password_protection("full", "read")
        full = PasswordBuffer.from_passphrase("full")
        assert fake_logger.protected
        assert fake_logger.peek(regs.FULL_PASSWORD, 8) == bytes(full)
        assert logger.password == full
        assert logger.password_protected()

        reader = DS1922(bus_adapter, fake_logger.rom_id, "read", **FAST)
        assert reader.sample_rate() == 0
        stranger = DS1922(bus_adapter, fake_logger.rom_id, **FAST)
        with pytest.raises(TransportFault):
            stranger.sample_rate()

        logger.disable_password_protection()
        assert not fake_logger.protected
        assert not logger.password_protected()
        assert stranger.sample_rate() == 0

    def test_read_password_cannot_write(
        self, logger: DS1922, bus_adapter: BusAdapter, fake_logger: FakeDS1922
    ) -> None:
        logger.enable_password_protection("full", "read")
        reader = DS1922(bus_adapter, fake_logger.rom_id, "read", **FAST)
        with pytest.raises(TransportFault):
            reader.write_general_purpose(0, b"\x01")
        assert fake_logger.peek(0) == b"\x00"

    def test_set_password(self, logger: DS1922) -> None:
        logger.set_password("other")
        assert logger.password == PasswordBuffer.from_passphrase("other")


class TestTemperature:
    def test_real_time_temperature(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        measurement = logger.real_time_temperature()
        assert measurement.temperature == 25.0
        assert measurement.calibrated == 25.0
        assert logger.device_samples() == 1

    def test_calibrated(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        fake_logger.poke(regs.CALIBRATION, bytes([132, 0, 133, 0, 242, 0, 243, 0]))
        fake_logger.conversion = (0x00, 0x8E)
        measurement = logger.real_time_temperature()
        assert measurement.temperature == 30.0
        assert measurement.calibrated == pytest.approx(29.5)


class TestGeneralPurposeMemory:
    """Tests for the user memory area."""

    def test_read(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        fake_logger.poke(0x0100, b"abc")
        memory = logger.general_purpose_memory()
        assert len(memory) == regs.GENERAL_PURPOSE_SIZE
        assert memory[0x0100] == ord("a")
        assert memory[0x0100:0x0103] == b"abc"
        assert list(memory)[0x0100:0x0103] == list(b"abc")

    @pytest.mark.parametrize("start, length", [(512, 1), (510, 4), (-1, 1)])
    def test_read_out_of_range(self, logger: DS1922, start: int, length: int) -> None:
        """Out-of-range access reports the absolute address that was refused."""
        memory = logger.general_purpose_memory()
        with pytest.raises(ValidationError) as excinfo:
            memory.read(start, length)
        assert excinfo.value.offset == regs.GENERAL_PURPOSE + max(start, 0)

    def test_index_out_of_range(self, logger: DS1922) -> None:
        memory = logger.general_purpose_memory()
        with pytest.raises(ValidationError):
            memory[regs.GENERAL_PURPOSE_SIZE]
        with pytest.raises(ValidationError):
            memory.write(511, b"ab")

    def test_write_touches_only_needed_pages(
        self, logger: DS1922, fake_logger: FakeDS1922
    ) -> None:
        assert logger.write_general_purpose(30, b"\x01\x02\x03") == [0, 32]
        assert fake_logger.peek(30, 3) == b"\x01\x02\x03"
        assert fake_logger.copies == 2
        assert logger.general_purpose_memory().read(30, 3) == b"\x01\x02\x03"

    def test_write_with_known_contents(self, logger: DS1922, fake_logger: FakeDS1922) -> None:
        memory = logger.general_purpose_memory()
        assert logger.write_general_purpose(100, b"x", memory) == [96]
        assert memory[100] == 0
        assert fake_logger.peek(100) == b"x"

    def test_unchanged_bytes_write_nothing(
        self, logger: DS1922, fake_logger: FakeDS1922
    ) -> None:
        assert logger.write_general_purpose(0, b"\x00\x00") == []
        assert fake_logger.copies == 0

    @pytest.mark.parametrize("start, data", [(0, b""), (511, b"ab"), (-1, b"a")])
    def test_invalid_write(self, logger: DS1922, start: int, data: bytes) -> None:
        with pytest.raises(ValidationError):
            logger.write_general_purpose(start, data)
