"""
Sensor core tests.

Covers the configuration store, the three generation modes, and the
statistics counters of SimTempDevice.
"""

import random
import threading

import pytest

from simtemp.errors import InvalidMode, InvalidValue
from simtemp.sensor import (
    FLAG_NEW_SAMPLE,
    MAX_TEMP_MILLI_C,
    MIN_TEMP_MILLI_C,
    DeviceSettings,
    GeneratorState,
    Mode,
    Sample,
    SensorConfig,
    SimTempDevice,
    Statistics,
    generate,
)


def make_device(**kwargs) -> SimTempDevice:
    return SimTempDevice(DeviceSettings(**kwargs), rng=random.Random(1234))


class TestConfigurationStore:

    def test_bootstrap_defaults(self):
        device = SimTempDevice()
        assert device.get_sampling_period() == 100
        assert device.get_threshold() == 45000
        assert device.get_mode() is Mode.NORMAL
        assert tuple(device.stats_snapshot()) == (0, 0, 0)

    def test_bootstrap_rejects_unknown_mode(self):
        with pytest.raises(InvalidMode):
            SimTempDevice(DeviceSettings(mode="warm"))

    def test_bootstrap_rejects_non_integer(self):
        with pytest.raises(InvalidValue):
            SimTempDevice(DeviceSettings(sampling_ms="fast"))

    @pytest.mark.parametrize("name", ["normal", "noisy", "ramp"])
    def test_valid_mode_is_reflected(self, name):
        device = make_device()
        device.set_mode(name)
        assert device.get_mode().value == name
        assert device.stats_snapshot().errors == 0

    @pytest.mark.parametrize("name", ["Normal", "RAMP", "", "ramp ", "sine"])
    def test_invalid_mode_keeps_config_and_counts_once(self, name):
        device = make_device(mode="noisy")
        with pytest.raises(InvalidMode):
            device.set_mode(name)
        assert device.get_mode() is Mode.NOISY
        assert device.stats_snapshot().errors == 1

    def test_mode_accepts_enum_member(self):
        device = make_device()
        device.set_mode(Mode.RAMP)
        assert device.get_mode() is Mode.RAMP

    def test_period_and_threshold_accept_any_integer(self):
        device = make_device()
        device.set_sampling_period(0)
        assert device.get_sampling_period() == 0
        device.set_sampling_period(-5)
        assert device.get_sampling_period() == -5
        device.set_threshold(-273150)
        assert device.get_threshold() == -273150

    def test_non_integer_values_are_counted(self):
        device = make_device()
        with pytest.raises(InvalidValue):
            device.set_threshold(1.5)
        with pytest.raises(InvalidValue):
            device.set_sampling_period(True)
        assert device.get_threshold() == 45000
        assert device.get_sampling_period() == 100
        assert device.stats_snapshot().errors == 2

    def test_config_snapshot_is_a_copy(self):
        device = make_device()
        snap = device.config_snapshot()
        snap.alert_threshold_milli_c = 1
        assert device.get_threshold() == 45000


class TestGenerator:

    def test_sample_fields(self):
        cfg = SensorConfig(mode=Mode.RAMP)
        sample = generate(cfg, GeneratorState(), clock=lambda: 42)
        assert sample == Sample(timestamp_ns=42, temperature_milli_c=20500, flags=FLAG_NEW_SAMPLE)
        assert sample.is_new

    def test_normal_converges_into_band(self):
        threshold = 30000
        cfg = SensorConfig(alert_threshold_milli_c=threshold, mode=Mode.NORMAL)
        state = GeneratorState()
        rng = random.Random(7)

        # 20 C -> 29.8 C at 0.2 C per step
        warmup = [generate(cfg, state, rng).temperature_milli_c for _ in range(49)]
        assert warmup == list(range(20200, 30000, 200))

        values = [generate(cfg, state, rng).temperature_milli_c for _ in range(5000)]
        in_band = sum(threshold - 200 <= v <= threshold + 200 for v in values)
        assert in_band / len(values) > 0.7
        assert all(threshold - 400 <= v < threshold + 400 for v in values)

    def test_normal_walks_down_from_above(self):
        cfg = SensorConfig(alert_threshold_milli_c=15000, mode=Mode.NORMAL)
        state = GeneratorState()
        assert generate(cfg, state).temperature_milli_c == 19800

    def test_normal_clamps(self):
        state = GeneratorState(current_temperature_milli_c=49900)
        cfg = SensorConfig(alert_threshold_milli_c=90000, mode=Mode.NORMAL)
        assert generate(cfg, state).temperature_milli_c == MAX_TEMP_MILLI_C

        state = GeneratorState(current_temperature_milli_c=10100)
        cfg = SensorConfig(alert_threshold_milli_c=-90000, mode=Mode.NORMAL)
        assert generate(cfg, state).temperature_milli_c == MIN_TEMP_MILLI_C

    def test_noisy_range(self):
        cfg = SensorConfig(mode=Mode.NOISY)
        state = GeneratorState()
        rng = random.Random(99)
        values = [generate(cfg, state, rng).temperature_milli_c for _ in range(10000)]
        assert all(20000 <= v < 30000 for v in values)
        # spread covers the whole range
        assert min(values) < 20500
        assert max(values) >= 29500
        assert 24500 < sum(values) / len(values) < 25500

    def test_ramp_triangle_wave(self):
        cfg = SensorConfig(mode=Mode.RAMP)
        state = GeneratorState()
        values = [generate(cfg, state).temperature_milli_c for _ in range(400)]

        assert all(MIN_TEMP_MILLI_C <= v <= MAX_TEMP_MILLI_C for v in values)
        assert {abs(b - a) for a, b in zip(values, values[1:])} == {500}
        assert values.count(MAX_TEMP_MILLI_C) >= 2
        assert values.count(MIN_TEMP_MILLI_C) >= 2
        peak = values.index(MAX_TEMP_MILLI_C)
        assert values[peak + 1] == MAX_TEMP_MILLI_C - 500
        assert state.ramp_ascending == (values[-1] > values[-2])

    def test_ramp_flips_at_floor(self):
        cfg = SensorConfig(mode=Mode.RAMP)
        state = GeneratorState(current_temperature_milli_c=10500, ramp_ascending=False)
        assert generate(cfg, state).temperature_milli_c == 10000
        assert state.ramp_ascending
        assert generate(cfg, state).temperature_milli_c == 10500


class TestStatistics:

    def test_alert_is_strictly_above_threshold(self):
        stats = Statistics()
        stats.record_sample(Sample(0, 20000), threshold=20000)
        stats.record_sample(Sample(0, 20001), threshold=20000)
        assert stats.snapshot() == (2, 1, 0)

    def test_reset_zeroes_everything(self):
        device = make_device(mode="ramp", threshold_mC=0)
        for _ in range(10):
            device.next_sample()
        device.record_error()
        assert device.stats_snapshot() == (10, 10, 1)
        device.reset_stats()
        assert device.stats_snapshot() == (0, 0, 0)

    def test_counters_wrap_like_u64(self):
        stats = Statistics(error_count=2 ** 64 - 1)
        stats.record_error()
        assert stats.error_count == 0

    def test_snapshot_format(self):
        assert str(Statistics(3, 1, 2).snapshot()) == "samples=3 alerts=1 errors=2"

    def test_end_to_end_noisy_below_threshold(self):
        device = make_device()
        device.set_threshold(30000)
        device.set_mode("noisy")
        for _ in range(1000):
            device.next_sample()
        samples, alerts, errors = device.stats_snapshot()
        assert samples == 1000
        assert alerts == 0
        assert errors == 0

    def test_noisy_alert_fraction(self):
        device = make_device(mode="noisy", threshold_mC=25000)
        for _ in range(4000):
            device.next_sample()
        samples, alerts, _ = device.stats_snapshot()
        assert 0.45 < alerts / samples < 0.55


class TestConcurrency:

    def test_parallel_readers_and_resets_keep_invariants(self):
        device = make_device(mode="ramp", threshold_mC=30000)
        violations = []

        def reader():
            for _ in range(500):
                device.next_sample()
                s = device.stats_snapshot()
                if s.alerts > s.samples:
                    violations.append(s)

        def resetter():
            for _ in range(50):
                device.reset_stats()

        threads = [threading.Thread(target=reader) for _ in range(6)]
        threads.append(threading.Thread(target=resetter))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert violations == []
        samples, alerts, _ = device.stats_snapshot()
        assert alerts <= samples <= 3000

    def test_parallel_readers_count_every_sample(self):
        device = make_device(mode="noisy")
        threads = [threading.Thread(target=lambda: [device.next_sample() for _ in range(250)])
                   for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert device.stats_snapshot().samples == 2000
