# simtemp/sensor.py
import logging, random, threading, time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, NamedTuple, Optional, Tuple, Union

from simtemp.errors import CopyFault, InvalidMode, InvalidValue

log = logging.getLogger(__name__)

MIN_TEMP_MILLI_C = 10000      # 10 C
MAX_TEMP_MILLI_C = 50000      # 50 C
SEED_TEMP_MILLI_C = 20000     # 20 C
NORMAL_STEP = 200             # 0.2 C per sample
NORMAL_BAND = 200
RAMP_STEP = 500               # 0.5 C per sample
NOISY_CENTER = 25000
NOISY_SPREAD = 5000

FLAG_NEW_SAMPLE = 0x1
FLAG_THRESHOLD = 0x2          # reserved, never set

U64_MASK = (1 << 64) - 1


class Mode(str, Enum):
    NORMAL = "normal"
    NOISY = "noisy"
    RAMP = "ramp"

    @classmethod
    def parse(cls, name) -> "Mode":
        if isinstance(name, cls):
            return name
        # exact, case-sensitive compare
        for mode in cls:
            if name == mode.value:
                return mode
        raise InvalidMode(name)


@dataclass(frozen=True)
class Sample:
    timestamp_ns: int
    temperature_milli_c: int
    flags: int = FLAG_NEW_SAMPLE

    @property
    def temperature_c(self) -> float:
        return self.temperature_milli_c / 1000.0

    @property
    def is_new(self) -> bool:
        return bool(self.flags & FLAG_NEW_SAMPLE)


@dataclass
class SensorConfig:
    sampling_period_ms: int = 100
    alert_threshold_milli_c: int = 45000
    mode: Mode = Mode.NORMAL


@dataclass
class GeneratorState:
    current_temperature_milli_c: int = SEED_TEMP_MILLI_C
    ramp_ascending: bool = True


class StatsSnapshot(NamedTuple):
    samples: int
    alerts: int
    errors: int

    def __str__(self):
        return f"samples={self.samples} alerts={self.alerts} errors={self.errors}"


@dataclass
class Statistics:
    sample_count: int = 0
    alert_count: int = 0
    error_count: int = 0

    def record_sample(self, sample: Sample, threshold: int):
        self.sample_count = (self.sample_count + 1) & U64_MASK
        if sample.temperature_milli_c > threshold:
            self.alert_count = (self.alert_count + 1) & U64_MASK

    def record_error(self):
        self.error_count = (self.error_count + 1) & U64_MASK

    def reset(self):
        self.sample_count = 0
        self.alert_count = 0
        self.error_count = 0

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(self.sample_count, self.alert_count, self.error_count)


def _clamp(value: int) -> int:
    return max(MIN_TEMP_MILLI_C, min(MAX_TEMP_MILLI_C, value))


def generate(
    config: SensorConfig,
    state: GeneratorState,
    rng=random,
    clock: Callable[[], int] = time.monotonic_ns,
) -> Sample:
    """Derive the next sample from the mode and the running state.

    Mutates ``state`` in place. Never fails.

    normal: walk towards the threshold in 0.2 C steps, then jitter within
            +/-0.2 C of it; clamped to 10..50 C.
    noisy:  uniform in [20 C, 30 C), independent of the previous value.
    ramp:   triangle wave between 10 C and 50 C in 0.5 C steps.
    """
    temp = state.current_temperature_milli_c
    threshold = config.alert_threshold_milli_c

    if config.mode is Mode.NORMAL:
        if temp < threshold - NORMAL_BAND:
            temp += NORMAL_STEP
        elif temp > threshold + NORMAL_BAND:
            temp -= NORMAL_STEP
        else:
            temp += rng.randrange(-NORMAL_BAND, NORMAL_BAND)
        temp = _clamp(temp)

    elif config.mode is Mode.NOISY:
        temp = NOISY_CENTER + rng.randrange(-NOISY_SPREAD, NOISY_SPREAD)

    else:
        temp += RAMP_STEP if state.ramp_ascending else -RAMP_STEP
        if temp >= MAX_TEMP_MILLI_C:
            temp = MAX_TEMP_MILLI_C
            state.ramp_ascending = False
        elif temp <= MIN_TEMP_MILLI_C:
            temp = MIN_TEMP_MILLI_C
            state.ramp_ascending = True

    state.current_temperature_milli_c = temp
    return Sample(timestamp_ns=clock(), temperature_milli_c=temp, flags=FLAG_NEW_SAMPLE)


@dataclass
class DeviceSettings:
    """Bootstrap values the platform hands the device at start."""
    sampling_ms: int = 100
    threshold_mC: int = 45000
    mode: str = "normal"


def _require_int(entry: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidValue(entry, value)
    return value


class SimTempDevice:
    """One simulated sensor: configuration, generator state and statistics.

    A single lock serializes every operation, reads included. Nothing in
    here sleeps or paces; callers own their sampling cadence.
    """

    def __init__(
        self,
        settings: Optional[DeviceSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = time.monotonic_ns,
    ):
        settings = settings or DeviceSettings()
        self._config = SensorConfig(
            sampling_period_ms=_require_int("sampling_ms", settings.sampling_ms),
            alert_threshold_milli_c=_require_int("threshold_mC", settings.threshold_mC),
            mode=Mode.parse(settings.mode),
        )
        self._state = GeneratorState()
        self._stats = Statistics()
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()
        log.debug("simtemp device initialised: %s", self._config)

    # ---- configuration store ----

    def get_sampling_period(self) -> int:
        with self._lock:
            return self._config.sampling_period_ms

    def set_sampling_period(self, value: int):
        with self._lock:
            if isinstance(value, bool) or not isinstance(value, int):
                self._stats.record_error()
                raise InvalidValue("sampling_period_ms", value)
            self._config.sampling_period_ms = value
        log.debug("sampling period set to %d ms", value)

    def get_threshold(self) -> int:
        with self._lock:
            return self._config.alert_threshold_milli_c

    def set_threshold(self, value: int):
        with self._lock:
            if isinstance(value, bool) or not isinstance(value, int):
                self._stats.record_error()
                raise InvalidValue("threshold_milli_c", value)
            self._config.alert_threshold_milli_c = value
        log.debug("threshold set to %d mC", value)

    def get_mode(self) -> Mode:
        with self._lock:
            return self._config.mode

    def set_mode(self, name: Union[str, Mode]):
        with self._lock:
            try:
                mode = Mode.parse(name)
            except InvalidMode:
                self._stats.record_error()
                raise
            self._config.mode = mode
        log.debug("mode set to %s", mode.value)

    def config_snapshot(self) -> SensorConfig:
        with self._lock:
            return replace(self._config)

    # ---- sample generation ----

    def next_sample(self, sink: Optional[Callable[[Sample, SensorConfig], None]] = None) -> Sample:
        return self.next_sample_with_config(sink)[0]

    def next_sample_with_config(
        self, sink: Optional[Callable[[Sample, SensorConfig], None]] = None
    ) -> Tuple[Sample, SensorConfig]:
        """Generate one sample and tally it.

        Returns the sample with a copy of the configuration it was generated
        and tallied against. If ``sink`` is given it is called with both
        under the lock before anything is committed; when it raises,
        generator state and statistics are left untouched and the exception
        propagates. A CopyFault from the sink is counted as an error.
        """
        with self._lock:
            state = replace(self._state)
            config = replace(self._config)
            sample = generate(config, state, self._rng, self._clock)
            if sink is not None:
                try:
                    sink(sample, config)
                except CopyFault:
                    self._stats.record_error()
                    raise
            self._state = state
            self._stats.record_sample(sample, config.alert_threshold_milli_c)
            return sample, config

    # ---- statistics ----

    def record_error(self):
        with self._lock:
            self._stats.record_error()

    def reset_stats(self):
        with self._lock:
            self._stats.reset()
        log.debug("statistics reset")

    def stats_snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._stats.snapshot()
