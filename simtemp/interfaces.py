# simtemp/interfaces.py
import logging, re, struct
from typing import Optional, Tuple, Union

from simtemp.errors import (
    AccessDenied, BufferTooSmall, CopyFault, InvalidMode, InvalidValue, UnknownEntry
)
from simtemp.sensor import Sample, SensorConfig, SimTempDevice

log = logging.getLogger(__name__)

# ------------------------------
# Binary sample record
# ------------------------------
# = : host byte order, standard sizes, no padding
# Q : u64 timestamp_ns, i : s32 temp_milli_c, I : u32 flags
SAMPLE_STRUCT = struct.Struct("=QiI")
SAMPLE_SIZE = SAMPLE_STRUCT.size  # 16


def encode_sample(sample: Sample) -> bytes:
    return SAMPLE_STRUCT.pack(sample.timestamp_ns, sample.temperature_milli_c, sample.flags)


def decode_sample(data) -> Sample:
    if len(data) < SAMPLE_SIZE:
        raise BufferTooSmall(len(data), SAMPLE_SIZE)
    ts_ns, temp_mC, flags = SAMPLE_STRUCT.unpack_from(data)
    return Sample(timestamp_ns=ts_ns, temperature_milli_c=temp_mC, flags=flags)


class DataInterface:
    """Fixed-size binary read surface over a device.

    A too-small destination is rejected without touching the statistics;
    an unwritable one is counted as an error. Either way the generator
    state does not advance and no sample is tallied.
    """

    def __init__(self, device: SimTempDevice):
        self.device = device

    def read_into(self, buffer) -> int:
        self.read_into_with_config(buffer)
        return SAMPLE_SIZE

    def read_into_with_config(self, buffer) -> SensorConfig:
        """Like read_into, but also return the configuration the sample was
        generated and tallied against."""
        try:
            view = memoryview(buffer).cast("B")
        except (TypeError, ValueError) as e:
            self.device.record_error()
            raise CopyFault(str(e)) from e

        def copy_out(sample: Sample, config: SensorConfig):
            if view.readonly:
                raise CopyFault("read-only buffer")
            SAMPLE_STRUCT.pack_into(view, 0, sample.timestamp_ns, sample.temperature_milli_c, sample.flags)

        with view:
            if view.nbytes < SAMPLE_SIZE:
                raise BufferTooSmall(view.nbytes, SAMPLE_SIZE)
            _, config = self.device.next_sample_with_config(sink=copy_out)
        return config

    def read(self, count: int = SAMPLE_SIZE) -> bytes:
        if count < SAMPLE_SIZE:
            raise BufferTooSmall(count, SAMPLE_SIZE)
        buf = bytearray(SAMPLE_SIZE)
        self.read_into(buf)
        return bytes(buf)

    def read_sample(self) -> Sample:
        return self.device.next_sample()


# ------------------------------
# Text control surface
# ------------------------------
_INT_RE = re.compile(r"[+-]?[0-9]+")
# integer entries hold a C int
S32_MIN = -(1 << 31)
S32_MAX = (1 << 31) - 1

ENTRIES = {
    "sampling_period_ms": "rw",
    "threshold_milli_c": "rw",
    "mode": "rw",
    "stats": "r",
    "reset": "w",
}


def _strip_newline(text: str) -> str:
    # one trailing newline is tolerated, like `echo value > entry`
    return text[:-1] if text.endswith("\n") else text


def _as_text(text) -> Optional[str]:
    """Entry payload as ASCII text, or None when it is not text at all."""
    if isinstance(text, str):
        return text
    try:
        return bytes(memoryview(text)).decode("ascii")
    except (TypeError, ValueError):
        return None


def _written(text) -> int:
    if isinstance(text, str):
        return len(text)
    try:
        return memoryview(text).nbytes
    except TypeError:
        return 0


class ControlInterface:
    """Key/value text entries over the device configuration and statistics.

    Every rejected request bumps the device error counter.
    """

    def __init__(self, device: SimTempDevice):
        self.device = device

    @staticmethod
    def entries() -> Tuple[str, ...]:
        return tuple(ENTRIES)

    def _check(self, entry: str, access: str):
        if entry not in ENTRIES:
            self.device.record_error()
            raise UnknownEntry(entry)
        if access[0] not in ENTRIES[entry]:
            self.device.record_error()
            raise AccessDenied(entry, access)

    def show(self, entry: str) -> str:
        self._check(entry, "read")
        if entry == "sampling_period_ms":
            return f"{self.device.get_sampling_period()}\n"
        if entry == "threshold_milli_c":
            return f"{self.device.get_threshold()}\n"
        if entry == "mode":
            return f"{self.device.get_mode().value}\n"
        return f"{self.device.stats_snapshot()}\n"

    def store(self, entry: str, text: Union[str, bytes]) -> int:
        self._check(entry, "write")
        value = _as_text(text)

        if entry == "reset":
            # anything but "1" is accepted and ignored
            if value is not None and _strip_newline(value) == "1":
                self.device.reset_stats()
            return _written(text)

        if value is None:
            self.device.record_error()
            raise InvalidValue(entry, text)
        written = len(value)
        value = _strip_newline(value)

        if entry == "mode":
            try:
                self.device.set_mode(value)
            except InvalidMode:
                log.warning("rejected mode write %r", value)
                raise
            return written

        if not _INT_RE.fullmatch(value) or not S32_MIN <= int(value) <= S32_MAX:
            self.device.record_error()
            raise InvalidValue(entry, text)
        if entry == "sampling_period_ms":
            self.device.set_sampling_period(int(value))
        else:
            self.device.set_threshold(int(value))
        return written

    def dump(self) -> dict:
        """Every readable entry, newline stripped."""
        return {name: self.show(name).rstrip("\n") for name, access in ENTRIES.items() if "r" in access}
