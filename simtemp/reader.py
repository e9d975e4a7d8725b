# simtemp/reader.py
import asyncio, time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from simtemp.interfaces import SAMPLE_SIZE, DataInterface, decode_sample
from simtemp.sensor import Sample, SimTempDevice

ISO = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime(ISO)


@dataclass
class Reading:
    reader_id: str
    seq: int
    ts: str
    sample: Sample
    threshold_milli_c: int
    mode: str

    @property
    def alert(self) -> bool:
        return self.sample.temperature_milli_c > self.threshold_milli_c

    def as_row(self) -> Dict[str, Any]:
        return {
            "reader_id": self.reader_id,
            "seq": self.seq,
            "ts": self.ts,
            "timestamp_ns": self.sample.timestamp_ns,
            "temperature_milli_c": self.sample.temperature_milli_c,
            "temperature_c": round(self.sample.temperature_c, 3),
            "flags": self.sample.flags,
            "alert": int(self.alert),
            "mode": self.mode,
        }

    def __str__(self):
        return f"{self.ts} temp={self.sample.temperature_c:.1f}C alert={int(self.alert)} mode={self.mode}"


class SampleReader:
    """Caller-side sampling loop.

    The device never paces itself; this waits ``sampling_period_ms`` (read
    fresh every cycle) between reads of the binary data surface.
    """

    def __init__(
        self,
        device: SimTempDevice,
        reader_id: str = "reader-0",
        on_sample: Optional[Callable[[Reading], Awaitable[None]]] = None,
        max_samples: int = 0,
    ):
        self.device = device
        self.data = DataInterface(device)
        self.reader_id = reader_id
        self.on_sample = on_sample
        self.max_samples = max_samples
        self.seq = 0
        self._buf = bytearray(SAMPLE_SIZE)
        self._stop = asyncio.Event()

    def stop(self):
        self._stop.set()

    def read_once(self) -> Reading:
        cfg = self.data.read_into_with_config(self._buf)
        sample = decode_sample(self._buf)
        self.seq += 1
        return Reading(
            reader_id=self.reader_id,
            seq=self.seq,
            ts=utc_now_iso(),
            sample=sample,
            threshold_milli_c=cfg.alert_threshold_milli_c,
            mode=cfg.mode.value,
        )

    async def run(self, duration_s: float = 0):
        start = time.monotonic()
        while not self._stop.is_set():
            if duration_s and (time.monotonic() - start) >= duration_s:
                break
            if self.max_samples and self.seq >= self.max_samples:
                break
            reading = self.read_once()
            if self.on_sample:
                await self.on_sample(reading)
            period_s = max(0, self.device.get_sampling_period()) / 1000.0
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=period_s)
            except asyncio.TimeoutError:
                pass
