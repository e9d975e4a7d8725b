# FILENAME: run_sim.py
# PURPOSE: Brings up a simulated temperature sensor, applies its platform
# configuration (YAML + CLI parameters), and drives it through the control
# and data surfaces: one-shot dump, alert self-test, or a continuous monitor
# with any number of concurrent readers, optionally logged to CSV.

import asyncio, argparse, csv, logging, os, random, signal, sys
from typing import List, Optional, Sequence

import yaml

# On Windows, use SelectorEventLoop
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from simtemp.errors import SimTempError
from simtemp.interfaces import ControlInterface, DataInterface, decode_sample
from simtemp.reader import Reading, SampleReader
from simtemp.sensor import DeviceSettings, SimTempDevice

SELF_TEST_THRESHOLD_MC = 100
SELF_TEST_MAX_SAMPLES = 50

# ============================================================
# Helpers
# ============================================================

def _ensure_parent_dir(path: str) -> None:
    """Create parent directory of 'path' if one exists."""
    # Resolve to absolute path so dirname is never ''
    abspath = os.path.abspath(path)
    dirpath = os.path.dirname(abspath)
    if dirpath and not os.path.exists(dirpath):
        os.makedirs(dirpath, exist_ok=True)

# ============================================================
# Async CSV writer with non-blocking I/O
# (maps readings -> stable CSV schema)
# ============================================================

class QueueCSVLogger:
    def __init__(self, path: str, write_threshold: int = 500):
        self.path = path
        _ensure_parent_dir(path)
        self.queue: asyncio.Queue = asyncio.Queue()
        self.file = open(path, "w", newline="", encoding="utf-8")

        self.fieldnames = [
            "reader_id", "seq", "ts", "timestamp_ns",
            "temperature_milli_c", "temperature_c", "flags", "alert", "mode",
        ]
        self.writer = csv.DictWriter(
            self.file,
            fieldnames=self.fieldnames,
            extrasaction="ignore",
        )
        self.writer.writeheader()

        self._task: Optional[asyncio.Task] = None
        self._count = 0
        self._buffer = []
        self._WRITE_THRESHOLD = write_threshold

    async def start(self):
        self._task = asyncio.create_task(self._writer_task(), name="csv-writer")

    async def _writer_task(self):
        while True:
            reading = await self.queue.get()
            if reading is None:  # sentinel for shutdown
                if self._buffer:
                    await self._write_buffer_to_disk()
                self.queue.task_done()
                break

            self._buffer.append(reading.as_row())
            self._count += 1

            if len(self._buffer) >= self._WRITE_THRESHOLD:
                await self._write_buffer_to_disk()

            self.queue.task_done()

        self.file.flush()

    async def _write_buffer_to_disk(self):
        if not self._buffer:
            return
        buf = self._buffer
        self._buffer = []
        try:
            await asyncio.to_thread(self.writer.writerows, buf)
            await asyncio.to_thread(self.file.flush)
            print(f"🧾 Logger wrote {self._count} rows to {self.path}", flush=True)
        except OSError as e:
            print(f"⚠️ CSV batch write error: {e}", flush=True)

    async def log(self, reading: Reading):
        await self.queue.put(reading)

    async def stop(self):
        if self._task:
            await self.queue.put(None)   # signal shutdown
            await self.queue.join()      # drain queue
            await self._task             # wait writer exit
        self.file.close()

# ============================================================
# CLI / Config helpers
# ============================================================

def parse_args(argv: Optional[Sequence[str]] = None):
    p = argparse.ArgumentParser(description="Simulated temperature sensor")
    p.add_argument("--config", type=str, default="", help="Path to YAML platform config")
    # Bootstrap parameters
    p.add_argument("--sampling", type=int, default=100, help="Initial sampling period (ms)")
    p.add_argument("--threshold", type=int, default=45000, help="Initial alert threshold (mC)")
    p.add_argument("--mode", type=str, default="normal", help="Initial mode: normal|noisy|ramp")
    p.add_argument("--seed", type=int, default=None, help="Seed for the noise generator")
    # Control writes applied after start
    p.add_argument("--set", dest="writes", action="append", default=[], metavar="ENTRY=VALUE",
                   help="Write a control entry before sampling (repeatable)")
    # Run modes
    p.add_argument("--once", action="store_true", help="Read one sample and dump the control entries")
    p.add_argument("--test", action="store_true", help="Run the alert self-test")
    p.add_argument("--readers", type=int, default=1)
    p.add_argument("--duration", type=float, default=0)
    p.add_argument("--samples", type=int, default=0, help="Stop each reader after N samples")
    # Logging
    p.add_argument("--log-csv", type=str, default="")
    p.add_argument("--verbose", "-v", action="store_true")
    return p.parse_args(argv)

def load_config(path: str):
    with open(path, "r") as fh:
        return yaml.safe_load(fh) or {}

def get_config_value(cfg: dict, path: str, default=None):
    cur = cfg
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    # an empty YAML key counts as unset
    return default if cur is None else cur

def build_settings(args, cfg: dict) -> DeviceSettings:
    """Platform config wins over command-line parameters."""
    return DeviceSettings(
        sampling_ms=get_config_value(cfg, "simtemp.sampling-ms", args.sampling),
        threshold_mC=get_config_value(cfg, "simtemp.threshold-mC", args.threshold),
        mode=get_config_value(cfg, "simtemp.mode", args.mode),
    )

def run_options(args, cfg: dict):
    """(readers, duration, log_csv) for the monitor."""
    return (
        get_config_value(cfg, "readers", args.readers),
        get_config_value(cfg, "duration", args.duration),
        get_config_value(cfg, "log_csv", args.log_csv),
    )

def apply_control_writes(control: ControlInterface, writes: List[str]) -> None:
    for item in writes:
        entry, sep, value = item.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"Expected ENTRY=VALUE, got {item!r}")
        control.store(entry.strip(), value)

# ============================================================
# Run modes
# ============================================================

def run_once(device: SimTempDevice) -> int:
    data = DataInterface(device)
    control = ControlInterface(device)
    sample = decode_sample(data.read())

    print("=== Sample from simtemp ===")
    print(f"Timestamp: {sample.timestamp_ns} ns")
    print(f"Temperature: {sample.temperature_c:.3f} °C")
    print(f"Flags: 0x{sample.flags:x}\n")
    for entry, value in control.dump().items():
        print(f"{entry}: {value}")
    return 0

def run_self_test(device: SimTempDevice) -> int:
    control = ControlInterface(device)
    data = DataInterface(device)
    print("Test mode: setting low threshold to verify alert", flush=True)
    control.store("threshold_milli_c", f"{SELF_TEST_THRESHOLD_MC}\n")
    before = device.stats_snapshot().alerts
    for _ in range(SELF_TEST_MAX_SAMPLES):
        sample = data.read_sample()
        print(f"temp={sample.temperature_c:.1f}C mode={device.get_mode().value}", flush=True)
        if device.stats_snapshot().alerts > before:
            print("Alert triggered. Test passed", flush=True)
            return 0
    print("Alert not triggered! Test failed", flush=True)
    return 1

# ============================================================
# Main async entry
# ============================================================

async def monitor(device: SimTempDevice, readers: int, duration: float,
                  max_samples: int, log_csv: str) -> int:
    logger = QueueCSVLogger(log_csv) if log_csv else None
    if logger:
        await logger.start()
        print(f"🧾 CSV logging enabled → {os.path.abspath(log_csv)}", flush=True)

    async def publish(reading: Reading):
        print(reading, flush=True)
        if logger:
            await logger.log(reading)

    sample_readers = [
        SampleReader(device, reader_id=f"reader-{i}", on_sample=publish, max_samples=max_samples)
        for i in range(readers)
    ]

    def _signal_handler(signame: str):
        print(f"\n🛑 Received {signame}. Stopping readers...", flush=True)
        for r in sample_readers:
            r.stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler, sig.name)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread
            pass

    try:
        print(f"🚀 Sampling with {readers} reader(s), mode={device.get_mode().value}...", flush=True)
        tasks = [asyncio.create_task(r.run(duration_s=duration)) for r in sample_readers]
        await asyncio.gather(*tasks)
        print(f"✅ Done. stats: {device.stats_snapshot()}", flush=True)
        return 0
    finally:
        for r in sample_readers:
            r.stop()
        if logger:
            print("📦 Flushing CSV logger...", flush=True)
            await logger.stop()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    cfg = load_config(args.config) if args.config else {}
    try:
        rng = random.Random(args.seed) if args.seed is not None else None
        device = SimTempDevice(build_settings(args, cfg), rng=rng)
    except SimTempError as e:
        print(f"❌ Bad platform configuration: {e}", flush=True)
        return 2

    control = ControlInterface(device)
    try:
        apply_control_writes(control, args.writes)
    except (SimTempError, argparse.ArgumentTypeError) as e:
        print(f"❌ Control write rejected: {e}", flush=True)
        return 2

    if args.once:
        return run_once(device)
    if args.test:
        return run_self_test(device)

    readers, duration, log_csv = run_options(args, cfg)
    return asyncio.run(monitor(device, readers, duration, args.samples, log_csv))


def cli() -> None:
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n🛑 Keyboard Interrupted. Exiting gracefully...", flush=True)
        sys.exit(0)


if __name__ == "__main__":
    cli()
