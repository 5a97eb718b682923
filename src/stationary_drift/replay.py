import threading
import time

from loguru import logger

from stationary_drift.drift import GpsFix
from stationary_drift.loader import SessionLoader
from stationary_drift.monitor import LocationMonitor


class ReplayClock:
    """Millisecond clock pinned to the timestamp of the sample being replayed."""

    def __init__(self, now_ms=0):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms


class SessionReplayer:
    def __init__(self, loader: SessionLoader, settings=None):
        self.loader = loader
        self.settings = settings
        self.clock = ReplayClock()
        self.monitor = None

    def run(self):
        """Feed every recorded event in timestamp order on the calling thread."""
        self.monitor = LocationMonitor(self.settings, clock=self.clock)
        self.monitor.start_watching()
        try:
            for event in self.loader.events():
                self.clock.now_ms = event.ts
                self._dispatch(event.payload)
        finally:
            self.monitor.stop_watching()
        return self.monitor

    def run_realtime(self, speed=1.0):
        """Replay both streams on their own threads, paced by recorded timestamps.

        Detection uses the process monotonic clock here, so results depend on
        scheduling and are not reproducible sample for sample.
        """
        self.monitor = LocationMonitor(self.settings)
        streams = {
            "accelerometer": [(s.ts, s) for s in self.loader.accel],
            "gps": [(f.timestamp_ms, f) for f in self.loader.fixes],
        }
        stamps = [ts for items in streams.values() for ts, _ in items]
        origin_ms = min(stamps) if stamps else 0

        self.monitor.start_watching()
        start = time.monotonic()
        threads = [
            threading.Thread(
                target=self._play_stream,
                args=(items, origin_ms, start, speed),
                name=name,
                daemon=True,
            )
            for name, items in streams.items()
        ]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        finally:
            self.monitor.stop_watching()
        return self.monitor

    def _play_stream(self, items, origin_ms, start, speed):
        for ts, payload in sorted(items, key=lambda item: item[0]):
            delay = (ts - origin_ms) / 1000.0 / speed - (time.monotonic() - start)
            if delay > 0:
                time.sleep(delay)
            self._dispatch(payload)
        logger.debug(f"{threading.current_thread().name} stream finished ({len(items)} records)")

    def _dispatch(self, payload):
        if isinstance(payload, GpsFix):
            self.monitor.on_position(payload)
        else:
            self.monitor.on_accelerometer(payload.x, payload.y, payload.z)
