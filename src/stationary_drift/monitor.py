import threading
from datetime import datetime

from loguru import logger

from stationary_drift.config import DEFAULT_SETTINGS
from stationary_drift.drift import DriftMonitor, GpsFix
from stationary_drift.stability import DetectorConfig, SensorFault, StationaryDetector


class LocationMonitor:
    """Wires the accelerometer and GPS streams into the detector and drift rule.

    Platform subscriptions are not managed here: whoever owns them calls
    ``on_accelerometer`` / ``on_position`` / ``on_error`` and this class logs
    what the core reports. Input is dropped while the monitor is not watching.
    """

    def __init__(self, settings=None, clock=None):
        self.settings = settings or DEFAULT_SETTINGS

        detector_config = DetectorConfig.from_dict(self.settings.get("detector"))
        self.detector = StationaryDetector.from_config(
            detector_config,
            clock=clock,
            on_state_change=self._log_state_change,
        )
        self.drift_monitor = DriftMonitor(
            self.detector,
            speed_threshold=self.settings.get("drift", {}).get("speed_threshold", 0.3),
            on_drift=self._record_drift,
        )

        self.drift_events = []
        self._watching = threading.Event()
        self._stats_lock = threading.Lock()
        self._counts = {
            "samples": 0,
            "faults": 0,
            "fixes": 0,
            "state_changes": 0,
            "drift_events": 0,
            "errors": 0,
        }

    def _bump(self, key):
        with self._stats_lock:
            self._counts[key] += 1

    def _log_state_change(self, result):
        self._bump("state_changes")
        if result.is_stationary:
            logger.info(
                f"Device became stationary (mean={result.mean:.3f}, "
                f"std={result.standard_deviation:.3f}, duration={result.duration_ms}ms)"
            )
        else:
            logger.info(
                f"Device started moving (mean={result.mean:.3f}, "
                f"std={result.standard_deviation:.3f})"
            )

    def _record_drift(self, event):
        self._bump("drift_events")
        with self._stats_lock:
            self.drift_events.append(event)
        logger.warning(
            f"GPS drift detected: device is stationary but GPS reports {event.gps_speed:.2f} m/s"
        )

    def start_watching(self):
        with self._stats_lock:
            already = self._watching.is_set()
            self._watching.set()
        if already:
            logger.warning("Location watching already started")
            return
        interval = self.settings.get("sensors", {}).get("accelerometer_interval_ms", 100)
        logger.info(f"Accelerometer watching started ({interval}ms interval)")
        logger.info("Location watching started")

    def stop_watching(self):
        with self._stats_lock:
            was_watching = self._watching.is_set()
            self._watching.clear()
        if not was_watching:
            return
        logger.info("Location watching stopped")
        logger.info("Accelerometer watching stopped")

    def is_watching(self):
        return self._watching.is_set()

    def get_is_stationary(self):
        return self.detector.get_is_stationary()

    def on_accelerometer(self, x, y, z):
        if not self._watching.is_set():
            return None
        try:
            result = self.detector.detect_stationary(x, y, z)
        except SensorFault as e:
            self._bump("faults")
            logger.warning(f"Discarding accelerometer sample: {e}")
            return None
        self._bump("samples")
        return result

    def on_position(self, fix: GpsFix):
        if not self._watching.is_set():
            return None
        self._bump("fixes")
        stamp = "-"
        if fix.timestamp_ms is not None:
            try:
                stamp = datetime.fromtimestamp(fix.timestamp_ms / 1000).isoformat()
            except (OverflowError, OSError, ValueError):
                stamp = f"{fix.timestamp_ms}ms"
        logger.debug(
            f"Position fix: lat={fix.latitude} lon={fix.longitude} "
            f"accuracy={fix.accuracy} altitude={fix.altitude} "
            f"speed={fix.speed or 0.0} heading={fix.heading} time={stamp}"
        )
        return self.drift_monitor.on_fix(fix.speed)

    def on_error(self, code, message):
        self._bump("errors")
        logger.error(f"Position error: {code} {message}")

    def stats(self):
        with self._stats_lock:
            return dict(self._counts)
