from dataclasses import dataclass
from typing import Callable, Optional

from stationary_drift.stability import StationaryDetector

# Realistic GPS receiver noise floor for phantom speed on a motionless device
GPS_DRIFT_SPEED_THRESHOLD = 0.3


@dataclass(frozen=True)
class GpsFix:
    speed: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    heading: Optional[float] = None
    timestamp_ms: Optional[int] = None

    @classmethod
    def from_record(cls, record):
        return cls(
            speed=record.get("speed"),
            latitude=record.get("latitude"),
            longitude=record.get("longitude"),
            accuracy=record.get("accuracy"),
            altitude=record.get("altitude"),
            heading=record.get("heading"),
            timestamp_ms=record.get("ts"),
        )


@dataclass(frozen=True)
class DriftEvent:
    gps_speed: float
    stationary: bool


class DriftMonitor:
    """Flags GPS fixes that report motion while the detector says stationary."""

    def __init__(
        self,
        detector: StationaryDetector,
        speed_threshold=GPS_DRIFT_SPEED_THRESHOLD,
        on_drift: Optional[Callable[[DriftEvent], None]] = None,
    ):
        self.detector = detector
        self.speed_threshold = speed_threshold
        self.on_drift = on_drift

    def on_fix(self, speed=None) -> Optional[DriftEvent]:
        speed = speed or 0.0
        if not (self.detector.get_is_stationary() and speed > self.speed_threshold):
            return None

        event = DriftEvent(gps_speed=speed, stationary=True)
        if self.on_drift:
            self.on_drift(event)
        return event
