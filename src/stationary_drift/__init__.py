from stationary_drift.drift import GPS_DRIFT_SPEED_THRESHOLD, DriftEvent, DriftMonitor, GpsFix
from stationary_drift.monitor import LocationMonitor
from stationary_drift.stability import (
    DetectionResult,
    DetectorConfig,
    DetectorState,
    SensorFault,
    StationaryDetector,
)

__version__ = "0.1.0"
